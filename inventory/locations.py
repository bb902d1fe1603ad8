"""Warehouse location strings.

A location is written `Zone-SubZone-Floor`, for example `A-1-1`. Tokens are
separated by a single dash and may not contain one themselves; zone names,
sub-zone names and floor labels are rejected at layout creation time when they
do, so every declared triple composes to a string that parses back to itself.
"""

from collections import namedtuple

from inventory.exceptions import InvalidLocationFormat
from inventory.models import WarehouseZone

SEPARATOR = "-"

ParsedLocation = namedtuple("ParsedLocation", ["zone_name", "sub_zone_name", "floor"])


def is_valid_token(value):
    return isinstance(value, str) and bool(value.strip()) and SEPARATOR not in value


def parse_location(value):
    if not isinstance(value, str):
        raise InvalidLocationFormat(location=value)

    parts = [part.strip() for part in value.strip().split(SEPARATOR)]
    if len(parts) != 3 or not all(parts):
        raise InvalidLocationFormat(location=value)
    return ParsedLocation(*parts)


def compose_location(zone_name, sub_zone_name, floor):
    tokens = [zone_name, sub_zone_name, floor]
    if not all(is_valid_token(token) for token in tokens):
        raise InvalidLocationFormat(zone_name=zone_name, sub_zone_name=sub_zone_name, floor=floor)
    return SEPARATOR.join(token.strip() for token in tokens)


def layout_triples(layout=None):
    """Set of (zone, sub zone, floor) triples declared by the warehouse layout."""
    if layout is None:
        layout = WarehouseZone.objects.all()

    triples = set()
    for zone in layout:
        for floor in zone.floors or []:
            triples.add((zone.zone_name, zone.sub_zone_name, str(floor)))
    return triples


def validate_location(zone_name, sub_zone_name, floor, layout=None):
    if isinstance(layout, (set, frozenset)):
        triples = layout
    else:
        triples = layout_triples(layout)
    return (zone_name, sub_zone_name, floor) in triples


def resolve_location(value, layout=None):
    """Parse `value`, check it against the layout and return its canonical form."""
    parsed = parse_location(value)
    if not validate_location(*parsed, layout=layout):
        raise InvalidLocationFormat(
            "Location is not declared in the warehouse layout.",
            location=value,
        )
    return compose_location(*parsed)
