TRUTHY_VALUES = {"1", "true", "t", "yes", "y", "on"}


def parse_bool(value, default=False):
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() in TRUTHY_VALUES


def normalize_text(value):
    if value is None:
        return ""
    return str(value).strip()


def optional_text(value):
    """Return a stripped string or None for blank values."""
    text = normalize_text(value)
    return text or None
