from rest_framework.pagination import PageNumberPagination


class StandardResultsSetPagination(PageNumberPagination):
    """Shared pagination for inventory and ledger list endpoints.

    Clients can tune page size with `?page_size=`; ledger exports for reporting
    read larger pages, so the cap is higher than the default page size.
    """

    page_size_query_param = "page_size"
    max_page_size = 500
