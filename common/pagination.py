from rest_framework.pagination import PageNumberPagination


class StandardResultsSetPagination(PageNumberPagination):
    """Shared pagination for history endpoints (shifts, audit trail, terminals).

    `?page_size=` is honoured up to `max_page_size`.
    """

    page_size_query_param = "page_size"
    max_page_size = 200
