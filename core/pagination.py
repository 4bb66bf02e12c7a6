"""
Core — Pagination

Page-number pagination for catalog, lot and supply-request listings.
History is append-only and grows without bound, so it is paged with an
id cursor instead: new entries never shift a page a client is reading.

@file core/pagination.py
"""

from rest_framework.pagination import CursorPagination, PageNumberPagination

from core.constants import DEFAULT_PAGE_SIZE, HISTORY_PAGE_SIZE, MAX_PAGE_SIZE


class StandardPagination(PageNumberPagination):
    page_size = DEFAULT_PAGE_SIZE
    page_size_query_param = 'page_size'
    max_page_size = MAX_PAGE_SIZE


class HistoryCursorPagination(CursorPagination):
    """Oldest entry first, matching the order replay folds them in."""
    page_size = HISTORY_PAGE_SIZE
    page_size_query_param = 'page_size'
    max_page_size = MAX_PAGE_SIZE
    ordering = 'id'
