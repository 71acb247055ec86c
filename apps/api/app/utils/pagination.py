"""Page/per_page query parameters for list endpoints."""

from dataclasses import dataclass

from fastapi import Query


DEFAULT_PAGE = 1
DEFAULT_PER_PAGE = 20
MAX_PER_PAGE = 100


@dataclass
class PaginationParams:
    page: int
    per_page: int

    @property
    def offset(self) -> int:
        return (self.page - 1) * self.per_page


def get_pagination(
    page: int = Query(DEFAULT_PAGE, ge=1, description="Page number (1-indexed)"),
    per_page: int = Query(DEFAULT_PER_PAGE, ge=1, le=MAX_PER_PAGE, description=f"Items per page (max {MAX_PER_PAGE})"),
) -> PaginationParams:
    """
    Pagination dependency.

    Usage:
        @router.get("/transcripts")
        def list_transcripts(pagination: PaginationParams = Depends(get_pagination)):
            items, total = service.list_x(db, offset=pagination.offset, limit=pagination.per_page)
            return page_response(items, total, pagination)
    """
    return PaginationParams(page=page, per_page=per_page)


def page_response(items: list, total: int, pagination: PaginationParams) -> dict:
    """Body shared by every paginated list response schema."""
    return {
        "items": items,
        "total": total,
        "page": pagination.page,
        "per_page": pagination.per_page,
    }
