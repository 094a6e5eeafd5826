import math
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Union

from config import settings
from database import EntityStore

DEFAULT_PAGE = 1
# $skip takes a signed 64-bit integer
MAX_SKIP = 2**63 - 1


@dataclass
class Page:
    results: List[Dict[str, Any]] = field(default_factory=list)
    total: int = 0
    page: int = DEFAULT_PAGE
    limit: int = 10
    total_pages: int = 0
    has_prev: bool = False
    has_next: bool = False

    def with_results(self, results: List[Dict[str, Any]]) -> "Page":
        return Page(
            results=results,
            total=self.total,
            page=self.page,
            limit=self.limit,
            total_pages=self.total_pages,
            has_prev=self.has_prev,
            has_next=self.has_next,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "results": self.results,
            "total": self.total,
            "page": self.page,
            "limit": self.limit,
            "total_pages": self.total_pages,
            "has_prev": self.has_prev,
            "has_next": self.has_next,
        }


def _as_int(value: Union[int, str, None]) -> Optional[int]:
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    try:
        return int(str(value).strip())
    except ValueError:
        return None


def coerce_page(value: Union[int, str, None]) -> int:
    page = _as_int(value)
    if page is None or page < 1:
        return DEFAULT_PAGE
    return page


def coerce_limit(value: Union[int, str, None], default: Optional[int] = None, maximum: Optional[int] = None) -> int:
    default = default or settings.default_page_limit
    maximum = maximum or settings.max_page_limit
    limit = _as_int(value)
    if limit is None or limit <= 0:
        return default
    return min(limit, maximum)


def paginate(
    store: EntityStore,
    collection: str,
    stages: List[Dict[str, Any]],
    page: Union[int, str, None] = None,
    limit: Union[int, str, None] = None,
) -> Page:
    """Run ``stages`` and return one page of raw documents plus metadata.

    Out-of-range paging values are clamped, never rejected. Stable ordering
    across calls depends on the pipeline ending in a total sort.
    """
    limit = coerce_limit(limit)
    page = min(coerce_page(page), MAX_SKIP // limit + 1)

    total = store.count(collection, stages)
    total_pages = math.ceil(total / limit)
    results = store.run_pipeline(
        collection,
        list(stages) + [{"$skip": (page - 1) * limit}, {"$limit": limit}],
    )
    return Page(
        results=results,
        total=total,
        page=page,
        limit=limit,
        total_pages=total_pages,
        has_prev=page > 1,
        has_next=page < total_pages,
    )
