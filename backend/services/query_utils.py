"""Helpers shared by the list/filter queries of the services."""

import math
from typing import Dict, List, Optional, Tuple, Type, TypeVar

from errors import ValidationFailed

E = TypeVar("E")


def clamp_page(page: int, limit: int, max_limit: int) -> Tuple[int, int]:
    return max(page, 1), min(max(limit, 1), max_limit)


def build_pagination(page: int, limit: int, total: int) -> Dict[str, int]:
    return {"current": page, "pages": math.ceil(total / limit) if limit else 0, "total": total}


def parse_enum(enum_cls: Type[E], value: Optional[str], field: str) -> Optional[E]:
    """
    Parse a query-string filter into an enum member.

    Accepts any case and spaces or dashes for underscores ("on hold" ->
    ON_HOLD). Empty values mean "no filter".

    Raises:
        ValidationFailed: value names no member of ``enum_cls``
    """
    if value is None or not value.strip():
        return None
    normalized = value.strip().upper().replace(" ", "_").replace("-", "_")
    try:
        return enum_cls(normalized)
    except ValueError:
        raise ValidationFailed(
            "Validation failed",
            errors=[{"field": field, "message": f"Unknown {field}: {value}"}],
        )


def clean_tag_names(names: List[str]) -> List[str]:
    """Strip, drop blanks and de-duplicate while keeping the caller's order."""
    seen = []
    for name in names:
        name = name.strip()
        if name and name not in seen:
            seen.append(name)
    return seen
