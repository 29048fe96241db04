from datetime import datetime, timezone
from typing import Any, Iterable, List, Sequence, TypeVar

T = TypeVar("T")


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def chunked(items: Sequence[T], size: int) -> Iterable[List[T]]:
    for start in range(0, len(items), size):
        yield list(items[start:start + size])


def to_int(value: Any, default: int = 0) -> int:
    try:
        return int(str(value).strip())
    except (TypeError, ValueError):
        return default
