"""Document store capability shared by every backend.

Documents are addressed by slash separated paths that alternate collection
and document ids (``users/u1``, ``downloads/u1/downloads/b7``). Field values
handed to ``set`` and ``update`` may contain the :class:`Increment` sentinel,
which every backend applies atomically against the stored value.
"""
from __future__ import annotations

import copy
import math
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional

from app.core.exceptions import InvalidDocumentPath


@dataclass(frozen=True)
class Increment:
    """Atomic numeric increment; a missing or non-numeric base counts as zero."""

    amount: int


@dataclass
class DocumentSnapshot:
    path: str
    data: Optional[Dict[str, Any]] = field(default=None)

    @property
    def exists(self) -> bool:
        return self.data is not None

    @property
    def id(self) -> str:
        return self.path.rsplit("/", 1)[-1]

    def get(self, name: str, default: Any = None) -> Any:
        if self.data is None:
            return default
        return self.data.get(name, default)


def _check_segment(segment: str) -> str:
    if not isinstance(segment, str) or not segment.strip():
        raise InvalidDocumentPath("Path segments must be non-empty strings")
    if "/" in segment:
        raise InvalidDocumentPath(f"Path segment may not contain '/': {segment!r}")
    return segment


def document_path(*segments: str) -> str:
    if not segments or len(segments) % 2:
        raise InvalidDocumentPath("Document paths need an even number of segments")
    return "/".join(_check_segment(s) for s in segments)


def collection_path(*segments: str) -> str:
    if not segments or not len(segments) % 2:
        raise InvalidDocumentPath("Collection paths need an odd number of segments")
    return "/".join(_check_segment(s) for s in segments)


def parent_collection(path: str) -> str:
    parent, _, _ = path.rpartition("/")
    return parent


def is_number(value: Any) -> bool:
    if isinstance(value, bool):
        return False
    if isinstance(value, int):
        return True
    return isinstance(value, float) and math.isfinite(value)


def apply_fields(
    current: Optional[Mapping[str, Any]],
    fields: Mapping[str, Any],
    *,
    merge: bool,
) -> Dict[str, Any]:
    """Return the document produced by writing ``fields`` over ``current``."""
    result: Dict[str, Any] = copy.deepcopy(dict(current)) if (merge and current) else {}
    for name, value in fields.items():
        if isinstance(value, Increment):
            base = result.get(name)
            result[name] = (base if is_number(base) else 0) + value.amount
        else:
            result[name] = copy.deepcopy(value)
    return result


class DocumentStore(ABC):
    # Backends whose merge write honours Increment on an absent document can
    # create-and-increment in a single call.
    supports_merge_increment: bool = True

    @abstractmethod
    async def get(self, path: str) -> DocumentSnapshot:
        ...

    @abstractmethod
    async def set(self, path: str, fields: Mapping[str, Any], merge: bool = False) -> None:
        ...

    @abstractmethod
    async def update(self, path: str, fields: Mapping[str, Any]) -> None:
        """Raises DocumentNotFound when ``path`` does not exist."""

    @abstractmethod
    async def delete(self, path: str) -> None:
        ...

    @abstractmethod
    async def list(self, collection: str) -> List[DocumentSnapshot]:
        """Direct children of ``collection``."""

    @abstractmethod
    async def list_group(self, name: str) -> List[DocumentSnapshot]:
        """Documents of every collection whose last path segment is ``name``."""

    async def close(self) -> None:
        return None
