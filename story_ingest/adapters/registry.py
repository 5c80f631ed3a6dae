"""Explicit adapter registry keyed by adapter identifier."""

from __future__ import annotations

from typing import Dict, Iterable, Iterator, List, Optional

from story_ingest.errors import UnknownAdapterError
from story_ingest.models.domain import Source

from .base import Adapter


class AdapterRegistry:
    """Maps ``adapter_id`` to an Adapter instance.

    Sources reference adapters by string; lookup happens here instead of by
    importing modules by name, so ``missing_for`` can verify the catalog up
    front.
    """

    def __init__(self, adapters: Optional[Iterable[Adapter]] = None) -> None:
        self._adapters: Dict[str, Adapter] = {}
        for adapter in adapters or ():
            self.register(adapter)

    def register(self, adapter: Adapter, *, replace: bool = False) -> None:
        key = adapter.adapter_id
        if not key or not key.strip():
            raise ValueError("adapter_id는 공백일 수 없습니다.")
        if key in self._adapters and not replace:
            raise ValueError(f"이미 등록된 어댑터입니다: {key}")
        self._adapters[key] = adapter

    def get(self, adapter_id: str) -> Adapter:
        try:
            return self._adapters[adapter_id]
        except KeyError:
            raise UnknownAdapterError(f"등록되지 않은 어댑터: {adapter_id}") from None

    def missing_for(self, sources: Iterable[Source]) -> List[str]:
        """Adapter ids referenced by ``sources`` that have no registration."""
        return sorted({s.adapter_id for s in sources if s.adapter_id not in self._adapters})

    def __contains__(self, adapter_id: object) -> bool:
        return adapter_id in self._adapters

    def __iter__(self) -> Iterator[str]:
        return iter(sorted(self._adapters))

    def __len__(self) -> int:
        return len(self._adapters)
