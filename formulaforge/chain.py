from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from typing import Callable, Iterator, List, Optional

from .models import ChainEntry, FormulaSpec

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ChainEvent:
    kind: str  # "append" | "remove"
    entry: ChainEntry
    length: int


Listener = Callable[[ChainEvent], None]


class ChainStore:
    """Ordered history of committed steps; the only place the chain changes.

    Entries are never edited in place. Consumers that derive state from the
    chain subscribe to change events instead of keeping their own copy.
    """

    def __init__(self) -> None:
        self._entries: List[ChainEntry] = []
        self._listeners: List[Listener] = []

    def __len__(self) -> int:
        return len(self._entries)

    def __iter__(self) -> Iterator[ChainEntry]:
        return iter(tuple(self._entries))

    def entries(self) -> List[ChainEntry]:
        return list(self._entries)

    def last(self) -> Optional[ChainEntry]:
        return self._entries[-1] if self._entries else None

    def get(self, entry_id: str) -> Optional[ChainEntry]:
        for e in self._entries:
            if e.id == entry_id:
                return e
        return None

    def contains(self, formula_name: str) -> bool:
        return self.most_recent(formula_name) is not None

    def most_recent(self, formula_name: str) -> Optional[ChainEntry]:
        for e in reversed(self._entries):
            if e.formula.name == formula_name:
                return e
        return None

    def append(self, formula: FormulaSpec, result: str) -> ChainEntry:
        entry = ChainEntry(id=uuid.uuid4().hex, formula=formula, result=result)
        self._entries.append(entry)
        logger.info("chain append %s (%s), length=%d", entry.id, formula.name, len(self._entries))
        self._emit(ChainEvent("append", entry, len(self._entries)))
        return entry

    def remove(self, entry_id: str) -> bool:
        for i, e in enumerate(self._entries):
            if e.id == entry_id:
                del self._entries[i]
                logger.info("chain remove %s (%s), length=%d", e.id, e.formula.name, len(self._entries))
                self._emit(ChainEvent("remove", e, len(self._entries)))
                return True
        return False

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _emit(self, event: ChainEvent) -> None:
        for listener in list(self._listeners):
            listener(event)
