from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional

from .chain import ChainEvent, ChainStore

logger = logging.getLogger(__name__)

SUGGESTIONS = "suggestions"
ANALYSIS = "analysis"


@dataclass(frozen=True)
class Ticket:
    """Issued when a generator call starts; checked when its result arrives."""

    kind: str
    version: int
    seq: int


class AdvisoryState:
    """Next-step suggestions and chain analysis derived from the chain.

    Any chain mutation clears both and bumps ``version``. Results of calls
    issued before the bump, or superseded by a newer call of the same kind,
    are dropped on delivery.
    """

    def __init__(self) -> None:
        self.version = 0
        self.suggestions: Optional[List[str]] = None
        self.suggestion_error: Optional[str] = None
        self.analysis: Optional[str] = None
        self.analysis_error: Optional[str] = None
        self._latest: Dict[str, int] = {}
        self._pending: Dict[str, int] = {}
        self._seq = 0

    def attach(self, chain: ChainStore) -> Callable[[], None]:
        return chain.subscribe(self.on_chain_changed)

    def on_chain_changed(self, event: ChainEvent) -> None:
        self.invalidate()

    def invalidate(self) -> None:
        self.version += 1
        self.suggestions = None
        self.suggestion_error = None
        self.analysis = None
        self.analysis_error = None
        self._pending.clear()
        logger.debug("advisory state invalidated, version=%d", self.version)

    @property
    def is_empty(self) -> bool:
        return (
            self.suggestions is None
            and self.suggestion_error is None
            and self.analysis is None
            and self.analysis_error is None
        )

    def is_pending(self, kind: str) -> bool:
        return kind in self._pending

    def begin(self, kind: str) -> Ticket:
        self._seq += 1
        self._latest[kind] = self._seq
        self._pending[kind] = self._seq
        self._set(kind, None, None)
        return Ticket(kind, self.version, self._seq)

    def is_current(self, ticket: Ticket) -> bool:
        return ticket.version == self.version and self._latest.get(ticket.kind) == ticket.seq

    def deliver(self, ticket: Ticket, value) -> bool:
        return self._apply(ticket, value, None)

    def fail(self, ticket: Ticket, message: str) -> bool:
        return self._apply(ticket, None, message)

    def fail_now(self, kind: str, message: str) -> None:
        """Record a precondition failure that never reached the generator."""
        self._pending.pop(kind, None)
        self._set(kind, None, message)

    def clear_analysis(self) -> None:
        self.analysis = None
        self.analysis_error = None

    def snapshot(self) -> Dict[str, object]:
        return {
            "version": self.version,
            "suggestions": self.suggestions,
            "suggestion_error": self.suggestion_error,
            "analysis": self.analysis,
            "analysis_error": self.analysis_error,
            "pending": sorted(self._pending),
        }

    def _apply(self, ticket: Ticket, value, error: Optional[str]) -> bool:
        if not self.is_current(ticket):
            logger.info("discarding stale %s result (version %d, current %d)", ticket.kind, ticket.version, self.version)
            return False
        self._pending.pop(ticket.kind, None)
        self._set(ticket.kind, value, error)
        return True

    def _set(self, kind: str, value, error: Optional[str]) -> None:
        if kind == SUGGESTIONS:
            self.suggestions = value
            self.suggestion_error = error
        elif kind == ANALYSIS:
            self.analysis = value
            self.analysis_error = error
        else:
            raise ValueError(f"Unknown advisory kind: {kind}")
