from __future__ import annotations

import hashlib
import json
import time
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

from .chain import ChainEvent, ChainStore


class ChainJournal:
    """Hash-chained record of chain mutations.

    Records stay in memory and, when ``path`` is given, are mirrored as JSON
    lines. The journal is an audit trail only; chains are never rebuilt from it.
    """

    def __init__(self, path: Optional[str | Path] = None, clock: Callable[[], float] = time.time) -> None:
        self.path = Path(path) if path else None
        if self.path:
            self.path.parent.mkdir(parents=True, exist_ok=True)
        self.records: List[Dict[str, Any]] = []
        self._clock = clock

    @staticmethod
    def _hash(text: str) -> str:
        return hashlib.sha256(text.encode("utf-8")).hexdigest()

    @property
    def last_hash(self) -> str:
        return self.records[-1]["hash"] if self.records else ""

    def attach(self, chain: ChainStore) -> Callable[[], None]:
        return chain.subscribe(self.on_chain_changed)

    def on_chain_changed(self, event: ChainEvent) -> None:
        self.log({
            "kind": event.kind,
            "entry": event.entry.id,
            "formula": event.entry.formula.name,
            "length": event.length,
        })

    def log(self, event: Dict[str, Any]) -> str:
        record = {"prev": self.last_hash, "event": event, "ts": self._clock()}
        h = self._hash(json.dumps(record, sort_keys=True))
        full = {"hash": h, **record}
        self.records.append(full)
        if self.path:
            with self.path.open("a", encoding="utf-8") as f:
                f.write(json.dumps(full, sort_keys=True) + "\n")
        return h

    def verify(self) -> bool:
        prev = ""
        for r in self.records:
            body = {k: v for k, v in r.items() if k != "hash"}
            if body.get("prev") != prev or self._hash(json.dumps(body, sort_keys=True)) != r["hash"]:
                return False
            prev = r["hash"]
        return True
