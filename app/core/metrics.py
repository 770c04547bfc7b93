from __future__ import annotations

import threading
from typing import Dict


class MetricsStore:
    """Thread-safe in-memory counters for accounting calls served by this process."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._counters: Dict[str, int] = {
            "increments": 0,
            "decrements": 0,
            "records": 0,
            "removals": 0,
            "reads": 0,
            "store_errors": 0,
            "audits": 0,
            "audited_users": 0,
            "drifted_users": 0,
        }

    def record(self, name: str, count: int = 1) -> None:
        if count <= 0:
            return
        with self._lock:
            self._counters[name] = self._counters.get(name, 0) + count

    def record_store_error(self) -> None:
        self.record("store_errors")

    def record_audit(self, audited: int, drifted: int) -> None:
        with self._lock:
            self._counters["audits"] += 1
            self._counters["drifted_users"] = max(drifted, 0)
            self._counters["audited_users"] = max(audited, 0)

    def snapshot(self) -> Dict[str, int]:
        with self._lock:
            return dict(self._counters)


metrics = MetricsStore()
