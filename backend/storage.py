# storage.py
"""Per-identity usage counters.

Route code talks to ``QuotaStore`` only. ``InMemoryQuotaStore`` keeps
everything in process memory: a restart resets every counter and each
worker process has its own map.

A generation first takes a slot with ``reserve`` (checked against the
daily cap and taken in one step), then either converts it with
``record_success`` or hands it back with ``release``.
"""
from __future__ import annotations

import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass, replace
from typing import Dict, List, Optional


@dataclass(frozen=True)
class UsageRecord:
    ip: str
    day: str
    calls: int = 0          # successful generations
    attempts: int = 0       # every /generate hit
    cost_usd: float = 0.0   # estimated model spend
    limit_hits: int = 0     # 402 responses
    in_flight: int = 0      # reserved, not yet settled


class QuotaStore(ABC):
    @abstractmethod
    def get(self, key: str) -> Optional[UsageRecord]: ...

    @abstractmethod
    def record_attempt(self, key: str, ip: str, day: str) -> UsageRecord: ...

    @abstractmethod
    def reserve(self, key: str, ip: str, day: str, limit: Optional[int]) -> Optional[UsageRecord]:
        """Take a generation slot, or return None when ``limit`` is used up.

        Settled and in-flight generations both count against ``limit``;
        ``None`` means no cap.
        """

    @abstractmethod
    def release(self, key: str, ip: str, day: str) -> UsageRecord: ...

    @abstractmethod
    def record_success(self, key: str, ip: str, day: str, cost_usd: float = 0.0) -> UsageRecord: ...

    @abstractmethod
    def record_limit_hit(self, key: str, ip: str, day: str) -> UsageRecord: ...

    @abstractmethod
    def records_for_day(self, day: str) -> List[UsageRecord]: ...


class InMemoryQuotaStore(QuotaStore):
    def __init__(self):
        self._records: Dict[str, UsageRecord] = {}
        self._lock = threading.Lock()

    def _current(self, key: str, ip: str, day: str) -> UsageRecord:
        return self._records.get(key) or UsageRecord(ip=ip, day=day)

    def _update(self, key: str, ip: str, day: str, **delta) -> UsageRecord:
        with self._lock:
            rec = self._current(key, ip, day)
            rec = replace(rec, **{k: getattr(rec, k) + v for k, v in delta.items()})
            self._records[key] = rec
            return rec

    def get(self, key: str) -> Optional[UsageRecord]:
        with self._lock:
            return self._records.get(key)

    def record_attempt(self, key: str, ip: str, day: str) -> UsageRecord:
        return self._update(key, ip, day, attempts=1)

    def reserve(self, key: str, ip: str, day: str, limit: Optional[int]) -> Optional[UsageRecord]:
        with self._lock:
            rec = self._current(key, ip, day)
            if limit is not None and rec.calls + rec.in_flight >= limit:
                return None
            rec = replace(rec, in_flight=rec.in_flight + 1)
            self._records[key] = rec
            return rec

    def release(self, key: str, ip: str, day: str) -> UsageRecord:
        with self._lock:
            rec = self._current(key, ip, day)
            rec = replace(rec, in_flight=max(0, rec.in_flight - 1))
            self._records[key] = rec
            return rec

    def record_success(self, key: str, ip: str, day: str, cost_usd: float = 0.0) -> UsageRecord:
        with self._lock:
            rec = self._current(key, ip, day)
            rec = replace(
                rec,
                calls=rec.calls + 1,
                cost_usd=rec.cost_usd + cost_usd,
                in_flight=max(0, rec.in_flight - 1),
            )
            self._records[key] = rec
            return rec

    def record_limit_hit(self, key: str, ip: str, day: str) -> UsageRecord:
        return self._update(key, ip, day, limit_hits=1)

    def records_for_day(self, day: str) -> List[UsageRecord]:
        with self._lock:
            return [r for r in self._records.values() if r.day == day]
