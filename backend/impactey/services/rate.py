# backend/impactey/services/rate.py
from __future__ import annotations
import time, threading
from dataclasses import dataclass
from typing import Any, Callable, Dict

from loguru import logger

ESG_SOURCE = "esg-scores"
NEWS_SOURCE = "news"
CATALOG_SOURCE = "catalog"

WARN_PCT = 0.70

@dataclass(frozen=True)
class QuotaRule:
    limit: int
    window_s: float

@dataclass
class QuotaState:
    count: int = 0
    window_start: float = 0.0
    blocked_until: float = 0.0

# ---- Fixed-window quota per upstream source (process-wide, thread-safe) ----
class QuotaTracker:
    """
    A call is admitted only while count < limit inside the current window.
    The window opens on the first call after a reset and closes exactly at
    window_start + window_s. Refusal is final for that call: no waiting.
    """
    def __init__(self, rules: Dict[str, QuotaRule], clock: Callable[[], float] = time.time):
        self.rules = dict(rules)
        self.clock = clock
        self.mu = threading.Lock()
        self._states: Dict[str, QuotaState] = {s: QuotaState() for s in self.rules}

    def _roll(self, source: str, now: float) -> QuotaState:
        st = self._states.setdefault(source, QuotaState())
        rule = self.rules[source]
        if st.count and now >= st.window_start + rule.window_s:
            st.count = 0
            st.window_start = 0.0
        return st

    def _admissible(self, source: str, now: float) -> bool:
        if source not in self.rules:
            return True  # no quota configured
        st = self._roll(source, now)
        if now < st.blocked_until:
            return False
        return st.count < self.rules[source].limit

    def can_call(self, source: str) -> bool:
        with self.mu:
            return self._admissible(source, self.clock())

    def record_call(self, source: str) -> None:
        with self.mu:
            self._record(source, self.clock())

    def _record(self, source: str, now: float) -> None:
        if source not in self.rules:
            return
        st = self._roll(source, now)
        if st.count == 0:
            st.window_start = now
        st.count += 1
        limit = self.rules[source].limit
        if st.count > limit * WARN_PCT and st.count - 1 <= limit * WARN_PCT:
            logger.warning(f"quota {source}: {st.count}/{limit} used in current window")

    def try_acquire(self, source: str) -> bool:
        """Atomic can_call + record_call."""
        with self.mu:
            now = self.clock()
            if not self._admissible(source, now):
                logger.info(f"quota {source}: call refused")
                return False
            self._record(source, now)
            return True

    def throttle(self, source: str, seconds: float) -> None:
        """Refuse calls to `source` for `seconds` (upstream answered 429)."""
        with self.mu:
            st = self._states.setdefault(source, QuotaState())
            st.blocked_until = max(st.blocked_until, self.clock() + max(0.0, seconds))
        logger.warning(f"quota {source}: throttled for {seconds:.0f}s after upstream rate limit")

    def status(self) -> Dict[str, Any]:
        with self.mu:
            now = self.clock()
            out: Dict[str, Any] = {}
            for source, rule in self.rules.items():
                st = self._roll(source, now)
                out[source] = {
                    "used": st.count,
                    "limit": rule.limit,
                    "window_s": rule.window_s,
                    "resets_in_s": round(max(0.0, st.window_start + rule.window_s - now), 1) if st.count else 0.0,
                    "throttled": now < st.blocked_until,
                }
            return out
