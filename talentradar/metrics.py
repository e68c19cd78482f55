"""Fetch metrics shared by every session of an engine."""
import time
import threading
from typing import Dict, Any, Optional
from dataclasses import dataclass, field
from collections import defaultdict
import logging

logger = logging.getLogger(__name__)


@dataclass
class MetricsCollector:
    """Collects request counts, load times and failure breakdowns.

    Counters only grow; averages and rates are derived on read. All updates
    happen under a lock so worker threads can record attempts too.
    """

    total_requests: int = 0
    total_load_time: float = 0.0
    successful_requests: int = 0

    failures_by_site: Dict[str, int] = field(default_factory=lambda: defaultdict(int))
    failures_by_type: Dict[str, int] = field(default_factory=lambda: defaultdict(int))
    blocked_by_site: Dict[str, int] = field(default_factory=lambda: defaultdict(int))

    start_time: float = field(default_factory=time.time)
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False, compare=False)

    def record_attempt(self, load_time: float, success: bool, site: Optional[str] = None,
                       error_type: Optional[str] = None) -> None:
        """Record one fetch attempt.

        Args:
            load_time: Elapsed time in milliseconds
            success: Whether the fetch succeeded
            site: Site the fetch belonged to
            error_type: Failure category for unsuccessful fetches
        """
        with self._lock:
            self.total_requests += 1
            self.total_load_time += max(load_time, 0.0)
            if success:
                self.successful_requests += 1
            else:
                if site:
                    self.failures_by_site[site] += 1
                self.failures_by_type[error_type or "generic"] += 1

    def record_blocked(self, site: str) -> None:
        """Record a 403/429 response for a site."""
        with self._lock:
            self.blocked_by_site[site] += 1

    def average_load_time(self) -> float:
        with self._lock:
            if self.total_requests == 0:
                return 0.0
            return self.total_load_time / self.total_requests

    def success_rate(self) -> float:
        """Fraction of successful requests, 0.0 when nothing was recorded."""
        with self._lock:
            if self.total_requests == 0:
                return 0.0
            rate = self.successful_requests / self.total_requests
        return min(max(rate, 0.0), 1.0)

    def uptime(self) -> float:
        return time.time() - self.start_time

    def snapshot(self) -> Dict[str, Any]:
        """Copy of all counters for reporting."""
        average = self.average_load_time()
        rate = self.success_rate()
        with self._lock:
            return {
                "total_requests": self.total_requests,
                "successful_requests": self.successful_requests,
                "failed_requests": self.total_requests - self.successful_requests,
                "total_load_time_ms": self.total_load_time,
                "average_load_time_ms": average,
                "success_rate": rate,
                "failures_by_site": dict(self.failures_by_site),
                "failures_by_type": dict(self.failures_by_type),
                "blocked_by_site": dict(self.blocked_by_site),
                "uptime_seconds": self.uptime(),
            }

    def reset(self) -> None:
        with self._lock:
            self.total_requests = 0
            self.total_load_time = 0.0
            self.successful_requests = 0
            self.failures_by_site.clear()
            self.failures_by_type.clear()
            self.blocked_by_site.clear()
            self.start_time = time.time()
        logger.info("Metrics reset")
