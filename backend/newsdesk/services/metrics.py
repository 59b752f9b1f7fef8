"""
Cleanup Metrics Collector
Tracks cleanup pass counts, rows removed and pass durations.
"""
import time
import logging
from typing import Dict, List
from dataclasses import dataclass, field
from collections import deque
from datetime import datetime, timezone
import statistics

from newsdesk.models.database import utcnow

logger = logging.getLogger(__name__)


@dataclass
class PassMetrics:
    """Metrics for a single cleanup pass"""
    trigger: str
    status: str
    timestamp: float = field(default_factory=time.time)
    duration_ms: float = 0
    rows_removed: int = 0
    rows_by_store: Dict[str, int] = field(default_factory=dict)
    error_message: str = ""


class CleanupMetrics:
    """Collects and aggregates metrics for cleanup passes"""

    def __init__(self, max_history: int = 500):
        self.max_history = max_history
        self.history: deque[PassMetrics] = deque(maxlen=max_history)

        # Counters
        self.total_passes = 0
        self.successful_passes = 0
        self.failed_passes = 0
        self.skipped_passes = 0
        self.rows_removed = 0
        self.rows_removed_by_store: Dict[str, int] = {}

    def record_pass(self, result):
        """Record a CleanupResult"""
        if result.skipped:
            self.skipped_passes += 1
            return

        rows_by_store = {
            "admin_sessions": result.admin_sessions,
            "public_sessions": result.public_sessions,
            "user_sessions": result.user_sessions,
            "geo_sessions": result.geo_sessions,
        }
        metrics = PassMetrics(
            trigger=result.trigger,
            status=result.status,
            duration_ms=result.duration_ms,
            rows_removed=result.total_removed,
            rows_by_store=rows_by_store,
            error_message=result.error or "",
        )

        self.total_passes += 1
        if result.success:
            self.successful_passes += 1
            self.rows_removed += result.total_removed
            for store, count in rows_by_store.items():
                self.rows_removed_by_store[store] = self.rows_removed_by_store.get(store, 0) + count
        else:
            self.failed_passes += 1

        self.history.append(metrics)
        logger.debug(
            f"📊 Cleanup pass recorded: {result.trigger} {result.status} | "
            f"removed={result.total_removed}, duration={result.duration_ms}ms"
        )

    def get_percentile(self, values: List[float], percentile: float) -> float:
        """Calculate percentile from a list of values"""
        if not values:
            return 0.0
        sorted_values = sorted(values)
        index = int(len(sorted_values) * percentile / 100)
        return sorted_values[min(index, len(sorted_values) - 1)]

    def get_stats(self, last_n: int = 100) -> Dict:
        """Get aggregated statistics"""
        recent = list(self.history)[-last_n:]
        durations = [m.duration_ms for m in recent]

        if durations:
            duration_stats = {
                "p50": round(self.get_percentile(durations, 50), 1),
                "p95": round(self.get_percentile(durations, 95), 1),
                "max": round(max(durations), 1),
                "avg": round(statistics.mean(durations), 1),
            }
        else:
            duration_stats = {"p50": 0, "p95": 0, "max": 0, "avg": 0}

        return {
            "total_passes": self.total_passes,
            "successful_passes": self.successful_passes,
            "failed_passes": self.failed_passes,
            "skipped_passes": self.skipped_passes,
            "failure_rate": round(self.failed_passes / max(self.total_passes, 1) * 100, 2),
            "rows_removed": self.rows_removed,
            "rows_removed_by_store": dict(self.rows_removed_by_store),
            "duration_ms": duration_stats,
            "timestamp": utcnow().isoformat()
        }

    def get_recent_passes(self, limit: int = 10) -> List[Dict]:
        """Get recent pass details"""
        recent = list(self.history)[-limit:]
        return [
            {
                "trigger": m.trigger,
                "status": m.status,
                "timestamp": datetime.fromtimestamp(m.timestamp, timezone.utc).strftime("%H:%M:%S"),
                "duration_ms": round(m.duration_ms),
                "rows_removed": m.rows_removed,
                "error": m.error_message or None,
            }
            for m in reversed(recent)
        ]
