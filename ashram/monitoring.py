# ashram/monitoring.py
import os
import platform
import resource
import threading
import time
from collections import Counter, deque
from datetime import datetime, timedelta
from typing import Any, Deque, Dict, Optional

from fastapi import Request

from .config import get_settings
from .timeutils import utcnow

PROCESS_STARTED_AT = utcnow()


class PerformanceMonitor:
    """In-process ring buffer of recent request timings."""

    def __init__(self, max_entries: int, slow_request_ms: int):
        self.slow_request_ms = slow_request_ms
        self._records: Deque[Dict[str, Any]] = deque(maxlen=max_entries)
        self._lock = threading.Lock()

    def record(self, method: str, path: str, status_code: int, duration_ms: float,
               timestamp: Optional[datetime] = None) -> None:
        with self._lock:
            self._records.append({
                "method": method,
                "path": path,
                "status": status_code,
                "duration_ms": duration_ms,
                "timestamp": timestamp or utcnow(),
            })

    def clear(self) -> None:
        with self._lock:
            self._records.clear()

    def summary(self, minutes: int = 15, now: Optional[datetime] = None) -> Dict[str, Any]:
        cutoff = (now or utcnow()) - timedelta(minutes=minutes)
        with self._lock:
            records = [r for r in self._records if r["timestamp"] >= cutoff]

        total = len(records)
        if not total:
            return {
                "totalRequests": 0,
                "averageResponseTime": 0,
                "errorRate": 0,
                "slowRequests": 0,
                "topEndpoints": [],
                "windowMinutes": minutes,
            }

        errors = sum(1 for r in records if r["status"] >= 400)
        slow = sum(1 for r in records if r["duration_ms"] > self.slow_request_ms)
        counts = Counter(f"{r['method']} {r['path']}" for r in records)
        durations: Dict[str, float] = {}
        for r in records:
            key = f"{r['method']} {r['path']}"
            durations[key] = durations.get(key, 0.0) + r["duration_ms"]

        return {
            "totalRequests": total,
            "averageResponseTime": round(sum(r["duration_ms"] for r in records) / total, 2),
            "errorRate": round(errors / total * 100, 2),
            "slowRequests": slow,
            "topEndpoints": [
                {"endpoint": key, "count": count, "averageResponseTime": round(durations[key] / count, 2)}
                for key, count in counts.most_common(10)
            ],
            "windowMinutes": minutes,
        }


def system_snapshot() -> Dict[str, Any]:
    settings = get_settings()
    return {
        "uptimeSeconds": int((utcnow() - PROCESS_STARTED_AT).total_seconds()),
        "pid": os.getpid(),
        "pythonVersion": platform.python_version(),
        "platform": platform.platform(),
        "threads": threading.active_count(),
        "maxRssKb": resource.getrusage(resource.RUSAGE_SELF).ru_maxrss,
        "environment": settings.environment,
        "version": settings.app_version,
    }


_settings = get_settings()
performance_monitor = PerformanceMonitor(_settings.metrics_buffer_size, _settings.slow_request_ms)


async def timing_middleware(request: Request, call_next):
    started = time.perf_counter()
    response = await call_next(request)
    duration_ms = (time.perf_counter() - started) * 1000
    route = request.scope.get("route")
    path = getattr(route, "path", request.url.path)
    performance_monitor.record(request.method, path, response.status_code, duration_ms)
    response.headers["X-Response-Time"] = f"{duration_ms:.1f}ms"
    return response
