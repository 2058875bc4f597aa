"""
Metrics collection for Relocalization Service
Simple metrics without external dependencies
"""

import time
import logging
import threading
from typing import Dict, Any
from datetime import datetime

logger = logging.getLogger(__name__)


class SimpleMetrics:
    """Simple metrics collector for the relocalization service"""

    def __init__(self):
        self.counters = {}
        self.gauges = {}
        self.summaries = {}
        self.start_time = time.time()
        self._lock = threading.Lock()

    def increment_counter(self, name: str, value: int = 1):
        """Increment a counter metric"""
        with self._lock:
            self.counters[name] = self.counters.get(name, 0) + value

    def set_gauge(self, name: str, value: float):
        """Set a gauge metric value"""
        with self._lock:
            self.gauges[name] = value

    def observe(self, name: str, value: float):
        """Track count, mean and max of an observed value"""
        with self._lock:
            summary = self.summaries.setdefault(name, {'count': 0, 'sum': 0.0, 'max': 0.0})
            summary['count'] += 1
            summary['sum'] += value
            summary['max'] = max(summary['max'], value)

    def get_metrics(self) -> Dict[str, Any]:
        """Get all metrics"""
        with self._lock:
            return {
                'counters': dict(self.counters),
                'gauges': dict(self.gauges),
                'summaries': {
                    name: dict(s, mean=s['sum'] / s['count']) for name, s in self.summaries.items()
                },
                'uptime_seconds': time.time() - self.start_time,
                'timestamp': datetime.utcnow().isoformat()
            }

    def reset(self):
        """Clear all counters and gauges"""
        with self._lock:
            self.counters.clear()
            self.gauges.clear()
            self.summaries.clear()


# Global metrics instance
metrics = SimpleMetrics()


def setup_metrics():
    """Setup metrics collection"""
    logger.info("📊 Relocalization Service metrics initialized")
    return metrics
