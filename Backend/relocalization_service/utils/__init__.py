"""
Shared utilities for the relocalization service
"""

from .config import settings, Settings, get_settings
from .metrics import metrics, SimpleMetrics, setup_metrics

__all__ = ['settings', 'Settings', 'get_settings', 'metrics', 'SimpleMetrics', 'setup_metrics']
