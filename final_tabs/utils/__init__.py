"""
Utility modules for Final Tabs.

Structured logging and OpenTelemetry metrics shared by every stage.
"""

from .logger import FinalTabsLogger, final_tabs_logger, get_logger
from .metrics import FinalTabsMetrics, final_tabs_metrics, get_metrics

__all__ = [
    "get_logger",
    "final_tabs_logger",
    "FinalTabsLogger",
    "get_metrics",
    "final_tabs_metrics",
    "FinalTabsMetrics",
]
