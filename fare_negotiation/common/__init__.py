# fare_negotiation/common/__init__.py
"""
Общие утилиты, константы, часы и логгер.
"""

from fare_negotiation.common.logger import get_logger, log_info, log_error, log_warning, log_debug
from fare_negotiation.common.constants import TypeMsg
from fare_negotiation.common.clock import Clock, SystemClock, ManualClock

__all__ = [
    "get_logger",
    "log_info",
    "log_error",
    "log_warning",
    "log_debug",
    "TypeMsg",
    "Clock",
    "SystemClock",
    "ManualClock",
]
