# fare_negotiation/worker/__init__.py
"""
Фоновые воркеры сервиса торга.
"""

from fare_negotiation.worker.base import BaseWorker
from fare_negotiation.worker.expiry import ExpirySweeper

__all__ = ["BaseWorker", "ExpirySweeper"]
