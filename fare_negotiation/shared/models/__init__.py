# fare_negotiation/shared/models/__init__.py
"""
Общие модели ответов API.
"""

from fare_negotiation.shared.models.common import ErrorResponse, HealthStatus

__all__ = ["ErrorResponse", "HealthStatus"]
