# fare_negotiation/core/negotiation/errors.py
"""
Ошибки движка торга.

Каждый класс несёт машинный код (error_code), HTTP статус и категорию.
Категории определяют политику повторов:
- validation, authorization, state — не повторяются, отдаются клиенту как есть;
- concurrency — повторяются внутри движка ограниченное число раз;
- unavailable — временные, клиент может повторить запрос;
- internal — неклассифицированные, логируются с request_id.
"""

from __future__ import annotations

from typing import Any


class NegotiationError(Exception):
    """Базовая ошибка торга."""

    code: str = "internal"
    http_status: int = 500
    category: str = "internal"
    default_message: str = "Внутренняя ошибка"

    def __init__(self, message: str | None = None, **details: Any) -> None:
        self.message = message or self.default_message
        self.details = details or None
        super().__init__(self.message)

    def to_dict(self) -> dict[str, Any]:
        """Тело ответа об ошибке."""
        return {
            "error_code": self.code,
            "message": self.message,
            "details": self.details,
        }


# =============================================================================
# VALIDATION (400)
# =============================================================================

class ValidationFailure(NegotiationError):
    http_status = 400
    category = "validation"


class InvalidGeography(ValidationFailure):
    code = "invalid_geography"
    default_message = "Некорректные координаты посадки или высадки"


class OutOfPolicyAmount(ValidationFailure):
    code = "out_of_policy_amount"
    default_message = "Сумма вне допустимого диапазона"


class AlternationViolation(ValidationFailure):
    code = "alternation_violation"
    default_message = "Сейчас очередь другой стороны"


class SelfAcceptance(ValidationFailure):
    code = "self_acceptance"
    default_message = "Нельзя принять собственное предложение"


class UnknownRideType(ValidationFailure):
    code = "unknown_ride_type"
    default_message = "Неизвестный тип поездки"


class CurrencyMismatch(ValidationFailure):
    code = "currency_mismatch"
    default_message = "Валюта не совпадает с валютой тарифа"


# =============================================================================
# AUTHORIZATION (403)
# =============================================================================

class NotParticipant(NegotiationError):
    code = "not_participant"
    http_status = 403
    category = "authorization"
    default_message = "Пользователь не участвует в этом торге"


# =============================================================================
# NOT FOUND (404)
# =============================================================================

class SessionNotFound(NegotiationError):
    code = "session_not_found"
    http_status = 404
    category = "state"
    default_message = "Сессия торга не найдена"


# =============================================================================
# STATE (409 / 410)
# =============================================================================

class SessionTerminal(NegotiationError):
    code = "session_terminal"
    http_status = 410
    category = "state"
    default_message = "Торг уже завершён"


class SessionExpired(NegotiationError):
    code = "session_expired"
    http_status = 410
    category = "state"
    default_message = "Время торга истекло"


class DriverAlreadyBound(NegotiationError):
    code = "driver_already_bound"
    http_status = 409
    category = "state"
    default_message = "К торгу уже привязан другой водитель"


class ActiveSessionExists(NegotiationError):
    code = "active_session_exists"
    http_status = 409
    category = "state"
    default_message = "У пассажира уже есть активный торг"


class DriverLimitExceeded(NegotiationError):
    code = "driver_limit_exceeded"
    http_status = 409
    category = "state"
    default_message = "Водитель участвует в максимальном числе торгов"


class InvalidTransition(NegotiationError):
    """Переход, запрещённый машиной состояний (признак ошибки в движке)."""

    code = "invalid_transition"
    http_status = 500
    category = "internal"
    default_message = "Недопустимый переход статуса"


# =============================================================================
# CONCURRENCY (409)
# =============================================================================

class Conflict(NegotiationError):
    code = "conflict"
    http_status = 409
    category = "concurrency"
    default_message = "Сессия изменена параллельным запросом, перечитайте её"


class VersionMismatch(Exception):
    """
    CAS по version не прошёл.
    Внутренний сигнал хранилища движку; наружу превращается в Conflict.
    """

    def __init__(self, session_id: str, expected_version: int) -> None:
        self.session_id = session_id
        self.expected_version = expected_version
        super().__init__(f"version mismatch for {session_id}: expected {expected_version}")


# =============================================================================
# EXTERNAL UNAVAILABILITY (503 / 504)
# =============================================================================

class PricingUnavailable(NegotiationError):
    code = "pricing_unavailable"
    http_status = 503
    category = "unavailable"
    default_message = "Сервис ценообразования недоступен"


class StoreUnavailable(NegotiationError):
    code = "store_unavailable"
    http_status = 503
    category = "unavailable"
    default_message = "Хранилище сессий недоступно"


class DeadlineExceeded(NegotiationError):
    code = "deadline_exceeded"
    http_status = 504
    category = "unavailable"
    default_message = "Операция не уложилась в отведённое время"


class Internal(NegotiationError):
    code = "internal"
    http_status = 500
    category = "internal"
