# fare_negotiation/core/negotiation/engine.py
"""
Движок торга о стоимости поездки.

Единственный писатель сессий и оферт. Изменения одной сессии сериализуются
оптимистичной блокировкой по version: прочитать, проверить, UPDATE ... WHERE version = v.
После коммита снапшот пишется в кэш, событие уходит в push-хаб и в шину;
сбои этих шагов только логируются и не откатывают переход.
"""

from __future__ import annotations

import asyncio
import math
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Awaitable, Callable, Optional, Protocol, TypeVar

from fare_negotiation.common.clock import Clock, SystemClock
from fare_negotiation.common.constants import (
    SYSTEM_ACTOR_ID,
    BindingStatus,
    ParticipantRole,
    SessionEventType,
    SessionStatus,
    TypeMsg,
)
from fare_negotiation.common.logger import log_error, log_info, log_warning
from fare_negotiation.core.negotiation.cache import SnapshotCache
from fare_negotiation.core.negotiation.errors import (
    ActiveSessionExists,
    AlternationViolation,
    Conflict,
    CurrencyMismatch,
    DeadlineExceeded,
    DriverAlreadyBound,
    DriverLimitExceeded,
    InvalidGeography,
    NegotiationError,
    NotParticipant,
    OutOfPolicyAmount,
    PricingUnavailable,
    SelfAcceptance,
    SessionExpired,
    SessionNotFound,
    VersionMismatch,
)
from fare_negotiation.core.negotiation.events import NegotiationEvent
from fare_negotiation.core.negotiation.models import (
    Actor,
    Coordinates,
    Offer,
    Session,
    SessionSnapshot,
    SessionView,
    round_amount,
)
from fare_negotiation.core.negotiation.participants import ParticipantGuard, terminal_error
from fare_negotiation.core.negotiation.pricing import PricingOracle
from fare_negotiation.core.negotiation.repository import SessionRepository
from fare_negotiation.core.negotiation.state_machine import SessionStateMachine

T = TypeVar("T")


class EventPublisher(Protocol):
    """Шина событий (RabbitMQ)."""

    async def publish(self, event: Any) -> bool:
        ...


class SessionPush(Protocol):
    """Доставка кадров подписчикам сессии (локальный хаб или ретранслятор)."""

    async def publish(self, session_id: str, frame: dict[str, Any]) -> int:
        ...

    async def close(self, session_id: str) -> None:
        ...

    async def remove_actor(self, session_id: str, actor_id: str) -> int:
        ...


@dataclass(frozen=True)
class NegotiationPolicy:
    """Политика торга."""

    default_ttl_seconds: int = 120
    deadline_increment_seconds: int = 30
    max_lifetime_seconds: int = 600
    max_cas_retries: int = 3
    request_timeout_seconds: float = 5.0
    event_publish_timeout_seconds: float = 5.0
    sweep_batch_size: int = 500
    one_active_session_per_rider: bool = False
    max_active_sessions_per_driver: int = 0

    @classmethod
    def from_settings(cls, cfg: Any) -> "NegotiationPolicy":
        """Из секции negotiation конфигурации."""
        return cls(
            default_ttl_seconds=cfg.NEGOTIATION_DEFAULT_TTL_SECONDS,
            deadline_increment_seconds=cfg.NEGOTIATION_DEADLINE_INCREMENT_SECONDS,
            max_lifetime_seconds=cfg.NEGOTIATION_MAX_LIFETIME_SECONDS,
            max_cas_retries=cfg.NEGOTIATION_MAX_CAS_RETRIES,
            request_timeout_seconds=cfg.NEGOTIATION_REQUEST_TIMEOUT_SECONDS,
            event_publish_timeout_seconds=cfg.NEGOTIATION_EVENT_PUBLISH_TIMEOUT_SECONDS,
            sweep_batch_size=cfg.NEGOTIATION_SWEEP_BATCH_SIZE,
            one_active_session_per_rider=cfg.NEGOTIATION_ONE_ACTIVE_SESSION_PER_RIDER,
            max_active_sessions_per_driver=cfg.NEGOTIATION_MAX_ACTIVE_SESSIONS_PER_DRIVER,
        )


@dataclass
class _Mutation:
    """Решение, принятое по прочитанной версии сессии."""

    new_status: SessionStatus
    event_type: SessionEventType
    actor_id: str
    now: datetime
    offer: Optional[Offer] = None
    new_deadline: Optional[datetime] = None
    bind_driver_id: Optional[str] = None


@dataclass
class _AcceptState:
    """Оферта, которую принимающий видел при первой попытке."""

    expected_offer_id: Optional[str] = None


Decide = Callable[[SessionView], Awaitable[Optional[_Mutation]]]


class SessionEngine:
    """Машина состояний торга поверх хранилища, кэша и push-канала."""

    def __init__(
        self,
        repository: SessionRepository,
        cache: SnapshotCache,
        pricing: PricingOracle,
        guard: ParticipantGuard,
        event_bus: EventPublisher | None = None,
        push: SessionPush | None = None,
        clock: Clock | None = None,
        policy: NegotiationPolicy | None = None,
    ) -> None:
        self._repository = repository
        self._cache = cache
        self._pricing = pricing
        self._guard = guard
        self._event_bus = event_bus
        self._push = push
        self._clock = clock or SystemClock()
        self._policy = policy or NegotiationPolicy()

    @property
    def policy(self) -> NegotiationPolicy:
        return self._policy

    def attach_push(self, push: SessionPush) -> None:
        """Подключает push-доставку после сборки хаба."""
        self._push = push

    # =========================================================================
    # ОТКРЫТИЕ ТОРГА
    # =========================================================================

    async def create(
        self,
        rider: Actor,
        pickup: Coordinates,
        drop: Coordinates,
        ride_type_id: str,
        initial_amount: float,
        currency: str | None = None,
        *,
        timeout: float | None = None,
        correlation_id: str | None = None,
    ) -> SessionView:
        """
        Открывает торг: котировка, проверка суммы, запись сессии и оферты №1.

        Args:
            rider: Пассажир
            pickup: Точка посадки
            drop: Точка высадки
            ride_type_id: Тип поездки
            initial_amount: Стартовое предложение пассажира
            currency: Ожидаемая валюта (None — валюта тарифа)
            timeout: Дедлайн операции в секундах

        Returns:
            Представление новой сессии (status=proposed, version=1)

        Raises:
            InvalidGeography, UnknownRideType, CurrencyMismatch, OutOfPolicyAmount,
            ActiveSessionExists, PricingUnavailable, StoreUnavailable, DeadlineExceeded
        """
        initial_amount = round_amount(initial_amount)

        async def _work() -> SessionView:
            if not rider.is_rider:
                raise NotParticipant("Открыть торг может только пассажир")
            self._validate_geography(pickup, drop)

            if self._policy.one_active_session_per_rider:
                if await self._repository.count_active_for_rider(rider.id) > 0:
                    raise ActiveSessionExists(rider_id=rider.id)

            try:
                quote = await self._pricing.quote(pickup, drop, ride_type_id)
            except NegotiationError:
                raise
            except Exception as e:
                await log_error(f"Сбой сервиса ценообразования: {e}")
                raise PricingUnavailable() from e

            if currency is not None and currency.upper() != quote.currency:
                raise CurrencyMismatch(expected=quote.currency, received=currency.upper())
            self._check_bounds(initial_amount, round_amount(quote.floor), round_amount(quote.ceiling))

            now = self._clock.now()
            ttl = min(quote.ttl_seconds or self._policy.default_ttl_seconds, self._policy.max_lifetime_seconds)
            session = Session(
                rider_id=rider.id,
                pickup=pickup,
                drop=drop,
                ride_type_id=ride_type_id,
                currency=quote.currency,
                baseline=round_amount(quote.baseline),
                floor=round_amount(quote.floor),
                ceiling=round_amount(quote.ceiling),
                status=SessionStatus.PROPOSED,
                last_originator=ParticipantRole.RIDER,
                created_at=now,
                deadline_at=now + timedelta(seconds=ttl),
                version=1,
            )
            offer = Offer(
                session_id=session.id,
                ordinal=1,
                originator=ParticipantRole.RIDER,
                actor_id=rider.id,
                amount=initial_amount,
                currency=quote.currency,
                created_at=now,
            )
            session.current_offer_id = offer.id

            await self._repository.create(session, offer)
            return SessionView.from_session(session, [offer])

        view = await self._bounded(_work(), timeout)
        await log_info(
            f"Торг {view.id} открыт: {initial_amount} {view.currency} [{view.floor}; {view.ceiling}]",
            type_msg=TypeMsg.INFO,
            extra={"session_id": view.id, "request_id": correlation_id},
        )
        await self._after_commit(view, SessionEventType.CREATED, correlation_id)
        return view

    # =========================================================================
    # ХОДЫ УЧАСТНИКОВ
    # =========================================================================

    async def counter(
        self,
        session_id: str,
        actor: Actor,
        amount: float,
        *,
        timeout: float | None = None,
        correlation_id: str | None = None,
    ) -> SessionView:
        """
        Встречное предложение. Непривязанный водитель привязывается этой же записью.

        Raises:
            SessionTerminal, SessionExpired, NotParticipant, AlternationViolation,
            OutOfPolicyAmount, DriverLimitExceeded, Conflict
        """
        amount = round_amount(amount)

        async def _decide(view: SessionView) -> _Mutation:
            if view.is_terminal:
                raise terminal_error(view.status)
            await self._authorize_actor(view, actor, other_driver_error=NotParticipant)

            now = self._clock.now()
            if now >= view.deadline_at:
                raise SessionExpired(session_id=view.id)
            self._check_bounds(amount, view.floor, view.ceiling)
            if view.last_originator == actor.role:
                raise AlternationViolation(session_id=view.id, last_originator=actor.role.value)

            bind = await self._binding_for(view, actor)
            ordinal = view.current_offer.ordinal + 1 if view.current_offer else len(view.offers) + 1
            lifetime_cap = view.created_at + timedelta(seconds=self._policy.max_lifetime_seconds)
            new_deadline = min(
                view.deadline_at + timedelta(seconds=self._policy.deadline_increment_seconds),
                lifetime_cap,
            )
            offer = Offer(
                session_id=view.id,
                ordinal=ordinal,
                originator=actor.role,
                actor_id=actor.id,
                amount=amount,
                currency=view.currency,
                created_at=now,
            )
            return _Mutation(
                new_status=SessionStatus.COUNTERED,
                event_type=SessionEventType.COUNTERED,
                actor_id=actor.id,
                now=now,
                offer=offer,
                new_deadline=new_deadline,
                bind_driver_id=bind,
            )

        return await self._transition(session_id, _decide, timeout, correlation_id)

    async def accept(
        self,
        session_id: str,
        actor: Actor,
        *,
        timeout: float | None = None,
        correlation_id: str | None = None,
    ) -> SessionView:
        """
        Принятие текущей оферты другой стороны.
        Если текущая оферта сменилась между попытками, возвращается Conflict.

        Raises:
            SessionTerminal, SessionExpired, SelfAcceptance, NotParticipant,
            DriverAlreadyBound, DriverLimitExceeded, Conflict
        """
        state = _AcceptState()

        async def _decide(view: SessionView) -> _Mutation:
            if (
                view.status is SessionStatus.ACCEPTED
                and actor.is_driver
                and view.driver_id is not None
                and view.driver_id != actor.id
            ):
                raise DriverAlreadyBound(session_id=view.id)
            if view.is_terminal:
                raise terminal_error(view.status)
            await self._authorize_actor(view, actor, other_driver_error=DriverAlreadyBound)

            now = self._clock.now()
            if now >= view.deadline_at:
                raise SessionExpired(session_id=view.id)
            if view.last_originator == actor.role:
                raise SelfAcceptance(session_id=view.id)

            if state.expected_offer_id is None:
                state.expected_offer_id = view.current_offer_id
            elif state.expected_offer_id != view.current_offer_id:
                raise Conflict(
                    "Текущая оферта изменилась, перечитайте сессию",
                    session_id=view.id,
                    version=view.version,
                )

            bind = await self._binding_for(view, actor)
            return _Mutation(
                new_status=SessionStatus.ACCEPTED,
                event_type=SessionEventType.ACCEPTED,
                actor_id=actor.id,
                now=now,
                bind_driver_id=bind,
            )

        return await self._transition(session_id, _decide, timeout, correlation_id)

    async def withdraw(
        self,
        session_id: str,
        actor: Actor,
        *,
        timeout: float | None = None,
        correlation_id: str | None = None,
    ) -> SessionView:
        """Пассажир отзывает торг. Raises: NotParticipant, SessionTerminal, SessionExpired."""
        async def _decide(view: SessionView) -> _Mutation:
            if not actor.is_rider or view.rider_id != actor.id:
                raise NotParticipant("Отозвать торг может только его пассажир", session_id=view.id)
            if view.is_terminal:
                raise terminal_error(view.status)
            now = self._clock.now()
            if now >= view.deadline_at:
                raise SessionExpired(session_id=view.id)
            return _Mutation(
                new_status=SessionStatus.WITHDRAWN,
                event_type=SessionEventType.WITHDRAWN,
                actor_id=actor.id,
                now=now,
            )

        return await self._transition(session_id, _decide, timeout, correlation_id)

    async def reject(
        self,
        session_id: str,
        actor: Actor,
        *,
        timeout: float | None = None,
        correlation_id: str | None = None,
    ) -> SessionView:
        """
        Отказ водителя.
        Привязанный водитель завершает торг статусом rejected.
        Непривязанный только выходит из торга: запись об отказе, отписка от push,
        версия сессии не меняется.
        """
        async def _work() -> Optional[SessionView]:
            view = await self._load_view(session_id)
            if not actor.is_driver:
                raise NotParticipant("Отказаться от торга может только водитель", session_id=view.id)
            if view.is_terminal:
                raise terminal_error(view.status)
            if view.driver_id is not None:
                if view.driver_id != actor.id:
                    raise NotParticipant(session_id=view.id)
                return None

            status = await self._repository.get_participant_status(view.id, actor.id)
            if status is not BindingStatus.REJECTED:
                await self._repository.mark_participant_rejected(view.id, actor, self._clock.now())
            return view

        unbound_view = await self._bounded(_work(), timeout, session_id)
        if unbound_view is not None:
            await log_info(
                f"Водитель {actor.id} вышел из торга {session_id}",
                extra={"session_id": session_id, "request_id": correlation_id},
            )
            await self._push_remove_actor(session_id, actor.id)
            return unbound_view

        async def _decide(view: SessionView) -> _Mutation:
            if view.is_terminal:
                raise terminal_error(view.status)
            if view.driver_id != actor.id:
                raise NotParticipant(session_id=view.id)
            now = self._clock.now()
            if now >= view.deadline_at:
                raise SessionExpired(session_id=view.id)
            return _Mutation(
                new_status=SessionStatus.REJECTED,
                event_type=SessionEventType.REJECTED,
                actor_id=actor.id,
                now=now,
            )

        return await self._transition(session_id, _decide, timeout, correlation_id)

    # =========================================================================
    # ЧТЕНИЕ
    # =========================================================================

    async def get(self, session_id: str, actor: Actor, *, timeout: float | None = None) -> SessionView:
        """Сессия с полной историей оферт. Raises: SessionNotFound, NotParticipant."""
        async def _work() -> SessionView:
            view = await self._load_view(session_id)
            await self._guard.authorize_view(view, actor)
            return view

        return await self._bounded(_work(), timeout)

    async def snapshot(self, session_id: str, actor: Actor, *, timeout: float | None = None) -> SessionSnapshot:
        """Компактное состояние из кэша (при промахе — из хранилища)."""
        async def _work() -> SessionSnapshot:
            snap = await self._guard.load_snapshot(session_id)
            if snap is None:
                raise SessionNotFound(session_id=session_id)
            await self._guard.authorize_view(snap, actor)
            return snap

        return await self._bounded(_work(), timeout)

    async def list_active(self, actor: Actor, *, timeout: float | None = None) -> list[SessionView]:
        """Нетерминальные сессии пассажира или привязанного водителя."""
        async def _work() -> list[SessionView]:
            views = []
            for session_id in await self._repository.list_active_ids(actor):
                loaded = await self._repository.load(session_id)
                if loaded is None:
                    continue
                view = SessionView.from_session(*loaded)
                if not view.is_terminal:
                    views.append(view)
            return views

        return await self._bounded(_work(), timeout)

    # =========================================================================
    # ИСТЕЧЕНИЕ
    # =========================================================================

    async def expire_session(self, session_id: str, now: datetime | None = None) -> bool:
        """
        Переводит одну сессию в expired, если её дедлайн наступил.

        Returns:
            True если переход выполнен; False если сессия уже терминальна
            или её дедлайн сдвинулся
        """
        moment = now or self._clock.now()

        async def _decide(view: SessionView) -> Optional[_Mutation]:
            if view.is_terminal or moment < view.deadline_at:
                return None
            return _Mutation(
                new_status=SessionStatus.EXPIRED,
                event_type=SessionEventType.EXPIRED,
                actor_id=SYSTEM_ACTOR_ID,
                now=moment,
            )

        view, event_type = await self._bounded(self._run_cas(session_id, _decide), None, session_id)
        if event_type is None:
            return False
        await self._after_commit(view, event_type, None)
        return True

    async def sweep_expired(self, now: datetime | None = None) -> int:
        """
        Переводит в expired все нетерминальные сессии с deadline_at <= now.
        Идемпотентна: повторный вызов не находит уже истёкших.

        Returns:
            Количество сессий, переведённых этим вызовом
        """
        moment = now or self._clock.now()
        batch = self._policy.sweep_batch_size
        expired = 0

        while True:
            session_ids = await self._repository.scan_expiring(moment, batch)
            progressed = 0
            for session_id in session_ids:
                try:
                    if await self.expire_session(session_id, moment):
                        progressed += 1
                except NegotiationError as e:
                    await log_error(
                        f"Не удалось завершить истёкший торг {session_id}: {e.code} {e.message}",
                        extra={"session_id": session_id},
                    )
            expired += progressed
            if len(session_ids) < batch or progressed == 0:
                break

        if expired:
            await log_info(f"Истекло сессий торга: {expired}", type_msg=TypeMsg.INFO)
        return expired

    # =========================================================================
    # ВНУТРЕННЕЕ
    # =========================================================================

    async def _transition(
        self,
        session_id: str,
        decide: Decide,
        timeout: float | None,
        correlation_id: str | None,
    ) -> SessionView:
        view, event_type = await self._bounded(self._run_cas(session_id, decide), timeout, session_id)
        if event_type is not None:
            await log_info(
                f"Торг {view.id}: {event_type.value}, v{view.version}",
                extra={"session_id": view.id, "request_id": correlation_id},
            )
            await self._after_commit(view, event_type, correlation_id)
        return view

    async def _run_cas(
        self,
        session_id: str,
        decide: Callable[[SessionView], Awaitable[Optional[_Mutation]]],
    ) -> tuple[SessionView, Optional[SessionEventType]]:
        """
        Цикл CAS: прочитать, решить, записать с WHERE version = v.
        При несовпадении версии перечитывает сессию, после исчерпания попыток — Conflict.
        """
        attempts = self._policy.max_cas_retries + 1
        for attempt in range(1, attempts + 1):
            view = await self._load_view(session_id)
            mutation = await decide(view)
            if mutation is None:
                return view, None

            SessionStateMachine.validate_transition(view.status, mutation.new_status)
            try:
                new_version = await self._apply(view, mutation)
            except VersionMismatch:
                await log_warning(
                    f"Торг {session_id}: версия {view.version} устарела (попытка {attempt}/{attempts})",
                    extra={"session_id": session_id},
                )
                continue
            return self._advance(view, mutation, new_version), mutation.event_type

        raise Conflict(session_id=session_id)

    async def _apply(self, view: SessionView, mutation: _Mutation) -> int:
        if mutation.offer is not None:
            return await self._repository.append_offer(
                view.id,
                view.version,
                mutation.offer,
                mutation.new_status,
                mutation.new_deadline or view.deadline_at,
                bind_driver_id=mutation.bind_driver_id,
            )
        return await self._repository.terminate(
            view.id,
            view.version,
            mutation.new_status,
            mutation.actor_id,
            mutation.now,
            bind_driver_id=mutation.bind_driver_id,
        )

    @staticmethod
    def _advance(view: SessionView, mutation: _Mutation, new_version: int) -> SessionView:
        """Состояние после коммита без повторного чтения."""
        update: dict[str, Any] = {
            "status": mutation.new_status,
            "driver_id": view.driver_id or mutation.bind_driver_id,
            "version": new_version,
        }
        if mutation.offer is not None:
            update.update(
                deadline_at=mutation.new_deadline or view.deadline_at,
                current_offer_id=mutation.offer.id,
                last_originator=mutation.offer.originator,
                offers=[*view.offers, mutation.offer],
                current_offer=mutation.offer,
            )
        else:
            update.update(closed_at=mutation.now, closed_by=mutation.actor_id)
        return view.model_copy(update=update)

    async def _load_view(self, session_id: str) -> SessionView:
        loaded = await self._repository.load(session_id)
        if loaded is None:
            raise SessionNotFound(session_id=session_id)
        session, offers = loaded
        return SessionView.from_session(session, offers)

    async def _authorize_actor(
        self,
        view: SessionView,
        actor: Actor,
        other_driver_error: type[NegotiationError],
    ) -> None:
        """Участник может делать ход; для чужого привязанного водителя — other_driver_error."""
        if actor.is_rider:
            if view.rider_id != actor.id:
                raise NotParticipant(session_id=view.id)
            return
        if view.driver_id is not None:
            if view.driver_id != actor.id:
                raise other_driver_error(session_id=view.id)
            return
        status = await self._repository.get_participant_status(view.id, actor.id)
        if status is BindingStatus.REJECTED:
            raise NotParticipant("Водитель отказался от этого торга", session_id=view.id)

    async def _binding_for(self, view: SessionView, actor: Actor) -> Optional[str]:
        """ID водителя, если ход привязывает его к сессии (с проверкой лимита)."""
        if not actor.is_driver or view.driver_id is not None:
            return None
        limit = self._policy.max_active_sessions_per_driver
        if limit > 0 and await self._repository.count_active_for_driver(actor.id) >= limit:
            raise DriverLimitExceeded(driver_id=actor.id, limit=limit)
        return actor.id

    @staticmethod
    def _check_bounds(amount: float, floor: float, ceiling: float) -> None:
        if not math.isfinite(amount) or amount < floor or amount > ceiling:
            raise OutOfPolicyAmount(amount=amount, floor=floor, ceiling=ceiling)

    @staticmethod
    def _validate_geography(pickup: Coordinates, drop: Coordinates) -> None:
        for name, point in (("pickup", pickup), ("drop", drop)):
            if not (math.isfinite(point.lat) and math.isfinite(point.lng)):
                raise InvalidGeography(point=name)
            if not (-90.0 <= point.lat <= 90.0 and -180.0 <= point.lng <= 180.0):
                raise InvalidGeography(point=name, lat=point.lat, lng=point.lng)
        if pickup.lat == drop.lat and pickup.lng == drop.lng:
            raise InvalidGeography("Точки посадки и высадки совпадают")

    async def _bounded(self, work: Awaitable[T], timeout: float | None, session_id: str | None = None) -> T:
        """
        Выполняет операцию до коммита с дедлайном.
        По истечении незавершённый вызов хранилища отменяется, снапшот сессии сбрасывается.
        """
        limit = timeout if timeout is not None else self._policy.request_timeout_seconds
        try:
            return await asyncio.wait_for(work, timeout=limit)
        except asyncio.TimeoutError as e:
            if session_id is not None:
                await self._cache.evict(session_id)
            await log_warning(
                f"Операция торга не уложилась в {limit} с",
                extra={"session_id": session_id},
            )
            raise DeadlineExceeded(timeout=limit) from e

    async def _after_commit(
        self,
        view: SessionView,
        event_type: SessionEventType,
        correlation_id: str | None,
    ) -> None:
        """Кэш, push и шина после коммита. Ошибки логируются и не пробрасываются."""
        snapshot = view.to_snapshot()
        await self._cache.put(snapshot, now_ts=self._clock.now().timestamp())

        event = NegotiationEvent.build(event_type, snapshot, correlation_id)
        extra = {"session_id": view.id, "request_id": correlation_id}

        if self._push is not None:
            try:
                await self._push.publish(view.id, event.to_frame())
                if snapshot.is_terminal:
                    await self._push.close(view.id)
            except Exception as e:
                await log_error(f"Ошибка push-доставки {event.event_type}: {e}", extra=extra)

        if self._event_bus is not None:
            try:
                published = await asyncio.wait_for(
                    self._event_bus.publish(event),
                    timeout=self._policy.event_publish_timeout_seconds,
                )
                if not published:
                    await log_warning(f"Событие {event.event_type} не опубликовано в шину", extra=extra)
            except asyncio.TimeoutError:
                await log_error(f"Таймаут публикации {event.event_type} в шину", extra=extra)
            except Exception as e:
                await log_error(f"Ошибка публикации {event.event_type} в шину: {e}", extra=extra)

    async def _push_remove_actor(self, session_id: str, actor_id: str) -> None:
        if self._push is None:
            return
        try:
            await self._push.remove_actor(session_id, actor_id)
        except Exception as e:
            await log_error(f"Ошибка отписки {actor_id} от торга {session_id}: {e}", extra={"session_id": session_id})
