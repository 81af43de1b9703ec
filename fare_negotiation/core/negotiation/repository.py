# fare_negotiation/core/negotiation/repository.py
"""
Репозиторий сессий торга в PostgreSQL.
Строка сессии изменяется только через CAS по version, журнал оферт только дополняется.
"""

from __future__ import annotations

from datetime import datetime
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Awaitable, Optional, TypeVar

from asyncpg import Connection, Record

from fare_negotiation.common.constants import (
    ACTIVE_STATUSES,
    BindingStatus,
    ParticipantRole,
    SessionStatus,
    TypeMsg,
)
from fare_negotiation.common.logger import log_error, log_info
from fare_negotiation.core.negotiation.errors import StoreUnavailable, VersionMismatch
from fare_negotiation.core.negotiation.models import CENT, Actor, Coordinates, Offer, Session
from fare_negotiation.infra.database import CONNECTION_ERRORS, DatabaseManager

T = TypeVar("T")

_ACTIVE = [status.value for status in ACTIVE_STATUSES]

_SESSION_COLUMNS = """
    id, rider_id, driver_id,
    pickup_lat, pickup_lng, drop_lat, drop_lng,
    ride_type_id, currency, baseline_fare, floor_fare, ceiling_fare,
    status, current_offer_id, last_originator,
    created_at, deadline_at, closed_at, closed_by, version
"""

_OFFER_COLUMNS = "id, session_id, ordinal, originator, actor_id, amount, currency, created_at"


def _money(value: float) -> Decimal:
    """Сумма для колонки NUMERIC(12,2)."""
    return Decimal(str(value)).quantize(CENT, rounding=ROUND_HALF_UP)


class SessionRepository:
    """Репозиторий сессий, оферт и участников торга."""

    def __init__(self, db: DatabaseManager) -> None:
        """
        Инициализация репозитория.

        Args:
            db: Менеджер базы данных (Dependency Injection)
        """
        self._db = db

    async def _guard(self, operation: str, call: Awaitable[T]) -> T:
        """Превращает исчерпанные повторы подключения в StoreUnavailable."""
        try:
            return await call
        except CONNECTION_ERRORS as e:
            await log_error(f"Хранилище сессий недоступно ({operation}): {e}")
            raise StoreUnavailable(operation=operation) from e

    # =========================================================================
    # ЗАПИСЬ
    # =========================================================================

    async def create(self, session: Session, offer: Offer) -> None:
        """
        Транзакционно вставляет сессию, первую оферту и привязку пассажира.
        """
        async def _work(conn: Connection) -> None:
            await conn.execute(
                f"""
                INSERT INTO negotiation_sessions ({_SESSION_COLUMNS})
                VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9, $10,
                        $11, $12, $13, $14, $15, $16, $17, $18, $19, $20)
                """,
                session.id,
                session.rider_id,
                session.driver_id,
                session.pickup.lat,
                session.pickup.lng,
                session.drop.lat,
                session.drop.lng,
                session.ride_type_id,
                session.currency,
                _money(session.baseline),
                _money(session.floor),
                _money(session.ceiling),
                session.status.value,
                session.current_offer_id,
                session.last_originator.value if session.last_originator else None,
                session.created_at,
                session.deadline_at,
                session.closed_at,
                session.closed_by,
                session.version,
            )
            await self._insert_offer(conn, offer)
            await self._upsert_participant(
                conn, session.id, session.rider_id, ParticipantRole.RIDER, BindingStatus.BOUND, session.created_at,
            )

        await self._guard("create", self._db.run_transaction(_work))
        await log_info(f"Сессия {session.id} записана", type_msg=TypeMsg.DEBUG, extra={"session_id": session.id})

    async def append_offer(
        self,
        session_id: str,
        expected_version: int,
        offer: Offer,
        new_status: SessionStatus,
        new_deadline: datetime,
        bind_driver_id: Optional[str] = None,
    ) -> int:
        """
        Дописывает оферту и переводит сессию в new_status при совпадении версии.

        Args:
            session_id: UUID сессии
            expected_version: Версия, прочитанная движком
            offer: Новая оферта (ordinal уже вычислен)
            new_status: Новый статус сессии
            new_deadline: Новый дедлайн
            bind_driver_id: Водитель, привязываемый этой же транзакцией

        Returns:
            Новая версия

        Raises:
            VersionMismatch: Сессию изменили параллельно или она уже терминальна
        """
        async def _work(conn: Connection) -> int:
            new_version = await conn.fetchval(
                """
                UPDATE negotiation_sessions
                SET status = $3,
                    deadline_at = $4,
                    current_offer_id = $5,
                    last_originator = $6,
                    driver_id = COALESCE(driver_id, $7),
                    version = version + 1
                WHERE id = $1 AND version = $2 AND status = ANY($8::text[])
                RETURNING version
                """,
                session_id,
                expected_version,
                new_status.value,
                new_deadline,
                offer.id,
                offer.originator.value,
                bind_driver_id,
                _ACTIVE,
            )
            if new_version is None:
                raise VersionMismatch(session_id, expected_version)

            await self._insert_offer(conn, offer)
            if bind_driver_id is not None:
                await self._upsert_participant(
                    conn, session_id, bind_driver_id, ParticipantRole.DRIVER, BindingStatus.BOUND, offer.created_at,
                )
            return new_version

        return await self._guard("append_offer", self._db.run_transaction(_work))

    async def terminate(
        self,
        session_id: str,
        expected_version: int,
        terminal_status: SessionStatus,
        actor_id: str,
        now: datetime,
        bind_driver_id: Optional[str] = None,
    ) -> int:
        """
        Переводит сессию в терминальный статус при совпадении версии.

        Returns:
            Новая версия

        Raises:
            VersionMismatch: Сессию изменили параллельно или она уже терминальна
        """
        async def _work(conn: Connection) -> int:
            new_version = await conn.fetchval(
                """
                UPDATE negotiation_sessions
                SET status = $3,
                    closed_at = $4,
                    closed_by = $5,
                    driver_id = COALESCE(driver_id, $6),
                    version = version + 1
                WHERE id = $1 AND version = $2 AND status = ANY($7::text[])
                RETURNING version
                """,
                session_id,
                expected_version,
                terminal_status.value,
                now,
                actor_id,
                bind_driver_id,
                _ACTIVE,
            )
            if new_version is None:
                raise VersionMismatch(session_id, expected_version)

            if bind_driver_id is not None:
                await self._upsert_participant(
                    conn, session_id, bind_driver_id, ParticipantRole.DRIVER, BindingStatus.BOUND, now,
                )
            return new_version

        return await self._guard("terminate", self._db.run_transaction(_work))

    # =========================================================================
    # ЧТЕНИЕ
    # =========================================================================

    async def load(self, session_id: str) -> Optional[tuple[Session, list[Offer]]]:
        """
        Загружает сессию и её оферты в порядке ordinal.

        Returns:
            (сессия, оферты) или None, если сессии нет
        """
        row = await self._guard(
            "load",
            self._db.fetchrow(
                f"SELECT {_SESSION_COLUMNS} FROM negotiation_sessions WHERE id = $1",
                session_id,
            ),
        )
        if row is None:
            return None

        session = self._row_to_session(row)
        rows = await self._guard(
            "load",
            self._db.fetch(
                f"""
                SELECT {_OFFER_COLUMNS}
                FROM negotiation_offers
                WHERE session_id = $1
                ORDER BY ordinal
                """,
                session_id,
            ),
        )
        offers = [self._row_to_offer(r) for r in rows]

        # Оферты читаются вторым запросом: отсекаем записанные после чтения строки сессии
        current = next((o for o in offers if o.id == session.current_offer_id), None)
        if current is not None:
            offers = [o for o in offers if o.ordinal <= current.ordinal]
        return session, offers

    async def scan_expiring(self, before: datetime, limit: int = 500) -> list[str]:
        """ID нетерминальных сессий с deadline_at <= before, старые первыми."""
        rows = await self._guard(
            "scan_expiring",
            self._db.fetch(
                """
                SELECT id
                FROM negotiation_sessions
                WHERE status = ANY($1::text[]) AND deadline_at <= $2
                ORDER BY deadline_at
                LIMIT $3
                """,
                _ACTIVE,
                before,
                limit,
            ),
        )
        return [str(r["id"]) for r in rows]

    async def list_active_ids(self, actor: Actor) -> list[str]:
        """Нетерминальные сессии пассажира (свои) или водителя (привязанные)."""
        column = "rider_id" if actor.is_rider else "driver_id"
        rows = await self._guard(
            "list_active_ids",
            self._db.fetch(
                f"""
                SELECT id
                FROM negotiation_sessions
                WHERE {column} = $1 AND status = ANY($2::text[])
                ORDER BY created_at DESC
                """,
                actor.id,
                _ACTIVE,
            ),
        )
        return [str(r["id"]) for r in rows]

    async def count_active_for_rider(self, rider_id: str) -> int:
        value = await self._guard(
            "count_active_for_rider",
            self._db.fetchval(
                "SELECT COUNT(*) FROM negotiation_sessions WHERE rider_id = $1 AND status = ANY($2::text[])",
                rider_id,
                _ACTIVE,
            ),
        )
        return int(value or 0)

    async def count_active_for_driver(self, driver_id: str) -> int:
        value = await self._guard(
            "count_active_for_driver",
            self._db.fetchval(
                "SELECT COUNT(*) FROM negotiation_sessions WHERE driver_id = $1 AND status = ANY($2::text[])",
                driver_id,
                _ACTIVE,
            ),
        )
        return int(value or 0)

    # =========================================================================
    # УЧАСТНИКИ
    # =========================================================================

    async def get_participant_status(self, session_id: str, actor_id: str) -> Optional[BindingStatus]:
        """Статус привязки участника или None."""
        value = await self._guard(
            "get_participant_status",
            self._db.fetchval(
                "SELECT status FROM negotiation_participants WHERE session_id = $1 AND actor_id = $2",
                session_id,
                actor_id,
            ),
        )
        return BindingStatus(value) if value is not None else None

    async def add_participant(self, session_id: str, actor: Actor, now: datetime) -> None:
        """Записывает присоединение водителя к торгу (без привязки)."""
        await self._guard(
            "add_participant",
            self._db.execute(
                """
                INSERT INTO negotiation_participants (session_id, actor_id, role, status, bound_at)
                VALUES ($1, $2, $3, $4, $5)
                ON CONFLICT (session_id, actor_id) DO NOTHING
                """,
                session_id,
                actor.id,
                actor.role.value,
                BindingStatus.JOINED.value,
                now,
            ),
        )

    async def mark_participant_rejected(self, session_id: str, actor: Actor, now: datetime) -> None:
        """Фиксирует отказ непривязанного водителя. Привязанного не трогает."""
        await self._guard(
            "mark_participant_rejected",
            self._db.execute(
                """
                INSERT INTO negotiation_participants (session_id, actor_id, role, status, bound_at)
                VALUES ($1, $2, $3, $4, $5)
                ON CONFLICT (session_id, actor_id) DO UPDATE
                SET status = EXCLUDED.status, bound_at = EXCLUDED.bound_at
                WHERE negotiation_participants.status <> $6
                """,
                session_id,
                actor.id,
                actor.role.value,
                BindingStatus.REJECTED.value,
                now,
                BindingStatus.BOUND.value,
            ),
        )

    # =========================================================================
    # ВСПОМОГАТЕЛЬНЫЕ
    # =========================================================================

    @staticmethod
    async def _insert_offer(conn: Connection, offer: Offer) -> None:
        await conn.execute(
            f"""
            INSERT INTO negotiation_offers ({_OFFER_COLUMNS})
            VALUES ($1, $2, $3, $4, $5, $6, $7, $8)
            """,
            offer.id,
            offer.session_id,
            offer.ordinal,
            offer.originator.value,
            offer.actor_id,
            _money(offer.amount),
            offer.currency,
            offer.created_at,
        )

    @staticmethod
    async def _upsert_participant(
        conn: Connection,
        session_id: str,
        actor_id: str,
        role: ParticipantRole,
        status: BindingStatus,
        now: datetime,
    ) -> None:
        await conn.execute(
            """
            INSERT INTO negotiation_participants (session_id, actor_id, role, status, bound_at)
            VALUES ($1, $2, $3, $4, $5)
            ON CONFLICT (session_id, actor_id) DO UPDATE
            SET status = EXCLUDED.status, bound_at = EXCLUDED.bound_at
            """,
            session_id,
            actor_id,
            role.value,
            status.value,
            now,
        )

    def _row_to_session(self, row: Record | dict[str, Any]) -> Session:
        """Конвертирует строку БД в модель Session."""
        return Session(
            id=str(row["id"]),
            rider_id=row["rider_id"],
            driver_id=row["driver_id"],
            pickup=Coordinates(lat=row["pickup_lat"], lng=row["pickup_lng"]),
            drop=Coordinates(lat=row["drop_lat"], lng=row["drop_lng"]),
            ride_type_id=row["ride_type_id"],
            currency=row["currency"],
            baseline=float(row["baseline_fare"]),
            floor=float(row["floor_fare"]),
            ceiling=float(row["ceiling_fare"]),
            status=SessionStatus(row["status"]),
            current_offer_id=str(row["current_offer_id"]) if row["current_offer_id"] else None,
            last_originator=ParticipantRole(row["last_originator"]) if row["last_originator"] else None,
            created_at=row["created_at"],
            deadline_at=row["deadline_at"],
            closed_at=row["closed_at"],
            closed_by=row["closed_by"],
            version=row["version"],
        )

    def _row_to_offer(self, row: Record | dict[str, Any]) -> Offer:
        """Конвертирует строку БД в модель Offer."""
        return Offer(
            id=str(row["id"]),
            session_id=str(row["session_id"]),
            ordinal=row["ordinal"],
            originator=ParticipantRole(row["originator"]),
            actor_id=row["actor_id"],
            amount=float(row["amount"]),
            currency=row["currency"],
            created_at=row["created_at"],
        )
