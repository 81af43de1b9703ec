# fare_negotiation/services/negotiation/app.py
"""
FastAPI приложение для Negotiation Service.

Endpoints:
- POST /negotiation/sessions - открыть торг
- GET /negotiation/sessions/active - активные торги пользователя
- GET /negotiation/sessions/{id} - торг с историей оферт
- POST /negotiation/sessions/{id}/counter - встречное предложение
- POST /negotiation/sessions/{id}/accept - принять текущую оферту
- POST /negotiation/sessions/{id}/withdraw - пассажир отзывает торг
- POST /negotiation/sessions/{id}/reject - водитель отказывается
- WS /negotiation/ws?session_id=... - push-канал торга
- GET /negotiation/push/stats - статистика push-хаба

Пользователь аутентифицирован шлюзом: X-User-Id и X-User-Role (rider|driver).
"""

from __future__ import annotations

import time
from contextlib import asynccontextmanager
from typing import Annotated, Any
from uuid import uuid4

from fastapi import Depends, FastAPI, Header, HTTPException, Query, Request, WebSocket, WebSocketDisconnect
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ValidationError
from starlette.middleware.base import BaseHTTPMiddleware

from fare_negotiation import __version__
from fare_negotiation.common.constants import TypeMsg
from fare_negotiation.common.logger import log_error, log_info
from fare_negotiation.core.negotiation.engine import SessionEngine
from fare_negotiation.core.negotiation.errors import Internal, NegotiationError
from fare_negotiation.core.negotiation.models import (
    Actor,
    CounterRequest,
    CreateSessionRequest,
    SessionView,
)
from fare_negotiation.services.negotiation.dependencies import (
    cleanup_dependencies,
    get_engine,
    get_push_hub,
    init_dependencies,
)
from fare_negotiation.services.negotiation.push_hub import PushHub
from fare_negotiation.shared.models.common import ErrorResponse, HealthStatus

_started_at = time.monotonic()


# === REQUEST/RESPONSE MODELS ===

class PushStatsResponse(BaseModel):
    """Статистика push-хаба."""
    active_groups: int
    active_handles: int
    frames_sent: int
    handles_dropped: int


ERROR_RESPONSES: dict[int | str, dict[str, Any]] = {
    code: {"model": ErrorResponse} for code in (400, 401, 403, 404, 409, 410, 503, 504)
}


# === LIFESPAN ===

@asynccontextmanager
async def lifespan(app: FastAPI):
    """Жизненный цикл приложения."""
    # Startup
    from fare_negotiation.infra.database import init_db, close_db
    from fare_negotiation.infra.redis_client import init_redis, close_redis
    from fare_negotiation.infra.event_bus import init_event_bus, close_event_bus

    db = await init_db()
    redis = await init_redis()
    try:
        event_bus = await init_event_bus()
    except Exception as e:
        # Публикация в шину best-effort: сервис работает и без неё
        await log_error(f"RabbitMQ недоступен при старте, события не будут публиковаться: {e}")
        event_bus = None

    await init_dependencies(db, redis, event_bus)

    yield

    # Shutdown
    await cleanup_dependencies()
    if event_bus is not None:
        await close_event_bus()
    await close_redis()
    await close_db()


# === MIDDLEWARE ===

class RequestIDMiddleware(BaseHTTPMiddleware):
    """
    Присваивает запросу request_id (X-Request-ID или новый uuid4).
    Неклассифицированные исключения превращаются в 500 Internal.
    """

    async def dispatch(self, request: Request, call_next):
        request_id = request.headers.get("X-Request-ID") or uuid4().hex
        request.state.request_id = request_id
        try:
            response = await call_next(request)
        except Exception as e:
            await log_error(
                f"Необработанная ошибка {request.method} {request.url.path}: {e}",
                extra={"request_id": request_id},
                exc_info=True,
            )
            error = Internal()
            response = JSONResponse(
                status_code=error.http_status,
                content=ErrorResponse(**error.to_dict(), request_id=request_id).model_dump(),
            )
        response.headers["X-Request-ID"] = request_id
        return response


def _request_id(request: Request) -> str | None:
    return getattr(request.state, "request_id", None)


async def negotiation_error_handler(request: Request, exc: NegotiationError) -> JSONResponse:
    """NegotiationError → ErrorResponse с кодом класса ошибки."""
    request_id = _request_id(request)
    if exc.http_status >= 500:
        await log_error(f"{exc.code}: {exc.message}", extra={"request_id": request_id, **(exc.details or {})})
    return JSONResponse(
        status_code=exc.http_status,
        content=ErrorResponse(**exc.to_dict(), request_id=request_id).model_dump(),
    )


# === APP ===

app = FastAPI(
    title="Negotiation Service",
    description="Торг о стоимости поездки между пассажиром и водителем.",
    version=__version__,
    lifespan=lifespan,
    docs_url="/docs",
    redoc_url="/redoc",
)
app.add_middleware(RequestIDMiddleware)
app.add_exception_handler(NegotiationError, negotiation_error_handler)


# === DEPENDENCIES ===

def _parse_actor(user_id: str | None, role: str | None) -> Actor | None:
    if not user_id or not role:
        return None
    try:
        return Actor(id=user_id, role=role.lower())
    except ValidationError:
        return None


async def get_actor(
    x_user_id: Annotated[str | None, Header()] = None,
    x_user_role: Annotated[str | None, Header()] = None,
) -> Actor:
    """Пользователь из заголовков шлюза."""
    actor = _parse_actor(x_user_id, x_user_role)
    if actor is None:
        raise HTTPException(status_code=401, detail="Требуются заголовки X-User-Id и X-User-Role (rider|driver)")
    return actor


async def get_timeout(
    x_request_timeout: Annotated[str | None, Header()] = None,
) -> float | None:
    """Дедлайн операции из X-Request-Timeout (секунды)."""
    if x_request_timeout is None:
        return None
    try:
        value = float(x_request_timeout)
    except ValueError:
        raise HTTPException(status_code=400, detail="X-Request-Timeout должен быть числом секунд")
    if value <= 0:
        raise HTTPException(status_code=400, detail="X-Request-Timeout должен быть больше нуля")
    return value


def get_request_id(request: Request) -> str | None:
    return _request_id(request)


EngineDep = Annotated[SessionEngine, Depends(get_engine)]
ActorDep = Annotated[Actor, Depends(get_actor)]
TimeoutDep = Annotated[float | None, Depends(get_timeout)]
RequestIdDep = Annotated[str | None, Depends(get_request_id)]


# === HEALTH CHECK ===

@app.get("/health", response_model=HealthStatus, tags=["Health"])
async def health_check() -> HealthStatus:
    """Проверка здоровья сервиса и его зависимостей."""
    from fare_negotiation.infra.database import get_db
    from fare_negotiation.infra.redis_client import get_redis
    from fare_negotiation.infra.event_bus import get_event_bus

    checks = {
        "postgres": get_db().health_check,
        "redis": get_redis().health_check,
        "rabbitmq": get_event_bus().health_check,
    }
    deps: dict[str, str] = {}
    for name, check in checks.items():
        try:
            deps[name] = "healthy" if await check() else "unhealthy"
        except Exception:
            deps[name] = "unhealthy"

    return HealthStatus(
        service="negotiation_service",
        status="healthy" if all(v == "healthy" for v in deps.values()) else "degraded",
        version=__version__,
        uptime_seconds=round(time.monotonic() - _started_at, 1),
        dependencies=deps,
    )


# === SESSIONS ENDPOINTS ===

@app.post(
    "/negotiation/sessions",
    response_model=SessionView,
    status_code=201,
    responses=ERROR_RESPONSES,
    tags=["Negotiation"],
    summary="Открыть торг",
)
async def create_session(
    request: CreateSessionRequest,
    engine: EngineDep,
    actor: ActorDep,
    timeout: TimeoutDep,
    request_id: RequestIdDep,
) -> SessionView:
    """
    Открыть торг от имени пассажира.

    Границы `floor`/`ceiling` и валюта берутся из котировки сервиса ценообразования.
    Публикует событие `negotiation.created`.
    """
    return await engine.create(
        actor,
        request.pickup,
        request.drop,
        request.ride_type_id,
        request.initial_amount,
        request.currency,
        timeout=timeout,
        correlation_id=request_id,
    )


@app.get(
    "/negotiation/sessions/active",
    response_model=list[SessionView],
    responses=ERROR_RESPONSES,
    tags=["Negotiation"],
    summary="Активные торги",
)
async def list_active_sessions(engine: EngineDep, actor: ActorDep, timeout: TimeoutDep) -> list[SessionView]:
    """Незавершённые торги пассажира или привязанного водителя."""
    return await engine.list_active(actor, timeout=timeout)


@app.get(
    "/negotiation/sessions/{session_id}",
    response_model=SessionView,
    responses=ERROR_RESPONSES,
    tags=["Negotiation"],
    summary="Получить торг",
)
async def get_session(session_id: str, engine: EngineDep, actor: ActorDep, timeout: TimeoutDep) -> SessionView:
    """Торг с полной историей оферт."""
    return await engine.get(session_id, actor, timeout=timeout)


@app.post(
    "/negotiation/sessions/{session_id}/counter",
    response_model=SessionView,
    responses=ERROR_RESPONSES,
    tags=["Negotiation"],
    summary="Встречное предложение",
)
async def counter_offer(
    session_id: str,
    request: CounterRequest,
    engine: EngineDep,
    actor: ActorDep,
    timeout: TimeoutDep,
    request_id: RequestIdDep,
) -> SessionView:
    """
    Встречное предложение в границах торга.

    Ходы чередуются: после оферты пассажира ход водителя и наоборот.
    """
    return await engine.counter(session_id, actor, request.amount, timeout=timeout, correlation_id=request_id)


@app.post(
    "/negotiation/sessions/{session_id}/accept",
    response_model=SessionView,
    responses=ERROR_RESPONSES,
    tags=["Negotiation"],
    summary="Принять оферту",
)
async def accept_offer(
    session_id: str,
    engine: EngineDep,
    actor: ActorDep,
    timeout: TimeoutDep,
    request_id: RequestIdDep,
) -> SessionView:
    """Принять текущую оферту другой стороны."""
    return await engine.accept(session_id, actor, timeout=timeout, correlation_id=request_id)


@app.post(
    "/negotiation/sessions/{session_id}/withdraw",
    response_model=SessionView,
    responses=ERROR_RESPONSES,
    tags=["Negotiation"],
    summary="Отозвать торг",
)
async def withdraw_session(
    session_id: str,
    engine: EngineDep,
    actor: ActorDep,
    timeout: TimeoutDep,
    request_id: RequestIdDep,
) -> SessionView:
    return await engine.withdraw(session_id, actor, timeout=timeout, correlation_id=request_id)


@app.post(
    "/negotiation/sessions/{session_id}/reject",
    response_model=SessionView,
    responses=ERROR_RESPONSES,
    tags=["Negotiation"],
    summary="Отказаться от торга",
)
async def reject_session(
    session_id: str,
    engine: EngineDep,
    actor: ActorDep,
    timeout: TimeoutDep,
    request_id: RequestIdDep,
) -> SessionView:
    """
    Отказ водителя.

    - привязанный водитель завершает торг статусом `rejected`
    - непривязанный только выходит из торга, сессия не меняется
    """
    return await engine.reject(session_id, actor, timeout=timeout, correlation_id=request_id)


# === PUSH ===

@app.get("/negotiation/push/stats", response_model=PushStatsResponse, tags=["Push"])
async def push_stats(hub: Annotated[PushHub, Depends(get_push_hub)]) -> PushStatsResponse:
    """Получить статистику push-хаба."""
    return PushStatsResponse(**hub.get_stats())


@app.websocket("/negotiation/ws")
async def negotiation_ws(
    websocket: WebSocket,
    hub: Annotated[PushHub, Depends(get_push_hub)],
    session_id: str = Query(...),
    user_id: str | None = Query(default=None),
    role: str | None = Query(default=None),
) -> None:
    """
    Push-канал торга.

    Первый кадр — {"type": "snapshot", "version", "session"}, далее кадры переходов
    {"type", "version", "session"}. Клиент отбрасывает кадры с меньшей версией.

    Входящие сообщения:
    - {"action": "ping"}
    """
    await websocket.accept()

    actor = _parse_actor(user_id, role)
    if actor is None:
        await websocket.send_json({"type": "error", "error_code": "unauthenticated", "message": "Нет user_id/role"})
        await websocket.close(code=4401)
        return

    try:
        snapshot = await hub.subscribe(session_id, actor, websocket)
    except NegotiationError as e:
        await websocket.send_json({"type": "error", **e.to_dict()})
        await websocket.close(code=4000 + e.http_status)
        return
    if snapshot is None:
        return

    try:
        while True:
            data = await websocket.receive_json()
            if isinstance(data, dict) and data.get("action") == "ping":
                await hub.reply(session_id, websocket, {"type": "pong"})
    except WebSocketDisconnect:
        pass
    except Exception as e:
        await log_info(
            f"Push-канал {actor.id} торга {session_id} закрыт: {e!r}",
            type_msg=TypeMsg.DEBUG,
            extra={"session_id": session_id},
        )
    finally:
        await hub.unsubscribe(session_id, websocket)
