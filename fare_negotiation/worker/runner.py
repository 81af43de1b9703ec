# fare_negotiation/worker/runner.py
"""
Запускалка воркера истечения торгов.
"""

from __future__ import annotations

import asyncio

from fare_negotiation.common.constants import TypeMsg
from fare_negotiation.common.logger import log_error, log_info
from fare_negotiation.config import settings
from fare_negotiation.infra.database import close_db, get_db, init_db
from fare_negotiation.infra.event_bus import close_event_bus, get_event_bus, init_event_bus
from fare_negotiation.infra.redis_client import close_redis, get_redis, init_redis
from fare_negotiation.services.negotiation.dependencies import build_components, close_components
from fare_negotiation.worker.expiry import ExpirySweeper


async def run_workers(init_infra: bool = True) -> None:
    """
    Запускает ExpirySweeper.

    Args:
        init_infra: Если True, инициализирует инфраструктуру (БД, Redis, RabbitMQ).
                    В режиме all инфраструктура уже поднята приложением API.

    Кадры переходов уходят в Redis-ретрансляцию и доставляются подписчикам
    экземплярами API; локальный push-хаб воркера всегда пуст.
    """
    await log_info("Запуск ExpirySweeper...", type_msg=TypeMsg.INFO)

    event_bus = None
    if init_infra:
        await init_db()
        await init_redis()
        try:
            event_bus = await init_event_bus()
        except Exception as e:
            await log_error(f"RabbitMQ недоступен, события истечения не будут публиковаться: {e}")
    else:
        event_bus = get_event_bus() if get_event_bus().is_connected else None

    components = build_components(get_db(), get_redis(), event_bus)
    sweeper = ExpirySweeper(
        components.engine,
        interval=settings.negotiation.NEGOTIATION_SWEEP_INTERVAL_SECONDS,
    )

    try:
        await sweeper.start()

        # Ждём завершения (Ctrl+C)
        while True:
            await asyncio.sleep(1)

    except asyncio.CancelledError:
        await log_info("Получен сигнал остановки", type_msg=TypeMsg.INFO)
    finally:
        await sweeper.stop()
        await close_components(components)

        # Закрываем инфраструктуру (если мы её инициализировали)
        if init_infra:
            if event_bus is not None:
                await close_event_bus()
            await close_redis()
            await close_db()

        await log_info("Воркеры остановлены", type_msg=TypeMsg.INFO)


def main() -> None:
    """Точка входа."""
    try:
        asyncio.run(run_workers())
    except KeyboardInterrupt:
        pass


if __name__ == "__main__":
    main()
