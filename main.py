#!/usr/bin/env python3
# main.py
"""
Главная точка входа сервиса торга.
Запускает HTTP/push API, воркер истечения торгов или оба компонента.
"""

from __future__ import annotations

import asyncio
import signal
import sys

from fare_negotiation.config import settings
from fare_negotiation.common.logger import setup_logging, log_info, log_error
from fare_negotiation.common.constants import TypeMsg
from fare_negotiation.infra.database import init_db, close_db
from fare_negotiation.infra.redis_client import init_redis, close_redis
from fare_negotiation.infra.event_bus import init_event_bus, close_event_bus

VALID_MODES = ("api", "sweeper", "all")

# Глобальный флаг для graceful shutdown
_shutdown_event: asyncio.Event | None = None
_running_tasks: list[asyncio.Task] = []


def setup_signal_handlers() -> None:
    """Настраивает обработчики сигналов для graceful shutdown."""
    global _shutdown_event
    _shutdown_event = asyncio.Event()

    def signal_handler(sig: int) -> None:
        """Обработчик сигналов SIGINT и SIGTERM."""
        if _shutdown_event and not _shutdown_event.is_set():
            print(f"\nПолучен сигнал остановки (sig={sig}), завершаем работу...")
            _shutdown_event.set()
            # Отменяем все запущенные задачи
            for task in _running_tasks:
                if not task.done():
                    task.cancel()

    try:
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            loop.add_signal_handler(sig, lambda s=sig: signal_handler(s))
    except NotImplementedError:
        # Windows не поддерживает add_signal_handler
        signal.signal(signal.SIGINT, lambda s, f: signal_handler(s))
        signal.signal(signal.SIGTERM, lambda s, f: signal_handler(s))


async def init_infrastructure() -> None:
    """Инициализирует все подключения к инфраструктуре."""
    await log_info("Инициализация инфраструктуры...", type_msg=TypeMsg.INFO)

    await init_db()
    await init_redis()
    try:
        await init_event_bus()
    except Exception as e:
        await log_error(f"RabbitMQ недоступен, события не будут публиковаться: {e}")

    await log_info("Инфраструктура инициализирована", type_msg=TypeMsg.INFO)


async def close_infrastructure() -> None:
    """Закрывает все подключения."""
    await log_info("Закрытие подключений...", type_msg=TypeMsg.INFO)

    await close_event_bus()
    await close_redis()
    await close_db()

    await log_info("Подключения закрыты", type_msg=TypeMsg.INFO)


async def run_api() -> None:
    """Запускает Negotiation Service (HTTP + push)."""
    import uvicorn

    await log_info(
        f"Запуск Negotiation Service на порту {settings.deployment.NEGOTIATION_SERVICE_PORT}...",
        type_msg=TypeMsg.INFO,
    )

    config = uvicorn.Config(
        "fare_negotiation.services.negotiation.app:app",
        host=settings.deployment.NEGOTIATION_SERVICE_HOST,
        port=settings.deployment.NEGOTIATION_SERVICE_PORT,
        log_level="debug" if settings.system.DEBUG else "info",
    )

    server = uvicorn.Server(config)
    try:
        await server.serve()
    except asyncio.CancelledError:
        await log_info("Negotiation Service: graceful shutdown", type_msg=TypeMsg.DEBUG)
        await server.shutdown()


async def run_sweeper(init_infra: bool = True) -> None:
    """Запускает воркер истечения торгов."""
    from fare_negotiation.worker.runner import run_workers

    await run_workers(init_infra=init_infra)


async def main(mode: str | None = None) -> None:
    """
    Главная функция запуска.

    Args:
        mode: Режим запуска (api, sweeper, all).
              Если None, берётся COMPONENT_MODE из конфигурации.
    """
    setup_logging()
    setup_signal_handlers()

    if mode is None:
        mode = settings.system.COMPONENT_MODE
    if mode not in VALID_MODES:
        await log_error(f"Неизвестный режим '{mode}', допустимы: {', '.join(VALID_MODES)}")
        sys.exit(1)

    await log_info(
        f"{settings.system.PROJECT_NAME} v{settings.system.VERSION} — запуск в режиме '{mode}'",
        type_msg=TypeMsg.INFO,
    )

    match mode:
        case "api":
            # Инфраструктуру поднимает lifespan приложения
            _running_tasks.append(asyncio.create_task(run_api()))
        case "sweeper":
            _running_tasks.append(asyncio.create_task(run_sweeper()))
        case "all":
            await init_infrastructure()
            _running_tasks.append(asyncio.create_task(run_api()))
            _running_tasks.append(asyncio.create_task(run_sweeper(init_infra=False)))

    try:
        await asyncio.gather(*_running_tasks)
    except asyncio.CancelledError:
        pass
    finally:
        if mode == "all":
            await close_infrastructure()
        await log_info("Сервис торга остановлен", type_msg=TypeMsg.INFO)


def print_usage() -> None:
    """Выводит справку по использованию."""
    print(f"""
{settings.system.PROJECT_NAME} v{settings.system.VERSION} — сервис торга о стоимости поездки

Использование:
    python main.py [mode]

Режимы:
    api        — HTTP API и push-канал (:{settings.deployment.NEGOTIATION_SERVICE_PORT})
    sweeper    — воркер истечения торгов
    all        — оба компонента в одном процессе

Без аргумента режим берётся из COMPONENT_MODE.
    """)


if __name__ == "__main__":
    mode = None

    if len(sys.argv) > 1:
        arg = sys.argv[1].lower()
        if arg in ("--help", "-h"):
            print_usage()
            sys.exit(0)
        elif arg in VALID_MODES:
            mode = arg
        else:
            print(f"Ошибка: неизвестный режим '{arg}'")
            print_usage()
            sys.exit(1)

    try:
        asyncio.run(main(mode))
    except KeyboardInterrupt:
        pass
