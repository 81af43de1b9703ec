#!/usr/bin/env python3
"""
Entrypoint для Negotiation Service (HTTP API + push-канал).

Запуск:
    python entrypoint_negotiation.py

Порт по умолчанию: 8092
"""

import sys
from pathlib import Path

# Добавляем корневую директорию проекта в путь
project_root = Path(__file__).parent.parent.resolve()
sys.path.insert(0, str(project_root))

import uvicorn

from fare_negotiation.config import settings


def main() -> None:
    """Запустить Negotiation Service."""
    uvicorn.run(
        "fare_negotiation.services.negotiation.app:app",
        host=settings.deployment.NEGOTIATION_SERVICE_HOST,
        port=settings.deployment.NEGOTIATION_SERVICE_PORT,
        reload=settings.system.DEBUG,
        log_level=settings.logging.LOG_LEVEL.lower(),
    )


if __name__ == "__main__":
    main()
