# tests/worker/test_runner.py
"""
Тесты запускалки воркера истечения.
"""

import asyncio
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from fare_negotiation.worker.runner import run_workers


@pytest.fixture
def mock_infra():
    with patch("fare_negotiation.worker.runner.init_db", new_callable=AsyncMock) as mock_init_db, \
         patch("fare_negotiation.worker.runner.close_db", new_callable=AsyncMock) as mock_close_db, \
         patch("fare_negotiation.worker.runner.init_redis", new_callable=AsyncMock) as mock_init_redis, \
         patch("fare_negotiation.worker.runner.close_redis", new_callable=AsyncMock) as mock_close_redis, \
         patch("fare_negotiation.worker.runner.init_event_bus", new_callable=AsyncMock) as mock_init_event_bus, \
         patch("fare_negotiation.worker.runner.close_event_bus", new_callable=AsyncMock) as mock_close_event_bus, \
         patch("fare_negotiation.worker.runner.get_db") as mock_get_db, \
         patch("fare_negotiation.worker.runner.get_redis") as mock_get_redis, \
         patch("fare_negotiation.worker.runner.get_event_bus") as mock_get_event_bus:
        yield {
            "init_db": mock_init_db,
            "close_db": mock_close_db,
            "init_redis": mock_init_redis,
            "close_redis": mock_close_redis,
            "init_event_bus": mock_init_event_bus,
            "close_event_bus": mock_close_event_bus,
            "get_db": mock_get_db,
            "get_redis": mock_get_redis,
            "get_event_bus": mock_get_event_bus,
        }


@pytest.fixture
def mock_components():
    with patch("fare_negotiation.worker.runner.build_components") as mock_build, \
         patch("fare_negotiation.worker.runner.close_components", new_callable=AsyncMock) as mock_close, \
         patch("fare_negotiation.worker.runner.ExpirySweeper") as MockSweeper:
        sweeper = MockSweeper.return_value
        sweeper.start = AsyncMock()
        sweeper.stop = AsyncMock()
        yield {
            "build": mock_build,
            "close": mock_close,
            "sweeper_class": MockSweeper,
            "sweeper": sweeper,
        }


@pytest.mark.asyncio
async def test_run_workers_success(mock_infra, mock_components):
    # Первый же sleep завершает цикл ожидания
    with patch("fare_negotiation.worker.runner.asyncio.sleep", side_effect=asyncio.CancelledError):
        await run_workers()

    mock_infra["init_db"].assert_called_once()
    mock_infra["init_redis"].assert_called_once()
    mock_infra["init_event_bus"].assert_called_once()

    mock_components["build"].assert_called_once_with(
        mock_infra["get_db"].return_value,
        mock_infra["get_redis"].return_value,
        mock_infra["init_event_bus"].return_value,
    )
    mock_components["sweeper"].start.assert_called_once()
    mock_components["sweeper"].stop.assert_called_once()
    mock_components["close"].assert_called_once_with(mock_components["build"].return_value)

    mock_infra["close_db"].assert_called_once()
    mock_infra["close_redis"].assert_called_once()
    mock_infra["close_event_bus"].assert_called_once()


@pytest.mark.asyncio
async def test_run_workers_without_rabbitmq(mock_infra, mock_components):
    """Недоступная шина не мешает запуску: события просто не публикуются."""
    mock_infra["init_event_bus"].side_effect = ConnectionError("rabbit down")

    with patch("fare_negotiation.worker.runner.asyncio.sleep", side_effect=asyncio.CancelledError):
        await run_workers()

    assert mock_components["build"].call_args.args[2] is None
    mock_infra["close_event_bus"].assert_not_called()
    mock_infra["close_db"].assert_called_once()


@pytest.mark.asyncio
async def test_run_workers_shared_infra(mock_infra, mock_components):
    """В режиме all инфраструктура уже поднята и не закрывается воркером."""
    mock_infra["get_event_bus"].return_value = MagicMock(is_connected=True)

    with patch("fare_negotiation.worker.runner.asyncio.sleep", side_effect=asyncio.CancelledError):
        await run_workers(init_infra=False)

    mock_infra["init_db"].assert_not_called()
    assert mock_components["build"].call_args.args[2] is mock_infra["get_event_bus"].return_value
    mock_components["sweeper"].stop.assert_called_once()
    mock_infra["close_db"].assert_not_called()
    mock_infra["close_redis"].assert_not_called()


@pytest.mark.asyncio
async def test_run_workers_init_error(mock_infra, mock_components):
    mock_infra["init_db"].side_effect = Exception("Init error")

    with pytest.raises(Exception, match="Init error"):
        await run_workers()

    mock_components["sweeper"].start.assert_not_called()
