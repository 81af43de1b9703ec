# fare_negotiation/worker/expiry.py
"""
Воркер истечения торгов.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from fare_negotiation.common.constants import TypeMsg
from fare_negotiation.common.logger import log_info
from fare_negotiation.worker.base import BaseWorker

if TYPE_CHECKING:
    from fare_negotiation.core.negotiation.engine import SessionEngine


class ExpirySweeper(BaseWorker):
    """
    Периодически переводит в expired торги с наступившим дедлайном.
    Повторный тик безопасен: движок пропускает уже терминальные сессии по version.
    """

    def __init__(self, engine: "SessionEngine", interval: float = 10.0) -> None:
        super().__init__()
        self._engine = engine
        self._interval = interval
        self.total_expired = 0

    @property
    def name(self) -> str:
        return "ExpirySweeper"

    @property
    def interval(self) -> float:
        return self._interval

    async def run_once(self) -> int:
        expired = await self._engine.sweep_expired()
        self.total_expired += expired
        if expired:
            await log_info(f"{self.name}: истекло торгов за тик: {expired}", type_msg=TypeMsg.INFO)
        return expired
