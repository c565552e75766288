#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
mcpx Settlement Tracker
Detached settlements for tools that settle after execution
"""

import asyncio
import logging
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Awaitable, Deque, List, Optional, Set

from .models import PaymentMode, SettleResponse
from .monitoring import background_settlements_inflight, settlements_total

logger = logging.getLogger(__name__)


@dataclass
class SettlementRecord:
    """Outcome of one background settlement"""
    tool_name: str
    network: str
    payer: Optional[str] = None
    status: str = 'pending'  # pending, settled, failed, error
    reason: Optional[str] = None
    transaction: Optional[str] = None
    started_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    finished_at: Optional[datetime] = None
    task: Optional[asyncio.Task] = field(default=None, repr=False)


class SettlementTracker:
    """
    Owns settlement tasks started after a tool has been forwarded

    Results are logged and kept in a bounded history; nothing is retried
    and nothing reaches the caller's response. There is no cap on how many
    settlements may be in flight at once.
    """

    def __init__(self, history_size: int = 100):
        self.history: Deque[SettlementRecord] = deque(maxlen=history_size)
        self._tasks: Set[asyncio.Task] = set()

    @property
    def inflight(self) -> int:
        return len(self._tasks)

    def start(
        self,
        settlement: Awaitable[SettleResponse],
        tool_name: str,
        network: str,
        payer: Optional[str] = None
    ) -> SettlementRecord:
        """Run settlement without awaiting it and record its outcome"""
        record = SettlementRecord(tool_name=tool_name, network=network, payer=payer)
        task = asyncio.ensure_future(self._run(settlement, record))
        record.task = task

        self._tasks.add(task)
        background_settlements_inflight.inc()
        task.add_done_callback(self._task_done)
        self.history.append(record)

        logger.info(f"🚀 Started background settlement for '{tool_name}' on {network}")
        return record

    def _task_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        background_settlements_inflight.dec()

    async def _run(self, settlement: Awaitable[SettleResponse], record: SettlementRecord) -> None:
        mode = PaymentMode.AFTER_EXECUTION.value
        try:
            response = await settlement
        except asyncio.CancelledError:
            record.status = 'error'
            record.reason = 'cancelled'
            record.finished_at = datetime.now(timezone.utc)
            settlements_total.labels(mode=mode, status='cancelled').inc()
            raise
        except Exception as e:
            record.status = 'error'
            record.reason = str(e)
            record.finished_at = datetime.now(timezone.utc)
            settlements_total.labels(mode=mode, status='error').inc()
            logger.error(f"❌ Settlement error for '{record.tool_name}': {e}", exc_info=True)
            return

        record.finished_at = datetime.now(timezone.utc)
        record.transaction = response.transaction or None
        record.payer = response.payer or record.payer

        if response.success:
            record.status = 'settled'
            settlements_total.labels(mode=mode, status='success').inc()
            logger.info(
                f"🔍 Settlement for '{record.tool_name}' succeeded: "
                f"tx={response.transaction} network={response.network}"
            )
        else:
            record.status = 'failed'
            record.reason = response.error_reason
            settlements_total.labels(mode=mode, status='failed').inc()
            logger.error(f"❌ Settlement failed for '{record.tool_name}': {response.error_reason}")

    def failures(self) -> List[SettlementRecord]:
        return [r for r in self.history if r.status in ('failed', 'error')]

    async def drain(self) -> None:
        """Wait for every in-flight settlement to finish"""
        if self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)
