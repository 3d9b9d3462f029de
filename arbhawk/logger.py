# arbhawk/logger.py
import asyncio
import aiofiles
from aiocsv import AsyncWriter
from datetime import datetime, timezone
import logging
import sys
import os
from typing import List, Any, Optional

from .models import TradeRecord

AUDIT_HEADER = [
    'resolved_at', 'trade_id', 'route', 'venues', 'triangular',
    'entry_amount', 'net_profit', 'status', 'tx_reference', 'realized_profit', 'failure_reason',
]


def audit_row(record: TradeRecord) -> List[Any]:
    """Flattens a resolved trade into one CSV row matching AUDIT_HEADER."""
    resolved = record.resolved_at if record.resolved_at is not None else record.submitted_at
    return [
        datetime.fromtimestamp(resolved, tz=timezone.utc).isoformat(),
        record.id,
        record.route.label,
        "|".join(record.route.venues),
        record.route.is_triangular,
        f"{record.route.entry_amount:.4f}",
        f"{record.route.net_profit:.6f}",
        record.status.value,
        record.tx_reference or "",
        "" if record.realized_profit is None else f"{record.realized_profit:.6f}",
        record.failure_reason.value if record.failure_reason else "",
    ]


class AsyncAuditLogger:
    """
    Non-blocking CSV audit trail of resolved trades.
    Decouples disk I/O from the trading loop using an asyncio Queue.
    """
    def __init__(self, filepath: str):
        self.filepath = filepath
        self._queue: asyncio.Queue = asyncio.Queue()
        self._worker_task: Optional[asyncio.Task] = None

    async def start(self):
        """
        Creates the log file (with a header row if it is new) and starts the background writer.
        """
        directory = os.path.dirname(self.filepath)
        if directory and not os.path.exists(directory):
            os.makedirs(directory, exist_ok=True)

        is_new = not os.path.exists(self.filepath) or os.path.getsize(self.filepath) == 0
        async with aiofiles.open(self.filepath, mode='a', newline='') as f:
            if is_new:
                writer = AsyncWriter(f, dialect='unix')
                await writer.writerow(AUDIT_HEADER)
        self._worker_task = asyncio.create_task(self._writer_worker())

    async def log_trade(self, record: TradeRecord):
        """
        Non-blocking call to add a resolved trade to the queue.
        """
        await self._queue.put(audit_row(record))

    async def stop(self):
        """Flushes queued rows, then stops the writer."""
        if self._worker_task is None:
            return
        await self._queue.join()
        self._worker_task.cancel()
        await asyncio.gather(self._worker_task, return_exceptions=True)
        self._worker_task = None

    async def _writer_worker(self):
        while True:
            row = await self._queue.get()
            try:
                async with aiofiles.open(self.filepath, mode='a', newline='') as f:
                    writer = AsyncWriter(f, dialect='unix')
                    await writer.writerow(row)
            except OSError as e:
                # Disk trouble must not take the engine down
                print(f"LOGGING FAILURE: {e}", file=sys.stderr)
            finally:
                self._queue.task_done()


def setup_console_logger(name: str, level: str):
    """
    Sets up the standard Python logger for console output.
    """
    logger = logging.getLogger(name)
    logger.setLevel(level)

    if not logger.handlers:
        handler = logging.StreamHandler(sys.stdout)
        formatter = logging.Formatter('%(asctime)s | %(levelname)s | %(module)s | %(message)s')
        handler.setFormatter(formatter)
        logger.addHandler(handler)

    return logger
