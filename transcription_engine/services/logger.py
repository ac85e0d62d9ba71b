import asyncio
import logging
import sys
from datetime import datetime
from pathlib import Path
from typing import TYPE_CHECKING

import aiofiles

from transcription_engine.services.manager import BaseAsyncLoggingService
from transcription_engine.utils import cancel_task

if TYPE_CHECKING:
    from transcription_engine.context import Context

# records written per file open
WRITE_BATCH_SIZE = 64


def level_number(level: str) -> int:
    """Map a level name to its stdlib number; unknown names count as INFO."""
    value = logging.getLevelName(level.upper())
    return value if isinstance(value, int) else logging.INFO


# -------------------------------------------------------------- #
# Async Logging Service
# -------------------------------------------------------------- #


class AsyncLoggingService(BaseAsyncLoggingService):
    """
    Queued file logger shared by every session, segmenter and listener.

    Records are formatted at call time and appended to the log file by a
    single writer task, so a slow disk never blocks an audio loop.
    """

    def __init__(
        self,
        context: "Context",
        log_dir: str = "logs",
        log_file: str | None = None,
        use_timestamp: bool = True,
        console_output: bool = True,
        level: str = "DEBUG",
    ):
        """
        Args:
            context: Engine context
            log_dir: Directory for the log file
            log_file: Explicit file name. When omitted the name is
                ``engine_<timestamp>.log``, or ``engine.log`` if
                ``use_timestamp`` is False.
            use_timestamp: Whether a generated file name carries the start time
            console_output: Echo every record to stdout as well
            level: Records below this level are dropped before queueing
        """
        super().__init__(context)
        self.log_dir = Path(log_dir)
        self.console_output = console_output
        self.min_level = level_number(level)

        if log_file is not None:
            self.log_file = log_file
        elif use_timestamp:
            self.log_file = f"engine_{datetime.now().strftime('%Y-%m-%d_%H-%M-%S')}.log"
        else:
            self.log_file = "engine.log"
        self.log_path = self.log_dir / self.log_file

        self._queue: asyncio.Queue[str] = asyncio.Queue()
        self._file_lock = asyncio.Lock()
        self._writer_task: asyncio.Task | None = None

    # -------------------------------------------------------------- #
    # Manager Methods
    # -------------------------------------------------------------- #

    async def on_start(self, services) -> None:
        await super().on_start(services)
        self.log_dir.mkdir(parents=True, exist_ok=True)
        self._writer_task = asyncio.create_task(self._writer_loop())
        await self.info(f"Logging to {self.log_path}")

    async def on_close(self) -> None:
        """Stop the writer and write out anything still queued."""
        await super().on_close()
        await cancel_task(self._writer_task)
        self._writer_task = None
        while not self._queue.empty():
            await self._write_batch(self._take_batch())

    # -------------------------------------------------------------- #
    # Public Logging Methods
    # -------------------------------------------------------------- #

    async def log(self, message: str, level: str = "INFO") -> None:
        level = level.upper()
        if level_number(level) < self.min_level:
            return
        await self._queue.put(f"[{datetime.now().isoformat()}] [{level}] {message}")

    async def debug(self, message: str) -> None:
        await self.log(message, "DEBUG")

    async def info(self, message: str) -> None:
        await self.log(message, "INFO")

    async def warning(self, message: str) -> None:
        await self.log(message, "WARNING")

    async def error(self, message: str) -> None:
        await self.log(message, "ERROR")

    async def critical(self, message: str) -> None:
        await self.log(message, "CRITICAL")

    async def drain(self) -> None:
        """Wait until every queued record has reached the file."""
        if self._writer_task is not None and not self._writer_task.done():
            await self._queue.join()
            return
        while not self._queue.empty():
            await self._write_batch(self._take_batch())

    # -------------------------------------------------------------- #
    # Writer
    # -------------------------------------------------------------- #

    async def _writer_loop(self) -> None:
        while True:
            first = await self._queue.get()
            batch = [first, *self._take_batch(WRITE_BATCH_SIZE - 1)]
            await self._write_batch(batch)

    def _take_batch(self, limit: int = WRITE_BATCH_SIZE) -> list[str]:
        batch = []
        while len(batch) < limit:
            try:
                batch.append(self._queue.get_nowait())
            except asyncio.QueueEmpty:
                break
        return batch

    async def _write_batch(self, batch: list[str]) -> None:
        if not batch:
            return
        text = "\n".join(batch) + "\n"
        try:
            if self.console_output:
                sys.stdout.write(text)
                sys.stdout.flush()
            async with self._file_lock:
                try:
                    async with aiofiles.open(self.log_path, mode="a", encoding="utf-8") as f:
                        await f.write(text)
                except OSError as e:
                    print(f"[ERROR] Could not write {self.log_path}: {e}", file=sys.stderr)
        finally:
            for _ in batch:
                self._queue.task_done()


# -------------------------------------------------------------- #
# Module Logger Adapter
# -------------------------------------------------------------- #


class ModuleLogger:
    """
    Async facade over a standard library logger.

    Components that run without a services manager (standalone use and
    unit tests) log through this so they can keep awaiting the same
    debug/info/warning/error/critical calls.
    """

    def __init__(self, name: str):
        self._logger = logging.getLogger(name)

    async def log(self, message: str, level: str = "INFO") -> None:
        self._logger.log(level_number(level), message)

    async def debug(self, message: str) -> None:
        self._logger.debug(message)

    async def info(self, message: str) -> None:
        self._logger.info(message)

    async def warning(self, message: str) -> None:
        self._logger.warning(message)

    async def error(self, message: str) -> None:
        self._logger.error(message)

    async def critical(self, message: str) -> None:
        self._logger.critical(message)
