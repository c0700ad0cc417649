import asyncio
import contextlib
import logging
import sys
from datetime import datetime
from pathlib import Path
from typing import TYPE_CHECKING

import aiofiles

if TYPE_CHECKING:
    from source.context import Context

from source.services.manager import BaseAsyncLoggingService

# -------------------------------------------------------------- #
# Async Logging Service
# -------------------------------------------------------------- #


class AsyncLoggingService(BaseAsyncLoggingService):
    """Async logging service with file locking to prevent concurrent writes."""

    def __init__(
        self,
        context: "Context",
        log_dir: str = "logs",
        log_file: str | None = None,
        use_timestamp: bool = True,
        console_output: bool = True,
        min_level: str = "INFO",
    ):
        """Initialize the async logging service.

        Args:
            context: Context instance containing server and services
            log_dir: Directory to store log files
            log_file: Name of the log file (if None and use_timestamp is True,
                     a timestamped filename will be generated)
            use_timestamp: If True and log_file is None, create a timestamped log file.
                          If False, uses "app.log" as default.
            console_output: If True, all log messages are also printed to console (stdout).
            min_level: Messages below this level are discarded.
        """
        super().__init__(context)
        self.log_dir = Path(log_dir)
        self.console_output = console_output

        level = min_level.upper()
        if level not in logging.getLevelNamesMapping():
            raise ValueError(f"Unknown log level: {min_level}")
        self.min_level = level
        self._min_levelno = logging.getLevelNamesMapping()[level]

        if log_file is None:
            if use_timestamp:
                timestamp = datetime.now().strftime("%Y-%m-%d_%H-%M-%S")
                self.log_file = f"app_{timestamp}.log"
            else:
                self.log_file = "app.log"
        else:
            self.log_file = log_file

        self.log_path = self.log_dir / self.log_file

        # Create lock for serializing writes
        self._write_lock = asyncio.Lock()

        # Queue for pending log messages
        self._log_queue: asyncio.Queue = asyncio.Queue()
        self._writer_task: asyncio.Task | None = None

    # -------------------------------------------------------------- #
    # Manager Methods
    # -------------------------------------------------------------- #

    async def on_start(self, services) -> None:
        """Initialize logging service on start."""
        await super().on_start(services)

        self.log_path.parent.mkdir(parents=True, exist_ok=True)

        self._writer_task = asyncio.create_task(self._process_log_queue())

        await self.info(f"AsyncLoggingService initialized. Logging to: {self.log_path}")

    async def on_close(self) -> None:
        """Stop the writer task and flush whatever is still queued."""
        await super().on_close()

        if self._writer_task:
            self._writer_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._writer_task
            self._writer_task = None

        await self._flush_queue()

    # -------------------------------------------------------------- #
    # Public Logging Methods
    # -------------------------------------------------------------- #

    def is_enabled_for(self, level: str) -> bool:
        return logging.getLevelNamesMapping().get(level.upper(), 0) >= self._min_levelno

    async def log(self, message: str, level: str = "INFO") -> None:
        """Queue a log message.

        Args:
            message: The log message
            level: Log level (INFO, DEBUG, WARNING, ERROR, CRITICAL)
        """
        if not self.is_enabled_for(level):
            return

        timestamp = datetime.now().isoformat()
        formatted_message = f"[{timestamp}] [{level}] {message}"

        # Before on_start (or after on_close) there is no writer; write directly
        if self._writer_task is None:
            await self._write_to_file(formatted_message)
            return

        await self._log_queue.put(formatted_message)

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
        """Wait until every queued message has been written."""
        if self._writer_task is not None:
            await self._log_queue.join()

    # -------------------------------------------------------------- #
    # Private Methods
    # -------------------------------------------------------------- #

    async def _process_log_queue(self) -> None:
        """Process log messages from the queue continuously."""
        try:
            while True:
                message = await self._log_queue.get()
                try:
                    await self._write_to_file(message)
                finally:
                    self._log_queue.task_done()
        except asyncio.CancelledError:
            pass

    async def _write_to_file(self, message: str) -> None:
        """Write a message to the log file with locking.

        Args:
            message: The formatted log message to write
        """
        if self.console_output:
            print(message, file=sys.stdout, flush=True)

        async with self._write_lock:
            try:
                async with aiofiles.open(self.log_path, mode="a", encoding="utf-8") as f:
                    await f.write(message + "\n")
            except OSError as e:
                print(f"[ERROR] Failed to write to log file: {e}", file=sys.stderr, flush=True)

    async def _flush_queue(self) -> None:
        """Flush all remaining messages from the queue."""
        while not self._log_queue.empty():
            try:
                message = self._log_queue.get_nowait()
            except asyncio.QueueEmpty:
                break
            await self._write_to_file(message)
            self._log_queue.task_done()
