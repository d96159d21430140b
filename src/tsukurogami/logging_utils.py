import collections
import logging
import queue
import sys
import threading
from logging.handlers import QueueHandler, QueueListener, RotatingFileHandler
from typing import List, Optional

from .config import LogConfig

LOGGER_NAME = "tsukurogami"
LOG_FORMAT = "%(asctime)s [%(levelname)s] %(message)s"


class LogBuffer:
    """Bounded in-memory tail of recent log lines, served over HTTP."""

    def __init__(self, max_lines: int = 1000):
        self._lock = threading.Lock()
        self._lines: "collections.deque[str]" = collections.deque(maxlen=max_lines)

    def append(self, line: str) -> None:
        with self._lock:
            self._lines.append(line)

    def lines(self) -> List[str]:
        with self._lock:
            return list(self._lines)

    def render(self) -> str:
        lines = self.lines()
        if not lines:
            return ""
        return "\n".join(lines) + "\n"

    def __len__(self) -> int:
        with self._lock:
            return len(self._lines)


class _BufferHandler(logging.Handler):
    def __init__(self, buffer: LogBuffer):
        super().__init__()
        self.buffer = buffer

    def emit(self, record: logging.LogRecord) -> None:
        try:
            self.buffer.append(self.format(record))
        except Exception:
            self.handleError(record)


class BridgeLogging:
    """Handles attached to the application logger; ``stop`` flushes the queue."""

    def __init__(
        self,
        logger: logging.Logger,
        buffer: LogBuffer,
        listener: QueueListener,
        handlers: List[logging.Handler],
    ):
        self.logger = logger
        self.buffer = buffer
        self._listener = listener
        self._handlers = handlers
        self._stopped = False

    def stop(self) -> None:
        if self._stopped:
            return
        self._stopped = True
        self._listener.stop()
        self.logger.propagate = True
        for handler in self._handlers:
            self.logger.removeHandler(handler)
            try:
                handler.close()
            except Exception:
                pass


def setup_logging(
    log_config: LogConfig,
    *,
    buffer: Optional[LogBuffer] = None,
    stream=None,
    name: str = LOGGER_NAME,
) -> BridgeLogging:
    """
    Configure the application logger.

    Lines go to stdout, to an optional rotating file, and through a queue to
    the in-memory buffer so a slow reader of ``/logs`` never holds up the
    request that produced the line.
    """
    logger = logging.getLogger(name)
    for existing in list(logger.handlers):
        logger.removeHandler(existing)
        existing.close()
    logger.setLevel(logging.INFO)
    logger.propagate = False

    formatter = logging.Formatter(LOG_FORMAT)
    if buffer is None:
        buffer = LogBuffer(log_config.buffer_lines)

    handlers: List[logging.Handler] = []
    stream_handler = logging.StreamHandler(stream or sys.stdout)
    stream_handler.setFormatter(formatter)
    handlers.append(stream_handler)

    if log_config.path is not None:
        log_config.path.parent.mkdir(parents=True, exist_ok=True)
        file_handler = RotatingFileHandler(
            log_config.path,
            maxBytes=log_config.max_bytes,
            backupCount=log_config.backup_count,
            encoding="utf-8",
        )
        file_handler.setFormatter(formatter)
        handlers.append(file_handler)

    log_queue: "queue.SimpleQueue[logging.LogRecord]" = queue.SimpleQueue()
    buffer_handler = _BufferHandler(buffer)
    buffer_handler.setFormatter(formatter)
    listener = QueueListener(log_queue, buffer_handler)
    listener.start()
    handlers.append(QueueHandler(log_queue))

    for handler in handlers:
        logger.addHandler(handler)
    return BridgeLogging(logger, buffer, listener, handlers)


def safe_log(
    logger: logging.Logger,
    level: int,
    message: str,
    *args,
    exc: Optional[Exception] = None,
) -> None:
    try:
        formatted = message
        if args:
            try:
                formatted = message % args
            except Exception:
                formatted = f"{message} {' '.join(str(arg) for arg in args)}"
        if exc is not None:
            formatted = f"{formatted}: {exc}"
        logger.log(level, formatted)
    except Exception:
        pass
