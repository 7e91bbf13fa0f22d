"""
JSON-lines logging for the question supply.

Records go through a ``QueueHandler`` so that the event loop never blocks on
file I/O; a ``QueueListener`` thread writes them to a rotating file. Every
record is stamped with the play session id, and records about a question
source may carry ``source`` and ``outcome`` through ``extra=``. That makes a
fallback chain easy to follow in the log.
"""

import copy
import json
import logging
from logging.handlers import QueueHandler, QueueListener, RotatingFileHandler
from pathlib import Path
from queue import Queue
from typing import Any, Dict, Optional

CONTEXT_FIELDS = ("session_id", "source", "outcome")

MAX_LOG_BYTES = 1_000_000
LOG_BACKUPS = 3

_TRACEBACKS = logging.Formatter()


class JsonFormatter(logging.Formatter):
    """One JSON object per record, context fields included when present."""

    def format(self, record: logging.LogRecord) -> str:  # type: ignore[override]
        payload: Dict[str, Any] = {
            "timestamp": self.formatTime(record, self.datefmt),
            "level": record.levelname,
            "name": record.name,
            "message": record.getMessage(),
        }
        for name in CONTEXT_FIELDS:
            value = getattr(record, name, None)
            if value is not None:
                payload[name] = value
        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        elif record.exc_text:
            payload["exc_info"] = record.exc_text
        return json.dumps(payload, ensure_ascii=False)


class ContextQueueHandler(QueueHandler):
    """Queue handler that keeps the traceback apart from the message.

    The stock ``prepare`` folds the formatted traceback into ``msg``. Here
    ``msg`` stays the plain message and the traceback travels as
    ``exc_text``, which both the JSON and the console formatters read.
    """

    def prepare(self, record: logging.LogRecord) -> logging.LogRecord:
        record = copy.copy(record)
        record.msg = record.getMessage()
        record.args = None
        if record.exc_info:
            record.exc_text = _TRACEBACKS.formatException(record.exc_info)
            record.exc_info = None
        return record


def _stamp_session(session_id: Optional[str]) -> None:
    # Wrap the factory found before any earlier call, not our own wrapper.
    current = logging.getLogRecordFactory()
    previous = getattr(current, "__wrapped__", current)

    def factory(*args: Any, **kwargs: Any) -> logging.LogRecord:
        record = previous(*args, **kwargs)
        record.session_id = session_id or "-"
        return record

    factory.__wrapped__ = previous  # type: ignore[attr-defined]
    logging.setLogRecordFactory(factory)


def _console_handler() -> logging.Handler:
    handler = logging.StreamHandler()
    handler.setFormatter(
        logging.Formatter(
            "%(asctime)s %(levelname)-7s %(name)s [%(session_id)s] %(message)s",
            datefmt="%H:%M:%S",
        )
    )
    return handler


def setup_logging(
    log_path: Path,
    level: int | str = logging.INFO,
    *,
    console: bool = True,
    session_id: Optional[str] = None,
) -> QueueListener:
    """Route the root logger through a queue to a JSON log file.

    Parameters
    ----------
    log_path: Path
        Log file, rotated at ``MAX_LOG_BYTES``. Parent directories are
        created.
    level: int | str
        Root logger level.
    console: bool
        Also print records to stderr in a short human readable form.
    session_id: str | None
        Identifier stamped on every record, ``"-"`` when omitted.

    Returns
    -------
    QueueListener
        Already started; call ``listener.stop()`` on shutdown to flush it.

    Calling this again replaces the queue handler installed by the previous
    call, so records are never written twice.
    """
    log_path.parent.mkdir(parents=True, exist_ok=True)

    root = logging.getLogger()
    root.setLevel(level)
    for handler in [h for h in root.handlers if isinstance(h, QueueHandler)]:
        root.removeHandler(handler)

    queue: Queue = Queue()
    root.addHandler(ContextQueueHandler(queue))
    _stamp_session(session_id)

    file_handler = RotatingFileHandler(
        log_path, maxBytes=MAX_LOG_BYTES, backupCount=LOG_BACKUPS, encoding="utf-8"
    )
    file_handler.setFormatter(JsonFormatter(datefmt="%Y-%m-%dT%H:%M:%S"))
    handlers: list[logging.Handler] = [file_handler]
    if console:
        handlers.append(_console_handler())

    listener = QueueListener(queue, *handlers)
    listener.start()
    return listener


__all__ = ["JsonFormatter", "ContextQueueHandler", "setup_logging", "CONTEXT_FIELDS"]
