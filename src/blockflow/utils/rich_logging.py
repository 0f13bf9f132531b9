"""Execution-aware logging with structured context and readable formatting."""

import logging
import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional

ROOT_LOGGER_NAME = "blockflow"

_MASK = "***"


class BlockflowLogFormatter(logging.Formatter):
    """Formatter that prefixes records with execution/node context."""

    LEVEL_COLORS = {
        "DEBUG": "\033[36m",      # Cyan
        "INFO": "\033[32m",       # Green
        "WARNING": "\033[33m",    # Yellow
        "ERROR": "\033[31m",      # Red
        "CRITICAL": "\033[35m",   # Magenta
    }
    RESET = "\033[0m"

    def __init__(self, use_colors: bool = True):
        super().__init__()
        self.use_colors = use_colors

    def format(self, record: logging.LogRecord) -> str:
        timestamp = datetime.fromtimestamp(record.created).strftime("%H:%M:%S")

        execution_context = ""
        if getattr(record, "execution_id", None):
            execution_context = f"[{record.execution_id}] "

        node_context = ""
        if getattr(record, "node_id", None):
            node_context = f"[{record.node_id}] "

        if self.use_colors:
            level_color = self.LEVEL_COLORS.get(record.levelname, "")
            reset = self.RESET
        else:
            level_color = ""
            reset = ""

        message = (
            f"{timestamp} {level_color}{record.levelname:8s}{reset} "
            f"{execution_context}{node_context}{record.getMessage()}"
        )
        if record.exc_info:
            message += "\n" + self.formatException(record.exc_info)
        return message


class ExecutionLogger(logging.LoggerAdapter):
    """Logger handed to blocks through the execution context.

    Exposes ``debug/info/warn/error``, stamps execution and node ids on every
    record, and keeps an in-memory copy of each entry so a block's logs can
    be attached to its result. Values of known secrets are masked.
    """

    def __init__(
        self,
        logger: logging.Logger,
        execution_id: str,
        node_id: Optional[str] = None,
        secret_values: Iterable[str] = (),
        entries: Optional[List[Dict[str, Any]]] = None,
    ):
        super().__init__(logger, {})
        self.execution_id = execution_id
        self.node_id = node_id
        self._secret_values = [s for s in secret_values if s]
        self.entries: List[Dict[str, Any]] = entries if entries is not None else []

    def for_node(self, node_id: str) -> "ExecutionLogger":
        """Child logger for one node; entries are collected separately."""
        return ExecutionLogger(
            self.logger,
            self.execution_id,
            node_id=node_id,
            secret_values=self._secret_values,
        )

    def add_secret_values(self, values: Iterable[str]) -> None:
        self._secret_values.extend(v for v in values if v)

    def _mask(self, text: str) -> str:
        for secret in self._secret_values:
            text = text.replace(secret, _MASK)
        return text

    def process(self, msg, kwargs):
        extra = dict(kwargs.get("extra") or {})
        extra["execution_id"] = self.execution_id
        if self.node_id:
            extra["node_id"] = self.node_id
        kwargs["extra"] = extra
        return self._mask(str(msg)), kwargs

    def log(self, level, msg, *args, details: Optional[Dict[str, Any]] = None, **kwargs):
        text = self._mask(str(msg))
        if details:
            safe_details = {k: self._mask_value(v) for k, v in details.items()}
            rendered = ", ".join(f"{k}={v}" for k, v in safe_details.items())
            msg = f"{text} ({rendered})"
        else:
            safe_details = {}
            msg = text
        self.entries.append({
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": logging.getLevelName(level).lower(),
            "message": text,
            "details": safe_details,
            "node_id": self.node_id,
        })
        super().log(level, msg, *args, **kwargs)

    def _mask_value(self, value: Any) -> Any:
        if isinstance(value, str):
            return self._mask(value)
        return value

    def debug(self, msg, *args, **kwargs):
        self.log(logging.DEBUG, msg, *args, **kwargs)

    def info(self, msg, *args, **kwargs):
        self.log(logging.INFO, msg, *args, **kwargs)

    def warning(self, msg, *args, **kwargs):
        self.log(logging.WARNING, msg, *args, **kwargs)

    warn = warning

    def error(self, msg, *args, **kwargs):
        self.log(logging.ERROR, msg, *args, **kwargs)

    def drain(self) -> List[Dict[str, Any]]:
        """Return and clear the captured entries."""
        entries, self.entries = self.entries, []
        return entries


def get_execution_logger(
    execution_id: str,
    node_id: Optional[str] = None,
    secret_values: Iterable[str] = (),
) -> ExecutionLogger:
    logger = logging.getLogger(f"{ROOT_LOGGER_NAME}.execution")
    return ExecutionLogger(logger, execution_id, node_id=node_id, secret_values=secret_values)


def setup_logging(
    level: str = "INFO",
    use_colors: bool = True,
    log_file: Optional[Path] = None,
) -> logging.Logger:
    """Configure the package logger.

    Args:
        level: Logging level (DEBUG, INFO, WARNING, ERROR)
        use_colors: ANSI colours on the console handler
        log_file: Optional file that receives uncoloured output

    Returns:
        The configured ``blockflow`` logger
    """
    logger = logging.getLogger(ROOT_LOGGER_NAME)
    logger.setLevel(getattr(logging, level.upper(), logging.INFO))

    # Close existing handlers before clearing (prevents file descriptor leak)
    for handler in logger.handlers[:]:
        handler.close()
        logger.removeHandler(handler)

    colors = use_colors and hasattr(sys.stderr, "isatty") and sys.stderr.isatty()
    console_handler = logging.StreamHandler(sys.stderr)
    console_handler.setFormatter(BlockflowLogFormatter(use_colors=colors))
    logger.addHandler(console_handler)

    if log_file is not None:
        log_file = Path(log_file)
        log_file.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_file)
        file_handler.setFormatter(BlockflowLogFormatter(use_colors=False))
        logger.addHandler(file_handler)

    logger.propagate = False
    return logger
