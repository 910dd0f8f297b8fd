"""
cachewatch - Logging setup
Console output through rich (or JSON lines), a rotating log file, and the
isolation token of the current model run stamped on every record
"""
import json
import logging
import logging.handlers
from contextlib import contextmanager
from contextvars import ContextVar
from pathlib import Path
from typing import Dict, Iterator, Optional, Union

from rich.console import Console
from rich.logging import RichHandler

isolation_token_var: ContextVar[str] = ContextVar("isolation_token", default="")

_NOISY_LOGGERS: Dict[str, int] = {
    "httpx": logging.WARNING,
    "httpcore": logging.WARNING,
    "openai": logging.WARNING,
    "openai._base_client": logging.WARNING,
    "asyncio": logging.WARNING,
}


@contextmanager
def bind_isolation_token(token: Optional[str]) -> Iterator[None]:
    """Tag every log line emitted inside the block with token"""
    reset = isolation_token_var.set(token or "")
    try:
        yield
    finally:
        isolation_token_var.reset(reset)


class IsolationTokenFilter(logging.Filter):
    def filter(self, record: logging.LogRecord) -> bool:
        record.isolation_token = isolation_token_var.get("")
        return True


class JSONFormatter(logging.Formatter):
    """One JSON object per record"""

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "ts": self.formatTime(record, self.datefmt),
            "level": record.levelname,
            "logger": record.name,
            "msg": record.getMessage(),
        }
        token = getattr(record, "isolation_token", "")
        if token:
            entry["isolation_token"] = token
        if record.exc_info and record.exc_info[0] is not None:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry, default=str, ensure_ascii=False)


class TokenFormatter(logging.Formatter):
    """Plain formatter with a short run-token suffix"""

    def format(self, record: logging.LogRecord) -> str:
        base = super().format(record)
        token = getattr(record, "isolation_token", "")
        if token:
            return f"{base} [run={token[:8]}]"
        return base


def configure_logging(
    level: str = "INFO",
    log_format: str = "text",
    log_dir: Union[str, Path, None] = None,
    console: Optional[Console] = None,
    max_bytes: int = 10 * 1024 * 1024,
    backup_count: int = 5,
):
    """Install console and file handlers on the root logger"""
    root = logging.getLogger()
    root.handlers.clear()
    root.setLevel(getattr(logging, level.upper(), logging.INFO))

    token_filter = IsolationTokenFilter()

    if log_format == "json":
        handler: logging.Handler = logging.StreamHandler()
        handler.setFormatter(JSONFormatter(datefmt="%Y-%m-%dT%H:%M:%S"))
    else:
        handler = RichHandler(console=console, show_path=False, rich_tracebacks=True)
        handler.setFormatter(TokenFormatter("%(message)s", datefmt="%H:%M:%S"))
    handler.addFilter(token_filter)
    root.addHandler(handler)

    if log_dir:
        log_path = Path(log_dir)
        log_path.mkdir(parents=True, exist_ok=True)
        file_handler = logging.handlers.RotatingFileHandler(
            log_path / "cachewatch.log",
            maxBytes=max_bytes,
            backupCount=backup_count,
            encoding="utf-8",
        )
        if log_format == "json":
            file_handler.setFormatter(JSONFormatter(datefmt="%Y-%m-%dT%H:%M:%S"))
        else:
            file_handler.setFormatter(TokenFormatter("%(asctime)s - %(levelname)s - %(name)s - %(message)s"))
        file_handler.addFilter(token_filter)
        root.addHandler(file_handler)

    for name, noisy_level in _NOISY_LOGGERS.items():
        logging.getLogger(name).setLevel(noisy_level)


def configure_from_config(config, console: Optional[Console] = None):
    configure_logging(
        level=config.log_level,
        log_format=config.log_format,
        log_dir=config.logs_dir,
        console=console,
    )
