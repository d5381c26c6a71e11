"""
Process-wide logging for the pool service.

Everything, including uvicorn's own loggers, ends up on the root logger:
stdout always, plus an optional log file that survives restarts. The
launcher runs uvicorn with ``log_config=None`` so nothing overrides this.
"""

import logging
import sys
from pathlib import Path
from typing import Optional, Union

DATE_FORMAT = '%Y-%m-%d %H:%M:%S'

# loggers that would otherwise print through their own handlers
SERVER_LOGGERS = ("uvicorn", "uvicorn.error", "uvicorn.access")


def resolve_level(level: Union[int, str]) -> int:
    """Numeric level for 'debug', 'INFO', 20 ...; unknown names mean INFO."""
    if isinstance(level, int):
        return level
    resolved = logging.getLevelName(str(level).strip().upper())
    return resolved if isinstance(resolved, int) else logging.INFO


def setup_logging(
    component_name: str,
    level: Union[int, str] = logging.INFO,
    log_file: Optional[str] = None,
    format_string: Optional[str] = None
) -> logging.Logger:
    """
    Route service and server logs to stdout and, optionally, a file.

    Args:
        component_name: Tag shown in every line and name of the returned logger
        level: Level name or number; applies to the root logger
        log_file: Also append to this file, creating its directory
        format_string: Replaces the default line format
    """
    numeric_level = resolve_level(level)
    formatter = logging.Formatter(
        format_string or f'[%(asctime)s] [{component_name.upper()}] %(name)s %(levelname)s - %(message)s',
        datefmt=DATE_FORMAT,
    )

    handlers = [logging.StreamHandler(sys.stdout)]
    if log_file:
        Path(log_file).parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(log_file))

    root = logging.getLogger()
    root.setLevel(numeric_level)
    for handler in handlers:
        handler.setFormatter(formatter)
        root.addHandler(handler)

    for name in SERVER_LOGGERS:
        server_logger = logging.getLogger(name)
        server_logger.handlers.clear()
        server_logger.propagate = True

    logger = logging.getLogger(component_name)
    logger.info(f"Logging ready: level={logging.getLevelName(numeric_level)} file={log_file or '-'}")
    return logger
