"""Logger setup for Roadkill components.

Every component logs through a stdlib logger under the ``roadkill`` hierarchy. ``setup_logger`` attaches a console
handler and a size-rotated log file; with structlog enabled the records are rendered as JSON (or console) lines whose
leading keys are the timestamp, the event and the storage context (``operation``, ``entity_type``).
"""

import logging
import os
from logging import Logger
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Optional

import structlog

from roadkill.core.config import CoreSettings
from roadkill.core.utils import ifnone

ROOT_LOGGER_NAME = "roadkill"
DEFAULT_FORMAT = "[%(asctime)s] %(levelname)s: %(name)s: %(message)s"
STRUCTLOG_KEY_ORDER = ("timestamp", "event", "operation", "entity_type", "level", "logger")


def default_formatter(fmt: Optional[str] = None) -> logging.Formatter:
    """Formatter used by the plain (non-structlog) handlers."""
    return logging.Formatter(fmt or DEFAULT_FORMAT)


def _log_file_path(name: str, log_dir: Optional[Path], use_structlog: bool) -> Path:
    """``<dir>/roadkill.log`` for the root logger, ``<dir>/modules/<name>.log`` for everything else."""
    if log_dir is None:
        paths = CoreSettings().ROADKILL_DIR_PATHS
        log_dir = Path(paths.STRUCT_LOGGER_DIR if use_structlog else paths.LOGGER_DIR)
    relative = f"{name}.log" if name == ROOT_LOGGER_NAME else os.path.join("modules", f"{name}.log")
    return Path(log_dir) / relative


def setup_logger(
    name: str = ROOT_LOGGER_NAME,
    *,
    log_dir: Optional[Path] = None,
    logger_level: int = logging.DEBUG,
    stream_level: int = logging.ERROR,
    add_stream_handler: bool = True,
    file_level: int = logging.DEBUG,
    file_mode: str = "a",
    add_file_handler: bool = True,
    propagate: bool = False,
    max_bytes: int = 10 * 1024 * 1024,  # 10 MB
    backup_count: int = 5,
    use_structlog: Optional[bool] = None,
    structlog_json: Optional[bool] = True,
    structlog_bind: Optional[object] = None,
) -> Logger | structlog.stdlib.BoundLogger:
    """(Re)configure the named logger.

    Handlers from an earlier call are closed and replaced, so the function can be called repeatedly for the same
    name. The log file lives under ``ROADKILL_DIR_PATHS.LOGGER_DIR`` (``STRUCT_LOGGER_DIR`` with structlog) unless
    ``log_dir`` is given.

    Args:
        name: Logger name.
        log_dir: Directory for the log file.
        logger_level: Level of the logger itself.
        stream_level: Level of the console handler.
        add_stream_handler: Attach a console handler.
        file_level: Level of the file handler.
        file_mode: Mode the log file is opened with.
        add_file_handler: Attach a rotating file handler.
        propagate: Pass records on to ancestor loggers.
        max_bytes: Size at which the log file is rotated.
        backup_count: Number of rotated files kept.
        use_structlog: Return a structlog ``BoundLogger``. Defaults to ``ROADKILL_LOGGER.USE_STRUCTLOG``.
        structlog_json: Render JSON lines; otherwise use the console renderer.
        structlog_bind: Dict, or callable taking the logger name and returning a dict, of fields bound to the
            returned structlog logger.

    Returns:
        The stdlib logger, or a structlog ``BoundLogger`` wrapping it.

    Example:
        .. code-block:: python

            import logging
            from pathlib import Path

            from roadkill.core.logging import setup_logger

            logger = setup_logger("roadkill", log_dir=Path("/var/log/wiki"), stream_level=logging.INFO)
            logger.info("Wiki storage ready")
    """
    use_structlog = ifnone(use_structlog, CoreSettings().ROADKILL_LOGGER.USE_STRUCTLOG)

    logger = logging.getLogger(name)
    for old_handler in list(logger.handlers):
        logger.removeHandler(old_handler)
        old_handler.close()
    logger.setLevel(logger_level)
    logger.propagate = propagate

    # structlog renders complete lines; the handlers pass them through untouched
    formatter = logging.Formatter("%(message)s") if use_structlog else default_formatter()

    if add_stream_handler:
        console = logging.StreamHandler()
        console.setLevel(stream_level)
        console.setFormatter(formatter)
        logger.addHandler(console)

    if add_file_handler:
        log_file = _log_file_path(name, log_dir, use_structlog)
        log_file.parent.mkdir(parents=True, exist_ok=True)
        rotating = RotatingFileHandler(log_file, mode=file_mode, maxBytes=max_bytes, backupCount=backup_count)
        rotating.setLevel(file_level)
        rotating.setFormatter(formatter)
        logger.addHandler(rotating)

    if not use_structlog:
        return logger

    _configure_structlog(structlog_json)
    bound = structlog.get_logger(name)
    fields = structlog_bind(name) if callable(structlog_bind) else dict(structlog_bind or {})
    return bound.bind(**fields) if fields else bound


def _configure_structlog(as_json: Optional[bool]) -> None:
    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.add_log_level,
            structlog.stdlib.add_logger_name,
            structlog.processors.TimeStamper(fmt="ISO"),
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            _order_keys,
            structlog.processors.JSONRenderer() if as_json else structlog.dev.ConsoleRenderer(),
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )


def _order_keys(_logger, _method_name, event_dict: dict) -> dict:
    """Put the well-known keys first, then the remaining ones alphabetically."""
    leading = {key: event_dict.pop(key) for key in STRUCTLOG_KEY_ORDER if key in event_dict}
    return {**leading, **dict(sorted(event_dict.items()))}


def get_logger(
    name: str | None = ROOT_LOGGER_NAME, use_structlog: bool | None = None, **kwargs
) -> logging.Logger | structlog.stdlib.BoundLogger:
    """Return a configured logger placed under the ``roadkill`` hierarchy.

    ``"database.mongo"`` becomes ``"roadkill.database.mongo"``. Loggers propagate to ``roadkill`` by default and
    then leave console output to it, so one console handler sees every component.

    Args:
        name: Logger name, with or without the ``roadkill.`` prefix.
        use_structlog: Return a structlog logger. Defaults to the configured setting.
        **kwargs: Passed on to ``setup_logger``.

    Example:
        .. code-block:: python

            from roadkill.core.logging import get_logger

            logger = get_logger("database.sql")
            logger.info("Schema created")
    """
    name = name or ROOT_LOGGER_NAME
    if not name.startswith(ROOT_LOGGER_NAME):
        name = f"{ROOT_LOGGER_NAME}.{name}"
    kwargs.setdefault("propagate", True)
    if kwargs["propagate"]:
        kwargs.setdefault("add_stream_handler", False)
    return setup_logger(name, use_structlog=use_structlog, **kwargs)
