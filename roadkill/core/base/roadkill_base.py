"""Base classes shared by every Roadkill component: class-level logger and config, context management, autolog."""

import inspect
import logging
import time
import traceback
from abc import ABC, ABCMeta
from functools import wraps
from typing import Any, Callable, Optional

from roadkill.core.config import CoreConfig, SettingsLike
from roadkill.core.logging.logger import get_logger
from roadkill.core.utils import ifnone

# Constructor kwargs that configure the component's logger rather than the component itself
LOGGER_OPTIONS = frozenset(
    {
        "log_dir",
        "logger_level",
        "stream_level",
        "file_level",
        "file_mode",
        "propagate",
        "max_bytes",
        "backup_count",
        "use_structlog",
        "structlog_json",
        "structlog_bind",
    }
)


def _started_message(function: Callable, args: tuple, kwargs: dict) -> str:
    return f"Operation {function.__name__} started with args: {args} and kwargs: {kwargs}"


def _completed_message(function: Callable, result: Any) -> str:
    return f"Operation {function.__name__} completed with result: {result}"


def _failed_message(function: Callable, error: Exception, stack_trace: str) -> str:
    return f"Operation {function.__name__} failed with the following error: {error}\n{stack_trace}"


class RoadkillMeta(type):
    """Metaclass giving every Roadkill class a lazily created ``logger`` and ``config`` at class level.

    Class methods and instance methods therefore log through the same named logger::

        class MongoRepository(Roadkill):
            @classmethod
            def describe(cls):
                cls.logger.info("...")  # logger "roadkill.<module>.MongoRepository"
    """

    def __init__(cls, name, bases, attr_dict):
        super().__init__(name, bases, attr_dict)
        cls._logger = None
        cls._config = None
        cls._logger_kwargs = None

    @property
    def logger(cls):
        if cls._logger is None:
            cls._logger = get_logger(cls.unique_name, **(cls._logger_kwargs or {}))
        return cls._logger

    @logger.setter
    def logger(cls, new_logger):
        cls._logger = new_logger

    @property
    def unique_name(cls) -> str:
        return f"{cls.__module__}.{cls.__name__}"

    @property
    def config(cls):
        if cls._config is None:
            cls._config = CoreConfig()
        return cls._config

    @config.setter
    def config(cls, new_config):
        cls._config = new_config


class Roadkill(metaclass=RoadkillMeta):
    """Base class for Roadkill components.

    Instances carry a ``config`` and a ``logger`` and can be used as context managers; an exception leaving the
    ``with`` block is logged and, unless ``suppress`` is set, re-raised.

    Args:
        suppress: Swallow exceptions raised inside a ``with`` block after logging them.
        config_overrides: Sources merged on top of ``CoreSettings`` into ``self.config``.
        **kwargs: Logger options (``log_dir``, ``logger_level``, ``stream_level``, ``file_level``, ``file_mode``,
            ``propagate``, ``max_bytes``, ``backup_count``, ``use_structlog``, ``structlog_json``,
            ``structlog_bind``) for ``get_logger``. Anything else is passed up the MRO.
    """

    def __init__(self, suppress: bool = False, *, config_overrides: SettingsLike | None = None, **kwargs):
        logger_kwargs = {key: value for key, value in kwargs.items() if key in LOGGER_OPTIONS}
        super().__init__(**{key: value for key, value in kwargs.items() if key not in LOGGER_OPTIONS})

        self.suppress = suppress
        self.config = CoreConfig(config_overrides)
        type(self)._logger_kwargs = logger_kwargs
        self.logger = get_logger(self.unique_name, **logger_kwargs)

    @property
    def unique_name(self) -> str:
        return type(self).unique_name

    @property
    def name(self) -> str:
        return type(self).__name__

    def __enter__(self):
        self.logger.debug(f"Entering {self.name} context.")
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.logger.debug(f"Leaving {self.name} context.")
        if exc_type is None:
            return False
        self.logger.exception("Exception occurred", exc_info=(exc_type, exc_val, exc_tb))
        return self.suppress

    @classmethod
    def autolog(
        cls,
        log_level=logging.DEBUG,
        prefix_formatter: Optional[Callable] = None,
        suffix_formatter: Optional[Callable] = None,
        exception_formatter: Optional[Callable] = None,
        include_duration: bool = True,
    ):
        """Decorator logging a method's call, its result and any exception through ``self.logger``.

        Works for sync and async methods. Exceptions are logged at error level, with their traceback, and re-raised.

        Args:
            log_level: Level of the start and completion records.
            prefix_formatter: ``(function, args, kwargs) -> str`` for the start record. ``args`` excludes ``self``.
            suffix_formatter: ``(function, result) -> str`` for the completion record.
            exception_formatter: ``(function, error, stack_trace) -> str`` for the error record.
            include_duration: Append ``| duration_ms=...`` to the completion and error records.

        Example:
            .. code-block:: python

                from roadkill.core import Roadkill

                class Installer(Roadkill):
                    @Roadkill.autolog()
                    def install(self, repository):
                        repository.create_schema()
                        return True

            logs records like::

                Operation install started with args: (<SqlRepository>,) and kwargs: {}
                Operation install completed with result: True | duration_ms=3.12
        """
        prefix_formatter = ifnone(prefix_formatter, _started_message)
        suffix_formatter = ifnone(suffix_formatter, _completed_message)
        exception_formatter = ifnone(exception_formatter, _failed_message)

        def decorator(function):
            def timed(message: str, started_at: float) -> str:
                if not include_duration:
                    return message
                return f"{message} | duration_ms={(time.perf_counter() - started_at) * 1000.0:.2f}"

            def log_start(self, args, kwargs) -> float:
                self.logger.log(log_level, prefix_formatter(function, args, kwargs))
                return time.perf_counter()

            def log_result(self, result, started_at: float) -> None:
                self.logger.log(log_level, timed(suffix_formatter(function, result), started_at))

            def log_error(self, error: Exception, started_at: float) -> None:
                self.logger.error(timed(exception_formatter(function, error, traceback.format_exc()), started_at))

            if inspect.iscoroutinefunction(function):

                @wraps(function)
                async def async_wrapper(self, *args, **kwargs):
                    started_at = log_start(self, args, kwargs)
                    try:
                        result = await function(self, *args, **kwargs)
                    except Exception as e:
                        log_error(self, e, started_at)
                        raise
                    log_result(self, result, started_at)
                    return result

                return async_wrapper

            @wraps(function)
            def wrapper(self, *args, **kwargs):
                started_at = log_start(self, args, kwargs)
                try:
                    result = function(self, *args, **kwargs)
                except Exception as e:
                    log_error(self, e, started_at)
                    raise
                log_result(self, result, started_at)
                return result

            return wrapper

        return decorator


class RoadkillABCMeta(RoadkillMeta, ABCMeta):
    """Combined metaclass so a class can derive from both ``Roadkill`` and ``ABC``."""

    pass


class RoadkillABC(Roadkill, ABC, metaclass=RoadkillABCMeta):
    """Abstract Roadkill component; repositories and connection providers derive from it.

    Example:
        .. code-block:: python

            from abc import abstractmethod
            from roadkill.core import RoadkillABC

            class Store(RoadkillABC):
                @abstractmethod
                def wipe(self):
                    pass
    """

    pass
