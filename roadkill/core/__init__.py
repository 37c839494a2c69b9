from roadkill.core.utils.checks import ifnone
from roadkill.core.config import ApplicationSettings, Config, CoreConfig, CoreSettings
from roadkill.core.logging.logger import get_logger, setup_logger

setup_logger()  # Initialize the default logger

from roadkill.core.base import Roadkill, RoadkillABC, RoadkillMeta

__all__ = [
    "ApplicationSettings",
    "Config",
    "CoreConfig",
    "CoreSettings",
    "get_logger",
    "ifnone",
    "Roadkill",
    "RoadkillABC",
    "RoadkillMeta",
    "setup_logger",
]
