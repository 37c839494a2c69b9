"""
Core configuration module for Roadkill.

Provides layered settings (constructor > environment > .env > packaged INI), a dict-like Config view with secret
masking, and the ApplicationSettings consumed by the storage layer.
"""

from roadkill.core.config.config import Config, CoreConfig, CoreSettings, SettingsLike, load_ini_as_dict
from roadkill.core.config.settings import ApplicationSettings

__all__ = ["ApplicationSettings", "Config", "CoreConfig", "CoreSettings", "SettingsLike", "load_ini_as_dict"]
