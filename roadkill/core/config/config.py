import configparser
import os
from copy import deepcopy
from pathlib import Path
from typing import Any, Optional, Union

from pydantic import BaseModel, SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict

CONFIG_INI = Path(__file__).parent / "config.ini"
SECRET_MASK = "********"


class LoggerSettings(BaseModel):
    USE_STRUCTLOG: bool = False


class DirPathSettings(BaseModel):
    ROOT: str
    LOGGER_DIR: str
    STRUCT_LOGGER_DIR: str


def _expand_user(value: Any) -> Any:
    if isinstance(value, dict):
        return {key: _expand_user(item) for key, item in value.items()}
    if isinstance(value, str) and value.startswith("~"):
        return os.path.expanduser(value)
    return value


def load_ini_as_dict(ini_path: Path) -> dict[str, dict[str, str]]:
    """Read an INI file into ``{SECTION: {KEY: value}}``.

    Section and key names are upper-cased, ``${KEY}`` references are interpolated within the file and values that
    start with ``~`` are expanded to the user's home directory. A missing file yields an empty dict.

    Example:
        .. code-block:: ini

            [ROADKILL_DIR_PATHS]
            ROOT = ~/.cache/roadkill
            LOGGER_DIR = ${ROOT}/logs

        .. code-block:: python

            paths = load_ini_as_dict(Path("config.ini"))["ROADKILL_DIR_PATHS"]
            print(paths["LOGGER_DIR"])  # /home/me/.cache/roadkill/logs
    """
    if not ini_path.exists():
        return {}

    parser = configparser.ConfigParser(interpolation=configparser.ExtendedInterpolation())
    parser.optionxform = str
    parser.read(ini_path)
    return {
        section.upper(): _expand_user({key.upper(): value for key, value in parser[section].items()})
        for section in parser.sections()
    }


class CoreSettings(BaseSettings):
    """Runtime settings of the roadkill package itself (log locations, structlog switch).

    Sources, highest precedence first: constructor kwargs, environment variables such as
    ``ROADKILL_DIR_PATHS__LOGGER_DIR`` (``~`` expanded), a ``.env`` file, and the packaged ``config.ini``.
    """

    ROADKILL_LOGGER: LoggerSettings = LoggerSettings()
    ROADKILL_DIR_PATHS: DirPathSettings

    model_config = SettingsConfigDict(env_nested_delimiter="__", extra="ignore")

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls,
        init_settings,
        env_settings,
        dotenv_settings,
        file_secret_settings,
    ):
        def expanded_env_settings():
            return _expand_user(env_settings())

        def packaged_ini_settings():
            return load_ini_as_dict(CONFIG_INI)

        return init_settings, expanded_env_settings, dotenv_settings, packaged_ini_settings, file_secret_settings


SettingsLike = Union[dict[str, Any], BaseModel, list[Union[dict[str, Any], BaseModel]], None]


def _view(value: Any) -> Any:
    return _AttrView(value) if isinstance(value, dict) else value


class _AttrView:
    """Attribute access into a nested config section (``config.SECTION.KEY``)."""

    __slots__ = ("_data",)

    def __init__(self, data: dict[str, Any]):
        self._data = data

    def __getattr__(self, name: str) -> Any:
        try:
            return _view(self._data[name])
        except KeyError:
            raise AttributeError(f"No such attribute: {name}") from None

    def __getitem__(self, key: str) -> Any:
        return _view(self._data[key])

    def __contains__(self, key: str) -> bool:
        return key in self._data

    def __repr__(self) -> str:
        return f"_AttrView({self._data!r})"


class Config(dict):
    """Merged view over dicts and pydantic models.

    Sources are deep-merged in order, later sources winning key by key. Values are reachable both as
    ``config["SECTION"]["KEY"]`` and ``config.SECTION.KEY``. ``SecretStr`` fields (a connection string carrying
    credentials, say) are stored masked and can be read back with ``get_secret``.

    Args:
        sources: A dict, a pydantic model or settings object, or a list of them.

    Example:
        .. code-block:: python

            from roadkill.core.config import ApplicationSettings, Config

            config = Config([ApplicationSettings(), {"database_name": "MongoDB"}])
            config.database_name  # "MongoDB"
    """

    def __init__(self, sources: SettingsLike = None):
        self._secrets: dict[tuple[str, ...], str] = {}
        merged: dict[str, Any] = {}
        for source in sources if isinstance(sources, list) else [sources]:
            if isinstance(source, BaseModel):
                source = source.model_dump()
            if isinstance(source, dict):
                _merge(merged, deepcopy(source))
        super().__init__(self._mask(merged, ()))

    def __getattr__(self, name: str) -> Any:
        try:
            return _view(self[name])
        except KeyError:
            raise AttributeError(f"No such attribute: {name}") from None

    def get_secret(self, *path: str) -> Optional[str]:
        """Return the unmasked value of a secret, e.g. ``get_secret("DATABASE", "PASSWORD")``."""
        return self._secrets.get(path)

    def secret_paths(self) -> list[str]:
        return sorted(".".join(path) for path in self._secrets)

    def _mask(self, node: Any, path: tuple[str, ...]) -> Any:
        if isinstance(node, SecretStr):
            self._secrets[path] = node.get_secret_value()
            return SECRET_MASK
        if isinstance(node, dict):
            return {key: self._mask(value, path + (key,)) for key, value in node.items()}
        return node


def _merge(base: dict, override: dict) -> None:
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(base.get(key), dict):
            _merge(base[key], value)
        else:
            base[key] = value


class CoreConfig(Config):
    """``Config`` seeded with ``CoreSettings``; any extra sources are merged on top of it.

    Example:
        .. code-block:: python

            from roadkill.core.config import CoreConfig

            config = CoreConfig({"ROADKILL_LOGGER": {"USE_STRUCTLOG": True}})
            config.ROADKILL_DIR_PATHS.LOGGER_DIR
    """

    def __init__(self, sources: SettingsLike = None):
        extra = sources if isinstance(sources, list) else [sources]
        super().__init__([CoreSettings(), *extra])
