"""Application settings that require a process restart when changed."""

from pydantic import Field, SecretStr, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

import roadkill


class ApplicationSettings(BaseSettings):
    """Settings provider consumed by the storage layer and the surrounding application.

    Values come from constructor kwargs, then ``ROADKILL_*`` environment variables, then a ``.env`` file. The storage
    layer only reads ``connection_string`` and ``database_name``; ``database_name`` selects the repository backend
    (see ``roadkill.database.SupportedDatabase``), the connection string is a ``SecretStr`` (it may carry
    credentials) and is handed to that backend untouched.

    Example:
        .. code-block:: python

            from roadkill.core.config import ApplicationSettings
            from roadkill.database import create_repository

            settings = ApplicationSettings(database_name="MongoDB", connection_string="mongodb://localhost/roadkill")
            repository = create_repository(settings)
    """

    model_config = SettingsConfigDict(
        env_prefix="ROADKILL_",
        env_nested_delimiter="__",
        env_file=".env",
        extra="ignore",
    )

    connection_string: SecretStr = SecretStr("sqlite:///roadkill.db")
    database_name: str = "Sqlite"

    admin_role_name: str = "Admin"
    editor_role_name: str = "Editor"

    attachments_folder: str = "~/App_Data/Attachments"
    attachments_route_path: str = "Attachments"

    api_keys: list[str] = Field(default_factory=list)
    is_public_site: bool = True
    installed: bool = False
    minimum_password_length: int = 6

    use_object_cache: bool = True
    use_browser_cache: bool = False
    use_html_white_list: bool = True

    search_index_path: str = "App_Data/Internal/Search"
    ignore_search_index_errors: bool = True

    @field_validator("attachments_route_path")
    @classmethod
    def _strip_route_slashes(cls, value: str) -> str:
        if not value or not value.strip("/"):
            raise ValueError("The attachments_route_path cannot be empty.")
        return value.strip("/")

    @property
    def attachments_url_path(self) -> str:
        """URL path of the attachments route, starting with "/" and without a trailing "/"."""
        return f"/{self.attachments_route_path}"

    @property
    def is_rest_api_enabled(self) -> bool:
        """The REST api is only available when api keys are configured."""
        return bool(self.api_keys)

    @property
    def product_version(self) -> str:
        return roadkill.__version__

    @property
    def file_version(self) -> str:
        parts = (roadkill.__version__.split("-")[0].split(".") + ["0", "0", "0", "0"])[:4]
        return ".".join(parts)
