"""Entities persisted by the Roadkill storage layer.

Each entity is a plain pydantic record with a stable ``object_id``. Backends store one collection (or table) per
entity class, named after the class, with field names mapping one-to-one onto the record's attributes.
"""

import json
from datetime import datetime, timezone
from typing import Annotated, Any, ClassVar, Optional
from uuid import UUID, uuid4

from pydantic import AfterValidator, BaseModel, ConfigDict, Field

SITE_SETTINGS_ID = UUID("b960e8e5-529f-4f7c-aee4-28eb23e13dbd")


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


UtcDateTime = Annotated[datetime, AfterValidator(_as_utc)]


class DataStoreEntity(BaseModel):
    """Base class for all stored entities.

    Two entities are equal when they have the same type and the same ``object_id``; field values are not compared.
    Subclasses declare an ``id`` field holding the identifier.
    """

    model_config = ConfigDict(validate_assignment=True)

    @property
    def object_id(self) -> Any:
        return self.id

    @classmethod
    def collection_name(cls) -> str:
        return cls.__name__

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, DataStoreEntity):
            return NotImplemented
        return type(self) is type(other) and self.object_id == other.object_id

    def __hash__(self) -> int:
        return hash((type(self).__name__, self.object_id))


class User(DataStoreEntity):
    id: UUID = Field(default_factory=uuid4)
    username: str
    email: str
    password: str = ""
    salt: str = ""
    firstname: Optional[str] = None
    lastname: Optional[str] = None
    is_admin: bool = False
    is_editor: bool = False
    is_activated: bool = False
    activation_key: Optional[str] = None
    password_reset_key: Optional[str] = None


class Page(DataStoreEntity):
    """A wiki page. ``id == 0`` means the page has not been persisted yet; the backend assigns the next id."""

    id: int = 0
    title: str = ""
    tags: list[str] = Field(default_factory=list)
    created_by: str = ""
    created_on: UtcDateTime = Field(default_factory=utcnow)
    modified_by: str = ""
    modified_on: UtcDateTime = Field(default_factory=utcnow)
    is_locked: bool = False


class PageContent(DataStoreEntity):
    """One version of a page's text. The current version is the one with the highest ``version_number``."""

    id: UUID = Field(default_factory=uuid4)
    page_id: int
    text: str = ""
    edited_by: str = ""
    edited_on: UtcDateTime = Field(default_factory=utcnow)
    version_number: int = 1


class SiteConfigurationEntity(DataStoreEntity):
    id: UUID = Field(default_factory=uuid4)
    version: str = ""
    content: str = "{}"


class SiteSettings(BaseModel):
    """Site-wide settings that can change while the application runs.

    Not an entity of its own: the settings are serialized to JSON and stored in the ``SiteConfigurationEntity``
    row whose id is ``SITE_SETTINGS_ID``.

    Example:
        .. code-block:: python

            settings = repository.get_site_settings()
            settings.site_name = "Team wiki"
            repository.save_site_settings(settings)
    """

    DEFAULT_MENU_MARKUP: ClassVar[str] = (
        "* %mainpage%\n* %categories%\n* %allpages%\n* %newpage%\n* %managefiles%\n* %sitesettings%\n\n"
    )

    installed: bool = False
    theme: str = "Responsive"
    markup_type: str = "Creole"
    site_name: str = "Roadkill"
    site_url: str = ""
    allowed_file_types: str = "jpg,png,gif,zip,xml,pdf"
    allow_user_signup: bool = False
    is_recaptcha_enabled: bool = False
    recaptcha_public_key: str = ""
    recaptcha_private_key: str = ""
    overwrite_existing_files: bool = False
    header_html: str = ""
    footer_html: str = ""
    menu_markup: str = DEFAULT_MENU_MARKUP

    @property
    def allowed_file_types_list(self) -> list[str]:
        return [ext.strip().lower() for ext in self.allowed_file_types.split(",") if ext.strip()]

    def to_json(self) -> str:
        return self.model_dump_json()

    @classmethod
    def from_json(cls, content: str | None) -> "SiteSettings":
        """Parse stored settings; empty content or keys that are no longer known fall back to defaults.

        Raises:
            ValueError: If the content is not a JSON object of valid settings.
        """
        if not content:
            return cls()
        data = json.loads(content)
        if not isinstance(data, dict):
            raise ValueError("Site settings content is not a JSON object.")
        return cls(**{k: v for k, v in data.items() if k in cls.model_fields})


ENTITY_TYPES: tuple[type[DataStoreEntity], ...] = (User, Page, PageContent, SiteConfigurationEntity)
