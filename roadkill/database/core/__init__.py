from roadkill.database.core.entities import (
    SITE_SETTINGS_ID,
    DataStoreEntity,
    Page,
    PageContent,
    SiteConfigurationEntity,
    SiteSettings,
    User,
)
from roadkill.database.core.exceptions import (
    DataIntegrityError,
    DocumentNotFoundError,
    DuplicateInsertError,
    RepositoryError,
    StorageUnavailableError,
)

__all__ = [
    "DataIntegrityError",
    "DataStoreEntity",
    "DocumentNotFoundError",
    "DuplicateInsertError",
    "Page",
    "PageContent",
    "RepositoryError",
    "SITE_SETTINGS_ID",
    "SiteConfigurationEntity",
    "SiteSettings",
    "StorageUnavailableError",
    "User",
]
