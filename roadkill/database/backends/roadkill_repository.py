from abc import abstractmethod
from datetime import datetime
from typing import Any, Iterable, Optional, Sequence, Type, TypeVar
from uuid import UUID

import roadkill
from roadkill.core import Roadkill, RoadkillABC
from roadkill.core.utils import generate_salt, hash_password
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
    StorageUnavailableError,
)

EntityType = TypeVar("EntityType", bound=DataStoreEntity)

# Contents reference pages, so they go first.
WIPE_ORDER: tuple[Type[DataStoreEntity], ...] = (PageContent, Page, User, SiteConfigurationEntity)


def _argument(args: tuple, kwargs: dict, index: int, name: str) -> Any:
    return args[index] if len(args) > index else kwargs.get(name)


def _new_page_message(function, args, kwargs) -> str:
    return f"Adding new page {_argument(args, kwargs, 0, 'page').title!r}."


def _new_version_message(function, args, kwargs) -> str:
    return f"Adding content version to page {_argument(args, kwargs, 0, 'page').id}."


# Never log the password argument
def _new_admin_message(function, args, kwargs) -> str:
    return f"Adding admin user {_argument(args, kwargs, 1, 'username')!r}."


class UserRepository(RoadkillABC):
    """User lookups and writes.

    Lookups return ``None`` (or an empty list) when nothing matches. Username, email and unconsumed activation keys
    identify at most one user; finding more than one raises ``DataIntegrityError``.
    """

    @abstractmethod
    def get_user_by_id(self, id: UUID, is_activated: Optional[bool] = None) -> Optional[User]:
        """Return the user with the given id, optionally also requiring ``user.is_activated == is_activated``."""
        pass

    @abstractmethod
    def get_admin_by_id(self, id: UUID) -> Optional[User]:
        pass

    @abstractmethod
    def get_editor_by_id(self, id: UUID) -> Optional[User]:
        pass

    @abstractmethod
    def get_user_by_username(self, username: str) -> Optional[User]:
        pass

    @abstractmethod
    def get_user_by_email(self, email: str, is_activated: Optional[bool] = None) -> Optional[User]:
        pass

    @abstractmethod
    def get_user_by_username_or_email(self, username: str, email: str) -> Optional[User]:
        """Return the user matching either key. A username match wins over an email match on a different user."""
        pass

    @abstractmethod
    def get_user_by_activation_key(self, key: str) -> Optional[User]:
        """Return the unactivated user holding ``key``. Keys of activated users are stale and never match."""
        pass

    @abstractmethod
    def get_user_by_password_reset_key(self, key: str) -> Optional[User]:
        pass

    @abstractmethod
    def find_all_editors(self) -> list[User]:
        pass

    @abstractmethod
    def find_all_admins(self) -> list[User]:
        pass

    @abstractmethod
    def save_or_update_user(self, user: User) -> User:
        pass

    @abstractmethod
    def delete_user(self, user: User) -> None:
        pass

    @abstractmethod
    def delete_all_users(self) -> None:
        pass


class PageRepository(RoadkillABC):
    """Pages and their content history."""

    @abstractmethod
    def all_pages(self) -> list[Page]:
        pass

    @abstractmethod
    def get_page_by_id(self, id: int) -> Optional[Page]:
        pass

    @abstractmethod
    def get_page_by_title(self, title: str) -> Optional[Page]:
        """Case-insensitive title lookup."""
        pass

    @abstractmethod
    def find_pages_created_by(self, username: str) -> list[Page]:
        pass

    @abstractmethod
    def find_pages_modified_by(self, username: str) -> list[Page]:
        pass

    @abstractmethod
    def find_pages_containing_tag(self, tag: str) -> list[Page]:
        """Case-insensitive tag match."""
        pass

    @abstractmethod
    def all_tags(self) -> list[str]:
        pass

    @abstractmethod
    def add_new_page(self, page: Page, text: str, edited_by: str, edited_on: datetime) -> PageContent:
        pass

    @abstractmethod
    def add_new_page_content_version(
        self, page: Page, text: str, edited_by: str, edited_on: datetime, version: Optional[int] = None
    ) -> PageContent:
        pass

    @abstractmethod
    def save_or_update_page(self, page: Page) -> Page:
        pass

    @abstractmethod
    def update_page_content(self, content: PageContent) -> PageContent:
        pass

    @abstractmethod
    def get_latest_page_content(self, page_id: int) -> Optional[PageContent]:
        pass

    @abstractmethod
    def get_page_content_by_id(self, id: UUID) -> Optional[PageContent]:
        pass

    @abstractmethod
    def get_page_content_by_page_id_and_version_number(self, page_id: int, version: int) -> Optional[PageContent]:
        pass

    @abstractmethod
    def find_page_contents_by_page_id(self, page_id: int) -> list[PageContent]:
        """All versions of a page, ascending by version number."""
        pass

    @abstractmethod
    def find_page_contents_edited_by(self, username: str) -> list[PageContent]:
        pass

    @abstractmethod
    def all_page_contents(self) -> list[PageContent]:
        pass

    @abstractmethod
    def delete_page(self, page: Page) -> None:
        """Delete the page together with all of its content versions."""
        pass

    @abstractmethod
    def delete_page_content(self, content: PageContent) -> None:
        pass

    @abstractmethod
    def delete_all_pages(self) -> None:
        pass


class SettingsRepository(RoadkillABC):
    @abstractmethod
    def get_site_settings(self) -> SiteSettings:
        pass

    @abstractmethod
    def save_site_settings(self, settings: SiteSettings) -> None:
        pass


class InstallerRepository(RoadkillABC):
    @abstractmethod
    def create_schema(self) -> None:
        """Create tables, constraints or indexes. Safe to call on an existing store."""
        pass

    @abstractmethod
    def add_admin_user(self, email: str, username: str, password: str) -> User:
        pass


class RoadkillRepository(UserRepository, PageRepository, SettingsRepository, InstallerRepository):
    """Storage contract implemented once per backend.

    Backends implement the generic entity operations (``get_by_id``, ``save_or_update``, ``delete``, ``delete_all``,
    ``wipe``) and map each query onto a native filter. Operations that are pure compositions of other operations
    (page versioning, site settings, admin creation, deletes of one entity type) are implemented here once.

    Repositories are context managers; leaving the block releases the connection provider.

    Example:
        .. code-block:: python

            from roadkill.core.config import ApplicationSettings
            from roadkill.database import Page, create_repository

            with create_repository(ApplicationSettings()) as repository:
                repository.create_schema()
                admin = repository.add_admin_user("admin@example.com", "admin", "password")
                page = Page(title="Home", created_by="admin", modified_by="admin")
                content = repository.add_new_page(page, "Welcome", "admin", page.created_on)
    """

    # Generic entity operations

    @abstractmethod
    def get_by_id(self, entity_type: Type[EntityType], object_id: Any) -> Optional[EntityType]:
        pass

    @abstractmethod
    def save_or_update(self, entity: EntityType) -> EntityType:
        """Insert ``entity`` or atomically replace the stored row with the same id; return the persisted record."""
        pass

    @abstractmethod
    def delete(self, entity: DataStoreEntity) -> None:
        """Remove the row with the entity's id. Deleting an absent entity is a no-op.

        A ``Page`` is removed through ``delete_page``, together with its content versions.
        """
        pass

    @abstractmethod
    def delete_all(self, entity_type: Type[DataStoreEntity]) -> None:
        """Remove every row of ``entity_type``; clearing ``Page`` also clears ``PageContent``."""
        pass

    @abstractmethod
    def wipe(self) -> None:
        """Drop PageContent, Page, User and SiteConfigurationEntity.

        Best effort per collection: a failure on one collection does not stop the remaining drops, and is raised as
        ``StorageUnavailableError`` once all of them were attempted.
        """
        pass

    def dispose(self) -> None:
        """Release resources held by the connection provider."""
        pass

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.dispose()
        return super().__exit__(exc_type, exc_val, exc_tb)

    def _single(
        self,
        matches: Sequence[EntityType],
        *,
        operation: str,
        entity_type: Type[DataStoreEntity],
        key: Any = None,
    ) -> Optional[EntityType]:
        """Return the only match, ``None`` for no match, and raise ``DataIntegrityError`` for more than one."""
        if len(matches) > 1:
            msg = f"More than one {entity_type.collection_name()} matches {key!r} in {operation}."
            self.logger.error(msg)
            raise DataIntegrityError(msg, operation=operation, entity_type=entity_type.collection_name(), key=key)
        return matches[0] if matches else None

    def _pick_username_or_email(self, users: Sequence[User], username: str, email: str) -> Optional[User]:
        by_username = [user for user in users if user.username == username]
        if by_username:
            return self._single(by_username, operation="get_user_by_username_or_email", entity_type=User, key=username)
        by_email = [user for user in users if user.email == email]
        return self._single(by_email, operation="get_user_by_username_or_email", entity_type=User, key=email)

    def _raise_wipe_failures(self, failed: list[str]) -> None:
        if failed:
            raise StorageUnavailableError(
                f"Failed to drop {', '.join(failed)} while wiping the store.",
                operation="wipe",
                entity_type=", ".join(failed),
            )

    # Users

    def get_admin_by_id(self, id: UUID) -> Optional[User]:
        user = self.get_user_by_id(id)
        return user if user is not None and user.is_admin else None

    def get_editor_by_id(self, id: UUID) -> Optional[User]:
        user = self.get_user_by_id(id)
        return user if user is not None and user.is_editor else None

    def save_or_update_user(self, user: User) -> User:
        return self.save_or_update(user)

    def delete_user(self, user: User) -> None:
        self.delete(user)

    def delete_all_users(self) -> None:
        self.delete_all(User)

    # Pages

    def get_page_by_id(self, id: int) -> Optional[Page]:
        return self.get_by_id(Page, id)

    def get_page_content_by_id(self, id: UUID) -> Optional[PageContent]:
        return self.get_by_id(PageContent, id)

    def all_tags(self) -> list[str]:
        return _distinct_tags(page.tags for page in self.all_pages())

    def save_or_update_page(self, page: Page) -> Page:
        return self.save_or_update(page)

    def update_page_content(self, content: PageContent) -> PageContent:
        return self.save_or_update(content)

    @Roadkill.autolog(
        prefix_formatter=_new_page_message,
        suffix_formatter=lambda function, result: f"Added page {result.page_id} with content {result.id}.",
    )
    def add_new_page(self, page: Page, text: str, edited_by: str, edited_on: datetime) -> PageContent:
        """Store a new page and its first content version.

        A page with ``id == 0`` receives the next free page id; ``page`` itself is updated with it.

        Raises:
            DuplicateInsertError: If a page with the given non-zero id already exists. Nothing is written.
        """
        if page.id == 0:
            page.id = self._next_page_id()
        elif self.get_page_by_id(page.id) is not None:
            raise DuplicateInsertError(
                f"Page with id {page.id} already exists",
                operation="add_new_page",
                entity_type=Page.collection_name(),
                key=page.id,
            )
        self.save_or_update(page)
        content = PageContent(page_id=page.id, text=text, edited_by=edited_by, edited_on=edited_on, version_number=1)
        return self.save_or_update(content)

    @Roadkill.autolog(
        prefix_formatter=_new_version_message,
        suffix_formatter=lambda function, result: f"Added version {result.version_number} to page {result.page_id}.",
    )
    def add_new_page_content_version(
        self, page: Page, text: str, edited_by: str, edited_on: datetime, version: Optional[int] = None
    ) -> PageContent:
        """Append a content version to an existing page.

        Args:
            page: The page; only its id is used.
            text: The new text.
            edited_by: Username of the editor.
            edited_on: Time of the edit.
            version: Explicit version number. Defaults to one past the page's current version.

        Raises:
            DocumentNotFoundError: If the page does not exist.
        """
        if self.get_page_by_id(page.id) is None:
            raise DocumentNotFoundError(
                f"Page with id {page.id} not found",
                operation="add_new_page_content_version",
                entity_type=Page.collection_name(),
                key=page.id,
            )
        if version is None:
            latest = self.get_latest_page_content(page.id)
            version = latest.version_number + 1 if latest is not None else 1
        content = PageContent(
            page_id=page.id, text=text, edited_by=edited_by, edited_on=edited_on, version_number=version
        )
        return self.save_or_update(content)

    def delete_page_content(self, content: PageContent) -> None:
        self.delete(content)

    def delete_all_pages(self) -> None:
        self.delete_all(Page)

    @abstractmethod
    def _next_page_id(self) -> int:
        """One past the highest stored page id, 1 for an empty store."""
        pass

    # Site settings

    def get_site_settings(self) -> SiteSettings:
        entity = self.get_by_id(SiteConfigurationEntity, SITE_SETTINGS_ID)
        if entity is None:
            return SiteSettings()
        try:
            return SiteSettings.from_json(entity.content)
        except ValueError as e:
            msg = f"Stored site settings {SITE_SETTINGS_ID} are unreadable: {e}"
            self.logger.error(msg)
            raise DataIntegrityError(
                msg,
                operation="get_site_settings",
                entity_type=SiteConfigurationEntity.collection_name(),
                key=SITE_SETTINGS_ID,
            ) from e

    def save_site_settings(self, settings: SiteSettings) -> None:
        entity = SiteConfigurationEntity(id=SITE_SETTINGS_ID, version=roadkill.__version__, content=settings.to_json())
        self.save_or_update(entity)

    # Installer

    @Roadkill.autolog(
        prefix_formatter=_new_admin_message,
        suffix_formatter=lambda function, result: f"Added admin user {result.username!r} ({result.id}).",
    )
    def add_admin_user(self, email: str, username: str, password: str) -> User:
        """Create an activated admin (who is also an editor) with a salted password hash."""
        salt = generate_salt()
        user = User(
            email=email,
            username=username,
            salt=salt,
            password=hash_password(password, salt),
            is_admin=True,
            is_editor=True,
            is_activated=True,
        )
        return self.save_or_update_user(user)


def _distinct_tags(tag_lists: Iterable[list[str]]) -> list[str]:
    seen: set[str] = set()
    tags: list[str] = []
    for page_tags in tag_lists:
        for tag in page_tags:
            tag = tag.strip()
            if tag and tag.lower() not in seen:
                seen.add(tag.lower())
                tags.append(tag)
    return tags
