import threading
from copy import deepcopy
from typing import Any, Callable, Optional, Type
from uuid import UUID

from roadkill.core import Roadkill
from roadkill.database.backends.roadkill_repository import WIPE_ORDER, EntityType, RoadkillRepository
from roadkill.database.core.entities import DataStoreEntity, Page, PageContent, User
from roadkill.database.core.exceptions import DuplicateInsertError

# Unique keys enforced per collection, mirroring the indexes of the other stores.
# Each entry maps a key name to a function returning the key value, or None when the document is exempt.
UNIQUE_KEYS: dict[str, dict[str, Callable[[dict], Any]]] = {
    "User": {
        "username": lambda doc: doc["username"],
        "email": lambda doc: doc["email"],
        "activation_key": lambda doc: doc["activation_key"] if not doc["is_activated"] else None,
    },
    "PageContent": {
        "page_id, version_number": lambda doc: (doc["page_id"], doc["version_number"]),
    },
}


class InMemoryDatabase(Roadkill):
    """Process-local document store: one dict of ``{object_id: document}`` per collection.

    Documents are stored as plain ``model_dump`` dicts, so callers never share state with the store. All access goes
    through the store's own lock.
    """

    def __init__(self, **kwargs):
        super().__init__(**kwargs)
        self._collections: dict[str, dict[Any, dict]] = {}
        self._lock = threading.RLock()

    def documents(self, collection: str) -> list[dict]:
        with self._lock:
            return [deepcopy(doc) for doc in self._collections.get(collection, {}).values()]

    def get(self, collection: str, object_id: Any) -> Optional[dict]:
        with self._lock:
            doc = self._collections.get(collection, {}).get(object_id)
            return deepcopy(doc) if doc is not None else None

    def put(self, collection: str, object_id: Any, document: dict) -> None:
        """Insert or replace a document, rejecting it when it collides with another document on a unique key."""
        with self._lock:
            docs = self._collections.setdefault(collection, {})
            for key_name, key_of in UNIQUE_KEYS.get(collection, {}).items():
                value = key_of(document)
                if value is None:
                    continue
                for other_id, other in docs.items():
                    if other_id != object_id and key_of(other) == value:
                        raise DuplicateInsertError(
                            f"Duplicate key error: {collection}.{key_name} {value!r} already exists",
                            operation="save_or_update",
                            entity_type=collection,
                            key=object_id,
                        )
            docs[object_id] = deepcopy(document)

    def insert_unchecked(self, collection: str, object_id: Any, document: dict) -> None:
        """Store a document without checking unique keys (used to reproduce stores with broken invariants)."""
        with self._lock:
            self._collections.setdefault(collection, {})[object_id] = deepcopy(document)

    def remove(self, collection: str, object_id: Any) -> None:
        with self._lock:
            self._collections.get(collection, {}).pop(object_id, None)

    def remove_where(self, collection: str, predicate: Callable[[dict], bool]) -> int:
        with self._lock:
            docs = self._collections.get(collection, {})
            doomed = [object_id for object_id, doc in docs.items() if predicate(doc)]
            for object_id in doomed:
                del docs[object_id]
            return len(doomed)

    def drop(self, collection: str) -> None:
        with self._lock:
            self._collections.pop(collection, None)

    def max_id(self, collection: str) -> Optional[Any]:
        with self._lock:
            return max(self._collections.get(collection, {}), default=None)


class InMemoryRepository(RoadkillRepository):
    """Roadkill repository over an ``InMemoryDatabase``. Used by tests and demos; nothing survives the process.

    Several repositories may share one store by passing the same ``database``.
    """

    def __init__(self, database: Optional[InMemoryDatabase] = None, **kwargs):
        super().__init__(**kwargs)
        self.database = database if database is not None else InMemoryDatabase()

    def _find(
        self,
        entity_type: Type[EntityType],
        predicate: Callable[[dict], bool] = lambda doc: True,
        sort_key: Optional[Callable[[dict], Any]] = None,
    ) -> list[EntityType]:
        docs = [doc for doc in self.database.documents(entity_type.collection_name()) if predicate(doc)]
        if sort_key is not None:
            docs.sort(key=sort_key)
        return [entity_type.model_validate(doc) for doc in docs]

    def _find_single(
        self, entity_type: Type[EntityType], predicate: Callable[[dict], bool], *, operation: str, key: Any
    ) -> Optional[EntityType]:
        return self._single(self._find(entity_type, predicate), operation=operation, entity_type=entity_type, key=key)

    # Generic entity operations

    def get_by_id(self, entity_type: Type[EntityType], object_id: Any) -> Optional[EntityType]:
        doc = self.database.get(entity_type.collection_name(), object_id)
        return entity_type.model_validate(doc) if doc is not None else None

    def save_or_update(self, entity: EntityType) -> EntityType:
        self.database.put(entity.collection_name(), entity.object_id, entity.model_dump())
        self.logger.debug(f"Saved {entity.collection_name()} {entity.object_id}.")
        return entity.model_copy(deep=True)

    def delete(self, entity: DataStoreEntity) -> None:
        if isinstance(entity, Page):
            self.delete_page(entity)
            return
        self.database.remove(entity.collection_name(), entity.object_id)
        self.logger.debug(f"Deleted {entity.collection_name()} {entity.object_id}.")

    def delete_all(self, entity_type: Type[DataStoreEntity]) -> None:
        if entity_type is Page:
            self.database.remove_where(PageContent.collection_name(), lambda doc: True)
        removed = self.database.remove_where(entity_type.collection_name(), lambda doc: True)
        self.logger.debug(f"Deleted all {entity_type.collection_name()} documents ({removed}).")

    def wipe(self) -> None:
        for entity_type in WIPE_ORDER:
            self.database.drop(entity_type.collection_name())
        self.logger.debug("Wiped in-memory store.")

    # Installer

    def create_schema(self) -> None:
        # Unique keys are always enforced by the store
        self.logger.debug("In-memory store needs no schema.")

    # Users

    def get_user_by_id(self, id: UUID, is_activated: Optional[bool] = None) -> Optional[User]:
        return self._find_single(
            User,
            lambda doc: doc["id"] == id and (is_activated is None or doc["is_activated"] == is_activated),
            operation="get_user_by_id",
            key=id,
        )

    def get_user_by_username(self, username: str) -> Optional[User]:
        return self._find_single(
            User, lambda doc: doc["username"] == username, operation="get_user_by_username", key=username
        )

    def get_user_by_email(self, email: str, is_activated: Optional[bool] = None) -> Optional[User]:
        return self._find_single(
            User,
            lambda doc: doc["email"] == email and (is_activated is None or doc["is_activated"] == is_activated),
            operation="get_user_by_email",
            key=email,
        )

    def get_user_by_username_or_email(self, username: str, email: str) -> Optional[User]:
        users = self._find(User, lambda doc: doc["username"] == username or doc["email"] == email)
        return self._pick_username_or_email(users, username, email)

    def get_user_by_activation_key(self, key: str) -> Optional[User]:
        return self._find_single(
            User,
            lambda doc: doc["activation_key"] == key and doc["is_activated"] is False,
            operation="get_user_by_activation_key",
            key=key,
        )

    def get_user_by_password_reset_key(self, key: str) -> Optional[User]:
        return self._find_single(
            User, lambda doc: doc["password_reset_key"] == key, operation="get_user_by_password_reset_key", key=key
        )

    def find_all_editors(self) -> list[User]:
        return self._find(User, lambda doc: doc["is_editor"])

    def find_all_admins(self) -> list[User]:
        return self._find(User, lambda doc: doc["is_admin"])

    # Pages

    def all_pages(self) -> list[Page]:
        return self._find(Page, sort_key=_by_id)

    def get_page_by_title(self, title: str) -> Optional[Page]:
        pages = self._find(Page, lambda doc: doc["title"].lower() == title.lower(), sort_key=_by_id)
        return pages[0] if pages else None

    def find_pages_created_by(self, username: str) -> list[Page]:
        return self._find(Page, lambda doc: doc["created_by"] == username, sort_key=_by_id)

    def find_pages_modified_by(self, username: str) -> list[Page]:
        return self._find(Page, lambda doc: doc["modified_by"] == username, sort_key=_by_id)

    def find_pages_containing_tag(self, tag: str) -> list[Page]:
        wanted = tag.strip().lower()
        return self._find(Page, lambda doc: any(t.strip().lower() == wanted for t in doc["tags"]), sort_key=_by_id)

    def get_latest_page_content(self, page_id: int) -> Optional[PageContent]:
        contents = self.find_page_contents_by_page_id(page_id)
        return contents[-1] if contents else None

    def get_page_content_by_page_id_and_version_number(self, page_id: int, version: int) -> Optional[PageContent]:
        return self._find_single(
            PageContent,
            lambda doc: doc["page_id"] == page_id and doc["version_number"] == version,
            operation="get_page_content_by_page_id_and_version_number",
            key=(page_id, version),
        )

    def find_page_contents_by_page_id(self, page_id: int) -> list[PageContent]:
        return self._find(PageContent, lambda doc: doc["page_id"] == page_id, sort_key=_by_version)

    def find_page_contents_edited_by(self, username: str) -> list[PageContent]:
        return self._find(PageContent, lambda doc: doc["edited_by"] == username, sort_key=_by_page_and_version)

    def all_page_contents(self) -> list[PageContent]:
        return self._find(PageContent, sort_key=_by_page_and_version)

    def delete_page(self, page: Page) -> None:
        self.database.remove_where(PageContent.collection_name(), lambda doc: doc["page_id"] == page.id)
        self.database.remove(Page.collection_name(), page.id)
        self.logger.debug(f"Deleted page {page.id} and its content versions.")

    def _next_page_id(self) -> int:
        highest = self.database.max_id(Page.collection_name())
        return (highest or 0) + 1


def _by_id(doc: dict) -> Any:
    return doc["id"]


def _by_version(doc: dict) -> int:
    return doc["version_number"]


def _by_page_and_version(doc: dict) -> tuple:
    return doc["page_id"], doc["version_number"]
