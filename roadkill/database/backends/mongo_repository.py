import re
from contextlib import contextmanager
from typing import Any, Iterator, Optional, Type
from uuid import UUID

from pymongo import ASCENDING, DESCENDING, ReturnDocument
from pymongo.collection import Collection
from pymongo.errors import DuplicateKeyError, PyMongoError

from roadkill.database.backends.connections import MongoConnectionProvider, MongoProvider
from roadkill.database.backends.roadkill_repository import WIPE_ORDER, EntityType, RoadkillRepository
from roadkill.database.core.entities import DataStoreEntity, Page, PageContent, User
from roadkill.database.core.exceptions import DuplicateInsertError, StorageUnavailableError


def _exact_ignore_case(value: str) -> dict:
    return {"$regex": f"^{re.escape(value)}$", "$options": "i"}


class MongoRepository(RoadkillRepository):
    """MongoDB implementation of the Roadkill repository.

    Every entity type lives in a collection named after its class. Documents are stored as
    ``{"_id": entity.object_id, **fields}``; UUIDs use the standard BSON representation and datetimes are read back
    as timezone-aware UTC values.

    Args:
        provider: A ``MongoProvider``, or a connection string for which a per-operation ``MongoConnectionProvider``
            is created. The database name is taken from the URI path.
        **kwargs: Passed on to the ``Roadkill`` base class (logger options).

    Example:
        .. code-block:: python

            from roadkill.database import MongoRepository, User

            repository = MongoRepository("mongodb://localhost:27017/roadkill")
            repository.create_schema()
            repository.save_or_update_user(User(username="alice", email="alice@example.com"))
            alice = repository.get_user_by_username("alice")
    """

    def __init__(self, provider: MongoProvider | str, **kwargs):
        super().__init__(**kwargs)
        self.provider = provider if isinstance(provider, MongoProvider) else MongoConnectionProvider(provider)

    @contextmanager
    def _collection(
        self, entity_type: Type[DataStoreEntity], operation: str, key: Any = None
    ) -> Iterator[Collection]:
        """Yield the entity's collection, translating driver errors into repository errors."""
        name = entity_type.collection_name()
        try:
            with self.provider.database() as database:
                yield database[name]
        except DuplicateKeyError as e:
            raise DuplicateInsertError(
                f"Duplicate key error: {str(e)}", operation=operation, entity_type=name, key=key
            ) from e
        except PyMongoError as e:
            raise StorageUnavailableError(
                f"MongoDB failure during {operation}: {str(e)}", operation=operation, entity_type=name, key=key
            ) from e

    @staticmethod
    def _to_document(entity: DataStoreEntity) -> dict:
        document = entity.model_dump()
        document["_id"] = document.pop("id")
        return document

    @staticmethod
    def _to_entity(entity_type: Type[EntityType], document: dict) -> EntityType:
        data = dict(document)
        data["id"] = data.pop("_id")
        return entity_type.model_validate(data)

    def _find(
        self,
        entity_type: Type[EntityType],
        query: dict,
        *,
        operation: str,
        key: Any = None,
        sort: Optional[list] = None,
        limit: int = 0,
    ) -> list[EntityType]:
        with self._collection(entity_type, operation, key) as collection:
            documents = list(collection.find(query, sort=sort, limit=limit))
        return [self._to_entity(entity_type, document) for document in documents]

    def _find_single(
        self, entity_type: Type[EntityType], query: dict, *, operation: str, key: Any
    ) -> Optional[EntityType]:
        # Two documents are enough to detect a broken uniqueness invariant
        matches = self._find(entity_type, query, operation=operation, key=key, limit=2)
        return self._single(matches, operation=operation, entity_type=entity_type, key=key)

    # Generic entity operations

    def get_by_id(self, entity_type: Type[EntityType], object_id: Any) -> Optional[EntityType]:
        return self._find_single(entity_type, {"_id": object_id}, operation="get_by_id", key=object_id)

    def save_or_update(self, entity: EntityType) -> EntityType:
        document = self._to_document(entity)
        with self._collection(type(entity), "save_or_update", entity.object_id) as collection:
            stored = collection.find_one_and_replace(
                {"_id": document["_id"]}, document, upsert=True, return_document=ReturnDocument.AFTER
            )
        self.logger.debug(f"Saved {entity.collection_name()} {entity.object_id}.")
        return self._to_entity(type(entity), stored) if stored is not None else entity.model_copy()

    def delete(self, entity: DataStoreEntity) -> None:
        if isinstance(entity, Page):
            self.delete_page(entity)
            return
        with self._collection(type(entity), "delete", entity.object_id) as collection:
            collection.delete_one({"_id": entity.object_id})
        self.logger.debug(f"Deleted {entity.collection_name()} {entity.object_id}.")

    def delete_all(self, entity_type: Type[DataStoreEntity]) -> None:
        if entity_type is Page:
            with self._collection(PageContent, "delete_all") as contents:
                contents.delete_many({})
        with self._collection(entity_type, "delete_all") as collection:
            result = collection.delete_many({})
        self.logger.debug(f"Deleted all {entity_type.collection_name()} documents ({result.deleted_count}).")

    def wipe(self) -> None:
        failed = []
        for entity_type in WIPE_ORDER:
            name = entity_type.collection_name()
            try:
                with self.provider.database() as database:
                    database.drop_collection(name)
            except PyMongoError as e:
                self.logger.error(f"Failed to drop collection {name}: {e}")
                failed.append(name)
            else:
                self.logger.debug(f"Dropped collection {name}.")
        self._raise_wipe_failures(failed)

    def dispose(self) -> None:
        self.provider.dispose()

    # Installer

    def create_schema(self) -> None:
        with self._collection(User, "create_schema") as users:
            users.create_index([("username", ASCENDING)], unique=True, name="username_unique")
            users.create_index([("email", ASCENDING)], unique=True, name="email_unique")
            # Activation keys are only unique while unconsumed
            users.create_index(
                [("activation_key", ASCENDING)],
                unique=True,
                name="activation_key_unconsumed_unique",
                partialFilterExpression={"is_activated": False, "activation_key": {"$type": "string"}},
            )
        with self._collection(PageContent, "create_schema") as contents:
            contents.create_index(
                [("page_id", ASCENDING), ("version_number", ASCENDING)], unique=True, name="page_version_unique"
            )
        self.logger.info("Created MongoDB indexes.")

    # Users

    def get_user_by_id(self, id: UUID, is_activated: Optional[bool] = None) -> Optional[User]:
        query: dict[str, Any] = {"_id": id}
        if is_activated is not None:
            query["is_activated"] = is_activated
        return self._find_single(User, query, operation="get_user_by_id", key=id)

    def get_user_by_username(self, username: str) -> Optional[User]:
        return self._find_single(User, {"username": username}, operation="get_user_by_username", key=username)

    def get_user_by_email(self, email: str, is_activated: Optional[bool] = None) -> Optional[User]:
        query: dict[str, Any] = {"email": email}
        if is_activated is not None:
            query["is_activated"] = is_activated
        return self._find_single(User, query, operation="get_user_by_email", key=email)

    def get_user_by_username_or_email(self, username: str, email: str) -> Optional[User]:
        users = self._find(
            User,
            {"$or": [{"username": username}, {"email": email}]},
            operation="get_user_by_username_or_email",
            key=username,
        )
        return self._pick_username_or_email(users, username, email)

    def get_user_by_activation_key(self, key: str) -> Optional[User]:
        return self._find_single(
            User, {"activation_key": key, "is_activated": False}, operation="get_user_by_activation_key", key=key
        )

    def get_user_by_password_reset_key(self, key: str) -> Optional[User]:
        return self._find_single(
            User, {"password_reset_key": key}, operation="get_user_by_password_reset_key", key=key
        )

    def find_all_editors(self) -> list[User]:
        return self._find(User, {"is_editor": True}, operation="find_all_editors")

    def find_all_admins(self) -> list[User]:
        return self._find(User, {"is_admin": True}, operation="find_all_admins")

    # Pages

    def all_pages(self) -> list[Page]:
        return self._find(Page, {}, operation="all_pages", sort=[("_id", ASCENDING)])

    def get_page_by_title(self, title: str) -> Optional[Page]:
        pages = self._find(
            Page,
            {"title": _exact_ignore_case(title)},
            operation="get_page_by_title",
            key=title,
            sort=[("_id", ASCENDING)],
            limit=1,
        )
        return pages[0] if pages else None

    def find_pages_created_by(self, username: str) -> list[Page]:
        return self._find(
            Page, {"created_by": username}, operation="find_pages_created_by", key=username, sort=[("_id", ASCENDING)]
        )

    def find_pages_modified_by(self, username: str) -> list[Page]:
        return self._find(
            Page, {"modified_by": username}, operation="find_pages_modified_by", key=username, sort=[("_id", ASCENDING)]
        )

    def find_pages_containing_tag(self, tag: str) -> list[Page]:
        # A regex on an array field matches any element
        return self._find(
            Page,
            {"tags": _exact_ignore_case(tag.strip())},
            operation="find_pages_containing_tag",
            key=tag,
            sort=[("_id", ASCENDING)],
        )

    def get_latest_page_content(self, page_id: int) -> Optional[PageContent]:
        contents = self._find(
            PageContent,
            {"page_id": page_id},
            operation="get_latest_page_content",
            key=page_id,
            sort=[("version_number", DESCENDING)],
            limit=1,
        )
        return contents[0] if contents else None

    def get_page_content_by_page_id_and_version_number(self, page_id: int, version: int) -> Optional[PageContent]:
        return self._find_single(
            PageContent,
            {"page_id": page_id, "version_number": version},
            operation="get_page_content_by_page_id_and_version_number",
            key=(page_id, version),
        )

    def find_page_contents_by_page_id(self, page_id: int) -> list[PageContent]:
        return self._find(
            PageContent,
            {"page_id": page_id},
            operation="find_page_contents_by_page_id",
            key=page_id,
            sort=[("version_number", ASCENDING)],
        )

    def find_page_contents_edited_by(self, username: str) -> list[PageContent]:
        return self._find(
            PageContent,
            {"edited_by": username},
            operation="find_page_contents_edited_by",
            key=username,
            sort=[("page_id", ASCENDING), ("version_number", ASCENDING)],
        )

    def all_page_contents(self) -> list[PageContent]:
        return self._find(
            PageContent, {}, operation="all_page_contents", sort=[("page_id", ASCENDING), ("version_number", ASCENDING)]
        )

    def delete_page(self, page: Page) -> None:
        with self._collection(PageContent, "delete_page", page.id) as contents:
            contents.delete_many({"page_id": page.id})
        with self._collection(Page, "delete_page", page.id) as pages:
            pages.delete_one({"_id": page.id})
        self.logger.debug(f"Deleted page {page.id} and its content versions.")

    def _next_page_id(self) -> int:
        with self._collection(Page, "add_new_page") as pages:
            latest = pages.find_one({}, projection={"_id": True}, sort=[("_id", DESCENDING)])
        return latest["_id"] + 1 if latest is not None else 1
