from contextlib import contextmanager
from typing import Any, Iterator, Optional, Type
from uuid import UUID

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    delete,
    false,
    func,
    or_,
    select,
)
from sqlalchemy import Uuid as SqlUuid
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session, declarative_base

from roadkill.database.backends.connections import SqlConnectionProvider
from roadkill.database.backends.roadkill_repository import WIPE_ORDER, EntityType, RoadkillRepository
from roadkill.database.core.entities import DataStoreEntity, Page, PageContent, SiteConfigurationEntity, User
from roadkill.database.core.exceptions import DuplicateInsertError, StorageUnavailableError

Base: Any = declarative_base()

PARTIAL_INDEX_DIALECTS = ("sqlite", "postgresql", "mssql")


class UserRow(Base):
    __tablename__ = "User"

    id = Column(SqlUuid, primary_key=True)
    username = Column(String(255), nullable=False, unique=True)
    email = Column(String(255), nullable=False, unique=True)
    password = Column(String(255), nullable=False, default="")
    salt = Column(String(255), nullable=False, default="")
    firstname = Column(String(255), nullable=True)
    lastname = Column(String(255), nullable=True)
    is_admin = Column(Boolean, nullable=False, default=False)
    is_editor = Column(Boolean, nullable=False, default=False)
    is_activated = Column(Boolean, nullable=False, default=False)
    activation_key = Column(String(255), nullable=True)
    password_reset_key = Column(String(255), nullable=True, index=True)

    # Activation keys are only unique while unconsumed. MySQL has no partial indexes, so it gets no index at all and
    # relies on the single-match check of get_user_by_activation_key.
    __table_args__ = (
        Index(
            "ix_user_activation_key_unconsumed",
            "activation_key",
            unique=True,
            sqlite_where=is_activated == false(),
            postgresql_where=is_activated == false(),
            mssql_where=is_activated == false(),
        ).ddl_if(dialect=PARTIAL_INDEX_DIALECTS),
    )


class PageRow(Base):
    __tablename__ = "Page"

    id = Column(Integer, primary_key=True, autoincrement=False)
    title = Column(String(255), nullable=False, default="", index=True)
    tags = Column(JSON, nullable=False, default=list)
    created_by = Column(String(255), nullable=False, default="")
    created_on = Column(DateTime(timezone=True), nullable=False)
    modified_by = Column(String(255), nullable=False, default="")
    modified_on = Column(DateTime(timezone=True), nullable=False)
    is_locked = Column(Boolean, nullable=False, default=False)


class PageContentRow(Base):
    __tablename__ = "PageContent"

    id = Column(SqlUuid, primary_key=True)
    page_id = Column(Integer, ForeignKey("Page.id"), nullable=False, index=True)
    text = Column(Text, nullable=False, default="")
    edited_by = Column(String(255), nullable=False, default="")
    edited_on = Column(DateTime(timezone=True), nullable=False)
    version_number = Column(Integer, nullable=False, default=1)

    __table_args__ = (UniqueConstraint("page_id", "version_number", name="uq_page_content_version"),)


class SiteConfigurationRow(Base):
    __tablename__ = "SiteConfigurationEntity"

    id = Column(SqlUuid, primary_key=True)
    version = Column(String(50), nullable=False, default="")
    content = Column(Text, nullable=False, default="{}")


ROW_TYPES: dict[Type[DataStoreEntity], Any] = {
    User: UserRow,
    Page: PageRow,
    PageContent: PageContentRow,
    SiteConfigurationEntity: SiteConfigurationRow,
}


class SqlRepository(RoadkillRepository):
    """Relational implementation of the Roadkill repository, backed by SQLAlchemy.

    Works with any SQLAlchemy URL (SQLite, PostgreSQL, MySQL, SQL Server). Tables are named after the entity classes
    and columns after their fields. Each operation runs in its own session and transaction.

    Args:
        provider: A ``SqlConnectionProvider`` or a SQLAlchemy URL.
        **kwargs: Passed on to the ``Roadkill`` base class (logger options).

    Example:
        .. code-block:: python

            from roadkill.database import SqlRepository

            repository = SqlRepository("sqlite:///roadkill.db")
            repository.create_schema()
            admin = repository.add_admin_user("admin@example.com", "admin", "password")
    """

    def __init__(self, provider: SqlConnectionProvider | str, **kwargs):
        super().__init__(**kwargs)
        self.provider = provider if isinstance(provider, SqlConnectionProvider) else SqlConnectionProvider(provider)

    @contextmanager
    def _session(
        self, operation: str, entity_type: Optional[Type[DataStoreEntity]] = None, key: Any = None
    ) -> Iterator[Session]:
        """Yield a transactional session, translating SQLAlchemy errors into repository errors."""
        name = entity_type.collection_name() if entity_type is not None else None
        try:
            with self.provider.session() as session:
                yield session
        except IntegrityError as e:
            raise DuplicateInsertError(
                f"Integrity error: {str(e.orig)}", operation=operation, entity_type=name, key=key
            ) from e
        except SQLAlchemyError as e:
            raise StorageUnavailableError(
                f"SQL failure during {operation}: {str(e)}", operation=operation, entity_type=name, key=key
            ) from e

    @staticmethod
    def _to_entity(entity_type: Type[EntityType], row: Any) -> EntityType:
        return entity_type.model_validate(row, from_attributes=True)

    def _select(self, entity_type: Type[EntityType], statement, *, operation: str, key: Any = None) -> list[EntityType]:
        with self._session(operation, entity_type, key) as session:
            rows = session.scalars(statement).all()
            return [self._to_entity(entity_type, row) for row in rows]

    def _select_single(
        self, entity_type: Type[EntityType], statement, *, operation: str, key: Any
    ) -> Optional[EntityType]:
        matches = self._select(entity_type, statement.limit(2), operation=operation, key=key)
        return self._single(matches, operation=operation, entity_type=entity_type, key=key)

    # Generic entity operations

    def get_by_id(self, entity_type: Type[EntityType], object_id: Any) -> Optional[EntityType]:
        with self._session("get_by_id", entity_type, object_id) as session:
            row = session.get(ROW_TYPES[entity_type], object_id)
            return self._to_entity(entity_type, row) if row is not None else None

    def save_or_update(self, entity: EntityType) -> EntityType:
        row_type = ROW_TYPES[type(entity)]
        with self._session("save_or_update", type(entity), entity.object_id) as session:
            row = session.merge(row_type(**entity.model_dump()))
            session.flush()
            stored = self._to_entity(type(entity), row)
        self.logger.debug(f"Saved {entity.collection_name()} {entity.object_id}.")
        return stored

    def delete(self, entity: DataStoreEntity) -> None:
        if isinstance(entity, Page):
            self.delete_page(entity)
            return
        row_type = ROW_TYPES[type(entity)]
        with self._session("delete", type(entity), entity.object_id) as session:
            session.execute(delete(row_type).where(row_type.id == entity.object_id))
        self.logger.debug(f"Deleted {entity.collection_name()} {entity.object_id}.")

    def delete_all(self, entity_type: Type[DataStoreEntity]) -> None:
        with self._session("delete_all", entity_type) as session:
            if entity_type is Page:
                session.execute(delete(PageContentRow))
            session.execute(delete(ROW_TYPES[entity_type]))
        self.logger.debug(f"Deleted all {entity_type.collection_name()} rows.")

    def wipe(self) -> None:
        """Drop every table (best effort, one at a time), then recreate an empty schema."""
        failed = []
        for entity_type in WIPE_ORDER:
            table = ROW_TYPES[entity_type].__table__
            try:
                table.drop(self.provider.engine, checkfirst=True)
            except SQLAlchemyError as e:
                self.logger.error(f"Failed to drop table {table.name}: {e}")
                failed.append(table.name)
            else:
                self.logger.debug(f"Dropped table {table.name}.")
        self._raise_wipe_failures(failed)
        self.create_schema()

    def dispose(self) -> None:
        self.provider.dispose()

    # Installer

    def create_schema(self) -> None:
        try:
            Base.metadata.create_all(self.provider.engine)
        except SQLAlchemyError as e:
            raise StorageUnavailableError(f"Failed to create schema: {str(e)}", operation="create_schema") from e
        self.logger.info("Created SQL schema.")

    # Users

    def get_user_by_id(self, id: UUID, is_activated: Optional[bool] = None) -> Optional[User]:
        statement = select(UserRow).where(UserRow.id == id)
        if is_activated is not None:
            statement = statement.where(UserRow.is_activated == is_activated)
        return self._select_single(User, statement, operation="get_user_by_id", key=id)

    def get_user_by_username(self, username: str) -> Optional[User]:
        statement = select(UserRow).where(UserRow.username == username)
        return self._select_single(User, statement, operation="get_user_by_username", key=username)

    def get_user_by_email(self, email: str, is_activated: Optional[bool] = None) -> Optional[User]:
        statement = select(UserRow).where(UserRow.email == email)
        if is_activated is not None:
            statement = statement.where(UserRow.is_activated == is_activated)
        return self._select_single(User, statement, operation="get_user_by_email", key=email)

    def get_user_by_username_or_email(self, username: str, email: str) -> Optional[User]:
        statement = select(UserRow).where(or_(UserRow.username == username, UserRow.email == email))
        users = self._select(User, statement, operation="get_user_by_username_or_email", key=username)
        return self._pick_username_or_email(users, username, email)

    def get_user_by_activation_key(self, key: str) -> Optional[User]:
        statement = select(UserRow).where(UserRow.activation_key == key, UserRow.is_activated == false())
        return self._select_single(User, statement, operation="get_user_by_activation_key", key=key)

    def get_user_by_password_reset_key(self, key: str) -> Optional[User]:
        statement = select(UserRow).where(UserRow.password_reset_key == key)
        return self._select_single(User, statement, operation="get_user_by_password_reset_key", key=key)

    def find_all_editors(self) -> list[User]:
        return self._select(User, select(UserRow).where(UserRow.is_editor), operation="find_all_editors")

    def find_all_admins(self) -> list[User]:
        return self._select(User, select(UserRow).where(UserRow.is_admin), operation="find_all_admins")

    # Pages

    def all_pages(self) -> list[Page]:
        return self._select(Page, select(PageRow).order_by(PageRow.id), operation="all_pages")

    def get_page_by_title(self, title: str) -> Optional[Page]:
        statement = select(PageRow).where(func.lower(PageRow.title) == title.lower()).order_by(PageRow.id).limit(1)
        pages = self._select(Page, statement, operation="get_page_by_title", key=title)
        return pages[0] if pages else None

    def find_pages_created_by(self, username: str) -> list[Page]:
        statement = select(PageRow).where(PageRow.created_by == username).order_by(PageRow.id)
        return self._select(Page, statement, operation="find_pages_created_by", key=username)

    def find_pages_modified_by(self, username: str) -> list[Page]:
        statement = select(PageRow).where(PageRow.modified_by == username).order_by(PageRow.id)
        return self._select(Page, statement, operation="find_pages_modified_by", key=username)

    def find_pages_containing_tag(self, tag: str) -> list[Page]:
        # Tags are a JSON list, so matching happens after loading
        wanted = tag.strip().lower()
        pages = self.all_pages()
        return [page for page in pages if any(t.strip().lower() == wanted for t in page.tags)]

    def get_latest_page_content(self, page_id: int) -> Optional[PageContent]:
        statement = (
            select(PageContentRow)
            .where(PageContentRow.page_id == page_id)
            .order_by(PageContentRow.version_number.desc())
            .limit(1)
        )
        contents = self._select(PageContent, statement, operation="get_latest_page_content", key=page_id)
        return contents[0] if contents else None

    def get_page_content_by_page_id_and_version_number(self, page_id: int, version: int) -> Optional[PageContent]:
        statement = select(PageContentRow).where(
            PageContentRow.page_id == page_id, PageContentRow.version_number == version
        )
        return self._select_single(
            PageContent, statement, operation="get_page_content_by_page_id_and_version_number", key=(page_id, version)
        )

    def find_page_contents_by_page_id(self, page_id: int) -> list[PageContent]:
        statement = (
            select(PageContentRow).where(PageContentRow.page_id == page_id).order_by(PageContentRow.version_number)
        )
        return self._select(PageContent, statement, operation="find_page_contents_by_page_id", key=page_id)

    def find_page_contents_edited_by(self, username: str) -> list[PageContent]:
        statement = (
            select(PageContentRow)
            .where(PageContentRow.edited_by == username)
            .order_by(PageContentRow.page_id, PageContentRow.version_number)
        )
        return self._select(PageContent, statement, operation="find_page_contents_edited_by", key=username)

    def all_page_contents(self) -> list[PageContent]:
        statement = select(PageContentRow).order_by(PageContentRow.page_id, PageContentRow.version_number)
        return self._select(PageContent, statement, operation="all_page_contents")

    def delete_page(self, page: Page) -> None:
        with self._session("delete_page", Page, page.id) as session:
            session.execute(delete(PageContentRow).where(PageContentRow.page_id == page.id))
            session.execute(delete(PageRow).where(PageRow.id == page.id))
        self.logger.debug(f"Deleted page {page.id} and its content versions.")

    def _next_page_id(self) -> int:
        with self._session("add_new_page", Page) as session:
            highest = session.scalar(select(func.max(PageRow.id)))
        return (highest or 0) + 1
