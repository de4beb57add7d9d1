"""
PostgreSQL contact store.

Uses SQLAlchemy 2.0 Core with the asyncpg driver. The ``contacts`` table
enforces the same rules the identity core relies on:

- at least one of email / phone number is present
- ``(email, phone_number)`` is unique among non-deleted rows, with NULLs
  treated as equal (``NULLS NOT DISTINCT``), so two concurrent inserts of
  the same fragment cannot both succeed
"""

import logging
from collections.abc import Mapping, Sequence
from typing import Any

from sqlalchemy import (
    CheckConstraint,
    Column,
    ColumnElement,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    MetaData,
    Row,
    String,
    Table,
    and_,
    func,
    insert,
    or_,
    select,
    text,
    true,
    update,
)
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncConnection, AsyncEngine, create_async_engine

from src.exceptions import ContactNotFoundError
from src.models.contact import Contact, ContactDraft, LinkPrecedence
from src.services.contact_store import (
    ContactQuery,
    Created,
    CreateResult,
    In,
    StoreOperation,
    UniquenessConflict,
    Update,
    check_update_values,
)
from src.settings import settings

logger = logging.getLogger(__name__)

# PostgreSQL SQLSTATE for unique_violation
UNIQUE_VIOLATION = "23505"

metadata = MetaData()

contacts = Table(
    "contacts",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("email", String(255), nullable=True, index=True),
    Column("phone_number", String(32), nullable=True, index=True),
    Column("linked_id", Integer, ForeignKey("contacts.id"), nullable=True, index=True),
    Column("link_precedence", String(16), nullable=False),
    Column(
        "created_at",
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
    ),
    Column(
        "updated_at",
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
    ),
    Column("deleted_at", DateTime(timezone=True), nullable=True),
    CheckConstraint(
        "email IS NOT NULL OR phone_number IS NOT NULL",
        name="ck_contacts_has_identifier",
    ),
    CheckConstraint(
        "link_precedence IN ('primary', 'secondary')",
        name="ck_contacts_link_precedence",
    ),
    CheckConstraint(
        "(link_precedence = 'primary' AND linked_id IS NULL) OR "
        "(link_precedence = 'secondary' AND linked_id IS NOT NULL)",
        name="ck_contacts_secondary_has_link",
    ),
)

Index(
    "uq_contacts_email_phone",
    contacts.c.email,
    contacts.c.phone_number,
    unique=True,
    postgresql_where=contacts.c.deleted_at.is_(None),
    postgresql_nulls_not_distinct=True,
)


def is_unique_violation(exc: IntegrityError) -> bool:
    """Check whether an IntegrityError came from a unique index or constraint."""
    orig = exc.orig
    sqlstate = getattr(orig, "sqlstate", None) or getattr(orig, "pgcode", None)
    if sqlstate is None and orig is not None:
        # asyncpg's own exception is chained behind SQLAlchemy's adapter
        sqlstate = getattr(orig.__cause__, "sqlstate", None)
    return sqlstate == UNIQUE_VIOLATION


def _bind(value: Any) -> Any:
    if isinstance(value, LinkPrecedence):
        return value.value
    return value


def _condition(name: str, value: Any) -> ColumnElement[bool]:
    column = contacts.c[name]
    if isinstance(value, In):
        return column.in_(sorted(_bind(v) for v in value.values))
    if value is None:
        return column.is_(None)
    return column == _bind(value)


def build_where(query: ContactQuery) -> ColumnElement[bool]:
    """Translate a ContactQuery into a SQL boolean expression."""
    predicate = or_(
        *(
            and_(true(), *(_condition(name, value) for name, value in clause))
            for clause in query.clauses
        )
    )
    if not query.include_deleted:
        predicate = and_(predicate, contacts.c.deleted_at.is_(None))
    return predicate


def _update_values(values: Mapping[str, Any]) -> dict[str, Any]:
    check_update_values(values)
    bound = {name: _bind(value) for name, value in values.items()}
    bound["updated_at"] = func.now()
    return bound


def _to_contact(row: Row[Any]) -> Contact:
    return Contact(
        id=row.id,
        email=row.email,
        phone_number=row.phone_number,
        linked_id=row.linked_id,
        link_precedence=LinkPrecedence(row.link_precedence),
        created_at=row.created_at,
        updated_at=row.updated_at,
        deleted_at=row.deleted_at,
    )


class SQLContactStore:
    """ContactStore backed by PostgreSQL."""

    def __init__(self, engine: AsyncEngine):
        self._engine = engine

    @property
    def engine(self) -> AsyncEngine:
        return self._engine

    async def create_schema(self) -> None:
        """Create the contacts table and its indexes if missing."""
        async with self._engine.begin() as conn:
            await conn.run_sync(metadata.create_all)
        logger.info("Contacts schema ready")

    async def find_many(
        self, query: ContactQuery, oldest_first: bool = True
    ) -> list[Contact]:
        stmt = select(contacts).where(build_where(query))
        if oldest_first:
            stmt = stmt.order_by(contacts.c.created_at.asc(), contacts.c.id.asc())
        async with self._engine.connect() as conn:
            result = await conn.execute(stmt)
            return [_to_contact(row) for row in result]

    async def find_unique(self, contact_id: int) -> Contact | None:
        stmt = select(contacts).where(contacts.c.id == contact_id)
        async with self._engine.connect() as conn:
            row = (await conn.execute(stmt)).one_or_none()
        return _to_contact(row) if row is not None else None

    async def find_first(self, query: ContactQuery) -> Contact | None:
        stmt = (
            select(contacts)
            .where(build_where(query))
            .order_by(contacts.c.created_at.asc(), contacts.c.id.asc())
            .limit(1)
        )
        async with self._engine.connect() as conn:
            row = (await conn.execute(stmt)).one_or_none()
        return _to_contact(row) if row is not None else None

    async def create(self, draft: ContactDraft) -> CreateResult:
        stmt = (
            insert(contacts)
            .values(
                email=draft.email,
                phone_number=draft.phone_number,
                linked_id=draft.linked_id,
                link_precedence=_bind(draft.link_precedence),
            )
            .returning(*contacts.c)
        )
        try:
            async with self._engine.begin() as conn:
                row = (await conn.execute(stmt)).one()
        except IntegrityError as e:
            if not is_unique_violation(e):
                raise
            logger.info(
                "Uniqueness conflict creating contact (email=%s, phone=%s)",
                draft.email,
                draft.phone_number,
            )
            return UniquenessConflict(
                email=draft.email, phone_number=draft.phone_number
            )
        return Created(_to_contact(row))

    async def update(self, contact_id: int, values: Mapping[str, Any]) -> Contact:
        async with self._engine.begin() as conn:
            return await self._update_one(conn, contact_id, values)

    async def update_many(self, query: ContactQuery, values: Mapping[str, Any]) -> int:
        stmt = update(contacts).where(build_where(query)).values(**_update_values(values))
        async with self._engine.begin() as conn:
            result = await conn.execute(stmt)
        return result.rowcount

    async def transaction(self, operations: Sequence[StoreOperation]) -> list[int]:
        counts: list[int] = []
        async with self._engine.begin() as conn:
            for operation in operations:
                if isinstance(operation, Update):
                    await self._update_one(conn, operation.contact_id, operation.values)
                    counts.append(1)
                else:
                    stmt = (
                        update(contacts)
                        .where(build_where(operation.query))
                        .values(**_update_values(operation.values))
                    )
                    result = await conn.execute(stmt)
                    counts.append(result.rowcount)
        return counts

    async def health_check(self) -> bool:
        try:
            async with self._engine.connect() as conn:
                await conn.execute(text("SELECT 1"))
            return True
        except (SQLAlchemyError, OSError) as e:
            logger.warning("Contact store health check failed: %s", e)
            return False

    async def close(self) -> None:
        await self._engine.dispose()

    async def _update_one(
        self, conn: AsyncConnection, contact_id: int, values: Mapping[str, Any]
    ) -> Contact:
        stmt = (
            update(contacts)
            .where(contacts.c.id == contact_id)
            .values(**_update_values(values))
            .returning(*contacts.c)
        )
        row = (await conn.execute(stmt)).one_or_none()
        if row is None:
            raise ContactNotFoundError(contact_id)
        return _to_contact(row)


def create_sql_contact_store(database_url: str | None = None) -> SQLContactStore:
    """Factory function to create a SQLContactStore from settings."""
    engine = create_async_engine(
        database_url or settings.database_url,
        echo=settings.db_echo,
        pool_size=max(1, settings.db_pool_size),
        max_overflow=max(0, settings.db_pool_max_overflow),
        pool_timeout=settings.db_pool_timeout,
        pool_pre_ping=True,
    )
    return SQLContactStore(engine)
