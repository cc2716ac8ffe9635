"""SQLAlchemy data adapter for the consent engine.

Implements IDataAdapter from core/interfaces.py on top of an async SQLAlchemy
engine. Works against any async driver; SQLite (aiosqlite) is the default and
PostgreSQL (asyncpg) gets JSONB columns.

Every call opens its own short-lived session. Version uniqueness is enforced
by the unique constraints in tables.py, so a losing concurrent insert surfaces
as OptimisticConcurrencyError rather than a duplicate version.
"""

import uuid
from datetime import UTC, datetime
from typing import Any

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncEngine, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from consent_engine.adapters.tables import Base, ConsentRecordRow, PolicyRow
from consent_engine.core.models import (
    ConsentRecord,
    ConsentStatus,
    NewConsentData,
    NewPolicyData,
    Policy,
    PolicyStatus,
)
from consent_engine.errors import NotFoundError, OptimisticConcurrencyError
from consent_engine.observability import get_logger

logger = get_logger(__name__)


def _to_utc(value: datetime | None) -> datetime | None:
    """Convert an aware datetime to UTC before it is written.

    Some drivers (SQLite) store the wall-clock time and drop the offset, so
    every stored timestamp is kept in UTC and read back with _as_utc.
    """
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


def _as_utc(value: datetime | None) -> datetime | None:
    """Attach UTC to naive datetimes returned by drivers that drop the offset."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value


def _consent_to_domain(row: ConsentRecordRow) -> ConsentRecord:
    return ConsentRecord.model_validate(
        {
            "id": row.id,
            "subject_id": row.subject_id,
            "policy_id": row.policy_id,
            "version": row.version,
            "status": row.status,
            "consented_at": _as_utc(row.consented_at),
            "date_of_birth": row.date_of_birth,
            "consenter": row.consenter,
            "granted_scopes": row.granted_scopes,
            "revoked_scopes": row.revoked_scopes,
            "revoked_at": _as_utc(row.revoked_at),
            "metadata": row.consent_metadata,
            "created_at": _as_utc(row.created_at),
            "updated_at": _as_utc(row.updated_at),
        }
    )


def _policy_to_domain(row: PolicyRow) -> Policy:
    return Policy.model_validate(
        {
            "id": row.id,
            "policy_group_id": row.policy_group_id,
            "version": row.version,
            "title": row.title,
            "status": row.status,
            "effective_date": _as_utc(row.effective_date),
            "jurisdiction": row.jurisdiction,
            "requires_proxy_for_minors": row.requires_proxy_for_minors,
            "content_sections": row.content_sections,
            "available_scopes": row.available_scopes,
            "created_at": _as_utc(row.created_at),
            "updated_at": _as_utc(row.updated_at),
        }
    )


class SqlAlchemyDataAdapter:
    """Relational implementation of IDataAdapter.

    Args:
        engine: The async engine to run queries on.
    """

    def __init__(self, engine: AsyncEngine) -> None:
        """Initialize the adapter with an async engine.

        Args:
            engine: The async engine to run queries on.
        """
        self._engine = engine
        self._session_factory = async_sessionmaker(engine, expire_on_commit=False)

    @classmethod
    def from_url(cls, database_url: str, echo: bool = False) -> "SqlAlchemyDataAdapter":
        """Build an adapter from a database URL.

        In-memory SQLite URLs share a single connection so that every session
        sees the same database.

        Args:
            database_url: SQLAlchemy async URL, e.g. ``sqlite+aiosqlite:///./consent.db``.
            echo: Log every SQL statement.

        Returns:
            A new SqlAlchemyDataAdapter.
        """
        kwargs: dict[str, Any] = {"echo": echo}
        if database_url.startswith("sqlite") and ":memory:" in database_url:
            kwargs["poolclass"] = StaticPool
            kwargs["connect_args"] = {"check_same_thread": False}
        return cls(create_async_engine(database_url, **kwargs))

    async def initialize(self) -> None:
        """Create tables that do not exist yet."""
        async with self._engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        logger.info("SQLAlchemy data adapter ready", dialect=self._engine.dialect.name)

    async def close(self) -> None:
        """Dispose of the engine's connection pool."""
        await self._engine.dispose()

    # -------------------------------------------------------------------------
    # Consents
    # -------------------------------------------------------------------------

    async def create_consent(self, data: NewConsentData) -> ConsentRecord:
        now = datetime.now(UTC)
        payload = data.model_dump(mode="json")
        row = ConsentRecordRow(
            id=str(uuid.uuid4()),
            subject_id=data.subject_id,
            policy_id=data.policy_id,
            version=data.version,
            status=data.status,
            consented_at=_to_utc(data.consented_at),
            date_of_birth=data.date_of_birth,
            consenter_type=data.consenter.type,
            consenter_user_id=data.consenter.user_id,
            consenter=payload["consenter"],
            granted_scopes=payload["granted_scopes"],
            revoked_scopes=payload["revoked_scopes"],
            revoked_at=_to_utc(data.revoked_at),
            consent_metadata=payload["metadata"],
            created_at=now,
            updated_at=now,
        )
        try:
            async with self._session_factory.begin() as session:
                session.add(row)
        except IntegrityError as exc:
            found = await self._max_consent_version(data.subject_id, data.policy_id)
            raise OptimisticConcurrencyError(
                resource="ConsentRecord",
                resource_id=f"{data.subject_id}:{data.policy_id}",
                expected_version=data.version - 1,
                found_version=found,
            ) from exc
        return _consent_to_domain(row)

    async def update_consent_status(
        self,
        consent_id: str,
        status: ConsentStatus,
        expected_version: int,
    ) -> ConsentRecord:
        async with self._session_factory.begin() as session:
            row = await session.get(ConsentRecordRow, consent_id)
            if row is None:
                raise NotFoundError(resource="ConsentRecord", resource_id=consent_id)
            if row.version != expected_version:
                raise OptimisticConcurrencyError(
                    resource="ConsentRecord",
                    resource_id=consent_id,
                    expected_version=expected_version,
                    found_version=row.version,
                )
            row.status = status
            row.updated_at = datetime.now(UTC)
            await session.flush()
            return _consent_to_domain(row)

    async def find_consent_by_id(self, consent_id: str) -> ConsentRecord | None:
        async with self._session_factory() as session:
            row = await session.get(ConsentRecordRow, consent_id)
            return _consent_to_domain(row) if row is not None else None

    async def find_consents_by_subject(self, subject_id: str) -> list[ConsentRecord]:
        stmt = (
            select(ConsentRecordRow)
            .where(ConsentRecordRow.subject_id == subject_id)
            .order_by(ConsentRecordRow.version, ConsentRecordRow.created_at)
        )
        return await self._fetch_consents(stmt)

    async def find_latest_consent_by_subject_and_policy(
        self,
        subject_id: str,
        policy_id: str,
    ) -> ConsentRecord | None:
        stmt = (
            select(ConsentRecordRow)
            .where(
                ConsentRecordRow.subject_id == subject_id,
                ConsentRecordRow.policy_id == policy_id,
            )
            .order_by(ConsentRecordRow.version.desc())
            .limit(1)
        )
        records = await self._fetch_consents(stmt)
        return records[0] if records else None

    async def find_all_consent_versions_by_subject_and_policy(
        self,
        subject_id: str,
        policy_id: str,
    ) -> list[ConsentRecord]:
        stmt = (
            select(ConsentRecordRow)
            .where(
                ConsentRecordRow.subject_id == subject_id,
                ConsentRecordRow.policy_id == policy_id,
            )
            .order_by(ConsentRecordRow.version)
        )
        return await self._fetch_consents(stmt)

    async def get_all_consents(self) -> list[ConsentRecord]:
        stmt = select(ConsentRecordRow).order_by(ConsentRecordRow.created_at)
        return await self._fetch_consents(stmt)

    async def get_consents_by_proxy_id(self, proxy_id: str) -> list[ConsentRecord]:
        stmt = (
            select(ConsentRecordRow)
            .where(
                ConsentRecordRow.consenter_type == "proxy",
                ConsentRecordRow.consenter_user_id == proxy_id,
            )
            .order_by(ConsentRecordRow.created_at)
        )
        return await self._fetch_consents(stmt)

    async def _fetch_consents(self, stmt: Any) -> list[ConsentRecord]:
        async with self._session_factory() as session:
            result = await session.execute(stmt)
            return [_consent_to_domain(row) for row in result.scalars().all()]

    async def _max_consent_version(self, subject_id: str, policy_id: str) -> int:
        stmt = select(func.max(ConsentRecordRow.version)).where(
            ConsentRecordRow.subject_id == subject_id,
            ConsentRecordRow.policy_id == policy_id,
        )
        async with self._session_factory() as session:
            result = await session.execute(stmt)
            return result.scalar_one_or_none() or 0

    # -------------------------------------------------------------------------
    # Policies
    # -------------------------------------------------------------------------

    async def create_policy(self, data: NewPolicyData) -> Policy:
        now = datetime.now(UTC)
        payload = data.model_dump(mode="json")
        row = PolicyRow(
            id=str(uuid.uuid4()),
            policy_group_id=data.policy_group_id,
            version=data.version,
            title=data.title,
            status=data.status,
            effective_date=_to_utc(data.effective_date),
            jurisdiction=data.jurisdiction,
            requires_proxy_for_minors=data.requires_proxy_for_minors,
            content_sections=payload["content_sections"],
            available_scopes=payload["available_scopes"],
            created_at=now,
            updated_at=now,
        )
        try:
            async with self._session_factory.begin() as session:
                session.add(row)
        except IntegrityError as exc:
            found = await self._max_policy_version(data.policy_group_id)
            raise OptimisticConcurrencyError(
                resource="PolicyGroup",
                resource_id=data.policy_group_id,
                expected_version=data.version - 1,
                found_version=found,
            ) from exc
        return _policy_to_domain(row)

    async def update_policy_status(
        self,
        policy_id: str,
        status: PolicyStatus,
        expected_version: int,
    ) -> Policy:
        async with self._session_factory.begin() as session:
            row = await session.get(PolicyRow, policy_id)
            if row is None:
                raise NotFoundError(resource="Policy", resource_id=policy_id)
            if row.version != expected_version:
                raise OptimisticConcurrencyError(
                    resource="Policy",
                    resource_id=policy_id,
                    expected_version=expected_version,
                    found_version=row.version,
                )
            row.status = status
            row.updated_at = datetime.now(UTC)
            await session.flush()
            return _policy_to_domain(row)

    async def find_policy_by_id(self, policy_id: str) -> Policy | None:
        async with self._session_factory() as session:
            row = await session.get(PolicyRow, policy_id)
            return _policy_to_domain(row) if row is not None else None

    async def find_latest_active_policy_by_group_id(self, policy_group_id: str) -> Policy | None:
        stmt = (
            select(PolicyRow)
            .where(PolicyRow.policy_group_id == policy_group_id, PolicyRow.status == "active")
            .order_by(PolicyRow.version.desc())
            .limit(1)
        )
        policies = await self._fetch_policies(stmt)
        return policies[0] if policies else None

    async def find_all_policy_versions_by_group_id(self, policy_group_id: str) -> list[Policy]:
        stmt = select(PolicyRow).where(PolicyRow.policy_group_id == policy_group_id).order_by(PolicyRow.version)
        return await self._fetch_policies(stmt)

    async def list_policies(self) -> list[Policy]:
        stmt = select(PolicyRow).order_by(PolicyRow.created_at)
        return await self._fetch_policies(stmt)

    async def _fetch_policies(self, stmt: Any) -> list[Policy]:
        async with self._session_factory() as session:
            result = await session.execute(stmt)
            return [_policy_to_domain(row) for row in result.scalars().all()]

    async def _max_policy_version(self, policy_group_id: str) -> int:
        stmt = select(func.max(PolicyRow.version)).where(PolicyRow.policy_group_id == policy_group_id)
        async with self._session_factory() as session:
            result = await session.execute(stmt)
            return result.scalar_one_or_none() or 0
