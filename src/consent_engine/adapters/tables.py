"""SQLAlchemy ORM tables for the relational data adapter.

Tables:
- consent_records — one row per consent version
- policies        — one row per policy version

Nested structures (consenter, scopes, metadata, content sections) are stored
as JSON (JSONB on PostgreSQL). The unique constraints on (subject_id,
policy_id, version) and (policy_group_id, version) are what reject the losing
write when two requests race to create the same version.
"""

import uuid
from datetime import date, datetime
from typing import Any

from sqlalchemy import JSON, Boolean, Date, DateTime, Index, Integer, String, Text, UniqueConstraint
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

JSONType = JSON().with_variant(JSONB(), "postgresql")


class Base(DeclarativeBase):
    """Declarative base for consent engine tables."""


class ConsentRecordRow(Base):
    """A single consent version.

    Attributes:
        subject_id: The data subject the consent is about.
        policy_id: The policy version consented to.
        version: Position in the (subject_id, policy_id) lineage.
        status: granted | revoked | superseded.
        consenter_type: self | proxy, denormalised from consenter for proxy lookups.
        consenter_user_id: The consenting user, denormalised from consenter.
        consenter: Full consenter payload.
        granted_scopes: Scope key to grant entry.
        revoked_scopes: Scope key to revocation entry.
        consent_metadata: How the consent was captured (column name `metadata`).
    """

    __tablename__ = "consent_records"
    __table_args__ = (
        UniqueConstraint("subject_id", "policy_id", "version", name="uq_consent_records_lineage_version"),
        Index("ix_consent_records_subject_policy", "subject_id", "policy_id"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    subject_id: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    policy_id: Mapped[str] = mapped_column(String(255), nullable=False)
    version: Mapped[int] = mapped_column(Integer, nullable=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False)
    consented_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    date_of_birth: Mapped[date | None] = mapped_column(Date, nullable=True)
    consenter_type: Mapped[str] = mapped_column(String(10), nullable=False)
    consenter_user_id: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    consenter: Mapped[dict[str, Any]] = mapped_column(JSONType, nullable=False)
    granted_scopes: Mapped[dict[str, Any]] = mapped_column(JSONType, nullable=False, default=dict)
    revoked_scopes: Mapped[dict[str, Any] | None] = mapped_column(JSONType, nullable=True)
    revoked_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    consent_metadata: Mapped[dict[str, Any]] = mapped_column("metadata", JSONType, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)


class PolicyRow(Base):
    """A single policy version.

    Attributes:
        policy_group_id: The group this version belongs to.
        version: Contiguous version number within the group, starting at 1.
        status: draft | active | archived.
        content_sections: Ordered list of {title, description, content}.
        available_scopes: List of {key, name, description, required}.
    """

    __tablename__ = "policies"
    __table_args__ = (
        UniqueConstraint("policy_group_id", "version", name="uq_policies_group_version"),
        Index("ix_policies_group_status", "policy_group_id", "status"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    policy_group_id: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    version: Mapped[int] = mapped_column(Integer, nullable=False)
    title: Mapped[str | None] = mapped_column(Text, nullable=True)
    status: Mapped[str] = mapped_column(String(20), nullable=False)
    effective_date: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    jurisdiction: Mapped[str | None] = mapped_column(String(100), nullable=True)
    requires_proxy_for_minors: Mapped[bool | None] = mapped_column(Boolean, nullable=True)
    content_sections: Mapped[list[dict[str, Any]]] = mapped_column(JSONType, nullable=False, default=list)
    available_scopes: Mapped[list[dict[str, Any]]] = mapped_column(JSONType, nullable=False, default=list)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
