"""Tests for the data adapters.

Every contract test runs against both the in-memory adapter and the
SQLAlchemy adapter on an in-memory aiosqlite database.
"""

from collections.abc import AsyncGenerator
from datetime import UTC, date, datetime, timedelta, timezone
from typing import Any

import pytest
import pytest_asyncio

from consent_engine.adapters.memory import InMemoryDataAdapter
from consent_engine.adapters.repositories import SqlAlchemyDataAdapter
from consent_engine.core.models import (
    ConsentMetadata,
    ContentSection,
    NewConsentData,
    NewPolicyData,
    PolicyScope,
    ProxyConsenter,
    ProxyDetails,
    ScopeGrant,
    SelfConsenter,
)
from consent_engine.errors import NotFoundError, OptimisticConcurrencyError

NOW = datetime(2024, 3, 1, 12, 0, 0, tzinfo=UTC)


def make_new_consent(
    version: int = 1,
    subject_id: str = "subject-1",
    policy_id: str = "policy-1",
    proxy_id: str | None = None,
) -> NewConsentData:
    """Build a NewConsentData granting the ``email`` scope."""
    consenter: SelfConsenter | ProxyConsenter
    if proxy_id is None:
        consenter = SelfConsenter(user_id=subject_id)
    else:
        consenter = ProxyConsenter(
            user_id=proxy_id,
            proxy_details=ProxyDetails(relationship="guardian", subject_age_group="13-17"),
        )
    return NewConsentData(
        subject_id=subject_id,
        policy_id=policy_id,
        version=version,
        status="granted",
        consented_at=NOW,
        date_of_birth=date(2010, 5, 17),
        consenter=consenter,
        granted_scopes={
            "email": ScopeGrant(key="email", name="Email", description="Contact by email", granted_at=NOW),
        },
        revoked_scopes={},
        metadata=ConsentMetadata(consent_method="paper_scan", user_agent="pytest"),
    )


def make_new_policy(version: int = 1, status: str = "active", policy_group_id: str = "privacy") -> NewPolicyData:
    """Build a NewPolicyData with one required scope."""
    return NewPolicyData(
        policy_group_id=policy_group_id,
        version=version,
        title=f"Privacy v{version}",
        status=status,
        effective_date=NOW,
        jurisdiction="US-CA",
        requires_proxy_for_minors=True,
        content_sections=[ContentSection(title="Intro", description="Overview", content="Text")],
        available_scopes=[PolicyScope(key="email", name="Email", description="Contact by email", required=True)],
    )


@pytest_asyncio.fixture(params=["memory", "sqlalchemy"])
async def adapter(request: pytest.FixtureRequest) -> AsyncGenerator[Any, None]:
    """Yield an initialized data adapter of each kind."""
    if request.param == "memory":
        instance: Any = InMemoryDataAdapter()
    else:
        instance = SqlAlchemyDataAdapter.from_url("sqlite+aiosqlite:///:memory:")
    await instance.initialize()
    yield instance
    await instance.close()


# ---------------------------------------------------------------------------
# Consent storage
# ---------------------------------------------------------------------------


class TestConsentStorage:
    """Consent record persistence across adapters."""

    @pytest.mark.asyncio()
    async def test_create_and_find_round_trips_nested_fields(self, adapter: Any) -> None:
        """Consenter, scopes, metadata and dates survive storage."""
        created = await adapter.create_consent(make_new_consent(proxy_id="guardian-1"))

        found = await adapter.find_consent_by_id(created.id)

        assert found is not None
        assert found.id == created.id
        assert found.consenter.type == "proxy"
        assert found.consenter.proxy_details.relationship == "guardian"
        assert found.granted_scopes["email"].granted_at == NOW
        assert found.metadata.consent_method == "paper_scan"
        assert found.date_of_birth == date(2010, 5, 17)
        assert found.consented_at == NOW
        assert found.created_at.tzinfo is not None

    @pytest.mark.asyncio()
    async def test_offset_consent_timestamps_keep_their_instant(self, adapter: Any) -> None:
        """consented_at and revoked_at with a non-UTC offset survive storage."""
        offset = timezone(timedelta(hours=-5))
        consented = datetime(2024, 6, 30, 22, 15, tzinfo=offset)
        revoked = datetime(2024, 7, 1, 9, 0, tzinfo=offset)
        data = make_new_consent().model_copy(
            update={"status": "revoked", "consented_at": consented, "revoked_at": revoked},
        )

        created = await adapter.create_consent(data)
        found = await adapter.find_consent_by_id(created.id)

        assert found is not None
        assert found.consented_at == consented
        assert found.revoked_at == revoked
        assert found.consented_at == created.consented_at

    @pytest.mark.asyncio()
    async def test_find_missing_consent_returns_none(self, adapter: Any) -> None:
        """Unknown ids return None rather than raising."""
        assert await adapter.find_consent_by_id("missing") is None

    @pytest.mark.asyncio()
    async def test_duplicate_lineage_version_raises(self, adapter: Any) -> None:
        """A second record with the same lineage version is rejected."""
        await adapter.create_consent(make_new_consent(version=1))

        with pytest.raises(OptimisticConcurrencyError) as exc_info:
            await adapter.create_consent(make_new_consent(version=1))

        assert exc_info.value.expected_version == 0
        assert exc_info.value.found_version == 1
        assert len(await adapter.get_all_consents()) == 1

    @pytest.mark.asyncio()
    async def test_update_status_keeps_version(self, adapter: Any) -> None:
        """Status updates change status only."""
        created = await adapter.create_consent(make_new_consent())

        updated = await adapter.update_consent_status(created.id, "superseded", 1)

        assert updated.status == "superseded"
        assert updated.version == 1
        stored = await adapter.find_consent_by_id(created.id)
        assert stored is not None
        assert stored.status == "superseded"

    @pytest.mark.asyncio()
    async def test_update_status_version_mismatch(self, adapter: Any) -> None:
        """A stale expected_version is rejected and nothing changes."""
        created = await adapter.create_consent(make_new_consent())

        with pytest.raises(OptimisticConcurrencyError) as exc_info:
            await adapter.update_consent_status(created.id, "superseded", 2)

        assert exc_info.value.expected_version == 2
        assert exc_info.value.found_version == 1
        stored = await adapter.find_consent_by_id(created.id)
        assert stored is not None
        assert stored.status == "granted"

    @pytest.mark.asyncio()
    async def test_update_status_missing_raises_not_found(self, adapter: Any) -> None:
        """Updating an unknown record raises NotFoundError."""
        with pytest.raises(NotFoundError):
            await adapter.update_consent_status("missing", "revoked", 1)

    @pytest.mark.asyncio()
    async def test_lineage_queries(self, adapter: Any) -> None:
        """Latest and all-versions lookups are scoped to one lineage."""
        for version in (1, 2, 3):
            await adapter.create_consent(make_new_consent(version=version))
        await adapter.create_consent(make_new_consent(version=1, policy_id="policy-2"))
        await adapter.create_consent(make_new_consent(version=1, subject_id="subject-2"))

        latest = await adapter.find_latest_consent_by_subject_and_policy("subject-1", "policy-1")
        versions = await adapter.find_all_consent_versions_by_subject_and_policy("subject-1", "policy-1")
        by_subject = await adapter.find_consents_by_subject("subject-1")

        assert latest is not None
        assert latest.version == 3
        assert [record.version for record in versions] == [1, 2, 3]
        assert len(by_subject) == 4
        assert await adapter.find_latest_consent_by_subject_and_policy("subject-1", "nope") is None

    @pytest.mark.asyncio()
    async def test_consents_by_proxy_id(self, adapter: Any) -> None:
        """Only proxy consenters with a matching user id are returned."""
        await adapter.create_consent(make_new_consent(subject_id="child-1", proxy_id="parent-1"))
        await adapter.create_consent(make_new_consent(subject_id="parent-1"))

        records = await adapter.get_consents_by_proxy_id("parent-1")

        assert [record.subject_id for record in records] == ["child-1"]


# ---------------------------------------------------------------------------
# Policy storage
# ---------------------------------------------------------------------------


class TestPolicyStorage:
    """Policy persistence across adapters."""

    @pytest.mark.asyncio()
    async def test_create_and_find_policy(self, adapter: Any) -> None:
        """Scopes and content sections survive storage."""
        created = await adapter.create_policy(make_new_policy())

        found = await adapter.find_policy_by_id(created.id)

        assert found is not None
        assert found.available_scopes[0].required is True
        assert found.content_sections[0].title == "Intro"
        assert found.effective_date == NOW
        assert found.requires_proxy_for_minors is True

    @pytest.mark.asyncio()
    async def test_offset_datetimes_keep_their_instant(self, adapter: Any) -> None:
        """Datetimes with a non-UTC offset read back as the same moment."""
        effective = datetime(2024, 1, 1, 0, 0, tzinfo=timezone(timedelta(hours=2)))
        data = make_new_policy().model_copy(update={"effective_date": effective})

        created = await adapter.create_policy(data)
        found = await adapter.find_policy_by_id(created.id)

        assert found is not None
        assert found.effective_date == effective
        assert found.effective_date == created.effective_date
        assert found.effective_date.utcoffset() is not None

    @pytest.mark.asyncio()
    async def test_duplicate_group_version_raises(self, adapter: Any) -> None:
        """A second policy with the same group version is rejected."""
        await adapter.create_policy(make_new_policy(version=1))

        with pytest.raises(OptimisticConcurrencyError):
            await adapter.create_policy(make_new_policy(version=1))

    @pytest.mark.asyncio()
    async def test_latest_active_policy_picks_highest_active_version(self, adapter: Any) -> None:
        """Drafts and archived versions are skipped."""
        await adapter.create_policy(make_new_policy(version=1, status="archived"))
        second = await adapter.create_policy(make_new_policy(version=2, status="active"))
        await adapter.create_policy(make_new_policy(version=3, status="draft"))

        latest = await adapter.find_latest_active_policy_by_group_id("privacy")
        versions = await adapter.find_all_policy_versions_by_group_id("privacy")

        assert latest is not None
        assert latest.id == second.id
        assert [policy.version for policy in versions] == [1, 2, 3]
        assert await adapter.find_latest_active_policy_by_group_id("other") is None

    @pytest.mark.asyncio()
    async def test_update_policy_status(self, adapter: Any) -> None:
        """Policy status updates check and keep the version."""
        created = await adapter.create_policy(make_new_policy())

        updated = await adapter.update_policy_status(created.id, "archived", 1)

        assert updated.status == "archived"
        assert updated.version == 1
        with pytest.raises(OptimisticConcurrencyError):
            await adapter.update_policy_status(created.id, "active", 3)
        with pytest.raises(NotFoundError):
            await adapter.update_policy_status("missing", "active", 1)

    @pytest.mark.asyncio()
    async def test_list_policies(self, adapter: Any) -> None:
        """All versions of all groups are listed."""
        await adapter.create_policy(make_new_policy(version=1))
        await adapter.create_policy(make_new_policy(version=1, policy_group_id="terms"))

        policies = await adapter.list_policies()

        assert {policy.policy_group_id for policy in policies} == {"privacy", "terms"}


class TestInMemoryAdapter:
    """Behaviour specific to the in-memory adapter."""

    @pytest.mark.asyncio()
    async def test_returned_records_are_copies(self) -> None:
        """Mutating a returned record does not change stored state."""
        adapter = InMemoryDataAdapter()
        created = await adapter.create_consent(make_new_consent())

        created.granted_scopes.clear()

        stored = await adapter.find_consent_by_id(created.id)
        assert stored is not None
        assert "email" in stored.granted_scopes

    @pytest.mark.asyncio()
    async def test_clear_drops_everything(self) -> None:
        """clear() empties both stores."""
        adapter = InMemoryDataAdapter()
        await adapter.create_consent(make_new_consent())
        await adapter.create_policy(make_new_policy())

        adapter.clear()

        assert await adapter.get_all_consents() == []
        assert await adapter.list_policies() == []
