"""In-memory data adapter for the consent engine.

Keeps consent records and policies in process-local dicts keyed by id. Every
read and write hands out deep copies so that callers can never mutate stored
state behind the adapter's back.

Each operation yields to the event loop once before touching state, the way a
network round trip would, and then runs to completion without suspending. That
makes every call a suspension point for concurrent requests while keeping each
individual read or write atomic.

Suitable for tests, demos and single-process deployments; state is lost on
restart.
"""

import asyncio
import uuid
from datetime import UTC, datetime

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


class InMemoryDataAdapter:
    """Dict-backed implementation of IDataAdapter."""

    def __init__(self) -> None:
        """Initialize empty consent and policy stores."""
        # { consent_id: ConsentRecord } in insertion order
        self._consents: dict[str, ConsentRecord] = {}
        # { policy_id: Policy } in insertion order
        self._policies: dict[str, Policy] = {}

    async def initialize(self) -> None:
        """Nothing to prepare for an in-process store."""
        logger.info("In-memory data adapter ready")

    async def close(self) -> None:
        """Nothing to release for an in-process store."""

    def clear(self) -> None:
        """Drop every stored consent record and policy."""
        self._consents.clear()
        self._policies.clear()

    # -------------------------------------------------------------------------
    # Consents
    # -------------------------------------------------------------------------

    async def create_consent(self, data: NewConsentData) -> ConsentRecord:
        await asyncio.sleep(0)
        lineage = self._lineage(data.subject_id, data.policy_id)
        if any(record.version == data.version for record in lineage):
            raise OptimisticConcurrencyError(
                resource="ConsentRecord",
                resource_id=f"{data.subject_id}:{data.policy_id}",
                expected_version=data.version - 1,
                found_version=max(record.version for record in lineage),
            )

        now = datetime.now(UTC)
        record = ConsentRecord(
            **data.model_dump(),
            id=str(uuid.uuid4()),
            created_at=now,
            updated_at=now,
        )
        self._consents[record.id] = record
        return record.model_copy(deep=True)

    async def update_consent_status(
        self,
        consent_id: str,
        status: ConsentStatus,
        expected_version: int,
    ) -> ConsentRecord:
        await asyncio.sleep(0)
        existing = self._consents.get(consent_id)
        if existing is None:
            raise NotFoundError(resource="ConsentRecord", resource_id=consent_id)
        if existing.version != expected_version:
            raise OptimisticConcurrencyError(
                resource="ConsentRecord",
                resource_id=consent_id,
                expected_version=expected_version,
                found_version=existing.version,
            )

        updated = existing.model_copy(update={"status": status, "updated_at": datetime.now(UTC)}, deep=True)
        self._consents[consent_id] = updated
        return updated.model_copy(deep=True)

    async def find_consent_by_id(self, consent_id: str) -> ConsentRecord | None:
        await asyncio.sleep(0)
        record = self._consents.get(consent_id)
        return record.model_copy(deep=True) if record is not None else None

    async def find_consents_by_subject(self, subject_id: str) -> list[ConsentRecord]:
        await asyncio.sleep(0)
        records = [record for record in self._consents.values() if record.subject_id == subject_id]
        return [record.model_copy(deep=True) for record in sorted(records, key=lambda r: r.version)]

    async def find_latest_consent_by_subject_and_policy(
        self,
        subject_id: str,
        policy_id: str,
    ) -> ConsentRecord | None:
        await asyncio.sleep(0)
        lineage = self._lineage(subject_id, policy_id)
        if not lineage:
            return None
        return max(lineage, key=lambda record: record.version).model_copy(deep=True)

    async def find_all_consent_versions_by_subject_and_policy(
        self,
        subject_id: str,
        policy_id: str,
    ) -> list[ConsentRecord]:
        await asyncio.sleep(0)
        lineage = sorted(self._lineage(subject_id, policy_id), key=lambda record: record.version)
        return [record.model_copy(deep=True) for record in lineage]

    async def get_all_consents(self) -> list[ConsentRecord]:
        await asyncio.sleep(0)
        return [record.model_copy(deep=True) for record in self._consents.values()]

    async def get_consents_by_proxy_id(self, proxy_id: str) -> list[ConsentRecord]:
        await asyncio.sleep(0)
        return [
            record.model_copy(deep=True)
            for record in self._consents.values()
            if record.consenter.type == "proxy" and record.consenter.user_id == proxy_id
        ]

    def _lineage(self, subject_id: str, policy_id: str) -> list[ConsentRecord]:
        return [
            record
            for record in self._consents.values()
            if record.subject_id == subject_id and record.policy_id == policy_id
        ]

    # -------------------------------------------------------------------------
    # Policies
    # -------------------------------------------------------------------------

    async def create_policy(self, data: NewPolicyData) -> Policy:
        await asyncio.sleep(0)
        group = self._group(data.policy_group_id)
        if any(policy.version == data.version for policy in group):
            raise OptimisticConcurrencyError(
                resource="PolicyGroup",
                resource_id=data.policy_group_id,
                expected_version=data.version - 1,
                found_version=max(policy.version for policy in group),
            )

        now = datetime.now(UTC)
        policy = Policy(
            **data.model_dump(),
            id=str(uuid.uuid4()),
            created_at=now,
            updated_at=now,
        )
        self._policies[policy.id] = policy
        return policy.model_copy(deep=True)

    async def update_policy_status(
        self,
        policy_id: str,
        status: PolicyStatus,
        expected_version: int,
    ) -> Policy:
        await asyncio.sleep(0)
        existing = self._policies.get(policy_id)
        if existing is None:
            raise NotFoundError(resource="Policy", resource_id=policy_id)
        if existing.version != expected_version:
            raise OptimisticConcurrencyError(
                resource="Policy",
                resource_id=policy_id,
                expected_version=expected_version,
                found_version=existing.version,
            )

        updated = existing.model_copy(update={"status": status, "updated_at": datetime.now(UTC)}, deep=True)
        self._policies[policy_id] = updated
        return updated.model_copy(deep=True)

    async def find_policy_by_id(self, policy_id: str) -> Policy | None:
        await asyncio.sleep(0)
        policy = self._policies.get(policy_id)
        return policy.model_copy(deep=True) if policy is not None else None

    async def find_latest_active_policy_by_group_id(self, policy_group_id: str) -> Policy | None:
        await asyncio.sleep(0)
        active = [policy for policy in self._group(policy_group_id) if policy.status == "active"]
        if not active:
            return None
        return max(active, key=lambda policy: policy.version).model_copy(deep=True)

    async def find_all_policy_versions_by_group_id(self, policy_group_id: str) -> list[Policy]:
        await asyncio.sleep(0)
        group = sorted(self._group(policy_group_id), key=lambda policy: policy.version)
        return [policy.model_copy(deep=True) for policy in group]

    async def list_policies(self) -> list[Policy]:
        await asyncio.sleep(0)
        return [policy.model_copy(deep=True) for policy in self._policies.values()]

    def _group(self, policy_group_id: str) -> list[Policy]:
        return [policy for policy in self._policies.values() if policy.policy_group_id == policy_group_id]
