"""Abstract interfaces (Protocol classes) for the consent engine.

Defines the contract between the service layer and the storage adapters using
Python's typing.Protocol. Services depend on these protocols — never on a
concrete adapter. Any backend (relational, document, in-memory) that
implements them is a valid store.

Protocols defined:
- IConsentDataAdapter
- IPolicyDataAdapter
- IDataAdapter (both of the above plus lifecycle hooks)

Write operations that take an ``expected_version`` perform the optimistic
concurrency check themselves: they raise OptimisticConcurrencyError when the
stored version differs and NotFoundError when the id does not exist. Status
updates never change the stored version.
"""

from typing import Protocol

from consent_engine.core.models import (
    ConsentRecord,
    ConsentStatus,
    NewConsentData,
    NewPolicyData,
    Policy,
    PolicyStatus,
)


class IConsentDataAdapter(Protocol):
    """Storage contract for consent records."""

    async def create_consent(self, data: NewConsentData) -> ConsentRecord:
        """Persist a new consent version.

        Args:
            data: The consent version, with ``version`` already decided by the caller.

        Returns:
            The stored ConsentRecord with ``id``, ``created_at`` and ``updated_at`` assigned.

        Raises:
            OptimisticConcurrencyError: If the lineage already holds this version.
        """
        ...

    async def update_consent_status(
        self,
        consent_id: str,
        status: ConsentStatus,
        expected_version: int,
    ) -> ConsentRecord:
        """Flip the status of an existing consent record in place.

        Args:
            consent_id: The record to update.
            status: The new status.
            expected_version: The version the caller observed.

        Returns:
            The updated ConsentRecord (same version).

        Raises:
            NotFoundError: If no record has this id.
            OptimisticConcurrencyError: If the stored version differs.
        """
        ...

    async def find_consent_by_id(self, consent_id: str) -> ConsentRecord | None:
        """Return the record with this id, or None."""
        ...

    async def find_consents_by_subject(self, subject_id: str) -> list[ConsentRecord]:
        """Return every record for a subject across all policies."""
        ...

    async def find_latest_consent_by_subject_and_policy(
        self,
        subject_id: str,
        policy_id: str,
    ) -> ConsentRecord | None:
        """Return the highest-versioned record of a lineage, or None."""
        ...

    async def find_all_consent_versions_by_subject_and_policy(
        self,
        subject_id: str,
        policy_id: str,
    ) -> list[ConsentRecord]:
        """Return every record of a lineage in ascending version order."""
        ...

    async def get_all_consents(self) -> list[ConsentRecord]:
        """Return every stored consent record."""
        ...

    async def get_consents_by_proxy_id(self, proxy_id: str) -> list[ConsentRecord]:
        """Return records whose consenter is a proxy with ``user_id == proxy_id``."""
        ...


class IPolicyDataAdapter(Protocol):
    """Storage contract for policies."""

    async def create_policy(self, data: NewPolicyData) -> Policy:
        """Persist a new policy version.

        Args:
            data: The policy version, with ``version`` already decided by the caller.

        Returns:
            The stored Policy with ``id``, ``created_at`` and ``updated_at`` assigned.

        Raises:
            OptimisticConcurrencyError: If the group already holds this version.
        """
        ...

    async def update_policy_status(
        self,
        policy_id: str,
        status: PolicyStatus,
        expected_version: int,
    ) -> Policy:
        """Flip the status of an existing policy in place.

        Args:
            policy_id: The policy to update.
            status: The new status.
            expected_version: The version the caller observed.

        Returns:
            The updated Policy (same version).

        Raises:
            NotFoundError: If no policy has this id.
            OptimisticConcurrencyError: If the stored version differs.
        """
        ...

    async def find_policy_by_id(self, policy_id: str) -> Policy | None:
        """Return the policy with this id, or None."""
        ...

    async def find_latest_active_policy_by_group_id(self, policy_group_id: str) -> Policy | None:
        """Return the highest-versioned active policy of a group, or None."""
        ...

    async def find_all_policy_versions_by_group_id(self, policy_group_id: str) -> list[Policy]:
        """Return every version of a group in ascending version order."""
        ...

    async def list_policies(self) -> list[Policy]:
        """Return every stored policy."""
        ...


class IDataAdapter(IConsentDataAdapter, IPolicyDataAdapter, Protocol):
    """A store backing both services, with lifecycle hooks."""

    async def initialize(self) -> None:
        """Prepare the backing store (open connections, create schema)."""
        ...

    async def close(self) -> None:
        """Release any resources held by the adapter."""
        ...
