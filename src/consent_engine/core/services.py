"""Core business logic services for the consent engine.

Service classes:
- BaseService: Holds the injected data adapter and the clock
- ServiceRegistry: One service instance per (service class, adapter instance)
- PolicyService: Policy lifecycle — create, version, supersede, status transitions, queries
- ConsentService: Consent lifecycle — grant (create-or-supersede), scope revocation, queries

All services are async-first. They accept an injected data adapter through
their constructors and contain no framework code. They never retry and never
swallow errors, with the single exception of the archival step that follows
policy supersession.
"""

from collections.abc import Callable
from datetime import UTC, datetime
from typing import Any, Generic, TypeVar

from consent_engine.core.interfaces import IDataAdapter, IPolicyDataAdapter
from consent_engine.core.models import (
    POLICY_STATUSES,
    ConsentRecord,
    CreateConsentInput,
    CreatePolicyInput,
    NewConsentData,
    NewPolicyData,
    NewPolicyVersionInput,
    Policy,
)
from consent_engine.core.scopes import resolve_scopes
from consent_engine.errors import (
    NotFoundError,
    OptimisticConcurrencyError,
    PolicyNotSupersedableError,
    RevokedConsentError,
    SupersededConsentError,
    ValidationError,
)
from consent_engine.observability import get_logger

logger = get_logger(__name__)

AdapterT = TypeVar("AdapterT")
ServiceT = TypeVar("ServiceT", bound="BaseService[Any]")

Clock = Callable[[], datetime]


def utc_now() -> datetime:
    """Return the current time as a timezone-aware UTC datetime."""
    return datetime.now(UTC)


# Fields CreatePolicyInput must carry for a policy to be created
_REQUIRED_POLICY_FIELDS: tuple[str, ...] = (
    "policy_group_id",
    "content_sections",
    "available_scopes",
    "effective_date",
    "status",
)


class BaseService(Generic[AdapterT]):
    """Base class for services backed by a single data adapter.

    Args:
        adapter: The data adapter the service reads from and writes to.
        clock: Callable returning the current UTC time; injectable for tests.
    """

    def __init__(self, adapter: AdapterT, clock: Clock = utc_now) -> None:
        self._adapter = adapter
        self._clock = clock

    @property
    def adapter(self) -> AdapterT:
        """The data adapter this service is bound to."""
        return self._adapter


class ServiceRegistry:
    """Hands out one service instance per service class and adapter instance.

    Created once at application start and passed around explicitly (FastAPI
    keeps it on ``app.state``). Asking for a service with a different adapter
    instance than the cached one replaces the cached service; adapters are
    compared by identity, not by value.

    Args:
        clock: Clock handed to every service the registry constructs.
    """

    def __init__(self, clock: Clock = utc_now) -> None:
        self._clock = clock
        self._instances: dict[type, tuple[Any, Any]] = {}

    def get(self, service_cls: type[ServiceT], adapter: Any) -> ServiceT:
        """Return the service instance bound to ``adapter``.

        Args:
            service_cls: The service class, e.g. ConsentService.
            adapter: The data adapter the service must use.

        Returns:
            The cached instance when it is bound to this exact adapter,
            otherwise a freshly constructed one (which replaces the cache entry).
        """
        cached = self._instances.get(service_cls)
        if cached is None or cached[0] is not adapter:
            instance = service_cls(adapter, clock=self._clock)
            self._instances[service_cls] = (adapter, instance)
            return instance
        service: ServiceT = cached[1]
        return service


def _is_missing(value: Any) -> bool:
    return value is None or value == ""


class PolicyService(BaseService[IPolicyDataAdapter]):
    """Policy lifecycle management.

    Policies are grouped by ``policy_group_id``; each group holds contiguous
    versions starting at 1. Creating a new version archives the version it
    supersedes.

    Args:
        adapter: Adapter implementing IPolicyDataAdapter.
        clock: Clock returning the current UTC time.
    """

    async def create_policy(self, data: CreatePolicyInput) -> Policy:
        """Create a policy, or a new version when the group already exists.

        When any policy already exists for ``policy_group_id`` the call is
        treated as "add a version": it supersedes the highest-versioned policy
        in the group and any caller-supplied version number is discarded.

        Args:
            data: Input data for the policy.

        Returns:
            The created policy.

        Raises:
            ValidationError: If required fields are missing or status is unknown.
            NotFoundError / PolicyNotSupersedableError: Propagated from
                create_new_policy_version when the group already exists.
        """
        missing = [name for name in _REQUIRED_POLICY_FIELDS if _is_missing(getattr(data, name))]
        if missing:
            raise ValidationError(
                message=f"Missing required fields for policy creation: {', '.join(missing)}.",
                missing_fields=missing,
            )
        if data.status not in POLICY_STATUSES:
            raise ValidationError(
                message=f"Invalid policy status '{data.status}'. Expected one of: active, draft, archived.",
                field="status",
            )
        existing = await self._adapter.find_all_policy_versions_by_group_id(
            data.policy_group_id,  # type: ignore[arg-type]
        )
        if existing:
            latest = max(existing, key=lambda policy: policy.version)
            logger.info(
                "Policy group exists, creating new version instead",
                policy_group_id=data.policy_group_id,
                superseding_policy_id=latest.id,
                superseding_version=latest.version,
                requested_version=data.version,
            )
            return await self.create_new_policy_version(
                latest.id,
                NewPolicyVersionInput(
                    title=data.title,
                    status=data.status,  # type: ignore[arg-type]
                    effective_date=data.effective_date,
                    jurisdiction=data.jurisdiction,
                    requires_proxy_for_minors=data.requires_proxy_for_minors,
                    content_sections=data.content_sections,
                    available_scopes=data.available_scopes,
                ),
            )

        policy = await self._adapter.create_policy(
            NewPolicyData(
                policy_group_id=data.policy_group_id,
                version=data.version or 1,
                title=data.title,
                status=data.status,  # type: ignore[arg-type]
                effective_date=data.effective_date,
                jurisdiction=data.jurisdiction,
                requires_proxy_for_minors=data.requires_proxy_for_minors,
                content_sections=data.content_sections,
                available_scopes=data.available_scopes,
            )
        )
        logger.info(
            "Policy created",
            policy_id=policy.id,
            policy_group_id=policy.policy_group_id,
            version=policy.version,
            status=policy.status,
        )
        return policy

    async def create_new_policy_version(
        self,
        policy_id_to_supersede: str,
        new_data: NewPolicyVersionInput,
    ) -> Policy:
        """Create the next version of a policy and archive the superseded one.

        Archival happens after the new version is written and is not
        transactional with it. If archival fails the error is logged and the
        new version is still returned; the superseded policy then stays
        non-archived until reconciled out-of-band.

        Args:
            policy_id_to_supersede: ID of the policy version being superseded.
            new_data: Content of the new version.

        Returns:
            The newly created policy version.

        Raises:
            NotFoundError: If the policy to supersede does not exist.
            PolicyNotSupersedableError: If it is neither active nor draft.
        """
        old_policy = await self._adapter.find_policy_by_id(policy_id_to_supersede)
        if old_policy is None:
            raise NotFoundError(resource="Policy", resource_id=policy_id_to_supersede)

        if old_policy.status not in ("active", "draft"):
            logger.warning(
                "Refusing to supersede policy",
                policy_id=policy_id_to_supersede,
                status=old_policy.status,
            )
            raise PolicyNotSupersedableError(policy_id_to_supersede, old_policy.status)

        new_policy = await self._adapter.create_policy(
            NewPolicyData(
                policy_group_id=old_policy.policy_group_id,
                version=old_policy.version + 1,
                title=new_data.title,
                status=new_data.status or "draft",
                effective_date=new_data.effective_date,
                jurisdiction=new_data.jurisdiction,
                requires_proxy_for_minors=new_data.requires_proxy_for_minors,
                content_sections=new_data.content_sections,
                available_scopes=new_data.available_scopes,
            )
        )

        try:
            await self._adapter.update_policy_status(
                policy_id_to_supersede,
                "archived",
                old_policy.version,
            )
        except Exception as archive_err:
            logger.error(
                "Failed to archive superseded policy after creating new version",
                policy_id=policy_id_to_supersede,
                new_policy_id=new_policy.id,
                error=str(archive_err),
            )

        logger.info(
            "Policy version created",
            policy_id=new_policy.id,
            policy_group_id=new_policy.policy_group_id,
            version=new_policy.version,
            superseded_policy_id=policy_id_to_supersede,
        )
        return new_policy

    async def update_policy_status(
        self,
        policy_id: str,
        status: str,
        expected_version: int,
    ) -> Policy:
        """Update the status of a specific policy version.

        Args:
            policy_id: The policy to update.
            status: Target status: active | draft | archived.
            expected_version: The version the caller observed; checked by the adapter.

        Returns:
            The updated policy.

        Raises:
            ValidationError: If policy_id or status is empty, or status is unknown.
            NotFoundError: If the policy does not exist.
            OptimisticConcurrencyError: If the stored version differs.
        """
        if not policy_id or not status:
            raise ValidationError(message="Policy ID and status are required to update policy status.")

        if status not in POLICY_STATUSES:
            raise ValidationError(
                message="Invalid status provided for policy update.",
                field="status",
            )

        policy = await self._adapter.update_policy_status(
            policy_id,
            status,  # type: ignore[arg-type]
            expected_version,
        )
        logger.info("Policy status updated", policy_id=policy_id, status=status)
        return policy

    async def get_policy_by_id(self, policy_id: str) -> Policy | None:
        """Retrieve a specific policy by its ID, or None."""
        return await self._adapter.find_policy_by_id(policy_id)

    async def get_latest_active_policy_by_group_id(self, policy_group_id: str) -> Policy | None:
        """Retrieve the latest active policy of a group, or None."""
        return await self._adapter.find_latest_active_policy_by_group_id(policy_group_id)

    async def get_all_policy_versions_by_group_id(self, policy_group_id: str) -> list[Policy]:
        """Retrieve every version of a policy group, ascending by version."""
        return await self._adapter.find_all_policy_versions_by_group_id(policy_group_id)

    async def list_policies(self) -> list[Policy]:
        """List all policies."""
        return await self._adapter.list_policies()


class ConsentService(BaseService[IDataAdapter]):
    """Consent lifecycle management.

    Consent for a (subject, policy) pair is a lineage of versions. Granting
    again supersedes the latest version and writes the next one; nothing but
    the status of a superseded record is ever changed in place.

    The adapter must implement IDataAdapter: besides the consent operations it
    needs ``find_policy_by_id``, because the policy's available scopes decide
    the outcome of every grant.

    Args:
        adapter: Adapter implementing IDataAdapter.
        clock: Clock returning the current UTC time.
    """

    async def grant_consent(self, data: CreateConsentInput) -> ConsentRecord:
        """Grant consent, creating a lineage or superseding its latest version.

        Superseding re-reads the latest record by id immediately before the
        versioned write and compares versions, so that of two calls racing on
        the same lineage only one can win.

        Args:
            data: The grant request.

        Returns:
            The newly created consent version.

        Raises:
            NotFoundError: If the policy does not exist.
            ValidationError: If a requested scope is not declared by the policy.
            RevokedConsentError: If the latest version is revoked.
            SupersededConsentError: If the latest version is marked superseded.
            OptimisticConcurrencyError: If the latest version changed under us.
        """
        now = self._clock()
        policy = await self._load_policy(data)

        existing = await self._adapter.find_latest_consent_by_subject_and_policy(
            data.subject_id,
            data.policy_id,
        )

        if existing is None:
            return await self._persist(data, policy, version=1, consented_at=now, now=now)

        if existing.status == "revoked":
            logger.warning(
                "Refusing to grant consent on revoked lineage",
                consent_id=existing.id,
                subject_id=data.subject_id,
                policy_id=data.policy_id,
            )
            raise RevokedConsentError(existing.id)

        if existing.status == "superseded":
            logger.error(
                "Latest consent is marked superseded",
                consent_id=existing.id,
                subject_id=data.subject_id,
                policy_id=data.policy_id,
            )
            raise SupersededConsentError(existing.id)

        current = await self._adapter.find_consent_by_id(existing.id)
        if current is None:
            raise NotFoundError(resource="ConsentRecord", resource_id=existing.id)
        if current.version != existing.version:
            raise OptimisticConcurrencyError(
                resource="ConsentRecord",
                resource_id=existing.id,
                expected_version=existing.version,
                found_version=current.version,
            )

        await self._adapter.update_consent_status(existing.id, "superseded", existing.version)

        return await self._persist(
            data,
            policy,
            version=existing.version + 1,
            consented_at=existing.consented_at,
            now=now,
            superseded_id=existing.id,
        )

    async def create_initial_grant(self, data: CreateConsentInput) -> ConsentRecord:
        """Create a version-1 consent without looking for an existing lineage.

        For callers that already know no prior consent exists.

        Args:
            data: The grant request.

        Returns:
            The newly created consent record.

        Raises:
            NotFoundError: If the policy does not exist.
            ValidationError: If a requested scope is not declared by the policy.
        """
        now = self._clock()
        policy = await self._load_policy(data)
        return await self._persist(data, policy, version=1, consented_at=now, now=now)

    async def get_consent_details(self, consent_id: str) -> ConsentRecord | None:
        """Return the consent record with this id, or None."""
        return await self._adapter.find_consent_by_id(consent_id)

    async def get_subject_consent_status(
        self,
        subject_id: str,
        scopes: list[str],
        policy_id: str | None = None,
    ) -> dict[str, bool]:
        """Report, per scope, whether the subject currently grants it.

        Without ``policy_id`` every granted consent record of the subject is
        scanned and a scope counts as granted when any of them grants it.
        Superseded and revoked records are ignored. With
        ``policy_id`` only the latest version for that policy is considered,
        and only if its status is granted.

        Args:
            subject_id: The subject to check.
            scopes: Scope keys to report on.
            policy_id: Optional policy to restrict the check to.

        Returns:
            Mapping of each requested scope key to True or False.
        """
        if policy_id is None:
            consents = await self._adapter.find_consents_by_subject(subject_id)
            active = [consent for consent in consents if consent.status == "granted"]
            return {scope: any(consent.grants_scope(scope) for consent in active) for scope in scopes}

        latest = await self._adapter.find_latest_consent_by_subject_and_policy(subject_id, policy_id)
        if latest is None or latest.status != "granted":
            return {scope: False for scope in scopes}
        return {scope: latest.grants_scope(scope) for scope in scopes}

    async def get_latest_consent_for_subject_and_policy(
        self,
        subject_id: str,
        policy_id: str,
    ) -> ConsentRecord | None:
        """Return the latest consent version of a lineage, or None."""
        return await self._adapter.find_latest_consent_by_subject_and_policy(subject_id, policy_id)

    async def get_all_consent_versions_for_subject_and_policy(
        self,
        subject_id: str,
        policy_id: str,
    ) -> list[ConsentRecord]:
        """Return every version of a lineage, ascending by version."""
        return await self._adapter.find_all_consent_versions_by_subject_and_policy(subject_id, policy_id)

    async def get_all_consents(self) -> list[ConsentRecord]:
        """Return every consent record."""
        return await self._adapter.get_all_consents()

    async def get_consents_by_proxy_id(self, proxy_id: str) -> list[ConsentRecord]:
        """Return every consent record given by ``proxy_id`` acting as a proxy."""
        return await self._adapter.get_consents_by_proxy_id(proxy_id)

    async def get_latest_consent_versions_for_subject(self, subject_id: str) -> list[ConsentRecord]:
        """Return the highest-versioned record of each of the subject's policies.

        Args:
            subject_id: The subject whose consents to collect.

        Returns:
            One ConsentRecord per policy, in order of first appearance.
        """
        consents = await self._adapter.find_consents_by_subject(subject_id)
        latest_by_policy: dict[str, ConsentRecord] = {}
        for consent in consents:
            current = latest_by_policy.get(consent.policy_id)
            if current is None or consent.version > current.version:
                latest_by_policy[consent.policy_id] = consent
        return list(latest_by_policy.values())

    async def _load_policy(self, data: CreateConsentInput) -> Policy:
        """Load the policy a grant refers to and check the requested scope keys."""
        policy = await self._adapter.find_policy_by_id(data.policy_id)
        if policy is None:
            raise NotFoundError(resource="Policy", resource_id=data.policy_id)

        known = policy.scope_keys()
        unknown_granted = sorted(set(data.granted_scopes) - known)
        if unknown_granted:
            raise ValidationError(
                message=f"Policy {policy.id} does not declare scopes: {', '.join(unknown_granted)}.",
                field="granted_scopes",
            )
        unknown_revoked = sorted(set(data.revoked_scopes or []) - known)
        if unknown_revoked:
            raise ValidationError(
                message=f"Policy {policy.id} does not declare scopes: {', '.join(unknown_revoked)}.",
                field="revoked_scopes",
            )
        return policy

    async def _persist(
        self,
        data: CreateConsentInput,
        policy: Policy,
        version: int,
        consented_at: datetime,
        now: datetime,
        superseded_id: str | None = None,
    ) -> ConsentRecord:
        """Resolve scopes and write a consent version through the adapter."""
        resolution = resolve_scopes(policy, data.granted_scopes, data.revoked_scopes, now)

        record = await self._adapter.create_consent(
            NewConsentData(
                subject_id=data.subject_id,
                policy_id=data.policy_id,
                version=version,
                status=resolution.status,
                consented_at=consented_at,
                date_of_birth=data.date_of_birth,
                consenter=data.consenter,
                granted_scopes=resolution.granted_scopes,
                revoked_scopes=resolution.revoked_scopes,
                revoked_at=resolution.revoked_at,
                metadata=data.metadata,
            )
        )

        logger.info(
            "Consent recorded",
            consent_id=record.id,
            subject_id=record.subject_id,
            policy_id=record.policy_id,
            version=record.version,
            status=record.status,
            superseded_consent_id=superseded_id,
        )
        return record
