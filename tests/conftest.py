"""Test fixtures for consent-engine.

Provides:
- fixed_now / fixed_clock: A deterministic clock for services
- memory_adapter: A fresh InMemoryDataAdapter
- policy_service / consent_service: Services bound to memory_adapter
- registry: A ServiceRegistry using the fixed clock

Helpers:
- make_policy_input / make_version_input: Policy creation inputs
- make_consent_input: Consent grant inputs
- make_fake_policy / make_fake_consent: Stored-model instances for mock adapters
"""

import uuid
from datetime import UTC, datetime
from typing import Any

import pytest

from consent_engine.adapters.memory import InMemoryDataAdapter
from consent_engine.core.models import (
    ConsentMetadata,
    ConsentRecord,
    ContentSection,
    CreateConsentInput,
    CreatePolicyInput,
    NewPolicyVersionInput,
    Policy,
    PolicyScope,
    ProxyConsenter,
    ProxyDetails,
    SelfConsenter,
)
from consent_engine.core.services import ConsentService, PolicyService, ServiceRegistry

FIXED_NOW = datetime(2024, 3, 1, 12, 0, 0, tzinfo=UTC)

DEFAULT_SCOPES: list[PolicyScope] = [
    PolicyScope(key="data_collection", name="Data collection", description="Collect usage data", required=True),
    PolicyScope(key="marketing", name="Marketing", description="Marketing emails", required=False),
    PolicyScope(key="analytics", name="Analytics", description="Product analytics"),
]


def make_policy_input(
    policy_group_id: str = "privacy",
    status: str | None = "active",
    available_scopes: list[PolicyScope] | None = None,
    **overrides: Any,
) -> CreatePolicyInput:
    """Build a valid CreatePolicyInput.

    Args:
        policy_group_id: Policy group for the new policy.
        status: Initial status.
        available_scopes: Scopes offered; defaults to DEFAULT_SCOPES.
        **overrides: Any other CreatePolicyInput field.

    Returns:
        A CreatePolicyInput.
    """
    fields: dict[str, Any] = {
        "policy_group_id": policy_group_id,
        "title": "Privacy Policy",
        "status": status,
        "effective_date": FIXED_NOW,
        "jurisdiction": "EU",
        "requires_proxy_for_minors": True,
        "content_sections": [ContentSection(title="Intro", description="Overview", content="We collect data.")],
        "available_scopes": DEFAULT_SCOPES if available_scopes is None else available_scopes,
    }
    fields.update(overrides)
    return CreatePolicyInput(**fields)


def make_version_input(status: str | None = None, **overrides: Any) -> NewPolicyVersionInput:
    """Build a valid NewPolicyVersionInput."""
    fields: dict[str, Any] = {
        "title": "Privacy Policy v-next",
        "status": status,
        "effective_date": FIXED_NOW,
        "content_sections": [ContentSection(title="Intro", description="Overview", content="Updated text.")],
        "available_scopes": DEFAULT_SCOPES,
    }
    fields.update(overrides)
    return NewPolicyVersionInput(**fields)


def make_consent_input(
    policy_id: str,
    granted_scopes: list[str],
    revoked_scopes: list[str] | None = None,
    subject_id: str = "subject-1",
    proxy_id: str | None = None,
) -> CreateConsentInput:
    """Build a CreateConsentInput, self-consented unless proxy_id is given.

    Args:
        policy_id: Policy being consented to.
        granted_scopes: Scope keys to grant.
        revoked_scopes: Scope keys to revoke explicitly.
        subject_id: The data subject.
        proxy_id: When set, consent is given by this user as a parent proxy.

    Returns:
        A CreateConsentInput.
    """
    consenter: SelfConsenter | ProxyConsenter
    if proxy_id is None:
        consenter = SelfConsenter(user_id=subject_id)
    else:
        consenter = ProxyConsenter(
            user_id=proxy_id,
            proxy_details=ProxyDetails(relationship="parent", subject_age_group="under13"),
        )
    return CreateConsentInput(
        subject_id=subject_id,
        policy_id=policy_id,
        consenter=consenter,
        granted_scopes=granted_scopes,
        revoked_scopes=revoked_scopes,
        metadata=ConsentMetadata(consent_method="digital_form", ip_address="127.0.0.1"),
    )


def make_fake_policy(
    policy_id: str = "policy-1",
    version: int = 1,
    status: str = "active",
    policy_group_id: str = "privacy",
) -> Policy:
    """Create a stored Policy for mock adapter return values."""
    return Policy(
        id=policy_id,
        policy_group_id=policy_group_id,
        version=version,
        title="Privacy Policy",
        status=status,
        effective_date=FIXED_NOW,
        content_sections=[ContentSection(title="Intro", description="Overview", content="We collect data.")],
        available_scopes=DEFAULT_SCOPES,
        created_at=FIXED_NOW,
        updated_at=FIXED_NOW,
    )


def make_fake_consent(
    consent_id: str = "consent-1",
    version: int = 1,
    status: str = "granted",
    policy_id: str = "policy-1",
    subject_id: str = "subject-1",
) -> ConsentRecord:
    """Create a stored ConsentRecord for mock adapter return values."""
    return ConsentRecord(
        id=consent_id,
        subject_id=subject_id,
        policy_id=policy_id,
        version=version,
        status=status,
        consented_at=FIXED_NOW,
        consenter=SelfConsenter(user_id=subject_id),
        granted_scopes={},
        revoked_scopes={},
        metadata=ConsentMetadata(consent_method="api_call"),
        created_at=FIXED_NOW,
        updated_at=FIXED_NOW,
    )


@pytest.fixture()
def fixed_now() -> datetime:
    """Return the timestamp the fixed clock reports."""
    return FIXED_NOW


@pytest.fixture()
def fixed_clock() -> Any:
    """Return a clock that always reports FIXED_NOW."""
    return lambda: FIXED_NOW


@pytest.fixture()
def memory_adapter() -> InMemoryDataAdapter:
    """Create an empty in-memory data adapter."""
    return InMemoryDataAdapter()


@pytest.fixture()
def policy_service(memory_adapter: InMemoryDataAdapter, fixed_clock: Any) -> PolicyService:
    """Create a PolicyService on the in-memory adapter."""
    return PolicyService(memory_adapter, clock=fixed_clock)


@pytest.fixture()
def consent_service(memory_adapter: InMemoryDataAdapter, fixed_clock: Any) -> ConsentService:
    """Create a ConsentService on the in-memory adapter."""
    return ConsentService(memory_adapter, clock=fixed_clock)


@pytest.fixture()
def registry(fixed_clock: Any) -> ServiceRegistry:
    """Create a ServiceRegistry handing out services on the fixed clock."""
    return ServiceRegistry(clock=fixed_clock)


@pytest.fixture()
def subject_id() -> str:
    """Return a unique subject id."""
    return f"subject-{uuid.uuid4()}"
