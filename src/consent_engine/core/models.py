"""Pydantic domain models for the consent engine.

Models:
- ConsentRecord      — one immutable-per-version snapshot of a subject's consent to a policy
- NewConsentData     — a ConsentRecord before the adapter assigns id and timestamps
- CreateConsentInput — caller input to ConsentService.grant_consent / create_initial_grant
- Policy             — a versioned policy document within a policy group
- NewPolicyData      — a Policy before the adapter assigns id and timestamps
- CreatePolicyInput  — caller input to PolicyService.create_policy
- NewPolicyVersionInput — caller input to PolicyService.create_new_policy_version

Storage adapters round-trip these models; how they lay them out physically is
their own concern (see adapters/tables.py for the relational layout).
"""

from datetime import date, datetime
from typing import Annotated, Literal

from pydantic import BaseModel, ConfigDict, Field, model_validator

ConsentStatus = Literal["granted", "revoked", "superseded"]
ConsentMethod = Literal["digital_form", "paper_scan", "api_call"]
AgeGroup = Literal["under13", "13-17", "18+"]
PolicyStatus = Literal["draft", "active", "archived"]

POLICY_STATUSES: frozenset[str] = frozenset({"draft", "active", "archived"})


# ---------------------------------------------------------------------------
# Consenter
# ---------------------------------------------------------------------------


class ProxyDetails(BaseModel):
    """How a proxy consenter relates to the subject."""

    relationship: str = Field(description="Relationship to the subject, e.g. parent or guardian")
    subject_age_group: AgeGroup = Field(description="Age bracket of the subject: under13 | 13-17 | 18+")


class SelfConsenter(BaseModel):
    """The subject consenting on their own behalf."""

    type: Literal["self"] = "self"
    user_id: str


class ProxyConsenter(BaseModel):
    """Someone consenting on behalf of the subject."""

    type: Literal["proxy"] = "proxy"
    user_id: str
    proxy_details: ProxyDetails


Consenter = Annotated[SelfConsenter | ProxyConsenter, Field(discriminator="type")]


class ConsentMetadata(BaseModel):
    """How the consent was captured."""

    consent_method: ConsentMethod
    ip_address: str | None = None
    user_agent: str | None = None


# ---------------------------------------------------------------------------
# Scopes
# ---------------------------------------------------------------------------


class PolicyScope(BaseModel):
    """A scope a policy offers for consent."""

    key: str = Field(min_length=1)
    name: str
    description: str
    required: bool | None = None


class ScopeGrant(BaseModel):
    """A scope as currently granted on a consent record."""

    key: str
    name: str
    description: str
    required: bool | None = None
    granted_at: datetime


class ScopeRevocation(BaseModel):
    """A scope as currently revoked on a consent record."""

    key: str
    name: str
    description: str
    required: bool | None = None
    revoked_at: datetime


# ---------------------------------------------------------------------------
# Consent records
# ---------------------------------------------------------------------------


class NewConsentData(BaseModel):
    """Everything the service decides about a new consent version.

    The adapter assigns ``id``, ``created_at`` and ``updated_at``.
    """

    subject_id: str
    policy_id: str
    version: int = Field(ge=1)
    status: ConsentStatus
    consented_at: datetime
    date_of_birth: date | None = None
    consenter: Consenter
    granted_scopes: dict[str, ScopeGrant] = Field(default_factory=dict)
    revoked_scopes: dict[str, ScopeRevocation] | None = None
    revoked_at: datetime | None = None
    metadata: ConsentMetadata


class ConsentRecord(NewConsentData):
    """A persisted consent version.

    Attributes:
        id: Adapter-assigned identifier.
        version: Position in the (subject_id, policy_id) lineage, starting at 1.
        status: granted | revoked | superseded. Only the latest version of a
            lineage may be granted or revoked; older versions are superseded.
        consented_at: Timestamp of the original consent act, carried across
            versions that merely change scopes.
        granted_scopes: Scope key to grant entry; disjoint from revoked_scopes.
        revoked_scopes: Scope key to revocation entry.
        revoked_at: Set only when the whole record is revoked.
        created_at: Adapter-assigned creation timestamp.
        updated_at: Adapter-assigned timestamp of the last status change.
    """

    id: str
    created_at: datetime
    updated_at: datetime

    def grants_scope(self, scope: str) -> bool:
        """Return whether this record currently grants ``scope``."""
        return scope in self.granted_scopes and not (
            self.revoked_scopes is not None and scope in self.revoked_scopes
        )


class CreateConsentInput(BaseModel):
    """Input to ConsentService.grant_consent and create_initial_grant."""

    subject_id: str = Field(min_length=1)
    policy_id: str = Field(min_length=1)
    consenter: Consenter
    granted_scopes: list[str] = Field(
        default_factory=list,
        description="Scope keys the consenter asks to grant",
    )
    revoked_scopes: list[str] | None = Field(
        default=None,
        description="Scope keys explicitly revoked; wins over a grant of the same key",
    )
    date_of_birth: date | None = None
    metadata: ConsentMetadata


# ---------------------------------------------------------------------------
# Policies
# ---------------------------------------------------------------------------


class ContentSection(BaseModel):
    """One section of a policy's human-readable content."""

    title: str
    description: str
    content: str


def _check_unique_scope_keys(scopes: list[PolicyScope] | None) -> None:
    if not scopes:
        return
    keys = [scope.key for scope in scopes]
    duplicates = sorted({key for key in keys if keys.count(key) > 1})
    if duplicates:
        raise ValueError(f"Duplicate scope keys in available_scopes: {', '.join(duplicates)}")


class NewPolicyData(BaseModel):
    """A fully resolved policy version before the adapter assigns its id."""

    policy_group_id: str
    version: int = Field(ge=1)
    title: str | None = None
    status: PolicyStatus
    effective_date: datetime
    jurisdiction: str | None = None
    requires_proxy_for_minors: bool | None = None
    content_sections: list[ContentSection]
    available_scopes: list[PolicyScope]

    @model_validator(mode="after")
    def _unique_scope_keys(self) -> "NewPolicyData":
        _check_unique_scope_keys(self.available_scopes)
        return self


class Policy(NewPolicyData):
    """A persisted policy version.

    Versions are contiguous integers starting at 1 within a policy group.
    Creating a new version archives the one it supersedes.
    """

    id: str
    created_at: datetime
    updated_at: datetime

    def required_scope_keys(self) -> set[str]:
        """Return the keys of scopes that must be granted for the consent to stand."""
        return {scope.key for scope in self.available_scopes if scope.required}

    def scope_keys(self) -> set[str]:
        """Return the keys of every scope this policy offers."""
        return {scope.key for scope in self.available_scopes}


class CreatePolicyInput(BaseModel):
    """Input to PolicyService.create_policy.

    The required fields are optional here so that the service can report every
    missing one in a single ValidationError.
    """

    model_config = ConfigDict(extra="ignore")

    policy_group_id: str | None = None
    version: int | None = Field(default=None, ge=1)
    title: str | None = None
    status: str | None = None
    effective_date: datetime | None = None
    jurisdiction: str | None = None
    requires_proxy_for_minors: bool | None = None
    content_sections: list[ContentSection] | None = None
    available_scopes: list[PolicyScope] | None = None

    @model_validator(mode="after")
    def _unique_scope_keys(self) -> "CreatePolicyInput":
        _check_unique_scope_keys(self.available_scopes)
        return self


class NewPolicyVersionInput(BaseModel):
    """Input to PolicyService.create_new_policy_version.

    The policy group and version number come from the superseded policy.
    """

    model_config = ConfigDict(extra="ignore")

    title: str | None = None
    status: PolicyStatus | None = None
    effective_date: datetime
    jurisdiction: str | None = None
    requires_proxy_for_minors: bool | None = None
    content_sections: list[ContentSection]
    available_scopes: list[PolicyScope]

    @model_validator(mode="after")
    def _unique_scope_keys(self) -> "NewPolicyVersionInput":
        _check_unique_scope_keys(self.available_scopes)
        return self
