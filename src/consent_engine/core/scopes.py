"""Scope resolution rules for consent grants.

Given a policy's declared scopes and a grant request, decide the resulting
record status and which scopes end up granted or revoked.

Losing any required scope revokes the whole record: every scope the policy
declares is listed as revoked and nothing stays granted. Otherwise the
requested scopes are granted and every other policy scope is listed as revoked.
All entries are stamped with the operation timestamp, including scopes that
were already granted on a previous version.
"""

from dataclasses import dataclass
from datetime import datetime

from consent_engine.core.models import ConsentStatus, Policy, ScopeGrant, ScopeRevocation


@dataclass(frozen=True)
class ScopeResolution:
    """Outcome of resolving a grant request against a policy.

    Attributes:
        status: granted, or revoked if a required scope was lost.
        granted_scopes: Scope key to grant entry.
        revoked_scopes: Scope key to revocation entry.
        revoked_at: The operation timestamp when status is revoked, else None.
    """

    status: ConsentStatus
    granted_scopes: dict[str, ScopeGrant]
    revoked_scopes: dict[str, ScopeRevocation]
    revoked_at: datetime | None


def effective_grant(granted: list[str], revoked: list[str] | None) -> set[str]:
    """Return requested grant keys minus any key that is explicitly revoked."""
    return set(granted) - set(revoked or [])


def resolve_scopes(
    policy: Policy,
    granted: list[str],
    revoked: list[str] | None,
    now: datetime,
) -> ScopeResolution:
    """Resolve a grant request against the policy's available scopes.

    Args:
        policy: The policy whose available_scopes are the scope universe.
        granted: Scope keys requested for grant.
        revoked: Scope keys explicitly requested for revocation.
        now: The operation timestamp.

    Returns:
        The resolved ScopeResolution.
    """
    requested = effective_grant(granted, revoked)
    required_lost = policy.required_scope_keys() - requested

    if required_lost:
        return ScopeResolution(
            status="revoked",
            granted_scopes={},
            revoked_scopes={
                scope.key: ScopeRevocation(
                    key=scope.key,
                    name=scope.name,
                    description=scope.description,
                    required=scope.required,
                    revoked_at=now,
                )
                for scope in policy.available_scopes
            },
            revoked_at=now,
        )

    granted_scopes: dict[str, ScopeGrant] = {}
    revoked_scopes: dict[str, ScopeRevocation] = {}
    for scope in policy.available_scopes:
        if scope.key in requested:
            granted_scopes[scope.key] = ScopeGrant(
                key=scope.key,
                name=scope.name,
                description=scope.description,
                required=scope.required,
                granted_at=now,
            )
        else:
            revoked_scopes[scope.key] = ScopeRevocation(
                key=scope.key,
                name=scope.name,
                description=scope.description,
                required=scope.required,
                revoked_at=now,
            )

    return ScopeResolution(
        status="granted",
        granted_scopes=granted_scopes,
        revoked_scopes=revoked_scopes,
        revoked_at=None,
    )
