"""Error taxonomy for the consent engine.

Every failure the core raises is one of a small, closed set of error kinds.
Each kind carries structured fields (ids, versions, missing fields) so that
callers can branch on type and attributes instead of parsing messages.

Hierarchy:
- ConsentEngineError
  - ValidationError              — input missing or malformed, raised before I/O
  - NotFoundError                — referenced entity does not exist
  - ConflictError
    - StateConflictError         — operation illegal in the entity's current state
      - RevokedConsentError
      - SupersededConsentError
      - PolicyNotSupersedableError
    - OptimisticConcurrencyError — stored version differs from expected version

Transport layers map these to status codes (see api/errors.py).
"""

from typing import Any


class ConsentEngineError(Exception):
    """Base class for all consent engine errors.

    Args:
        message: Human-readable error message.
    """

    code: str = "consent_engine_error"

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message

    def to_dict(self) -> dict[str, Any]:
        """Return a JSON-serialisable representation of the error.

        Returns:
            Dict with at least ``error`` and ``code`` keys.
        """
        return {"error": self.message, "code": self.code}


class ValidationError(ConsentEngineError):
    """Raised when required input fields are missing or malformed.

    Args:
        message: Human-readable error message.
        field: The single offending field, if there is one.
        missing_fields: Names of all required fields that were absent.
    """

    code = "validation_error"

    def __init__(
        self,
        message: str,
        field: str | None = None,
        missing_fields: tuple[str, ...] | list[str] = (),
    ) -> None:
        super().__init__(message)
        self.field = field
        self.missing_fields = tuple(missing_fields)

    def to_dict(self) -> dict[str, Any]:
        payload = super().to_dict()
        if self.field is not None:
            payload["field"] = self.field
        if self.missing_fields:
            payload["missing_fields"] = list(self.missing_fields)
        return payload


class NotFoundError(ConsentEngineError):
    """Raised when a referenced entity does not exist.

    Args:
        resource: Entity kind, e.g. ``Policy`` or ``ConsentRecord``.
        resource_id: Identifier that was looked up.
    """

    code = "not_found"

    def __init__(self, resource: str, resource_id: str) -> None:
        super().__init__(f"{resource} with ID {resource_id} not found.")
        self.resource = resource
        self.resource_id = resource_id

    def to_dict(self) -> dict[str, Any]:
        payload = super().to_dict()
        payload["resource"] = self.resource
        payload["resource_id"] = self.resource_id
        return payload


class ConflictError(ConsentEngineError):
    """Base for errors caused by the current stored state of an entity."""

    code = "conflict"


class StateConflictError(ConflictError):
    """Raised when an operation is illegal given an entity's current state.

    Args:
        message: Human-readable error message.
        resource: Entity kind.
        resource_id: Identifier of the entity in the conflicting state.
    """

    code = "state_conflict"

    def __init__(self, message: str, resource: str, resource_id: str) -> None:
        super().__init__(message)
        self.resource = resource
        self.resource_id = resource_id

    def to_dict(self) -> dict[str, Any]:
        payload = super().to_dict()
        payload["resource"] = self.resource
        payload["resource_id"] = self.resource_id
        return payload


class RevokedConsentError(StateConflictError):
    """Raised when granting against a lineage whose latest record is revoked."""

    code = "consent_revoked"

    def __init__(self, consent_id: str) -> None:
        super().__init__(
            f"Consent {consent_id} has been revoked and cannot be granted again. "
            "A new policy or subject relationship is required.",
            resource="ConsentRecord",
            resource_id=consent_id,
        )
        self.consent_id = consent_id


class SupersededConsentError(StateConflictError):
    """Raised when the latest record of a lineage is marked superseded.

    The latest record must never be superseded, so this signals corrupted data
    rather than a caller mistake.
    """

    code = "consent_superseded_latest"

    def __init__(self, consent_id: str) -> None:
        super().__init__(
            f"Invariant violation: latest consent {consent_id} is marked superseded.",
            resource="ConsentRecord",
            resource_id=consent_id,
        )
        self.consent_id = consent_id


class PolicyNotSupersedableError(StateConflictError):
    """Raised when creating a new version of a policy that is not active or draft."""

    code = "policy_not_supersedable"

    def __init__(self, policy_id: str, status: str) -> None:
        super().__init__(
            f"Policy {policy_id} cannot be superseded as it is already {status}.",
            resource="Policy",
            resource_id=policy_id,
        )
        self.policy_id = policy_id
        self.status = status


class OptimisticConcurrencyError(ConflictError):
    """Raised when a stored version does not match the version the caller saw.

    Args:
        resource: Entity kind.
        resource_id: Identifier of the contested entity or lineage.
        expected_version: Version the caller based its write on.
        found_version: Version actually present in storage.
    """

    code = "optimistic_concurrency"

    def __init__(
        self,
        resource: str,
        resource_id: str,
        expected_version: int,
        found_version: int,
    ) -> None:
        super().__init__(
            f"Optimistic concurrency check failed for {resource} {resource_id}. "
            f"Expected version {expected_version}, found {found_version}."
        )
        self.resource = resource
        self.resource_id = resource_id
        self.expected_version = expected_version
        self.found_version = found_version

    def to_dict(self) -> dict[str, Any]:
        payload = super().to_dict()
        payload["resource"] = self.resource
        payload["resource_id"] = self.resource_id
        payload["expected_version"] = self.expected_version
        payload["found_version"] = self.found_version
        return payload
