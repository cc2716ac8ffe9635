"""Pydantic request and response schemas for the consent engine API.

Consent records and policies are returned as the core models themselves
(ConsentRecord, Policy); the schemas here cover the request bodies and
responses that have no core counterpart.

Resources:
- Policy status — in-place status transitions
- Consent status — per-scope grant report for a subject
- Health / errors
"""

from typing import Any

from pydantic import BaseModel, Field


# ---------------------------------------------------------------------------
# Policy schemas
# ---------------------------------------------------------------------------


class PolicyStatusUpdateRequest(BaseModel):
    """Request body for changing the status of a policy version."""

    status: str = Field(description="Target status: draft | active | archived")
    expected_version: int = Field(
        ge=1,
        description="Version the caller last observed; the update fails with 409 if it differs",
    )


# ---------------------------------------------------------------------------
# Consent schemas
# ---------------------------------------------------------------------------


class SubjectConsentStatusResponse(BaseModel):
    """Per-scope consent status for a subject."""

    subject_id: str = Field(description="The subject the report is about")
    policy_id: str | None = Field(
        default=None,
        description="Policy the check was restricted to, or null when every record was scanned",
    )
    scopes: dict[str, bool] = Field(description="Scope key to whether it is currently granted")


# ---------------------------------------------------------------------------
# Health / errors
# ---------------------------------------------------------------------------


class HealthResponse(BaseModel):
    """Liveness check response."""

    status: str = Field(default="ok")
    service: str = Field(description="Service name")
    data_adapter: str = Field(description="Class name of the active data adapter")


class ErrorResponse(BaseModel):
    """Body returned for every handled error."""

    error: str = Field(description="Human-readable error message")
    code: str = Field(description="Stable machine-readable error kind")
    details: dict[str, Any] | None = Field(default=None, description="Request validation details, if any")
