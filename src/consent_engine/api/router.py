"""API router for consent-engine.

All consent and policy endpoints are registered here and included in main.py
under ``settings.api_prefix`` (default /api). Routes are thin — all business
logic lives in the service layer, and errors are rendered by api/errors.py.

Endpoints:
- POST        /consent                                           — Grant consent (create or supersede)
- POST        /consent/initial                                   — Create a version-1 consent
- GET         /consent/{id}                                      — Get consent record by ID
- GET         /consents                                          — List all consent records
- GET         /consents/subject/{subject_id}/latest-versions     — Latest record per policy
- GET         /consents/subject/{subject_id}/policy/{policy_id}/versions — Full lineage
- GET         /consents/subject/{subject_id}/status              — Per-scope grant status
- GET         /proxies/{proxy_id}/consents                       — Consents given by a proxy
- POST/GET    /policies                                          — Create / list policies
- GET         /policies/{id}                                     — Get policy by ID
- POST        /policies/{id}/versions                            — Supersede with a new version
- PATCH       /policies/{id}/status                              — Change policy status
- GET         /policyGroups/{id}/latest                          — Latest active version of a group
- GET         /policyGroups/{id}/versions                        — All versions of a group
- GET         /health                                            — Liveness
"""

from typing import Annotated, Any

from fastapi import APIRouter, Depends, Query, Request

from consent_engine.api.schemas import (
    ErrorResponse,
    HealthResponse,
    PolicyStatusUpdateRequest,
    SubjectConsentStatusResponse,
)
from consent_engine.core.models import (
    ConsentRecord,
    CreateConsentInput,
    CreatePolicyInput,
    NewPolicyVersionInput,
    Policy,
)
from consent_engine.core.services import ConsentService, PolicyService, ServiceRegistry
from consent_engine.errors import NotFoundError
from consent_engine.observability import get_logger

logger = get_logger(__name__)

# Error bodies rendered by api/errors.py
ERROR_RESPONSES: dict[int | str, dict[str, Any]] = {
    400: {"model": ErrorResponse, "description": "Invalid input"},
    404: {"model": ErrorResponse, "description": "Referenced entity not found"},
    409: {"model": ErrorResponse, "description": "State conflict or version mismatch"},
    500: {"model": ErrorResponse, "description": "Unexpected consent engine error"},
}

router = APIRouter(tags=["consent"], responses=ERROR_RESPONSES)


# ---------------------------------------------------------------------------
# Dependency factories — resolve the adapter and services from app state
# ---------------------------------------------------------------------------


def get_data_adapter(request: Request) -> Any:
    """Return the data adapter the application was started with."""
    return request.app.state.data_adapter


def get_registry(request: Request) -> ServiceRegistry:
    """Return the application's service registry."""
    return request.app.state.registry


def get_consent_service(
    registry: Annotated[ServiceRegistry, Depends(get_registry)],
    adapter: Annotated[Any, Depends(get_data_adapter)],
) -> ConsentService:
    """Return the ConsentService bound to the application's data adapter.

    Args:
        registry: The application's service registry.
        adapter: The application's data adapter.

    Returns:
        The shared ConsentService instance.
    """
    return registry.get(ConsentService, adapter)


def get_policy_service(
    registry: Annotated[ServiceRegistry, Depends(get_registry)],
    adapter: Annotated[Any, Depends(get_data_adapter)],
) -> PolicyService:
    """Return the PolicyService bound to the application's data adapter.

    Args:
        registry: The application's service registry.
        adapter: The application's data adapter.

    Returns:
        The shared PolicyService instance.
    """
    return registry.get(PolicyService, adapter)


# ---------------------------------------------------------------------------
# Consent endpoints
# ---------------------------------------------------------------------------


@router.post("/consent", response_model=ConsentRecord, status_code=201)
async def grant_consent(
    body: CreateConsentInput,
    service: Annotated[ConsentService, Depends(get_consent_service)],
) -> ConsentRecord:
    """Grant consent for a subject and policy.

    Creates version 1 when the subject has no consent for the policy yet,
    otherwise supersedes the latest version and writes the next one.

    Args:
        body: The grant request.
        service: Injected ConsentService.

    Returns:
        The newly created consent version.
    """
    logger.info("POST /consent", subject_id=body.subject_id, policy_id=body.policy_id)
    return await service.grant_consent(body)


@router.post("/consent/initial", response_model=ConsentRecord, status_code=201)
async def create_initial_grant(
    body: CreateConsentInput,
    service: Annotated[ConsentService, Depends(get_consent_service)],
) -> ConsentRecord:
    """Create a version-1 consent without checking for an existing lineage."""
    logger.info("POST /consent/initial", subject_id=body.subject_id, policy_id=body.policy_id)
    return await service.create_initial_grant(body)


@router.get("/consent/{consent_id}", response_model=ConsentRecord)
async def get_consent(
    consent_id: str,
    service: Annotated[ConsentService, Depends(get_consent_service)],
) -> ConsentRecord:
    """Get a consent record by ID.

    Args:
        consent_id: The consent record ID.
        service: Injected ConsentService.

    Returns:
        The consent record.
    """
    record = await service.get_consent_details(consent_id)
    if record is None:
        raise NotFoundError(resource="ConsentRecord", resource_id=consent_id)
    return record


@router.get("/consents", response_model=list[ConsentRecord])
async def list_consents(
    service: Annotated[ConsentService, Depends(get_consent_service)],
) -> list[ConsentRecord]:
    """List every consent record."""
    return await service.get_all_consents()


@router.get("/consents/subject/{subject_id}/latest-versions", response_model=list[ConsentRecord])
async def get_latest_consent_versions(
    subject_id: str,
    service: Annotated[ConsentService, Depends(get_consent_service)],
) -> list[ConsentRecord]:
    """Return the latest consent version of each policy the subject has consented to."""
    return await service.get_latest_consent_versions_for_subject(subject_id)


@router.get(
    "/consents/subject/{subject_id}/policy/{policy_id}/versions",
    response_model=list[ConsentRecord],
)
async def get_consent_versions(
    subject_id: str,
    policy_id: str,
    service: Annotated[ConsentService, Depends(get_consent_service)],
) -> list[ConsentRecord]:
    """Return every version of a subject's consent to one policy, oldest first."""
    return await service.get_all_consent_versions_for_subject_and_policy(subject_id, policy_id)


@router.get("/consents/subject/{subject_id}/status", response_model=SubjectConsentStatusResponse)
async def get_subject_consent_status(
    subject_id: str,
    service: Annotated[ConsentService, Depends(get_consent_service)],
    scopes: Annotated[list[str], Query(description="Scope keys to report on")] = [],  # noqa: B006
    policy_id: str | None = Query(default=None, description="Restrict the check to one policy"),
) -> SubjectConsentStatusResponse:
    """Report whether the subject currently grants each requested scope.

    Args:
        subject_id: The subject to check.
        service: Injected ConsentService.
        scopes: Scope keys, repeated as ``?scopes=a&scopes=b``.
        policy_id: Optional policy to restrict the check to.

    Returns:
        Per-scope grant status.
    """
    statuses = await service.get_subject_consent_status(subject_id, scopes, policy_id)
    return SubjectConsentStatusResponse(subject_id=subject_id, policy_id=policy_id, scopes=statuses)


@router.get("/proxies/{proxy_id}/consents", response_model=list[ConsentRecord])
async def get_consents_by_proxy(
    proxy_id: str,
    service: Annotated[ConsentService, Depends(get_consent_service)],
) -> list[ConsentRecord]:
    """Return every consent record given by ``proxy_id`` acting as a proxy."""
    return await service.get_consents_by_proxy_id(proxy_id)


# ---------------------------------------------------------------------------
# Policy endpoints
# ---------------------------------------------------------------------------


@router.post("/policies", response_model=Policy, status_code=201)
async def create_policy(
    body: CreatePolicyInput,
    service: Annotated[PolicyService, Depends(get_policy_service)],
) -> Policy:
    """Create a policy.

    When the policy group already exists, a new version superseding the
    group's latest version is created instead.

    Args:
        body: Policy creation request body.
        service: Injected PolicyService.

    Returns:
        The created policy version.
    """
    logger.info("POST /policies", policy_group_id=body.policy_group_id)
    return await service.create_policy(body)


@router.get("/policies", response_model=list[Policy])
async def list_policies(
    service: Annotated[PolicyService, Depends(get_policy_service)],
) -> list[Policy]:
    """List every policy version."""
    return await service.list_policies()


@router.get("/policies/{policy_id}", response_model=Policy)
async def get_policy(
    policy_id: str,
    service: Annotated[PolicyService, Depends(get_policy_service)],
) -> Policy:
    """Get a policy version by ID."""
    policy = await service.get_policy_by_id(policy_id)
    if policy is None:
        raise NotFoundError(resource="Policy", resource_id=policy_id)
    return policy


@router.post("/policies/{policy_id}/versions", response_model=Policy, status_code=201)
async def create_policy_version(
    policy_id: str,
    body: NewPolicyVersionInput,
    service: Annotated[PolicyService, Depends(get_policy_service)],
) -> Policy:
    """Create the next version of a policy and archive the one it supersedes.

    Args:
        policy_id: The policy version to supersede.
        body: Content of the new version.
        service: Injected PolicyService.

    Returns:
        The new policy version.
    """
    logger.info("POST /policies/{policy_id}/versions", policy_id=policy_id)
    return await service.create_new_policy_version(policy_id, body)


@router.patch("/policies/{policy_id}/status", response_model=Policy)
async def update_policy_status(
    policy_id: str,
    body: PolicyStatusUpdateRequest,
    service: Annotated[PolicyService, Depends(get_policy_service)],
) -> Policy:
    """Change the status of a policy version in place.

    Args:
        policy_id: The policy version to update.
        body: Target status and the version the caller observed.
        service: Injected PolicyService.

    Returns:
        The updated policy.
    """
    logger.info("PATCH /policies/{policy_id}/status", policy_id=policy_id, status=body.status)
    return await service.update_policy_status(policy_id, body.status, body.expected_version)


@router.get("/policyGroups/{policy_group_id}/latest", response_model=Policy)
async def get_latest_active_policy(
    policy_group_id: str,
    service: Annotated[PolicyService, Depends(get_policy_service)],
) -> Policy:
    """Get the highest-versioned active policy of a group."""
    policy = await service.get_latest_active_policy_by_group_id(policy_group_id)
    if policy is None:
        raise NotFoundError(resource="Active policy for group", resource_id=policy_group_id)
    return policy


@router.get("/policyGroups/{policy_group_id}/versions", response_model=list[Policy])
async def get_policy_versions(
    policy_group_id: str,
    service: Annotated[PolicyService, Depends(get_policy_service)],
) -> list[Policy]:
    """Get every version of a policy group, oldest first."""
    return await service.get_all_policy_versions_by_group_id(policy_group_id)


# ---------------------------------------------------------------------------
# Health
# ---------------------------------------------------------------------------


@router.get("/health", response_model=HealthResponse)
async def health(
    request: Request,
    adapter: Annotated[Any, Depends(get_data_adapter)],
) -> HealthResponse:
    """Liveness check."""
    return HealthResponse(
        service=request.app.state.settings.service_name,
        data_adapter=type(adapter).__name__,
    )
