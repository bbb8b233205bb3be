"""
Webhook secret administration - metadata only, key material never returned.

- GET    /api/webhook-secrets             list
- POST   /api/webhook-secrets             create, or rotate when one exists
- GET    /api/webhook-secrets/{endpoint}  metadata
- PATCH  /api/webhook-secrets/{endpoint}  toggle active / rename / describe
- DELETE /api/webhook-secrets/{endpoint}  logical delete
"""
import logging

from fastapi import APIRouter, Depends, HTTPException

from hookgate.api.deps import get_services, require_capability
from hookgate.errors import (
    SecretAlreadyExistsError,
    SecretNotFoundError,
    TransientStorageError,
    ValidationError,
)
from hookgate.schemas.api_responses import (
    SecretListResponse,
    SecretMetadata,
    SecretPatchRequest,
    SecretUpsertRequest,
    SecretUpsertResponse,
)
from hookgate.services.container import ServiceContainer
from hookgate.services.session_auth import CAP_MANAGE_SECRETS, SessionUser

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/webhook-secrets", tags=["webhook-secrets"])

require_secret_admin = require_capability(CAP_MANAGE_SECRETS)


def _storage_unavailable(e: TransientStorageError) -> HTTPException:
    logger.error("Secret administration failed: %s", str(e))
    return HTTPException(status_code=500, detail="Internal server error")


@router.get("", response_model=SecretListResponse)
async def list_secrets(
    include_deleted: bool = False,
    services: ServiceContainer = Depends(get_services),
    user: SessionUser = Depends(require_secret_admin),
):
    try:
        records = await services.vault.list_records(include_deleted=include_deleted)
    except TransientStorageError as e:
        raise _storage_unavailable(e)
    secrets = [SecretMetadata.from_record(r) for r in records]
    return SecretListResponse(secrets=secrets, total=len(secrets))


@router.post("", response_model=SecretUpsertResponse)
async def upsert_secret(
    payload: SecretUpsertRequest,
    services: ServiceContainer = Depends(get_services),
    user: SessionUser = Depends(require_secret_admin),
):
    """Register a secret, or rotate (key_version + 1) when the endpoint has one."""
    vault = services.vault
    record = None
    try:
        existing = await vault.get(payload.endpoint, include_inactive=True)
        if existing is None:
            try:
                record = await vault.register(
                    payload.endpoint,
                    payload.name,
                    payload.secret_key,
                    description=payload.description,
                    algorithm=payload.algorithm,
                    company_id=payload.company_id,
                    created_by=user.email or user.user_id,
                )
                action = "created"
            except SecretAlreadyExistsError:
                # Lost a race with a concurrent create - rotate instead
                record = None
        if record is None:
            record = await vault.rotate(
                payload.endpoint,
                payload.secret_key,
                name=payload.name,
                description=payload.description,
                algorithm=payload.algorithm,
            )
            action = "rotated"
    except ValidationError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except SecretNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except TransientStorageError as e:
        raise _storage_unavailable(e)

    logger.info(
        "Webhook secret %s for %s by %s (version %d)",
        action, record.endpoint, user.user_id, record.key_version,
    )
    return SecretUpsertResponse(action=action, secret=SecretMetadata.from_record(record))


@router.get("/{endpoint}", response_model=SecretMetadata)
async def get_secret(
    endpoint: str,
    services: ServiceContainer = Depends(get_services),
    user: SessionUser = Depends(require_secret_admin),
):
    try:
        record = await services.vault.get(endpoint, include_inactive=True)
    except TransientStorageError as e:
        raise _storage_unavailable(e)
    if record is None:
        raise HTTPException(status_code=404, detail="Webhook secret not found")
    return SecretMetadata.from_record(record)


@router.patch("/{endpoint}", response_model=SecretMetadata)
async def update_secret(
    endpoint: str,
    payload: SecretPatchRequest,
    services: ServiceContainer = Depends(get_services),
    user: SessionUser = Depends(require_secret_admin),
):
    try:
        record = await services.vault.update_metadata(
            endpoint,
            name=payload.name,
            description=payload.description,
            is_active=payload.is_active,
        )
    except ValidationError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except SecretNotFoundError:
        raise HTTPException(status_code=404, detail="Webhook secret not found")
    except TransientStorageError as e:
        raise _storage_unavailable(e)
    return SecretMetadata.from_record(record)


@router.delete("/{endpoint}")
async def delete_secret(
    endpoint: str,
    services: ServiceContainer = Depends(get_services),
    user: SessionUser = Depends(require_secret_admin),
):
    try:
        record = await services.vault.delete(endpoint)
    except ValidationError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except SecretNotFoundError:
        raise HTTPException(status_code=404, detail="Webhook secret not found")
    except TransientStorageError as e:
        raise _storage_unavailable(e)
    logger.info("Webhook secret deleted for %s by %s", record.endpoint, user.user_id)
    return {"success": True, "endpoint": record.endpoint, "deletedAt": record.deleted_at}
