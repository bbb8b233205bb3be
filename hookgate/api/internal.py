"""
Internal service-to-service endpoint: decrypted secret by endpoint.
Gated by X-Internal-Token; the route does not exist (404) when no token is configured.
"""
import hmac
import logging
from typing import Optional

from fastapi import APIRouter, Depends, Header, HTTPException

from hookgate.api.deps import get_services
from hookgate.errors import TransientStorageError
from hookgate.schemas.api_responses import DecryptedSecretResponse
from hookgate.services.container import ServiceContainer
from hookgate.utils.encryption import SecretDecryptionError

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/internal", tags=["internal"])


def _require_internal_token(
    x_internal_token: Optional[str] = Header(default=None),
    services: ServiceContainer = Depends(get_services),
) -> None:
    expected = services.settings.internal_api_token
    if not expected:
        raise HTTPException(status_code=404, detail="Not found")
    if not x_internal_token or not hmac.compare_digest(
        x_internal_token.encode("utf-8"), expected.encode("utf-8")
    ):
        logger.warning("Internal secret access denied: bad or missing X-Internal-Token")
        raise HTTPException(status_code=401, detail="Invalid internal token")


@router.get(
    "/webhook-secrets/{endpoint}/decrypt",
    response_model=DecryptedSecretResponse,
    dependencies=[Depends(_require_internal_token)],
)
async def decrypt_secret(
    endpoint: str,
    services: ServiceContainer = Depends(get_services),
):
    try:
        record = await services.vault.get(endpoint)
        if record is None:
            raise HTTPException(status_code=404, detail="Webhook secret not found")
        secret = services.vault.decrypt(record)
    except TransientStorageError as e:
        logger.error("Internal secret lookup failed for %s: %s", endpoint, str(e))
        raise HTTPException(status_code=500, detail="Internal server error")
    except SecretDecryptionError:
        raise HTTPException(status_code=500, detail="Internal server error")

    await services.vault.touch(endpoint)
    logger.info("Internal secret access: endpoint=%s version=%d", endpoint, secret.version)
    return DecryptedSecretResponse(
        endpoint=secret.endpoint,
        secret_key=secret.key,
        algorithm=secret.algorithm,
        key_version=secret.version,
    )
