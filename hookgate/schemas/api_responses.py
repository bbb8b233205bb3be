"""
API request/response schemas for ingestion and secret administration.
Wire names are camelCase to match what providers and the dashboard send.
"""
from datetime import datetime
from typing import Literal, Optional
from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class WebhookAcceptedResponse(_CamelModel):
    success: bool = True
    webhook_id: str
    job_id: str
    message: str = "Webhook queued for processing"


class SecretUpsertRequest(_CamelModel):
    endpoint: str
    name: str = Field(min_length=1, max_length=255)
    secret_key: str
    algorithm: str = "sha256"
    description: Optional[str] = None
    company_id: Optional[str] = None


class SecretPatchRequest(_CamelModel):
    is_active: Optional[bool] = None
    name: Optional[str] = Field(default=None, min_length=1, max_length=255)
    description: Optional[str] = None


class SecretMetadata(_CamelModel):
    """Everything about a secret except the key material."""
    id: str
    endpoint: str
    name: str
    description: Optional[str] = None
    algorithm: str
    key_version: int
    is_active: bool
    company_id: Optional[str] = None
    usage_count: int = 0
    last_used_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    created_by: Optional[str] = None
    deleted_at: Optional[datetime] = None

    @classmethod
    def from_record(cls, record) -> "SecretMetadata":
        return cls(
            id=str(record.id),
            endpoint=record.endpoint,
            name=record.name,
            description=record.description,
            algorithm=record.algorithm,
            key_version=record.key_version,
            is_active=record.is_active,
            company_id=record.company_id,
            usage_count=record.usage_count or 0,
            last_used_at=record.last_used_at,
            created_at=record.created_at,
            updated_at=record.updated_at,
            created_by=record.created_by,
            deleted_at=record.deleted_at,
        )


class SecretUpsertResponse(_CamelModel):
    success: bool = True
    action: Literal["created", "rotated"]
    secret: SecretMetadata


class SecretListResponse(_CamelModel):
    success: bool = True
    secrets: list[SecretMetadata]
    total: int


class DecryptedSecretResponse(_CamelModel):
    endpoint: str
    secret_key: str
    algorithm: str
    key_version: int


class CacheStatsResponse(_CamelModel):
    total_secrets: int
    fresh: int
    stale: int
    hits: int
    misses: int
    loads: int
    last_batch_fetch: Optional[datetime] = None
    cache_age_ms: Optional[int] = None
    ttl_seconds: int
    is_healthy: bool
    estimated_query_reduction: str


class QueueStatsResponse(_CamelModel):
    waiting: int = 0
    active: int = 0
    delayed: int = 0
    completed: int = 0
    failed: int = 0
    paused: bool = False


class QueueActionRequest(BaseModel):
    action: Literal["pause", "resume", "clean"]
    older_than_hours: Optional[int] = Field(default=None, ge=0)
