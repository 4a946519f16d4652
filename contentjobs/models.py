"""Pydantic models for entities, job payloads and job results."""
from __future__ import annotations

from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field


# ── Entity models ───────────────────────────────────────────────────

class Entity(BaseModel):
    id: str
    entityType: str
    content: str = ""
    contentHash: str = ""  # always recomputed by the entity service on write
    metadata: dict[str, Any] = Field(default_factory=dict)
    created: str = ""
    updated: str = ""


# Fields that identify a record rather than describe its content.
ENTITY_IDENTITY_FIELDS = ("id", "entityType", "created", "updated")


class WriteResult(BaseModel):
    entityId: str
    created: bool = False


# ── Progress ────────────────────────────────────────────────────────

class ProgressEvent(BaseModel):
    progress: float = 0
    total: Optional[float] = None
    message: str = ""


# ── Derivation job ──────────────────────────────────────────────────

class DerivationOptions(BaseModel):
    model_config = ConfigDict(extra="forbid")

    deleteSource: bool = False


class DerivationJobData(BaseModel):
    """Copy an entity to another type, or delete it when targetEntityType is None."""

    model_config = ConfigDict(extra="forbid")

    entityId: str = Field(..., min_length=1)
    sourceEntityType: str = Field(..., min_length=1)
    targetEntityType: Optional[str] = Field(..., min_length=1)
    options: DerivationOptions = Field(default_factory=DerivationOptions)


class DerivationResult(BaseModel):
    entityId: str
    success: bool


# ── Generation job ──────────────────────────────────────────────────

class GenerationJobData(BaseModel):
    model_config = ConfigDict(extra="forbid")

    prompt: Optional[str] = None
    title: Optional[str] = None
    content: Optional[str] = None
    excerpt: Optional[str] = None
    coverImageId: Optional[str] = None
    seriesName: Optional[str] = None
    seriesIndex: Optional[int] = Field(default=None, ge=1)
    skipAi: bool = False


class GenerationResult(BaseModel):
    success: bool
    entityId: Optional[str] = None
    title: Optional[str] = None
    slug: Optional[str] = None
    error: Optional[str] = None


# ── Aggregate sync job ──────────────────────────────────────────────

class AggregateSyncJobData(BaseModel):
    model_config = ConfigDict(extra="forbid")

    trigger: str = "api"
    reason: str = ""


class AggregateSyncResult(BaseModel):
    aggregateType: str
    primaryCount: int = 0
    upserted: int = 0
    unchanged: int = 0
    deleted: int = 0
    aggregateIds: list[str] = Field(default_factory=list)
    durationMs: int = 0


# ── Job queue ───────────────────────────────────────────────────────

class CallerContext(BaseModel):
    interfaceId: str = ""
    userId: str = ""
    channelId: str = ""


class JobOptions(BaseModel):
    source: str = ""
    rootJobId: Optional[str] = None
    metadata: dict[str, Any] = Field(default_factory=dict)
