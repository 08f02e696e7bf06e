"""Plan quota models."""

from __future__ import annotations

from enum import Enum

from pydantic import BaseModel, ConfigDict, Field


class QuotaResource(str, Enum):
    DOCUMENTS = "documents"
    EMBEDDINGS = "embeddings"


class PlanQuota(BaseModel):
    """Limits for one plan.  ``None`` means unlimited."""

    model_config = ConfigDict(frozen=True)

    documents: int | None = None
    embeddings: int | None = None
    warning_ratio: float = Field(default=0.8, ge=0.0, le=1.0)

    def limit_for(self, resource: QuotaResource) -> int | None:
        return getattr(self, resource.value)


class QuotaStatus(BaseModel):
    """Evaluation of usage against a plan limit."""

    model_config = ConfigDict(frozen=True)

    limit: int | None = None
    used: int = 0
    remaining: int | None = None
    warning: bool = False
    exceeded: bool = False
