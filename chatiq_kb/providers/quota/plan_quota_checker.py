"""Plan quota gate backed by live counts from the knowledge store.

Usage is read-modify-checked at call time: current usage plus the
requested delta is evaluated against the plan's limit, and the call raises
:class:`QuotaExceededError` when the projection would go over.  There is no
background reconciliation.
"""

from __future__ import annotations

import structlog

from chatiq_kb.interfaces.knowledge_store import IKnowledgeStore
from chatiq_kb.interfaces.quota_checker import IQuotaChecker
from chatiq_kb.models.quota import PlanQuota, QuotaResource, QuotaStatus
from chatiq_kb.utils.errors import QuotaExceededError

logger = structlog.get_logger(logger_name=__name__)


def evaluate_quota(quota: PlanQuota, resource: QuotaResource, used: int) -> QuotaStatus:
    """Evaluate *used* against the plan's limit for *resource*.

    A ``None`` limit means unlimited: nothing remains to count, and the
    status never warns or exceeds.  ``exceeded`` is strict (``used >
    limit``), so landing exactly on the limit is allowed.
    """
    limit = quota.limit_for(resource)
    if limit is None:
        return QuotaStatus(limit=None, used=used, remaining=None, warning=False, exceeded=False)

    remaining = max(limit - used, 0)
    ratio = used / limit if limit > 0 else 0.0
    return QuotaStatus(
        limit=limit,
        used=used,
        remaining=remaining,
        warning=ratio >= quota.warning_ratio and remaining > 0,
        exceeded=used > limit,
    )


class PlanQuotaChecker(IQuotaChecker):
    """Check per-plan limits on documents and embedding units.

    Parameters
    ----------
    store:
        Source of current usage counts.  Embedding usage is the tenant's
        chunk count, since every chunk consumes one embedding.
    plan_quotas:
        Plan id to limits, usually from :func:`chatiq_kb.config.load_plan_quotas`.
    default_plan:
        Plan applied when a caller passes an unknown plan id.
    """

    def __init__(
        self,
        store: IKnowledgeStore,
        plan_quotas: dict[str, PlanQuota],
        default_plan: str = "free",
    ) -> None:
        self._store = store
        self._plan_quotas = plan_quotas
        self._default_plan = default_plan

    def quota_for(self, plan: str) -> PlanQuota:
        quota = self._plan_quotas.get(plan)
        if quota is None:
            logger.warning("unknown_plan", plan=plan, fallback=self._default_plan)
            quota = self._plan_quotas.get(self._default_plan, PlanQuota())
        return quota

    async def current_usage(self, tenant_id: str, resource: QuotaResource) -> int:
        if resource is QuotaResource.DOCUMENTS:
            return await self._store.count_documents(tenant_id)
        return await self._store.count_chunks(tenant_id)

    async def ensure_allows(
        self,
        tenant_id: str,
        plan: str,
        resource: QuotaResource,
        delta: int,
    ) -> QuotaStatus:
        used = await self.current_usage(tenant_id, resource)
        status = evaluate_quota(self.quota_for(plan), resource, used + delta)

        if status.exceeded:
            logger.warning(
                "quota_exceeded",
                tenant_id=tenant_id,
                plan=plan,
                resource=resource.value,
                limit=status.limit,
                used=status.used,
            )
            raise QuotaExceededError(
                resource=resource.value,
                limit=status.limit,
                used=status.used,
                remaining=status.remaining,
                provider_name="plan_quota",
            )
        if status.warning:
            logger.info(
                "quota_warning",
                tenant_id=tenant_id,
                plan=plan,
                resource=resource.value,
                limit=status.limit,
                used=status.used,
            )
        return status
