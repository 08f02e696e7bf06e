"""Abstract base class for the synchronous plan-quota gate."""

from __future__ import annotations

from abc import ABC, abstractmethod

from chatiq_kb.models.quota import QuotaResource, QuotaStatus


# Concrete implementation: PlanQuotaChecker (chatiq_kb/providers/quota/)
class IQuotaChecker(ABC):
    """Contract for checking that a tenant may consume more of a resource."""

    @abstractmethod
    async def ensure_allows(
        self,
        tenant_id: str,
        plan: str,
        resource: QuotaResource,
        delta: int,
    ) -> QuotaStatus:
        """Check current usage plus *delta* against the plan limit.

        Returns
        -------
        QuotaStatus
            The projected status when the request fits.

        Raises
        ------
        chatiq_kb.utils.errors.QuotaExceededError
            If the projected usage exceeds the limit.
        """
