"""Quota checker providers."""

from chatiq_kb.providers.quota.plan_quota_checker import PlanQuotaChecker, evaluate_quota

__all__ = ["PlanQuotaChecker", "evaluate_quota"]
