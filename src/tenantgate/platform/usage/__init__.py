"""Usage accounting and the scheduled usage sweeps."""

from tenantgate.platform.usage.models import UsageMetric
from tenantgate.platform.usage.service import LimitCheck, UsageAccountant

__all__ = ["LimitCheck", "UsageAccountant", "UsageMetric"]
