"""Read-only selectors."""

from accrual_kernel.selectors.accrual_selector import AccrualSelector
from accrual_kernel.selectors.base import BaseSelector

__all__ = ["AccrualSelector", "BaseSelector"]
