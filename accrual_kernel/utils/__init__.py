"""Kernel utilities."""

from accrual_kernel.utils.ttl_cache import TTLCache

__all__ = ["TTLCache"]
