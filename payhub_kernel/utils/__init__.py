"""Utility modules for the PayHub kernel."""

from payhub_kernel.utils.cache import TTLCache

__all__ = ["TTLCache"]
