"""Token catalogue module."""

from cexswap.tokens.cache import TTLCache
from cexswap.tokens.service import TokenListService

__all__ = ["TTLCache", "TokenListService"]
