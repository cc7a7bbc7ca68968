"""cexswap - cross-asset swaps through a centralized exchange."""

__version__ = "0.1.0"
