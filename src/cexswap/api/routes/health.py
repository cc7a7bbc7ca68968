"""Health check endpoints."""

from pathlib import Path

from fastapi import APIRouter

from cexswap import __version__
from cexswap.config import get_settings

router = APIRouter()


@router.get("/health")
async def health_check():
    """Liveness check."""
    return {"status": "healthy", "service": "cexswap"}


@router.get("/health/detailed")
async def detailed_health():
    """Readiness of the swap pipeline plus redacted configuration.

    Reports "degraded" when a swap could not complete: missing exchange
    credentials, missing custody wallet or an unreadable token catalogue.
    """
    settings = get_settings()
    checks = {
        "exchange_credentials": bool(settings.exchange_api_key and settings.exchange_api_secret),
        "custody_wallet": bool(settings.withdraw_address and settings.withdraw_private_key),
        "token_catalogue": Path(settings.tokens_file).is_file(),
        "chains": sorted(str(chain_id) for chain_id in settings.rpc_urls),
    }
    ready = checks["exchange_credentials"] and checks["custody_wallet"] and checks["token_catalogue"]
    return {
        "status": "healthy" if ready else "degraded",
        "service": "cexswap",
        "version": __version__,
        "checks": checks,
        "config": settings.get_safe_dict(),
    }
