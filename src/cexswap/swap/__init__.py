"""Swap orchestration module.

Provides:
- SwapOrchestrator: staged exchange -> withdrawal -> on-chain pipeline
- SwapRequest / SwapResult and per-stage outcome models
"""

from cexswap.swap.models import (
    StageError,
    StageOutcome,
    StageStatus,
    SwapRequest,
    SwapResult,
    SwapStage,
    WithdrawalInfo,
)
from cexswap.swap.orchestrator import SwapOrchestrator

__all__ = [
    # Orchestrator
    "SwapOrchestrator",
    # Models
    "StageError",
    "StageOutcome",
    "StageStatus",
    "SwapRequest",
    "SwapResult",
    "SwapStage",
    "WithdrawalInfo",
]
