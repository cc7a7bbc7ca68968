"""Chain vocabulary: human chain names, exchange chain types, EVM chain ids."""

from typing import Optional

DEFAULT_CHAIN_TYPE = "erc20"

# Human chain name -> exchange withdrawal chain type
CHAIN_TYPES = {
    "ethereum": "ERC20",
    "bsc": "BEP20",
    "tron": "TRC20",
    "solana": "SOL",
}

# Human chain name -> EVM chain id
CHAIN_IDS = {
    "ethereum": 1,
    "bsc": 56,
    "polygon": 137,
}

# EVM chain id -> native asset symbol
NATIVE_SYMBOLS = {
    1: "ETH",
    56: "BNB",
    137: "POL",
    80002: "POL",
}


def to_chain_type(chain_name: Optional[str]) -> str:
    """Map a human chain name to the exchange's chain type.

    Known names map to their protocol identifier; anything else passes
    through lower-cased, and a missing name defaults to erc20.
    """
    if not chain_name or not chain_name.strip():
        return DEFAULT_CHAIN_TYPE
    name = chain_name.strip()
    return CHAIN_TYPES.get(name.lower(), name.lower())


def chain_id_for(chain_name: Optional[str]) -> Optional[int]:
    """Get the EVM chain id for a human chain name."""
    if not chain_name:
        return None
    return CHAIN_IDS.get(chain_name.strip().lower())


def native_symbol_for(chain_id: Optional[int]) -> Optional[str]:
    """Get the native asset symbol for an EVM chain id."""
    if chain_id is None:
        return None
    return NATIVE_SYMBOLS.get(int(chain_id))
