"""Per-chain transaction fee parameters."""

import logging

from web3 import Web3

logger = logging.getLogger(__name__)

# Chains whose validators ignore transactions tipping below a minimum
PRIORITY_FEE_FLOORS = {
    137: Web3.to_wei(30, "gwei"),  # Polygon
    80002: Web3.to_wei(30, "gwei"),  # Polygon Amoy
}


def derive_fee_params(w3: Web3, chain_id: int) -> dict:
    """Build fee fields for a transaction on the given chain.

    Floored chains get maxPriorityFeePerGas at the floor and
    maxFeePerGas = 2 * baseFee + priority. Other chains use the node's
    EIP-1559 suggestion when the latest block carries a base fee, and a
    legacy gasPrice otherwise.
    """
    latest = w3.eth.get_block("latest")
    base_fee = latest.get("baseFeePerGas")

    floor = PRIORITY_FEE_FLOORS.get(int(chain_id))
    if floor is not None:
        if base_fee is None:
            base_fee = w3.eth.gas_price
        params = {
            "maxPriorityFeePerGas": floor,
            "maxFeePerGas": 2 * int(base_fee) + floor,
        }
    elif base_fee is not None:
        priority = int(w3.eth.max_priority_fee)
        params = {
            "maxPriorityFeePerGas": priority,
            "maxFeePerGas": 2 * int(base_fee) + priority,
        }
    else:
        params = {"gasPrice": int(w3.eth.gas_price)}

    logger.debug(f"Fee params for chain {chain_id}: {params}")
    return params
