"""HTTP API for swaps, withdrawals, symbols and the token list."""
