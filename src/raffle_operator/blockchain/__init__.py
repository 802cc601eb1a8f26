"""web3-backed adapters for the randomness oracle and winner payouts."""
