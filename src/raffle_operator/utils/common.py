"""Common utility functions for the raffle backend."""


def shorten_eth_address(address: str) -> str:
    """Shorten an Ethereum address for display: '0x123456...abcd'.
    Returns the first 6 and last 4 characters, separated by '...'.
    Handles addresses with or without '0x' prefix.
    """
    if not address:
        return ""
    addr = address.lower()
    if addr.startswith("0x"):
        addr = addr[2:]
    if len(addr) < 10:
        return f"0x{addr}"
    return f"0x{addr[:6]}...{addr[-4:]}"


def as_int(value, default: int = 0) -> int:
    """Coerce config/env/JSON values (ints, decimal or 0x-prefixed strings) to int."""
    if value is None or value == "":
        return default
    if isinstance(value, str) and value.lower().startswith("0x"):
        return int(value, 16)
    return int(value)


def format_wei(amount: int) -> str:
    """Render a wei amount as ETH with four decimals."""
    return f"{int(amount) / 1e18:.4f} ETH"
