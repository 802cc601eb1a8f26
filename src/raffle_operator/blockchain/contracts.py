"""
Contract ABIs used by the raffle operator
"""

import json
from pathlib import Path
from typing import Any, Dict, List, Optional

from raffle_operator.utils.logger import get_logger

logger = get_logger(__name__)

# Minimal VRF coordinator surface: the outbound request and its receipt log.
VRF_COORDINATOR_ABI: List[Dict[str, Any]] = [
    {
        "type": "function",
        "name": "requestRandomWords",
        "stateMutability": "nonpayable",
        "inputs": [
            {"name": "keyHash", "type": "bytes32"},
            {"name": "subId", "type": "uint64"},
            {"name": "minimumRequestConfirmations", "type": "uint16"},
            {"name": "callbackGasLimit", "type": "uint32"},
            {"name": "numWords", "type": "uint32"},
        ],
        "outputs": [{"name": "requestId", "type": "uint256"}],
    },
    {
        "type": "event",
        "name": "RandomWordsRequested",
        "anonymous": False,
        "inputs": [
            {"name": "keyHash", "type": "bytes32", "indexed": True},
            {"name": "requestId", "type": "uint256", "indexed": False},
            {"name": "preSeed", "type": "uint256", "indexed": False},
            {"name": "subId", "type": "uint64", "indexed": True},
            {"name": "minimumRequestConfirmations", "type": "uint16", "indexed": False},
            {"name": "callbackGasLimit", "type": "uint32", "indexed": False},
            {"name": "numWords", "type": "uint32", "indexed": False},
            {"name": "sender", "type": "address", "indexed": True},
        ],
    },
]

# Consumer relay that re-emits fulfilled words so an off-chain operator can read them.
RANDOMNESS_RELAY_ABI: List[Dict[str, Any]] = [
    {
        "type": "event",
        "name": "RandomWordsDelivered",
        "anonymous": False,
        "inputs": [
            {"name": "requestId", "type": "uint256", "indexed": True},
            {"name": "randomWords", "type": "uint256[]", "indexed": False},
        ],
    },
]

RANDOM_WORDS_DELIVERED_SIGNATURE = "RandomWordsDelivered(uint256,uint256[])"


def load_abi(abi_path: Optional[str], default: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    """Load an ABI JSON file when configured, otherwise return ``default``."""
    if not abi_path:
        return default
    path = Path(abi_path)
    logger.info("Loading ABI from %s", path)
    with path.open("r", encoding="utf-8") as handle:
        abi = json.load(handle)
    # Accept both bare ABI arrays and compiler artifacts
    if isinstance(abi, dict) and "abi" in abi:
        abi = abi["abi"]
    logger.info(f"Loaded ABI with {len(abi)} items")
    return abi
