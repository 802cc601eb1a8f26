"""Raffle round lifecycle: ledger, eligibility, randomness handshake, selection and payout."""

from .errors import (
    AlreadyInProgress,
    ConfigurationError,
    InsufficientFee,
    NotEligible,
    PayoutPending,
    PayoutUnsettled,
    RaffleError,
    RandomnessRequestFailed,
    RoundNotOpen,
    TransferFailed,
    UnknownOrStaleRequest,
    UpkeepNotNeeded,
)
from .models import DrawRequest, PendingPayout, RaffleConfig, Round, RoundState, WinnerRecord
from .state_machine import RaffleStateMachine

__all__ = [
    "AlreadyInProgress",
    "ConfigurationError",
    "DrawRequest",
    "InsufficientFee",
    "NotEligible",
    "PayoutPending",
    "PayoutUnsettled",
    "PendingPayout",
    "RaffleConfig",
    "RaffleError",
    "RaffleStateMachine",
    "RandomnessRequestFailed",
    "Round",
    "RoundNotOpen",
    "RoundState",
    "TransferFailed",
    "UnknownOrStaleRequest",
    "UpkeepNotNeeded",
    "WinnerRecord",
]
