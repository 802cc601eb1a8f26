"""Exceptions raised by the raffle state machine and its collaborators."""

from __future__ import annotations


class RaffleError(Exception):
    """Base class for every raffle failure."""


class ConfigurationError(RaffleError):
    """Raffle configuration is missing or out of range."""


class InsufficientFee(RaffleError):
    def __init__(self, amount: int, entrance_fee: int) -> None:
        super().__init__(f"Entry amount {amount} is below the entrance fee {entrance_fee}")
        self.amount = amount
        self.entrance_fee = entrance_fee


class RoundNotOpen(RaffleError):
    def __init__(self, state_name: str) -> None:
        super().__init__(f"Raffle is not open (state={state_name})")
        self.state_name = state_name


class NotEligible(RaffleError):
    """A draw was requested while the round does not qualify for one."""


class UpkeepNotNeeded(NotEligible):
    """StartDraw re-checked eligibility at execution time and it no longer holds."""

    def __init__(self, balance: int, players: int, state_name: str) -> None:
        super().__init__(
            f"Upkeep not needed (balance={balance}, players={players}, state={state_name})"
        )
        self.balance = balance
        self.players = players
        self.state_name = state_name


class AlreadyInProgress(NotEligible):
    """A draw request is already in flight; a CALCULATING round is never eligible."""

    def __init__(self, request_id: int | None) -> None:
        super().__init__(f"Draw already in progress (request_id={request_id})")
        self.request_id = request_id


class UnknownOrStaleRequest(RaffleError):
    def __init__(self, request_id: int, pending_id: int | None) -> None:
        super().__init__(f"Request {request_id} does not match pending request {pending_id}")
        self.request_id = request_id
        self.pending_id = pending_id


class RandomnessRequestFailed(RaffleError):
    """The randomness provider refused or failed the outbound request."""


class TransferFailed(RaffleError):
    def __init__(self, winner: str, amount: int, reason: str = "") -> None:
        message = f"Transfer of {amount} to {winner} failed"
        if reason:
            message = f"{message}: {reason}"
        super().__init__(message)
        self.winner = winner
        self.amount = amount
        self.reason = reason


class PayoutPending(RaffleError):
    """The payout was broadcast but its outcome is unknown; the pool must not be reused."""

    def __init__(self, winner: str, amount: int, reference: str, reason: str = "") -> None:
        message = f"Transfer of {amount} to {winner} sent as {reference} but not confirmed"
        if reason:
            message = f"{message}: {reason}"
        super().__init__(message)
        self.winner = winner
        self.amount = amount
        self.reference = reference
        self.reason = reason


class PayoutUnsettled(NotEligible):
    """A previous draw's payout is still awaiting confirmation."""

    def __init__(self, request_id: int, reference: str) -> None:
        super().__init__(f"Payout for request {request_id} ({reference}) is not settled yet")
        self.request_id = request_id
        self.reference = reference
