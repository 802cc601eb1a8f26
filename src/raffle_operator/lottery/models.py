"""Core data models for the raffle operator."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import IntEnum
from typing import Any, Dict, List, Optional

from raffle_operator.lottery.errors import ConfigurationError
from raffle_operator.utils.common import as_int


class RoundState(IntEnum):
    """Raffle lifecycle states."""

    OPEN = 0
    CALCULATING = 1


@dataclass(frozen=True)
class RaffleConfig:
    """Immutable raffle parameters, fixed for the lifetime of the process."""

    entrance_fee: int
    interval: int
    gas_lane: str = "0x" + "00" * 32
    subscription_id: int = 0
    request_confirmations: int = 3
    callback_gas_limit: int = 500_000
    num_words: int = 1

    def __post_init__(self) -> None:
        if self.entrance_fee <= 0:
            raise ConfigurationError("entrance_fee must be positive")
        if self.interval < 0:
            raise ConfigurationError("interval must not be negative")
        if self.num_words < 1:
            raise ConfigurationError("num_words must be at least 1")
        if self.request_confirmations < 0 or self.callback_gas_limit <= 0:
            raise ConfigurationError("invalid randomness callback parameters")

    @classmethod
    def from_dict(cls, config: Dict[str, Any]) -> "RaffleConfig":
        """Build from the nested dict returned by ``load_config``."""
        raffle_cfg = config.get("raffle", {})
        vrf_cfg = config.get("vrf", {})
        try:
            return cls(
                entrance_fee=as_int(raffle_cfg.get("entrance_fee")),
                interval=as_int(raffle_cfg.get("interval"), 30),
                gas_lane=str(vrf_cfg.get("gas_lane", cls.gas_lane)),
                subscription_id=as_int(vrf_cfg.get("subscription_id")),
                request_confirmations=as_int(vrf_cfg.get("request_confirmations"), 3),
                callback_gas_limit=as_int(vrf_cfg.get("callback_gas_limit"), 500_000),
                num_words=as_int(vrf_cfg.get("num_words"), 1),
            )
        except ValueError as exc:
            raise ConfigurationError(f"Invalid raffle configuration: {exc}") from exc


@dataclass(frozen=True)
class PendingPayout:
    """A payout that was sent for a fulfilled request but is not yet confirmed."""

    winner: str
    amount: int
    participant_count: int
    random_word: int
    reference: str
    sent_at: int


@dataclass
class DrawRequest:
    """An outstanding randomness request, consumed once by its fulfillment.

    ``payout`` is set when the fulfillment's transfer went out unconfirmed; the
    request then stays pending (and the round CALCULATING) until it is settled.
    """

    request_id: int
    issued_at: int
    round_snapshot_size: int
    payout: Optional[PendingPayout] = None


@dataclass
class Round:
    """The single live raffle round. Mutated in place, reset but never replaced."""

    state: RoundState = RoundState.OPEN
    participants: List[str] = field(default_factory=list)
    pool_balance: int = 0
    last_draw_timestamp: int = 0
    pending_request: Optional[DrawRequest] = None
    recent_winner: Optional[str] = None

    @property
    def pending_request_id(self) -> Optional[int]:
        return self.pending_request.request_id if self.pending_request else None

    @property
    def pending_payout(self) -> Optional[PendingPayout]:
        return self.pending_request.payout if self.pending_request else None


@dataclass
class WinnerRecord:
    """Historical record of a paid-out draw."""

    request_id: int
    winner: str
    prize: int
    participant_count: int
    random_word: int
    finished_at: int


@dataclass
class LiveFeedItem:
    """Entry pushed to the activity feed."""

    event_type: str
    message: str
    details: Dict[str, Any]
    event_time: int
    severity: str = "info"

    def get_item_id(self) -> str:
        return f"{self.event_time}-{self.event_type}-{self.details.get('requestId', 0)}"


@dataclass
class OperatorStatus:
    """Operational metrics for the upkeep operator loop."""

    is_running: bool = False
    last_check: Optional[datetime] = None
    last_draw_attempt: Optional[datetime] = None
    draws_started: int = 0
    consecutive_failures: int = 0

    def record_check(self) -> None:
        self.last_check = datetime.utcnow()

    def record_draw_attempt(self) -> None:
        self.last_draw_attempt = datetime.utcnow()

    def reset_failures(self) -> None:
        self.consecutive_failures = 0

    def increment_failures(self) -> None:
        self.consecutive_failures += 1
