"""Recurring raffle operator: paid entries, oracle-driven draws, winner payout."""

__version__ = "1.0.0"
