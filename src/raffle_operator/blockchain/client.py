"""Blockchain client for the raffle operator."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from decimal import Decimal
from threading import Lock
from typing import Any, Dict, List, Optional

from eth_account import Account
from web3 import Web3
from web3.contract import Contract
from web3.exceptions import TransactionNotFound

from raffle_operator.blockchain.contracts import (
    RANDOM_WORDS_DELIVERED_SIGNATURE,
    RANDOMNESS_RELAY_ABI,
    VRF_COORDINATOR_ABI,
    load_abi,
)
from raffle_operator.lottery.errors import PayoutPending
from raffle_operator.utils.logger import get_logger

logger = get_logger(__name__)


@dataclass
class FulfillmentEvent:
    """Decoded ``RandomWordsDelivered`` log."""

    request_id: int
    random_words: List[int]
    block_number: int
    transaction_hash: str


class BlockchainClient:
    """Wrapper around web3.py for the raffle's outbound and inbound chain traffic.

    Transaction methods are synchronous because they are called while the
    raffle lock is held; the polling helpers are async and push the blocking
    RPC work onto a thread.
    """

    def __init__(self, config: Dict[str, Any], w3: Optional[Web3] = None):
        self._config = config

        blockchain_cfg = config.get("blockchain", {})
        self.rpc_url: str = blockchain_cfg.get("rpc_url", "http://127.0.0.1:8545")
        self.rpc_timeout: float = float(blockchain_cfg.get("rpc_timeout", 10.0))
        self.chain_id: int = int(blockchain_cfg.get("chain_id", 31337))
        self.coordinator_address: Optional[str] = blockchain_cfg.get("coordinator_address")
        self.relay_address: Optional[str] = blockchain_cfg.get("relay_address") or self.coordinator_address
        self.tx_timeout: int = int(blockchain_cfg.get("tx_timeout_seconds", 180))

        self._w3: Optional[Web3] = w3
        self._coordinator: Optional[Contract] = None
        self._relay: Optional[Contract] = None
        self._tx_lock = Lock()

        private_key = blockchain_cfg.get("operator_private_key")
        self.account = Account.from_key(private_key) if private_key else None
        if self.account:
            logger.info("Operator account loaded: %s", self.account.address)

        gas_price_setting = blockchain_cfg.get("gas_price")
        self._gas_price_override: Optional[int] = None
        if gas_price_setting:
            self._gas_price_override = Web3.to_wei(Decimal(str(gas_price_setting)), "gwei")

        self._gas_multiplier = float(blockchain_cfg.get("gas_multiplier", 1.15))

        self._coordinator_abi = load_abi(blockchain_cfg.get("coordinator_abi_path"), VRF_COORDINATOR_ABI)
        self._relay_abi = load_abi(blockchain_cfg.get("relay_abi_path"), RANDOMNESS_RELAY_ABI)

        self._latest_block: Optional[int] = None
        self._last_scanned_block: int = 0

    async def initialize(self) -> None:
        """Establish the RPC connection and bind the contracts."""
        if self._w3 is None:
            self._w3 = Web3(Web3.HTTPProvider(self.rpc_url, request_kwargs={"timeout": self.rpc_timeout}))
        connected = await asyncio.to_thread(self._w3.is_connected)
        if not connected:  # pragma: no cover - depends on live RPC
            raise ConnectionError(f"Failed to connect to RPC at {self.rpc_url}")

        logger.info("Connected to RPC %s (chain id %s)", self.rpc_url, self.chain_id)

        try:
            actual_chain_id = await asyncio.to_thread(lambda: self._w3.eth.chain_id)
            if actual_chain_id != self.chain_id:
                logger.warning(f"Chain ID mismatch: expected {self.chain_id}, got {actual_chain_id}")
        except Exception as exc:
            logger.warning(f"Could not verify chain ID: {exc}")

        self.bind_contracts()

    def bind_contracts(self) -> None:
        w3 = self._ensure_web3()
        if self.coordinator_address:
            self._coordinator = w3.eth.contract(
                address=Web3.to_checksum_address(self.coordinator_address), abi=self._coordinator_abi
            )
            logger.info("VRF coordinator bound at %s", self.coordinator_address)
        else:
            logger.warning("No coordinator address configured; on-chain randomness disabled")
        if self.relay_address:
            self._relay = w3.eth.contract(
                address=Web3.to_checksum_address(self.relay_address), abi=self._relay_abi
            )
            logger.info("Randomness relay bound at %s", self.relay_address)

    async def close(self) -> None:
        """Tear down references; HTTP provider closes automatically."""
        self._coordinator = None
        self._relay = None
        self._w3 = None

    def _ensure_web3(self) -> Web3:
        if not self._w3:
            raise RuntimeError("Web3 provider not initialised")
        return self._w3

    def _ensure_coordinator(self) -> Contract:
        if not self._coordinator:
            raise RuntimeError("Coordinator contract not initialised")
        return self._coordinator

    def _ensure_account(self):
        if not self.account:
            raise ValueError("Operator account not configured")
        return self.account

    def _gas_price(self, w3: Web3) -> int:
        return self._gas_price_override or w3.eth.gas_price

    def _sign_and_send(self, txn: Dict[str, Any]) -> str:
        w3 = self._ensure_web3()
        account = self._ensure_account()
        signed = account.sign_transaction(txn)
        # eth-account renamed rawTransaction -> raw_transaction
        raw = getattr(signed, "raw_transaction", None)
        if raw is None:
            raw = getattr(signed, "rawTransaction")
        tx_hash = w3.eth.send_raw_transaction(raw)
        return Web3.to_hex(tx_hash)

    # ------------------------------------------------------------------
    # Outbound transactions
    # ------------------------------------------------------------------
    def send_contract_transaction(self, tx_function, value: int = 0) -> str:
        w3 = self._ensure_web3()
        account = self._ensure_account()
        with self._tx_lock:
            gas_estimate = tx_function.estimate_gas({"from": account.address, "value": value})
            txn = tx_function.build_transaction(
                {
                    "from": account.address,
                    "value": value,
                    "gas": int(gas_estimate * self._gas_multiplier),
                    "gasPrice": self._gas_price(w3),
                    "nonce": w3.eth.get_transaction_count(account.address, "pending"),
                    "chainId": self.chain_id,
                }
            )
            tx_hash = self._sign_and_send(txn)
        logger.info("Sent contract transaction %s", tx_hash)
        return tx_hash

    def send_value(self, to_address: str, amount: int) -> str:
        """Plain native-currency transfer."""
        w3 = self._ensure_web3()
        account = self._ensure_account()
        with self._tx_lock:
            txn = {
                "from": account.address,
                "to": Web3.to_checksum_address(to_address),
                "value": int(amount),
                "gas": 21_000,
                "gasPrice": self._gas_price(w3),
                "nonce": w3.eth.get_transaction_count(account.address, "pending"),
                "chainId": self.chain_id,
            }
            tx_hash = self._sign_and_send(txn)
        logger.info("Sent %s wei to %s in %s", amount, to_address, tx_hash)
        return tx_hash

    def wait_for_transaction(self, tx_hash: str, timeout: Optional[int] = None) -> Any:
        w3 = self._ensure_web3()
        return w3.eth.wait_for_transaction_receipt(tx_hash, timeout=timeout or self.tx_timeout)

    def request_random_words(
        self,
        gas_lane: str,
        subscription_id: int,
        request_confirmations: int,
        callback_gas_limit: int,
        num_words: int,
    ) -> int:
        """Call ``requestRandomWords`` on the coordinator and return the request id."""
        coordinator = self._ensure_coordinator()
        tx_function = coordinator.functions.requestRandomWords(
            Web3.to_bytes(hexstr=gas_lane),
            subscription_id,
            request_confirmations,
            callback_gas_limit,
            num_words,
        )
        tx_hash = self.send_contract_transaction(tx_function)
        receipt = self.wait_for_transaction(tx_hash)
        if int(receipt["status"]) != 1:
            raise RuntimeError(f"requestRandomWords reverted in {tx_hash}")

        events = coordinator.events.RandomWordsRequested().process_receipt(receipt)
        if not events:
            raise RuntimeError(f"No RandomWordsRequested log in {tx_hash}")
        request_id = int(events[0]["args"]["requestId"])
        logger.info("Randomness request %s confirmed in %s", request_id, tx_hash)
        return request_id

    def transfer(self, to_address: str, amount: int) -> bool:
        """Send ``amount`` wei and report whether the receipt succeeded.

        Raises PayoutPending when the transaction was broadcast but its
        receipt could not be obtained.
        """
        tx_hash = self.send_value(to_address, amount)
        try:
            receipt = self.wait_for_transaction(tx_hash)
        except Exception as exc:
            logger.error("Transfer %s to %s sent but receipt unavailable: %s", tx_hash, to_address, exc)
            raise PayoutPending(to_address, amount, tx_hash, str(exc)) from exc
        ok = int(receipt["status"]) == 1
        if not ok:
            logger.error("Transfer %s to %s reverted", tx_hash, to_address)
        return ok

    def get_receipt_status(self, tx_hash: str) -> Optional[bool]:
        """True or False once ``tx_hash`` is mined, None while it is unknown."""
        w3 = self._ensure_web3()
        try:
            receipt = w3.eth.get_transaction_receipt(tx_hash)
        except TransactionNotFound:
            return None
        return int(receipt["status"]) == 1

    # ------------------------------------------------------------------
    # Inbound polling
    # ------------------------------------------------------------------
    def get_last_scanned_block(self) -> int:
        """Return the last block covered by ``get_fulfillments``."""
        return self._last_scanned_block

    async def get_latest_block(self) -> int:
        w3 = self._ensure_web3()
        self._latest_block = int(await asyncio.to_thread(lambda: w3.eth.block_number))
        return self._latest_block

    async def get_fulfillments(self, from_block: int) -> List[FulfillmentEvent]:
        """Decode ``RandomWordsDelivered`` logs from ``from_block`` to the chain head."""
        w3 = self._ensure_web3()
        if not self._relay:
            raise RuntimeError("Randomness relay contract not initialised")
        relay = self._relay

        def _fetch() -> List[FulfillmentEvent]:
            latest = int(w3.eth.block_number)
            self._latest_block = latest
            if from_block > latest:
                return []

            raw_logs = w3.eth.get_logs(
                {
                    "fromBlock": from_block,
                    "toBlock": latest,
                    "address": relay.address,
                    "topics": [Web3.to_hex(Web3.keccak(text=RANDOM_WORDS_DELIVERED_SIGNATURE))],
                }
            )
            collected: List[FulfillmentEvent] = []
            for raw in raw_logs:
                try:
                    decoded = relay.events.RandomWordsDelivered().process_log(raw)
                except Exception as exc:  # pragma: no cover - decode failures
                    logger.info("Failed to decode log %s: %s", raw, exc)
                    continue
                collected.append(
                    FulfillmentEvent(
                        request_id=int(decoded["args"]["requestId"]),
                        random_words=[int(w) for w in decoded["args"]["randomWords"]],
                        block_number=int(decoded["blockNumber"]),
                        transaction_hash=Web3.to_hex(decoded["transactionHash"]),
                    )
                )
            self._last_scanned_block = latest
            collected.sort(key=lambda evt: (evt.block_number, evt.transaction_hash))
            return collected

        events = await asyncio.wait_for(asyncio.to_thread(_fetch), timeout=max(15.0, self.rpc_timeout * 5))
        if events:
            logger.info("Decoded %d fulfillment events from block %s", len(events), from_block)
        return events

    async def health_check(self) -> Dict[str, Any]:
        try:
            latest_block = await self.get_latest_block()
            return {"status": "healthy", "latestBlock": latest_block}
        except Exception as exc:  # pragma: no cover - health failures are diagnostic
            logger.exception("Blockchain health check failed")
            return {"status": "error", "detail": str(exc)}

    def get_client_status(self) -> Dict[str, Any]:
        return {
            "rpcUrl": self.rpc_url,
            "chainId": self.chain_id,
            "coordinator": self.coordinator_address,
            "relay": self.relay_address,
            "operator": self.account.address if self.account else None,
        }
