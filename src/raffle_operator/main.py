#!/usr/bin/env python3
"""
Raffle Operator Application

Main entry point: wires configuration, the randomness and payment adapters,
the raffle state machine, the upkeep operator, the oracle listener and the
FastAPI web server, and runs them until a shutdown signal arrives.
"""

import asyncio
import signal
import sys
from pathlib import Path
from typing import Any, Dict, Optional

from dotenv import load_dotenv

# Load .env before the logger and config modules read the environment
load_dotenv(Path.cwd() / ".env")

from raffle_operator.blockchain.client import BlockchainClient
from raffle_operator.blockchain.payments import ChainPaymentGateway, InMemoryPaymentGateway
from raffle_operator.blockchain.randomness import ChainRandomnessProvider, LocalRandomnessProvider
from raffle_operator.lottery.errors import RaffleError
from raffle_operator.lottery.event_manager import MemoryStore
from raffle_operator.lottery.models import RaffleConfig
from raffle_operator.lottery.operator import UpkeepOperator
from raffle_operator.lottery.oracle_listener import OracleListener
from raffle_operator.lottery.state_machine import RaffleStateMachine
from raffle_operator.utils.common import format_wei
from raffle_operator.utils.config import get_config_value, load_config
from raffle_operator.utils.logger import get_logger
from raffle_operator.web_server import RaffleWebServer

logger = get_logger(__name__)


class RaffleOperatorApp:
    """Raffle operator application.

    Responsible for initializing and orchestrating the blockchain client,
    the state machine and its collaborators, and the web server. Handles
    graceful shutdown.
    """

    def __init__(self, config: Optional[Dict[str, Any]] = None):
        self.config = config if config is not None else load_config()
        self.store = MemoryStore(
            feed_capacity=int(get_config_value(self.config, "app.feed_capacity", 200)),
            history_capacity=int(get_config_value(self.config, "app.history_capacity", 50)),
        )
        self.raffle_config: Optional[RaffleConfig] = None
        self.blockchain_client: Optional[BlockchainClient] = None
        self.randomness_provider = None
        self.payment_gateway = None
        self.machine: Optional[RaffleStateMachine] = None
        self.operator: Optional[UpkeepOperator] = None
        self.oracle_listener: Optional[OracleListener] = None
        self.web_server: Optional[RaffleWebServer] = None
        self.running = True

    def _display_config_summary(self) -> None:
        logger.info("=" * 60)
        logger.info("CONFIGURATION SUMMARY")
        logger.info("=" * 60)
        logger.info(f"Entrance fee: {self.raffle_config.entrance_fee} wei ({format_wei(self.raffle_config.entrance_fee)})")
        logger.info(f"Interval: {self.raffle_config.interval}s")
        logger.info(f"Randomness provider: {get_config_value(self.config, 'vrf.provider', 'local')}")
        logger.info(f"Payments: {get_config_value(self.config, 'app.payments', 'memory')}")
        logger.info(f"RPC URL: {get_config_value(self.config, 'blockchain.rpc_url', 'Not configured')}")
        logger.info(f"Check interval: {get_config_value(self.config, 'operator.check_interval', 5)}s")
        logger.info("=" * 60)

    def _needs_chain(self) -> bool:
        return (
            get_config_value(self.config, "vrf.provider", "local") == "chain"
            or get_config_value(self.config, "app.payments", "memory") == "chain"
        )

    async def initialize(self) -> None:
        """Build every component from configuration."""
        logger.info("Initializing raffle operator")
        self.raffle_config = RaffleConfig.from_dict(self.config)
        self._display_config_summary()

        if self._needs_chain():
            logger.info("Initializing blockchain client...")
            self.blockchain_client = BlockchainClient(self.config)
            await self.blockchain_client.initialize()

        if get_config_value(self.config, "vrf.provider", "local") == "chain":
            self.randomness_provider = ChainRandomnessProvider(self.blockchain_client)
        else:
            self.randomness_provider = LocalRandomnessProvider(
                delay=float(get_config_value(self.config, "vrf.local_delay", 1.0))
            )

        if get_config_value(self.config, "app.payments", "memory") == "chain":
            self.payment_gateway = ChainPaymentGateway(self.blockchain_client)
        else:
            self.payment_gateway = InMemoryPaymentGateway()

        self.machine = RaffleStateMachine(
            self.raffle_config,
            self.randomness_provider,
            self.payment_gateway,
            store=self.store,
        )
        if isinstance(self.randomness_provider, LocalRandomnessProvider):
            self.randomness_provider.bind(self.machine.fulfill)
        else:
            self.oracle_listener = OracleListener(self.blockchain_client, self.machine, self.config)
            await self.oracle_listener.initialize()

        self.operator = UpkeepOperator(self.machine, self.config)
        self.web_server = RaffleWebServer(
            self.config,
            self.machine,
            operator=self.operator,
            blockchain_client=self.blockchain_client,
            store=self.store,
        )
        logger.info("Raffle operator initialization completed")

    async def start(self) -> None:
        """Start services and run until a shutdown signal is received."""
        try:
            await self.initialize()

            await self.operator.start()
            if self.oracle_listener:
                await self.oracle_listener.start()

            server_host = get_config_value(self.config, "server.host", "0.0.0.0")
            server_port = int(get_config_value(self.config, "server.port", 6080))
            server_task = asyncio.create_task(self.web_server.start(host=server_host, port=server_port))
            await asyncio.sleep(0.2)
            if server_task.done() and server_task.exception():
                raise server_task.exception()

            logger.info(f"Raffle API: http://{server_host}:{server_port}/api/raffle")
            logger.info(f"WebSocket: ws://{server_host}:{server_port}/ws/raffle")

            while self.running and not server_task.done():
                await asyncio.sleep(1)

            logger.info("Shutdown signal received, stopping application...")
        finally:
            await self.stop()

    async def stop(self) -> None:
        """Stop all services and cleanup resources."""
        logger.info("Stopping raffle operator")
        self.running = False

        if self.operator:
            await self.operator.stop()
        if self.oracle_listener:
            await self.oracle_listener.stop()
        if isinstance(self.randomness_provider, LocalRandomnessProvider):
            self.randomness_provider.shutdown()
        if self.web_server:
            await self.web_server.stop()
        if self.blockchain_client:
            await self.blockchain_client.close()

        if self.machine:
            snapshot = await asyncio.to_thread(self.machine.snapshot)
            if snapshot["poolBalance"]:
                logger.warning(
                    f"Stopping with {snapshot['numberOfPlayers']} entries and pool "
                    f"{snapshot['poolBalance']} still held (state={snapshot['stateLabel']})"
                )
            if snapshot["pendingPayoutTx"]:
                logger.warning(f"Payout {snapshot['pendingPayoutTx']} is still unconfirmed")
        logger.info("Raffle operator stopped")

    def _handle_signal(self, signum, frame) -> None:
        logger.info(f"Received signal {signum}, initiating graceful shutdown...")
        self.running = False


async def main() -> None:
    """Main entry point for the raffle operator"""
    app = RaffleOperatorApp()

    signal.signal(signal.SIGINT, app._handle_signal)
    signal.signal(signal.SIGTERM, app._handle_signal)

    try:
        await app.start()
    except KeyboardInterrupt:
        logger.info("Raffle operator interrupted by user")
    except RaffleError as e:
        logger.error(f"Raffle operator failed: {e}")
        sys.exit(1)


def run() -> None:
    asyncio.run(main())


if __name__ == "__main__":
    run()
