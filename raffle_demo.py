#!/usr/bin/env python3
"""
Raffle Demo - runs complete rounds against the local randomness provider
and the in-memory payment gateway, no chain required.
"""

import asyncio
import threading

from raffle_operator.blockchain.payments import InMemoryPaymentGateway
from raffle_operator.blockchain.randomness import LocalRandomnessProvider
from raffle_operator.lottery.errors import NotEligible, RaffleError, TransferFailed
from raffle_operator.lottery.event_manager import LIVE_FEED, MemoryStore
from raffle_operator.lottery.models import RaffleConfig
from raffle_operator.lottery.state_machine import RaffleStateMachine
from raffle_operator.utils.common import format_wei, shorten_eth_address

ENTRANCE_FEE = 10**16


class RaffleDemo:
    def __init__(self, interval=2, oracle_delay=0.5):
        self.config = RaffleConfig(entrance_fee=ENTRANCE_FEE, interval=interval)
        self.users = [
            {'name': 'Alice', 'address': '0x1111111111111111111111111111111111111111'},
            {'name': 'Bob', 'address': '0x2222222222222222222222222222222222222222'},
            {'name': 'Charlie', 'address': '0x3333333333333333333333333333333333333333'},
            {'name': 'Diana', 'address': '0x4444444444444444444444444444444444444444'},
        ]
        self.store = MemoryStore()
        self.gateway = InMemoryPaymentGateway()
        self.provider = LocalRandomnessProvider(delay=oracle_delay)
        self.machine = RaffleStateMachine(self.config, self.provider, self.gateway, store=self.store)
        self._fulfilled = threading.Event()
        self.provider.bind(self._on_random_words)

    def _on_random_words(self, request_id, words):
        try:
            return self.machine.fulfill(request_id, words)
        finally:
            self._fulfilled.set()

    def name_of(self, address):
        return next((u['name'] for u in self.users if u['address'] == address), shorten_eth_address(address))

    def print_header(self, title):
        print(f"\n{'='*60}")
        print(f"🎯 {title}")
        print('='*60)

    def print_status(self):
        snapshot = self.machine.snapshot()
        print(f"   State: {snapshot['stateLabel']}")
        print(f"   Players: {snapshot['numberOfPlayers']}")
        print(f"   Pool: {format_wei(snapshot['poolBalance'])}")
        print(f"   Upkeep needed: {snapshot['upkeepNeeded']}")

    async def run_draw(self):
        """Wait out the interval, start a draw and wait for the oracle callback."""
        while not self.machine.check_upkeep()[0]:
            await asyncio.sleep(0.2)

        self._fulfilled.clear()
        draw_request = self.machine.start_draw()
        print(f"   Randomness requested (request {draw_request.request_id}, {draw_request.round_snapshot_size} entries)")

        try:
            self.machine.start_draw()
        except NotEligible as e:
            print(f"   Second trigger rejected: {e}")

        await asyncio.to_thread(self._fulfilled.wait, 10)

    async def quick_demo(self):
        self.print_header("Raffle Demo Started")
        self.store.add_listener(LIVE_FEED, lambda item: print(f"   📣 {item['message']}"))

        print("\n💰 1. Entry Phase")
        for user in self.users:
            self.machine.enter(user['address'], ENTRANCE_FEE)
        try:
            self.machine.enter(self.users[0]['address'], ENTRANCE_FEE // 2)
        except RaffleError as e:
            print(f"   Underpaid entry rejected: {e}")
        self.print_status()

        print("\n🎲 2. Draw Phase")
        await self.run_draw()
        winner = self.machine.recent_winner
        print(f"\n🏆 Winner: {self.name_of(winner)} ({winner})")
        print(f"   Balance: {format_wei(self.gateway.balance_of(winner))}")
        self.print_status()

        print("\n⚠️  3. Failed Payout")
        for user in self.users[:2]:
            self.machine.enter(user['address'], ENTRANCE_FEE)
            self.gateway.reject(user['address'])
        await self.run_draw()
        self.print_status()

        print("\n🔁 4. Retry After Payout Is Accepted Again")
        for user in self.users[:2]:
            self.gateway.accept(user['address'])
        await self.run_draw()
        print(f"   Winner: {self.name_of(self.machine.recent_winner)}")
        self.print_status()

        self.print_header("Raffle Demo Complete")
        for record in self.store.get_winner_history():
            print(
                f"   Request {record.request_id}: {self.name_of(record.winner)} won "
                f"{format_wei(record.prize)} from {record.participant_count} entries"
            )
        self.provider.shutdown()


def main():
    demo = RaffleDemo()
    try:
        asyncio.run(demo.quick_demo())
    except TransferFailed as e:
        print(f"\n❌ Payout error: {e}")
    except KeyboardInterrupt:
        print("\n\n👋 Demo interrupted. Goodbye!")


if __name__ == "__main__":
    main()
