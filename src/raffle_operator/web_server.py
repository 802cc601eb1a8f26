"""FastAPI web server for the raffle operator."""

from __future__ import annotations

import asyncio
from datetime import datetime
from typing import Annotated, Any, Dict, List, Optional, Set, Tuple

from fastapi import FastAPI, HTTPException, WebSocket, WebSocketDisconnect
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from raffle_operator.blockchain.client import BlockchainClient
from raffle_operator.lottery.errors import (
    InsufficientFee,
    NotEligible,
    PayoutPending,
    RaffleError,
    RandomnessRequestFailed,
    RoundNotOpen,
    TransferFailed,
)
from raffle_operator.lottery.event_manager import (
    DRAW_REVERTED,
    ENTRY_ACCEPTED,
    HISTORY_UPDATE,
    LIVE_FEED,
    PAYOUT_UNCONFIRMED,
    REQUEST_ISSUED,
    ROUND_UPDATE,
    WINNER_PICKED,
    MemoryStore,
    memory_store,
    serialize_winner,
)
from raffle_operator.lottery.models import LiveFeedItem
from raffle_operator.lottery.operator import UpkeepOperator
from raffle_operator.lottery.state_machine import RaffleStateMachine
from raffle_operator.utils.logger import get_logger

logger = get_logger(__name__)


class EnterRequest(BaseModel):
    player: str = Field(min_length=1)
    amount: int = Field(ge=0)


class PerformUpkeepRequest(BaseModel):
    perform_data: str = "0x"


class FulfillRequest(BaseModel):
    request_id: int = Field(ge=0)
    random_words: List[Annotated[int, Field(ge=0)]]


class ReconcilePayoutRequest(BaseModel):
    succeeded: Optional[bool] = None


def _http_error(exc: RaffleError) -> HTTPException:
    if isinstance(exc, InsufficientFee):
        return HTTPException(status_code=400, detail=str(exc))
    if isinstance(exc, (RoundNotOpen, NotEligible)):
        return HTTPException(status_code=409, detail=str(exc))
    if isinstance(exc, (RandomnessRequestFailed, TransferFailed)):
        return HTTPException(status_code=502, detail=str(exc))
    return HTTPException(status_code=500, detail=str(exc))


class RaffleWebServer:
    """HTTP and WebSocket gateway for the raffle state machine."""

    def __init__(
        self,
        config: Dict[str, Any],
        machine: RaffleStateMachine,
        operator: Optional[UpkeepOperator] = None,
        blockchain_client: Optional[BlockchainClient] = None,
        store: MemoryStore = memory_store,
    ) -> None:
        self.config = config
        self.machine = machine
        self.operator = operator
        self.blockchain_client = blockchain_client
        self._store = store

        self.app = FastAPI(
            title="Raffle Operator API",
            description="Entry, upkeep and oracle-callback surface for the recurring raffle",
            version="1.0.0",
        )

        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._broadcast_queue: Optional[asyncio.Queue[Tuple[str, Dict[str, Any] | None]]] = None
        self._broadcast_task: Optional[asyncio.Task[None]] = None
        self._ws_lock: Optional[asyncio.Lock] = None
        self._listeners_registered = False
        self._websockets: Set[WebSocket] = set()

        self._setup_middleware()
        self._setup_routes()

    # ------------------------------------------------------------------
    # FastAPI scaffolding
    # ------------------------------------------------------------------
    def _setup_middleware(self) -> None:
        origins = self.config.get("server", {}).get("cors_origins", ["*"])
        if isinstance(origins, str):
            origins = [o.strip() for o in origins.split(",") if o.strip()]
        self.app.add_middleware(
            CORSMiddleware,
            allow_origins=origins,
            allow_credentials=True,
            allow_methods=["*"],
            allow_headers=["*"],
        )

    def _setup_routes(self) -> None:
        # ------------------------------------------------------------------
        # Health & status
        # ------------------------------------------------------------------
        @self.app.get("/api/health")
        async def health_check() -> Dict[str, Any]:
            blockchain_health: Dict[str, Any] | None = None
            if self.blockchain_client:
                blockchain_health = await self.blockchain_client.health_check()
            operator_state = self.operator.get_status() if self.operator else {}
            round_state = await asyncio.to_thread(lambda: self.machine.state)
            return {
                "status": "ok",
                "timestamp": datetime.utcnow().isoformat(),
                "components": {
                    "web": True,
                    "operator": operator_state.get("status", "unavailable"),
                    "blockchain": blockchain_health or {"status": "unavailable"},
                    "raffle": round_state.name,
                },
            }

        # ------------------------------------------------------------------
        # Raffle state
        # ------------------------------------------------------------------
        @self.app.get("/api/raffle")
        async def get_raffle_status() -> Dict[str, Any]:
            response = await asyncio.to_thread(self.machine.snapshot)
            response["timestamp"] = datetime.utcnow().isoformat()
            return response

        @self.app.get("/api/raffle/players")
        async def get_players() -> Dict[str, Any]:
            players = await asyncio.to_thread(self.machine.get_players)
            return {"players": players, "numberOfPlayers": len(players)}

        @self.app.get("/api/raffle/players/{index}")
        async def get_player(index: int) -> Dict[str, Any]:
            try:
                player = await asyncio.to_thread(self.machine.get_player, index)
            except IndexError as exc:
                raise HTTPException(status_code=404, detail=str(exc))
            return {"index": index, "player": player}

        @self.app.post("/api/raffle/enter")
        async def enter_raffle(request: EnterRequest) -> Dict[str, Any]:
            try:
                index = await asyncio.to_thread(self.machine.enter, request.player, request.amount)
            except RaffleError as exc:
                raise _http_error(exc)
            pool_balance = await asyncio.to_thread(lambda: self.machine.pool_balance)
            return {
                "status": "accepted",
                "player": request.player,
                "index": index,
                "poolBalance": pool_balance,
            }

        # ------------------------------------------------------------------
        # Automation trigger
        # ------------------------------------------------------------------
        @self.app.get("/api/upkeep")
        async def check_upkeep() -> Dict[str, Any]:
            upkeep_needed, perform_data = await asyncio.to_thread(self.machine.check_upkeep)
            return {"upkeepNeeded": upkeep_needed, "performData": "0x" + perform_data.hex()}

        @self.app.post("/api/upkeep/perform")
        async def perform_upkeep(request: PerformUpkeepRequest) -> Dict[str, Any]:
            data = request.perform_data[2:] if request.perform_data.startswith("0x") else request.perform_data
            try:
                perform_data = bytes.fromhex(data)
            except ValueError:
                raise HTTPException(status_code=422, detail="performData must be hex")
            try:
                draw_request = await asyncio.to_thread(self.machine.perform_upkeep, perform_data)
            except RaffleError as exc:
                raise _http_error(exc)
            return {
                "status": "requested",
                "requestId": draw_request.request_id,
                "players": draw_request.round_snapshot_size,
            }

        # ------------------------------------------------------------------
        # Oracle callback
        # ------------------------------------------------------------------
        @self.app.post("/api/randomness/fulfill", status_code=200)
        async def fulfill_randomness(request: FulfillRequest) -> Any:
            try:
                record = await asyncio.to_thread(self.machine.fulfill, request.request_id, request.random_words)
            except TransferFailed as exc:
                raise _http_error(exc)
            except PayoutPending as exc:
                return JSONResponse(
                    status_code=202,
                    content={
                        "accepted": True,
                        "settled": False,
                        "requestId": request.request_id,
                        "winner": exc.winner,
                        "txHash": exc.reference,
                    },
                )
            if record is None:
                return JSONResponse(status_code=202, content={"accepted": False, "requestId": request.request_id})
            return {"accepted": True, **serialize_winner(record)}

        @self.app.post("/api/payout/reconcile", status_code=200)
        async def reconcile_payout(request: ReconcilePayoutRequest) -> Any:
            status, record = await asyncio.to_thread(self.machine.reconcile_payout, request.succeeded)
            if status == "idle":
                raise HTTPException(status_code=409, detail="No payout is awaiting confirmation")
            if status == "unconfirmed":
                return JSONResponse(status_code=202, content={"settled": False})
            if record is None:
                return {"settled": True, "paid": False}
            return {"settled": True, "paid": True, **serialize_winner(record)}

        # ------------------------------------------------------------------
        # History & feed
        # ------------------------------------------------------------------
        @self.app.get("/api/history")
        async def get_history(limit: int = 50) -> Dict[str, Any]:
            limit = max(1, min(limit, 200))
            rounds = [serialize_winner(r) for r in reversed(self._store.get_winner_history(limit=limit))]
            return {
                "rounds": rounds,
                "summary": {
                    "total_rounds": len(rounds),
                    "total_paid_wei": sum(r["prizeWei"] for r in rounds),
                },
                "timestamp": datetime.utcnow().isoformat(),
            }

        @self.app.get("/api/activities")
        async def get_live_feed(limit: int = 50) -> Dict[str, Any]:
            limit = max(1, min(limit, 200))
            feed = self._store.get_live_feed(limit=limit)
            return {"activities": [self._serialize_activity(item, idx) for idx, item in enumerate(reversed(feed))]}

        # ------------------------------------------------------------------
        # WebSocket endpoint
        # ------------------------------------------------------------------
        @self.app.websocket("/ws/raffle")
        async def websocket_endpoint(websocket: WebSocket) -> None:
            await websocket.accept()
            if self._ws_lock is None:
                self._ws_lock = asyncio.Lock()
            async with self._ws_lock:
                self._websockets.add(websocket)
            logger.info("WebSocket client connected (%s total)", len(self._websockets))
            try:
                snapshot = await asyncio.to_thread(self._build_initial_snapshot)
                await websocket.send_json({"type": "snapshot", "payload": snapshot})
                while True:
                    try:
                        await websocket.receive_text()
                    except WebSocketDisconnect:
                        break
            finally:
                async with self._ws_lock:
                    self._websockets.discard(websocket)
                logger.info("WebSocket client disconnected (%s remaining)", len(self._websockets))

    # ------------------------------------------------------------------
    # Lifecycle management
    # ------------------------------------------------------------------
    async def start(self, host: str = "0.0.0.0", port: int = 6080) -> None:
        import uvicorn

        logger.info("Starting raffle web server on %s:%s", host, port)
        self._loop = asyncio.get_running_loop()
        if self._broadcast_queue is None:
            self._broadcast_queue = asyncio.Queue()
        if self._ws_lock is None:
            self._ws_lock = asyncio.Lock()
        self._register_store_listeners()
        if self._broadcast_task is None:
            self._broadcast_task = asyncio.create_task(self._broadcast_loop(), name="raffle-web-broadcast")

        config = uvicorn.Config(self.app, host=host, port=port, log_level="info", access_log=True)
        server = uvicorn.Server(config)
        try:
            await server.serve()
        finally:
            logger.info("Raffle web server stopped")

    async def stop(self) -> None:
        logger.info("Stopping raffle web server")
        if self._broadcast_task:
            self._broadcast_task.cancel()
            try:
                await self._broadcast_task
            except asyncio.CancelledError:
                pass
            self._broadcast_task = None
        if self._ws_lock is None:
            self._ws_lock = asyncio.Lock()
        async with self._ws_lock:
            for websocket in list(self._websockets):
                try:
                    await websocket.close(code=1001, reason="Server shutdown")
                except Exception as exc:  # pragma: no cover - socket already gone
                    logger.debug("Error closing websocket: %s", exc)
            self._websockets.clear()

    # ------------------------------------------------------------------
    # Store listeners & broadcasting
    # ------------------------------------------------------------------
    def _register_store_listeners(self) -> None:
        if self._listeners_registered:
            return
        for event in (
            ROUND_UPDATE,
            HISTORY_UPDATE,
            LIVE_FEED,
            ENTRY_ACCEPTED,
            REQUEST_ISSUED,
            WINNER_PICKED,
            DRAW_REVERTED,
            PAYOUT_UNCONFIRMED,
        ):
            self._store.add_listener(event, lambda payload, evt=event: self._enqueue_broadcast(evt, payload))
        self._listeners_registered = True

    def _enqueue_broadcast(self, event_type: str, payload: Dict[str, Any] | None) -> None:
        if not self._broadcast_queue or not self._loop:
            return
        try:
            self._loop.call_soon_threadsafe(self._broadcast_queue.put_nowait, (event_type, payload))
        except RuntimeError:  # pragma: no cover - loop already closing
            logger.debug("Failed to enqueue broadcast for %s", event_type)

    async def _broadcast_loop(self) -> None:
        assert self._broadcast_queue is not None
        while True:
            try:
                event_type, payload = await self._broadcast_queue.get()
                await self._broadcast_to_clients(event_type, payload)
            except asyncio.CancelledError:
                break
            except Exception as exc:  # pragma: no cover
                logger.exception("Broadcast loop error: %s", exc)

    async def _broadcast_to_clients(self, event_type: str, payload: Dict[str, Any] | None) -> None:
        if self._ws_lock is None:
            self._ws_lock = asyncio.Lock()
        message = {"type": event_type, "payload": payload, "timestamp": datetime.utcnow().isoformat()}
        async with self._ws_lock:
            if not self._websockets:
                return
            to_remove: List[WebSocket] = []
            for websocket in self._websockets:
                try:
                    await websocket.send_json(message)
                except Exception as exc:  # pragma: no cover
                    logger.debug("WebSocket send failed: %s", exc)
                    to_remove.append(websocket)
            for websocket in to_remove:
                self._websockets.discard(websocket)

    def _build_initial_snapshot(self) -> Dict[str, Any]:
        history = self._store.get_winner_history(limit=10)
        feed = self._store.get_live_feed(limit=20)
        return {
            "raffle": self.machine.snapshot(),
            "players": self.machine.get_players(),
            "history": [serialize_winner(r) for r in reversed(history)],
            "live_feed": [self._serialize_activity(item, idx) for idx, item in enumerate(reversed(feed))],
            "operator": self.operator.get_status() if self.operator else {},
        }

    # ------------------------------------------------------------------
    # Serialization helpers
    # ------------------------------------------------------------------
    def _serialize_activity(self, item: LiveFeedItem, index: int) -> Dict[str, Any]:
        user_val = item.details.get("player") or item.details.get("winner") or "system"
        return {
            "activity_id": f"{item.get_item_id()}-{index}",
            "user_address": str(user_val),
            "activity_type": item.event_type,
            "details": {k: (str(v) if isinstance(v, int) and v > 2**53 else v) for k, v in item.details.items()},
            "message": item.message,
            "severity": item.severity,
            "timestamp": item.event_time,
        }
