import pytest
from fastapi.testclient import TestClient

from raffle_operator.lottery.state_machine import RaffleStateMachine
from raffle_operator.web_server import RaffleWebServer

from conftest import ALICE, BOB, ENTRANCE_FEE, INTERVAL


@pytest.fixture
def client(machine, store):
    server = RaffleWebServer({"server": {"cors_origins": "http://localhost:3000"}}, machine, store=store)
    return TestClient(server.app)


def _enter_two(client):
    for player in (ALICE, BOB):
        response = client.post("/api/raffle/enter", json={"player": player, "amount": ENTRANCE_FEE})
        assert response.status_code == 200


def test_health(client):
    body = client.get("/api/health").json()
    assert body["status"] == "ok"
    assert body["components"]["raffle"] == "OPEN"
    assert body["components"]["blockchain"] == {"status": "unavailable"}


def test_raffle_snapshot(client):
    body = client.get("/api/raffle").json()
    assert body["stateLabel"] == "OPEN"
    assert body["entranceFee"] == ENTRANCE_FEE
    assert body["interval"] == INTERVAL
    assert body["numberOfPlayers"] == 0
    assert body["upkeepNeeded"] is False


def test_enter_and_list_players(client):
    response = client.post("/api/raffle/enter", json={"player": ALICE, "amount": ENTRANCE_FEE})
    assert response.json() == {"status": "accepted", "player": ALICE, "index": 0, "poolBalance": ENTRANCE_FEE}

    assert client.get("/api/raffle/players").json() == {"players": [ALICE], "numberOfPlayers": 1}
    assert client.get("/api/raffle/players/0").json() == {"index": 0, "player": ALICE}
    assert client.get("/api/raffle/players/1").status_code == 404


def test_enter_below_fee(client):
    response = client.post("/api/raffle/enter", json={"player": ALICE, "amount": ENTRANCE_FEE - 1})
    assert response.status_code == 400


def test_enter_validation(client):
    assert client.post("/api/raffle/enter", json={"player": "", "amount": 1}).status_code == 422
    assert client.post("/api/raffle/enter", json={"player": ALICE, "amount": -1}).status_code == 422


def test_perform_upkeep_too_early(client):
    _enter_two(client)
    assert client.get("/api/upkeep").json() == {"upkeepNeeded": False, "performData": "0x"}
    assert client.post("/api/upkeep/perform", json={}).status_code == 409


def test_perform_upkeep_rejects_bad_hex(client, clock):
    _enter_two(client)
    clock.advance(INTERVAL + 1)
    assert client.post("/api/upkeep/perform", json={"perform_data": "0xzz"}).status_code == 422


def test_full_round_over_http(client, clock, gateway):
    _enter_two(client)
    clock.advance(INTERVAL + 1)
    assert client.get("/api/upkeep").json()["upkeepNeeded"] is True

    started = client.post("/api/upkeep/perform", json={"perform_data": "0x"}).json()
    assert started == {"status": "requested", "requestId": 1, "players": 2}

    # Entering mid-draw is refused
    blocked = client.post("/api/raffle/enter", json={"player": ALICE, "amount": ENTRANCE_FEE})
    assert blocked.status_code == 409
    assert client.post("/api/upkeep/perform", json={}).status_code == 409

    word = 2**255 + 1
    result = client.post("/api/randomness/fulfill", json={"request_id": 1, "random_words": [word]})
    assert result.status_code == 200
    body = result.json()
    assert body["accepted"] is True
    assert body["winner"] == BOB
    assert body["prizeWei"] == 2 * ENTRANCE_FEE
    assert body["randomWord"] == str(word)
    assert gateway.balance_of(BOB) == 2 * ENTRANCE_FEE

    replay = client.post("/api/randomness/fulfill", json={"request_id": 1, "random_words": [word]})
    assert replay.status_code == 202
    assert replay.json() == {"accepted": False, "requestId": 1}

    history = client.get("/api/history").json()
    assert history["summary"] == {"total_rounds": 1, "total_paid_wei": 2 * ENTRANCE_FEE}

    activities = client.get("/api/activities").json()["activities"]
    assert activities[0]["activity_type"] == "winner_picked"
    assert activities[0]["user_address"] == BOB


def test_failed_payout_returns_bad_gateway(client, clock, gateway, machine):
    _enter_two(client)
    clock.advance(INTERVAL + 1)
    gateway.reject(ALICE)
    client.post("/api/upkeep/perform", json={})

    response = client.post("/api/randomness/fulfill", json={"request_id": 1, "random_words": [0]})

    assert response.status_code == 502
    assert machine.number_of_players == 2
    assert client.get("/api/raffle").json()["stateLabel"] == "OPEN"


def test_provider_failure_returns_bad_gateway(client, clock, provider):
    _enter_two(client)
    clock.advance(INTERVAL + 1)
    provider.fail_with = TimeoutError("coordinator unreachable")
    assert client.post("/api/upkeep/perform", json={}).status_code == 502


def test_websocket_sends_initial_snapshot(client):
    _enter_two(client)
    with client.websocket_connect("/ws/raffle") as websocket:
        message = websocket.receive_json()
    assert message["type"] == "snapshot"
    assert message["payload"]["players"] == [ALICE, BOB]
    assert message["payload"]["raffle"]["numberOfPlayers"] == 2


def test_negative_random_word_is_rejected(client, clock, gateway):
    _enter_two(client)
    clock.advance(INTERVAL + 1)
    client.post("/api/upkeep/perform", json={})

    response = client.post("/api/randomness/fulfill", json={"request_id": 1, "random_words": [-1]})

    assert response.status_code == 422
    body = client.get("/api/raffle").json()
    assert body["stateLabel"] == "CALCULATING"
    assert body["pendingRequestId"] == 1
    assert gateway.transfers == []


def test_unconfirmed_payout_over_http(raffle_config, provider, unconfirmed_gateway, store, clock):
    machine = RaffleStateMachine(raffle_config, provider, unconfirmed_gateway, store=store, clock=clock)
    client = TestClient(RaffleWebServer({}, machine, store=store).app)
    _enter_two(client)
    clock.advance(INTERVAL + 1)
    client.post("/api/upkeep/perform", json={})

    response = client.post("/api/randomness/fulfill", json={"request_id": 1, "random_words": [0]})

    reference = unconfirmed_gateway.sent[0][2]
    assert response.status_code == 202
    assert response.json() == {
        "accepted": True,
        "settled": False,
        "requestId": 1,
        "winner": ALICE,
        "txHash": reference,
    }
    snapshot = client.get("/api/raffle").json()
    assert snapshot["stateLabel"] == "CALCULATING"
    assert snapshot["pendingPayoutTx"] == reference
    assert client.post("/api/upkeep/perform", json={}).status_code == 409

    pending = client.post("/api/payout/reconcile", json={})
    assert pending.status_code == 202
    assert pending.json() == {"settled": False}

    paid = client.post("/api/payout/reconcile", json={"succeeded": True})
    assert paid.status_code == 200
    assert paid.json()["paid"] is True
    assert paid.json()["winner"] == ALICE
    assert client.get("/api/raffle").json()["stateLabel"] == "OPEN"
    assert len(unconfirmed_gateway.sent) == 1

    assert client.post("/api/payout/reconcile", json={}).status_code == 409


def test_reconcile_failed_payout_over_http(unsettled_machine, store):
    client = TestClient(RaffleWebServer({}, unsettled_machine, store=store).app)

    response = client.post("/api/payout/reconcile", json={"succeeded": False})

    assert response.status_code == 200
    assert response.json() == {"settled": True, "paid": False}
    assert client.get("/api/raffle/players").json()["numberOfPlayers"] == 2
