"""HTTP surface of the bid admission server."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from zoneinfo import ZoneInfo

import pytest
import yaml
from fastapi.testclient import TestClient

from bidgate.config import get_server_config
from bidgate.main import app

ZONE = ZoneInfo("America/Mexico_City")


def _wall_clock(instant: datetime) -> str:
    return instant.astimezone(ZONE).strftime("%Y-%m-%d %H:%M:%S")


def _auction(auction_id: str, starts_in: timedelta, ends_in: timedelta) -> dict:
    now = datetime.now(timezone.utc)
    return {
        "id_subasta": auction_id,
        "precio_base": "1000",
        "monto_minimo_puja": "100",
        "inicio": _wall_clock(now + starts_in),
        "fin": _wall_clock(now + ends_in),
        "estado": "activa",
    }


@pytest.fixture
def client(tmp_path, monkeypatch):
    participants_path = tmp_path / "participants.yaml"
    participants_path.write_text(
        yaml.safe_dump(
            {
                "auctions": [
                    {"id_subasta": "live", "postores": ["alice", "bob"]},
                    {"id_subasta": "closed", "postores": ["alice"]},
                ]
            }
        )
    )
    config_path = tmp_path / "server.yaml"
    config_path.write_text(
        yaml.safe_dump(
            {
                "timezone": "America/Mexico_City",
                "logging": {"level": "debug"},
                "tokens": {"sweep_interval_seconds": 60},
                "state": {"backend": "in_memory"},
                "ledger": {"backend": "in_memory"},
                "windows": {
                    "backend": "in_memory",
                    "options": {
                        "auctions": [
                            _auction("live", -timedelta(hours=1), timedelta(hours=2)),
                            _auction("soon", timedelta(hours=1), timedelta(hours=3)),
                            _auction("closed", -timedelta(hours=3), -timedelta(hours=1)),
                        ]
                    },
                },
                "participants": {"backend": "yaml", "options": {"path": str(participants_path)}},
            }
        )
    )
    monkeypatch.setenv("BIDGATE_CONFIG_PATH", str(config_path))
    get_server_config.cache_clear()
    with TestClient(app) as test_client:
        yield test_client
    get_server_config.cache_clear()


def _issue(client: TestClient, auction_id: str = "live") -> str:
    response = client.post("/tokens", json={"auction_id": auction_id})
    assert response.status_code == 201
    return response.json()["token"]


def test_health_and_root(client):
    health = client.get("/admin/health")
    assert health.status_code == 200
    assert health.json()["status"] == "healthy"
    assert health.json()["activation_sweeper"] is True

    root = client.get("/")
    assert root.json()["timezone"] == "America/Mexico_City"
    assert root.json()["state_backend"] == "in_memory"


class TestTokenRoutes:
    def test_issue_and_find(self, client):
        response = client.post("/tokens", json={"auction_id": "live"})
        assert response.status_code == 201
        body = response.json()
        assert body["active"] is True
        assert body["auction"]["base_price"] == "1000"
        assert body["auction"]["min_increment"] == "100"

        found = client.get("/tokens", params={"auction_id": "live"})
        assert found.status_code == 200
        assert found.json() == {"token": body["token"]}

    def test_scheduled_token_not_discoverable_yet(self, client):
        response = client.post("/tokens", json={"auction_id": "soon"})
        assert response.status_code == 201
        assert response.json()["active"] is False

        assert client.get("/tokens", params={"auction_id": "soon"}).status_code == 404

    @pytest.mark.parametrize(
        ("payload", "expected"),
        [
            ({"auction_id": "closed"}, 409),
            ({"auction_id": "missing"}, 404),
            ({}, 422),
            ({"auction_id": "live", "extra": True}, 422),
        ],
    )
    def test_issue_errors(self, client, payload, expected):
        assert client.post("/tokens", json=payload).status_code == expected


class TestBidRoutes:
    def test_accept_then_reject_below_minimum(self, client):
        token = _issue(client)

        accepted = client.post(
            "/bids", json={"token": token, "amount": "1000", "bidder_id": "alice"}
        )
        assert accepted.status_code == 201
        assert accepted.json()["status"] == "accepted"
        assert accepted.json()["bid"]["amount"] == "1000"

        too_low = client.post("/bids", json={"token": token, "amount": 1050, "bidder_id": "bob"})
        assert too_low.status_code == 400
        detail = too_low.json()["detail"]
        assert detail["reason"] == "amount_too_low"
        assert detail["minimum"] == "1100"
        assert detail["retryable"] is False

    def test_unknown_token(self, client):
        response = client.post(
            "/bids", json={"token": "nope", "amount": "1000", "bidder_id": "alice"}
        )
        assert response.status_code == 400
        assert response.json()["detail"]["reason"] == "invalid_or_expired_token"

    def test_non_participant_forbidden(self, client):
        token = _issue(client)
        response = client.post(
            "/bids", json={"token": token, "amount": "1000", "bidder_id": "mallory"}
        )
        assert response.status_code == 403
        assert response.json()["detail"]["reason"] == "not_a_participant"

    @pytest.mark.parametrize(
        "overrides",
        [
            {"amount": "ten"},
            {"amount": 0},
            {"amount": "-5"},
            {"timestamp": "2026-06-03T11:00:00"},
            {"bidder_id": None},
        ],
    )
    def test_malformed_bid_rejected(self, client, overrides):
        payload = {"token": _issue(client), "amount": "1000", "bidder_id": "alice"}
        payload.update(overrides)
        assert client.post("/bids", json=payload).status_code == 422

    def test_explicit_timestamp_recorded(self, client):
        token = _issue(client)
        stamped = (datetime.now(timezone.utc) - timedelta(seconds=1)).replace(microsecond=0)
        response = client.post(
            "/bids",
            json={
                "token": token,
                "amount": "1500.50",
                "bidder_id": "alice",
                "timestamp": stamped.isoformat().replace("+00:00", "Z"),
            },
        )
        assert response.status_code == 201
        assert response.json()["bid"]["timestamp"] == stamped.isoformat().replace("+00:00", "Z")
        assert response.json()["bid"]["amount"] == "1500.50"

    def test_backdated_timestamp_cannot_win_tie(self, client):
        token = _issue(client)
        backdated = datetime.now(timezone.utc) - timedelta(days=30)
        response = client.post(
            "/bids",
            json={
                "token": token,
                "amount": "1000",
                "bidder_id": "bob",
                "timestamp": backdated.isoformat().replace("+00:00", "Z"),
            },
        )
        assert response.status_code == 422
        assert "skew" in response.json()["detail"]
        assert client.get("/admin/stats").json()["total_bids"] == 0


class TestAuctionRoutes:
    def test_window_and_status(self, client):
        window = client.get("/auctions/live/window")
        assert window.status_code == 200
        assert window.json()["auction_id"] == "live"
        assert window.json()["ends_at"].endswith("Z")

        token = _issue(client)
        client.post("/bids", json={"token": token, "amount": "1200", "bidder_id": "alice"})

        status = client.get("/auctions/live/status").json()
        assert status["phase"] == "open"
        assert status["last_bid"] == "1200"
        assert status["minimum_bid"] == "1300"

        assert client.get("/auctions/soon/status").json()["phase"] == "scheduled"
        assert client.get("/auctions/missing/window").status_code == 404

    def test_winner(self, client):
        assert client.get("/auctions/live/winner").status_code == 409

        closed = client.get("/auctions/closed/winner")
        assert closed.status_code == 200
        assert closed.json() == {"auction_id": "closed", "no_bid": True}


def test_admin_stats_and_config(client):
    token = _issue(client)
    client.post("/tokens", json={"auction_id": "soon"})
    client.post("/bids", json={"token": token, "amount": "1000", "bidder_id": "alice"})

    stats = client.get("/admin/stats").json()
    assert stats["active_tokens"] == 1
    assert stats["pending_tokens"] == 1
    assert stats["total_bids"] == 1
    assert stats["activations"]["issued_scheduled"] == 1

    config = client.get("/admin/config").json()
    assert config["windows_backend"] == "in_memory"
    assert "auctions" not in config
    assert config["request_schemas"] == ["bid_request", "token_request"]


def test_validation_problems_listed(client):
    response = client.post("/bids", json={"token": "", "amount": "ten"})
    assert response.status_code == 422
    problems = response.json()["detail"]
    assert any(problem.startswith("amount:") for problem in problems)
    assert any("bidder_id" in problem for problem in problems)
