"""API tests: outbound sync, report upload, broker CRUD and trades."""

from datetime import datetime, timedelta, timezone

import pytest
from cryptography.fernet import Fernet
from sqlmodel import Session

from journal_sync.config import settings
from journal_sync.errors import AuthenticationError, PlatformConnectionError
from journal_sync.models.broker import Broker
from journal_sync.services.encryption import decrypt_secret, reset_cipher
from journal_sync.services.rate_limiter import RateLimiter

SYNC_REQUEST = {
    "platform": "mt5",
    "server": "MetaQuotes-Demo",
    "login": "5012345",
    "password": "secret123",
}

CSV_REPORT = (
    b"Order,Instrument,Side,Lots,Entry Price,Exit Price,Close Time,PnL,Fee\n"
    b"1001,EURUSD,buy,0.1,1.1000,1.1050,2024-01-01T10:00:00,50,0.5\n"
)


@pytest.fixture
def encryption_key(monkeypatch):
    monkeypatch.setattr(settings, "encryption_key", Fernet.generate_key().decode())
    reset_cipher()
    yield
    reset_cipher()


@pytest.fixture
def patch_connector(monkeypatch, fake_connector):
    """Route the sync endpoint's connector factory to a FakeConnector."""
    def _patch(**kwargs):
        built = []

        def factory(platform, **_credentials):
            connector = fake_connector(platform=platform.upper(), **kwargs)
            built.append(connector)
            return connector

        monkeypatch.setattr("journal_sync.api.broker_sync.create_connector", factory)
        return built

    return _patch


def _create_broker(client, **overrides):
    payload = {
        "name": "Demo MT5",
        "platform": "mt5",
        "account_id": "5012345",
        "server": "MetaQuotes-Demo",
        "password": "secret123",
    }
    payload.update(overrides)
    return client.post("/api/brokers", json=payload)


# ---------------------------------------------------------------------------
# 1. Outbound sync
# ---------------------------------------------------------------------------

class TestBrokerSyncEndpoint:
    def test_imports_then_skips_duplicates(self, client, patch_connector, make_trade, account):
        built = patch_connector(trades=[make_trade(external_id="1"), make_trade(external_id="2")], account=account)

        first = client.post("/api/broker/sync", json=SYNC_REQUEST)
        assert first.status_code == 200
        body = first.json()
        assert body["success"] is True
        assert body["tradesImported"] == 2
        assert body["totalTrades"] == 2
        assert body["duplicatesSkipped"] == 0
        assert body["accountInfo"]["accountId"] == "5012345"
        assert body["remainingAttempts"] == 4

        second = client.post("/api/broker/sync", json=SYNC_REQUEST).json()
        assert second["tradesImported"] == 0
        assert second["duplicatesSkipped"] == 2
        assert all(c.disconnected for c in built)

    def test_start_date_limits_window(self, client, patch_connector, make_trade, account):
        old = make_trade(external_id="old", exit_time=datetime.now(timezone.utc) - timedelta(days=30))
        recent = make_trade(external_id="new")
        patch_connector(trades=[old, recent], account=account)

        start = (datetime.now(timezone.utc) - timedelta(days=7)).isoformat()
        body = client.post("/api/broker/sync", json={**SYNC_REQUEST, "startDate": start}).json()
        assert body["tradesImported"] == 1

    @pytest.mark.parametrize(
        "overrides",
        [
            {"platform": "robinhood"},
            {"login": "12ab"},
            {"login": "123"},
            {"server": "bad server!"},
            {"password": "123"},
        ],
    )
    def test_invalid_request_rejected(self, client, patch_connector, overrides):
        patch_connector()
        response = client.post("/api/broker/sync", json={**SYNC_REQUEST, **overrides})
        assert response.status_code == 400
        assert response.json()["success"] is False

    @pytest.mark.parametrize("body", [b"[]", b"{not json"])
    def test_non_object_body_rejected(self, client, patch_connector, body):
        patch_connector()
        response = client.post("/api/broker/sync", content=body, headers={"Content-Type": "application/json"})
        assert response.status_code == 400
        assert response.json()["success"] is False
        assert "error" in response.json()

    def test_ninjatrader_login_is_not_numeric(self, client, patch_connector):
        patch_connector()
        response = client.post(
            "/api/broker/sync",
            json={**SYNC_REQUEST, "platform": "ninjatrader", "server": "localhost", "login": "Sim101"},
        )
        assert response.status_code == 200

    def test_rate_limited_after_max_attempts(self, client, app, patch_connector):
        app.state.rate_limiter = RateLimiter(max_attempts=2, window_seconds=900)
        patch_connector()

        assert client.post("/api/broker/sync", json=SYNC_REQUEST).status_code == 200
        assert client.post("/api/broker/sync", json=SYNC_REQUEST).status_code == 200
        limited = client.post("/api/broker/sync", json=SYNC_REQUEST)

        assert limited.status_code == 429
        body = limited.json()
        assert body["remainingAttempts"] == 0
        assert 0 < body["retryAfter"] <= 900
        assert "Retry-After" in limited.headers

    def test_rate_limit_is_per_client_ip(self, client, app, patch_connector):
        app.state.rate_limiter = RateLimiter(max_attempts=1, window_seconds=900)
        patch_connector()

        first = client.post("/api/broker/sync", json=SYNC_REQUEST, headers={"X-Forwarded-For": "10.0.0.1"})
        other = client.post("/api/broker/sync", json=SYNC_REQUEST, headers={"X-Forwarded-For": "10.0.0.2"})
        again = client.post("/api/broker/sync", json=SYNC_REQUEST, headers={"X-Forwarded-For": "10.0.0.1"})

        assert (first.status_code, other.status_code, again.status_code) == (200, 200, 429)

    def test_connection_failure_is_502(self, client, patch_connector):
        built = patch_connector(connect_error=PlatformConnectionError("MT5: bridge unreachable"))

        response = client.post("/api/broker/sync", json=SYNC_REQUEST)
        assert response.status_code == 502
        assert response.json() == {"success": False, "error": "MT5: bridge unreachable"}
        assert built[0].disconnected

    def test_rejected_credentials_are_401(self, client, patch_connector):
        patch_connector(connect_error=AuthenticationError("MT5: invalid account"))
        response = client.post("/api/broker/sync", json=SYNC_REQUEST)
        assert response.status_code == 401


# ---------------------------------------------------------------------------
# 2. Report upload
# ---------------------------------------------------------------------------

class TestUpload:
    def test_csv_upload_is_idempotent(self, client):
        files = {"file": ("trades.csv", CSV_REPORT, "text/csv")}

        first = client.post("/api/broker/upload", files=files, data={"platform": "mt5"}).json()
        assert first["tradesImported"] == 1
        assert first["totalTrades"] == 1

        second = client.post("/api/broker/upload", files=files, data={"platform": "mt5"}).json()
        assert second["tradesImported"] == 0
        assert second["duplicatesSkipped"] == 1

        [trade] = client.get("/api/trades").json()
        assert trade["strategy"] == "MT5 File Import"
        assert trade["tags"] == "mt5,file-import"
        assert trade["fees"] == pytest.approx(0.5)

    def test_unsupported_file_type(self, client):
        response = client.post("/api/broker/upload", files={"file": ("trades.txt", b"hello", "text/plain")})
        assert response.status_code == 400
        assert response.json()["success"] is False

    def test_unparseable_csv(self, client):
        response = client.post("/api/broker/upload", files={"file": ("trades.csv", b"a,b\n1,2\n", "text/csv")})
        assert response.status_code == 400


# ---------------------------------------------------------------------------
# 3. Broker CRUD and stored-broker sync
# ---------------------------------------------------------------------------

class TestBrokers:
    def test_create_hides_and_encrypts_secrets(self, client, engine, encryption_key):
        response = _create_broker(client, api_secret="api-secret-1")
        assert response.status_code == 201
        body = response.json()
        assert body["platform"] == "MT5"
        assert body["status"] == "disconnected"
        for field in ("password", "password_encrypted", "api_secret", "api_secret_encrypted"):
            assert field not in body

        with Session(engine) as session:
            stored = session.get(Broker, body["id"])
        assert stored.password_encrypted != "secret123"
        assert decrypt_secret(stored.password_encrypted) == "secret123"
        assert decrypt_secret(stored.api_secret_encrypted) == "api-secret-1"

    def test_duplicate_account_rejected(self, client, encryption_key):
        assert _create_broker(client).status_code == 201
        duplicate = _create_broker(client, name="Again")
        assert duplicate.status_code == 400
        assert duplicate.json()["detail"] == "This account is already connected"

    def test_invalid_platform_rejected(self, client, encryption_key):
        assert _create_broker(client, platform="robinhood").status_code == 422

    def test_update_and_delete(self, client, encryption_key):
        broker_id = _create_broker(client).json()["id"]

        updated = client.put(f"/api/brokers/{broker_id}", json={"name": "Renamed", "auto_sync_minutes": 15})
        assert updated.status_code == 200
        assert updated.json()["name"] == "Renamed"
        assert updated.json()["auto_sync_minutes"] == 15

        assert client.delete(f"/api/brokers/{broker_id}").status_code == 204
        assert client.get(f"/api/brokers/{broker_id}").status_code == 404
        assert client.get("/api/brokers").json() == []

    def test_stored_broker_sync_records_status(self, client, app, encryption_key, fake_connector, make_trade, account):
        broker_id = _create_broker(client).json()["id"]
        app.state.sync_service.connector_factory = lambda broker: fake_connector(
            trades=[make_trade(external_id="77")], account=account
        )

        body = client.post(f"/api/brokers/{broker_id}/sync").json()
        assert body["tradesImported"] == 1

        broker = client.get(f"/api/brokers/{broker_id}").json()
        assert broker["status"] == "connected"
        assert broker["last_sync"] is not None
        assert broker["leverage"] == 100

        [trade] = client.get("/api/trades", params={"broker_id": broker_id}).json()
        assert trade["external_id"] == "77"

    def test_stored_broker_sync_failure_sets_error(self, client, app, encryption_key, fake_connector):
        broker_id = _create_broker(client).json()["id"]
        app.state.sync_service.connector_factory = lambda broker: fake_connector(
            connect_error=AuthenticationError("MT5: invalid account")
        )

        response = client.post(f"/api/brokers/{broker_id}/sync")
        assert response.status_code == 401

        broker = client.get(f"/api/brokers/{broker_id}").json()
        assert broker["status"] == "error"
        assert broker["last_error"] == "MT5: invalid account"

    def test_sync_unknown_broker_is_404(self, client):
        assert client.post("/api/brokers/999/sync").status_code == 404

    def test_reconnect_and_disconnect(self, client, app, encryption_key, fake_connector, account):
        broker_id = _create_broker(client).json()["id"]
        app.state.live_sessions.connector_factory = lambda broker: fake_connector(account=account)

        reconnected = client.post(f"/api/brokers/{broker_id}/reconnect").json()
        assert reconnected["status"]["connected"] is True
        assert client.get(f"/api/brokers/{broker_id}").json()["status"] == "connected"
        assert str(broker_id) in {str(k) for k in client.get("/api/system/connections").json()["live_sessions"]}

        client.post(f"/api/brokers/{broker_id}/disconnect")
        assert client.get(f"/api/brokers/{broker_id}").json()["status"] == "disconnected"


# ---------------------------------------------------------------------------
# 4. Trades
# ---------------------------------------------------------------------------

class TestTrades:
    def test_manual_entry_and_outcome_filter(self, client):
        win = client.post("/api/trades", json={
            "date": "2024-01-05T10:00:00Z", "symbol": "aapl", "side": "long",
            "qty": 2, "entry_price": 100, "exit_price": 110, "fees": 1, "tags": ["swing", " "],
        })
        assert win.status_code == 201
        assert win.json()["symbol"] == "AAPL"
        assert win.json()["pnl"] == pytest.approx(19.0)
        assert win.json()["tags"] == "swing"

        loss = client.post("/api/trades", json={
            "date": "2024-01-06T10:00:00Z", "symbol": "AAPL", "side": "SHORT",
            "qty": 1, "entry_price": 100, "exit_price": 110,
        })
        assert loss.json()["pnl"] == pytest.approx(-10.0)

        winners = client.get("/api/trades", params={"outcome": "win"}).json()
        assert [t["id"] for t in winners] == [win.json()["id"]]
        assert len(client.get("/api/trades").json()) == 2

    def test_manual_entry_validation(self, client):
        response = client.post("/api/trades", json={
            "date": "2024-01-05T10:00:00Z", "symbol": "AAPL", "side": "LONG",
            "qty": 0, "entry_price": 100, "exit_price": 110,
        })
        assert response.status_code == 422

    def test_missing_trade_is_404(self, client):
        assert client.get("/api/trades/12345").status_code == 404


def test_health(client):
    assert client.get("/api/system/health").json() == {"status": "ok"}


def test_scheduler_status_before_start(client):
    body = client.get("/api/system/scheduler").json()
    assert body["running"] is False
    assert body["broker_sync_jobs"] == 0
