import io

import pytest
from fastapi.testclient import TestClient
from PIL import Image

from main import create_app


class FakeTarget:
    def __init__(self):
        self.shared = []

    def can_share(self, payload):
        return True

    async def share(self, payload):
        self.shared.append(payload)


@pytest.fixture
def make_client(tmp_path, payee, qr_client):
    def factory(**kwargs):
        kwargs.setdefault("client", qr_client)
        app = create_app(payee=payee, storage_dir=tmp_path, renderer="remote", **kwargs)
        return TestClient(app)

    return factory


def test_health(make_client):
    with make_client() as client:
        assert client.get("/api/health").json() == {"status": "ok", "service": "instapay-qr"}


def test_index_page(make_client):
    with make_client() as client:
        resp = client.get("/")
        assert resp.status_code == 200
        assert "InstaPay Merchant" in resp.text
        assert "client_id" in resp.cookies


def test_create_payment(make_client):
    with make_client() as client:
        resp = client.post("/api/payments", data={"amount": "100000"})
        assert resp.status_code == 200
        data = resp.json()
        assert data["display_amount"] == "1,00,000.00"
        assert data["upi_uri"].startswith("upi://pay?pa=8530378745@upi&pn=InstaPay%20Merchant&am=100000.00&cu=INR")
        assert data["qr_url"].startswith("https://")
        assert data["notice"] is None

        history = client.get("/api/history").json()
        assert history == [{"id": data["created_at"], "amount": 100000.0, "date": data["created_at"]}]


@pytest.mark.parametrize("amount, code", [("0", "not_positive"), ("100000.01", "too_large"), ("abc", "invalid")])
def test_create_payment_validation(make_client, amount, code):
    with make_client() as client:
        resp = client.post("/api/payments", data={"amount": amount})
        assert resp.status_code == 422
        assert resp.json()["detail"]["code"] == code
        assert client.get("/api/history").json() == []


def test_qr_image(make_client, qr_png):
    with make_client() as client:
        assert client.get("/api/payments/current/qr").status_code == 404
        client.post("/api/payments", data={"amount": "10"})
        resp = client.get("/api/payments/current/qr")
        assert resp.status_code == 200
        assert resp.content == qr_png


def test_qr_image_failure(make_client, html_client):
    with make_client(client=html_client) as client:
        client.post("/api/payments", data={"amount": "10"})
        resp = client.get("/api/payments/current/qr")
        assert resp.status_code == 502
        assert resp.json()["detail"] == "Could not load the QR code."


def test_new_payment(make_client):
    with make_client() as client:
        client.post("/api/payments", data={"amount": "10"})
        assert client.get("/api/payments/current").status_code == 200
        client.delete("/api/payments/current")
        assert client.get("/api/payments/current").status_code == 404
        assert client.post("/api/payments/current/share").status_code == 409


def test_share_download_fallback(make_client):
    with make_client() as client:
        client.post("/api/payments", data={"amount": "10"})
        resp = client.post("/api/payments/current/share")
        assert resp.status_code == 200
        assert resp.headers["x-share-outcome"] == "saved"
        assert 'filename="upi-qr-payment.png"' in resp.headers["content-disposition"]
        assert Image.open(io.BytesIO(resp.content)).format == "PNG"


def test_share_native(make_client):
    target = FakeTarget()
    with make_client(share_target=target) as client:
        client.post("/api/payments", data={"amount": "10"})
        resp = client.post("/api/payments/current/share")
        assert resp.json()["outcome"] == "shared"
        assert target.shared[0].title == "Scan to Pay"


def test_share_render_failure(make_client, html_client):
    with make_client(client=html_client) as client:
        client.post("/api/payments", data={"amount": "10"})
        resp = client.post("/api/payments/current/share")
        assert resp.status_code == 502
        assert resp.json()["detail"] == "Could not prepare share image."


def test_history_persists_and_clears(make_client, tmp_path):
    with make_client() as client:
        client.post("/api/payments", data={"amount": "10"})
        client.post("/api/payments", data={"amount": "20"})
        amounts = [e["amount"] for e in client.get("/api/history").json()]
        assert amounts == [20.0, 10.0]

        client_id = client.cookies["client_id"]
        assert (tmp_path / client_id / "upi-payment-history.json").exists()

        assert client.delete("/api/history").status_code == 200
        assert client.get("/api/history").json() == []
        assert not (tmp_path / client_id / "upi-payment-history.json").exists()


def test_history_survives_restart(make_client):
    with make_client() as client:
        client.post("/api/payments", data={"amount": "42"})
        client_id = client.cookies["client_id"]

    with make_client() as client:
        resp = client.get("/api/history", headers={"Cookie": f"client_id={client_id}"})
        assert [e["amount"] for e in resp.json()] == [42.0]


def test_clients_are_isolated(make_client):
    with make_client() as first, make_client() as second:
        first.post("/api/payments", data={"amount": "10"})
        assert second.get("/api/history").json() == []


def test_sessions_are_bounded(make_client):
    with make_client(max_sessions=3) as client:
        for _ in range(10):
            client.cookies.clear()
            assert client.get("/api/history").status_code == 200
        assert len(client.app.state.sessions) == 3


def test_evicted_client_keeps_history(make_client):
    with make_client(max_sessions=1) as client:
        client.post("/api/payments", data={"amount": "42"})
        client_id = client.cookies["client_id"]

        client.cookies.clear()
        client.get("/api/history")
        assert client_id not in client.app.state.sessions

        client.cookies.clear()
        resp = client.get("/api/history", headers={"Cookie": f"client_id={client_id}"})
        assert [e["amount"] for e in resp.json()] == [42.0]
