"""Tests for payment read, PIX polling and gateway sync endpoints."""
import httpx
import pytest

from splitpay.models import PaymentGateway, PaymentStatus
from splitpay.services import payments as payments_service
from splitpay.services.gateways.efi import EfiPixGateway


@pytest.mark.anyio
async def test_read_payment_with_splits(client, make_producer, make_payment):
    producer = make_producer(fee="7.5")
    payment = make_payment(producer, amount="49.99")

    response = await client.get(f"/payments/{payment.external_reference}")

    assert response.status_code == 200, response.text
    body = response.json()
    assert body["total_amount"] == "49.99"
    assert body["platform_fee"] == "3.75"
    assert body["producer_amount"] == "46.24"
    assert body["status"] == "pending"
    legs = {split["recipient_type"]: split for split in body["splits"]}
    assert legs["platform"]["amount"] == "3.75"
    assert legs["platform"]["recipient_id"] == "platform"
    assert legs["producer"]["amount"] == "46.24"
    assert legs["producer"]["recipient_id"] == str(producer.id)


@pytest.mark.anyio
async def test_read_unknown_payment(client):
    response = await client.get("/payments/efi_1_0")

    assert response.status_code == 404
    assert response.json() == {"success": False, "error": "Payment efi_1_0 not found.", "code": "PAYMENT_NOT_FOUND"}


@pytest.mark.anyio
async def test_pix_status_polling(client, make_producer, make_payment):
    producer = make_producer(mp_token=None, efi_account="2222222")
    payment = make_payment(producer)

    response = await client.get(f"/payments/pix/{payment.efi_txid}/status")

    assert response.status_code == 200
    body = response.json()
    assert body["txid"] == payment.efi_txid
    assert body["status"] == "pending"
    assert body["external_reference"] == payment.external_reference

    missing = await client.get("/payments/pix/nope/status")
    assert missing.status_code == 404


@pytest.mark.anyio
async def test_sync_pix_payment(client, db_session, make_producer, make_payment, efi_settings, monkeypatch):
    producer = make_producer(mp_token=None, efi_account="2222222")
    payment = make_payment(producer, amount="100.00")

    def _handler(request: httpx.Request) -> httpx.Response:
        if request.url.path == "/oauth/token":
            return httpx.Response(200, json={"access_token": "efi-access-token"})
        return httpx.Response(
            200,
            json={
                "txid": payment.efi_txid,
                "status": "CONCLUIDA",
                "pix": [{"endToEndId": "E1", "valor": "100.00", "horario": "2026-10-19T12:05:00Z"}],
            },
        )

    monkeypatch.setattr(
        payments_service,
        "EfiPixGateway",
        lambda config, **kwargs: EfiPixGateway(config, transport=httpx.MockTransport(_handler)),
    )

    response = await client.post(f"/payments/{payment.external_reference}/sync")

    assert response.status_code == 200, response.text
    assert response.json()["status"] == "approved"
    db_session.refresh(payment)
    assert payment.status == PaymentStatus.APPROVED
    assert payment.efi_e2eid == "E1"


@pytest.mark.anyio
async def test_sync_marketplace_payment(client, db_session, make_producer, make_payment, marketplace_settings, mp_api):
    producer = make_producer()
    payment = make_payment(producer, gateway=PaymentGateway.MERCADOPAGO, mp_payment_id="777")
    mp_api.add(
        "GET",
        "/v1/payments/777",
        json={"id": 777, "status": "rejected", "status_detail": "cc_rejected_insufficient_amount", "transaction_amount": 100.0},
    )

    response = await client.post(f"/payments/{payment.external_reference}/sync")

    assert response.status_code == 200, response.text
    body = response.json()
    assert body["status"] == "rejected"
    assert body["status_detail"] == "cc_rejected_insufficient_amount"
    assert {split["status"] for split in body["splits"]} == {"failed"}
    assert mp_api.requests[0].headers["Authorization"] == "Bearer APP_USR-platform-token"


@pytest.mark.anyio
async def test_sync_without_gateway_id(client, make_producer, make_payment, marketplace_settings, mp_api):
    producer = make_producer()
    payment = make_payment(producer, gateway=PaymentGateway.MERCADOPAGO)

    response = await client.post(f"/payments/{payment.external_reference}/sync")

    assert response.status_code == 404
    assert mp_api.requests == []
