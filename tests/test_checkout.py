"""Tests for the checkout endpoints and the payment orchestrator."""
from datetime import timedelta
from decimal import Decimal

import httpx
import pytest
from sqlalchemy import func, select

from splitpay.models import (
    FinancialLog,
    OAuthToken,
    Payment,
    PaymentGateway,
    PaymentStatus,
    ProducerStatus,
    RecipientType,
    SplitStatus,
)
from splitpay.schemas.payment import CheckoutPaymentData

PREFERENCE = {
    "id": "123456-pref",
    "init_point": "https://www.mercadopago.com.br/checkout/v1/redirect?pref_id=123456-pref",
    "sandbox_init_point": "https://sandbox.mercadopago.com.br/checkout/v1/redirect?pref_id=123456-pref",
}

FORM_DATA = {
    "token": "card-token",
    "payment_method_id": "visa",
    "installments": 1,
    "transaction_amount": 1.0,
    "payer": {"email": "buyer@example.com", "identification": {"type": "CPF", "number": "52998224725"}},
}


def _payment_count(db_session) -> int:
    return db_session.execute(select(func.count(Payment.id))).scalar_one()


@pytest.mark.anyio
async def test_redirect_checkout_returns_preference(client, db_session, make_producer, marketplace_settings, mp_api):
    producer = make_producer(fee="10")
    mp_api.add("POST", "/checkout/preferences", status_code=201, json=PREFERENCE)

    response = await client.post(
        "/create-payment",
        json={"producerId": producer.id, "paymentData": {"title": "Curso de Python", "price": "100.00"}},
    )

    assert response.status_code == 200, response.text
    body = response.json()
    assert body["id"] == "123456-pref"
    assert body["init_point"] == PREFERENCE["init_point"]
    assert body["external_reference"].startswith(f"mercadopago_{producer.id}_")

    request = mp_api.calls("POST", "/checkout/preferences")[0]
    assert request.headers["Authorization"] == "Bearer APP_USR-producer-token"
    sent = mp_api.json_body(request)
    assert sent["items"][0]["unit_price"] == 100.0
    assert sent["application_fee"] == 10.0
    assert sent["external_reference"] == body["external_reference"]
    # Hosted checkout payments are recorded when their notification arrives.
    assert _payment_count(db_session) == 0


@pytest.mark.anyio
async def test_transparent_checkout_records_approved_payment(
    client, db_session, make_producer, marketplace_settings, mp_api
):
    producer = make_producer(fee="10")
    mp_api.add(
        "POST",
        "/v1/payments",
        status_code=201,
        json={
            "id": 987654321,
            "status": "approved",
            "status_detail": "accredited",
            "transaction_amount": 100.0,
            "payment_method_id": "visa",
            "payment_type_id": "credit_card",
            "date_approved": "2026-10-19T09:00:00.000-04:00",
        },
    )

    response = await client.post(
        "/create-payment",
        json={
            "producerId": producer.id,
            "paymentData": {"title": "Curso", "price": "100.00", "formData": FORM_DATA},
        },
    )

    assert response.status_code == 200, response.text
    body = response.json()
    assert body["status"] == "approved"
    assert body["id"] == 987654321

    request = mp_api.calls("POST", "/v1/payments")[0]
    sent = mp_api.json_body(request)
    assert sent["transaction_amount"] == 100.0
    assert sent["application_fee"] == 10.0
    assert request.headers["X-Idempotency-Key"] == body["external_reference"]

    payment = db_session.execute(
        select(Payment).where(Payment.external_reference == body["external_reference"])
    ).scalar_one()
    assert payment.status == PaymentStatus.APPROVED
    assert payment.mp_payment_id == "987654321"
    assert payment.total_amount == Decimal("100.00")
    assert payment.platform_fee == Decimal("10.00")
    assert payment.producer_amount == Decimal("90.00")
    assert payment.payer_document == "52998224725"
    assert payment.approved_at is not None
    platform_leg = payment.split_for(RecipientType.PLATFORM)
    producer_leg = payment.split_for(RecipientType.PRODUCER)
    assert platform_leg.amount + producer_leg.amount == payment.total_amount
    assert {split.status for split in payment.splits} == {SplitStatus.COMPLETED}

    logs = db_session.execute(select(FinancialLog).where(FinancialLog.payment_id == payment.id)).scalars().all()
    assert [log.action for log in logs] == ["payment_received"]


@pytest.mark.anyio
async def test_transparent_checkout_pending_stays_pending(
    client, db_session, make_producer, marketplace_settings, mp_api
):
    producer = make_producer()
    mp_api.add("POST", "/v1/payments", status_code=201, json={"id": 5, "status": "in_process", "status_detail": "pending_contingency"})

    response = await client.post(
        "/create-payment",
        json={"producerId": producer.id, "paymentData": {"title": "Curso", "price": "50.00", "mode": "brick", "formData": FORM_DATA}},
    )

    assert response.status_code == 200, response.text
    payment = db_session.execute(select(Payment).where(Payment.mp_payment_id == "5")).scalar_one()
    assert payment.status == PaymentStatus.IN_PROCESS
    assert {split.status for split in payment.splits} == {SplitStatus.PENDING}
    assert db_session.execute(select(func.count(FinancialLog.id))).scalar_one() == 0


@pytest.mark.anyio
async def test_rejected_token_flags_credential_and_records_nothing(
    client, db_session, make_producer, marketplace_settings, mp_api
):
    producer = make_producer()
    mp_api.add("POST", "/v1/payments", status_code=401, json={"message": "invalid access token"})

    response = await client.post(
        "/create-payment",
        json={"producerId": producer.id, "paymentData": {"title": "Curso", "price": "100.00", "formData": FORM_DATA}},
    )

    assert response.status_code == 409
    assert response.json()["code"] == "CREDENTIAL_INVALID"
    assert response.json()["success"] is False
    assert _payment_count(db_session) == 0
    token = db_session.execute(select(OAuthToken).where(OAuthToken.producer_id == producer.id)).scalar_one()
    db_session.refresh(token)
    assert token.is_valid is False


@pytest.mark.anyio
async def test_gateway_rejection_records_nothing(client, db_session, make_producer, marketplace_settings, mp_api):
    producer = make_producer()
    mp_api.add("POST", "/v1/payments", status_code=400, json={"message": "invalid card token"})

    response = await client.post(
        "/create-payment",
        json={"producerId": producer.id, "paymentData": {"title": "Curso", "price": "100.00", "formData": FORM_DATA}},
    )

    assert response.status_code == 502
    assert response.json()["code"] == "GATEWAY_ERROR"
    assert _payment_count(db_session) == 0


@pytest.mark.anyio
async def test_unconnected_producer_makes_no_gateway_call(client, make_producer, marketplace_settings, mp_api):
    producer = make_producer(mp_token=None)

    response = await client.post(
        "/create-payment",
        json={"producerId": producer.id, "paymentData": {"title": "Curso", "price": "100.00"}},
    )

    assert response.status_code == 409
    assert response.json()["code"] == "GATEWAY_NOT_CONNECTED"
    assert mp_api.requests == []


@pytest.mark.anyio
async def test_expired_token_makes_no_gateway_call(client, db_session, make_producer, marketplace_settings, mp_api):
    producer = make_producer(token_expires_in=timedelta(hours=-1))

    response = await client.post(
        "/create-payment",
        json={"producerId": producer.id, "paymentData": {"title": "Curso", "price": "100.00"}},
    )

    assert response.status_code == 409
    assert response.json()["code"] == "CREDENTIAL_INVALID"
    assert mp_api.requests == []


@pytest.mark.anyio
async def test_revoked_token_makes_no_gateway_call(client, make_producer, marketplace_settings, mp_api):
    producer = make_producer(token_valid=False)

    response = await client.post(
        "/create-payment",
        json={"producerId": producer.id, "paymentData": {"title": "Curso", "price": "100.00"}},
    )

    assert response.status_code == 409
    assert mp_api.requests == []


@pytest.mark.anyio
async def test_product_checkout_uses_catalogue_price(client, make_producer, make_product, marketplace_settings, mp_api):
    producer = make_producer(fee="7.5")
    product = make_product(producer, price="49.99", name="Curso de Python")
    mp_api.add("POST", "/checkout/preferences", status_code=201, json=PREFERENCE)

    response = await client.post(
        "/create-payment",
        json={"producerId": producer.id, "paymentData": {"productId": product.id, "title": "ignored", "price": "1.00"}},
    )

    assert response.status_code == 200, response.text
    sent = mp_api.json_body(mp_api.requests[0])
    assert sent["items"][0]["id"] == str(product.id)
    assert sent["items"][0]["title"] == "Curso de Python"
    assert sent["items"][0]["unit_price"] == 49.99
    assert sent["application_fee"] == 3.75


@pytest.mark.anyio
async def test_foreign_product_not_found(client, make_producer, make_product, marketplace_settings, mp_api):
    producer = make_producer()
    other = make_producer()
    product = make_product(other)

    response = await client.post(
        "/create-payment",
        json={"producerId": producer.id, "paymentData": {"productId": product.id}},
    )

    assert response.status_code == 404
    assert response.json()["code"] == "PRODUCT_NOT_FOUND"
    assert mp_api.requests == []


@pytest.mark.anyio
@pytest.mark.parametrize("status", [ProducerStatus.SUSPENDED, ProducerStatus.INACTIVE])
async def test_blocked_producer_cannot_sell(client, make_producer, marketplace_settings, mp_api, status):
    producer = make_producer(status=status)

    response = await client.post(
        "/create-payment",
        json={"producerId": producer.id, "paymentData": {"title": "Curso", "price": "100.00"}},
    )

    assert response.status_code == 409
    assert response.json()["code"] == "PRODUCER_INACTIVE"
    assert mp_api.requests == []


@pytest.mark.anyio
async def test_unknown_producer(client, marketplace_settings, mp_api):
    response = await client.post(
        "/create-payment",
        json={"producerId": 999999, "paymentData": {"title": "Curso", "price": "100.00"}},
    )

    assert response.status_code == 404
    assert response.json()["code"] == "PRODUCER_NOT_FOUND"


@pytest.mark.anyio
@pytest.mark.parametrize(
    "payment_data",
    [
        {"title": "Curso"},
        {"price": "10.00"},
        {"title": "Curso", "price": "10.00", "mode": "transparent"},
        {"title": "Curso", "price": "10.00", "mode": "teleport"},
    ],
)
async def test_invalid_payment_data(client, make_producer, payment_data):
    producer = make_producer()

    response = await client.post("/create-payment", json={"producerId": producer.id, "paymentData": payment_data})

    assert response.status_code == 422
    assert response.json()["code"] == "VALIDATION_ERROR"
    assert response.json()["success"] is False


@pytest.mark.anyio
async def test_invalid_price(client, make_producer, marketplace_settings, mp_api):
    producer = make_producer()

    response = await client.post(
        "/create-payment",
        json={"producerId": producer.id, "paymentData": {"title": "Curso", "price": "-5"}},
    )

    assert response.status_code == 422
    assert response.json()["code"] == "INVALID_AMOUNT"


@pytest.mark.anyio
async def test_sub_cent_price_is_rejected_before_gateway(client, make_producer, marketplace_settings, mp_api):
    producer = make_producer()

    response = await client.post(
        "/create-payment",
        json={"producerId": producer.id, "paymentData": {"title": "Curso", "price": "10.005"}},
    )

    assert response.status_code == 422
    assert response.json()["code"] == "INVALID_AMOUNT"
    assert mp_api.requests == []
    assert mp_api.requests == []


def _efi_charge(request: httpx.Request) -> httpx.Response:
    txid = request.url.path.rsplit("/", 1)[-1]
    return httpx.Response(
        201,
        json={
            "txid": txid,
            "status": "ATIVA",
            "calendario": {"criacao": "2026-10-19T12:00:00Z", "expiracao": 3600},
            "loc": {"id": 42, "location": "pix-h.example/qr/v2/42"},
            "location": "pix-h.example/qr/v2/42",
            "pixCopiaECola": "000201-from-charge",
        },
    )


@pytest.mark.anyio
async def test_pix_checkout_returns_qr_and_records_split(client, db_session, make_producer, efi_settings, efi_api):
    producer = make_producer(mp_token=None, efi_account="2222222", fee="10")
    efi_api.add_prefix("PUT", "/v2/cob/", _efi_charge)
    efi_api.add("GET", "/v2/loc/42/qrcode", json={"qrcode": "000201-qrcode", "imagemQrcode": "data:image/png;base64,AAA"})

    response = await client.post(
        "/efi-create-payment",
        json={
            "producerId": producer.id,
            "paymentData": {"title": "Curso", "price": "100.00", "payer": {"name": "Ana", "cpf": "529.982.247-25"}},
        },
    )

    assert response.status_code == 200, response.text
    body = response.json()
    assert body["success"] is True
    assert body["status"] == "pending"
    assert len(body["txid"]) == 35
    assert body["pixCopiaECola"] == "000201-qrcode"
    assert body["qrCodeBase64"] == "data:image/png;base64,AAA"
    assert body["amount"] == "100.00"
    assert body["platformFee"] == "10.00"
    assert body["producerAmount"] == "90.00"
    assert body["expiresAt"] == "2026-10-19T13:00:00+00:00"
    assert body["external_reference"].startswith(f"efi_{producer.id}_")

    charge_request = efi_api.calls("PUT", f"/v2/cob/{body['txid']}")[0]
    sent = efi_api.json_body(charge_request)
    assert sent["valor"] == {"original": "100.00"}
    assert sent["split"]["minhaParte"]["valor"] == "10.00"
    assert sent["split"]["repasses"][0]["favorecido"]["conta"] == "2222222"
    assert sent["devedor"] == {"cpf": "52998224725", "nome": "Ana"}

    payment = db_session.execute(select(Payment).where(Payment.efi_txid == body["txid"])).scalar_one()
    assert payment.gateway == PaymentGateway.EFI
    assert payment.status == PaymentStatus.PENDING
    assert payment.external_reference == body["external_reference"]
    assert sorted(split.amount for split in payment.splits) == [Decimal("10.00"), Decimal("90.00")]


@pytest.mark.anyio
async def test_pix_checkout_survives_missing_qrcode(client, db_session, make_producer, efi_settings, efi_api):
    producer = make_producer(mp_token=None, efi_account="2222222")
    efi_api.add_prefix("PUT", "/v2/cob/", _efi_charge)
    efi_api.add("GET", "/v2/loc/42/qrcode", status_code=503, json={"mensagem": "indisponivel"})

    response = await client.post(
        "/create-payment",
        json={"producerId": producer.id, "paymentData": {"gateway": "efi", "title": "Curso", "price": "25.00"}},
    )

    assert response.status_code == 200, response.text
    body = response.json()
    assert body["pixCopiaECola"] == "000201-from-charge"
    assert body["qrCodeBase64"] is None
    assert _payment_count(db_session) == 1


@pytest.mark.anyio
async def test_pix_checkout_requires_connected_account(client, make_producer, efi_settings, efi_api):
    producer = make_producer(mp_token=None)

    response = await client.post(
        "/efi-create-payment",
        json={"producerId": producer.id, "paymentData": {"title": "Curso", "price": "25.00"}},
    )

    assert response.status_code == 409
    assert response.json()["code"] == "GATEWAY_NOT_CONNECTED"
    assert efi_api.requests == []


@pytest.mark.anyio
async def test_pix_checkout_rejected_credentials(client, db_session, make_producer, efi_settings, efi_api):
    producer = make_producer(mp_token=None, efi_account="2222222")
    efi_api.add("POST", "/oauth/token", status_code=401, json={"error_description": "Invalid credentials"})

    response = await client.post(
        "/efi-create-payment",
        json={"producerId": producer.id, "paymentData": {"title": "Curso", "price": "25.00"}},
    )

    assert response.status_code == 502
    assert response.json()["code"] == "AUTH_ERROR"
    assert [r for r in efi_api.requests if r.method == "PUT"] == []
    assert _payment_count(db_session) == 0


@pytest.mark.anyio
async def test_pix_checkout_without_gateway_configuration(client, make_producer):
    producer = make_producer(mp_token=None, efi_account="2222222")

    response = await client.post(
        "/efi-create-payment",
        json={"producerId": producer.id, "paymentData": {"title": "Curso", "price": "25.00"}},
    )

    assert response.status_code == 503
    assert response.json()["code"] == "CONFIGURATION_ERROR"


@pytest.mark.anyio
async def test_live_charge_survives_failed_recording(
    client, db_session, make_producer, efi_settings, efi_api, monkeypatch
):
    from splitpay.services import payments as payments_service
    from splitpay.utils.errors import PersistenceError

    def _broken_persist(*args, **kwargs):
        raise PersistenceError("disk full")

    monkeypatch.setattr(payments_service, "persist_payment", _broken_persist)
    producer = make_producer(mp_token=None, efi_account="2222222")
    efi_api.add_prefix("PUT", "/v2/cob/", _efi_charge)

    response = await client.post(
        "/efi-create-payment",
        json={"producerId": producer.id, "paymentData": {"title": "Curso", "price": "25.00"}},
    )

    assert response.status_code == 200, response.text
    assert response.json()["txid"]
    assert _payment_count(db_session) == 0


@pytest.mark.parametrize(
    ("data", "gateway", "mode"),
    [
        ({"title": "Curso", "price": "10"}, PaymentGateway.MERCADOPAGO, "redirect"),
        ({"title": "Curso", "price": "10", "formData": {"token": "t"}}, PaymentGateway.MERCADOPAGO, "transparent"),
        ({"title": "Curso", "price": "10", "type": "brick", "formData": {"token": "t"}}, PaymentGateway.MERCADOPAGO, "transparent"),
        ({"title": "Curso", "price": "10", "gateway": "efi"}, PaymentGateway.EFI, "pix"),
        ({"productId": 3, "mode": "pix"}, PaymentGateway.EFI, "pix"),
    ],
)
def test_checkout_payment_data_resolves_gateway_and_mode(data, gateway, mode):
    parsed = CheckoutPaymentData.model_validate(data)

    assert parsed.gateway == gateway
    assert parsed.mode == mode


@pytest.mark.parametrize(
    "data",
    [
        {"title": "Curso"},
        {"title": "Curso", "price": "10", "mode": "transparent"},
        {"title": "Curso", "price": "10", "mode": "boleto"},
    ],
)
def test_checkout_payment_data_rejects_incomplete_target(data):
    with pytest.raises(ValueError):
        CheckoutPaymentData.model_validate(data)
