"""Efí direct PIX API client with mutual TLS.

Every call to the Efí PIX API, including the OAuth token request, must present
the platform's client certificate. The certificate ships as a base64 PKCS#12
bundle; it is decoded once into an immutable :class:`ClientCertificate` before
any connection is attempted, so a broken bundle never reaches the network.
"""
from __future__ import annotations

import base64
import binascii
import logging
import os
import secrets
import ssl
import string
import tempfile
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal, InvalidOperation
from typing import Any, Mapping

import httpx
from cryptography.hazmat.primitives.serialization import (
    Encoding,
    NoEncryption,
    PrivateFormat,
    pkcs12,
)

from splitpay.config import DirectPixConfig
from splitpay.models import DocumentType, PaymentStatus, Producer
from splitpay.services.fees import FeeSplit
from splitpay.services.reconciliation import StatusUpdate
from splitpay.utils.errors import AuthError, CertificateError, GatewayError
from splitpay.utils.time import expires_after, parse_gateway_datetime

logger = logging.getLogger(__name__)

TXID_LENGTH = 35
TXID_ALPHABET = string.ascii_letters + string.digits

OAUTH_TOKEN_PATH = "/oauth/token"
CHARGE_PATH = "/v2/cob/{txid}"
QRCODE_PATH = "/v2/loc/{loc_id}/qrcode"

# cob.status -> payment status
CHARGE_STATUS_MAP = {
    "ATIVA": PaymentStatus.PENDING,
    "CONCLUIDA": PaymentStatus.APPROVED,
    "REMOVIDA_PELO_USUARIO_RECEBEDOR": PaymentStatus.CANCELLED,
    "REMOVIDA_PELO_PSP": PaymentStatus.CANCELLED,
}
REFUND_DONE = "DEVOLVIDO"


@dataclass(frozen=True)
class ClientCertificate:
    certificate_pem: bytes
    private_key_pem: bytes
    subject: str
    not_valid_after: datetime | None = None


def load_pkcs12_certificate(certificate_base64: str, password: str | None = None) -> ClientCertificate:
    """Decode a base64 PKCS#12 bundle into PEM certificate chain and key.

    An empty password is tried both as "no password" and as the empty string,
    since bundles exported without a password come in both flavours.
    """

    if not certificate_base64:
        raise CertificateError("Client certificate is not configured.")
    try:
        raw = base64.b64decode("".join(certificate_base64.split()), validate=True)
    except (binascii.Error, ValueError) as exc:
        raise CertificateError("Client certificate is not valid base64.") from exc

    candidates: list[bytes | None] = [password.encode("utf-8")] if password else [None, b""]
    loaded = None
    last_error: Exception | None = None
    for candidate in candidates:
        try:
            loaded = pkcs12.load_key_and_certificates(raw, candidate)
            break
        except (ValueError, TypeError) as exc:
            last_error = exc
    if loaded is None:
        raise CertificateError(
            "Client certificate bundle could not be opened; check the file and its import password."
        ) from last_error

    private_key, certificate, additional = loaded
    if private_key is None:
        raise CertificateError("Client certificate bundle contains no private key.")
    if certificate is None:
        raise CertificateError("Client certificate bundle contains no certificate.")

    chain = certificate.public_bytes(Encoding.PEM)
    for extra in additional or []:
        chain += extra.public_bytes(Encoding.PEM)
    key_pem = private_key.private_bytes(Encoding.PEM, PrivateFormat.PKCS8, NoEncryption())
    return ClientCertificate(
        certificate_pem=chain,
        private_key_pem=key_pem,
        subject=certificate.subject.rfc4514_string(),
        not_valid_after=certificate.not_valid_after_utc,
    )


def build_ssl_context(certificate: ClientCertificate) -> ssl.SSLContext:
    """Return a client SSL context presenting ``certificate``."""

    context = ssl.create_default_context()
    with tempfile.TemporaryDirectory(prefix="splitpay-mtls-") as tmp:
        cert_path = os.path.join(tmp, "cert.pem")
        key_path = os.path.join(tmp, "key.pem")
        with open(cert_path, "wb") as fh:
            fh.write(certificate.certificate_pem)
        with open(key_path, "wb") as fh:
            fh.write(certificate.private_key_pem)
        try:
            context.load_cert_chain(certfile=cert_path, keyfile=key_path)
        except ssl.SSLError as exc:
            raise CertificateError("Client certificate and private key do not match.") from exc
    return context


def generate_txid() -> str:
    return "".join(secrets.choice(TXID_ALPHABET) for _ in range(TXID_LENGTH))


def _is_tls_rejection(exc: httpx.HTTPError) -> bool:
    cause = exc.__cause__ or exc.__context__
    return isinstance(cause, ssl.SSLError) or "ssl" in str(exc).lower()


def _error_message(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        return response.text or f"HTTP {response.status_code}"
    if isinstance(body, Mapping):
        for key in ("mensagem", "error_description", "detail", "nome"):
            if body.get(key):
                return str(body[key])
    return str(body)


def _json_object(response: httpx.Response, error_cls: type[GatewayError] | type[AuthError]) -> dict[str, Any]:
    try:
        body = response.json()
    except ValueError as exc:
        raise error_cls(f"Direct PIX gateway answered {response.status_code} with a non-JSON body.") from exc
    if not isinstance(body, dict):
        raise error_cls(f"Direct PIX gateway answered {response.status_code} with an unexpected body.")
    return body


class EfiPixGateway:
    """Client for immediate PIX charges ("cob") with an embedded split."""

    def __init__(
        self,
        config: DirectPixConfig,
        *,
        transport: httpx.BaseTransport | None = None,
        certificate: ClientCertificate | None = None,
    ) -> None:
        self.config = config
        self.certificate = certificate or load_pkcs12_certificate(
            config.certificate_base64, config.certificate_password
        )
        self._client = httpx.Client(
            base_url=config.api_url,
            timeout=config.timeout,
            verify=build_ssl_context(self.certificate),
            transport=transport,
        )
        self._access_token: str | None = None

    def __enter__(self) -> "EfiPixGateway":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def close(self) -> None:
        self._client.close()

    def authenticate(self) -> str:
        """Obtain a bearer token through the client_credentials grant."""

        try:
            response = self._client.post(
                OAUTH_TOKEN_PATH,
                auth=(self.config.client_id, self.config.client_secret),
                json={"grant_type": "client_credentials"},
            )
        except httpx.HTTPError as exc:
            if _is_tls_rejection(exc):
                environment = "sandbox" if self.config.sandbox else "production"
                logger.error(
                    "Direct PIX gateway rejected the TLS handshake",
                    extra={"environment": environment, "certificate_subject": self.certificate.subject},
                )
                raise AuthError(
                    f"TLS handshake rejected by {self.config.api_url}; the certificate does not belong "
                    f"to the {environment} environment or to these client credentials."
                ) from exc
            raise GatewayError(f"Direct PIX gateway unreachable: {exc}") from exc

        if response.is_error:
            message = _error_message(response)
            logger.error(
                "Direct PIX authentication failed",
                extra={"status_code": response.status_code, "gateway_message": message},
            )
            raise AuthError(f"Direct PIX authentication failed: {message}")
        token = _json_object(response, AuthError).get("access_token")
        if not token:
            raise AuthError("Direct PIX token response carried no access_token.")
        self._access_token = token
        return token

    def _headers(self) -> dict[str, str]:
        token = self._access_token or self.authenticate()
        return {"Authorization": f"Bearer {token}"}

    def _request(self, method: str, path: str, **kwargs: Any) -> dict[str, Any]:
        try:
            response = self._client.request(method, path, headers=self._headers(), **kwargs)
        except httpx.HTTPError as exc:
            raise GatewayError(f"Direct PIX gateway unreachable: {exc}") from exc
        if response.status_code == 401:
            raise AuthError(f"Direct PIX gateway rejected the access token: {_error_message(response)}")
        if response.is_error:
            message = _error_message(response)
            logger.error(
                "Direct PIX gateway error",
                extra={"path": path, "status_code": response.status_code, "gateway_message": message},
            )
            raise GatewayError(f"Direct PIX error: {message}", gateway_status=response.status_code)
        return _json_object(response, GatewayError)

    def create_charge(self, txid: str, payload: dict[str, Any]) -> dict[str, Any]:
        logger.info("Creating PIX charge", extra={"txid": txid, "amount": payload.get("valor")})
        return self._request("PUT", CHARGE_PATH.format(txid=txid), json=payload)

    def get_charge(self, txid: str) -> dict[str, Any]:
        return self._request("GET", CHARGE_PATH.format(txid=txid))

    def get_qrcode(self, loc_id: int | str | None) -> dict[str, Any] | None:
        """Fetch the QR image for a charge location; ``None`` when unavailable."""

        if loc_id is None:
            return None
        try:
            return self._request("GET", QRCODE_PATH.format(loc_id=loc_id))
        except (GatewayError, AuthError) as exc:
            logger.warning(
                "PIX QR code unavailable; falling back to charge payload",
                extra={"loc_id": loc_id, "error": str(exc)},
            )
            return None


def _producer_document(producer: Producer) -> dict[str, str]:
    digits = producer.document_digits
    if not digits:
        return {}
    key = "cnpj" if producer.document_type == DocumentType.CNPJ else "cpf"
    return {key: digits}


def _payer_block(document: str | None, name: str | None) -> dict[str, str] | None:
    digits = "".join(ch for ch in (document or "") if ch.isdigit())
    if len(digits) == 11:
        return {"cpf": digits, "nome": name or "Cliente"}
    if len(digits) == 14:
        return {"cnpj": digits, "nome": name or "Cliente"}
    return None


def build_charge_payload(
    *,
    config: DirectPixConfig,
    producer: Producer,
    producer_account: str,
    title: str,
    fee_split: FeeSplit,
    external_reference: str,
    payer_document: str | None = None,
    payer_name: str | None = None,
) -> dict[str, Any]:
    """Build the ``PUT /v2/cob/{txid}`` body.

    The split carries fixed amounts taken from ``fee_split`` so the legs the
    gateway settles are exactly the legs recorded locally.
    """

    divisor: dict[str, str] = {}
    if config.account_id:
        divisor["conta"] = config.account_id

    payload: dict[str, Any] = {
        "calendario": {"expiracao": config.charge_expiration_seconds},
        "valor": {"original": f"{fee_split.amount:.2f}"},
        "chave": config.pix_key,
        "solicitacaoPagador": f"Compra: {title}"[:140],
        "infoAdicionais": [
            {"nome": "Produto", "valor": title[:200]},
            {"nome": "Referencia", "valor": external_reference},
        ],
        "split": {
            "divisorPrincipal": divisor,
            "minhaParte": {"tipo": "fixo", "valor": f"{fee_split.platform_fee:.2f}"},
            "repasses": [
                {
                    "tipo": "fixo",
                    "valor": f"{fee_split.producer_amount:.2f}",
                    "favorecido": {"conta": producer_account, **_producer_document(producer)},
                }
            ],
        },
    }
    payer = _payer_block(payer_document, payer_name)
    if payer:
        payload["devedor"] = payer
    return payload


def charge_expires_at(charge: Mapping[str, Any]) -> datetime | None:
    calendario = charge.get("calendario") or {}
    return expires_after(parse_gateway_datetime(calendario.get("criacao")), calendario.get("expiracao"))


def _decimal_or_none(value: Any) -> Decimal | None:
    if value is None:
        return None
    try:
        return Decimal(str(value))
    except (InvalidOperation, ValueError):
        return None


def _refund_updates(txid: str, pix: Mapping[str, Any]) -> list[StatusUpdate]:
    updates = []
    for refund in pix.get("devolucoes") or []:
        if str(refund.get("status", "")).upper() != REFUND_DONE:
            continue
        updates.append(
            StatusUpdate(
                status=PaymentStatus.REFUNDED,
                raw_status=REFUND_DONE,
                status_detail=f"devolucao_{REFUND_DONE}",
                efi_txid=txid,
                amount=_decimal_or_none(refund.get("valor")),
                extra={"refund_id": refund.get("id"), "rtr_id": refund.get("rtrId")},
            )
        )
    return updates[:1]


def _settlement_update(txid: str, pix: Mapping[str, Any]) -> StatusUpdate:
    return StatusUpdate(
        status=PaymentStatus.APPROVED,
        raw_status="pix_received",
        status_detail="pix_received",
        efi_txid=txid,
        efi_e2eid=pix.get("endToEndId"),
        amount=_decimal_or_none(pix.get("valor")),
        approved_at=parse_gateway_datetime(pix.get("horario")),
        payment_method="pix",
    )


def pix_notification_updates(payload: Mapping[str, Any]) -> list[StatusUpdate]:
    """Turn a PIX webhook body into per-txid status updates, in order.

    Each received PIX approves its charge; a completed devolution listed on it
    then refunds it. A top-level ``devolucao`` refunds the named charge unless
    its status says the devolution has not completed.
    """

    updates: list[StatusUpdate] = []
    for pix in payload.get("pix") or []:
        if not isinstance(pix, Mapping):
            continue
        txid = pix.get("txid")
        if not txid:
            logger.warning("PIX notification without txid; skipping", extra={"e2eid": pix.get("endToEndId")})
            continue
        updates.append(_settlement_update(txid, pix))
        updates.extend(_refund_updates(txid, pix))

    devolucao = payload.get("devolucao")
    if isinstance(devolucao, Mapping) and devolucao.get("txid"):
        status = str(devolucao.get("status") or REFUND_DONE).upper()
        if status == REFUND_DONE:
            updates.append(
                StatusUpdate(
                    status=PaymentStatus.REFUNDED,
                    raw_status=status,
                    status_detail=f"devolucao_{status}",
                    efi_txid=devolucao["txid"],
                    amount=_decimal_or_none(devolucao.get("valor")),
                )
            )
        else:
            logger.info(
                "Devolution not completed yet; ignoring",
                extra={"txid": devolucao.get("txid"), "devolution_status": status},
            )
    return updates


def charge_status_updates(charge: Mapping[str, Any]) -> list[StatusUpdate]:
    """Status updates implied by a ``GET /v2/cob/{txid}`` response."""

    txid = charge.get("txid")
    raw_status = str(charge.get("status") or "").upper()
    pix_items = [p for p in charge.get("pix") or [] if isinstance(p, Mapping)]

    if raw_status == "CONCLUIDA" and pix_items:
        total = sum((_decimal_or_none(p.get("valor")) or Decimal("0") for p in pix_items), Decimal("0"))
        first = pix_items[0]
        updates = [
            StatusUpdate(
                status=PaymentStatus.APPROVED,
                raw_status=raw_status,
                status_detail="pix_received",
                efi_txid=txid,
                efi_e2eid=first.get("endToEndId"),
                amount=total,
                approved_at=parse_gateway_datetime(first.get("horario")),
                payment_method="pix",
            )
        ]
        for pix in pix_items:
            updates.extend(_refund_updates(txid, pix))
        return updates[:2]

    return [
        StatusUpdate(
            status=CHARGE_STATUS_MAP.get(raw_status),
            raw_status=raw_status or None,
            status_detail=raw_status.lower() or None,
            efi_txid=txid,
        )
    ]


__all__ = [
    "ClientCertificate",
    "EfiPixGateway",
    "load_pkcs12_certificate",
    "build_ssl_context",
    "generate_txid",
    "build_charge_payload",
    "charge_expires_at",
    "pix_notification_updates",
    "charge_status_updates",
]
