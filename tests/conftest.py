"""Test configuration."""
import base64
import itertools
import json
import os
from collections.abc import AsyncIterator, Callable, Iterator
from datetime import UTC, datetime, timedelta
from decimal import Decimal
from pathlib import Path
from urllib.parse import parse_qs
from uuid import uuid4

from alembic import command
from alembic.config import Config
import httpx
import pytest
from cryptography import x509
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.asymmetric import ec
from cryptography.hazmat.primitives.serialization import BestAvailableEncryption, NoEncryption, pkcs12
from cryptography.x509.oid import NameOID
from httpx import ASGITransport, AsyncClient
from sqlalchemy import create_engine, event
from sqlalchemy.orm import Session, sessionmaker

# --- Default environment, set before the settings object is built
os.environ.setdefault("DATABASE_URL", "sqlite:///./splitpay_test.db")
os.environ.setdefault("SECRET_KEY", "test-secret-key")
os.environ.setdefault("SPLITPAY_ENV", "test")

from splitpay.config import get_settings  # noqa: E402
from splitpay.db import get_db  # noqa: E402
from splitpay.main import app  # noqa: E402
from splitpay.models import (  # noqa: E402
    DocumentType,
    EfiAccountConfig,
    OAuthToken,
    Payment,
    PaymentGateway,
    Producer,
    ProducerStatus,
    Product,
)
from splitpay.services import oauth as oauth_service  # noqa: E402
from splitpay.services import payments as payments_service  # noqa: E402
from splitpay.services import webhooks as webhooks_service  # noqa: E402
from splitpay.services.fees import compute_split  # noqa: E402
from splitpay.services.gateways.efi import EfiPixGateway  # noqa: E402
from splitpay.services.gateways.mercadopago import MercadoPagoGateway  # noqa: E402
from splitpay.services.payment_records import (  # noqa: E402
    PaymentRecord,
    build_external_reference,
    persist_payment,
)
from splitpay.utils.crypto import encrypt_token  # noqa: E402
from splitpay.utils.time import utcnow  # noqa: E402

DB_PATH = Path("./splitpay_test.db")
PRODUCER_TOKEN = "APP_USR-producer-token"
PLATFORM_TOKEN = "APP_USR-platform-token"
_REFERENCE_MILLIS = itertools.count(1_760_000_000_000)


def _run_migrations() -> None:
    cfg = Config(str(Path(__file__).resolve().parents[1] / "alembic.ini"))
    cfg.set_main_option("sqlalchemy.url", os.environ["DATABASE_URL"])
    command.upgrade(cfg, "head")


# --- (1) Fresh database file per session
if DB_PATH.exists():
    DB_PATH.unlink()

engine = create_engine(
    os.environ["DATABASE_URL"],
    connect_args={"check_same_thread": False},
    future=True,
)


# pysqlite only honours SAVEPOINT when SQLAlchemy emits BEGIN itself.
@event.listens_for(engine, "connect")
def _disable_pysqlite_transactions(dbapi_connection, connection_record) -> None:
    dbapi_connection.isolation_level = None


@event.listens_for(engine, "begin")
def _emit_begin(conn) -> None:
    conn.exec_driver_sql("BEGIN")


TestingSessionLocal = sessionmaker(
    bind=engine,
    autoflush=False,
    autocommit=False,
    future=True,
    expire_on_commit=False,
    join_transaction_mode="create_savepoint",
)

# --- (2) Schema is built through Alembic only
_run_migrations()


@pytest.fixture
def db_session() -> Iterator[Session]:
    connection = engine.connect()
    transaction = connection.begin()
    session = TestingSessionLocal(bind=connection)
    try:
        yield session
    finally:
        session.close()
        transaction.rollback()
        connection.close()


@pytest.fixture(autouse=True)
def override_db_dependency(db_session: Session) -> Iterator[None]:
    def _get_db() -> Iterator[Session]:
        yield db_session

    app.dependency_overrides[get_db] = _get_db
    yield
    app.dependency_overrides.pop(get_db, None)


@pytest.fixture
async def client() -> AsyncIterator[AsyncClient]:
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as async_client:
        yield async_client


@pytest.fixture
def anyio_backend() -> str:
    return "asyncio"


# --- Gateway doubles -------------------------------------------------------


class FakeGatewayApi:
    """Callable for ``httpx.MockTransport`` answering canned routes."""

    def __init__(self) -> None:
        self.routes: dict[tuple[str, str], Callable[[httpx.Request], httpx.Response]] = {}
        self.prefix_routes: list[tuple[str, str, Callable[[httpx.Request], httpx.Response]]] = []
        self.requests: list[httpx.Request] = []

    def add(self, method: str, path: str, status_code: int = 200, json: object | None = None) -> None:
        self.routes[(method, path)] = lambda request: httpx.Response(status_code, json=json)

    def add_handler(self, method: str, path: str, handler: Callable[[httpx.Request], httpx.Response]) -> None:
        self.routes[(method, path)] = handler

    def add_prefix(self, method: str, prefix: str, handler: Callable[[httpx.Request], httpx.Response]) -> None:
        self.prefix_routes.append((method, prefix, handler))

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        handler = self.routes.get((request.method, request.url.path))
        if handler is None:
            for method, prefix, candidate in self.prefix_routes:
                if request.method == method and request.url.path.startswith(prefix):
                    handler = candidate
                    break
        if handler is None:
            return httpx.Response(404, json={"message": f"no route for {request.method} {request.url.path}"})
        return handler(request)

    def calls(self, method: str, path: str) -> list[httpx.Request]:
        return [r for r in self.requests if r.method == method and r.url.path == path]

    @staticmethod
    def json_body(request: httpx.Request) -> dict:
        return json.loads(request.content)

    @staticmethod
    def form_body(request: httpx.Request) -> dict[str, str]:
        return {key: values[0] for key, values in parse_qs(request.content.decode()).items()}


@pytest.fixture
def mp_api(monkeypatch: pytest.MonkeyPatch) -> FakeGatewayApi:
    """Route every marketplace gateway built by the services to a fake API."""

    api = FakeGatewayApi()

    def _factory(config, access_token=None, *, transport=None):
        return MercadoPagoGateway(config, access_token, transport=httpx.MockTransport(api))

    for module in (payments_service, webhooks_service, oauth_service):
        monkeypatch.setattr(module, "MercadoPagoGateway", _factory)
    return api


@pytest.fixture
def efi_api(monkeypatch: pytest.MonkeyPatch) -> FakeGatewayApi:
    api = FakeGatewayApi()
    api.add("POST", "/oauth/token", json={"access_token": "efi-access-token", "token_type": "Bearer"})

    def _factory(config, *, transport=None, certificate=None):
        return EfiPixGateway(config, transport=httpx.MockTransport(api), certificate=certificate)

    monkeypatch.setattr(payments_service, "EfiPixGateway", _factory)
    return api


def make_pkcs12(password: bytes | None = None) -> bytes:
    key = ec.generate_private_key(ec.SECP256R1())
    name = x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, "splitpay-test")])
    now = datetime.now(tz=UTC)
    certificate = (
        x509.CertificateBuilder()
        .subject_name(name)
        .issuer_name(name)
        .public_key(key.public_key())
        .serial_number(x509.random_serial_number())
        .not_valid_before(now - timedelta(days=1))
        .not_valid_after(now + timedelta(days=30))
        .sign(key, hashes.SHA256())
    )
    encryption = BestAvailableEncryption(password) if password else NoEncryption()
    return pkcs12.serialize_key_and_certificates(b"splitpay-test", key, certificate, None, encryption)


@pytest.fixture(scope="session")
def pkcs12_factory() -> Callable[..., bytes]:
    return make_pkcs12


@pytest.fixture(scope="session")
def pkcs12_base64() -> str:
    return base64.b64encode(make_pkcs12()).decode("ascii")


@pytest.fixture
def fake_api() -> FakeGatewayApi:
    return FakeGatewayApi()


@pytest.fixture
def marketplace_settings(monkeypatch: pytest.MonkeyPatch):
    settings = get_settings()
    monkeypatch.setattr(settings, "MP_APP_ID", "1234567890")
    monkeypatch.setattr(settings, "MP_CLIENT_SECRET", "mp-client-secret")
    monkeypatch.setattr(settings, "MP_ACCESS_TOKEN", PLATFORM_TOKEN)
    monkeypatch.setattr(settings, "MP_API_URL", "https://api.mercadopago.test")
    return settings


@pytest.fixture
def efi_settings(monkeypatch: pytest.MonkeyPatch, pkcs12_base64: str):
    settings = get_settings()
    monkeypatch.setattr(settings, "EFI_CLIENT_ID", "Client_Id_test")
    monkeypatch.setattr(settings, "EFI_CLIENT_SECRET", "Client_Secret_test")
    monkeypatch.setattr(settings, "EFI_CERTIFICATE_BASE64", pkcs12_base64)
    monkeypatch.setattr(settings, "EFI_CERTIFICATE_PASSWORD", "")
    monkeypatch.setattr(settings, "EFI_PIX_KEY", "pix@splitpay.test")
    monkeypatch.setattr(settings, "EFI_ACCOUNT_ID", "1111111")
    monkeypatch.setattr(settings, "EFI_SANDBOX", True)
    return settings


# --- Data factories --------------------------------------------------------


@pytest.fixture
def make_producer(db_session: Session) -> Callable[..., Producer]:
    """Factory creating a producer, optionally connected to either gateway."""

    def _factory(
        *,
        fee: str = "10",
        status: ProducerStatus = ProducerStatus.ACTIVE,
        mp_token: str | None = PRODUCER_TOKEN,
        token_valid: bool = True,
        token_expires_in: timedelta | None = timedelta(hours=6),
        efi_account: str | None = None,
        document_type: DocumentType | None = None,
        document_number: str | None = None,
    ) -> Producer:
        suffix = uuid4().hex[:8]
        producer = Producer(
            business_name=f"Loja {suffix}",
            email=f"produtor-{suffix}@example.com",
            platform_fee_percentage=Decimal(fee),
            status=status,
            document_type=document_type,
            document_number=document_number,
        )
        db_session.add(producer)
        db_session.flush()

        if mp_token:
            producer.mp_connected = True
            producer.mp_user_id = "987654"
            db_session.add(
                OAuthToken(
                    producer_id=producer.id,
                    access_token_encrypted=encrypt_token(mp_token, get_settings().SECRET_KEY),
                    expires_at=utcnow() + token_expires_in if token_expires_in is not None else None,
                    mp_user_id="987654",
                    is_valid=token_valid,
                )
            )
        if efi_account:
            producer.efi_connected = True
            producer.efi_account_id = efi_account
            db_session.add(
                EfiAccountConfig(producer_id=producer.id, account_identifier=efi_account, is_valid=True)
            )
        db_session.commit()
        db_session.refresh(producer)
        return producer

    return _factory


@pytest.fixture
def make_product(db_session: Session) -> Callable[..., Product]:
    def _factory(producer: Producer, *, price: str = "49.99", name: str = "Curso de Python", active: bool = True):
        product = Product(
            producer_id=producer.id,
            name=name,
            price=Decimal(price),
            currency="BRL",
            is_active=active,
        )
        db_session.add(product)
        db_session.commit()
        db_session.refresh(product)
        return product

    return _factory


@pytest.fixture
def make_payment(db_session: Session) -> Callable[..., Payment]:
    """Factory recording a pending payment as checkout would."""

    def _factory(
        producer: Producer,
        *,
        amount: str = "100.00",
        gateway: PaymentGateway = PaymentGateway.EFI,
        txid: str | None = None,
        mp_payment_id: str | None = None,
    ) -> Payment:
        if gateway == PaymentGateway.EFI and txid is None:
            txid = uuid4().hex[:32]
        return persist_payment(
            db_session,
            producer=producer,
            fee_split=compute_split(Decimal(amount), producer.platform_fee_percentage),
            external_reference=build_external_reference(gateway, producer.id, millis=next(_REFERENCE_MILLIS)),
            record=PaymentRecord(
                gateway=gateway,
                payment_type="pix" if gateway == PaymentGateway.EFI else "credit_card",
                payment_method="pix" if gateway == PaymentGateway.EFI else "visa",
                efi_txid=txid if gateway == PaymentGateway.EFI else None,
                mp_payment_id=mp_payment_id,
            ),
        )

    return _factory
