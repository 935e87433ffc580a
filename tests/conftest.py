import pytest

from src.ledger.memory import InMemoryLedger
from src.observability.alerting import AlertManager
from src.observability.metrics import MetricsCollector
from src.payment_engine.audit import AuditLog
from src.payment_engine.gateway import ProviderGateway
from src.payment_engine.processor import PaymentProcessor
from src.payment_engine.retry import RetryPolicy
from src.provider_sandbox.scripted import ScriptedGateway
from src.provider_sandbox.server import ProviderSandboxServer
from src.utils.factories import PaymentMethodFactory, TransactionFactory


PROVIDER_API_KEY = "sk_test_sandbox"


class FakeClock:
    """Monotonic clock whose time only moves when told to. Doubles as ``sleep``."""

    def __init__(self, start: float = 1000.0):
        self.now = start
        self.sleeps: list[float] = []

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds

    def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.advance(seconds)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def retry_policy():
    return RetryPolicy(max_attempts=3, base_delay=0.5, jitter=0)


@pytest.fixture
def ledger():
    return InMemoryLedger()


@pytest.fixture
def audit_log():
    return AuditLog()


@pytest.fixture
def metrics():
    return MetricsCollector(window_seconds=300)


@pytest.fixture
def alert_manager(metrics):
    return AlertManager(metrics=metrics, threshold=0.10)


@pytest.fixture
def gateway():
    return ScriptedGateway()


@pytest.fixture
def processor(gateway, retry_policy, ledger, audit_log, metrics, clock):
    return PaymentProcessor(
        gateway=gateway,
        retry_policy=retry_policy,
        ledger=ledger,
        audit=audit_log,
        metrics=metrics,
        sleep=clock.sleep,
        clock=clock,
    )


@pytest.fixture
def card():
    return PaymentMethodFactory.card()


@pytest.fixture
def seeded_payment(ledger):
    """A completed 100.00 USD payment stored in the ledger."""
    return TransactionFactory.seed(ledger, TransactionFactory.completed_payment("100.00"))


@pytest.fixture
def provider_server():
    server = ProviderSandboxServer(api_key=PROVIDER_API_KEY)
    server.start()
    yield server
    server.stop()


@pytest.fixture
def http_gateway(provider_server):
    return ProviderGateway(
        base_url=provider_server.url,
        api_key=PROVIDER_API_KEY,
        timeout_seconds=5,
    )


@pytest.fixture
def http_processor(http_gateway, ledger, audit_log, metrics):
    return PaymentProcessor(
        gateway=http_gateway,
        retry_policy=RetryPolicy(max_attempts=3, base_delay=0.01, jitter=0),
        ledger=ledger,
        audit=audit_log,
        metrics=metrics,
    )


@pytest.fixture
def payment_method_factory():
    return PaymentMethodFactory


@pytest.fixture
def transaction_factory():
    return TransactionFactory
