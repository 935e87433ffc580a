import math
import os
from dataclasses import dataclass, field
from decimal import Decimal

from src.models.errors import ValidationError
from src.payment_engine.gateway import ProviderGateway
from src.payment_engine.retry import RetryPolicy


def _env(environ, name: str, cast, default):
    raw = environ.get(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return cast(raw.strip())
    except (ValueError, ArithmeticError):
        raise ValidationError(f"Invalid value for {name}: {raw!r}", code="invalid_config") from None


@dataclass(frozen=True)
class ProcessorConfig:
    provider_url: str = "https://api.payment-provider.com/v1"
    api_key: str = field(default="test_key", repr=False)
    timeout_seconds: float = ProviderGateway.DEFAULT_TIMEOUT_SECONDS
    max_attempts: int = RetryPolicy.DEFAULT_MAX_ATTEMPTS
    base_delay: float = RetryPolicy.DEFAULT_BASE_DELAY
    max_delay: float = RetryPolicy.DEFAULT_MAX_DELAY
    # Refunds above this amount are logged for manual review.
    large_refund_threshold: Decimal = Decimal("50000")

    def __post_init__(self):
        for name in ("timeout_seconds", "base_delay", "max_delay"):
            if not math.isfinite(getattr(self, name)):
                raise ValidationError(f"{name} must be a finite number", code="invalid_config")
        threshold = self.large_refund_threshold
        if not isinstance(threshold, Decimal) or not threshold.is_finite():
            raise ValidationError("large_refund_threshold must be a finite Decimal", code="invalid_config")
        if self.timeout_seconds <= 0:
            raise ValidationError("timeout_seconds must be positive", code="invalid_config")
        if self.max_attempts < 1:
            raise ValidationError("max_attempts must be at least 1", code="invalid_config")
        if self.base_delay < 0 or self.max_delay < 0:
            raise ValidationError("retry delays must not be negative", code="invalid_config")

    @classmethod
    def from_env(cls, environ=None) -> "ProcessorConfig":
        environ = os.environ if environ is None else environ
        defaults = cls()
        return cls(
            provider_url=_env(environ, "PAYMENT_PROVIDER_URL", str, defaults.provider_url),
            api_key=_env(environ, "PAYMENT_API_KEY", str, defaults.api_key),
            timeout_seconds=_env(environ, "PAYMENT_PROVIDER_TIMEOUT", float, defaults.timeout_seconds),
            max_attempts=_env(environ, "PAYMENT_MAX_RETRY_ATTEMPTS", int, defaults.max_attempts),
            base_delay=_env(environ, "PAYMENT_RETRY_BASE_DELAY", float, defaults.base_delay),
            max_delay=_env(environ, "PAYMENT_RETRY_MAX_DELAY", float, defaults.max_delay),
            large_refund_threshold=_env(
                environ, "PAYMENT_LARGE_REFUND_THRESHOLD", Decimal, defaults.large_refund_threshold,
            ),
        )

    def build_gateway(self) -> ProviderGateway:
        return ProviderGateway(
            base_url=self.provider_url,
            api_key=self.api_key,
            timeout_seconds=self.timeout_seconds,
        )

    def build_retry_policy(self) -> RetryPolicy:
        return RetryPolicy(
            max_attempts=self.max_attempts,
            base_delay=self.base_delay,
            max_delay=self.max_delay,
        )
