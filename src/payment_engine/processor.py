import logging
import threading
import time
from decimal import Decimal, InvalidOperation

from src.ledger.memory import InMemoryLedger, TransactionLedger
from src.models.audit import OperationContext
from src.models.errors import (
    InvalidTransitionError,
    PaymentError,
    TransactionTimeoutError,
    ValidationError,
)
from src.models.money import Money
from src.models.outcome import Accepted, Declined, MalformedResponse, ProviderOutcome, TransientFailure
from src.models.payment_method import PaymentMethod
from src.models.transaction import Transaction, TransactionStatus, TransactionType
from src.observability.metrics import MetricsCollector
from src.payment_engine.audit import AuditLog, AuditSink, build_event
from src.payment_engine.config import ProcessorConfig
from src.payment_engine.deadline import Deadline
from src.payment_engine.gateway import ProviderGateway
from src.payment_engine.retry import GiveUp, RetryPolicy
from src.validation.card import PaymentMethodValidator

logger = logging.getLogger(__name__)

_REFUNDABLE_TYPES = {TransactionType.PAYMENT, TransactionType.CAPTURE}
_CAPTURABLE_TYPES = {TransactionType.PAYMENT}


def _finite_decimal(value, name: str) -> Decimal:
    try:
        result = Decimal(value)
    except (TypeError, ValueError, InvalidOperation):
        raise ValidationError(f"{name} must be a decimal number, got {value!r}", code="invalid_config") from None
    if not result.is_finite():
        raise ValidationError(f"{name} must be finite, got {value!r}", code="invalid_config")
    return result


def _timed_out_at_deadline(outcome: ProviderOutcome, deadline: Deadline) -> bool:
    return isinstance(outcome, TransientFailure) and outcome.code == "timeout" and deadline.expired()


class PaymentProcessor:
    """Runs payments, refunds and captures against the provider.

    Every operation creates one ``pending`` transaction, submits it under
    the retry policy with the transaction id as idempotency key, and
    either returns the ``completed`` record or raises exactly one of
    ``ValidationError``, ``PaymentError`` or ``TransactionTimeoutError``.
    """

    def __init__(
        self,
        gateway: ProviderGateway,
        retry_policy: RetryPolicy | None = None,
        ledger: TransactionLedger | None = None,
        audit: AuditSink | None = None,
        validator: PaymentMethodValidator | None = None,
        metrics: MetricsCollector | None = None,
        large_refund_threshold: Decimal = Decimal("50000"),
        sleep=time.sleep,
        clock=time.monotonic,
    ):
        self.gateway = gateway
        self.retry_policy = retry_policy or RetryPolicy()
        self.ledger = ledger if ledger is not None else InMemoryLedger()
        self.audit = audit if audit is not None else AuditLog()
        self.validator = validator or PaymentMethodValidator()
        self.metrics = metrics
        self.large_refund_threshold = _finite_decimal(large_refund_threshold, "large_refund_threshold")
        self._sleep = sleep
        self._clock = clock
        self._in_flight: set[str] = set()
        self._in_flight_lock = threading.Lock()

    @classmethod
    def from_config(cls, config: ProcessorConfig, **overrides) -> "PaymentProcessor":
        kwargs = {
            "gateway": config.build_gateway(),
            "retry_policy": config.build_retry_policy(),
            "large_refund_threshold": config.large_refund_threshold,
        }
        kwargs.update(overrides)
        return cls(**kwargs)

    # ------------------------------------------------------------------
    # Public operations
    # ------------------------------------------------------------------
    def process_payment(
        self,
        amount: Money,
        payment_method: PaymentMethod,
        metadata: dict | None = None,
        *,
        context: OperationContext | None = None,
        deadline: Deadline | float | None = None,
    ) -> Transaction:
        context = context or OperationContext()
        deadline = self._as_deadline(deadline)
        self._require_positive(amount)
        self._validate_payment_method(payment_method)

        transaction = Transaction(
            type=TransactionType.PAYMENT,
            amount=amount,
            metadata=dict(metadata or {}),
        )
        logger.info(
            "Starting payment %s for %s with %s",
            transaction.id, amount, payment_method.masked(),
            extra=context.as_log_extra(),
        )
        self._open(transaction, context)
        return self._drive(transaction, self._payment_submitter(transaction, payment_method), context, deadline)

    def process_refund(
        self,
        original_transaction_id: str,
        amount: Money | None = None,
        *,
        context: OperationContext | None = None,
        deadline: Deadline | float | None = None,
    ) -> Transaction:
        context = context or OperationContext()
        deadline = self._as_deadline(deadline)
        original = self._require_related(original_transaction_id, _REFUNDABLE_TYPES, "refund")
        remainder = self.ledger.refundable_remainder(original.id)
        amount = self._resolve_child_amount(amount, original, remainder, "refund")

        if amount.amount > self.large_refund_threshold:
            logger.warning(
                "Large refund of %s requested against %s", amount, original.id,
                extra=context.as_log_extra(),
            )

        transaction = Transaction(
            type=TransactionType.REFUND,
            amount=amount,
            related_transaction_id=original.id,
        )
        logger.info(
            "Starting refund %s of %s against %s", transaction.id, amount, original.id,
            extra=context.as_log_extra(),
        )
        self._open(transaction, context)
        return self._drive(transaction, self._refund_submitter(transaction, original), context, deadline)

    def capture_payment(
        self,
        authorization_id: str,
        amount: Money | None = None,
        *,
        context: OperationContext | None = None,
        deadline: Deadline | float | None = None,
    ) -> Transaction:
        context = context or OperationContext()
        deadline = self._as_deadline(deadline)
        authorization = self._require_related(authorization_id, _CAPTURABLE_TYPES, "capture")
        remainder = self.ledger.capturable_remainder(authorization.id)
        amount = self._resolve_child_amount(amount, authorization, remainder, "capture")

        transaction = Transaction(
            type=TransactionType.CAPTURE,
            amount=amount,
            related_transaction_id=authorization.id,
        )
        logger.info(
            "Capturing %s of authorization %s as %s", amount, authorization.id, transaction.id,
            extra=context.as_log_extra(),
        )
        self._open(transaction, context)
        return self._drive(transaction, self._capture_submitter(transaction, authorization), context, deadline)

    def get_transaction(self, transaction_id: str) -> Transaction | None:
        return self.ledger.get(transaction_id)

    def resume(
        self,
        transaction_id: str,
        payment_method: PaymentMethod | None = None,
        *,
        context: OperationContext | None = None,
        deadline: Deadline | float | None = None,
    ) -> Transaction:
        """Re-drive a ``pending`` transaction under its original id.

        This is the recovery path after ``TransactionTimeoutError``.
        Payment methods are never stored, so payments need it supplied
        again. An already finalized transaction is reported as-is.
        """
        context = context or OperationContext()
        deadline = self._as_deadline(deadline)
        transaction = self.ledger.get(transaction_id)
        if transaction is None:
            raise ValidationError(f"Transaction {transaction_id} does not exist", code="unknown_transaction")

        if transaction.status is TransactionStatus.COMPLETED:
            return transaction
        if transaction.is_terminal:
            code = transaction.error.code if transaction.error else transaction.status.value
            raise PaymentError(
                code,
                transaction=transaction,
                provider_message=transaction.error.message if transaction.error else None,
            )

        if transaction.type is TransactionType.PAYMENT:
            if payment_method is None:
                raise ValidationError(
                    "Resuming a payment requires its payment method", code="payment_method_required",
                )
            self._validate_payment_method(payment_method)
            submit = self._payment_submitter(transaction, payment_method)
        else:
            related = self.ledger.get(transaction.related_transaction_id)
            if related is None:
                raise ValidationError(
                    f"Related transaction {transaction.related_transaction_id} does not exist",
                    code="unknown_transaction",
                )
            if transaction.type is TransactionType.REFUND:
                submit = self._refund_submitter(transaction, related)
            else:
                submit = self._capture_submitter(transaction, related)

        logger.info(
            "Resuming %s %s after %d previous attempt(s)",
            transaction.type.value, transaction.id, transaction.attempts,
            extra=context.as_log_extra(),
        )
        return self._drive(transaction, submit, context, deadline)

    # ------------------------------------------------------------------
    # Submission closures; each reuses the transaction id as idempotency key
    # ------------------------------------------------------------------
    def _payment_submitter(self, transaction: Transaction, payment_method: PaymentMethod):
        def submit(timeout):
            return self.gateway.submit_payment(
                transaction.id, transaction.amount, payment_method, transaction.metadata, timeout=timeout,
            )
        return submit

    def _refund_submitter(self, transaction: Transaction, original: Transaction):
        def submit(timeout):
            return self.gateway.submit_refund(
                transaction.id, original.provider_transaction_id, transaction.amount, timeout=timeout,
            )
        return submit

    def _capture_submitter(self, transaction: Transaction, authorization: Transaction):
        def submit(timeout):
            return self.gateway.submit_capture(
                transaction.id, authorization.provider_transaction_id, transaction.amount, timeout=timeout,
            )
        return submit

    # ------------------------------------------------------------------
    # Validation
    # ------------------------------------------------------------------
    def _as_deadline(self, deadline) -> Deadline:
        if isinstance(deadline, Deadline):
            return deadline
        return Deadline(deadline, clock=self._clock)

    @staticmethod
    def _require_positive(amount) -> None:
        if not isinstance(amount, Money):
            raise ValidationError("Amount must be a Money value", code="invalid_amount")
        if not amount.is_positive():
            raise ValidationError(f"Amount must be positive, got {amount}", code="invalid_amount")

    def _validate_payment_method(self, payment_method) -> None:
        result = self.validator.validate(payment_method)
        if not result.is_valid:
            raise ValidationError(
                "Invalid payment method", code="invalid_payment_method", errors=result.errors,
            )

    def _require_related(self, transaction_id: str, allowed: set, operation: str) -> Transaction:
        related = self.ledger.get(transaction_id)
        if related is None:
            raise ValidationError(f"Transaction {transaction_id} does not exist", code="unknown_transaction")
        if related.type not in allowed:
            raise ValidationError(
                f"Cannot {operation} a {related.type.value} transaction", code=f"{operation}_not_allowed",
            )
        if related.status is not TransactionStatus.COMPLETED or not related.provider_transaction_id:
            raise ValidationError(
                f"Cannot {operation} transaction {related.id} in status {related.status.value}",
                code="transaction_not_completed",
            )
        return related

    @staticmethod
    def _resolve_child_amount(amount, related: Transaction, remainder: Money, operation: str) -> Money:
        if amount is None:
            amount = remainder
        else:
            PaymentProcessor._require_positive(amount)
            if amount.currency != related.currency:
                raise ValidationError(
                    f"{operation.capitalize()} currency {amount.currency} does not match {related.currency}",
                    code="currency_mismatch",
                )
        if not amount.is_positive():
            raise ValidationError(
                f"Nothing left to {operation} on transaction {related.id}", code="nothing_remaining",
            )
        if amount > remainder:
            raise ValidationError(
                f"{operation.capitalize()} of {amount} exceeds remaining {remainder}",
                code=f"{operation}_exceeds_remainder",
            )
        return amount

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------
    def _open(self, transaction: Transaction, context: OperationContext) -> None:
        self.ledger.create(transaction)
        self.audit.record(build_event(transaction, context))

    def _drive(self, transaction: Transaction, submit, context: OperationContext, deadline: Deadline) -> Transaction:
        with self._in_flight_lock:
            if transaction.id in self._in_flight:
                raise InvalidTransitionError(f"Transaction {transaction.id} is already being submitted")
            self._in_flight.add(transaction.id)
        try:
            return self._submit_with_retry(transaction, submit, context, deadline)
        finally:
            with self._in_flight_lock:
                self._in_flight.discard(transaction.id)

    def _submit_with_retry(
        self, transaction: Transaction, submit, context: OperationContext, deadline: Deadline,
    ) -> Transaction:
        log_extra = context.as_log_extra()
        attempt = 0

        while True:
            if deadline.expired():
                raise self._timed_out(transaction, attempt, context)

            attempt += 1
            transaction.attempts += 1
            outcome = submit(deadline.remaining())

            if isinstance(outcome, Accepted):
                return self._completed(transaction, outcome, context)

            decision = self.retry_policy.decide(attempt, outcome)
            if isinstance(decision, GiveUp):
                # A last call cut short by the deadline may still have been
                # acted on; the outcome is unknown, not failed.
                if _timed_out_at_deadline(outcome, deadline):
                    raise self._timed_out(transaction, attempt, context)
                raise self._failed(transaction, outcome, attempt, context)

            if not deadline.allows(decision.delay):
                raise self._timed_out(transaction, attempt, context)

            logger.info(
                "Transient failure %s on %s %s (attempt %d/%d); retrying in %.2fs",
                outcome.code, transaction.type.value, transaction.id,
                attempt, self.retry_policy.max_attempts, decision.delay,
                extra=log_extra,
            )
            if decision.delay > 0:
                self._sleep(decision.delay)

    def _completed(self, transaction: Transaction, outcome: Accepted, context: OperationContext) -> Transaction:
        transaction.complete(outcome.provider_transaction_id)
        self._finalize(transaction, context)
        logger.info(
            "%s %s completed (provider id %s) after %d attempt(s)",
            transaction.type.value.capitalize(), transaction.id,
            outcome.provider_transaction_id, transaction.attempts,
            extra=context.as_log_extra(),
        )
        if self.metrics is not None:
            self.metrics.record_success(transaction.type.value)
        return transaction

    def _failed(
        self,
        transaction: Transaction,
        outcome: ProviderOutcome,
        attempt: int,
        context: OperationContext,
    ) -> PaymentError:
        log_extra = context.as_log_extra()
        if isinstance(outcome, Declined):
            code, message = outcome.code, outcome.message
            logger.warning(
                "%s %s declined: %s (%s)", transaction.type.value.capitalize(), transaction.id,
                code, message, extra=log_extra,
            )
        elif isinstance(outcome, MalformedResponse):
            code, message = "malformed_provider_response", outcome.detail
            logger.error(
                "Malformed provider response for %s: %s", transaction.id, message, extra=log_extra,
            )
        else:
            code = "retries_exhausted"
            message = f"{outcome.code}: {outcome.message} (gave up after {attempt} attempts)"
            logger.error(
                "Giving up on %s %s after %d attempts; last error %s",
                transaction.type.value, transaction.id, attempt, outcome.code, extra=log_extra,
            )

        transaction.fail(code, message)
        self._finalize(transaction, context)
        if self.metrics is not None:
            self.metrics.record_failure(transaction.type.value, code=code)
        return PaymentError(code, transaction=transaction, provider_message=message)

    def _timed_out(self, transaction: Transaction, attempts: int, context: OperationContext) -> TransactionTimeoutError:
        self.ledger.record_attempts(transaction.id, transaction.attempts)
        logger.error(
            "Deadline exceeded for %s %s after %d attempt(s); outcome unknown, left pending",
            transaction.type.value, transaction.id, attempts,
            extra=context.as_log_extra(),
        )
        return TransactionTimeoutError(transaction, attempts)

    def _finalize(self, transaction: Transaction, context: OperationContext) -> None:
        self.ledger.record_outcome(transaction)
        self.audit.record(build_event(transaction, context))
