from decimal import Decimal

import pytest

from src.models.errors import PaymentError, ValidationError
from src.models.money import Money
from src.models.outcome import Accepted, Declined, TransientFailure
from src.models.transaction import TransactionStatus, TransactionType
from src.payment_engine.processor import PaymentProcessor
from src.utils.factories import TransactionFactory


class TestRefund:
    """Tests for PaymentProcessor.process_refund()."""

    @pytest.mark.unit
    def test_partial_refund(self, processor, gateway, seeded_payment):
        gateway.queue(Accepted("re_1"))

        refund = processor.process_refund(seeded_payment.id, Money.of("30.00", "USD"))

        assert refund.type is TransactionType.REFUND
        assert refund.status is TransactionStatus.COMPLETED
        assert refund.related_transaction_id == seeded_payment.id
        assert refund.provider_transaction_id == "re_1"
        assert refund.amount == Money.of("30.00", "USD")
        call = gateway.calls[0]
        assert call.operation == "refund"
        assert call.transaction_id == refund.id
        assert call.reference == seeded_payment.provider_transaction_id

    @pytest.mark.unit
    def test_omitted_amount_refunds_remaining_balance(self, processor, gateway, seeded_payment, ledger):
        processor.process_refund(seeded_payment.id, Money.of("30.00", "USD"))
        rest = processor.process_refund(seeded_payment.id)

        assert rest.amount == Money.of("70.00", "USD")
        assert gateway.calls[-1].amount == Money.of("70.00", "USD")
        assert ledger.refundable_remainder(seeded_payment.id).is_zero()

    @pytest.mark.unit
    def test_refund_exceeding_original_rejected_before_provider_call(self, processor, gateway, ledger):
        original = TransactionFactory.seed(ledger, TransactionFactory.completed_payment("20.00"))

        with pytest.raises(ValidationError) as exc:
            processor.process_refund(original.id, Money.of("30.00", "USD"))

        assert exc.value.code == "refund_exceeds_remainder"
        assert gateway.call_count() == 0
        assert ledger.list_related(original.id) == []

    @pytest.mark.unit
    def test_refund_exceeding_remainder_after_partial_refund(self, processor, gateway, seeded_payment):
        processor.process_refund(seeded_payment.id, Money.of("80.00", "USD"))
        with pytest.raises(ValidationError):
            processor.process_refund(seeded_payment.id, Money.of("20.01", "USD"))
        assert gateway.call_count() == 1

    @pytest.mark.unit
    def test_nothing_left_to_refund(self, processor, seeded_payment):
        processor.process_refund(seeded_payment.id)
        with pytest.raises(ValidationError) as exc:
            processor.process_refund(seeded_payment.id)
        assert exc.value.code == "nothing_remaining"

    @pytest.mark.unit
    def test_currency_mismatch_rejected(self, processor, gateway, seeded_payment):
        with pytest.raises(ValidationError) as exc:
            processor.process_refund(seeded_payment.id, Money.of("10.00", "EUR"))
        assert exc.value.code == "currency_mismatch"
        assert gateway.call_count() == 0

    @pytest.mark.unit
    def test_unknown_original_rejected(self, processor):
        with pytest.raises(ValidationError) as exc:
            processor.process_refund("txn_missing", Money.of("1.00", "USD"))
        assert exc.value.code == "unknown_transaction"

    @pytest.mark.unit
    def test_failed_original_cannot_be_refunded(self, processor, gateway, card):
        gateway.queue(Declined("card_declined", "Card declined"))
        with pytest.raises(PaymentError) as exc:
            processor.process_payment(Money.of("10.00", "USD"), card)
        with pytest.raises(ValidationError) as refused:
            processor.process_refund(exc.value.transaction.id)
        assert refused.value.code == "transaction_not_completed"

    @pytest.mark.unit
    def test_refund_of_refund_not_allowed(self, processor, seeded_payment):
        refund = processor.process_refund(seeded_payment.id, Money.of("10.00", "USD"))
        with pytest.raises(ValidationError) as exc:
            processor.process_refund(refund.id)
        assert exc.value.code == "refund_not_allowed"

    @pytest.mark.unit
    def test_declined_refund_releases_remainder(self, processor, gateway, seeded_payment, ledger):
        gateway.queue(Declined("refund_failed", "Charge already disputed"))
        with pytest.raises(PaymentError) as exc:
            processor.process_refund(seeded_payment.id)
        assert exc.value.transaction.status is TransactionStatus.FAILED
        assert ledger.refundable_remainder(seeded_payment.id) == Money.of("100.00", "USD")

    @pytest.mark.unit
    def test_refund_retries_with_same_idempotency_key(self, processor, gateway, seeded_payment):
        blip = TransientFailure("connection_error", "Could not reach the provider")
        gateway.queue(blip, Accepted("re_7"))
        refund = processor.process_refund(seeded_payment.id, Money.of("5.00", "USD"))
        assert [c.transaction_id for c in gateway.calls] == [refund.id, refund.id]

    @pytest.mark.unit
    def test_large_refund_logged(self, gateway, ledger, caplog):
        processor = PaymentProcessor(gateway=gateway, ledger=ledger, large_refund_threshold=Decimal("50"))
        original = TransactionFactory.seed(ledger, TransactionFactory.completed_payment("100.00"))
        with caplog.at_level("WARNING", logger="src.payment_engine.processor"):
            processor.process_refund(original.id, Money.of("60.00", "USD"))
        assert "Large refund" in caplog.text

    @pytest.mark.unit
    def test_refund_of_capture_allowed(self, processor, seeded_payment):
        capture = processor.capture_payment(seeded_payment.id, Money.of("40.00", "USD"))
        refund = processor.process_refund(capture.id)
        assert refund.amount == Money.of("40.00", "USD")
        assert refund.related_transaction_id == capture.id


class TestSharedRefundPool:
    """A payment and its captures never refund more than was charged in total."""

    @pytest.mark.unit
    def test_refund_payment_then_capture(self, processor, gateway, seeded_payment):
        capture = processor.capture_payment(seeded_payment.id)
        processor.process_refund(seeded_payment.id)

        with pytest.raises(ValidationError) as exc:
            processor.process_refund(capture.id)

        assert exc.value.code == "nothing_remaining"
        assert gateway.call_count("refund") == 1

    @pytest.mark.unit
    def test_refund_capture_then_payment(self, processor, gateway, seeded_payment):
        capture = processor.capture_payment(seeded_payment.id)
        processor.process_refund(capture.id)

        with pytest.raises(ValidationError) as exc:
            processor.process_refund(seeded_payment.id, Money.of("0.01", "USD"))

        assert exc.value.code == "refund_exceeds_remainder"
        assert gateway.call_count("refund") == 1

    @pytest.mark.unit
    def test_partial_refunds_across_payment_and_captures(self, processor, seeded_payment, ledger):
        first = processor.capture_payment(seeded_payment.id, Money.of("60.00", "USD"))
        second = processor.capture_payment(seeded_payment.id, Money.of("40.00", "USD"))
        processor.process_refund(seeded_payment.id, Money.of("50.00", "USD"))
        processor.process_refund(first.id, Money.of("30.00", "USD"))

        # 20.00 left overall; the second capture alone could cover 40.00.
        assert ledger.refundable_remainder(second.id) == Money.of("20.00", "USD")
        assert ledger.refundable_remainder(first.id) == Money.of("20.00", "USD")
        rest = processor.process_refund(second.id)

        assert rest.amount == Money.of("20.00", "USD")
        assert ledger.refundable_remainder(seeded_payment.id).is_zero()
        assert ledger.refundable_remainder(first.id).is_zero()

    @pytest.mark.unit
    def test_total_refunded_never_exceeds_charge(self, processor, seeded_payment, ledger):
        capture = processor.capture_payment(seeded_payment.id)
        refunded = Money.zero("USD")
        for target in (seeded_payment.id, capture.id, seeded_payment.id, capture.id):
            try:
                refunded = refunded + processor.process_refund(target).amount
            except ValidationError:
                pass
        assert refunded == seeded_payment.amount


class TestCapture:
    """Tests for PaymentProcessor.capture_payment()."""

    @pytest.mark.unit
    def test_full_capture_when_amount_omitted(self, processor, gateway, seeded_payment):
        gateway.queue(Accepted("cp_1"))
        capture = processor.capture_payment(seeded_payment.id)

        assert capture.type is TransactionType.CAPTURE
        assert capture.status is TransactionStatus.COMPLETED
        assert capture.related_transaction_id == seeded_payment.id
        assert capture.amount == Money.of("100.00", "USD")
        assert gateway.calls[0].operation == "capture"
        assert gateway.calls[0].reference == seeded_payment.provider_transaction_id

    @pytest.mark.unit
    def test_partial_captures_until_exhausted(self, processor, seeded_payment, ledger):
        processor.capture_payment(seeded_payment.id, Money.of("60.00", "USD"))
        processor.capture_payment(seeded_payment.id, Money.of("40.00", "USD"))
        assert ledger.capturable_remainder(seeded_payment.id).is_zero()
        with pytest.raises(ValidationError) as exc:
            processor.capture_payment(seeded_payment.id, Money.of("0.01", "USD"))
        assert exc.value.code == "capture_exceeds_remainder"

    @pytest.mark.unit
    def test_capture_of_refund_not_allowed(self, processor, seeded_payment):
        refund = processor.process_refund(seeded_payment.id, Money.of("1.00", "USD"))
        with pytest.raises(ValidationError) as exc:
            processor.capture_payment(refund.id)
        assert exc.value.code == "capture_not_allowed"

    @pytest.mark.unit
    def test_capture_exhausting_retries_fails(self, processor, gateway, seeded_payment):
        down = TransientFailure("provider_unavailable", "Provider returned HTTP 503")
        gateway.queue(down, down, down)
        with pytest.raises(PaymentError) as exc:
            processor.capture_payment(seeded_payment.id)
        assert exc.value.code == "retries_exhausted"
        assert gateway.call_count("capture") == 3
