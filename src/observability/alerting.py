import logging

from src.observability.metrics import MetricsCollector

logger = logging.getLogger(__name__)

TRANSACTION_TYPES = ("payment", "refund", "capture")


class AlertManager:
    """Raises a failure-rate alert over the metrics window.

    An alert fires at most once per breach. The manager re-arms as soon
    as a check finds the rate back at or under the threshold. Windows
    with fewer than ``min_volume`` finalized transactions are ignored.
    Pass ``transaction_type`` to watch one kind of transaction only.
    """

    def __init__(
        self,
        metrics: MetricsCollector,
        threshold: float = 0.10,
        callback=None,
        min_volume: int = 1,
        transaction_type: str | None = None,
    ):
        if not 0 <= threshold < 1:
            raise ValueError("threshold must be in [0, 1)")
        self.metrics = metrics
        self.threshold = threshold
        self.callback = callback
        self.min_volume = max(min_volume, 1)
        self.transaction_type = transaction_type
        self._armed = True
        self._alerts: list[dict] = []

    def check(self) -> dict | None:
        scope = self.transaction_type
        total = self.metrics.total_in_window(scope)
        if total < self.min_volume:
            return None

        rate = self.metrics.failure_rate(scope)
        if rate <= self.threshold:
            self._armed = True
            return None
        if not self._armed:
            return None

        self._armed = False
        alert = self._build_alert(rate, total)
        self._alerts.append(alert)
        logger.error(alert["message"], extra={"alert": alert})
        if self.callback:
            self.callback(alert)
        return alert

    def _build_alert(self, rate: float, total: int) -> dict:
        scope = self.transaction_type
        failures = self.metrics.failure_count_in_window(scope)
        codes = self.metrics.failure_codes()
        top_code = max(codes, key=codes.get) if codes else None
        label = f"{scope} failure rate" if scope else "Transaction failure rate"
        return {
            "type": "transaction_failure_rate",
            "transaction_type": scope,
            "failure_rate": rate,
            "threshold": self.threshold,
            "total_transactions": total,
            "failed_transactions": failures,
            "failure_codes": codes,
            "top_failure_code": top_code,
            "rates_by_type": {
                t: self.metrics.failure_rate(t)
                for t in TRANSACTION_TYPES
                if self.metrics.total_in_window(t)
            },
            "message": (
                f"{label} {rate:.1%} above {self.threshold:.1%} "
                f"({failures} of {total} failed; top code {top_code or 'n/a'})"
            ),
        }

    def get_alerts(self) -> list[dict]:
        return list(self._alerts)

    def reset(self) -> None:
        self._armed = True
        self._alerts.clear()
