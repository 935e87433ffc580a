import pytest

from src.payment_engine.deadline import Deadline


class TestDeadline:
    """Tests for the overall operation deadline."""

    @pytest.mark.unit
    def test_never_has_no_bound(self):
        d = Deadline.never()
        assert d.remaining() is None
        assert d.expired() is False
        assert d.allows(10_000) is True
        assert d.bound(30) == 30

    @pytest.mark.unit
    def test_remaining_counts_down(self, clock):
        d = Deadline(5, clock=clock)
        clock.advance(2)
        assert d.remaining() == pytest.approx(3)
        assert not d.expired()

    @pytest.mark.unit
    def test_expired_after_elapsed(self, clock):
        d = Deadline(1, clock=clock)
        clock.advance(1.5)
        assert d.expired()
        assert d.remaining() == 0

    @pytest.mark.unit
    def test_allows_only_delays_shorter_than_remaining(self, clock):
        d = Deadline(2, clock=clock)
        assert d.allows(1.9)
        assert not d.allows(2)
        assert not d.allows(5)

    @pytest.mark.unit
    def test_bound_clamps_timeout(self, clock):
        d = Deadline(2, clock=clock)
        assert d.bound(30) == pytest.approx(2)
        assert d.bound(1) == 1
