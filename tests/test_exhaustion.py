"""
Tests for the exhaustion confirmation state machine.
"""

import pytest

from flowwatch.signals.aggregator import Side, Trade, WindowStats
from flowwatch.signals.exhaustion import (
    AggressionSample,
    ExhaustionTracker,
    Idle,
    InvalidTransition,
    Outcome,
    Waiting,
    evaluate_history,
)


def create_stats(buy: float, price_change: float = 0.6, sell: float = 0.0) -> WindowStats:
    """Create a snapshot for the tracker; only volumes and price change matter."""
    total = buy + sell
    side = Side.BUY if buy >= sell else Side.SELL
    return WindowStats(
        symbol="BTCUSDT",
        buy_volume=buy,
        sell_volume=sell,
        total_volume=total,
        dominant_side=side,
        dominance=max(buy, sell) / total * 100 if total else 50.0,
        price_change=price_change,
        duration=1.0,
        trade_count=3,
        first_price=100.0,
        last_price=100.0 * (1 + price_change / 100),
        timestamp=0,
    )


def samples(*pairs):
    """Build an ordered sample list from (aggression, price_change) pairs."""
    return [
        AggressionSample(timestamp=i * 1_000, aggression=a, price_change=p)
        for i, (a, p) in enumerate(pairs)
    ]


@pytest.fixture
def tracker():
    return ExhaustionTracker(
        averaging_window=5,
        collapse_ratio=0.5,
        max_wait_ticks=3,
        tick_interval_ms=5_000,
    )


class TestEvaluateHistory:
    """Tests for the three-condition conjunction."""

    def test_fewer_than_three_samples_never_confirms(self):
        check = evaluate_history(samples((100, 1.0), (1, 1.0)), collapse_ratio=0.5)

        assert not check.enough_samples
        assert not check.exhausted

    def test_all_conditions_hold(self):
        check = evaluate_history(
            samples((120, 0.6), (70, 0.6), (50, 0.6), (25, 0.6)), collapse_ratio=0.5
        )

        assert check.momentum_collapsed
        assert check.sustained_fade
        assert check.price_stalled
        assert check.exhausted

    def test_single_dip_is_not_a_fade(self):
        """A one-tick lull after rising aggression fails the strict decrease."""
        check = evaluate_history(samples((100, 0.6), (120, 0.6), (10, 0.6)), collapse_ratio=0.5)

        assert check.momentum_collapsed
        assert not check.sustained_fade
        assert not check.exhausted

    def test_no_collapse(self):
        """Decreasing but still above K x average."""
        check = evaluate_history(samples((100, 0.6), (90, 0.6), (80, 0.6)), collapse_ratio=0.5)

        assert check.sustained_fade
        assert not check.momentum_collapsed
        assert not check.exhausted

    def test_accelerating_price_blocks_confirmation(self):
        """Price change delta growing and above neutrality keeps the move alive."""
        check = evaluate_history(samples((100, 0.6), (40, 0.8), (10, 1.3)), collapse_ratio=0.5)

        assert check.momentum_collapsed
        assert check.sustained_fade
        assert not check.price_stalled
        assert not check.exhausted

    def test_small_latest_delta_counts_as_stalled(self):
        """Latest delta under 0.1% is neutral even if larger than the previous one."""
        check = evaluate_history(samples((100, 0.6), (40, 0.6), (10, 0.65)), collapse_ratio=0.5)

        assert check.price_stalled
        assert check.exhausted


def create_trade(volume: float, side: Side = Side.BUY, timestamp: int = 0) -> Trade:
    """Trade carrying the given notional on one side."""
    return Trade(
        timestamp=timestamp,
        price=100.0,
        buy_volume=volume if side is Side.BUY else 0.0,
        sell_volume=volume if side is Side.SELL else 0.0,
    )


def tick(tracker, volume: float, now: int, price_change: float = 0.6, symbol: str = "BTCUSDT"):
    """One trade of the given notional followed by a sample."""
    tracker.record_trade(symbol, create_trade(volume, timestamp=now))
    return tracker.update(symbol, create_stats(volume, price_change), now)


class TestExhaustionTracker:
    """Tests for tracker transitions."""

    def test_idle_by_default(self, tracker):
        assert isinstance(tracker.state("BTCUSDT"), Idle)
        assert not tracker.is_waiting("BTCUSDT")

    def test_start_waiting_seeds_history(self, tracker):
        waiting = tracker.start_waiting("BTCUSDT", create_stats(120_000), now=1_000)

        assert isinstance(tracker.state("BTCUSDT"), Waiting)
        assert waiting.tick_count == 0
        assert waiting.tick_volume == 0.0
        assert len(waiting.history) == 1
        assert waiting.history[0].aggression == 120_000
        assert waiting.history[0].price_change == 0.6

    def test_double_start_rejected(self, tracker):
        tracker.start_waiting("BTCUSDT", create_stats(120_000), now=0)

        with pytest.raises(InvalidTransition):
            tracker.start_waiting("BTCUSDT", create_stats(130_000), now=1)

    def test_update_when_idle_rejected(self, tracker):
        with pytest.raises(InvalidTransition):
            tracker.update("BTCUSDT", create_stats(1_000), now=0)

    def test_record_trade_when_idle_ignored(self, tracker):
        tracker.record_trade("BTCUSDT", create_trade(5_000))

        assert not tracker.is_waiting("BTCUSDT")

    def test_tick_gate(self, tracker):
        tracker.start_waiting("BTCUSDT", create_stats(120_000), now=1_000)

        assert not tracker.is_tick_due("BTCUSDT", 5_999)
        assert tracker.is_tick_due("BTCUSDT", 6_000)
        assert not tracker.is_tick_due("ETHUSDT", 6_000)

    def test_aggression_is_flow_since_previous_sample(self, tracker):
        """Trades between samples add up; each sample starts a fresh tally."""
        tracker.start_waiting("BTCUSDT", create_stats(120_000), now=0)

        tracker.record_trade("BTCUSDT", create_trade(4_000))
        tracker.record_trade("BTCUSDT", create_trade(6_000))
        tracker.update("BTCUSDT", create_stats(250_000), now=5_000)
        tracker.record_trade("BTCUSDT", create_trade(20_000))
        tracker.update("BTCUSDT", create_stats(250_000), now=10_000)

        history = tracker.state("BTCUSDT").history
        assert [s.aggression for s in history] == [120_000, 10_000, 20_000]
        assert tracker.state("BTCUSDT").tick_volume == 0.0

    def test_confirms_while_window_still_holds_impulse(self):
        """A long window keeps the impulse volume; fading flow still confirms."""
        tracker = ExhaustionTracker(tick_interval_ms=10_000)
        pending = create_stats(120_000)
        tracker.start_waiting("BTCUSDT", pending, now=1_000)

        r1 = tick(tracker, 1_000, now=11_000)
        r2 = tick(tracker, 500, now=21_000)

        assert r1.outcome is Outcome.WAITING
        assert r2.confirmed
        assert r2.pending_stats is pending

    def test_confirms_with_pending_stats(self, tracker):
        """Confirmation reports the stats captured at detection, not the faded ones."""
        pending = create_stats(120_000)
        tracker.start_waiting("BTCUSDT", pending, now=1_000)

        r1 = tick(tracker, 70_000, now=6_000, price_change=0.0)
        r2 = tick(tracker, 50_000, now=11_000, price_change=0.0)
        r3 = tick(tracker, 25_000, now=16_000, price_change=0.0)

        assert r1.outcome is Outcome.WAITING
        assert r2.outcome is Outcome.WAITING
        assert r3.confirmed
        assert r3.pending_stats is pending
        assert r3.summary.ticks == 3
        assert r3.summary.waited_seconds == pytest.approx(15.0)
        assert r3.summary.peak_aggression == 120_000
        assert r3.summary.aggression_drop_pct == pytest.approx(100 * (1 - 25_000 / 120_000))
        assert isinstance(tracker.state("BTCUSDT"), Idle)

    def test_confirmation_wins_over_timeout_on_last_tick(self):
        """The last allowed tick still confirms if the conditions hold."""
        tracker = ExhaustionTracker(max_wait_ticks=2)
        tracker.start_waiting("BTCUSDT", create_stats(100_000), now=0)

        tick(tracker, 40_000, now=10_000)
        result = tick(tracker, 10_000, now=20_000)

        assert result.confirmed

    def test_times_out_without_fade(self, tracker):
        """Steady aggression exhausts the tick budget and returns to Idle."""
        tracker.start_waiting("BTCUSDT", create_stats(120_000), now=0)

        outcomes = [tick(tracker, 80_000, now=t).outcome for t in (5_000, 10_000, 15_000)]

        assert outcomes == [Outcome.WAITING, Outcome.WAITING, Outcome.TIMED_OUT]
        assert not tracker.is_waiting("BTCUSDT")

    def test_aggression_tracks_pending_side(self, tracker):
        """Opposite-side flow does not count as candidate aggression."""
        tracker.start_waiting("BTCUSDT", create_stats(120_000), now=0)

        tracker.record_trade("BTCUSDT", create_trade(90_000, Side.SELL))
        tracker.record_trade("BTCUSDT", create_trade(5_000, Side.BUY))
        tracker.update("BTCUSDT", create_stats(buy=5_000, sell=90_000, price_change=0.1), now=5_000)

        waiting = tracker.state("BTCUSDT")
        assert waiting.history[-1].aggression == 5_000

    def test_empty_window_counts_as_zero_price_change(self, tracker):
        tracker.start_waiting("BTCUSDT", create_stats(120_000), now=0)

        tracker.update("BTCUSDT", None, now=5_000)

        sample = tracker.state("BTCUSDT").history[-1]
        assert sample.aggression == 0.0
        assert sample.price_change == 0.0

    def test_history_bounded(self):
        """History keeps at most N + 1 samples."""
        tracker = ExhaustionTracker(averaging_window=3, max_wait_ticks=50)
        tracker.start_waiting("BTCUSDT", create_stats(100_000), now=0)

        for i in range(1, 10):
            tick(tracker, 100_000, now=i * 10_000)

        assert len(tracker.state("BTCUSDT").history) == 4

    def test_cancel(self, tracker):
        tracker.start_waiting("BTCUSDT", create_stats(120_000), now=0)

        assert tracker.cancel("BTCUSDT")
        assert not tracker.cancel("BTCUSDT")
        assert isinstance(tracker.state("BTCUSDT"), Idle)

    def test_symbols_independent(self, tracker):
        tracker.start_waiting("BTCUSDT", create_stats(120_000), now=0)

        assert tracker.waiting_symbols() == ["BTCUSDT"]
        assert not tracker.is_waiting("ETHUSDT")
