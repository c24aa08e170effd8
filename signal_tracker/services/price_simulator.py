"""Fallback price movement when no live price is available"""
import random
from typing import Optional

from signal_tracker.core.domain.signal import Signal, SignalCategory

FAST_STEP_PCT = 0.0015
STANDARD_STEP_PCT = 0.004
TARGET_BIAS_PCT = 0.0015
TARGET_PROXIMITY_PCT = 0.03


class PriceSimulator:
    """
    Bounded random walk around a signal's current price.

    Fast signals move at most 0.15% per tick, others 0.4%. Once price is
    within 3% of TP2 a small drift toward it is added.
    """

    def __init__(self, rng: Optional[random.Random] = None):
        self.rng = rng or random.Random()

    def next_price(self, signal: Signal) -> float:
        step = FAST_STEP_PCT if signal.category == SignalCategory.FAST else STANDARD_STEP_PCT
        price = signal.current_price
        move = self.rng.uniform(-step, step)

        target = signal.take_profit_2
        if target and price > 0 and abs(target - price) / price <= TARGET_PROXIMITY_PCT:
            move += TARGET_BIAS_PCT if target > price else -TARGET_BIAS_PCT

        return max(price * (1 + move), 0.0)
