"""
Token-usage cost accounting with daily / monthly ceilings.
"""

import logging
import math
import threading
from collections import deque
from datetime import date, datetime, timezone
from typing import Callable

from statement_extractor import config
from statement_extractor.errors import CostLimitExceeded
from statement_extractor.models import CostInfo

logger = logging.getLogger(__name__)


def model_alias(model: str) -> str:
    """Map a provider model id back to its configured alias; aliases pass through."""
    for alias, model_id in config.MODEL_IDS.items():
        if model == model_id:
            return alias
    return model


def rates_for(model: str) -> dict[str, float]:
    """Per-million-token rates for an alias or provider id; unknown models are priced as haiku."""
    return config.PRICING.get(model_alias(model), config.PRICING["haiku"])


def estimate_cost(payload_size: int, model: str | None = None) -> dict:
    """Rough pre-flight estimate for a payload of *payload_size* bytes."""
    model = model or config.DEFAULT_MODEL
    rates = rates_for(model)
    input_tokens = math.ceil(payload_size / 4) + 500
    output_tokens = 500
    cost = input_tokens / 1e6 * rates["input"] + output_tokens / 1e6 * rates["output"]
    return {
        "estimated_cost": cost,
        "estimated_cost_in_inr": cost * config.USD_TO_INR_RATE,
        "model": model,
        "estimated_tokens": input_tokens + output_tokens,
        "currency": "USD",
    }


class CostTracker:
    """
    Running ledger of spend against the model service.

    Spend is always recorded first; the ceilings are checked afterwards.  The
    call that crosses a ceiling therefore still shows up in the totals, and
    every later call is refused by ``check_limits``.
    """

    def __init__(
        self,
        daily_limit: float | None = None,
        monthly_limit: float | None = None,
        alert_threshold: float | None = None,
        history_limit: int | None = None,
        enabled: bool | None = None,
        today: Callable[[], date] = date.today,
    ):
        self.daily_limit = daily_limit if daily_limit is not None else config.DAILY_COST_LIMIT
        self.monthly_limit = monthly_limit if monthly_limit is not None else config.MONTHLY_COST_LIMIT
        self.alert_threshold = (
            alert_threshold if alert_threshold is not None else config.COST_ALERT_THRESHOLD
        )
        self.enabled = enabled if enabled is not None else config.ENABLE_COST_TRACKING
        self._today = today
        self._lock = threading.Lock()

        self.daily_total = 0.0
        self.monthly_total = 0.0
        self.request_count = 0
        self.history: deque[dict] = deque(maxlen=history_limit or config.COST_HISTORY_LIMIT)
        self.last_reset_date = today()

    def _roll_over(self) -> None:
        today = self._today()
        if today == self.last_reset_date:
            return
        if (today.year, today.month) != (self.last_reset_date.year, self.last_reset_date.month):
            self.monthly_total = 0.0
        self.daily_total = 0.0
        self.last_reset_date = today

    def _check(self) -> None:
        if self.daily_total > self.daily_limit:
            raise CostLimitExceeded("daily", self.daily_limit, self.daily_total)
        if self.monthly_total > self.monthly_limit:
            raise CostLimitExceeded("monthly", self.monthly_limit, self.monthly_total)

    def check_limits(self) -> None:
        """Raise ``CostLimitExceeded`` if a ceiling has already been crossed."""
        if not self.enabled:
            return
        with self._lock:
            self._roll_over()
            self._check()

    def track_usage(self, input_tokens: int, output_tokens: int, model: str | None = None) -> CostInfo:
        model = model or config.DEFAULT_MODEL
        if not self.enabled:
            return CostInfo()

        rates = rates_for(model)
        input_cost = input_tokens / 1e6 * rates["input"]
        output_cost = output_tokens / 1e6 * rates["output"]
        cost = input_cost + output_cost

        with self._lock:
            self._roll_over()
            self.daily_total += cost
            self.monthly_total += cost
            self.request_count += 1
            self.history.append({
                "timestamp": datetime.now(timezone.utc).isoformat(),
                "cost": cost,
                "input_tokens": input_tokens,
                "output_tokens": output_tokens,
                "model": model,
            })
            info = CostInfo(
                cost=cost,
                input_cost=input_cost,
                output_cost=output_cost,
                daily_total=self.daily_total,
                monthly_total=self.monthly_total,
                total_requests=self.request_count,
                cost_in_inr=cost * config.USD_TO_INR_RATE,
                daily_total_in_inr=self.daily_total * config.USD_TO_INR_RATE,
            )
            self._check()

        if info.daily_total > self.daily_limit * self.alert_threshold:
            logger.warning(
                "Daily cost approaching limit: $%.4f/$%s", info.daily_total, self.daily_limit
            )
        return info

    def get_stats(self) -> dict:
        with self._lock:
            self._roll_over()
            return {
                "daily_total": self.daily_total,
                "monthly_total": self.monthly_total,
                "daily_limit": self.daily_limit,
                "monthly_limit": self.monthly_limit,
                "total_requests": self.request_count,
                "daily_total_in_inr": self.daily_total * config.USD_TO_INR_RATE,
                "monthly_total_in_inr": self.monthly_total * config.USD_TO_INR_RATE,
                "average_cost_per_request": (
                    self.monthly_total / self.request_count if self.request_count else 0.0
                ),
                "last_reset_date": self.last_reset_date.isoformat(),
                "recent_requests": list(self.history)[-10:],
            }

    def reset(self) -> None:
        with self._lock:
            self.daily_total = 0.0
            self.monthly_total = 0.0
            self.request_count = 0
            self.history.clear()
            self.last_reset_date = self._today()


cost_tracker = CostTracker()
