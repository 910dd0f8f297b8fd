"""
cachewatch - Account balance circuit breaker

Stops the whole scheduler when the account balance drops below a floor,
polls the balance until it recovers, then starts the scheduler again.
"""
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Optional

from .timers import TimerGroup

logger = logging.getLogger(__name__)


@dataclass
class CircuitState:
    last_known_balance: Optional[float] = None
    tripped: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {"last_known_balance": self.last_known_balance, "tripped": self.tripped}


class BalanceCircuitBreaker:
    """Hard stop on low balance.

    on_trip and on_recover are wired to the scheduler's stop and start.
    The recovery poll lives in its own TimerGroup so that stopping the
    scheduler does not cancel it.
    """

    def __init__(self, get_balance: Callable[[], Awaitable[Optional[float]]],
                 on_trip: Callable[[], Any], on_recover: Callable[[], Any],
                 min_balance: float = 0.001, recovery_interval: float = 300.0):
        self.get_balance = get_balance
        self.on_trip = on_trip
        self.on_recover = on_recover
        self.min_balance = min_balance
        self.recovery_interval = recovery_interval
        self.state = CircuitState()
        self.timers = TimerGroup("balance-recovery")

    @property
    def tripped(self) -> bool:
        return self.state.tripped

    @property
    def polling(self) -> bool:
        return len(self.timers) > 0

    def observe(self, balance: Optional[float]) -> bool:
        """Record a reading; returns True when this reading trips the breaker"""
        if balance is None:
            return False
        self.state.last_known_balance = balance
        if balance >= self.min_balance or self.state.tripped:
            return False

        logger.warning(
            "Balance too low (%.6f < %g), stopping scheduler; checking again every %.0fs",
            balance, self.min_balance, self.recovery_interval,
        )
        self.state.tripped = True
        self.on_trip()
        self.timers.cancel_all()
        self.timers.call_every(self.recovery_interval, self.check_recovery, name="balance-recovery")
        return True

    async def check_recovery(self) -> bool:
        """One recovery poll; restarts the scheduler when the balance is back"""
        balance = await self.get_balance()
        if balance is None:
            logger.info("Balance check failed, will retry in %.0fs", self.recovery_interval)
            return False
        self.state.last_known_balance = balance
        if balance < self.min_balance:
            logger.info("Balance still low (%.6f), waiting", balance)
            return False

        logger.info("Balance recovered (%.6f), restarting scheduler", balance)
        self.timers.cancel_all()
        self.state.tripped = False
        result = self.on_recover()
        if hasattr(result, "__await__"):
            await result
        return True

    def reset(self):
        """Forget the trip and stop polling (scheduler start)"""
        self.timers.cancel_all()
        self.state.tripped = False
