"""
Tests for the balance circuit breaker.
"""

from cachewatch.breaker import BalanceCircuitBreaker


class Hooks:
    def __init__(self, balances):
        self.balances = list(balances)
        self.trips = 0
        self.recoveries = 0

    async def get_balance(self):
        return self.balances.pop(0)

    def on_trip(self):
        self.trips += 1

    async def on_recover(self):
        self.recoveries += 1


def breaker(hooks):
    return BalanceCircuitBreaker(hooks.get_balance, hooks.on_trip, hooks.on_recover,
                                 min_balance=0.001, recovery_interval=300)


async def test_low_balance_trips_once():
    hooks = Hooks([])
    b = breaker(hooks)

    assert b.observe(0.0005)
    assert b.tripped
    assert b.polling
    assert not b.observe(0.0001)
    assert hooks.trips == 1
    assert b.state.last_known_balance == 0.0001
    b.reset()


async def test_none_and_healthy_readings_are_ignored():
    b = breaker(Hooks([]))
    assert not b.observe(None)
    assert b.state.last_known_balance is None
    assert not b.observe(0.001)
    assert not b.tripped
    assert not b.polling


async def test_recovery_restarts():
    hooks = Hooks([None, 0.0002, 2.5])
    b = breaker(hooks)
    b.observe(0.0)

    assert not await b.check_recovery()
    assert not await b.check_recovery()
    assert b.tripped

    assert await b.check_recovery()
    assert not b.tripped
    assert not b.polling
    assert hooks.recoveries == 1
    assert b.state.last_known_balance == 2.5


async def test_reset_keeps_last_balance():
    b = breaker(Hooks([]))
    b.observe(0.0)
    b.reset()
    assert not b.tripped
    assert not b.polling
    assert b.state.last_known_balance == 0.0
