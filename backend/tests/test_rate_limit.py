from planner.utils.rate_limit import InMemoryRateLimiter


class FakeClock:
    def __init__(self, now=1000.0):
        self.now = now

    def __call__(self):
        return self.now


def test_budget_is_per_owner_and_slides():
    clock = FakeClock()
    limiter = InMemoryRateLimiter(clock=clock)
    assert limiter.allow('owner-a', 2, 60) == (True, 0)
    clock.now += 20
    assert limiter.allow('owner-a', 2, 60) == (True, 0)
    assert limiter.allow('owner-b', 2, 60) == (True, 0)

    clock.now += 10
    allowed, retry_after = limiter.allow('owner-a', 2, 60)
    assert not allowed
    assert retry_after == 30

    # the first call leaves the window; one slot opens, not two
    clock.now += 30
    assert limiter.allow('owner-a', 2, 60) == (True, 0)
    assert limiter.allow('owner-a', 2, 60)[0] is False


def test_idle_owners_are_forgotten():
    clock = FakeClock()
    limiter = InMemoryRateLimiter(clock=clock)
    limiter.allow('owner-a', 5, 60)
    limiter.allow('owner-b', 5, 60)
    assert limiter.tracked_keys() == 2
    clock.now += 61
    limiter.allow('owner-c', 5, 60)
    assert limiter.tracked_keys() == 1
    limiter.reset()
    assert limiter.tracked_keys() == 0
