# tests/unit/test_rate_limiter.py
import pytest

from apps.auth_svc.services.rate_limiter import SlidingWindowRateLimiter

pytestmark = pytest.mark.anyio


@pytest.fixture
def limiter(redis, clock):
    return SlidingWindowRateLimiter(redis, clock)


async def test_eleventh_attempt_in_window_is_refused(limiter):
    subject = limiter.subject("10.0.0.1", "user@example.com")
    for _ in range(10):
        assert (await limiter.hit("login", subject, limit=10, window_sec=900)).allowed

    refused = await limiter.hit("login", subject, limit=10, window_sec=900)
    assert not refused.allowed
    assert refused.retry_after == 900


async def test_subjects_are_independent(limiter):
    first = limiter.subject("10.0.0.1", "a@example.com")
    second = limiter.subject("10.0.0.1", "b@example.com")
    for _ in range(3):
        await limiter.hit("login", first, limit=3, window_sec=900)
    assert not (await limiter.hit("login", first, limit=3, window_sec=900)).allowed
    assert (await limiter.hit("login", second, limit=3, window_sec=900)).allowed


async def test_previous_window_is_weighted(limiter, clock):
    subject = limiter.subject("10.0.0.1", "user@example.com")
    for _ in range(10):
        await limiter.hit("login", subject, limit=10, window_sec=900)

    # середина следующего окна: прошлые 10 попыток весят 5
    clock.advance(seconds=900 + 450)
    decisions = [await limiter.hit("login", subject, limit=10, window_sec=900) for _ in range(6)]
    assert [d.allowed for d in decisions] == [True, True, True, True, True, False]

    # через два окна старые попытки уже не учитываются
    clock.advance(seconds=1800)
    assert (await limiter.hit("login", subject, limit=10, window_sec=900)).allowed


def test_subject_does_not_leak_email():
    subject = SlidingWindowRateLimiter.subject("10.0.0.1", "User@Example.com")
    assert "example" not in subject
    assert subject == SlidingWindowRateLimiter.subject("10.0.0.1", "user@example.com")
