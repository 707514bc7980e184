"""Shared fixtures for the client core: a settable clock and a scriptable issuer."""

import asyncio

import pytest

from workout_tracker.client.cache import CacheKey
from workout_tracker.client.images import ImageContext
from workout_tracker.client.issuer import IssuedCredential

A = CacheKey("user-uploads/a", "doc-1")
B = CacheKey("user-uploads/b", "doc-1")
C = CacheKey("user-uploads/c", "doc-2")


class FakeClock:
    """Unix-seconds clock the tests move by hand."""

    def __init__(self, now=1_000_000.0):
        self.now = now

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += seconds


class FakeIssuer:
    """Stands in for CredentialIssuer.

    ``behaviour[key]`` may be an exception instance/class to raise, ``"hang"`` to never
    answer, or a callable returning an IssuedCredential. Unscripted keys get a fresh
    credential valid for ``lifetime`` seconds from the clock's now.
    """

    def __init__(self, clock, lifetime=3600, delay=0.0):
        self.clock = clock
        self.lifetime = lifetime
        self.delay = delay
        self.behaviour = {}
        self.calls = []
        self.tokens = []
        self._serial = 0

    def calls_for(self, key):
        return sum(1 for k in self.calls if k == key)

    def credential(self, key, lifetime=None):
        self._serial += 1
        now = self.clock()
        return IssuedCredential(
            url=f"https://img.test/{key.resource_id}?sig={self._serial}",
            expires_at=now + (lifetime or self.lifetime),
            issued_at=now,
        )

    async def issue(self, key, id_token):
        self.calls.append(key)
        self.tokens.append(id_token)
        if self.delay:
            await asyncio.sleep(self.delay)
        behaviour = self.behaviour.get(key)
        if behaviour == "hang":
            await asyncio.Future()
        if isinstance(behaviour, type) and issubclass(behaviour, BaseException):
            raise behaviour(f"scripted {behaviour.__name__}")
        if isinstance(behaviour, BaseException):
            raise behaviour
        if callable(behaviour):
            return behaviour(key)
        return self.credential(key)


async def signed_in_token():
    return "id-token"


async def signed_out_token():
    return None


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def issuer(clock):
    return FakeIssuer(clock)


@pytest.fixture
def context(issuer, clock):
    return ImageContext(issuer, signed_in_token, now=clock)
