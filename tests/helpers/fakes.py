"""
Test doubles for the clock and for failing Redis clients.
"""

import asyncio

from redis.exceptions import ConnectionError as RedisConnectionError


class FakeClock:
    """Epoch-seconds clock advanced explicitly by tests."""

    def __init__(self, start: float = 1_700_000_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class BrokenRedis:
    """Client whose every command fails as if the server were unreachable."""

    def __init__(self) -> None:
        self.calls = 0

    def pipeline(self, *args, **kwargs):
        self.calls += 1
        raise RedisConnectionError("Connection refused")

    def __getattr__(self, name):
        async def _fail(*args, **kwargs):
            self.calls += 1
            raise RedisConnectionError("Connection refused")

        return _fail


class SlowRedis:
    """Client whose commands never answer within a short timeout."""

    def __getattr__(self, name):
        async def _hang(*args, **kwargs):
            await asyncio.sleep(5)

        return _hang
