"""Shared fixtures: an in-memory Redis double and a controllable clock."""

import fnmatch
from typing import Any, Optional

import pytest


class FakeClock:
    """Callable time source returning a settable Unix timestamp."""

    def __init__(self, start: float = 1_700_000_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakePipeline:
    """Buffers SET commands until ``execute``."""

    def __init__(self, redis: "FakeRedis", transaction: bool):
        self._redis = redis
        self.transaction = transaction
        self._commands: list[tuple[str, str, Optional[int]]] = []

    def set(self, key: str, value: str, ex: Optional[int] = None) -> "FakePipeline":
        self._commands.append((key, value, ex))
        return self

    async def execute(self) -> list[bool]:
        self._redis._check("execute")
        results = []
        for key, value, ex in self._commands:
            self._redis._store(key, value, ex)
            results.append(True)
        self._commands = []
        return results


class FakeRedis:
    """Subset of ``redis.asyncio.Redis`` used by the limiter.

    Values are kept as ``str`` (``decode_responses=True``). Setting
    ``fail_with`` makes every command raise that exception.
    """

    def __init__(self):
        self.data: dict[str, str] = {}
        self.ttls: dict[str, Optional[int]] = {}
        self.fail_with: Optional[Exception] = None
        self.calls: list[tuple[str, tuple]] = []
        self.eval_result: list[Any] = [1, "0"]
        self.closed = False

    def _check(self, command: str, *args: Any) -> None:
        self.calls.append((command, args))
        if self.fail_with is not None:
            raise self.fail_with

    def _store(self, key: str, value: Any, ex: Optional[int]) -> None:
        self.data[key] = str(value)
        self.ttls[key] = ex

    async def get(self, key: str) -> Optional[str]:
        self._check("get", key)
        return self.data.get(key)

    async def mget(self, *keys: str) -> list[Optional[str]]:
        self._check("mget", *keys)
        return [self.data.get(key) for key in keys]

    async def set(self, key: str, value: Any, ex: Optional[int] = None) -> bool:
        self._check("set", key, value)
        self._store(key, value, ex)
        return True

    async def delete(self, *keys: str) -> int:
        self._check("delete", *keys)
        removed = 0
        for key in keys:
            if self.data.pop(key, None) is not None:
                removed += 1
            self.ttls.pop(key, None)
        return removed

    def pipeline(self, transaction: bool = True) -> FakePipeline:
        return FakePipeline(self, transaction)

    async def scan_iter(self, match: Optional[str] = None):
        self._check("scan", match)
        for key in list(self.data):
            if match is None or fnmatch.fnmatchcase(key, match):
                yield key

    async def eval(self, script: str, numkeys: int, *keys_and_args: Any) -> list[Any]:
        self._check("eval", numkeys, *keys_and_args)
        return self.eval_result

    async def ping(self) -> bool:
        self._check("ping")
        return True

    async def aclose(self) -> None:
        self.closed = True


@pytest.fixture
def fake_redis():
    return FakeRedis()


@pytest.fixture
def clock():
    return FakeClock()
