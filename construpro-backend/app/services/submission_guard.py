from __future__ import annotations

import asyncio
import enum
import uuid
from dataclasses import dataclass
from typing import Any, Awaitable, Callable


class GuardState(enum.Enum):
    idle = "idle"
    in_flight = "in_flight"
    succeeded = "succeeded"
    failed = "failed"


@dataclass(slots=True)
class GuardOutcome:
    skipped: bool
    token: str | None = None
    value: Any = None


class RetryNotAllowed(RuntimeError):
    pass


class SubmissionGuard:
    """At most one submission in flight, each with its own idempotency token.

    ``submit`` starts a new logical submission with a fresh token unless the
    caller already holds one (a client-side key for the same submission).
    ``retry`` resends the previous token, and only after that submission failed.
    A call made while another one is in flight returns ``skipped`` without
    running anything.
    """

    def __init__(self, token_factory: Callable[[], str] | None = None) -> None:
        self.state = GuardState.idle
        self.last_token: str | None = None
        self._token_factory = token_factory or (lambda: uuid.uuid4().hex)
        self._lock = asyncio.Lock()

    @property
    def in_flight(self) -> bool:
        return self.state is GuardState.in_flight

    async def _begin(self, token: str) -> bool:
        async with self._lock:
            if self.state is GuardState.in_flight:
                return False
            self.state = GuardState.in_flight
            self.last_token = token
            return True

    async def _run(self, token: str, fn: Callable[[str], Awaitable[Any]]) -> GuardOutcome:
        if not await self._begin(token):
            return GuardOutcome(skipped=True)
        try:
            value = await fn(token)
        except BaseException:
            self.state = GuardState.failed
            raise
        self.state = GuardState.succeeded
        return GuardOutcome(skipped=False, token=token, value=value)

    async def submit(self, fn: Callable[[str], Awaitable[Any]], token: str | None = None) -> GuardOutcome:
        if self.in_flight:
            return GuardOutcome(skipped=True)
        return await self._run(token or self._token_factory(), fn)

    async def retry(self, fn: Callable[[str], Awaitable[Any]]) -> GuardOutcome:
        if self.in_flight:
            return GuardOutcome(skipped=True)
        if self.state is not GuardState.failed or not self.last_token:
            raise RetryNotAllowed("Nada para reenviar")
        return await self._run(self.last_token, fn)


class GuardRegistry:
    """One guard per (user, action) so concurrent requests from the same session are deduplicated.

    Once the registry reaches ``max_entries`` guards, settled ones
    (idle or succeeded) are dropped. Failed guards stay so ``retry`` still
    finds the previous token.
    """

    def __init__(self, max_entries: int = 1024) -> None:
        self.max_entries = max_entries
        self._guards: dict[tuple[str, str], SubmissionGuard] = {}

    def __len__(self) -> int:
        return len(self._guards)

    def get(self, owner: str, action: str) -> SubmissionGuard:
        key = (owner, action)
        guard = self._guards.get(key)
        if guard is None:
            if len(self._guards) >= self.max_entries:
                self.prune()
            guard = SubmissionGuard()
            self._guards[key] = guard
        return guard

    def prune(self) -> int:
        settled = [
            key
            for key, guard in self._guards.items()
            if guard.state in (GuardState.idle, GuardState.succeeded)
        ]
        for key in settled:
            del self._guards[key]
        return len(settled)

    def clear(self) -> None:
        self._guards.clear()
