from __future__ import annotations

import asyncio
import copy
import logging
import time
from abc import ABC, abstractmethod
from collections import deque
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import AsyncIterator, Callable, Deque, Dict, Iterable, List, Optional, TypeVar

from .models import HistoryTurn
from .slots import SlotValue
from .utils import mask_user_id
from .vocabulary import SLOT_KEYS, SLOT_PRIORITY

logger = logging.getLogger("messenger_bot.sessions")

DEFAULT_MAX_HISTORY = 6
DEFAULT_MAX_ASK_COUNT = 2
DEFAULT_TTL_SEC = 60 * 60

T = TypeVar("T")


def _empty_slots() -> Dict[str, Optional[str]]:
    return {key: None for key in SLOT_KEYS}


def _empty_flags() -> Dict[str, bool]:
    return {key: False for key in SLOT_KEYS}


@dataclass
class SessionState:
    """Bounded per-user dialogue state."""
    user_id: str
    max_history: int = DEFAULT_MAX_HISTORY
    max_ask_count: int = DEFAULT_MAX_ASK_COUNT
    slots: Dict[str, Optional[str]] = field(default_factory=_empty_slots)
    asked_flags: Dict[str, bool] = field(default_factory=_empty_flags)
    ask_count: int = 0
    last_asked_at: Optional[float] = None
    history: Deque[HistoryTurn] = field(default_factory=deque)
    created_at: float = field(default_factory=time.time)
    last_turn_at: float = field(default_factory=time.time)

    def __post_init__(self) -> None:
        self.history = deque(self.history, maxlen=max(1, self.max_history))

    def append_turn(self, role: str, content: str) -> None:
        """Append a history turn; the deque drops the oldest beyond max_history."""
        if not content:
            return
        self.history.append(HistoryTurn(role=role, content=content))

    def merge_slots(self, values: Iterable[SlotValue]) -> List[str]:
        """Purpose: Merge extracted slot values with first-writer-wins semantics.
        Inputs/Outputs: Input is extracted SlotValue items; output is the list of
            slot keys that were newly filled.
        Side Effects / State: Fills empty slots and marks them asked.
        Dependencies: SLOT_KEYS vocabulary.
        Failure Modes: Unknown keys and empty values are ignored.
        If Removed: Later messages could silently overwrite established facts.
        Testing Notes: With slots.age == "5 years", merging "7 years" keeps "5 years".
        """
        filled: List[str] = []
        for value in values:
            if value.key not in self.slots or not value.value:
                continue
            if self.slots[value.key] is not None:
                continue
            self.slots[value.key] = value.value
            self.asked_flags[value.key] = True
            filled.append(value.key)
        return filled

    def missing_slots(self) -> List[str]:
        """Required slots that are empty and not asked yet, in priority order."""
        return [
            key
            for key in SLOT_PRIORITY
            if self.slots.get(key) is None and not self.asked_flags.get(key, False)
        ]

    def can_ask(self, now: float, cooldown_sec: float) -> bool:
        if self.ask_count >= self.max_ask_count:
            return False
        if self.last_asked_at is not None and (now - self.last_asked_at) < cooldown_sec:
            return False
        return True

    def next_question_slot(self, now: float, cooldown_sec: float) -> Optional[str]:
        """Highest-priority slot to ask about this turn, or None."""
        if not self.can_ask(now, cooldown_sec):
            return None
        missing = self.missing_slots()
        return missing[0] if missing else None

    def mark_asked(self, slot: str, now: float) -> None:
        if self.ask_count >= self.max_ask_count:
            return
        self.asked_flags[slot] = True
        self.ask_count += 1
        self.last_asked_at = now

    def touch(self, now: float) -> None:
        self.last_turn_at = now

    def history_list(self) -> List[HistoryTurn]:
        return list(self.history)

    def log_view(self) -> Dict[str, object]:
        return {
            "user": mask_user_id(self.user_id),
            "slots": dict(self.slots),
            "asked": [key for key, asked in self.asked_flags.items() if asked],
            "ask_count": self.ask_count,
            "history": len(self.history),
        }


class SessionStore(ABC):
    """Key-value session storage with per-key atomic updates."""

    @abstractmethod
    def session(self, user_id: str):
        """Async context manager holding the user's lock and yielding live state."""

    @abstractmethod
    async def get(self, user_id: str) -> SessionState:
        """Return a snapshot of the user's state, creating it when absent."""

    @abstractmethod
    async def update(self, user_id: str, mutation: Callable[[SessionState], T]) -> T:
        """Apply a mutation atomically relative to other operations on the same key."""

    @abstractmethod
    async def sweep(self, now: Optional[float] = None) -> int:
        """Evict sessions idle longer than the TTL; returns the eviction count."""


class InMemorySessionStore(SessionStore):
    def __init__(
        self,
        ttl_sec: float = DEFAULT_TTL_SEC,
        max_history: int = DEFAULT_MAX_HISTORY,
        max_ask_count: int = DEFAULT_MAX_ASK_COUNT,
        max_sessions: Optional[int] = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        """Purpose: Initialize an in-process session map with per-user locks.
        Inputs/Outputs: Inputs are TTL, history/ask limits, an optional session cap,
            and a clock; no return value.
        Side Effects / State: Holds sessions and asyncio locks in memory only.
        Dependencies: SessionState; asyncio.Lock per user id.
        Failure Modes: None at init.
        If Removed: Multi-turn slot filling and history are lost between messages.
        Testing Notes: Inject a fake clock to exercise TTL sweeps and cooldowns.
        """
        self._ttl_sec = ttl_sec
        self._max_history = max_history
        self._max_ask_count = max_ask_count
        self._max_sessions = max_sessions
        self._clock = clock
        self._sessions: Dict[str, SessionState] = {}
        self._locks: Dict[str, asyncio.Lock] = {}

    def __len__(self) -> int:
        return len(self._sessions)

    def __contains__(self, user_id: object) -> bool:
        return user_id in self._sessions

    def _lock_for(self, user_id: str) -> asyncio.Lock:
        lock = self._locks.get(user_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[user_id] = lock
        return lock

    def _get_or_create(self, user_id: str) -> SessionState:
        state = self._sessions.get(user_id)
        if state is None:
            now = self._clock()
            state = SessionState(
                user_id=user_id,
                max_history=self._max_history,
                max_ask_count=self._max_ask_count,
                created_at=now,
                last_turn_at=now,
            )
            self._sessions[user_id] = state
            logger.debug("session created user=%s", mask_user_id(user_id))
            self._prune_sessions(keep=user_id)
        return state

    @asynccontextmanager
    async def session(self, user_id: str) -> AsyncIterator[SessionState]:
        """Purpose: Hold the user's lock for a whole turn and yield the live state.
        Inputs/Outputs: Input is user_id; yields the mutable SessionState.
        Side Effects / State: Creates state on first use; stamps last_turn_at on exit.
        Dependencies: Per-user asyncio.Lock.
        Failure Modes: Exceptions inside the block propagate after the lock is released.
        If Removed: Two fast messages from one user could interleave their updates.
        Testing Notes: Concurrent turns for one user apply in order; different users
            do not wait on each other.
        """
        lock = self._lock_for(user_id)
        async with lock:
            state = self._get_or_create(user_id)
            try:
                yield state
            finally:
                state.touch(self._clock())

    async def get(self, user_id: str) -> SessionState:
        async with self._lock_for(user_id):
            return copy.deepcopy(self._get_or_create(user_id))

    async def update(self, user_id: str, mutation: Callable[[SessionState], T]) -> T:
        async with self.session(user_id) as state:
            return mutation(state)

    async def sweep(self, now: Optional[float] = None) -> int:
        """Purpose: Evict sessions idle longer than the TTL.
        Inputs/Outputs: Input is an optional timestamp; output is eviction count.
        Side Effects / State: Removes sessions and their locks.
        Dependencies: Per-user locks; skips users with a turn in flight.
        Failure Modes: None; eviction only degrades UX for returning users.
        If Removed: Session memory grows without bound.
        Testing Notes: A session idle past the TTL is gone after sweep; a locked
            session survives until its turn finishes.
        """
        current = self._clock() if now is None else now
        evicted = 0
        for user_id in list(self._sessions.keys()):
            state = self._sessions.get(user_id)
            if state is None or (current - state.last_turn_at) <= self._ttl_sec:
                continue
            lock = self._locks.get(user_id)
            if lock is not None and lock.locked():
                continue
            self._sessions.pop(user_id, None)
            self._locks.pop(user_id, None)
            evicted += 1
        if evicted:
            logger.info("session sweep evicted=%s remaining=%s", evicted, len(self._sessions))
        return evicted

    def _prune_sessions(self, keep: str) -> bool:
        """Purpose: Enforce max_sessions by dropping least recently active sessions.
        Inputs/Outputs: Input is a user id that must survive; returns True if any
            session was removed.
        Side Effects / State: Mutates _sessions/_locks.
        Dependencies: Uses _max_sessions and last_turn_at ordering.
        Failure Modes: None; no-op when max_sessions is unset or not exceeded.
        If Removed: A flood of one-off senders can grow memory between sweeps.
        Testing Notes: Set max_sessions=2, create three users, expect the oldest gone.
        """
        if not self._max_sessions or self._max_sessions <= 0:
            return False
        if len(self._sessions) <= self._max_sessions:
            return False
        candidates = sorted(
            (state for uid, state in self._sessions.items() if uid != keep),
            key=lambda s: s.last_turn_at,
        )
        removed = 0
        for state in candidates:
            if len(self._sessions) <= self._max_sessions:
                break
            lock = self._locks.get(state.user_id)
            if lock is not None and lock.locked():
                continue
            self._sessions.pop(state.user_id, None)
            self._locks.pop(state.user_id, None)
            removed += 1
        return bool(removed)


async def run_sweeper(store: SessionStore, interval_sec: float) -> None:
    """Periodically sweep idle sessions until cancelled."""
    while True:
        await asyncio.sleep(interval_sec)
        try:
            await store.sweep()
        except Exception:
            logger.exception("session sweep failed")
