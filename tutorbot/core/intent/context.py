"""Per-user conversation context for correction follow-ups.

After a successful record/modify/cancel turn the extracted entities are kept
for a short time so that "不對，是4點" can be resolved against the course the
user just mentioned. One slot per user; each update replaces the previous one.

Storage goes through a small ContextBackend interface so the same logic runs
on process memory or a shared cache.
"""

from __future__ import annotations

import asyncio
import logging
import time
import weakref
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Callable

from .entities import Entities
from .taxonomy import CONTEXT_INTENTS, Intent

logger = logging.getLogger(__name__)

DEFAULT_CONTEXT_TTL_SECONDS = 300
KEY_PREFIX = "tutorbot:context:"


# =============================================================================
# Backends
# =============================================================================


class ContextBackend(ABC):
    """Key-value storage with per-entry expiry."""

    @abstractmethod
    async def get(self, key: str) -> dict[str, Any] | None:
        """Stored value, or None when absent or expired."""
        ...

    @abstractmethod
    async def set(self, key: str, value: dict[str, Any], ttl_seconds: float) -> None:
        """Store value, replacing any previous one."""
        ...

    @abstractmethod
    async def delete(self, key: str) -> None:
        """Remove key. Missing keys are ignored."""
        ...


class InMemoryContextBackend(ContextBackend):
    """Dictionary backend for a single process."""

    def __init__(self, clock: Callable[[], float] | None = None) -> None:
        self._clock = clock or time.time
        self._data: dict[str, tuple[dict[str, Any], float]] = {}

    async def get(self, key: str) -> dict[str, Any] | None:
        entry = self._data.get(key)
        if entry is None:
            return None
        value, expires_at = entry
        if self._clock() > expires_at:
            del self._data[key]
            return None
        return value

    async def set(self, key: str, value: dict[str, Any], ttl_seconds: float) -> None:
        self._data[key] = (value, self._clock() + ttl_seconds)

    async def delete(self, key: str) -> None:
        self._data.pop(key, None)

    def __len__(self) -> int:
        return len(self._data)


# =============================================================================
# Pending context
# =============================================================================


@dataclass
class PendingContext:
    """The last successful actionable turn of one user.

    Attributes:
        user_id: Owner
        intent: Intent of that turn
        entities: Entities extracted in that turn
        result_snapshot: Serialized AnalysisResult of that turn
        created_at: Epoch seconds
        expires_at: Epoch seconds after which the context is ignored
    """

    user_id: str
    intent: Intent
    entities: Entities
    result_snapshot: dict[str, Any] = field(default_factory=dict)
    created_at: float = 0.0
    expires_at: float = 0.0

    def is_expired(self, now: float) -> bool:
        return now > self.expires_at

    def to_dict(self) -> dict[str, Any]:
        """Serialize to dictionary for backend storage."""
        return {
            "user_id": self.user_id,
            "intent": self.intent.value,
            "entities": self.entities.to_dict(),
            "result_snapshot": self.result_snapshot,
            "created_at": self.created_at,
            "expires_at": self.expires_at,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> PendingContext:
        """Deserialize from dictionary."""
        return cls(
            user_id=data["user_id"],
            intent=Intent.parse(data.get("intent")),
            entities=Entities.from_dict(data.get("entities")),
            result_snapshot=data.get("result_snapshot") or {},
            created_at=float(data.get("created_at", 0.0)),
            expires_at=float(data.get("expires_at", 0.0)),
        )


class ConversationContextStore:
    """TTL-bounded, single-slot memory of each user's last actionable turn.

    Example:
        store = ConversationContextStore(ttl_seconds=300)
        await store.update_context("u1", Intent.RECORD_COURSE, entities, result)
        if await store.has_valid_context("u1"):
            resolved = await store.resolve_entities_from_context("u1", "不對，是4點")
    """

    def __init__(
        self,
        backend: ContextBackend | None = None,
        ttl_seconds: float = DEFAULT_CONTEXT_TTL_SECONDS,
        clock: Callable[[], float] | None = None,
    ) -> None:
        """Initialize the store.

        Args:
            backend: Storage; in-process memory when omitted
            ttl_seconds: Lifetime of a context after its last update
            clock: Epoch-seconds source, injectable for tests
        """
        self._clock = clock or time.time
        self.backend = backend or InMemoryContextBackend(clock=self._clock)
        self.ttl_seconds = ttl_seconds
        self._locks: weakref.WeakValueDictionary[str, asyncio.Lock] = weakref.WeakValueDictionary()

    @staticmethod
    def _key(user_id: str) -> str:
        return f"{KEY_PREFIX}{user_id}"

    def lock(self, user_id: str) -> asyncio.Lock:
        """Lock serializing read-then-write sequences for one user.

        Callers must keep a reference while holding it.
        """
        lock = self._locks.get(user_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[user_id] = lock
        return lock

    async def get_pending_context(self, user_id: str) -> PendingContext | None:
        """The user's context, or None when absent or expired."""
        if not user_id:
            return None

        data = await self.backend.get(self._key(user_id))
        if not data:
            return None

        try:
            context = PendingContext.from_dict(data)
        except (KeyError, TypeError, ValueError) as e:
            logger.warning(f"Discarding unreadable context for {user_id}: {e}")
            await self.backend.delete(self._key(user_id))
            return None

        if context.is_expired(self._clock()):
            logger.debug(f"Context for {user_id} expired")
            await self.backend.delete(self._key(user_id))
            return None

        return context

    async def has_valid_context(self, user_id: str) -> bool:
        return await self.get_pending_context(user_id) is not None

    async def update_context(
        self,
        user_id: str,
        intent: Intent | str,
        entities: Entities,
        result: dict[str, Any] | None = None,
    ) -> bool:
        """Replace the user's context after a successful turn.

        Only record/modify/cancel turns with a course name are remembered.

        Returns:
            True if the context was written
        """
        intent = intent if isinstance(intent, Intent) else Intent.parse(intent)
        if not user_id or intent not in CONTEXT_INTENTS:
            return False
        if entities is None or not entities.course_name:
            return False

        now = self._clock()
        context = PendingContext(
            user_id=user_id,
            intent=intent,
            entities=entities,
            result_snapshot=dict(result or {}),
            created_at=now,
            expires_at=now + self.ttl_seconds,
        )
        await self.backend.set(self._key(user_id), context.to_dict(), self.ttl_seconds)
        logger.debug(f"Stored {intent.value} context for {user_id}: {entities.course_name}")
        return True

    async def resolve_entities_from_context(
        self, user_id: str, correction_text: str
    ) -> Entities | None:
        """Entities of the previous turn, re-attributed to the correction message.

        Returns:
            Copy of the stored entities, or None without a valid context
        """
        context = await self.get_pending_context(user_id)
        if context is None:
            return None
        return context.entities.replace(original_text=correction_text)

    async def clear_context(self, user_id: str) -> None:
        await self.backend.delete(self._key(user_id))


__all__ = [
    "ContextBackend",
    "ConversationContextStore",
    "DEFAULT_CONTEXT_TTL_SECONDS",
    "InMemoryContextBackend",
    "PendingContext",
]
