"""
Challenge nonce ledger.

Nonces are single-use and time-bounded. The ledger is the only owner of
nonce state; callers go through issue / consume_if_valid / collect.
"""

import threading
import uuid
from abc import ABC, abstractmethod
from collections.abc import Callable
from dataclasses import dataclass, replace
from datetime import UTC, datetime, timedelta

import structlog

from x402_paygate.scheduler import create_collector

logger = structlog.get_logger()

DEFAULT_TTL_SECONDS = 300
DEFAULT_GRACE_SECONDS = 60
DEFAULT_GC_INTERVAL_SECONDS = 60
# Max entries deleted per lock hold during collection
COLLECT_BATCH_SIZE = 500


def utcnow() -> datetime:
    return datetime.now(UTC)


class NonceError(Exception):
    """Base class for nonces that cannot be consumed."""

    reason = "nonce_invalid"

    def __init__(self, token: str):
        super().__init__(f"{self.reason}: {token}")
        self.token = token


class NonceNotFound(NonceError):
    reason = "nonce_not_found"


class NonceExpired(NonceError):
    reason = "nonce_expired"


class NonceReplayed(NonceError):
    reason = "nonce_replayed"


@dataclass(frozen=True)
class ChallengeNonce:
    token: str
    created_at: datetime
    expires_at: datetime
    consumed: bool = False

    def is_expired(self, now: datetime) -> bool:
        return now > self.expires_at


class NonceLedger(ABC):
    """
    Contract for nonce storage.

    Implementations must make consume_if_valid linearizable: for a given
    token, exactly one caller ever succeeds.
    """

    @property
    @abstractmethod
    def ttl(self) -> timedelta:
        """Lifetime of every nonce this ledger issues."""

    @abstractmethod
    def issue(self) -> ChallengeNonce:
        """Create and record a fresh, never-before-seen nonce."""

    @abstractmethod
    def consume_if_valid(self, token: str) -> ChallengeNonce:
        """
        Mark ``token`` consumed.

        Raises NonceNotFound, NonceExpired or NonceReplayed (checked in that
        order) when the token cannot be consumed.
        """

    @abstractmethod
    def collect(self) -> int:
        """Evict dead entries. Returns how many were removed."""

    @abstractmethod
    def __len__(self) -> int: ...

    def start(self) -> None:
        """Start background maintenance, if the implementation has any."""

    def shutdown(self) -> None:
        """Stop background maintenance."""


class InMemoryNonceLedger(NonceLedger):
    """
    Process-local ledger guarded by a single lock.

    A background APScheduler job calls collect() every ``gc_interval_seconds``.
    Consumed entries go on the next collection; unconsumed ones are kept for
    ``grace_seconds`` past expiry so late callers get nonce_expired rather
    than nonce_not_found.
    """

    def __init__(
        self,
        ttl_seconds: int = DEFAULT_TTL_SECONDS,
        grace_seconds: int = DEFAULT_GRACE_SECONDS,
        gc_interval_seconds: int = DEFAULT_GC_INTERVAL_SECONDS,
        clock: Callable[[], datetime] = utcnow,
        start_collector: bool = True,
    ):
        self._ttl = timedelta(seconds=ttl_seconds)
        self.grace = timedelta(seconds=grace_seconds)
        self.gc_interval_seconds = gc_interval_seconds
        self._clock = clock
        self._entries: dict[str, ChallengeNonce] = {}
        self._lock = threading.Lock()
        self._scheduler = None
        if start_collector:
            self.start()

    @property
    def ttl(self) -> timedelta:
        return self._ttl

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def __contains__(self, token: str) -> bool:
        with self._lock:
            return token in self._entries

    def issue(self) -> ChallengeNonce:
        now = self._clock()
        with self._lock:
            token = str(uuid.uuid4())
            while token in self._entries:
                token = str(uuid.uuid4())
            nonce = ChallengeNonce(token=token, created_at=now, expires_at=now + self._ttl)
            self._entries[token] = nonce
        return nonce

    def consume_if_valid(self, token: str) -> ChallengeNonce:
        now = self._clock()
        with self._lock:
            nonce = self._entries.get(token)
            if nonce is None:
                raise NonceNotFound(token)
            if nonce.is_expired(now):
                raise NonceExpired(token)
            if nonce.consumed:
                raise NonceReplayed(token)
            consumed = replace(nonce, consumed=True)
            self._entries[token] = consumed
            return consumed

    def collect(self) -> int:
        now = self._clock()
        with self._lock:
            candidates = [token for token, nonce in self._entries.items() if self._is_dead(nonce, now)]

        evicted = 0
        for start in range(0, len(candidates), COLLECT_BATCH_SIZE):
            with self._lock:
                for token in candidates[start : start + COLLECT_BATCH_SIZE]:
                    nonce = self._entries.get(token)
                    if nonce is not None and self._is_dead(nonce, now):
                        del self._entries[token]
                        evicted += 1
        return evicted

    def _is_dead(self, nonce: ChallengeNonce, now: datetime) -> bool:
        return nonce.consumed or now > nonce.expires_at + self.grace

    def start(self) -> None:
        if self._scheduler is not None:
            return
        self._scheduler = create_collector(self, self.gc_interval_seconds)
        self._scheduler.start()
        logger.info("nonce_collector_started", interval_seconds=self.gc_interval_seconds)

    def shutdown(self) -> None:
        if self._scheduler is None:
            return
        self._scheduler.shutdown(wait=False)
        self._scheduler = None
        logger.info("nonce_collector_stopped")

    @property
    def collector_running(self) -> bool:
        return self._scheduler is not None and self._scheduler.running
