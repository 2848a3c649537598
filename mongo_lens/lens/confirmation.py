"""Two-phase confirmation for destructive operations.

A destructive tool call without a token is not performed: the gate issues a
short-lived token bound to a fingerprint of the operation and its
parameters. Repeating the identical call with that token performs it once.

    NoToken -> ISSUED -> CONSUMED
                      -> EXPIRED

Thread-safe. One gate is shared by every handler of a server.
"""

from __future__ import annotations

import enum
import hashlib
import json
import logging
import random
import secrets
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

logger = logging.getLogger("lens.confirmation")

DEFAULT_TOKEN_TTL = 300

# Fraction of issue() calls that also sweep expired entries.
_PURGE_PROBABILITY = 0.05


class TokenState(enum.Enum):
    """Lifecycle states of an issued token."""

    ISSUED = "issued"
    CONSUMED = "consumed"
    EXPIRED = "expired"


class ConfirmationError(Exception):
    """A presented token could not authorize the operation."""

    reason = "Confirmation rejected"

    def __init__(self, detail: str) -> None:
        super().__init__(f"{self.reason}: {detail}")
        self.detail = detail


class InvalidTokenError(ConfirmationError):
    """The token was never issued, or has already been used."""


class ExpiredTokenError(ConfirmationError):
    """The token was issued but its confirmation window has passed."""


class TokenMismatchError(ConfirmationError):
    """The token was issued for a different operation or target."""


@dataclass(slots=True)
class PendingConfirmation:
    """An issued token awaiting its confirming call."""

    token: str
    operation_kind: str
    fingerprint: str
    params: dict[str, Any]
    issued_at: float
    expires_at: float
    state: TokenState = field(default=TokenState.ISSUED)

    @property
    def ttl_seconds(self) -> int:
        return int(round(self.expires_at - self.issued_at))


def fingerprint(kind: str, params: dict[str, Any]) -> str:
    """Stable digest of an operation and its parameters.

    The ``token`` parameter itself is excluded so the issuing and the
    confirming call fingerprint identically.
    """
    material = {k: v for k, v in params.items() if k != "token"}
    canonical = json.dumps(
        [kind, material], sort_keys=True, separators=(",", ":"), default=str
    )
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()


class ConfirmationGate:
    """Issues and redeems confirmation tokens.

    Args:
        enabled: When False every operation is authorized immediately.
        ttl_seconds: Lifetime of an issued token.
        clock: Monotonic time source, injectable for tests.
    """

    def __init__(
        self,
        enabled: bool = True,
        ttl_seconds: float = DEFAULT_TOKEN_TTL,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.enabled = enabled
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._pending: dict[str, PendingConfirmation] = {}
        self._lock = threading.Lock()

    def __len__(self) -> int:
        with self._lock:
            return len(self._pending)

    def authorize(
        self, kind: str, params: dict[str, Any], token: str | None
    ) -> PendingConfirmation | None:
        """Decide whether ``kind`` may run with ``params`` now.

        Returns:
            None when the operation should be performed; otherwise the
            freshly issued confirmation the caller must present back.

        Raises:
            InvalidTokenError: Unknown or already consumed token.
            ExpiredTokenError: Token presented after its window.
            TokenMismatchError: Token bound to a different operation.
        """
        if not self.enabled:
            logger.info("Confirmation disabled, performing %s immediately", kind)
            return None
        if not token:
            return self.issue(kind, params)
        self.redeem(kind, params, token)
        return None

    def issue(self, kind: str, params: dict[str, Any]) -> PendingConfirmation:
        """Store a new pending confirmation for ``kind``/``params``."""
        now = self._clock()
        material = {k: v for k, v in params.items() if k != "token"}
        pending = PendingConfirmation(
            token=secrets.token_urlsafe(16),
            operation_kind=kind,
            fingerprint=fingerprint(kind, material),
            params=material,
            issued_at=now,
            expires_at=now + self.ttl_seconds,
        )
        with self._lock:
            if random.random() < _PURGE_PROBABILITY:
                self._purge_locked(now)
            self._pending[pending.token] = pending
        logger.info("Issued confirmation token for %s", kind)
        return pending

    def redeem(self, kind: str, params: dict[str, Any], token: str) -> PendingConfirmation:
        """Consume ``token`` for ``kind``/``params`` or raise ConfirmationError."""
        now = self._clock()
        digest = fingerprint(kind, params)
        with self._lock:
            pending = self._pending.get(token)
            if pending is None or pending.state is TokenState.CONSUMED:
                logger.warning("Rejected unknown confirmation token for %s", kind)
                raise InvalidTokenError("token is invalid or has already been used")
            if pending.state is TokenState.EXPIRED or now >= pending.expires_at:
                pending.state = TokenState.EXPIRED
                del self._pending[token]
                logger.warning("Rejected expired confirmation token for %s", kind)
                raise ExpiredTokenError(
                    "token has expired; repeat the request without a token to get a new one"
                )
            if pending.fingerprint != digest:
                # Left in place for the operation it was issued for.
                logger.warning(
                    "Rejected confirmation token issued for %s when confirming %s",
                    pending.operation_kind,
                    kind,
                )
                raise TokenMismatchError(
                    "token was issued for a different operation or target"
                )
            pending.state = TokenState.CONSUMED
            del self._pending[token]
        logger.info("Confirmed %s", kind)
        return pending

    def purge_expired(self) -> int:
        """Drop entries expired for more than one extra TTL. Returns the count."""
        with self._lock:
            return self._purge_locked(self._clock())

    def _purge_locked(self, now: float) -> int:
        # Entries linger one TTL past expiry so late callers hear "expired".
        cutoff = now - self.ttl_seconds
        stale = [t for t, p in self._pending.items() if p.expires_at <= cutoff]
        for token in stale:
            del self._pending[token]
        if stale:
            logger.debug("Purged %d expired confirmation tokens", len(stale))
        return len(stale)

    def state(self, token: str) -> TokenState | None:
        """Current state of a still-tracked token, or None once removed."""
        with self._lock:
            pending = self._pending.get(token)
            if pending is None:
                return None
            if pending.state is TokenState.ISSUED and self._clock() >= pending.expires_at:
                return TokenState.EXPIRED
            return pending.state


def confirmation_prompt(pending: PendingConfirmation, action: str) -> str:
    """Human-readable text returned when a token has been issued."""
    return (
        f"Confirmation required: {action}.\n\n"
        f"This operation cannot be undone. To proceed, repeat the same request "
        f"with \"token\": \"{pending.token}\".\n"
        f"The token expires in {pending.ttl_seconds} seconds."
    )
