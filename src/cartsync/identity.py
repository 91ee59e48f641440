"""Shopper identity — signed ID token verification and change notification."""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass
from typing import Any

import jwt
from cryptography.hazmat.primitives.serialization import load_pem_public_key

logger = logging.getLogger(__name__)

IdentityListener = Callable[["Identity | None"], Awaitable[None]]


def normalize_public_key(raw: str) -> str:
    """Accept a bare base64 key string or full PEM and return valid PEM."""
    stripped = raw.strip()
    if stripped.startswith("-----"):
        return stripped
    return f"-----BEGIN PUBLIC KEY-----\n{stripped}\n-----END PUBLIC KEY-----"


class IdentityError(Exception):
    """Raised when an ID token fails validation."""


@dataclass(frozen=True)
class Identity:
    """An authenticated shopper. Collections are keyed by ``user_id``."""

    user_id: str
    email: str | None = None
    email_verified: bool = True


def identity_from_id_token(
    token: str,
    public_key_pem: str,
    *,
    audience: str | None = None,
    issuer: str | None = None,
    algorithms: Sequence[str] = ("RS256",),
) -> Identity:
    """Verify a signed ID token and return the identity it asserts.

    Args:
        token: The JWT issued by the identity service.
        public_key_pem: The signer's public key, bare base64 or full PEM.
        audience: Expected ``aud`` claim (the project id), if checked.
        issuer: Expected ``iss`` claim, if checked.
        algorithms: Accepted signing algorithms.

    Raises:
        IdentityError: On invalid, expired or tampered tokens, or tokens
            without a subject.
    """
    pem = normalize_public_key(public_key_pem)
    try:
        public_key = load_pem_public_key(pem.encode())
    except (ValueError, TypeError) as e:
        raise IdentityError(f"Invalid identity public key: {e}") from e

    options: dict[str, Any] = {"verify_aud": audience is not None}
    try:
        claims = jwt.decode(
            token,
            public_key,
            algorithms=list(algorithms),
            audience=audience,
            issuer=issuer,
            options=options,
        )
    except jwt.ExpiredSignatureError as e:
        raise IdentityError("ID token has expired.") from e
    except jwt.InvalidSignatureError as e:
        raise IdentityError("ID token signature is invalid.") from e
    except jwt.DecodeError as e:
        raise IdentityError(f"ID token could not be decoded: {e}") from e
    except jwt.InvalidTokenError as e:
        raise IdentityError(f"Invalid ID token: {e}") from e

    user_id = claims.get("user_id") or claims.get("sub")
    if not user_id:
        raise IdentityError("ID token missing sub claim.")

    return Identity(
        user_id=str(user_id),
        email=claims.get("email"),
        email_verified=bool(claims.get("email_verified", False)),
    )


class IdentityProvider:
    """Holds the current identity and notifies listeners on every emission.

    With ``require_verified_email`` (the default) an identity whose email
    is unverified is published as guest: unverified shoppers never get a
    remote collection.
    """

    def __init__(self, *, require_verified_email: bool = True) -> None:
        self._require_verified = require_verified_email
        self._current: Identity | None = None
        self._listeners: list[IdentityListener] = []

    @property
    def current(self) -> Identity | None:
        return self._current

    def subscribe(self, listener: IdentityListener) -> Callable[[], None]:
        """Register a listener; returns a callable that removes it."""
        self._listeners.append(listener)

        def _unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _unsubscribe

    async def set_identity(self, identity: Identity | None) -> None:
        """Publish a new identity (None for guest) to every listener."""
        if identity is not None and self._require_verified and not identity.email_verified:
            logger.info("Identity %s has an unverified email; treating as guest.", identity.user_id)
            identity = None
        self._current = identity
        for listener in list(self._listeners):
            try:
                await listener(identity)
            except Exception:
                logger.warning("Identity listener %r failed.", listener, exc_info=True)

    async def sign_in_with_token(
        self,
        token: str,
        public_key_pem: str,
        *,
        audience: str | None = None,
        issuer: str | None = None,
        algorithms: Sequence[str] = ("RS256",),
        on_verified: Callable[[Identity], None] | None = None,
    ) -> Identity | None:
        """Verify ``token`` and publish the identity it asserts.

        ``on_verified`` runs after verification and before any listener
        is notified. Returns the identity in effect afterwards, which is
        None when an unverified shopper was demoted to guest.

        Raises:
            IdentityError: If the token fails verification. The current
                identity is left untouched.
        """
        identity = identity_from_id_token(
            token,
            public_key_pem,
            audience=audience,
            issuer=issuer,
            algorithms=algorithms,
        )
        if on_verified is not None:
            on_verified(identity)
        await self.set_identity(identity)
        return self._current

    async def sign_out(self) -> None:
        await self.set_identity(None)
