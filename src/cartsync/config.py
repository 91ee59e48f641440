"""Settings for a storefront's cart and wishlist sync.

Leaving ``firebase_project_id`` unset keeps remote collections in memory;
leaving ``cache_dir`` unset keeps guest collections in memory. Token
sign-in needs ``token_public_key``.
"""

from dataclasses import dataclass


@dataclass(frozen=True)
class SyncConfig:
    firebase_project_id: str | None = None
    firebase_api_key: str | None = None
    database_id: str = "(default)"
    cache_dir: str | None = None
    poll_interval_secs: float = 5.0
    request_timeout_secs: float = 15.0
    token_public_key: str | None = None
    token_audience: str | None = None
    token_issuer: str | None = None
    token_algorithms: tuple[str, ...] = ("RS256",)
    require_verified_email: bool = True
