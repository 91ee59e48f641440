#!/usr/bin/env python3
"""Mint a signed ID token for local development.

Generates an RSA keypair and an RS256 ID token for the given user id, so a
storefront running against in-memory stores can exercise sign-in:

  - Set ``SyncConfig.token_public_key`` to the printed public key
  - Pass the printed token to ``StorefrontContext.sign_in()``

Usage: mint_dev_token.py USER_ID [EMAIL]
"""

from __future__ import annotations

import sys
import time

import jwt
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import rsa


def main() -> None:
    if len(sys.argv) < 2:
        print(__doc__, file=sys.stderr)
        sys.exit(1)
    user_id = sys.argv[1]
    email = sys.argv[2] if len(sys.argv) > 2 else f"{user_id}@example.com"

    private_key = rsa.generate_private_key(public_exponent=65537, key_size=2048)
    public_pem = private_key.public_key().public_bytes(
        serialization.Encoding.PEM,
        serialization.PublicFormat.SubjectPublicKeyInfo,
    ).decode()

    now = int(time.time())
    token = jwt.encode(
        {
            "sub": user_id,
            "user_id": user_id,
            "email": email,
            "email_verified": True,
            "iat": now,
            "exp": now + 3600,
        },
        private_key,
        algorithm="RS256",
    )

    print("=== Development ID token ===")
    print()
    print("public key (SyncConfig.token_public_key):")
    print(public_pem)
    print("token (valid for one hour):")
    print(f"  {token}")


if __name__ == "__main__":
    main()
