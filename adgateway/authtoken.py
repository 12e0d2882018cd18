"""Signed bearer tokens that carry some claims encrypted.

The token is an HS256 JWT. Claims passed as `encrypted_claims` are AES-GCM encrypted
under the same key and stored as `enc-<name>`; `validate_token` decrypts them back under
their plain names. Key = SHA-256(secret).
"""
from __future__ import annotations

from typing import Any, Mapping
import base64
import binascii
import hashlib
import os
import time

import jwt
from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

ENCRYPTED_CLAIM_PREFIX = "enc-"
SIGNING_ALGORITHM = "HS256"
# set by sign_token itself; callers may not supply them as plain claims
REGISTERED_CLAIMS = frozenset({"nbf", "iss", "aud", "exp"})
HMAC_ALGORITHMS = ("HS256", "HS384", "HS512")
NONCE_SIZE = 12


class TokenError(Exception):
    """Token could not be signed, verified or decrypted."""


def _hash_key(secret: str) -> bytes:
    return hashlib.sha256(secret.encode("utf-8")).digest()


def _b64encode(data: bytes) -> str:
    return base64.b64encode(data).decode("ascii").rstrip("=")


def _b64decode(text: str) -> bytes:
    pad = "=" * (-len(text) % 4)
    return base64.b64decode((text + pad).encode("ascii"), validate=True)


def _serialize(name: str, value: Any) -> bytes:
    # bool is an int subclass but has no agreed text form here.
    if isinstance(value, bool):
        raise TokenError(f"unable to encrypt claim: {name}: unsupported type")
    if isinstance(value, str):
        return value.encode("utf-8")
    if isinstance(value, (bytes, bytearray)):
        return bytes(value)
    if isinstance(value, int):
        return str(value).encode("ascii")
    if isinstance(value, float):
        return repr(value).encode("ascii")
    raise TokenError(f"unable to encrypt claim: {name}: unsupported type")


def encrypt(key: bytes, plaintext: bytes) -> str:
    nonce = os.urandom(NONCE_SIZE)
    return _b64encode(nonce + AESGCM(key).encrypt(nonce, plaintext, None))


def decrypt(key: bytes, ciphertext: str) -> bytes:
    try:
        raw = _b64decode(ciphertext)
    except (binascii.Error, ValueError) as e:
        raise TokenError(f"could not decode cipher: {e}") from e

    if len(raw) < NONCE_SIZE:
        raise TokenError("ciphertext too short")

    try:
        return AESGCM(key).decrypt(raw[:NONCE_SIZE], raw[NONCE_SIZE:], None)
    except InvalidTag as e:
        raise TokenError("message authentication failed") from e


def sign_token(
    secret: str,
    issuer: str,
    audience: str,
    plain_claims: Mapping[str, Any] | None = None,
    encrypted_claims: Mapping[str, Any] | None = None,
    expires_in: int | None = None,
) -> str:
    """Sign a token with plain and encrypted claims.

    `encrypted_claims` values must be str, bytes, int or float.
    `expires_in` (seconds) adds an `exp` claim.
    """
    key = _hash_key(secret)
    now = int(time.time())

    claims: dict[str, Any] = {}
    for k, v in (plain_claims or {}).items():
        if k.startswith(ENCRYPTED_CLAIM_PREFIX):
            raise TokenError(
                f"claim: {k}: cannot have '{ENCRYPTED_CLAIM_PREFIX}' prefix: this is reserved for encrypted claims"
            )
        if k in REGISTERED_CLAIMS:
            raise TokenError(f"claim: {k}: reserved, set by the signer")
        claims[k] = v

    claims.update(nbf=now, iss=issuer, aud=audience)
    if expires_in:
        claims["exp"] = now + int(expires_in)

    for k, v in (encrypted_claims or {}).items():
        claims[ENCRYPTED_CLAIM_PREFIX + k] = encrypt(key, _serialize(k, v))

    try:
        return jwt.encode(claims, key, algorithm=SIGNING_ALGORITHM)
    except (TypeError, ValueError) as e:
        raise TokenError(f"could not sign token: {e}") from e


def validate_token(secret: str, issuer: str, audience: str, token: str) -> dict[str, Any]:
    """Verify the token and return its claims with encrypted ones decrypted.

    Decrypted values come back as str (or bytes when they are not valid UTF-8).
    """
    key = _hash_key(secret)

    try:
        header = jwt.get_unverified_header(token)
    except jwt.PyJWTError as e:
        raise TokenError(f"token validation failed: {e}") from e

    alg = header.get("alg")
    if alg not in HMAC_ALGORITHMS:
        raise TokenError(f"unexpected signing method: {alg}")

    try:
        token_claims = jwt.decode(
            token,
            key,
            algorithms=list(HMAC_ALGORITHMS),
            audience=audience,
            issuer=issuer,
            options={"require": ["nbf", "iss", "aud"]},
        )
    except jwt.ImmatureSignatureError as e:
        raise TokenError("token not yet valid") from e
    except jwt.InvalidIssuerError as e:
        raise TokenError("token issuer invalid") from e
    except jwt.InvalidAudienceError as e:
        raise TokenError("token invalid audience") from e
    except jwt.PyJWTError as e:
        raise TokenError(f"token validation failed: {e}") from e

    claims: dict[str, Any] = {}
    for k, v in token_claims.items():
        if not k.startswith(ENCRYPTED_CLAIM_PREFIX):
            claims[k] = v
            continue

        if not isinstance(v, str):
            raise TokenError(f"unable to decrypt claim: {k}: not a string")
        try:
            bs = decrypt(key, v)
        except TokenError as e:
            raise TokenError(f"unable to decrypt claim: {k}: {e}") from e

        try:
            claims[k[len(ENCRYPTED_CLAIM_PREFIX):]] = bs.decode("utf-8")
        except UnicodeDecodeError:
            claims[k[len(ENCRYPTED_CLAIM_PREFIX):]] = bs

    return claims
