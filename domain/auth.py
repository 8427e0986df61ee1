"""Credential hashing and signed bearer tokens."""
import base64
from datetime import datetime, timedelta, timezone
import hashlib
import hmac
import json
import secrets

from domain.errors import AuthenticationError
from domain.models import Member


PBKDF2_ITERATIONS = 240_000
MIN_PASSWORD_LENGTH = 6


def hash_password(password: str, *, salt: str | None = None) -> str:
    salt = secrets.token_hex(16) if salt is None else salt
    digest = hashlib.pbkdf2_hmac(
        "sha256", password.encode("utf-8"), salt.encode("utf-8"), PBKDF2_ITERATIONS
    )
    return f"pbkdf2_sha256${PBKDF2_ITERATIONS}${salt}${digest.hex()}"


def verify_password(password: str, password_hash: str) -> bool:
    try:
        _, iterations, salt, expected = password_hash.split("$")
    except ValueError:
        return False
    digest = hashlib.pbkdf2_hmac(
        "sha256", password.encode("utf-8"), salt.encode("utf-8"), int(iterations)
    )
    return hmac.compare_digest(digest.hex(), expected)


def _b64encode(raw: bytes) -> str:
    return base64.urlsafe_b64encode(raw).rstrip(b"=").decode("ascii")


def _b64decode(text: str) -> bytes:
    return base64.urlsafe_b64decode(text + "=" * (-len(text) % 4))


class TokenAuthority:
    """Issues and verifies HMAC-signed `<payload>.<signature>` tokens."""

    def __init__(self, secret_key: str, *, ttl: timedelta = timedelta(hours=10)) -> None:
        if not secret_key:
            raise ValueError("A secret key is required to sign tokens.")
        self._key = secret_key.encode("utf-8")
        self.ttl = ttl

    def _sign(self, payload: str) -> str:
        mac = hmac.new(self._key, payload.encode("utf-8"), hashlib.sha256)
        return _b64encode(mac.digest())

    def issue(self, member: Member, *, now: datetime | None = None) -> str:
        now = datetime.now(timezone.utc) if now is None else now
        claims = {
            "sub": member.id,
            "name": member.name,
            "exp": int((now + self.ttl).timestamp()),
        }
        payload = _b64encode(json.dumps(claims, separators=(",", ":")).encode("utf-8"))
        return f"{payload}.{self._sign(payload)}"

    def verify(self, token: str, *, now: datetime | None = None) -> str:
        """Return the member id the token was issued to."""
        now = datetime.now(timezone.utc) if now is None else now
        payload, _, signature = token.partition(".")
        if not payload or not signature:
            raise AuthenticationError("Malformed token.")
        if not hmac.compare_digest(signature, self._sign(payload)):
            raise AuthenticationError("Invalid token.")
        try:
            claims = json.loads(_b64decode(payload))
        except ValueError as e:
            raise AuthenticationError("Malformed token.") from e
        if claims.get("exp", 0) < now.timestamp():
            raise AuthenticationError("Token has expired.")
        return claims["sub"]
