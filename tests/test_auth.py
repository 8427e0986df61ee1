from datetime import datetime, timedelta, timezone

import pytest

from domain.auth import TokenAuthority, hash_password, verify_password
from domain.errors import AuthenticationError
from domain.models import Member


ALICE = Member(id="id-alice", name="Alice", email="alice@ramen.road", password_hash="x")
NOW = datetime(2024, 5, 1, 12, tzinfo=timezone.utc)


def test_password_round_trip() -> None:
    hashed = hash_password("noodles")
    assert hashed != "noodles"
    assert verify_password("noodles", hashed)
    assert not verify_password("udon", hashed)


def test_password_hashes_are_salted() -> None:
    assert hash_password("noodles") != hash_password("noodles")


def test_garbage_hash_never_verifies() -> None:
    assert not verify_password("noodles", "not-a-hash")


def test_token_names_its_member() -> None:
    authority = TokenAuthority("secret")
    token = authority.issue(ALICE, now=NOW)
    assert authority.verify(token, now=NOW + timedelta(hours=9)) == ALICE.id


def test_token_expires() -> None:
    authority = TokenAuthority("secret", ttl=timedelta(hours=10))
    token = authority.issue(ALICE, now=NOW)
    with pytest.raises(AuthenticationError, match="expired"):
        authority.verify(token, now=NOW + timedelta(hours=11))


@pytest.mark.parametrize("mangle", (lambda t: t + "x", lambda t: "x" + t, lambda t: ""))
def test_tampered_tokens_are_rejected(mangle) -> None:
    authority = TokenAuthority("secret")
    token = authority.issue(ALICE, now=NOW)
    with pytest.raises(AuthenticationError):
        authority.verify(mangle(token), now=NOW)


def test_token_from_another_key_is_rejected() -> None:
    token = TokenAuthority("secret").issue(ALICE, now=NOW)
    with pytest.raises(AuthenticationError):
        TokenAuthority("other").verify(token, now=NOW)


def test_secret_key_is_required() -> None:
    with pytest.raises(ValueError):
        TokenAuthority("")
