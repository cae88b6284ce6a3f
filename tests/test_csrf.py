"""
tests/test_csrf.py -- Unit tests for CsrfTokenIssuer.

Runs against a real file-backed AuthStore so the "latest nonce wins" rule is
exercised through the same UPDATE the API uses. Time is driven by a fake
clock passed to the issuer.
"""

from __future__ import annotations

import base64
import time

import pytest

from auth.csrf import CsrfTokenIssuer
from auth.errors import Unauthenticated

KEY = b"k" * 32
OTHER_KEY = b"o" * 32


class _Clock:
    def __init__(self) -> None:
        self.now = time.time()

    def __call__(self) -> float:
        return self.now


@pytest.fixture
def clock() -> _Clock:
    return _Clock()


@pytest.fixture
def issuer(store, clock) -> CsrfTokenIssuer:
    return CsrfTokenIssuer(KEY, store, max_age_seconds=3600, clock=clock)


@pytest.fixture
def session(store, user):
    return store.create_session(user.id, ttl_seconds=7200)


def _decode(value: str) -> list[str]:
    padded = value + "=" * (-len(value) % 4)
    return base64.urlsafe_b64decode(padded).decode().split(".")


class TestIssue:
    def test_token_is_valid_for_its_session(self, issuer, session):
        token = issuer.issue(session)
        assert token.session_id == session.id
        assert issuer.validate(session.id, token.value) is True

    def test_expiry_is_issued_at_plus_max_age(self, issuer, session):
        token = issuer.issue(session)
        assert token.expires_at - token.issued_at == 3600

    def test_tokens_are_distinct_across_sessions(self, issuer, store, user):
        sessions = [store.create_session(user.id, ttl_seconds=7200) for _ in range(50)]
        values = {issuer.issue(s).value for s in sessions}
        assert len(values) == 50

    def test_reissue_for_one_session_changes_token(self, issuer, session):
        assert issuer.issue(session).value != issuer.issue(session).value

    def test_token_carries_a_256_bit_nonce(self, issuer, session):
        """token_urlsafe(32) encodes to 43 characters."""
        nonce, issued_at, signature = _decode(issuer.issue(session).value)
        assert len(nonce) >= 43
        assert issued_at.isdigit()
        assert len(signature) == 64

    def test_none_session_raises(self, issuer):
        with pytest.raises(Unauthenticated):
            issuer.issue(None)

    def test_revoked_session_raises(self, issuer, store, session):
        store.revoke_session(session.id)
        with pytest.raises(Unauthenticated):
            issuer.issue(store.get_session(session.id))

    def test_expired_session_raises(self, issuer, store, user, clock):
        short = store.create_session(user.id, ttl_seconds=5)
        clock.now += 10
        with pytest.raises(Unauthenticated):
            issuer.issue(short)

    def test_session_revoked_after_lookup_raises(self, issuer, store, session):
        """The in-memory Session still looks active; the store refuses the nonce."""
        store.revoke_session(session.id)
        with pytest.raises(Unauthenticated):
            issuer.issue(session)


class TestValidate:
    def test_new_token_supersedes_previous(self, issuer, session):
        first = issuer.issue(session)
        second = issuer.issue(session)
        assert issuer.validate(session.id, first.value) is False
        assert issuer.validate(session.id, second.value) is True

    def test_token_is_reusable_within_its_window(self, issuer, session):
        token = issuer.issue(session)
        assert issuer.validate(session.id, token.value) is True
        assert issuer.validate(session.id, token.value) is True

    def test_expired_token_rejected(self, issuer, session, clock):
        token = issuer.issue(session)
        clock.now += 3601
        assert issuer.validate(session.id, token.value) is False

    def test_token_just_inside_window_accepted(self, issuer, session, clock):
        token = issuer.issue(session)
        clock.now += 3599
        assert issuer.validate(session.id, token.value) is True

    def test_future_dated_token_rejected(self, issuer, session, clock):
        clock.now += 3600
        token = issuer.issue(session)
        clock.now -= 3600
        assert issuer.validate(session.id, token.value) is False

    def test_token_from_another_session_rejected(self, issuer, store, user, session):
        other = store.create_session(user.id, ttl_seconds=7200)
        token = issuer.issue(session)
        issuer.issue(other)
        assert issuer.validate(other.id, token.value) is False

    def test_revoked_session_rejects_its_token(self, issuer, store, session):
        token = issuer.issue(session)
        store.revoke_session(session.id)
        assert issuer.validate(session.id, token.value) is False

    @pytest.mark.parametrize(
        "value",
        [
            "",
            None,
            "not base64 !!",
            base64.urlsafe_b64encode(b"only.two").decode(),
            base64.urlsafe_b64encode(b"a.b.c.d").decode(),
            base64.urlsafe_b64encode(b"nonce.notanumber.sig").decode(),
            base64.urlsafe_b64encode(b"\xff\xfe\xfd").decode(),
            "A" * 600,
        ],
    )
    def test_malformed_tokens_rejected(self, issuer, session, value):
        issuer.issue(session)
        assert issuer.validate(session.id, value) is False

    def test_tampered_signature_rejected(self, issuer, session):
        nonce, issued_at, signature = _decode(issuer.issue(session).value)
        flipped = ("0" if signature[0] != "0" else "1") + signature[1:]
        forged = base64.urlsafe_b64encode(f"{nonce}.{issued_at}.{flipped}".encode()).decode()
        assert issuer.validate(session.id, forged) is False

    def test_missing_session_id_rejected(self, issuer, session):
        token = issuer.issue(session)
        assert issuer.validate(None, token.value) is False
        assert issuer.validate("", token.value) is False


class TestKeys:
    def test_short_key_rejected(self, store):
        with pytest.raises(ValueError):
            CsrfTokenIssuer(b"short", store)

    def test_non_positive_max_age_rejected(self, store):
        with pytest.raises(ValueError):
            CsrfTokenIssuer(KEY, store, max_age_seconds=0)

    def test_rotation_invalidates_old_tokens(self, issuer, session):
        token = issuer.issue(session)
        rotated = issuer.rotated(OTHER_KEY)
        assert rotated.max_age_seconds == issuer.max_age_seconds
        assert rotated.validate(session.id, token.value) is False
        assert rotated.validate(session.id, rotated.issue(session).value) is True
