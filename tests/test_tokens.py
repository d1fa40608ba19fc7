"""Unit tests for auth/tokens.py -- TokenCodec issue/verify.

Covers:
- issue() then verify() returns the same subject, id, role and kind
- iat / exp are stamped from the injected clock (whole seconds)
- two tokens minted in the same second differ (jti)
- tampered payload or foreign secret -> TokenSignatureInvalid
- wrong segment count or undecodable header -> TokenMalformed
- validly signed but incomplete claim set -> TokenMalformed
- exp <= now -> TokenExpired, one minute earlier still valid
- expect_kind() rejects the other kind
- secrets shorter than 32 characters are refused
"""

from datetime import timedelta

import pytest
from jose import jwt

from auth.errors import InvalidToken, TokenExpired, TokenMalformed, TokenSignatureInvalid
from auth.models import Identity, Role, TokenKind
from auth.tokens import TokenCodec, claims_for, expect_kind


@pytest.fixture
def identity():
    return Identity(email="alice@example.com", handle="alice", hashed_password="x", role=Role.MANAGER, id=7)


class TestIssueAndVerify:
    def test_round_trip_preserves_claims(self, codec, clock, identity):
        token = codec.issue(claims_for(identity, TokenKind.ACCESS), timedelta(hours=1))
        claims = codec.verify(token)
        assert claims.subject == "alice"
        assert claims.identity_id == 7
        assert claims.role is Role.MANAGER
        assert claims.kind is TokenKind.ACCESS
        assert claims.issued_at == clock.now
        assert claims.expires_at == clock.now + timedelta(hours=1)

    def test_token_is_three_segment_compact_form(self, codec, identity):
        token = codec.issue(claims_for(identity, TokenKind.REFRESH), timedelta(days=7))
        assert token.count(".") == 2
        assert codec.verify(token).kind is TokenKind.REFRESH

    def test_same_second_tokens_are_distinct(self, codec, identity):
        a = codec.issue(claims_for(identity, TokenKind.REFRESH), timedelta(days=7))
        b = codec.issue(claims_for(identity, TokenKind.REFRESH), timedelta(days=7))
        assert a != b
        assert codec.verify(a).token_id != codec.verify(b).token_id

    def test_claims_for_unsaved_identity_rejected(self):
        with pytest.raises(ValueError):
            claims_for(Identity(email="a@x.com", handle="a", hashed_password="x"), TokenKind.ACCESS)


class TestVerifyFailures:
    def test_foreign_secret_is_signature_invalid(self, codec, clock, identity):
        other = TokenCodec("another-secret-key-that-is-long-enough-000", clock=clock)
        token = other.issue(claims_for(identity, TokenKind.ACCESS), timedelta(hours=1))
        with pytest.raises(TokenSignatureInvalid):
            codec.verify(token)

    def test_swapped_payload_is_signature_invalid(self, codec, identity):
        token = codec.issue(claims_for(identity, TokenKind.ACCESS), timedelta(hours=1))
        admin = Identity(email="root@example.com", handle="root", hashed_password="x", role=Role.ADMINISTRATOR, id=1)
        forged = codec.issue(claims_for(admin, TokenKind.ACCESS), timedelta(hours=1))
        header, _, signature = token.split(".")
        tampered = ".".join([header, forged.split(".")[1], signature])
        with pytest.raises(TokenSignatureInvalid):
            codec.verify(tampered)

    @pytest.mark.parametrize("token", ["", "not-a-token", "a.b", "a.b.c.d", "a.b.c"])
    def test_malformed_tokens(self, codec, token):
        with pytest.raises(TokenMalformed):
            codec.verify(token)

    def test_incomplete_claims_are_malformed(self, codec, token_secret):
        token = jwt.encode({"sub": "alice"}, token_secret, algorithm="HS256")
        with pytest.raises(TokenMalformed):
            codec.verify(token)

    def test_unknown_role_is_malformed(self, codec, token_secret):
        payload = {"sub": "alice", "uid": 7, "role": "ROOT", "kind": "ACCESS", "iat": 0, "exp": 4102444800}
        token = jwt.encode(payload, token_secret, algorithm="HS256")
        with pytest.raises(TokenMalformed):
            codec.verify(token)

    def test_expiry_boundary(self, codec, clock, identity):
        token = codec.issue(claims_for(identity, TokenKind.ACCESS), timedelta(hours=1))
        clock.advance(minutes=59)
        assert codec.verify(token).identity_id == 7
        clock.advance(minutes=1)
        with pytest.raises(TokenExpired):
            codec.verify(token)

    def test_errors_never_echo_secret_or_token(self, codec, clock, identity, token_secret):
        token = codec.issue(claims_for(identity, TokenKind.ACCESS), timedelta(hours=1))
        clock.advance(hours=2)
        with pytest.raises(TokenExpired) as excinfo:
            codec.verify(token)
        assert token_secret not in str(excinfo.value)
        assert token not in str(excinfo.value)


class TestKindAndSecret:
    def test_expect_kind_mismatch(self, codec, identity):
        claims = codec.verify(codec.issue(claims_for(identity, TokenKind.REFRESH), timedelta(days=1)))
        with pytest.raises(InvalidToken):
            expect_kind(claims, TokenKind.ACCESS)
        assert expect_kind(claims, TokenKind.REFRESH) is claims

    def test_short_secret_refused(self):
        with pytest.raises(ValueError):
            TokenCodec("too-short")
