"""Unit tests for auth/gate.py -- principal derivation and allow/deny checks.

Covers:
- authenticate(): missing, malformed, foreign, expired and refresh-kind
  tokens all yield an anonymous caller (None); a valid access token yields a
  Principal carrying id, handle and role
- require_role(): membership in ADMIN_ONLY / STAFF
- require_permission(): re-reads the identity, so a flag granted or removed
  after token issuance takes effect on the next check
- permission_granted(): every Permission member maps to a flag
"""

import dataclasses
from datetime import timedelta

import pytest

from auth.errors import AuthorizationError
from auth.gate import (
    ADMIN_ONLY,
    STAFF,
    Permission,
    Principal,
    authenticate,
    permission_granted,
    require_permission,
    require_role,
)
from auth.models import AccountStatus, Identity, Role, TokenKind
from auth.result import Err, Ok
from auth.tokens import TokenCodec, claims_for


class TestAuthenticate:
    def test_valid_access_token(self, codec, make_identity):
        identity = make_identity(email="alice@example.com", role=Role.MANAGER)
        token = codec.issue(claims_for(identity, TokenKind.ACCESS), timedelta(hours=1))
        assert authenticate(codec, token) == Principal(identity_id=identity.id, handle="alice", role=Role.MANAGER)

    @pytest.mark.parametrize("token", [None, "", "garbage", "a.b.c"])
    def test_unusable_tokens_are_anonymous(self, codec, token):
        assert authenticate(codec, token) is None

    def test_refresh_token_never_authorizes(self, codec, make_identity):
        identity = make_identity()
        token = codec.issue(claims_for(identity, TokenKind.REFRESH), timedelta(days=7))
        assert authenticate(codec, token) is None

    def test_expired_access_token(self, codec, clock, make_identity):
        token = codec.issue(claims_for(make_identity(), TokenKind.ACCESS), timedelta(hours=1))
        clock.advance(hours=1)
        assert authenticate(codec, token) is None

    def test_foreign_secret(self, codec, clock, make_identity):
        other = TokenCodec("a-completely-different-signing-secret-42", clock=clock)
        token = other.issue(claims_for(make_identity(), TokenKind.ACCESS), timedelta(hours=1))
        assert authenticate(codec, token) is None


class TestRequireRole:
    @pytest.mark.parametrize(
        "role,allowed,ok",
        [
            (Role.ADMINISTRATOR, ADMIN_ONLY, True),
            (Role.MANAGER, ADMIN_ONLY, False),
            (Role.STANDARD_USER, ADMIN_ONLY, False),
            (Role.ADMINISTRATOR, STAFF, True),
            (Role.MANAGER, STAFF, True),
            (Role.STANDARD_USER, STAFF, False),
        ],
    )
    def test_role_membership(self, role, allowed, ok):
        principal = Principal(identity_id=1, handle="x", role=role)
        result = require_role(principal, allowed)
        if ok:
            assert isinstance(result, Ok)
            assert result.value is principal
        else:
            assert isinstance(result, Err)
            assert isinstance(result.error, AuthorizationError)
            assert result.error.status_code == 403


class TestRequirePermission:
    def test_flag_set(self, identity_store, make_identity):
        identity = make_identity(can_view_reports=True)
        principal = Principal(identity_id=identity.id, handle=identity.handle, role=identity.role)
        result = require_permission(identity_store, principal, Permission.VIEW_REPORTS)
        assert result.unwrap().id == identity.id

    def test_flag_missing(self, identity_store, make_identity):
        identity = make_identity(can_view_reports=True)
        principal = Principal(identity_id=identity.id, handle=identity.handle, role=identity.role)
        result = require_permission(identity_store, principal, Permission.MANAGE_SETTINGS)
        assert isinstance(result.error, AuthorizationError)

    def test_role_does_not_imply_flags(self, identity_store, make_identity):
        identity = make_identity(role=Role.ADMINISTRATOR)
        principal = Principal(identity_id=identity.id, handle=identity.handle, role=identity.role)
        assert isinstance(require_permission(identity_store, principal, Permission.MANAGE_IDENTITIES), Err)

    def test_flag_change_after_issuance_is_seen(self, identity_store, codec, make_identity):
        identity = make_identity()
        token = codec.issue(claims_for(identity, TokenKind.ACCESS), timedelta(hours=1))
        principal = authenticate(codec, token)
        assert isinstance(require_permission(identity_store, principal, Permission.VIEW_REPORTS), Err)

        identity_store.save(dataclasses.replace(identity, can_view_reports=True))
        assert isinstance(require_permission(identity_store, principal, Permission.VIEW_REPORTS), Ok)

        identity_store.save(dataclasses.replace(identity, can_view_reports=False))
        assert isinstance(require_permission(identity_store, principal, Permission.VIEW_REPORTS), Err)

    def test_inactive_identity_denied(self, identity_store, make_identity):
        identity = make_identity(status=AccountStatus.SUSPENDED, can_manage_settings=True)
        principal = Principal(identity_id=identity.id, handle=identity.handle, role=identity.role)
        assert isinstance(require_permission(identity_store, principal, Permission.MANAGE_SETTINGS), Err)

    def test_deleted_identity_denied(self, identity_store):
        principal = Principal(identity_id=999, handle="ghost", role=Role.ADMINISTRATOR)
        assert isinstance(require_permission(identity_store, principal, Permission.VIEW_REPORTS), Err)


@pytest.mark.parametrize("permission", list(Permission))
def test_every_permission_maps_to_a_flag(permission):
    granted = Identity(
        email="a@x.com",
        handle="a",
        hashed_password="x",
        can_manage_identities=True,
        can_view_reports=True,
        can_manage_settings=True,
    )
    denied = Identity(email="b@x.com", handle="b", hashed_password="x")
    assert permission_granted(granted, permission) is True
    assert permission_granted(denied, permission) is False
