"""Tests for dermacheck.services.auth_provider module."""

import json
from unittest.mock import MagicMock

import pytest

from dermacheck.core.errors import AuthError, AuthErrorKind
from dermacheck.schemas.auth import Identity
from dermacheck.services.auth_provider import (
    LocalAuthProvider,
    SupabaseAuthProvider,
    classify_provider_error,
    get_auth_provider,
    translate_provider_error,
)


class CodedError(Exception):
    def __init__(self, message, code=None):
        super().__init__(message)
        self.code = code


def _user(user_id="sb-1", email="dana@example.com", metadata=None):
    user = MagicMock()
    user.id = user_id
    user.email = email
    user.user_metadata = metadata or {}
    return user


@pytest.fixture
def local(tmp_path):
    return LocalAuthProvider(tmp_path)


class TestLocalAuthProvider:
    def test_register_then_login(self, local):
        registered = local.sign_up("Dana", "Dana@Example.com", "secret123")

        identity = local.sign_in("dana@example.com", "secret123")

        assert identity == registered.identity
        assert identity.email == "dana@example.com"
        assert identity.display_name == "Dana"

    def test_passwords_are_hashed(self, local):
        local.sign_up("Dana", "dana@example.com", "secret123")
        stored = json.loads(local.path.read_text(encoding="utf-8"))["accounts"][0]
        assert "secret123" not in json.dumps(stored)
        assert stored["password_hash"].startswith("$2")

    def test_duplicate_email(self, local):
        local.sign_up("Dana", "dana@example.com", "secret123")
        with pytest.raises(AuthError) as excinfo:
            local.sign_up("Dana again", "DANA@example.com", "secret456")
        assert excinfo.value.kind is AuthErrorKind.ALREADY_REGISTERED

    @pytest.mark.parametrize("email,password", [("dana@example.com", "wrong"), ("nobody@example.com", "secret123")])
    def test_bad_credentials(self, local, email, password):
        local.sign_up("Dana", "dana@example.com", "secret123")
        with pytest.raises(AuthError) as excinfo:
            local.sign_in(email, password)
        assert excinfo.value.kind is AuthErrorKind.INVALID_CREDENTIALS

    def test_has_no_session_of_its_own(self, local):
        assert local.current_identity() is None
        assert local.hosted is False


class TestErrorClassification:
    @pytest.mark.parametrize(
        "message,kind",
        [
            ("User already registered", AuthErrorKind.ALREADY_REGISTERED),
            ("A user with this email address already exists", AuthErrorKind.ALREADY_REGISTERED),
            ("Invalid login credentials", AuthErrorKind.INVALID_CREDENTIALS),
            ("Email not confirmed", AuthErrorKind.PENDING_CONFIRMATION),
            ("Password should be at least 6 characters.", AuthErrorKind.WEAK_PASSWORD),
            ("Unable to validate email address: invalid format", AuthErrorKind.INVALID_EMAIL),
            ("Database error saving new user", AuthErrorKind.GENERIC),
        ],
    )
    def test_by_message(self, message, kind):
        assert classify_provider_error(message) is kind

    def test_code_takes_precedence(self):
        assert classify_provider_error("something odd", "user_already_exists") is AuthErrorKind.ALREADY_REGISTERED

    def test_weak_password_keeps_provider_wording(self):
        error = translate_provider_error(CodedError("Password should contain a digit", "weak_password"))
        assert error.kind is AuthErrorKind.WEAK_PASSWORD
        assert error.message == "Password should contain a digit"

    def test_known_kinds_use_friendly_text(self):
        error = translate_provider_error(CodedError("User already registered"))
        assert error.message == "User already exists with this email."


class TestSupabaseAuthProvider:
    @pytest.fixture
    def client(self):
        return MagicMock()

    def test_sign_in(self, client):
        client.auth.sign_in_with_password.return_value = MagicMock(user=_user(metadata={"full_name": "Dana Scully"}))

        identity = SupabaseAuthProvider(client).sign_in("dana@example.com", "secret123")

        assert identity == Identity(id="sb-1", email="dana@example.com", display_name="Dana Scully")
        client.auth.sign_in_with_password.assert_called_once_with({"email": "dana@example.com", "password": "secret123"})

    def test_sign_up_pending_confirmation(self, client):
        client.auth.sign_up.return_value = MagicMock(user=_user(), session=None)

        result = SupabaseAuthProvider(client).sign_up("Dana", "dana@example.com", "secret123")

        assert result.pending_confirmation
        assert result.identity is None
        options = client.auth.sign_up.call_args.args[0]["options"]
        assert options == {"data": {"full_name": "Dana", "name": "Dana"}}

    def test_sign_up_with_session(self, client):
        client.auth.sign_up.return_value = MagicMock(user=_user(metadata={"name": "Dana"}), session=MagicMock())
        result = SupabaseAuthProvider(client).sign_up("Dana", "dana@example.com", "secret123")
        assert result.identity.display_name == "Dana"

    def test_current_identity(self, client):
        client.auth.get_session.return_value = MagicMock(user=_user())
        assert SupabaseAuthProvider(client).current_identity().display_name == "dana"

    def test_no_current_session(self, client):
        client.auth.get_session.return_value = None
        assert SupabaseAuthProvider(client).current_identity() is None

    def test_subscribe_forwards_events(self, client):
        received = []
        subscription = MagicMock()
        client.auth.on_auth_state_change.return_value = subscription

        unsubscribe = SupabaseAuthProvider(client).subscribe(received.append)
        on_change = client.auth.on_auth_state_change.call_args.args[0]
        on_change("SIGNED_IN", MagicMock(user=_user()))
        on_change("SIGNED_OUT", None)
        unsubscribe()

        assert received[0].id == "sb-1"
        assert received[1] is None
        subscription.unsubscribe.assert_called_once()


class TestIdentityFromProvider:
    @pytest.mark.parametrize(
        "email,metadata,expected",
        [
            ("dana@example.com", {"full_name": "Dana Scully", "name": "D"}, "Dana Scully"),
            ("dana@example.com", {"name": "D"}, "D"),
            ("dana@example.com", {}, "dana"),
            (None, None, "User"),
        ],
    )
    def test_display_name(self, email, metadata, expected):
        assert Identity.from_provider_user("id-1", email, metadata).display_name == expected


def test_local_provider_used_without_hosted_config(settings):
    assert isinstance(get_auth_provider(settings), LocalAuthProvider)
