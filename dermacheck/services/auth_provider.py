"""Auth provider adapters: hosted Supabase auth, or a local account file."""
from __future__ import annotations

import json
import logging
import threading
import uuid
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

import bcrypt
from supabase import AuthError as ProviderAuthError
from supabase import Client, create_client

from dermacheck.core.config import Settings
from dermacheck.core.errors import AuthError, AuthErrorKind
from dermacheck.schemas.auth import Identity, RegistrationResult

LOGGER = logging.getLogger(__name__)

IdentityCallback = Callable[[Optional[Identity]], None]
Unsubscribe = Callable[[], None]

# Provider error codes first, message fragments as a fallback for older servers.
_CODE_KINDS = {
    "invalid_credentials": AuthErrorKind.INVALID_CREDENTIALS,
    "user_already_exists": AuthErrorKind.ALREADY_REGISTERED,
    "email_exists": AuthErrorKind.ALREADY_REGISTERED,
    "weak_password": AuthErrorKind.WEAK_PASSWORD,
    "email_address_invalid": AuthErrorKind.INVALID_EMAIL,
    "validation_failed": AuthErrorKind.INVALID_EMAIL,
    "email_not_confirmed": AuthErrorKind.PENDING_CONFIRMATION,
}
_MESSAGE_KINDS = (
    ("already registered", AuthErrorKind.ALREADY_REGISTERED),
    ("already exists", AuthErrorKind.ALREADY_REGISTERED),
    ("invalid login credentials", AuthErrorKind.INVALID_CREDENTIALS),
    ("email not confirmed", AuthErrorKind.PENDING_CONFIRMATION),
    ("password", AuthErrorKind.WEAK_PASSWORD),
    ("email", AuthErrorKind.INVALID_EMAIL),
)


def classify_provider_error(message: str, code: Optional[str] = None) -> AuthErrorKind:
    if code and code in _CODE_KINDS:
        return _CODE_KINDS[code]
    lowered = (message or "").lower()
    for fragment, kind in _MESSAGE_KINDS:
        if fragment in lowered:
            return kind
    return AuthErrorKind.GENERIC


def translate_provider_error(exc: Exception) -> AuthError:
    message = str(exc)
    kind = classify_provider_error(message, getattr(exc, "code", None))
    # Password and generic failures keep the provider's own wording.
    if kind in (AuthErrorKind.WEAK_PASSWORD, AuthErrorKind.GENERIC) and message:
        return AuthError(kind, message)
    return AuthError(kind)


class AuthProvider:
    """Interface the Session Store talks to.

    ``hosted`` providers own the session; for local ones the Session Store
    restores from its durable record instead.
    """

    hosted = False

    def current_identity(self) -> Optional[Identity]:
        raise NotImplementedError

    def sign_in(self, email: str, password: str) -> Identity:
        raise NotImplementedError

    def sign_up(self, display_name: str, email: str, password: str) -> RegistrationResult:
        raise NotImplementedError

    def sign_out(self) -> None:
        raise NotImplementedError

    def subscribe(self, callback: IdentityCallback) -> Unsubscribe:
        """Forward provider-side session changes; returns the unsubscribe handle."""
        return lambda: None


def _identity_from_user(user: Any) -> Identity:
    return Identity.from_provider_user(user.id, user.email, user.user_metadata)


class SupabaseAuthProvider(AuthProvider):
    hosted = True

    def __init__(self, client: Client) -> None:
        self.client = client

    @classmethod
    def from_settings(cls, settings: Settings) -> "SupabaseAuthProvider":
        return cls(create_client(settings.SUPABASE_URL, settings.SUPABASE_ANON_KEY))

    def current_identity(self) -> Optional[Identity]:
        try:
            session = self.client.auth.get_session()
        except ProviderAuthError as exc:
            LOGGER.warning("Could not restore provider session: %s", exc)
            return None
        if session is None or session.user is None:
            return None
        return _identity_from_user(session.user)

    def sign_in(self, email: str, password: str) -> Identity:
        try:
            res = self.client.auth.sign_in_with_password({"email": email, "password": password})
        except ProviderAuthError as exc:
            LOGGER.info("Login rejected by provider: %s", exc)
            raise translate_provider_error(exc) from exc
        if res.user is None:
            raise AuthError(AuthErrorKind.INVALID_CREDENTIALS)
        return _identity_from_user(res.user)

    def sign_up(self, display_name: str, email: str, password: str) -> RegistrationResult:
        try:
            res = self.client.auth.sign_up(
                {
                    "email": email,
                    "password": password,
                    "options": {"data": {"full_name": display_name, "name": display_name}},
                }
            )
        except ProviderAuthError as exc:
            LOGGER.info("Registration rejected by provider: %s", exc)
            raise translate_provider_error(exc) from exc
        if res.user is None:
            raise AuthError(AuthErrorKind.GENERIC, "Registration failed. Please try again.")
        if res.session is None:
            return RegistrationResult(pending_confirmation=True)
        return RegistrationResult(identity=_identity_from_user(res.user))

    def sign_out(self) -> None:
        try:
            self.client.auth.sign_out()
        except ProviderAuthError as exc:
            LOGGER.warning("Provider sign-out failed, clearing local session anyway: %s", exc)

    def subscribe(self, callback: IdentityCallback) -> Unsubscribe:
        def on_change(event: Any, session: Any) -> None:
            user = getattr(session, "user", None)
            LOGGER.info("Provider auth event: %s", event)
            callback(_identity_from_user(user) if user is not None else None)

        subscription = self.client.auth.on_auth_state_change(on_change)
        return subscription.unsubscribe


class LocalAuthProvider(AuthProvider):
    """Account file used when no hosted provider is configured.

    Passwords are stored as bcrypt hashes in ``accounts.json``.
    """

    def __init__(self, data_dir: Path) -> None:
        self.path = Path(data_dir) / "accounts.json"
        self._lock = threading.Lock()

    def _load(self) -> List[Dict[str, Any]]:
        if not self.path.exists():
            return []
        return json.loads(self.path.read_text(encoding="utf-8")).get("accounts", [])

    def _save(self, accounts: List[Dict[str, Any]]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.path.write_text(json.dumps({"accounts": accounts}, indent=2), encoding="utf-8")

    def current_identity(self) -> Optional[Identity]:
        return None

    def sign_in(self, email: str, password: str) -> Identity:
        email = email.strip().lower()
        with self._lock:
            accounts = self._load()
        for account in accounts:
            if account["email"] == email:
                if bcrypt.checkpw(password.encode("utf-8"), account["password_hash"].encode("utf-8")):
                    return Identity(id=account["id"], email=email, display_name=account["display_name"])
                break
        raise AuthError(AuthErrorKind.INVALID_CREDENTIALS)

    def sign_up(self, display_name: str, email: str, password: str) -> RegistrationResult:
        email = email.strip().lower()
        with self._lock:
            accounts = self._load()
            if any(account["email"] == email for account in accounts):
                raise AuthError(AuthErrorKind.ALREADY_REGISTERED)
            account = {
                "id": str(uuid.uuid4()),
                "email": email,
                "display_name": display_name,
                "password_hash": bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt()).decode("utf-8"),
            }
            accounts.append(account)
            self._save(accounts)
        LOGGER.info("Registered local account %s", account["id"])
        return RegistrationResult(identity=Identity(id=account["id"], email=email, display_name=display_name))

    def sign_out(self) -> None:
        return None


def get_auth_provider(settings: Settings) -> AuthProvider:
    if settings.auth_provider_configured:
        return SupabaseAuthProvider.from_settings(settings)
    LOGGER.info("No hosted auth provider configured; using local accounts in %s", settings.DERMACHECK_DATA_DIR)
    return LocalAuthProvider(settings.DERMACHECK_DATA_DIR)
