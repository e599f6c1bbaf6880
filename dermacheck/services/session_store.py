"""Single authoritative handle on who is logged in."""
from __future__ import annotations

import logging
import threading
from pathlib import Path
from typing import Callable, List, Optional

from pydantic import ValidationError as PydanticValidationError

from dermacheck.core.errors import AuthError, AuthErrorKind
from dermacheck.schemas.auth import Credentials, Identity, Registration, RegistrationResult
from dermacheck.schemas.profile import ProfileAttributes
from dermacheck.services.auth_provider import AuthProvider, Unsubscribe
from dermacheck.services.history_cache import HistoryCache

LOGGER = logging.getLogger(__name__)

IdentityListener = Callable[[Optional[Identity], Optional[Identity]], None]  # (previous, current)


class DurableSessionRecord:
    """Last known identity, persisted so a restart can restore it without a provider."""

    def __init__(self, data_dir: Path) -> None:
        self.path = Path(data_dir) / "session.json"

    def load(self) -> Optional[Identity]:
        if not self.path.exists():
            return None
        try:
            return Identity.model_validate_json(self.path.read_text(encoding="utf-8"))
        except (PydanticValidationError, ValueError) as exc:
            LOGGER.warning("Ignoring unreadable session record %s: %s", self.path, exc)
            return None

    def save(self, identity: Identity) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.path.write_text(identity.model_dump_json(), encoding="utf-8")

    def clear(self) -> None:
        self.path.unlink(missing_ok=True)


def _auth_error_from_validation(exc: PydanticValidationError) -> AuthError:
    first = exc.errors()[0]
    field = first["loc"][0] if first["loc"] else ""
    message = first["msg"].removeprefix("Value error, ")
    if field == "password":
        return AuthError(AuthErrorKind.WEAK_PASSWORD, message.capitalize())
    if field == "email":
        return AuthError(AuthErrorKind.INVALID_EMAIL)
    return AuthError(AuthErrorKind.GENERIC, message)


class SessionStore:
    """Owns the current Identity and keeps the History Cache attributed to it.

    Every identity change goes through ``_apply``: the cache is reset to the
    new owner before listeners hear about it, then refreshed.
    """

    def __init__(self, provider: AuthProvider, record: DurableSessionRecord, history: HistoryCache) -> None:
        self.provider = provider
        self.record = record
        self.history = history
        self.is_loading = True
        self._identity: Optional[Identity] = None
        self._listeners: List[IdentityListener] = []
        self._lock = threading.RLock()
        self._provider_unsubscribe: Optional[Unsubscribe] = None

    @property
    def identity(self) -> Optional[Identity]:
        return self._identity

    @property
    def is_authenticated(self) -> bool:
        return self._identity is not None

    # -------------------- Subscription --------------------
    def on_identity_change(self, listener: IdentityListener) -> Unsubscribe:
        with self._lock:
            self._listeners.append(listener)

        def unsubscribe() -> None:
            with self._lock:
                if listener in self._listeners:
                    self._listeners.remove(listener)

        return unsubscribe

    def _notify(self, previous: Optional[Identity], current: Optional[Identity]) -> None:
        with self._lock:
            listeners = list(self._listeners)
        for listener in listeners:
            listener(previous, current)

    # -------------------- Lifecycle --------------------
    def restore(self) -> Optional[Identity]:
        """Resolve the starting identity; call once at process start."""
        self.is_loading = True
        try:
            identity = self.provider.current_identity()
            if identity is None and not self.provider.hosted:
                identity = self.record.load()
            if identity is not None:
                LOGGER.info("Restored session for %s", identity.id)
            self._apply(identity)
        finally:
            self.is_loading = False
        if self._provider_unsubscribe is None:
            self._provider_unsubscribe = self.provider.subscribe(self._on_provider_change)
        return self._identity

    def close(self) -> None:
        if self._provider_unsubscribe is not None:
            self._provider_unsubscribe()
            self._provider_unsubscribe = None
        with self._lock:
            self._listeners.clear()

    # -------------------- Auth flows --------------------
    def login(self, email: str, password: str) -> Identity:
        try:
            credentials = Credentials(email=email, password=password)
        except PydanticValidationError as exc:
            raise _auth_error_from_validation(exc) from exc
        identity = self.provider.sign_in(credentials.email, credentials.password)
        LOGGER.info("Logged in as %s", identity.id)
        self._apply(identity)
        return identity

    def register(self, display_name: str, email: str, password: str) -> RegistrationResult:
        try:
            form = Registration(display_name=display_name, email=email, password=password)
        except PydanticValidationError as exc:
            raise _auth_error_from_validation(exc) from exc
        result = self.provider.sign_up(form.display_name, form.email, form.password)
        if result.pending_confirmation:
            LOGGER.info("Registration for %s awaits email confirmation", form.email)
            return result
        self._apply(result.identity)
        return result

    def logout(self) -> None:
        """Clear identity, then history, then the durable record, whatever the prior state."""
        self.provider.sign_out()
        self._clear_local()
        LOGGER.info("Logged out")

    def apply_profile(self, profile: ProfileAttributes) -> Optional[Identity]:
        """Attach updated profile attributes to the current identity."""
        with self._lock:
            if self._identity is None:
                return None
            updated = self._identity.model_copy(update={"profile": profile})
            if profile.full_name:
                updated = updated.model_copy(update={"display_name": profile.full_name})
            previous = self._identity
            self._identity = updated
            self._persist(updated)
        self._notify(previous, updated)
        return updated

    def _on_provider_change(self, identity: Optional[Identity]) -> None:
        if identity is None:
            with self._lock:
                had_identity = self._identity is not None
            if had_identity:
                LOGGER.info("Provider session ended")
                self._clear_local()
            return
        self._apply(identity)

    def _clear_local(self) -> None:
        with self._lock:
            previous = self._identity
            self._identity = None
            self.history.clear()
            self.record.clear()
        if previous is not None:
            self._notify(previous, None)

    def _persist(self, identity: Optional[Identity]) -> None:
        # Hosted providers keep their own session; the record is the local fallback only.
        if self.provider.hosted:
            return
        if identity is not None:
            self.record.save(identity)
        else:
            self.record.clear()

    def _apply(self, identity: Optional[Identity]) -> None:
        with self._lock:
            previous = self._identity
            if previous is not None and identity is not None and previous.id == identity.id:
                # Same user re-announced by the provider: no new refresh.
                return
            if previous is None and identity is None:
                return
            self._identity = identity
            self.history.reset(identity.id if identity else None)
            self._persist(identity)
        self._notify(previous, identity)
        if identity is not None:
            self.history.refresh(identity.id)
