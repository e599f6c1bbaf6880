"""Application context wiring the client core together."""
from __future__ import annotations

import logging
from typing import Any, Callable, List, Mapping, Optional

from dermacheck.core.config import Settings, get_settings
from dermacheck.core.errors import AuthRequiredError
from dermacheck.core.logging_config import configure_logging
from dermacheck.schemas.auth import Identity
from dermacheck.schemas.profile import READ_ONLY_PROFILE_FIELDS, ProfileAttributes
from dermacheck.services.analysis_workflow import AnalysisWorkflow
from dermacheck.services.auth_provider import AuthProvider, get_auth_provider
from dermacheck.services.history_cache import HistoryCache
from dermacheck.services.remote_client import RemoteClient, get_client
from dermacheck.services.session_store import DurableSessionRecord, SessionStore

LOGGER = logging.getLogger(__name__)


class AppContext:
    """One instance per user session: ``init`` at start, ``close`` at shutdown."""

    def __init__(
        self,
        settings: Settings,
        remote: RemoteClient,
        provider: AuthProvider,
    ) -> None:
        self.settings = settings
        self.remote = remote
        self.history = HistoryCache(remote)
        self.session = SessionStore(provider, DurableSessionRecord(settings.DERMACHECK_DATA_DIR), self.history)
        self._unsubscribers: List[Callable[[], None]] = []

    @classmethod
    def create(
        cls,
        settings: Optional[Settings] = None,
        remote: Optional[RemoteClient] = None,
        provider: Optional[AuthProvider] = None,
    ) -> "AppContext":
        settings = settings or get_settings()
        configure_logging(settings.DERMACHECK_LOG_LEVEL)
        return cls(
            settings,
            remote or get_client(settings),
            provider or get_auth_provider(settings),
        )

    def init(self) -> Optional[Identity]:
        return self.session.restore()

    def close(self) -> None:
        for unsubscribe in self._unsubscribers:
            unsubscribe()
        self._unsubscribers.clear()
        self.session.close()
        self.remote.close()

    def new_workflow(self) -> AnalysisWorkflow:
        """Build a workflow that forgets its image and result when the user changes."""
        workflow = AnalysisWorkflow(
            self.remote,
            self.session,
            self.history,
            require_login=self.settings.DERMACHECK_REQUIRE_LOGIN,
            max_upload_bytes=self.settings.DERMACHECK_MAX_UPLOAD_BYTES,
        )
        self._unsubscribers.append(self.session.on_identity_change(workflow.handle_identity_change))
        return workflow

    # -------------------- Profile --------------------
    def load_profile(self) -> Optional[ProfileAttributes]:
        identity = self.session.identity
        if identity is None:
            return None
        profile = self.remote.fetch_profile(identity.id)
        if profile is not None:
            self.session.apply_profile(profile)
        return profile

    def update_profile(self, changes: Mapping[str, Any]) -> ProfileAttributes:
        """Send the user's edits, leaving read-only attributes untouched."""
        identity = self.session.identity
        if identity is None:
            raise AuthRequiredError("Please log in to edit your profile.")
        editable = {k: v for k, v in changes.items() if k not in READ_ONLY_PROFILE_FIELDS}
        dropped = set(changes) - set(editable)
        if dropped:
            LOGGER.info("Ignoring read-only profile fields: %s", ", ".join(sorted(dropped)))
        profile = self.remote.update_profile(identity.id, editable)
        self.session.apply_profile(profile)
        return profile
