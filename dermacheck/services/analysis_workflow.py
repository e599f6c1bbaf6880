"""State machine coordinating one image submission end-to-end."""
from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Optional

from dermacheck.core.errors import AuthRequiredError, DermaCheckError, ValidationError, WorkflowStateError
from dermacheck.schemas.analysis import Submission
from dermacheck.schemas.auth import Identity
from dermacheck.services.history_cache import HistoryCache
from dermacheck.services.remote_client import DEFAULT_MAX_UPLOAD_BYTES, RemoteClient, detect_image_type
from dermacheck.services.session_store import SessionStore

LOGGER = logging.getLogger(__name__)


class WorkflowState(str, Enum):
    IDLE = "idle"
    VALIDATING = "validating"
    # Request built and handed to the transport. requests sends the body and
    # waits for the reply in one blocking call, so AWAITING_RESULT covers both.
    UPLOADING = "uploading"
    AWAITING_RESULT = "awaiting_result"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


BUSY_STATES = frozenset({WorkflowState.VALIDATING, WorkflowState.UPLOADING, WorkflowState.AWAITING_RESULT})


@dataclass(frozen=True)
class WorkflowSnapshot:
    state: WorkflowState = WorkflowState.IDLE
    submission: Optional[Submission] = None
    error: Optional[DermaCheckError] = None
    # Anonymous success under the open policy: prompt the user to register.
    upsell: bool = False

    @property
    def busy(self) -> bool:
        return self.state in BUSY_STATES


TransitionListener = Callable[[WorkflowSnapshot], None]


class AnalysisWorkflow:
    """Validate, gate, upload and hand off a single image.

    One attempt at a time: ``submit`` only runs from IDLE, and a finished
    attempt stays SUCCEEDED or FAILED until ``select_image`` or ``reset``.
    """

    def __init__(
        self,
        remote: RemoteClient,
        session: SessionStore,
        history: HistoryCache,
        require_login: bool = True,
        max_upload_bytes: int = DEFAULT_MAX_UPLOAD_BYTES,
        on_transition: Optional[TransitionListener] = None,
    ) -> None:
        self.remote = remote
        self.session = session
        self.history = history
        self.require_login = require_login
        self.max_upload_bytes = max_upload_bytes
        self.on_transition = on_transition
        self._snapshot = WorkflowSnapshot()
        self._image: Optional[bytes] = None
        self._filename: Optional[str] = None
        self._lock = threading.Lock()
        # Bumped on identity change; results from an older generation are dropped.
        self._generation = 0

    @property
    def snapshot(self) -> WorkflowSnapshot:
        return self._snapshot

    @property
    def state(self) -> WorkflowState:
        return self._snapshot.state

    @property
    def has_image(self) -> bool:
        return self._image is not None

    @property
    def can_submit(self) -> bool:
        return self._snapshot.state is WorkflowState.IDLE and self._image is not None

    def select_image(self, image_bytes: bytes, filename: Optional[str] = None) -> WorkflowSnapshot:
        """Start a fresh attempt with a newly chosen image."""
        with self._lock:
            self._guard_not_busy()
            self._image = image_bytes
            self._filename = filename
            self._snapshot = WorkflowSnapshot()
        self._emit(self._snapshot)
        return self._snapshot

    def reset(self) -> WorkflowSnapshot:
        with self._lock:
            self._guard_not_busy()
            self._image = None
            self._filename = None
            self._snapshot = WorkflowSnapshot()
        self._emit(self._snapshot)
        return self._snapshot

    def submit(self) -> WorkflowSnapshot:
        with self._lock:
            if self._snapshot.state is not WorkflowState.IDLE:
                self._guard_not_busy()
                raise WorkflowStateError("Select a new image or reset before analyzing again.")
            self._snapshot = WorkflowSnapshot(state=WorkflowState.VALIDATING)
            generation = self._generation
            image, filename = self._image, self._filename
        self._emit(self._snapshot)

        identity = self.session.identity
        try:
            if image is None:
                raise ValidationError("Please select an image to analyze.")
            detect_image_type(image, self.max_upload_bytes)
            if identity is None and self.require_login:
                raise AuthRequiredError()

            self._advance(generation, WorkflowSnapshot(state=WorkflowState.UPLOADING))
            LOGGER.info("Submitting image (%d bytes) for %s", len(image), identity.id if identity else "anonymous")
            self._advance(generation, WorkflowSnapshot(state=WorkflowState.AWAITING_RESULT))
            submission = self.remote.submit(image, identity.id if identity else None, filename)
        except DermaCheckError as exc:
            LOGGER.warning("Analysis failed: %s", exc.message)
            self._advance(generation, WorkflowSnapshot(state=WorkflowState.FAILED, error=exc))
            return self._snapshot

        succeeded = WorkflowSnapshot(state=WorkflowState.SUCCEEDED, submission=submission, upsell=identity is None)
        if not self._advance(generation, succeeded):
            LOGGER.info("Discarding analysis result: identity changed while awaiting it")
            return self._snapshot
        LOGGER.info("Analysis succeeded: %s", submission.analysis.diagnosis.value)
        if identity is not None:
            # Refresh failures stay on the cache snapshot; the attempt remains SUCCEEDED.
            self.history.refresh(identity.id)
        return self._snapshot

    def handle_identity_change(self, previous: Optional[Identity], current: Optional[Identity]) -> None:
        """Session listener: a different user, or nobody, must not see the last image or result."""
        if previous is not None and current is not None and previous.id == current.id:
            return
        with self._lock:
            self._generation += 1
            self._image = None
            self._filename = None
            self._snapshot = WorkflowSnapshot()
        self._emit(self._snapshot)

    def _guard_not_busy(self) -> None:
        if self._snapshot.busy:
            raise WorkflowStateError("An analysis is already in progress.")

    def _advance(self, generation: int, snapshot: WorkflowSnapshot) -> bool:
        """Move an in-flight attempt forward unless an identity change has superseded it."""
        with self._lock:
            if generation != self._generation:
                return False
            self._snapshot = snapshot
        self._emit(snapshot)
        return True

    def _emit(self, snapshot: WorkflowSnapshot) -> None:
        if self.on_transition is not None:
            self.on_transition(snapshot)
