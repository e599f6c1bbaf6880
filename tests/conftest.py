"""Shared test fixtures for the DermaCheck client."""

import io
import json
from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock

import pytest
import requests
from PIL import Image

from dermacheck.core.config import Settings
from dermacheck.core.errors import AuthError, AuthErrorKind
from dermacheck.schemas.analysis import AnalysisResult, HistoryEntry, Submission
from dermacheck.schemas.auth import Identity, RegistrationResult
from dermacheck.schemas.profile import ProfileAttributes
from dermacheck.services.analysis_workflow import AnalysisWorkflow
from dermacheck.services.auth_provider import AuthProvider
from dermacheck.services.history_cache import HistoryCache
from dermacheck.services.session_store import DurableSessionRecord, SessionStore

BASE_TIME = datetime(2024, 5, 1, 9, 30, tzinfo=timezone.utc)


def _image_bytes(fmt="JPEG", size=(64, 64), pad_to=0):
    img = Image.new("RGB", size, color=(210, 140, 120))
    buf = io.BytesIO()
    img.save(buf, format=fmt)
    data = buf.getvalue()
    if pad_to > len(data):
        # Trailing bytes after the image data do not affect format detection.
        data += b"\0" * (pad_to - len(data))
    return data


def _response(status_code=200, payload=None, text=None, reason="OK"):
    res = requests.Response()
    res.status_code = status_code
    res.reason = reason
    if payload is not None:
        res._content = json.dumps(payload).encode("utf-8")
        res.headers["Content-Type"] = "application/json"
    else:
        res._content = (text or "").encode("utf-8")
    res.encoding = "utf-8"
    return res


class FakeRemoteClient:
    """In-memory stand-in for RemoteClient that keeps a server-side history per user."""

    base_url = "http://fake.test"

    def __init__(self):
        self.calls = []
        self.histories = {}
        self.profiles = {}
        self.scan_diagnosis = "Measles"
        self.submit_error = None
        self.history_error = None
        self.on_fetch_history = None
        self.closed = False

    def submit(self, image_bytes, identity_id, filename=None):
        self.calls.append(("submit", identity_id))
        if self.submit_error is not None:
            raise self.submit_error
        analysis = AnalysisResult(
            diagnosis=self.scan_diagnosis,
            assessment="Scattered vesicular rash.",
            key_features=["Vesicles", "Fever history"],
            recommendations=["See a clinician", "Isolate until reviewed"],
            confidence_score=0.95,
        )
        image_url = f"https://storage.test/{len(self.calls)}.jpg"
        if identity_id:
            entries = self.histories.setdefault(identity_id, [])
            entries.insert(
                0,
                HistoryEntry(
                    id=f"scan-{len(entries) + 1}",
                    created_at=BASE_TIME + timedelta(minutes=len(entries)),
                    result=analysis,
                    image_url=image_url,
                ),
            )
        return Submission(analysis=analysis, image_url=image_url)

    def fetch_history(self, identity_id):
        self.calls.append(("fetch_history", identity_id))
        if self.on_fetch_history is not None:
            hook, self.on_fetch_history = self.on_fetch_history, None
            hook(identity_id)
        if self.history_error is not None:
            raise self.history_error
        return list(self.histories.get(identity_id, []))

    def fetch_profile(self, identity_id):
        self.calls.append(("fetch_profile", identity_id))
        return self.profiles.get(identity_id)

    def update_profile(self, identity_id, attributes):
        self.calls.append(("update_profile", identity_id, dict(attributes)))
        current = self.profiles.get(identity_id, ProfileAttributes())
        updated = current.model_copy(update=dict(attributes))
        self.profiles[identity_id] = updated
        return updated

    def check_connection(self):
        return True

    def close(self):
        self.closed = True

    def call_names(self):
        return [call[0] for call in self.calls]


class FakeAuthProvider(AuthProvider):
    def __init__(self, hosted=False):
        self.hosted = hosted
        self.accounts = {}
        self.session_identity = None
        self.callbacks = []
        self.sign_out_calls = 0
        self.require_confirmation = False

    def add_account(self, user_id, email, password="secret123", name=None):
        identity = Identity(id=user_id, email=email, display_name=name or email.split("@")[0])
        self.accounts[email] = (password, identity)
        return identity

    def current_identity(self):
        return self.session_identity

    def sign_in(self, email, password):
        account = self.accounts.get(email)
        if account is None or account[0] != password:
            raise AuthError(AuthErrorKind.INVALID_CREDENTIALS)
        self.session_identity = account[1]
        return account[1]

    def sign_up(self, display_name, email, password):
        if email in self.accounts:
            raise AuthError(AuthErrorKind.ALREADY_REGISTERED)
        identity = self.add_account(f"user-{len(self.accounts) + 1}", email, password, display_name)
        if self.require_confirmation:
            return RegistrationResult(pending_confirmation=True)
        self.session_identity = identity
        return RegistrationResult(identity=identity)

    def sign_out(self):
        self.sign_out_calls += 1
        self.session_identity = None

    def subscribe(self, callback):
        self.callbacks.append(callback)
        return lambda: self.callbacks.remove(callback)

    def emit(self, identity):
        for callback in list(self.callbacks):
            callback(identity)


@pytest.fixture
def image_bytes():
    """Factory for real encoded images: image_bytes(fmt="PNG", pad_to=...)."""
    return _image_bytes


@pytest.fixture
def jpeg_bytes():
    return _image_bytes("JPEG")


@pytest.fixture
def make_response():
    """Factory for real requests.Response objects."""
    return _response


@pytest.fixture
def http():
    """Mocked requests.Session used as the RemoteClient transport."""
    return MagicMock(spec=requests.Session)


@pytest.fixture
def settings(tmp_path):
    return Settings(
        DERMACHECK_API_BASE_URL="http://api.test/",
        DERMACHECK_DATA_DIR=tmp_path,
        SUPABASE_URL="",
        SUPABASE_ANON_KEY="",
    )


@pytest.fixture
def fake_remote():
    return FakeRemoteClient()


@pytest.fixture
def fake_provider():
    provider = FakeAuthProvider()
    provider.add_account("u1", "alice@example.com", name="Alice")
    provider.add_account("u2", "bob@example.com", name="Bob")
    return provider


@pytest.fixture
def record(tmp_path):
    return DurableSessionRecord(tmp_path)


@pytest.fixture
def history_cache(fake_remote):
    return HistoryCache(fake_remote)


@pytest.fixture
def session_store(fake_provider, record, history_cache):
    return SessionStore(fake_provider, record, history_cache)


@pytest.fixture
def workflow(fake_remote, session_store, history_cache):
    return AnalysisWorkflow(fake_remote, session_store, history_cache, require_login=True)


@pytest.fixture
def history_row():
    """Factory for raw ``GET /history`` rows."""

    def make(row_id="1", diagnosis="Chickenpox", advice=None, created_at="2024-05-01T09:30:00Z", **extra):
        row = {
            "id": row_id,
            "user_id": "u1",
            "image_url": f"https://storage.test/{row_id}.jpg",
            "diagnosis": diagnosis,
            "confidence": 0.87,
            "medical_advice": advice
            if advice is not None
            else {"assessment": "Itchy papules.", "key_features": ["Papules"], "recommendations": ["Rest"]},
            "created_at": created_at,
        }
        row.update(extra)
        return row

    return make
