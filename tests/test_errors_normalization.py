from __future__ import annotations

import json

import requests

from portal.core.error_reporter import ErrorReporter, ErrorReporterConfig, normalize_exception
from portal.core.errors import AuthRejected, NetworkError, PortalError, StorageError
from portal.core.redaction import REDACTED, redact


def test_unknown_exception_normalized_and_redacted(tmp_path):
    p = tmp_path / "errors.jsonl"
    r = ErrorReporter(path=str(p))
    try:
        raise RuntimeError("boom")
    except Exception as e:  # noqa: BLE001
        pe = r.report_exception(e, trace_id="t1", subsystem="navigation", context={"password": "SECRET", "x": 1})
        assert pe.code == "unknown_error"
        assert pe.user_message
    obj = json.loads(p.read_text(encoding="utf-8").splitlines()[-1])
    assert obj["trace_id"] == "t1"
    assert obj["subsystem"] == "navigation"
    assert "SECRET" not in json.dumps(obj)
    assert REDACTED in json.dumps(obj)
    assert "internal_context" not in obj


def test_tracebacks_only_when_enabled(tmp_path):
    r = ErrorReporter(path=str(tmp_path / "errors.jsonl"), cfg=ErrorReporterConfig(include_tracebacks=True))
    try:
        raise ValueError("bad")
    except ValueError as e:
        r.report_exception(e, trace_id="t2", subsystem="state")
    entry = r.tail(1)[0]
    assert entry["error_code"] == "state_transition_error"
    assert "ValueError" in entry["internal_context"]["traceback"]


def test_normalization_by_subsystem():
    assert isinstance(normalize_exception(requests.ConnectionError("x"), subsystem="auth_api", context={}), NetworkError)
    assert isinstance(normalize_exception(OSError("disk"), subsystem="credential_store", context={}), StorageError)
    assert isinstance(normalize_exception(KeyError("k"), subsystem="auth_api", context={}), AuthRejected)
    same = StorageError(key="session-token")
    assert normalize_exception(same, subsystem="x", context={}) is same


def test_portal_error_to_dict_redacts_context():
    e = AuthRejected("Invalid username or password", status_code=401, token="abc", username="ada")
    d = e.to_dict()
    assert d["code"] == "auth_rejected"
    assert d["context"] == {"token": REDACTED, "username": "ada"}
    assert e.status_code == 401
    assert str(e) == "Invalid username or password"
    assert isinstance(e, PortalError)


def test_redact_handles_storage_key_spelling():
    out = redact({"stored-password": "p", "user-pin": "1234", "nested": [{"Authorization": "Bearer x"}], "saved-username": "ada"})
    assert out == {"stored-password": REDACTED, "user-pin": REDACTED, "nested": [{"Authorization": REDACTED}], "saved-username": "ada"}
