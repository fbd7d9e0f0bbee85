from __future__ import annotations

import json
import os
import shutil
import threading
import time
import uuid
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field

from portal.core.crypto import (
    DeviceKeyMissingError,
    aesgcm_decrypt,
    aesgcm_encrypt,
    best_effort_restrict_permissions,
    ensure_device_key,
    key_id_from_key_bytes,
    read_device_key,
)
from portal.core.security_events import SecurityAuditLogger


class SecureStoreMode(str, Enum):
    READY = "READY"
    KEY_MISSING = "KEY_MISSING"
    STORE_MISSING = "STORE_MISSING"
    STORE_CORRUPT = "STORE_CORRUPT"
    KEY_MISMATCH = "KEY_MISMATCH"
    READ_ONLY = "READ_ONLY"


class SecretUnavailable(RuntimeError):
    pass


class SecureStoreStatus(BaseModel):
    model_config = ConfigDict(extra="forbid")
    mode: SecureStoreMode
    status: str
    next_steps: str
    key_id: Optional[str] = None
    store_version: Optional[int] = None
    store_id: Optional[str] = None
    last_error: Optional[str] = None


class _EncryptedPayload(BaseModel):
    model_config = ConfigDict(extra="forbid")
    store_version: int = Field(default=1, ge=1)
    store_id: str
    key_id: str
    created_at: float
    updated_at: float
    record_count: int
    values: Dict[str, str] = Field(default_factory=dict)


@dataclass
class SecureStore:
    """
    Versioned, tamper-evident encrypted key/value file holding the session
    token, cached credentials and PIN record.

    Files:
    - secure/credentials.enc           (JSON with AES-GCM nonce+ciphertext)
    - secure/store.meta.json           (plaintext, non-sensitive: store_id + key_id + store_version)
    - secure/backups/credentials.*.enc pre-write backups
    - secure/backups/last_known_good.enc

    Values are strings; callers serialize structured data themselves.
    """

    device_key_path: str
    store_path: str
    meta_path: str = os.path.join("secure", "store.meta.json")
    backups_dir: str = os.path.join("secure", "backups")
    max_backups: int = 10
    max_bytes: int = 65536
    read_only: bool = False
    create_key_if_missing: bool = True
    audit: Optional[SecurityAuditLogger] = None
    aad: bytes = b"portal.secure_store.container.v1"

    def __post_init__(self) -> None:
        self._lock = threading.Lock()
        self._shutdown_writes = False
        if self.create_key_if_missing and not self.read_only:
            ensure_device_key(self.device_key_path)

    def begin_shutdown(self) -> None:
        """
        Refuse new writes once the app is shutting down.
        """
        with self._lock:
            self._shutdown_writes = True

    # ---------- public API ----------
    def status(self) -> SecureStoreStatus:
        with self._lock:
            return self._status_locked()

    def export_public_status(self) -> Dict[str, Any]:
        st = self.status()
        return {
            "mode": st.mode.value,
            "status": st.status,
            "next_steps": st.next_steps,
            "key_id": st.key_id,
            "store_version": st.store_version,
            "store_id": st.store_id,
        }

    def list_keys(self, prefix: Optional[str] = None) -> List[str]:
        payload = self._load_payload_or_raise()
        keys = sorted(payload.values.keys())
        if prefix:
            keys = [k for k in keys if k.startswith(prefix)]
        return keys

    def get(self, key: str) -> Optional[str]:
        payload = self._load_payload_or_raise()
        return payload.values.get(key)

    def set(self, key: str, value: str, *, trace_id: str = "secure") -> None:
        self._check_writable(key, trace_id)
        if not isinstance(value, str):
            raise ValueError("Secure store values must be strings.")
        if len(value.encode("utf-8")) > int(self.max_bytes):
            raise ValueError("Secure store value too large.")

        with self._lock:
            payload = self._load_payload_locked(create_if_missing=True)
            payload.values[key] = value
            self._commit_locked(payload)
        self._log(trace_id, "INFO", "secure.set", "ok", {"key": key})

    def delete(self, key: str, *, trace_id: str = "secure") -> None:
        self._check_writable(key, trace_id)
        with self._lock:
            if not os.path.exists(self.store_path):
                return
            payload = self._load_payload_locked(create_if_missing=False)
            if payload.values.pop(key, None) is None:
                return
            self._commit_locked(payload)
        self._log(trace_id, "INFO", "secure.delete", "ok", {"key": key})

    # ---------- internal ----------
    def _log(self, trace_id: str, severity: str, event: str, outcome: str, details: Dict[str, Any]) -> None:
        if self.audit is not None:
            self.audit.log(trace_id=trace_id, severity=severity, event=event, endpoint="secure_store", outcome=outcome, details=details)

    def _check_writable(self, key: str, trace_id: str) -> None:
        if self._shutdown_writes:
            raise SecretUnavailable("Secure store writes are blocked during shutdown.")
        if self.read_only:
            self._log(trace_id, "WARN", "secure.write_blocked", "read_only", {"key": key})
            raise SecretUnavailable("Secure store is read-only.")

    def _commit_locked(self, payload: _EncryptedPayload) -> None:
        payload.updated_at = time.time()
        payload.record_count = len(payload.values)
        self._write_payload_locked(payload)

    @staticmethod
    def _dump_json_atomic(path: str, obj: Dict[str, Any]) -> None:
        tmp = path + ".tmp"
        with open(tmp, "w", encoding="utf-8") as f:
            json.dump(obj, f, indent=2, ensure_ascii=False, sort_keys=True)
            f.write("\n")
        os.replace(tmp, path)

    def _status_locked(self) -> SecureStoreStatus:
        try:
            key = read_device_key(self.device_key_path)
        except (DeviceKeyMissingError, ValueError) as e:
            return SecureStoreStatus(
                mode=SecureStoreMode.KEY_MISSING,
                status="Device key not found or unreadable.",
                next_steps=f"Restore the device key at {self.device_key_path} or sign in again to create a new store.",
                last_error=str(e),
            )
        key_id = key_id_from_key_bytes(key)

        if not os.path.exists(self.store_path):
            return SecureStoreStatus(
                mode=SecureStoreMode.STORE_MISSING,
                status="Credential store not created yet.",
                next_steps="It is created on the first successful sign-in.",
                key_id=key_id,
                last_error="store_missing",
            )

        meta = self._read_meta_locked()
        if meta and meta.get("key_id") and meta.get("key_id") != key_id:
            return SecureStoreStatus(
                mode=SecureStoreMode.KEY_MISMATCH,
                status="Device key does not match this credential store.",
                next_steps="Restore the original device key, or delete the store and sign in again.",
                key_id=key_id,
                store_id=meta.get("store_id"),
                store_version=meta.get("store_version"),
                last_error="key_mismatch",
            )

        try:
            payload = self._load_payload_locked(create_if_missing=False)
        except Exception as e:  # noqa: BLE001
            return SecureStoreStatus(
                mode=SecureStoreMode.STORE_CORRUPT,
                status="Credential store is corrupt or cannot be decrypted.",
                next_steps="Restore from secure/backups or delete the store and sign in again.",
                key_id=key_id,
                last_error=str(e),
            )

        if meta and meta.get("store_id") and meta.get("store_id") != payload.store_id:
            self._log("secure", "HIGH", "secure.meta_mismatch", "mismatch", {"field": "store_id"})

        if self.read_only:
            return SecureStoreStatus(
                mode=SecureStoreMode.READ_ONLY,
                status="Credential store is available (read-only mode).",
                next_steps="Disable read-only mode to sign in.",
                key_id=key_id,
                store_id=payload.store_id,
                store_version=payload.store_version,
            )

        return SecureStoreStatus(
            mode=SecureStoreMode.READY,
            status="Credential store ready.",
            next_steps="No action needed.",
            key_id=key_id,
            store_id=payload.store_id,
            store_version=payload.store_version,
        )

    def _read_key_locked(self) -> bytes:
        try:
            return read_device_key(self.device_key_path)
        except DeviceKeyMissingError as e:
            raise SecretUnavailable(str(e)) from e

    def _read_meta_locked(self) -> Optional[Dict[str, Any]]:
        if not os.path.exists(self.meta_path):
            return None
        try:
            with open(self.meta_path, "r", encoding="utf-8") as f:
                obj = json.load(f)
        except (OSError, ValueError):
            return None
        return obj if isinstance(obj, dict) else None

    def _write_meta_locked(self, payload: _EncryptedPayload) -> None:
        os.makedirs(os.path.dirname(self.meta_path) or ".", exist_ok=True)
        self._dump_json_atomic(
            self.meta_path,
            {"store_version": payload.store_version, "store_id": payload.store_id, "key_id": payload.key_id, "updated_at": payload.updated_at},
        )

    def _load_payload_or_raise(self) -> _EncryptedPayload:
        with self._lock:
            st = self._status_locked()
            if st.mode in {SecureStoreMode.KEY_MISSING, SecureStoreMode.KEY_MISMATCH, SecureStoreMode.STORE_CORRUPT}:
                self._log("secure", "WARN", "secure.unavailable", st.mode.value, {"next": st.next_steps})
                raise SecretUnavailable(st.next_steps)
            if st.mode == SecureStoreMode.STORE_MISSING:
                # nothing stored yet: reads see an empty store without creating the file
                now = time.time()
                return _EncryptedPayload(store_id="", key_id=st.key_id or "", created_at=now, updated_at=now, record_count=0)
            return self._load_payload_locked(create_if_missing=False)

    def _load_payload_locked(self, *, create_if_missing: bool) -> _EncryptedPayload:
        key = self._read_key_locked()
        key_id = key_id_from_key_bytes(key)

        if not os.path.exists(self.store_path):
            if not create_if_missing:
                raise SecretUnavailable("Credential store missing.")
            now = time.time()
            return _EncryptedPayload(store_version=1, store_id=uuid.uuid4().hex, key_id=key_id, created_at=now, updated_at=now, record_count=0)

        with open(self.store_path, "r", encoding="utf-8") as f:
            blob = json.load(f)
        pt = aesgcm_decrypt(key, blob, aad=self.aad)
        payload = _EncryptedPayload.model_validate(json.loads(pt.decode("utf-8")))
        if payload.key_id != key_id:
            raise SecretUnavailable("KEY_MISMATCH: decrypted payload key_id mismatch.")
        return payload

    def _write_payload_locked(self, payload: _EncryptedPayload) -> None:
        key = self._read_key_locked()
        pt = json.dumps(payload.model_dump(), ensure_ascii=False, sort_keys=True).encode("utf-8")
        if len(pt) > int(self.max_bytes):
            raise ValueError("Credential store payload too large.")
        os.makedirs(os.path.dirname(self.store_path) or ".", exist_ok=True)
        self._snapshot_locked("prewrite")
        self._dump_json_atomic(self.store_path, aesgcm_encrypt(key, pt, aad=self.aad))
        best_effort_restrict_permissions(self.store_path)
        self._write_meta_locked(payload)
        self._snapshot_locked("last_known_good")

    def _snapshot_locked(self, kind: str) -> None:
        """
        prewrite: copy the current container to backups/credentials.<ts>.<id>.enc and prune.
        last_known_good: overwrite backups/last_known_good.enc with the container just written.
        """
        if not os.path.exists(self.store_path):
            return
        os.makedirs(self.backups_dir, exist_ok=True)
        if kind == "last_known_good":
            try:
                shutil.copy2(self.store_path, os.path.join(self.backups_dir, "last_known_good.enc"))
            except OSError as e:
                self._log("secure", "WARN", "secure.backup", "failed", {"kind": kind, "error": e.__class__.__name__})
            return

        ts = time.strftime("%Y%m%d_%H%M%S", time.gmtime())
        shutil.copy2(self.store_path, os.path.join(self.backups_dir, f"credentials.{ts}.{uuid.uuid4().hex[:6]}.enc"))
        rotated = sorted(
            (os.path.join(self.backups_dir, n) for n in os.listdir(self.backups_dir) if n.startswith("credentials.") and n.endswith(".enc")),
            key=os.path.getmtime,
            reverse=True,
        )
        for stale in rotated[int(self.max_backups) :]:
            try:
                os.remove(stale)
            except OSError:
                continue
