from __future__ import annotations

import base64
import hashlib
import os
import secrets
from typing import Dict

from cryptography.hazmat.primitives.ciphers.aead import AESGCM


DEVICE_KEY_BYTES = 32


class DeviceKeyMissingError(RuntimeError):
    pass


def key_id_from_key_bytes(key: bytes) -> str:
    return hashlib.sha256(key).hexdigest()[:16]


def _b64e(b: bytes) -> str:
    return base64.urlsafe_b64encode(b).decode("ascii")


def _b64d(s: str) -> bytes:
    return base64.urlsafe_b64decode(s.encode("ascii"))


def generate_device_key_bytes() -> bytes:
    # AES-256 key
    return secrets.token_bytes(DEVICE_KEY_BYTES)


def write_device_key(path: str, key_bytes: bytes) -> None:
    os.makedirs(os.path.dirname(path) or ".", exist_ok=True)
    with open(path, "wb") as f:
        f.write(key_bytes)
    best_effort_restrict_permissions(path)


def read_device_key(path: str) -> bytes:
    if not os.path.exists(path):
        raise DeviceKeyMissingError(f"Device key not found at {path!r}")
    with open(path, "rb") as f:
        b = f.read()
    if len(b) != DEVICE_KEY_BYTES:
        raise ValueError("Device key must be 32 bytes (AES-256).")
    return b


def ensure_device_key(path: str) -> str:
    """
    Create the per-install device key on first run. Returns its key_id.

    An existing key is never overwritten: replacing it would orphan the
    encrypted credential store.
    """
    if not os.path.exists(path):
        write_device_key(path, generate_device_key_bytes())
    return key_id_from_key_bytes(read_device_key(path))


def best_effort_restrict_permissions(path: str) -> None:
    """
    On POSIX sets 0o600; Windows ACLs are left alone.
    """
    try:
        if os.name != "nt":
            os.chmod(path, 0o600)
    except OSError:
        return


def aesgcm_encrypt(key: bytes, plaintext: bytes, aad: bytes = b"") -> Dict[str, object]:
    aes = AESGCM(key)
    nonce = secrets.token_bytes(12)
    ct = aes.encrypt(nonce, plaintext, aad or None)
    return {"v": 1, "nonce": _b64e(nonce), "ciphertext": _b64e(ct)}


def aesgcm_decrypt(key: bytes, blob: Dict[str, object], aad: bytes = b"") -> bytes:
    if blob.get("v") != 1:
        raise ValueError("Unsupported encrypted blob version.")
    aes = AESGCM(key)
    nonce = _b64d(str(blob["nonce"]))
    ct = _b64d(str(blob["ciphertext"]))
    return aes.decrypt(nonce, ct, aad or None)
