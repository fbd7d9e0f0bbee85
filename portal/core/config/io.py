from __future__ import annotations

import json
import os
import shutil
import tempfile
import time
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional


@dataclass(frozen=True)
class ReadResult:
    data: Dict[str, Any] = field(default_factory=dict)
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error is None

    @property
    def corrupt(self) -> bool:
        # unparseable or not a JSON object; a missing file is not corrupt
        return self.error in ("corrupt_json", "not_object")


def _stamp() -> str:
    # second resolution plus a nanosecond tail so two writes in one second keep both backups
    return f"{time.strftime('%Y%m%d_%H%M%S', time.gmtime())}_{time.time_ns() % 1_000_000_000:09d}"


def read_json_file(path: str) -> ReadResult:
    try:
        with open(path, "r", encoding="utf-8") as f:
            obj = json.load(f)
    except FileNotFoundError:
        return ReadResult(error="missing")
    except json.JSONDecodeError:
        return ReadResult(error="corrupt_json")
    except OSError as e:
        return ReadResult(error=f"unreadable:{e.__class__.__name__}")
    if not isinstance(obj, dict):
        return ReadResult(error="not_object")
    return ReadResult(data=obj)


def _prune(backups_dir: str, name: str, keep: int) -> None:
    prefix = f"{name}."
    items: List[str] = sorted(
        (os.path.join(backups_dir, f) for f in os.listdir(backups_dir) if f.startswith(prefix)),
        key=os.path.getmtime,
        reverse=True,
    )
    for stale in items[max(keep, 0) :]:
        try:
            os.remove(stale)
        except OSError:
            continue


def backup_file(path: str, backups_dir: str, *, reason: str, max_backups: int = 10) -> Optional[str]:
    """Copy `path` to backups/<name>.<stamp>.<reason>.json, keeping the newest `max_backups` per file."""
    if not os.path.isfile(path):
        return None
    os.makedirs(backups_dir, exist_ok=True)
    name = os.path.basename(path)
    out = os.path.join(backups_dir, f"{name}.{_stamp()}.{reason}.json")
    try:
        shutil.copy2(path, out)
    except OSError:
        return None
    _prune(backups_dir, name, max_backups)
    return out


def atomic_write_json(path: str, data: Dict[str, Any], backups_dir: str, *, max_backups: int = 10) -> None:
    parent = os.path.dirname(path) or "."
    os.makedirs(parent, exist_ok=True)
    backup_file(path, backups_dir, reason="prewrite", max_backups=max_backups)
    fd, tmp = tempfile.mkstemp(prefix=".tmp_", suffix=".json", dir=parent)
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            json.dump(data, f, indent=2, ensure_ascii=False, sort_keys=True)
            f.write("\n")
        os.replace(tmp, path)
    except BaseException:
        if os.path.exists(tmp):
            os.remove(tmp)
        raise


def recover_from_corrupt(path: str, backups_dir: str, last_known_good_dir: str, *, max_backups: int = 10) -> Optional[Dict[str, Any]]:
    """
    Quarantine a corrupt config file and restore it from the last-known-good snapshot.

    The corrupt file is moved to backups/<name>.<stamp>.corrupt.json either way.
    Returns the restored data, or None when no usable snapshot exists (the
    caller then falls back to defaults).
    """
    os.makedirs(backups_dir, exist_ok=True)
    name = os.path.basename(path)
    if os.path.exists(path):
        try:
            shutil.move(path, os.path.join(backups_dir, f"{name}.{_stamp()}.corrupt.json"))
        except OSError:
            pass
    snapshot = read_json_file(os.path.join(last_known_good_dir, name))
    if not snapshot.ok:
        return None
    atomic_write_json(path, snapshot.data, backups_dir, max_backups=max_backups)
    return snapshot.data


def snapshot_last_known_good(config_dir: str, last_known_good_dir: str, names: Iterable[str]) -> List[str]:
    """Copy each named config file that currently parses into the last-known-good dir."""
    os.makedirs(last_known_good_dir, exist_ok=True)
    copied: List[str] = []
    for name in names:
        src = os.path.join(config_dir, name)
        if not read_json_file(src).ok:
            continue
        try:
            shutil.copy2(src, os.path.join(last_known_good_dir, name))
        except OSError:
            continue
        copied.append(name)
    return copied
