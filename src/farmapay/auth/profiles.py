# Copyright (C) 2026 Bernardo Gómez Bey
# SPDX-License-Identifier: AGPL-3.0-or-later

"""Profile records and the stores that keep them.

Every write goes through ``upsert``; there is no separate create/update API.
"""

from __future__ import annotations

import fcntl
import os
import tempfile
import threading
import time
import uuid
from contextlib import contextmanager
from dataclasses import dataclass, replace
from pathlib import Path
from typing import Dict, List, Optional, Protocol, Tuple

import structlog
import yaml

from farmapay.auth.roles import Role
from farmapay.errors import ConflictError, InvalidArgumentError

logger = structlog.get_logger(__name__)

# IMPORTANT: do not rely on current working directory.
# Anchor the default users.yml path to the project root (works well with editable installs).
BASE_DIR = Path(__file__).resolve().parents[3]
DEFAULT_USERS_PATH = Path(
    os.getenv("FARMAPAY_USERS_PATH", str(BASE_DIR / "data" / "users.yml"))
).resolve()

STORE_FORMAT_VERSION = 1
LOCK_TIMEOUT_SECONDS = float(os.getenv("FARMAPAY_STORE_LOCK_TIMEOUT", "10"))


@dataclass(frozen=True)
class Profile:
    id: str
    email: str
    password_hash: str
    name: str
    role: Role


@dataclass(frozen=True)
class ProfileFields:
    """The mutable part of a profile, as written by ``upsert``."""

    password_hash: str
    name: str
    role: Role


def normalize_email(email: str) -> str:
    return (email or "").strip().lower()


class ProfileStore(Protocol):
    def open(self) -> None: ...

    def close(self) -> None: ...

    def find_by_email(self, email: str) -> Optional[Profile]: ...

    def find_by_id(self, profile_id: str) -> Optional[Profile]: ...

    def list_profiles(self) -> List[Profile]: ...

    def upsert(self, email: str, fields: ProfileFields) -> Profile: ...


def _merge(existing: Optional[Profile], email: str, fields: ProfileFields) -> Profile:
    if existing is None:
        return Profile(
            id=str(uuid.uuid4()),
            email=email,
            password_hash=fields.password_hash,
            name=fields.name,
            role=fields.role,
        )
    return replace(
        existing,
        # Hand-written files may lack ids; a profile gets one on its first write.
        id=existing.id or str(uuid.uuid4()),
        password_hash=fields.password_hash,
        name=fields.name,
        role=fields.role,
    )


def _require_email(email: str) -> str:
    key = normalize_email(email)
    if not key:
        raise InvalidArgumentError("email", "must not be empty")
    return key


class InMemoryProfileStore:
    """Dict-backed store. Used by tests and FARMAPAY_STORE=memory."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._profiles: Dict[str, Profile] = {}

    def open(self) -> None:
        pass

    def close(self) -> None:
        pass

    def find_by_email(self, email: str) -> Optional[Profile]:
        with self._lock:
            return self._profiles.get(normalize_email(email))

    def find_by_id(self, profile_id: str) -> Optional[Profile]:
        with self._lock:
            for p in self._profiles.values():
                if p.id == profile_id:
                    return p
        return None

    def list_profiles(self) -> List[Profile]:
        with self._lock:
            return sorted(self._profiles.values(), key=lambda p: p.email)

    def upsert(self, email: str, fields: ProfileFields) -> Profile:
        key = _require_email(email)
        with self._lock:
            profile = _merge(self._profiles.get(key), key, fields)
            self._profiles[key] = profile
            return profile


class YamlProfileStore:
    """Profiles persisted in a YAML file.

    File shape::

        version: 1
        revision: 7
        profiles:
          someone@example.org:
            id: ...
            password_hash: ...
            name: ...
            role: ATTENDANT

    Writers hold an exclusive ``flock`` on ``<file>.lock`` from read to
    replace, so writes from separate processes are serialized. ``revision`` is
    bumped on every write; a write only lands if the revision on disk is still
    the one it started from (catches edits that bypass the lock), otherwise
    ConflictError. So does failing to get the lock within ``lock_timeout``.
    """

    def __init__(self, path: Path = DEFAULT_USERS_PATH, *, lock_timeout: float = LOCK_TIMEOUT_SECONDS) -> None:
        self.path = Path(path)
        self.lock_timeout = lock_timeout
        self._lock = threading.Lock()
        self._cache: Tuple[Tuple[int, int], int, Dict[str, Profile]] = ((0, 0), 0, {})

    def open(self) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)

    def close(self) -> None:
        self._cache = ((0, 0), 0, {})

    # ------------------ reads ------------------

    def _stamp(self) -> Tuple[int, int]:
        try:
            st = self.path.stat()
        except FileNotFoundError:
            return (0, 0)
        return (st.st_mtime_ns, st.st_size)

    def _load_raw(self) -> dict:
        if not self.path.exists():
            return {}
        raw = yaml.safe_load(self.path.read_text(encoding="utf-8")) or {}
        return raw if isinstance(raw, dict) else {}

    def _parse(self, raw: dict) -> Tuple[int, Dict[str, Profile]]:
        revision = int(raw.get("revision") or 0)
        entries = raw.get("profiles") or {}
        out: Dict[str, Profile] = {}
        if not isinstance(entries, dict):
            return revision, out
        for email, data in entries.items():
            key = normalize_email(str(email))
            if not key or not isinstance(data, dict):
                continue
            try:
                role = Role(str(data.get("role") or ""))
            except ValueError:
                logger.warning("profile_skipped_unknown_role", email=key, path=str(self.path))
                continue
            out[key] = Profile(
                id=str(data.get("id") or ""),
                email=key,
                password_hash=str(data.get("password_hash") or ""),
                name=str(data.get("name") or ""),
                role=role,
            )
        return revision, out

    def _read(self) -> Tuple[int, Dict[str, Profile]]:
        stamp = self._stamp()
        cached_stamp, cached_rev, cached = self._cache
        if stamp != (0, 0) and stamp == cached_stamp:
            return cached_rev, cached
        revision, profiles = self._parse(self._load_raw())
        self._cache = (stamp, revision, profiles)
        return revision, profiles

    def find_by_email(self, email: str) -> Optional[Profile]:
        key = normalize_email(email)
        if not key:
            return None
        return self._read()[1].get(key)

    def find_by_id(self, profile_id: str) -> Optional[Profile]:
        for p in self._read()[1].values():
            if p.id == profile_id:
                return p
        return None

    def list_profiles(self) -> List[Profile]:
        return sorted(self._read()[1].values(), key=lambda p: p.email)

    # ------------------ writes ------------------

    def upsert(self, email: str, fields: ProfileFields) -> Profile:
        key = _require_email(email)
        with self._lock, self._file_lock():
            raw = self._load_raw()
            revision, profiles = self._parse(raw)
            profile = _merge(profiles.get(key), key, fields)
            profiles[key] = profile

            # Untouched entries are copied verbatim, including ones _parse skipped.
            entries = raw.get("profiles") if isinstance(raw.get("profiles"), dict) else {}
            entries = {normalize_email(str(k)): v for k, v in entries.items()}
            entries[key] = {
                "id": profile.id,
                "password_hash": profile.password_hash,
                "name": profile.name,
                "role": profile.role.value,
            }
            doc = {
                "version": STORE_FORMAT_VERSION,
                "revision": revision + 1,
                "profiles": dict(sorted(entries.items())),
            }
            self._write(doc, expected_revision=revision)
            self._cache = (self._stamp(), revision + 1, profiles)
            return profile

    @contextmanager
    def _file_lock(self):
        self.path.parent.mkdir(parents=True, exist_ok=True)
        lock_path = self.path.with_name(self.path.name + ".lock")
        with open(lock_path, "a", encoding="utf-8") as fh:
            deadline = time.monotonic() + self.lock_timeout
            while True:
                try:
                    fcntl.flock(fh.fileno(), fcntl.LOCK_EX | fcntl.LOCK_NB)
                    break
                except BlockingIOError:
                    if time.monotonic() >= deadline:
                        raise ConflictError(f"{self.path.name} is locked by another writer")
                    time.sleep(0.05)
            try:
                yield
            finally:
                fcntl.flock(fh.fileno(), fcntl.LOCK_UN)

    def _write(self, doc: dict, *, expected_revision: int) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(prefix=".users.", suffix=".yml", dir=str(self.path.parent))
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as fh:
                yaml.safe_dump(doc, fh, sort_keys=False, allow_unicode=True)
            on_disk = int(self._load_raw().get("revision") or 0)
            if on_disk != expected_revision:
                raise ConflictError(
                    f"{self.path.name} changed underneath (revision {on_disk}, expected {expected_revision})"
                )
            os.replace(tmp_name, self.path)
        except BaseException:
            if os.path.exists(tmp_name):
                os.unlink(tmp_name)
            raise


def store_from_env() -> ProfileStore:
    kind = os.getenv("FARMAPAY_STORE", "yaml").strip().lower()
    if kind == "memory":
        return InMemoryProfileStore()
    if kind == "yaml":
        return YamlProfileStore(
            Path(os.getenv("FARMAPAY_USERS_PATH", str(DEFAULT_USERS_PATH))).resolve()
        )
    raise RuntimeError(f"Unknown FARMAPAY_STORE {kind!r} (expected yaml or memory)")
