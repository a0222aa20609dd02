#!/usr/bin/env python3
"""
Session Store Module
Persists sessions (one JSON file per session id) and user settings on disk.
"""

import os
import json
import tempfile
import logging
from typing import Any, Dict, List, Optional

from wa_checker.config import DEFAULT_SETTINGS, ENV_API_KEY, SESSIONS_DIR, SETTINGS_FILE, get_data_dir
from wa_checker.core.errors import StorageError
from wa_checker.core.models import CheckSettings, Session

logger = logging.getLogger(__name__)


def _write_json_atomic(path: str, data: Any):
    """Write JSON next to `path` and swap it in, so a failed write leaves the old file intact."""
    directory = os.path.dirname(path) or '.'
    try:
        os.makedirs(directory, exist_ok=True)
        with tempfile.NamedTemporaryFile('w', dir=directory, suffix='.tmp', delete=False,
                                         encoding='utf-8') as tmp:
            json.dump(data, tmp, indent=2, ensure_ascii=False)
            tmp_path = tmp.name
    except (OSError, TypeError, ValueError) as e:
        raise StorageError(f"Could not write {path}: {e}") from e

    try:
        os.replace(tmp_path, path)
    except OSError as e:
        os.unlink(tmp_path)
        raise StorageError(f"Could not write {path}: {e}") from e


def _read_json(path: str) -> Any:
    try:
        with open(path, 'r', encoding='utf-8') as f:
            return json.load(f)
    except (OSError, json.JSONDecodeError) as e:
        raise StorageError(f"Could not read {path}: {e}") from e


class SessionStore:
    """Session persistence. The engine is the only writer while a session is running."""

    def __init__(self, data_dir: Optional[str] = None):
        self.data_dir = data_dir or get_data_dir()
        self.sessions_dir = os.path.join(self.data_dir, SESSIONS_DIR)

    def _path(self, session_id: str) -> str:
        if not session_id or os.sep in session_id or session_id.startswith('.'):
            raise StorageError(f"Invalid session id: {session_id!r}")
        return os.path.join(self.sessions_dir, f"{session_id}.json")

    def create(self, session: Session) -> Session:
        path = self._path(session.id)
        if os.path.exists(path):
            raise StorageError(f"Session {session.id} already exists")
        return self.update(session)

    def get(self, session_id: str) -> Optional[Session]:
        path = self._path(session_id)
        if not os.path.exists(path):
            return None
        data = _read_json(path)
        try:
            return Session.from_dict(data)
        except (KeyError, TypeError, ValueError) as e:
            raise StorageError(f"Corrupt session file {path}: {e}") from e

    def list(self) -> List[Session]:
        """All stored sessions, most recent first. Unreadable files are skipped with a warning."""
        if not os.path.isdir(self.sessions_dir):
            return []

        sessions = []
        for name in os.listdir(self.sessions_dir):
            if not name.endswith('.json'):
                continue
            try:
                session = self.get(name[:-len('.json')])
            except StorageError as e:
                logger.warning(f"Skipping unreadable session file {name}: {e}")
                continue
            if session is not None:
                sessions.append(session)

        sessions.sort(key=lambda s: s.start_time, reverse=True)
        return sessions

    def update(self, session: Session) -> Session:
        """Full overwrite keyed by id; counters are recomputed from results first."""
        session.recompute_counters()
        _write_json_atomic(self._path(session.id), session.to_dict())
        logger.debug(f"Saved session {session.id} ({session.status}, "
                     f"{session.completed_numbers}/{session.total_numbers})")
        return session

    def delete(self, session_id: str) -> bool:
        path = self._path(session_id)
        if not os.path.exists(path):
            return False
        try:
            os.remove(path)
        except OSError as e:
            raise StorageError(f"Could not delete {path}: {e}") from e
        logger.info(f"Deleted session {session_id}")
        return True

    def clear(self) -> int:
        """Delete every stored session; returns how many were removed."""
        if not os.path.isdir(self.sessions_dir):
            return 0
        removed = 0
        for name in os.listdir(self.sessions_dir):
            if name.endswith('.json') and self.delete(name[:-len('.json')]):
                removed += 1
        logger.info(f"Cleared {removed} sessions")
        return removed

    def set_starred(self, session_id: str, starred: bool = True) -> Optional[Session]:
        session = self.get(session_id)
        if session is None:
            return None
        session.is_starred = starred
        return self.update(session)

    def stats(self) -> Dict[str, Any]:
        sessions = self.list()
        return {
            'total_sessions': len(sessions),
            'total_numbers_checked': sum(s.completed_numbers for s in sessions),
            'total_successful': sum(s.successful_checks for s in sessions),
            'total_failed': sum(s.failed_checks for s in sessions),
            'last_check_time': sessions[0].start_time if sessions else None,
        }


class SettingsStore:
    """User settings in settings.json, merged over DEFAULT_SETTINGS."""

    def __init__(self, data_dir: Optional[str] = None):
        self.data_dir = data_dir or get_data_dir()
        self.path = os.path.join(self.data_dir, SETTINGS_FILE)

    def _load_raw(self) -> Dict[str, Any]:
        if not os.path.exists(self.path):
            return {}
        data = _read_json(self.path)
        if not isinstance(data, dict):
            raise StorageError(f"Settings file {self.path} is not a JSON object")
        return data

    def get_settings(self) -> CheckSettings:
        merged = dict(DEFAULT_SETTINGS)
        merged.update(self._load_raw())
        env_key = os.environ.get(ENV_API_KEY)
        if env_key:
            merged['api_key'] = env_key
        return CheckSettings.from_dict(merged)

    def save_settings(self, settings: CheckSettings) -> CheckSettings:
        _write_json_atomic(self.path, settings.to_dict())
        logger.info("Settings saved")
        return settings

    def update_settings(self, **changes) -> CheckSettings:
        current = CheckSettings.from_dict({**DEFAULT_SETTINGS, **self._load_raw()})
        unknown = set(changes) - set(current.to_dict())
        if unknown:
            raise ValueError(f"Unknown settings: {', '.join(sorted(unknown))}")
        return self.save_settings(current.copy(**changes))
