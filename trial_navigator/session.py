from __future__ import annotations

import json
import logging
import secrets
from pathlib import Path

from trial_navigator.config import settings
from trial_navigator.models.patient import PatientProfile

logger = logging.getLogger(__name__)

_ALPHABET = "ABCDEFGHJKMNPQRSTUVWXYZ23456789"


def _write_json(path: Path, data: dict | list) -> None:
    path.write_text(json.dumps(data, indent=2, default=str), encoding="utf-8")


class SessionStateStore:
    """Durable slot for one conversation's continuation token."""

    def __init__(self, path: Path):
        self.path = path

    def save(self, token: str) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        _write_json(self.path, {"continuation_token": token})

    def restore(self) -> str | None:
        if not self.path.exists():
            return None
        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
        except json.JSONDecodeError:
            logger.warning("Ignoring unreadable conversation state at %s", self.path)
            return None
        return data.get("continuation_token") or None

    def clear(self) -> None:
        self.path.unlink(missing_ok=True)


class SessionManager:
    def __init__(self, base_dir: Path | None = None):
        self.base_dir = base_dir or settings.sessions_dir
        self.base_dir.mkdir(parents=True, exist_ok=True)

    def _generate_short_id(self, length: int = 6) -> str:
        while True:
            sid = "".join(secrets.choice(_ALPHABET) for _ in range(length))
            if not (self.base_dir / sid).exists():
                return sid

    def create_session(self, session_id: str | None = None) -> str:
        session_id = session_id or self._generate_short_id()
        session_dir = self.base_dir / session_id
        session_dir.mkdir(parents=True, exist_ok=True)

        profile_path = session_dir / "patient_profile.json"
        if not profile_path.exists():
            _write_json(profile_path, PatientProfile().model_dump(mode="json"))
        return session_id

    def session_dir(self, session_id: str) -> Path:
        d = self.base_dir / session_id
        if not d.exists():
            raise ValueError(f"Session {session_id} not found")
        return d

    def get_profile(self, session_id: str) -> PatientProfile:
        path = self.session_dir(session_id) / "patient_profile.json"
        if not path.exists():
            return PatientProfile()
        return PatientProfile.model_validate_json(path.read_text(encoding="utf-8"))

    def save_profile(self, session_id: str, profile: PatientProfile) -> None:
        path = self.session_dir(session_id) / "patient_profile.json"
        _write_json(path, profile.model_dump(mode="json"))

    def state_store(self, session_id: str) -> SessionStateStore:
        return SessionStateStore(self.session_dir(session_id) / "conversation.json")
