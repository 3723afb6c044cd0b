"""
A read-only, JSON-file stand-in for the session record store.

Records are owned by whoever writes the file. Each lookup re-reads it, so
edits show up on the next start without restarting the server.
"""
import json
import logging
import os
from typing import Optional

from data_models import SessionConfig
from tracer import trace


class JsonSessionStore:
    def __init__(self, path: str):
        self.path = path

    def _load_records(self) -> list[dict]:
        if not os.path.exists(self.path):
            logging.warning(f"Session store '{self.path}' does not exist.")
            return []
        with open(self.path, "r", encoding="utf-8") as f:
            data = json.load(f)
        # Accept either a bare list of records or {"sessions": [...]}.
        if isinstance(data, dict):
            data = data.get("sessions", [])
        return [record for record in data if isinstance(record, dict)]

    @trace
    def get_session_config(self, session_id: str) -> Optional[SessionConfig]:
        """
        Returns the validated record for session_id, or None if there is none.

        Raises:
            pydantic.ValidationError: If the stored record is malformed.
        """
        for record in self._load_records():
            if record.get("session_id") == session_id:
                return SessionConfig.model_validate(record)
        return None

    def session_ids(self) -> list[str]:
        return [record["session_id"] for record in self._load_records() if "session_id" in record]
