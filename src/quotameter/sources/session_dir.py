import asyncio
from pathlib import Path
from typing import Any

import structlog
import yaml

from quotameter.errors import SourceUnavailableError
from quotameter.models import SessionBundle, SessionRecord

logger = structlog.get_logger()

LOG_DIR = "logs"
SESSION_STATE_DIR = "session-state"
WORKSPACE_FILE = "workspace.yaml"
EVENTS_FILE = "events.jsonl"


def _read_lines(path: "Path") -> "list[str]":
    with path.open(encoding="utf-8", errors="replace") as fh:
        return fh.read().splitlines()


def read_workspace(path: "Path") -> "dict[str, Any]":
    """
    loads workspace.yaml. A missing or unreadable file yields {}.
    """
    if not path.is_file():
        return {}
    try:
        with path.open(encoding="utf-8") as fh:
            data = yaml.safe_load(fh)
    except (OSError, yaml.YAMLError) as exc:
        logger.warning("workspace_unreadable", path=str(path), error=str(exc))
        return {}
    if not isinstance(data, dict):
        return {}
    return {str(key): value for key, value in data.items()}


def read_session_dir(root: "Path") -> "SessionBundle":
    """
    reads <root>/logs/*.log (oldest first) and every
    <root>/session-state/<id>/ directory.
    """
    if not root.is_dir():
        raise SourceUnavailableError(f"session directory not found: {root}")

    log_files: "list[list[str]]" = []
    log_dir = root / LOG_DIR
    if log_dir.is_dir():
        paths = sorted(log_dir.glob("*.log"), key=lambda p: (p.stat().st_mtime, p.name))
        for path in paths:
            try:
                log_files.append(_read_lines(path))
            except OSError as exc:
                logger.warning("log_file_unreadable", path=str(path), error=str(exc))

    sessions: "list[SessionRecord]" = []
    state_dir = root / SESSION_STATE_DIR
    if state_dir.is_dir():
        for session_path in sorted(p for p in state_dir.iterdir() if p.is_dir()):
            metadata = read_workspace(session_path / WORKSPACE_FILE)
            events_path = session_path / EVENTS_FILE
            event_lines: "list[str]" = []
            if events_path.is_file():
                try:
                    event_lines = _read_lines(events_path)
                except OSError as exc:
                    logger.warning("events_unreadable", path=str(events_path), error=str(exc))
            session_id = str(metadata.get("id") or session_path.name)
            sessions.append(
                SessionRecord(id=session_id, metadata=metadata, event_lines=event_lines)
            )

    return SessionBundle(log_files=log_files, sessions=sessions)


class SessionDirSource:
    """
    SessionDirSource reads a local CLI session directory: free-text
    log files plus one state directory per session holding workspace
    metadata and an event log.
    """

    def __init__(self, root: "str | Path", account: "str" = "cli") -> "None":
        self._root = Path(root).expanduser()
        self._account = account

    @property
    def name(self) -> "str":
        return "sessions"

    @property
    def account(self) -> "str":
        return self._account

    async def fetch(self) -> "SessionBundle":
        bundle = await asyncio.to_thread(read_session_dir, self._root)
        logger.debug(
            "session_dir_read",
            root=str(self._root),
            log_files=len(bundle.log_files),
            sessions=len(bundle.sessions),
        )
        return bundle

    async def close(self) -> "None":
        """
        nothing to release; present for the UsageSource protocol.
        """
