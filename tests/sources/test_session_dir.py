import json
import os
from pathlib import Path

import pytest

from quotameter.errors import SourceUnavailableError
from quotameter.models import SessionBundle
from quotameter.sources.session_dir import SessionDirSource, read_session_dir, read_workspace


def _write_session(root: "Path", session_id: "str", workspace: "str", events: "list[dict]") -> "None":
    session_dir = root / "session-state" / session_id
    session_dir.mkdir(parents=True)
    (session_dir / "workspace.yaml").write_text(workspace, encoding="utf-8")
    (session_dir / "events.jsonl").write_text(
        "\n".join(json.dumps(event) for event in events) + "\n",
        encoding="utf-8",
    )


class TestReadSessionDir:
    def test_reads_logs_and_sessions(self, tmp_path: "Path") -> "None":
        logs = tmp_path / "logs"
        logs.mkdir()
        older = logs / "b.log"
        newer = logs / "a.log"
        older.write_text("2026-02-20T01:06:10.578Z [INFO] Workspace initialized: s1\n")
        newer.write_text("2026-02-21T15:00:00.000Z [INFO] Workspace initialized: s2\n")
        os.utime(older, (1_000_000, 1_000_000))
        os.utime(newer, (2_000_000, 2_000_000))

        _write_session(
            tmp_path,
            "s1",
            "id: s1\nrepository: owner/repo\nbranch: main\n"
            "created_at: 2026-02-20T01:06:10.578Z\nupdated_at: 2026-02-20T02:00:00Z\n",
            [{"type": "user.message", "timestamp": "2026-02-20T01:07:30Z", "data": {}}],
        )

        bundle = read_session_dir(tmp_path)

        # oldest log file first regardless of name
        assert [lines[0][-2:] for lines in bundle.log_files] == ["s1", "s2"]
        (session,) = bundle.sessions
        assert session.id == "s1"
        assert session.metadata["repository"] == "owner/repo"
        assert session.metadata["branch"] == "main"
        assert len(session.event_lines) == 1

    def test_session_without_workspace_uses_directory_name(self, tmp_path: "Path") -> "None":
        (tmp_path / "session-state" / "abc").mkdir(parents=True)
        bundle = read_session_dir(tmp_path)
        (session,) = bundle.sessions
        assert session.id == "abc"
        assert session.metadata == {}
        assert session.event_lines == []

    def test_empty_root(self, tmp_path: "Path") -> "None":
        assert read_session_dir(tmp_path) == SessionBundle()

    def test_missing_root(self, tmp_path: "Path") -> "None":
        with pytest.raises(SourceUnavailableError):
            read_session_dir(tmp_path / "nope")


class TestReadWorkspace:
    def test_invalid_yaml_is_ignored(self, tmp_path: "Path") -> "None":
        path = tmp_path / "workspace.yaml"
        path.write_text("id: [unclosed\n", encoding="utf-8")
        assert read_workspace(path) == {}

    def test_non_mapping_is_ignored(self, tmp_path: "Path") -> "None":
        path = tmp_path / "workspace.yaml"
        path.write_text("- a\n- b\n", encoding="utf-8")
        assert read_workspace(path) == {}


class TestSessionDirSource:
    @pytest.mark.asyncio
    async def test_fetch(self, tmp_path: "Path") -> "None":
        _write_session(tmp_path, "s1", "id: s1\ncwd: /work/project\n", [])
        source = SessionDirSource(tmp_path, account="me")
        assert source.name == "sessions"
        assert source.account == "me"

        bundle = await source.fetch()
        await source.close()
        assert bundle.sessions[0].metadata["cwd"] == "/work/project"

    @pytest.mark.asyncio
    async def test_fetch_missing_root(self, tmp_path: "Path") -> "None":
        source = SessionDirSource(tmp_path / "missing")
        with pytest.raises(SourceUnavailableError):
            await source.fetch()
