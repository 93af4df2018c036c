"""Tests for the command-line entry point and terminal rendering."""

import io
import json
import logging
from unittest.mock import patch

import pytest

from patchwise import cli
from patchwise.cli_display import ProgressPrinter
from patchwise.progress import ProgressEvent


@pytest.fixture
def project(tmp_path, monkeypatch):
    (tmp_path / "README.md").write_text("# Demo\n", encoding="utf-8")
    monkeypatch.setenv("PATCHWISE_LOG_DIR", str(tmp_path / "logs"))
    yield tmp_path
    pkg_logger = logging.getLogger("patchwise")
    for handler in list(pkg_logger.handlers):
        if isinstance(handler, logging.FileHandler):
            pkg_logger.removeHandler(handler)
            handler.close()


def _main(argv, backend):
    with patch("sys.argv", ["patchwise", *argv]), \
            patch("patchwise.cli.create_client", return_value=backend):
        cli.main()


def test_json_output(scripted_backend, project, capsys):
    _main(["open the readme", "--root", str(project), "--json"], scripted_backend())
    data = json.loads(capsys.readouterr().out)
    assert data["status"] == "ready"
    assert data["action"] == "file_open"
    assert data["tier"] == "none"
    assert data["files_written"] == []


def test_text_output_for_chat(scripted_backend, project, capsys):
    _main(["How are you today?", "--root", str(project), "--quiet"],
          scripted_backend(chats=["Fine, thanks."]))
    out = capsys.readouterr().out
    assert "[ready] chat" in out
    assert "Fine, thanks." in out


def test_failed_run_exits_non_zero(scripted_backend, project):
    from patchwise.errors import LLMError

    with pytest.raises(SystemExit) as exc_info:
        _main(["How are you today?", "--root", str(project), "--quiet"],
              scripted_backend(chats=[LLMError("down")]))
    assert exc_info.value.code == 1


def test_progress_printer_formats_events():
    stream = io.StringIO()
    printer = ProgressPrinter(stream=stream)
    printer(ProgressEvent(run_id="run-1", ts=0.0, level="warn", phase="diff",
                          message="Generating patch"))
    printer(ProgressEvent(run_id="run-1", ts=0.0, level="debug", phase="diff",
                          message="hidden"))
    lines = stream.getvalue().splitlines()
    assert len(lines) == 1
    assert lines[0].endswith("! [diff    ] Generating patch")
