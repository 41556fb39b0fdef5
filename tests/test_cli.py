"""
Smoke tests for the command-line interface.
"""

import pytest

from neurolock.cli.main import create_parser, main
from neurolock.engine import Status


@pytest.fixture
def run(tmp_path):
    def _run(*args):
        return main(["--template-dir", str(tmp_path / "templates"), "--seed", "7", *args])
    return _run


class TestCommands:

    def test_enrol_auth_delete(self, run, capsys):
        assert run("enroll", "alice") == Status.OK
        assert "ENROLMENT SUCCESSFUL" in capsys.readouterr().out

        assert run("auth", "alice") == Status.OK
        assert "AUTHENTICATION SUCCESSFUL" in capsys.readouterr().out

        assert run("list") == Status.OK
        assert "alice" in capsys.readouterr().out

        assert run("delete", "alice", "--yes") == Status.OK
        assert run("auth", "alice") == Status.NOT_ENROLLED

    def test_enrol_twice(self, run):
        assert run("enroll", "alice") == Status.OK
        assert run("enroll", "alice") == Status.ALREADY_ENROLLED

    def test_impostor_rejected(self, run, capsys):
        assert run("enroll", "alice") == Status.OK
        assert run("--seed", "99", "--tone-amplitude", "0", "auth", "alice") == Status.REJECTED
        assert "Access denied." in capsys.readouterr().out

    def test_delete_needs_confirmation(self, run, monkeypatch):
        assert run("enroll", "alice") == Status.OK
        monkeypatch.setattr("builtins.input", lambda prompt: "no")
        assert run("delete", "alice") == Status.CANCELLED
        monkeypatch.setattr("builtins.input", lambda prompt: "yes")
        assert run("delete", "alice") == Status.OK

    def test_invalid_username(self, run):
        assert run("enroll", "../escape") == Status.VALIDATION_ERROR

    def test_invalid_threshold(self, run):
        assert run("--threshold", "2", "list") == Status.VALIDATION_ERROR

    def test_self_test(self, run, capsys):
        assert run("test") == Status.OK
        assert "SYSTEM TEST COMPLETE" in capsys.readouterr().out

    def test_task_choices(self):
        with pytest.raises(SystemExit):
            create_parser().parse_args(["enroll", "alice", "--task", "9"])
