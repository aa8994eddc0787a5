"""Tests for runtime resolution and argument quoting."""

from pathlib import Path

import pytest

from omakure.runtime import (
    ScriptKind,
    build_request,
    command_for,
    flatten_pairs,
    format_command,
    interpreter_name,
    ps_quote,
    quote_arg,
    script_kind,
)


class TestScriptKind:
    @pytest.mark.parametrize(
        "name,kind",
        [
            ("a.bash", ScriptKind.BASH),
            ("a.sh", ScriptKind.BASH),
            ("a.PS1", ScriptKind.POWERSHELL),
            ("a.py", ScriptKind.PYTHON),
        ],
    )
    def test_supported(self, name, kind):
        assert script_kind(Path(name)) == kind

    def test_unsupported(self):
        assert script_kind(Path("notes.txt")) is None
        assert script_kind(Path("Makefile")) is None


class TestInterpreter:
    def test_posix(self):
        assert interpreter_name(ScriptKind.BASH, "linux") == "bash"
        assert interpreter_name(ScriptKind.POWERSHELL, "darwin") == "pwsh"
        assert interpreter_name(ScriptKind.PYTHON, "linux") == "python3"

    def test_windows(self):
        assert interpreter_name(ScriptKind.POWERSHELL, "win32") == "powershell"
        assert interpreter_name(ScriptKind.PYTHON, "win32") == "python"

    def test_powershell_command(self):
        script = Path("/ws/setup.ps1")
        assert command_for(script, "linux", locate=False) == ("pwsh", "-NoProfile", "-File", str(script))

    def test_bash_command(self):
        script = Path("/ws/deploy.sh")
        assert command_for(script, "linux", locate=False) == ("bash", str(script))

    def test_unsupported_command(self):
        with pytest.raises(ValueError):
            command_for(Path("/ws/readme.md"), "linux", locate=False)


class TestQuoting:
    def test_ps_quote_doubles_single_quotes(self):
        assert ps_quote("it's") == "'it''s'"
        assert ps_quote("$(Remove-Item)") == "'$(Remove-Item)'"

    def test_posix_quote(self):
        assert quote_arg(ScriptKind.BASH, "a b") == "'a b'"
        assert quote_arg(ScriptKind.BASH, "plain") == "plain"

    def test_flatten_pairs(self):
        assert flatten_pairs([("--a", "1"), ("-b", "two")]) == ["--a", "1", "-b", "two"]


class TestBuildRequest:
    def test_runs_in_script_directory(self, tmp_path):
        script = tmp_path / "sub" / "job.py"
        request = build_request(script, ["--n", "1"], label="n=1", values={"n": "1"}, platform="linux")
        assert request.cwd == script.parent
        assert request.argv == ["python3", str(script), "--n", "1"]
        assert request.label == "n=1"

    def test_format_command_is_relative_and_quoted(self, tmp_path):
        script = tmp_path / "ops" / "deploy.bash"
        request = build_request(script, ["--msg", "hello world"], platform="linux")
        assert format_command(request, tmp_path) == "bash ops/deploy.bash --msg 'hello world'"
