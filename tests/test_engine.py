"""Tests for the navigation engine, driven by key strings."""

import time

import pytest
import readchar

from omakure.schema import Discovery, SchemaCache
from omakure.tui.engine import NavigationEngine
from omakure.tui.screens import (
    Environments,
    Error,
    FieldInput,
    History,
    Running,
    RunResult,
    ScriptSelect,
    Search,
)
from omakure.tui.tasks import PreviewLoaded, WidgetLoaded
from omakure.tui.view import render_markup, result_lines
from omakure.types import Outcome, Schema, WidgetResult
from omakure.workspace import Workspace

ENTER = readchar.key.ENTER
ESC = readchar.key.ESC
LEFT = readchar.key.LEFT
RIGHT = readchar.key.RIGHT

GREET = {
    "Name": "greet",
    "Fields": [{"Name": "who", "Prompt": "Who", "Type": "string", "Required": True, "Arg": "--who"}],
}


@pytest.fixture
def make_engine(workspace):
    def _make(**kwargs):
        kwargs.setdefault("schemas", SchemaCache(dynamic=False))
        engine = NavigationEngine(workspace, **kwargs)
        engine.start()
        assert engine.settle()
        return engine

    return _make


def _press(engine, *pressed):
    for key in pressed:
        engine.handle_key(key)
        assert engine.settle()


def _names(engine):
    return [entry.name for entry in engine.browser.entries]


def _open(engine, name):
    engine.browser.cursor = _names(engine).index(name)
    _press(engine, ENTER)


def _wait_for(path, timeout=10.0):
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if path.exists():
            return True
        time.sleep(0.05)
    return False


class TestBrowsing:
    def test_enter_directory_and_parent(self, workspace, make_script, make_engine):
        make_script("azure/list.bash", "")
        make_script("top.bash", "")
        engine = make_engine()
        assert isinstance(engine.screen, ScriptSelect)
        assert _names(engine) == [".omaken", "azure", "top.bash"]

        _open(engine, "azure")
        assert engine.browser.directory == workspace.root / "azure"
        assert _names(engine) == ["list.bash"]

        _press(engine, LEFT)
        assert engine.browser.directory == workspace.root
        assert engine.browser.selected.name == "azure"

    def test_escape_quits_at_root(self, make_engine):
        engine = make_engine()
        _press(engine, ESC)
        assert not engine.running

    def test_refresh_picks_up_new_scripts(self, make_script, make_engine):
        engine = make_engine()
        make_script("new.bash", "", schema={"Name": "new"})
        _press(engine, "r")
        assert "new.bash" in _names(engine)
        assert [r.path for r in engine.index.query("new")] == ["new.bash"]

    def test_missing_workspace_is_fatal(self, tmp_path):
        engine = NavigationEngine(Workspace(tmp_path / "missing"))
        engine.start()
        assert isinstance(engine.screen, Error)
        assert engine.screen.fatal
        _press(engine, ENTER)
        assert not engine.running


class TestWidgets:
    def test_stale_widget_results_are_ignored(self, workspace, make_script, make_engine):
        for name in ("a", "b"):
            make_script(f"{name}/tool.bash", "")
            (workspace.root / name / "index.lua").write_text(
                f'return {{title = "{name.upper()}", lines = {{"ok"}}}}'
            )
        engine = make_engine()
        stale_token = engine._widget_token + 1
        engine.enter_directory(workspace.root / "a")
        engine.enter_directory(workspace.root / "b")
        assert engine.settle()
        assert engine.browser.widget.title == "B"

        engine.dispatch(WidgetLoaded(workspace.root / "a", stale_token, WidgetResult(title="stale")))
        assert engine.browser.widget.title == "B"
        assert "B" in render_markup(engine, 30)


class TestPreview:
    def test_browser_previews_selected_script(self, make_script, make_engine):
        make_script("greet.bash", "", schema=GREET)
        make_script("ops/tool.bash", "")
        engine = make_engine()
        assert _names(engine) == [".omaken", "ops", "greet.bash"]
        assert engine.browser.preview_path is None

        _press(engine, "j", "j")
        preview = engine.browser.preview
        assert preview.schema.name == "greet"
        markup = render_markup(engine, 40)
        assert "Schema: greet.bash" in markup
        assert "who" in markup
        assert "required" in markup
        assert "prompt: Who" in markup

        _press(engine, "k")
        assert engine.browser.preview_path is None
        assert "Schema:" not in render_markup(engine, 40)

    def test_script_without_schema_previews_error(self, make_script, make_engine):
        make_script("plain.bash", "echo hi")
        engine = make_engine()
        _press(engine, "j")
        assert engine.browser.selected.name == "plain.bash"
        assert engine.browser.preview is not None
        assert engine.browser.preview.schema is None
        assert "Schema: plain.bash" in render_markup(engine, 40)

    def test_stale_preview_is_ignored(self, make_script, make_engine):
        make_script("a.bash", "", schema={"Name": "alpha"})
        make_script("b.bash", "", schema={"Name": "bravo"})
        engine = make_engine()
        _press(engine, "j")
        stale_token = engine.browser.preview_token
        stale_path = engine.browser.preview_path
        _press(engine, "j")
        assert engine.browser.preview.schema.name == "bravo"

        engine.dispatch(PreviewLoaded(stale_path, stale_token, Discovery(schema=Schema(name="stale"))))
        assert engine.browser.preview.schema.name == "bravo"

    def test_search_previews_selected_hit(self, make_script, make_engine):
        make_script("ops/cleanup.bash", "", schema={"Name": "cleanup", "Tags": ["maint"]})
        make_script(
            "ops/deploy-app.bash",
            "",
            schema={"Name": "deploy-app", "Description": "Deploy", "Fields": GREET["Fields"]},
        )
        engine = make_engine()
        _press(engine, "/")
        search = engine.screen
        assert search.preview.schema.name == "cleanup"
        assert "Tags: maint" in render_markup(engine, 40)

        _press(engine, readchar.key.DOWN)
        assert search.preview_path.name == "deploy-app.bash"
        assert search.preview.schema.description == "Deploy"
        markup = render_markup(engine, 40)
        assert "Description: Deploy" in markup
        assert "who" in markup

        _press(engine, "x", "y", "z")
        assert search.results == []
        assert search.preview_path is None


class TestForms:
    def test_script_without_schema_shows_hint(self, make_script, make_engine):
        make_script("plain.bash", "echo hi")
        engine = make_engine()
        _open(engine, "plain.bash")

        assert isinstance(engine.screen, Error)
        assert engine.screen.title == "No schema"
        assert engine.screen.hint == "Run it headlessly: omakure run plain.bash"
        _press(engine, ENTER)
        assert engine.screen is engine.browser
        assert engine.browser.pending is None

    def test_required_field_error_then_run(self, workspace, make_script, make_engine):
        make_script("greet.bash", 'echo "hello $2"', schema=GREET)
        engine = make_engine()
        _open(engine, "greet.bash")
        form = engine.screen
        assert isinstance(form, FieldInput)

        _press(engine, ENTER)
        assert engine.screen is form
        assert form.error == "who: Value required"

        _press(engine, "b", "o", "b")
        assert form.values == {"who": "bob"}
        assert form.error is None
        _press(engine, ENTER)

        result = engine.screen
        assert isinstance(result, RunResult)
        assert result.report.success
        assert "hello bob" in result_lines(result.report)
        assert result.command.endswith("greet.bash --who bob")

        _press(engine, "h")
        assert isinstance(engine.screen, History)
        assert engine.screen.records[0].values == {"who": "bob"}

    def test_choices_cycle_with_arrows(self, make_script, make_engine):
        schema = {
            "Name": "pick",
            "Fields": [{"Name": "tier", "Type": "string", "Choices": ["free", "pro"], "Default": "free"}],
        }
        make_script("pick.bash", "", schema=schema)
        engine = make_engine()
        _open(engine, "pick.bash")
        form = engine.screen
        _press(engine, RIGHT)
        assert form.values["tier"] == "pro"
        _press(engine, RIGHT)
        assert form.values["tier"] == "free"

    def test_escape_returns_to_browser(self, make_script, make_engine):
        make_script("greet.bash", "", schema=GREET)
        engine = make_engine()
        _open(engine, "greet.bash")
        _press(engine, ESC)
        assert engine.screen is engine.browser


class TestRuns:
    def test_nonzero_exit_is_reported_and_recorded(self, make_script, make_engine):
        make_script("fail.bash", 'echo "bad input" >&2\nexit 2', schema={"Name": "fail"})
        engine = make_engine()
        _open(engine, "fail.bash")

        result = engine.screen
        assert isinstance(result, RunResult)
        assert not result.report.success
        assert result.report.last.result.exit_code == 2
        lines = result_lines(result.report)
        assert lines[0] == "Result: failed (exit 2)"
        assert lines[1:] == ["STDERR:", "bad input"]

        (record,) = engine.history.list()
        assert record.outcome == Outcome.FAILED
        assert record.exit_code == 2
        assert record.script == "fail.bash"

    def test_queue_runs_each_set_in_order(self, make_script, make_engine):
        schema = {
            "Name": "batch",
            "Fields": [{"Name": "region", "Type": "string", "Required": True, "Arg": "--region"}],
            "Queue": {"Matrix": [{"Name": "region", "Values": ["eastus", "westus"]}]},
        }
        make_script("batch.bash", 'echo "$2"', schema=schema)
        engine = make_engine()
        _open(engine, "batch.bash")
        form = engine.screen
        assert form.queued == {"region"}

        _press(engine, "x")
        assert form.values == {}
        _press(engine, ENTER)

        report = engine.screen.report
        assert [item.result.stdout for item in report.items] == ["eastus\n", "westus\n"]
        assert result_lines(report)[0] == "[1/2] region=eastus: success"
        assert sorted(r.label for r in engine.history.list()) == ["region=eastus", "region=westus"]

    def test_cancel_running_script(self, tmp_path, make_script, make_engine):
        marker = tmp_path / "started"
        make_script("slow.bash", f'touch "{marker}"\nsleep 30', schema={"Name": "slow"})
        engine = make_engine()
        engine.browser.cursor = _names(engine).index("slow.bash")
        engine.handle_key(ENTER)

        deadline = time.monotonic() + 10
        while not isinstance(engine.screen, Running) and time.monotonic() < deadline:
            engine.pump(0.1)
        assert isinstance(engine.screen, Running)
        assert "Running" in render_markup(engine, 30)
        assert _wait_for(marker)

        cancelled_at = time.monotonic()
        engine.handle_key("c")
        assert engine.screen.cancel_requested
        assert engine.settle(20)
        assert time.monotonic() - cancelled_at < 15

        result = engine.screen
        assert isinstance(result, RunResult)
        assert result.report.cancelled
        assert result.report.items[0].result.outcome == Outcome.CANCELLED
        assert [r.outcome for r in engine.history.list()] == [Outcome.CANCELLED]


class TestSearch:
    def test_typing_filters_and_enter_opens(self, make_script, make_engine):
        make_script("ops/deploy-app.bash", "echo deployed", schema={"Name": "deploy-app", "Description": "Deploy"})
        make_script("ops/cleanup.bash", "", schema={"Name": "cleanup"})
        engine = make_engine()

        _press(engine, "/")
        search = engine.screen
        assert isinstance(search, Search)
        assert [r.path for r in search.results] == ["ops/cleanup.bash", "ops/deploy-app.bash"]

        _press(engine, "d", "e", "p")
        assert [r.path for r in search.results] == ["ops/deploy-app.bash"]
        assert "deploy-app" in render_markup(engine, 30)

        _press(engine, ENTER)
        assert isinstance(engine.screen, RunResult)
        assert "deployed" in result_lines(engine.screen.report)

    def test_escape_leaves_search(self, make_engine):
        engine = make_engine()
        _press(engine, "/", "x", ESC)
        assert engine.screen is engine.browser


class TestEnvironments:
    def test_activate_prefill_and_deactivate(self, make_script, make_env, make_engine):
        make_env("dev", "WHO=bob\n")
        make_env("prod", "WHO=alice\nAPI_TOKEN=abc\n")
        make_script("greet.bash", "", schema=GREET)
        engine = make_engine()

        _press(engine, "e")
        envs = engine.screen
        assert isinstance(envs, Environments)
        assert envs.names == ["dev", "prod"]
        assert envs.preview == [("WHO", "bob")]

        _press(engine, "j")
        assert envs.preview == [("WHO", "alice"), ("API_TOKEN", "***")]
        _press(engine, ENTER)
        assert envs.active == "prod"
        assert engine.env.defaults == {"who": "alice", "api_token": "abc"}
        assert "env: prod" in engine.status_text()

        _press(engine, ESC)
        _open(engine, "greet.bash")
        assert engine.screen.values == {"who": "alice"}

        _press(engine, ESC, "e", "d")
        assert engine.screen.active is None
        assert engine.env.defaults == {}

    def test_broken_active_pointer_is_reported(self, workspace, make_engine):
        (workspace.envs_dir / "active").write_text("ghost\n")
        engine = make_engine()
        assert engine.env.active is None
        assert "env error" in engine.status_text()
        assert isinstance(engine.screen, ScriptSelect)
