"""Navigation engine: the navigator's state machine.

The engine owns the current screen and every piece of interactive
state. It is driven by two kinds of input, both delivered through one
inbox: key presses and completion messages from background tasks
(widget load, schema discovery, schema preview, index rebuild, script
run). Nothing in here blocks on a background task; ``pump`` applies
whatever messages are already waiting.
"""

from __future__ import annotations

import logging
import threading
import time
from pathlib import Path
from typing import Any

from ..config import get_bool, get_float, load_config
from ..environments import (
    EnvironmentConfig,
    list_env_files,
    load_environment_config,
    load_preview,
    prefill,
    set_active,
)
from ..errors import EnvFileError, ValidationError, WorkspaceError
from ..history import HistoryStore
from ..normalize import parameter_sets
from ..repository import EntryRepository
from ..runner import RunJob, run_script
from ..runtime import build_request, flatten_pairs, format_command
from ..schema import Discovery, SchemaCache
from ..search_index import SearchIndex
from ..types import Entry, FieldType
from ..widgets import fallback, load_widget
from ..workspace import Workspace
from . import keys
from .screens import (
    Environments,
    Error,
    FieldInput,
    History,
    Running,
    RunResult,
    Screen,
    ScriptSelect,
    Search,
)
from .tasks import (
    IndexRebuilt,
    KeyPressed,
    PreviewLoaded,
    RunFinished,
    RunProgress,
    SchemaLoaded,
    TaskFailed,
    TaskInbox,
    WidgetLoaded,
)

logger = logging.getLogger(__name__)


def _clamp(value: int, size: int) -> int:
    if size <= 0:
        return 0
    return max(0, min(value, size - 1))


class NavigationEngine:
    """Owns the current screen and coordinates background work."""

    def __init__(
        self,
        workspace: Workspace,
        cfg: dict[str, Any] | None = None,
        *,
        inbox: TaskInbox | None = None,
        index: SearchIndex | None = None,
        schemas: SchemaCache | None = None,
        history: HistoryStore | None = None,
        runner=run_script,
    ) -> None:
        self.workspace = workspace
        self.cfg = cfg if cfg is not None else load_config(workspace.config_path)
        self.inbox = inbox or TaskInbox()
        self.repository = EntryRepository(workspace.root)
        self.schemas = schemas or SchemaCache(
            dynamic=get_bool(self.cfg, "discovery.dynamic"),
            timeout=get_float(self.cfg, "discovery.timeout_seconds"),
        )
        self.index = index or SearchIndex(workspace.index_path)
        self.history = history or HistoryStore(workspace.history_dir, workspace.root)
        self._runner = runner

        self.browser = ScriptSelect(directory=workspace.root)
        self.screen: Screen = self.browser
        self.running = True
        self.env = EnvironmentConfig(envs_dir=workspace.envs_dir)
        self.env_error: str | None = None
        self.index_error: str | None = None

        self._widget_token = 0
        self._preview_token = 0
        self._job_id = 0
        self._index_busy = False
        self._pending: tuple[Path, Screen] | None = None

    # ── lifecycle ─────────────────────────────────────────────────────

    def start(self) -> None:
        """Validate the workspace and kick off the initial background work."""
        try:
            self.workspace.validate()
        except WorkspaceError as e:
            self.fail(e)
            return
        self.index.load_persisted()
        self.reload_environment()
        self.enter_directory(self.workspace.root)
        self.rebuild_index()

    def fail(self, error: WorkspaceError) -> None:
        """Show a fatal workspace error."""
        hint = f"Expected scripts directory: {error.expected}" if error.expected else None
        self.screen = Error("Workspace unavailable", str(error), hint=hint, fatal=True)

    def quit(self) -> None:
        self.running = False
        self.shutdown()

    def shutdown(self) -> None:
        """Cancel an in-flight run so no child outlives the navigator."""
        if isinstance(self.screen, Running):
            self.screen.cancel.set()

    def pump(self, timeout: float = 0.0) -> int:
        """Apply pending inbox messages. Returns how many were applied.

        Waits up to ``timeout`` for the first message only.
        """
        count = 0
        message = self.inbox.get(timeout)
        while message is not None:
            self.dispatch(message)
            count += 1
            message = self.inbox.get(0)
        return count

    def settle(self, timeout: float = 10.0) -> bool:
        """Wait for all background tasks and apply their messages."""
        deadline = time.monotonic() + timeout
        while time.monotonic() < deadline:
            idle = self.inbox.join(max(0.0, deadline - time.monotonic()))
            processed = self.pump()
            if idle and not processed:
                return True
        return False

    def dispatch(self, message: object) -> None:
        if isinstance(message, KeyPressed):
            self.handle_key(message.key)
        else:
            self.handle_message(message)

    def status_text(self) -> str:
        parts = [self.index_error and f"Index error: {self.index_error}" or self.index.status.describe()]
        if self.env_error:
            parts.append(f"env error: {self.env_error}")
        else:
            parts.append(f"env: {self.env.active or 'none'}")
        return " · ".join(parts)

    # ── background work ───────────────────────────────────────────────

    def rebuild_index(self) -> None:
        if self._index_busy:
            return
        self._index_busy = True
        self.index_error = None
        repository, schemas, index = self.repository, self.schemas, self.index
        self.inbox.spawn("index", lambda: IndexRebuilt(index.rebuild(repository, schemas)))

    def load_widget(self) -> None:
        """Load the current directory's widget. Older loads become stale."""
        self._widget_token += 1
        token = self._widget_token
        directory = self.browser.directory
        self.browser.widget = None
        if not self.repository.has_widget(directory):
            self.browser.widget_loading = False
            return
        self.browser.widget_loading = True
        timeout = get_float(self.cfg, "widgets.timeout_seconds")
        self.inbox.spawn(
            "widget",
            lambda: WidgetLoaded(directory, token, load_widget(directory, timeout)),
            token=token,
        )

    def preview_selected(self, screen: ScriptSelect | Search) -> None:
        """Discover the selected script's schema for the preview pane."""
        path = self._selected_script(screen)
        if path is not None and path == screen.preview_path and screen.preview is not None:
            return
        self._preview_token += 1
        token = self._preview_token
        screen.preview_path = path
        screen.preview = None
        screen.preview_token = token
        if path is None:
            return
        schemas = self.schemas
        self.inbox.spawn("preview", lambda: PreviewLoaded(path, token, schemas.get(path)), token=token)

    def _selected_script(self, screen: ScriptSelect | Search) -> Path | None:
        if isinstance(screen, Search):
            record = screen.selected
            return self.workspace.root / record.path if record is not None else None
        entry = screen.selected
        return entry.path if entry is not None and not entry.is_dir else None

    def _preview_target(self, token: Any) -> ScriptSelect | Search | None:
        for screen in (self.screen, self.browser):
            if isinstance(screen, (ScriptSelect, Search)) and screen.preview_token == token:
                return screen
        return None

    def reload_environment(self) -> None:
        try:
            self.env = load_environment_config(self.workspace.envs_dir)
            self.env_error = None
        except EnvFileError as e:
            logger.warning("%s", e)
            self.env = EnvironmentConfig(envs_dir=self.workspace.envs_dir)
            self.env_error = str(e)

    def handle_message(self, message: object) -> None:
        if isinstance(message, WidgetLoaded):
            if message.token == self._widget_token and message.directory == self.browser.directory:
                self.browser.widget = message.result
                self.browser.widget_loading = False
        elif isinstance(message, PreviewLoaded):
            target = self._preview_target(message.token)
            if target is not None and target.preview_path == message.path:
                target.preview = message.discovery
        elif isinstance(message, SchemaLoaded):
            self._schema_loaded(message.script, message.discovery)
        elif isinstance(message, IndexRebuilt):
            self._index_busy = False
            if isinstance(self.screen, Search):
                self._refresh_search(self.screen)
        elif isinstance(message, RunProgress):
            if isinstance(self.screen, Running) and self.screen.job_id == message.job_id:
                self.screen.done.append(message.item)
        elif isinstance(message, RunFinished):
            self._run_finished(message)
        elif isinstance(message, TaskFailed):
            self._task_failed(message)

    def _task_failed(self, message: TaskFailed) -> None:
        if message.task == "widget":
            if message.token == self._widget_token:
                self.browser.widget = fallback(self.browser.directory, f"Widget error: {message.error}")
                self.browser.widget_loading = False
        elif message.task == "preview":
            target = self._preview_target(message.token)
            if target is not None:
                target.preview = Discovery(error=message.error)
        elif message.task == "index":
            self._index_busy = False
            self.index_error = message.error
        elif message.task == "schema":
            self._pending = None
            self.browser.pending = None
            self.browser.message = None
            self.screen = Error("Schema discovery failed", message.error, back=self._back_of(self.screen))
        elif message.task == "run":
            if isinstance(self.screen, Running) and self.screen.job_id == message.token:
                self.screen = Error("Run failed", message.error)

    # ── browsing ──────────────────────────────────────────────────────

    def enter_directory(self, directory: Path, select: Path | None = None) -> None:
        try:
            entries = self.repository.list_entries(directory)
        except OSError as e:
            fatal = directory == self.workspace.root
            self.screen = Error("Cannot read directory", str(e), fatal=fatal)
            return
        self.browser.directory = directory
        self.browser.entries = entries
        self.browser.cursor = 0
        self.browser.message = None
        if select is not None:
            for i, entry in enumerate(entries):
                if entry.path == select:
                    self.browser.cursor = i
                    break
        self.screen = self.browser
        self.load_widget()
        self.preview_selected(self.browser)

    def refresh(self) -> None:
        self.schemas.invalidate()
        self.browser.preview = None
        selected = self.browser.selected
        self.enter_directory(self.browser.directory, selected.path if selected else None)
        self.rebuild_index()

    def go_parent(self) -> bool:
        current = self.browser.directory
        if current == self.workspace.root:
            return False
        self.enter_directory(current.parent, select=current)
        return True

    def go_back(self, back: Screen | None) -> None:
        self.screen = back if back is not None else self.browser

    def _back_of(self, screen: Screen) -> Screen | None:
        return None if screen is self.browser else screen

    def open_entry(self, entry: Entry) -> None:
        if entry.is_dir:
            self.enter_directory(entry.path)
        else:
            self.open_script(entry.path)

    def open_script(self, script: Path) -> None:
        """Discover the script's schema off the loop, then show its form."""
        origin = self.screen
        self._pending = (script, origin)
        self.browser.pending = script
        self.browser.message = f"Reading schema for {script.name}..."
        schemas = self.schemas
        self.inbox.spawn("schema", lambda: SchemaLoaded(script, schemas.get(script)), token=script)

    def _schema_loaded(self, script: Path, discovery: Discovery) -> None:
        if self._pending is None or self._pending[0] != script:
            return
        _, origin = self._pending
        self._pending = None
        self.browser.pending = None
        self.browser.message = None
        if self.screen is not origin:
            return
        self.show_form(script, discovery, back=self._back_of(origin))

    def show_form(self, script: Path, discovery: Discovery, back: Screen | None = None) -> None:
        relative = self.workspace.relative(script).as_posix()
        if discovery.schema is None:
            self.screen = Error(
                "No schema",
                f"{relative}: {discovery.error or 'no schema found'}",
                hint=f"Run it headlessly: omakure run {relative}",
                back=back,
            )
            return

        schema = discovery.schema
        fields = schema.ordered_fields()
        queued = set(schema.queue.field_names) if schema.queue else set()
        editable = [f.name for f in fields if f.name not in queued]
        form = FieldInput(
            script=script,
            schema=schema,
            fields=fields,
            values=prefill(self.env.defaults, editable),
            queued=queued,
            back=back,
        )
        self.screen = form
        if not fields:
            self.submit_form(form)

    # ── running ───────────────────────────────────────────────────────

    def submit_form(self, form: FieldInput) -> None:
        """Validate every parameter set, then start the run."""
        try:
            sets = parameter_sets(form.schema, form.values)
        except ValidationError as e:
            form.error = str(e)
            for i, f in enumerate(form.fields):
                if f.name == e.field_name:
                    form.cursor = i
                    break
            if not form.fields:
                self.screen = Error("Invalid input", str(e), back=form.back)
            return

        form.error = None
        requests = [
            build_request(form.script, flatten_pairs(pairs), label=value_set.label, values=value_set.values)
            for value_set, pairs in sets
        ]
        self.start_run(form.script, form.schema.name, requests, back=form.back)

    def start_run(self, script: Path, title: str, requests: list, back: Screen | None = None) -> None:
        self._job_id += 1
        job_id = self._job_id
        cancel = threading.Event()
        job = RunJob(
            requests,
            self.history,
            stop_on_failure=get_bool(self.cfg, "queue.stop_on_failure"),
            grace=get_float(self.cfg, "runner.terminate_grace_seconds"),
            cancel=cancel,
            runner=self._runner,
        )
        self.screen = Running(
            job_id=job_id,
            script=script,
            title=title,
            total=len(requests),
            cancel=cancel,
            started_at=time.time(),
            back=back,
        )
        inbox = self.inbox

        def work() -> RunFinished:
            report = job.run(on_item=lambda item: inbox.put(RunProgress(job_id, item)))
            return RunFinished(job_id, report)

        inbox.spawn("run", work, token=job_id)

    def cancel_run(self) -> None:
        if isinstance(self.screen, Running) and not self.screen.cancel_requested:
            self.screen.cancel.set()
            self.screen.cancel_requested = True

    def _run_finished(self, message: RunFinished) -> None:
        screen = self.screen
        if not isinstance(screen, Running) or screen.job_id != message.job_id:
            return
        last = message.report.last
        command = format_command(last.request, self.workspace.root) if last else ""
        self.screen = RunResult(
            script=screen.script,
            title=screen.title,
            report=message.report,
            command=command,
        )

    # ── other screens ─────────────────────────────────────────────────

    def open_search(self) -> None:
        search = Search(back=self._back_of(self.screen))
        self._refresh_search(search)
        self.screen = search

    def _refresh_search(self, search: Search) -> None:
        search.results = self.index.query(search.query)
        search.cursor = _clamp(search.cursor, len(search.results))
        self.preview_selected(search)

    def open_history(self) -> None:
        self.screen = History(records=self.history.list())

    def open_environments(self) -> None:
        try:
            names = list_env_files(self.workspace.envs_dir)
        except EnvFileError as e:
            self.screen = Error("Environments unavailable", str(e))
            return
        envs = Environments(names=names, active=self.env.active, error=self.env_error)
        if self.env.active in names:
            envs.cursor = names.index(self.env.active)
        self._load_env_preview(envs)
        self.screen = envs

    def _load_env_preview(self, envs: Environments) -> None:
        name = envs.selected
        envs.preview = []
        if name is None:
            return
        try:
            envs.preview = load_preview(self.workspace.envs_dir / name)
        except EnvFileError as e:
            envs.error = str(e)

    def _set_active_env(self, envs: Environments, name: str | None) -> None:
        try:
            set_active(self.workspace.envs_dir, name)
        except EnvFileError as e:
            envs.error = str(e)
            return
        self.reload_environment()
        envs.active = self.env.active
        envs.error = self.env_error

    # ── keys ──────────────────────────────────────────────────────────

    def handle_key(self, key: str) -> None:
        screen = self.screen
        if isinstance(screen, ScriptSelect):
            self._keys_browse(screen, key)
        elif isinstance(screen, Search):
            self._keys_search(screen, key)
        elif isinstance(screen, FieldInput):
            self._keys_form(screen, key)
        elif isinstance(screen, Running):
            self._keys_running(key)
        elif isinstance(screen, RunResult):
            self._keys_result(screen, key)
        elif isinstance(screen, History):
            self._keys_history(screen, key)
        elif isinstance(screen, Environments):
            self._keys_environments(screen, key)
        elif isinstance(screen, Error):
            self._keys_error(screen, key)

    def _keys_browse(self, screen: ScriptSelect, key: str) -> None:
        if keys.is_up(key):
            screen.cursor = _clamp(screen.cursor - 1, len(screen.entries))
            self.preview_selected(screen)
        elif keys.is_down(key):
            screen.cursor = _clamp(screen.cursor + 1, len(screen.entries))
            self.preview_selected(screen)
        elif keys.is_enter(key):
            if screen.selected is not None:
                self.open_entry(screen.selected)
        elif keys.is_left(key) or keys.is_backspace(key):
            self.go_parent()
        elif keys.is_escape(key):
            if not self.go_parent():
                self.quit()
        elif key == "q" or keys.is_ctrl_c(key):
            self.quit()
        elif key == "/" or keys.is_ctrl_s(key):
            self.open_search()
        elif key == "h":
            self.open_history()
        elif key == "e":
            self.open_environments()
        elif key == "r":
            self.refresh()
        elif key == "i":
            self.reload_environment()
            self.load_widget()

    def _keys_search(self, screen: Search, key: str) -> None:
        if keys.is_escape(key) or keys.is_ctrl_c(key):
            self.go_back(screen.back)
        elif keys.is_enter(key):
            record = screen.selected
            if record is not None:
                self.open_script(self.workspace.root / record.path)
        elif keys.is_up(key, vim=False):
            screen.cursor = _clamp(screen.cursor - 1, len(screen.results))
            self.preview_selected(screen)
        elif keys.is_down(key, vim=False):
            screen.cursor = _clamp(screen.cursor + 1, len(screen.results))
            self.preview_selected(screen)
        elif keys.is_backspace(key):
            screen.query = screen.query[:-1]
            screen.cursor = 0
            self._refresh_search(screen)
        elif keys.is_printable(key):
            screen.query += key
            screen.cursor = 0
            self._refresh_search(screen)

    def _keys_form(self, form: FieldInput, key: str) -> None:
        current = form.current
        if keys.is_escape(key):
            self.go_back(form.back)
        elif keys.is_enter(key):
            self.submit_form(form)
        elif keys.is_tab(key) or keys.is_down(key, vim=False):
            form.cursor = _clamp(form.cursor + 1, len(form.fields))
        elif keys.is_shift_tab(key) or keys.is_up(key, vim=False):
            form.cursor = _clamp(form.cursor - 1, len(form.fields))
        elif current is None or current.name in form.queued:
            return
        elif keys.is_left(key) or keys.is_right(key):
            self._cycle_value(form, current, -1 if keys.is_left(key) else 1)
        elif keys.is_backspace(key):
            form.values[current.name] = form.values.get(current.name, "")[:-1]
            form.error = None
        elif keys.is_printable(key):
            form.values[current.name] = form.values.get(current.name, "") + key
            form.error = None

    @staticmethod
    def _cycle_value(form: FieldInput, field, step: int) -> None:
        options = list(field.choices or ())
        if not options and field.type == FieldType.BOOL:
            options = ["true", "false"]
        if not options:
            return
        value = form.values.get(field.name) or field.default or ""
        if value in options:
            index = (options.index(value) + step) % len(options)
        else:
            index = 0 if step > 0 else len(options) - 1
        form.values[field.name] = options[index]
        form.error = None

    def _keys_running(self, key: str) -> None:
        if key == "c" or keys.is_escape(key) or keys.is_ctrl_c(key):
            self.cancel_run()

    def _keys_result(self, screen: RunResult, key: str) -> None:
        if keys.is_down(key):
            screen.scroll += 1
        elif keys.is_up(key):
            screen.scroll = max(0, screen.scroll - 1)
        elif key == "h":
            self.open_history()
        elif keys.is_enter(key) or keys.is_escape(key) or key == "q":
            self.go_back(None)

    def _keys_history(self, screen: History, key: str) -> None:
        if screen.detail:
            if keys.is_down(key):
                screen.scroll += 1
            elif keys.is_up(key):
                screen.scroll = max(0, screen.scroll - 1)
            elif keys.is_escape(key) or keys.is_left(key):
                screen.detail = False
            elif key == "q":
                self.go_back(screen.back)
            return
        if keys.is_down(key):
            screen.cursor = _clamp(screen.cursor + 1, len(screen.records))
        elif keys.is_up(key):
            screen.cursor = _clamp(screen.cursor - 1, len(screen.records))
        elif keys.is_enter(key) or keys.is_right(key):
            if screen.selected is not None:
                screen.detail = True
                screen.scroll = 0
        elif keys.is_escape(key) or keys.is_left(key) or key == "q":
            self.go_back(screen.back)

    def _keys_environments(self, screen: Environments, key: str) -> None:
        if keys.is_down(key):
            screen.cursor = _clamp(screen.cursor + 1, len(screen.names))
            self._load_env_preview(screen)
        elif keys.is_up(key):
            screen.cursor = _clamp(screen.cursor - 1, len(screen.names))
            self._load_env_preview(screen)
        elif keys.is_enter(key):
            if screen.selected is not None:
                self._set_active_env(screen, screen.selected)
        elif key == "d":
            self._set_active_env(screen, None)
        elif keys.is_escape(key) or key == "q":
            self.go_back(screen.back)

    def _keys_error(self, screen: Error, key: str) -> None:
        if keys.is_enter(key):
            if screen.fatal:
                self.quit()
            else:
                self.go_back(screen.back)
        elif key == "q" or keys.is_escape(key) or keys.is_ctrl_c(key):
            self.quit()
