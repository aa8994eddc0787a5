"""Command-line interface for omakure.

Without a subcommand the interactive navigator starts. Subcommands cover
the headless surface: listing and running scripts, scaffolding new ones,
inspecting the resolved workspace and managing flavors.
"""

from __future__ import annotations

import argparse
import logging
import os
import sys
import threading
from pathlib import Path

import questionary
import yaml
from questionary import Style
from rich.console import Console
from rich.logging import RichHandler
from rich.markup import escape

from . import __version__
from .completion import SHELLS, completion_script
from .config import get_bool, get_float, load_config, recognised_env, update_source
from .environments import load_environment_config
from .errors import EnvFileError, OmakureError, ScriptNotFoundError, ValidationError
from .flavors import install_flavor, list_flavors
from .history import HistoryStore
from .normalize import normalize_value, parameter_sets, parse_bool
from .repository import EntryRepository
from .runner import BatchReport, ItemReport, RunJob
from .runtime import build_request, flatten_pairs, format_command
from .schema import discover
from .templates import create_script
from .types import Field, FieldType, Schema
from .workspace import DEBUG_ENV, Workspace, is_truthy, resolve_root_path, resolve_workspace

logger = logging.getLogger(__name__)

console = Console(highlight=False)
err_console = Console(stderr=True, highlight=False)

custom_style = Style(
    [
        ("qmark", "fg:cyan bold"),
        ("question", "fg:white bold"),
        ("answer", "fg:cyan"),
        ("pointer", "fg:cyan bold"),
        ("highlighted", "fg:cyan bold"),
        ("selected", "fg:green"),
        ("instruction", "fg:gray"),
    ]
)

EXIT_INTERRUPTED = 130


def _configure_logging(debug: bool, log_file: Path | None = None) -> None:
    """Route package logs to stderr, or to a file while the navigator owns the screen."""
    root = logging.getLogger("omakure")
    for existing in list(root.handlers):
        root.removeHandler(existing)
        existing.close()

    handler: logging.Handler
    if log_file is not None:
        handler = logging.FileHandler(log_file, encoding="utf-8")
        handler.setFormatter(logging.Formatter("%(asctime)s %(levelname)s %(name)s: %(message)s"))
    else:
        handler = RichHandler(console=err_console, show_time=False, show_path=False)
    root.addHandler(handler)
    root.setLevel(logging.DEBUG if debug else logging.WARNING)
    root.propagate = False


def _error(msg: str) -> None:
    err_console.print(f"[red]Error:[/red] {escape(msg)}")


# ── commands ─────────────────────────────────────────────────────────────


def cmd_scripts(args):
    """List every runnable script in the workspace."""
    workspace = resolve_workspace()
    scripts = EntryRepository(workspace.root).list_scripts()
    if not scripts:
        console.print("[dim]No scripts found.[/dim]")
        return
    for path in scripts:
        console.print(escape(workspace.relative(path).as_posix()))


def _field_validator(f: Field):
    def validate(text: str) -> bool | str:
        try:
            normalize_value(f, text)
        except ValidationError as e:
            return str(e)
        return True

    return validate


def _prompt_fields(schema: Schema, defaults: dict[str, str]) -> dict[str, str]:
    """Ask for every editable field. Queued fields are filled by expansion."""
    queued = set(schema.queue.field_names) if schema.queue else set()
    values: dict[str, str] = {}
    for f in schema.ordered_fields():
        if f.name in queued:
            continue
        initial = defaults.get(f.name.lower()) or f.default or ""
        message = f.prompt or f.name
        if f.choices:
            answer = questionary.select(
                message,
                choices=list(f.choices),
                default=initial if initial in f.choices else None,
                style=custom_style,
            ).ask()
        elif f.type == FieldType.BOOL:
            confirmed = questionary.confirm(
                message,
                default=parse_bool(initial) is True,
                style=custom_style,
            ).ask()
            answer = None if confirmed is None else ("true" if confirmed else "false")
        else:
            answer = questionary.text(
                message,
                default=initial,
                validate=_field_validator(f),
                style=custom_style,
            ).ask()
        if answer is None:
            raise KeyboardInterrupt
        values[f.name] = answer
    return values


def _form_requests(workspace: Workspace, script: Path, cfg: dict) -> list:
    discovery = discover(
        script,
        dynamic=get_bool(cfg, "discovery.dynamic"),
        timeout=get_float(cfg, "discovery.timeout_seconds"),
    )
    relative = workspace.relative(script).as_posix()
    if discovery.schema is None:
        raise OmakureError(f"No schema for {relative}: {discovery.error or 'no schema found'}")

    try:
        env = load_environment_config(workspace.envs_dir)
        defaults = env.defaults
    except EnvFileError as e:
        logger.warning("%s", e)
        defaults = {}

    schema = discovery.schema
    if schema.description:
        console.print(f"[bold]{escape(schema.name)}[/bold] [dim]{escape(schema.description)}[/dim]")
    values = _prompt_fields(schema, defaults)
    sets = parameter_sets(schema, values)
    return [
        build_request(script, flatten_pairs(pairs), label=value_set.label, values=value_set.values)
        for value_set, pairs in sets
    ]


def _print_item(item: ItemReport, total: int) -> None:
    result = item.result
    if total > 1:
        label = item.request.label or item.request.script.name
        err_console.print(f"[bold]\\[{item.index + 1}/{total}][/bold] {escape(label)}")
    if result.stdout:
        sys.stdout.write(result.stdout)
        sys.stdout.flush()
    if result.stderr:
        sys.stderr.write(result.stderr)
        sys.stderr.flush()
    if not result.success:
        err_console.print(f"[red]{escape(result.summary())}[/red]")
    if item.history_error:
        err_console.print(f"[yellow]Warning:[/yellow] history not saved: {escape(item.history_error)}")


def exit_code_for(report: BatchReport) -> int:
    """Process exit status for a finished batch."""
    if report.cancelled:
        return EXIT_INTERRUPTED
    for item in report.items:
        result = item.result
        if result.success:
            continue
        if result.exit_code:
            return result.exit_code
        if result.signal:
            return 128 + result.signal
        return 1
    return 0 if report.items else 1


def cmd_run(args):
    """Run a script headlessly, optionally prompting for its fields."""
    workspace = resolve_workspace()
    cfg = load_config(workspace.config_path)
    script = workspace.resolve_script(args.script)
    if script is None:
        raise ScriptNotFoundError(f"Script not found: {args.script}")

    if args.form:
        requests = _form_requests(workspace, script, cfg)
    else:
        passthrough = list(args.script_args)
        if passthrough and passthrough[0] == "--":
            passthrough = passthrough[1:]
        requests = [build_request(script, passthrough)]
    logger.debug("Running %s", format_command(requests[0], workspace.root))

    job = RunJob(
        requests,
        HistoryStore(workspace.history_dir, workspace.root),
        stop_on_failure=get_bool(cfg, "queue.stop_on_failure"),
        grace=get_float(cfg, "runner.terminate_grace_seconds"),
    )
    reports: list[BatchReport] = []
    worker = threading.Thread(
        target=lambda: reports.append(job.run(on_item=lambda item: _print_item(item, len(requests)))),
        name="omakure:run",
        daemon=True,
    )
    worker.start()
    try:
        while worker.is_alive():
            worker.join(0.1)
    except KeyboardInterrupt:
        job.cancel.set()
        worker.join()
    if not reports:
        sys.exit(EXIT_INTERRUPTED)

    report = reports[0]
    if report.skipped:
        err_console.print(f"[yellow]{report.skipped} queued run(s) skipped[/yellow]")
    code = exit_code_for(report)
    if code:
        sys.exit(code)


def cmd_init(args):
    """Create a script from its runtime template."""
    workspace = Workspace(resolve_root_path())
    workspace.ensure_layout()
    path = create_script(workspace.root, args.path)
    console.print(f"[green]Created[/green] {escape(str(path))}")


def cmd_config(args):
    """Show the resolved workspace, its config and recognised env vars."""
    root = resolve_root_path()
    workspace = Workspace(root)
    exists = root.is_dir()
    console.print("[bold]Workspace[/bold]")
    console.print(f"  root:    {escape(str(root))}" + ("" if exists else "  [red](missing)[/red]"))
    console.print(f"  config:  {escape(str(workspace.config_path))}")
    console.print(f"  history: {escape(str(workspace.history_dir))}")
    console.print(f"  envs:    {escape(str(workspace.envs_dir))}")
    if exists:
        try:
            active = load_environment_config(workspace.envs_dir).active
        except EnvFileError as e:
            active = f"error: {e}"
        console.print(f"  active env: {escape(active or 'none')}")

    console.print()
    console.print("[bold]Config[/bold]")
    cfg = load_config(workspace.config_path)
    for line in yaml.dump(cfg, default_flow_style=False, sort_keys=False).splitlines():
        console.print(f"  {escape(line)}")

    console.print()
    console.print("[bold]Environment[/bold]")
    env_vars = recognised_env()
    if not env_vars:
        console.print("  [dim](none set)[/dim]")
    for name, value in env_vars.items():
        console.print(f"  {name}={escape(value)}")
    repo, version = update_source()
    console.print(f"  update source: {escape(repo)}@{escape(version)}")


def cmd_list(args):
    """List installed flavors."""
    workspace = resolve_workspace()
    flavors = list_flavors(workspace.omaken_dir)
    if not flavors:
        console.print("[dim]No flavors installed.[/dim]")
        return
    for name in flavors:
        console.print(escape(name))


def cmd_install(args):
    """Install a flavor from a git URL."""
    workspace = resolve_workspace()
    target = install_flavor(workspace.omaken_dir, args.url, args.name)
    console.print(f"[green]Installed[/green] {escape(target.name)} -> {escape(str(target))}")


def cmd_completion(args):
    sys.stdout.write(completion_script(args.shell))


def build_parser() -> argparse.ArgumentParser:
    """Build the CLI argument parser."""
    parser = argparse.ArgumentParser(
        prog="omakure",
        description="omakure: browse, document and run your script collection",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument("--version", action="version", version=f"omakure {__version__}")
    parser.add_argument("--debug", action="store_true", help="Enable debug logging")

    subparsers = parser.add_subparsers(dest="command")

    scripts_p = subparsers.add_parser("scripts", help="List available scripts")
    scripts_p.set_defaults(func=cmd_scripts)

    run_p = subparsers.add_parser("run", help="Run a script without the navigator")
    run_p.add_argument("--form", action="store_true", help="Prompt for the script's schema fields")
    run_p.add_argument("script", help="Script path relative to the workspace (extension optional)")
    run_p.add_argument("script_args", nargs=argparse.REMAINDER, help="Arguments passed to the script")
    run_p.set_defaults(func=cmd_run)

    init_p = subparsers.add_parser("init", help="Create a new script template")
    init_p.add_argument("path", help="Script path relative to the workspace (.bash when no extension)")
    init_p.set_defaults(func=cmd_init)

    for name in ("config", "env"):
        config_p = subparsers.add_parser(name, help="Show resolved paths, config and env vars")
        config_p.set_defaults(func=cmd_config)

    list_p = subparsers.add_parser("list", help="List installed flavors")
    list_p.set_defaults(func=cmd_list)

    install_p = subparsers.add_parser("install", help="Install a flavor from git")
    install_p.add_argument("url", help="Git URL of the flavor repository")
    install_p.add_argument("--name", help="Override the target folder name")
    install_p.set_defaults(func=cmd_install)

    completion_p = subparsers.add_parser("completion", help="Generate shell completion")
    completion_p.add_argument("shell", choices=[*SHELLS, "powershell"])
    completion_p.set_defaults(func=cmd_completion)

    return parser


def _run_navigator(debug: bool) -> None:
    from .tui import run_navigator

    workspace = Workspace(resolve_root_path())
    log_file = None
    if workspace.root.is_dir():
        try:
            workspace.history_dir.mkdir(parents=True, exist_ok=True)
            log_file = workspace.log_path
        except OSError as e:
            _error(f"Cannot create {workspace.history_dir}: {e}")
    if log_file is not None:
        _configure_logging(debug, log_file)
    else:
        logging.getLogger("omakure").addHandler(logging.NullHandler())
    sys.exit(run_navigator(workspace))


def main(argv: list[str] | None = None) -> None:
    """Main entry point."""
    parser = build_parser()
    args = parser.parse_args(argv)
    debug = args.debug or is_truthy(os.environ.get(DEBUG_ENV))

    try:
        if args.command is None:
            if not (sys.stdin.isatty() and sys.stdout.isatty()):
                parser.print_usage(sys.stderr)
                sys.exit(2)
            _run_navigator(debug)
        else:
            _configure_logging(debug)
            args.func(args)
    except OmakureError as e:
        _error(str(e))
        sys.exit(1)
    except KeyboardInterrupt:
        print()
        sys.exit(EXIT_INTERRUPTED)
