"""Tests for the script runner and batch jobs."""

import threading
import time

from omakure.history import HistoryStore
from omakure.runner import RunJob, run_script
from omakure.runtime import build_request
from omakure.types import ExecutionRequest, ExecutionResult, Outcome


def _wait_for(path, timeout=10.0):
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if path.exists():
            return True
        time.sleep(0.05)
    return False


class TestRunScript:
    def test_success_captures_streams_separately(self, make_script):
        script = make_script("ok.bash", 'echo "out $1"\necho err >&2')
        result = run_script(build_request(script, ["arg"]))
        assert result.outcome == Outcome.SUCCESS
        assert result.stdout == "out arg\n"
        assert result.stderr == "err\n"
        assert result.exit_code == 0
        assert result.finished_at >= result.started_at

    def test_runs_in_script_directory(self, make_script):
        script = make_script("nested/where.bash", "pwd")
        result = run_script(build_request(script, []))
        assert result.stdout.strip() == str(script.parent.resolve())

    def test_stdin_is_closed(self, make_script):
        script = make_script("reader.bash", 'if read -r line; then echo "got $line"; else echo eof; fi')
        result = run_script(build_request(script, []))
        assert result.stdout.strip() == "eof"

    def test_nonzero_exit(self, make_script):
        script = make_script("fail.bash", "echo boom >&2\nexit 2")
        result = run_script(build_request(script, []))
        assert result.outcome == Outcome.FAILED
        assert result.exit_code == 2
        assert result.stderr == "boom\n"
        assert result.summary() == "failed (exit 2)"

    def test_spawn_error_is_distinct(self, tmp_path):
        request = ExecutionRequest(
            command=("definitely-not-an-interpreter-omakure", str(tmp_path / "x.bash")),
            args=(),
            cwd=tmp_path,
            script=tmp_path / "x.bash",
        )
        result = run_script(request)
        assert result.outcome == Outcome.SPAWN_ERROR
        assert result.exit_code is None
        assert result.error

    def test_cancel_terminates_child(self, make_script, tmp_path):
        marker = tmp_path / "started"
        script = make_script("sleepy.bash", f'touch "{marker}"\nsleep 30')
        cancel = threading.Event()
        results = []
        worker = threading.Thread(
            target=lambda: results.append(run_script(build_request(script, []), cancel=cancel, grace=1))
        )
        worker.start()
        assert _wait_for(marker)
        started = time.monotonic()
        cancel.set()
        worker.join(15)
        assert not worker.is_alive()
        assert time.monotonic() - started < 10
        assert results[0].outcome == Outcome.CANCELLED
        assert not results[0].success


class _FakeRunner:
    """Replays scripted outcomes and records what was started."""

    def __init__(self, outcomes, cancel_after=None):
        self.outcomes = list(outcomes)
        self.started = []
        self.cancel_after = cancel_after

    def __call__(self, request, cancel=None, grace=0):
        self.started.append(request.label)
        outcome = self.outcomes[len(self.started) - 1]
        if self.cancel_after is not None and len(self.started) == self.cancel_after:
            cancel.set()
            outcome = Outcome.CANCELLED
        exit_code = 1 if outcome == Outcome.FAILED else 0
        now = time.time()
        return ExecutionResult(outcome=outcome, exit_code=exit_code, started_at=now, finished_at=now)


def _requests(tmp_path, labels):
    script = tmp_path / "job.bash"
    return [build_request(script, [], label=label) for label in labels]


class TestRunJob:
    def test_runs_in_order_and_records_each(self, workspace):
        runner = _FakeRunner([Outcome.SUCCESS] * 3)
        history = HistoryStore(workspace.history_dir, workspace.root)
        requests = _requests(workspace.root, ["a", "b", "c"])
        seen = []
        report = RunJob(requests, history, runner=runner).run(on_item=lambda item: seen.append(item.index))

        assert runner.started == ["a", "b", "c"]
        assert seen == [0, 1, 2]
        assert report.success
        assert all(item.history_slug for item in report.items)
        assert [r.label for r in reversed(history.list())] == ["a", "b", "c"]

    def test_stop_on_failure_skips_rest(self, tmp_path):
        runner = _FakeRunner([Outcome.SUCCESS, Outcome.FAILED, Outcome.SUCCESS])
        report = RunJob(_requests(tmp_path, ["a", "b", "c"]), runner=runner).run()
        assert runner.started == ["a", "b"]
        assert [i.result.outcome for i in report.items] == [Outcome.SUCCESS, Outcome.FAILED, Outcome.SKIPPED]
        assert report.skipped == 1
        assert report.last.request.label == "b"
        assert not report.success

    def test_continue_on_failure(self, tmp_path):
        runner = _FakeRunner([Outcome.FAILED, Outcome.SUCCESS])
        report = RunJob(_requests(tmp_path, ["a", "b"]), runner=runner, stop_on_failure=False).run()
        assert runner.started == ["a", "b"]
        assert not report.success

    def test_cancel_stops_batch(self, workspace):
        runner = _FakeRunner([Outcome.SUCCESS] * 3, cancel_after=2)
        history = HistoryStore(workspace.history_dir, workspace.root)
        report = RunJob(_requests(workspace.root, ["a", "b", "c"]), history, runner=runner).run()

        assert runner.started == ["a", "b"]
        assert report.cancelled
        outcomes = [i.result.outcome for i in report.items]
        assert outcomes == [Outcome.SUCCESS, Outcome.CANCELLED, Outcome.SKIPPED]
        # Skipped items never reach history.
        assert len(history.list()) == 2

    def test_cancel_before_first_item_is_recorded(self, workspace):
        runner = _FakeRunner([Outcome.SUCCESS] * 2)
        history = HistoryStore(workspace.history_dir, workspace.root)
        cancel = threading.Event()
        cancel.set()
        report = RunJob(_requests(workspace.root, ["a", "b"]), history, cancel=cancel, runner=runner).run()

        assert runner.started == []
        assert report.cancelled
        assert [i.result.outcome for i in report.items] == [Outcome.CANCELLED, Outcome.SKIPPED]
        assert report.items[0].history_slug
        (record,) = history.list()
        assert record.label == "a"
        assert record.outcome == Outcome.CANCELLED

    def test_history_failure_is_a_warning(self, tmp_path):
        blocker = tmp_path / "blocked"
        blocker.write_text("a file where the history dir should be")
        history = HistoryStore(blocker / "history", tmp_path)
        runner = _FakeRunner([Outcome.SUCCESS])
        report = RunJob(_requests(tmp_path, ["a"]), history, runner=runner).run()

        assert report.success
        assert report.items[0].history_slug is None
        assert report.warnings and "Cannot write history" in report.warnings[0]

    def test_cancel_real_batch(self, make_script, workspace, tmp_path):
        marker = tmp_path / "started"
        script = make_script("batch.bash", f'touch "{marker}"\nsleep 30')
        requests = [build_request(script, [], label=str(i)) for i in range(3)]
        job = RunJob(requests, HistoryStore(workspace.history_dir, workspace.root), grace=1)
        reports = []
        worker = threading.Thread(target=lambda: reports.append(job.run()))
        worker.start()
        assert _wait_for(marker)
        job.cancel.set()
        worker.join(15)

        report = reports[0]
        assert [i.result.outcome for i in report.items] == [Outcome.CANCELLED, Outcome.SKIPPED, Outcome.SKIPPED]
        records = HistoryStore(workspace.history_dir, workspace.root).list()
        assert [r.outcome for r in records] == [Outcome.CANCELLED]
