import io
import sys
import time

import pytest

from durable_llama.supervisor.output import OutputMonitor
from durable_llama.supervisor.process_utils import ChildLaunchError, ExitStatus, ProcessRunner

pytestmark = pytest.mark.skipif(sys.platform == "win32", reason="POSIX process semantics")


def _python(code):
    return [sys.executable, "-c", code]


def _wait_for_exit(runner, child, timeout=10):
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        status = runner.poll_exit(child)
        if not status.running:
            return status
        time.sleep(0.05)
    raise AssertionError("child did not exit in time")


def _wait_for_output(monitor, child, timeout=10):
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if monitor.poll(child, timeout=0.2):
            return
    raise AssertionError("child produced no output in time")


def test_exit_status_from_returncode():
    assert ExitStatus.from_returncode(None).running
    assert ExitStatus.from_returncode(0).succeeded
    crashed = ExitStatus.from_returncode(3)
    assert crashed.exited and crashed.exit_code == 3 and not crashed.succeeded
    killed = ExitStatus.from_returncode(-15)
    assert killed.signaled and killed.signal == 15 and not killed.exited


def test_stdout_and_stderr_share_one_stream():
    runner = ProcessRunner(shutdown_timeout=5)
    sink = io.BytesIO()
    monitor = OutputMonitor(sink=sink)
    child = runner.start(_python("import sys; print('out', flush=True); print('err', file=sys.stderr, flush=True)"))
    try:
        status = _wait_for_exit(runner, child)
        monitor.drain(child)
    finally:
        runner.terminate_and_reap(child)

    assert status.succeeded
    assert b"out" in sink.getvalue()
    assert b"err" in sink.getvalue()


def test_poll_exit_reports_non_zero_code():
    runner = ProcessRunner(shutdown_timeout=5)
    with runner.start(_python("raise SystemExit(3)")) as child:
        status = _wait_for_exit(runner, child)
    assert status.exit_code == 3


def test_poll_exit_is_non_blocking_while_running():
    runner = ProcessRunner(shutdown_timeout=5)
    child = runner.start(_python("import time; time.sleep(30)"))
    try:
        started = time.monotonic()
        assert runner.poll_exit(child).running
        assert time.monotonic() - started < 1
    finally:
        runner.terminate_and_reap(child)


def test_terminate_and_reap_stops_running_child():
    runner = ProcessRunner(shutdown_timeout=5)
    child = runner.start(_python("import time; time.sleep(30)"))

    runner.terminate_and_reap(child)

    assert child.reaped
    assert child.proc.stdout.closed
    assert runner.poll_exit(child).signaled

    # second call and a missing child are both no-ops
    runner.terminate_and_reap(child)
    runner.terminate_and_reap(None)


def test_terminate_and_reap_kills_child_ignoring_sigterm():
    runner = ProcessRunner(shutdown_timeout=0.5)
    monitor = OutputMonitor(sink=io.BytesIO())
    child = runner.start(_python(
        "import signal, time\n"
        "signal.signal(signal.SIGTERM, signal.SIG_IGN)\n"
        "print('ready', flush=True)\n"
        "time.sleep(30)\n"
    ))
    _wait_for_output(monitor, child)

    runner.terminate_and_reap(child)

    assert child.reaped
    assert runner.poll_exit(child).signal == 9


def test_terminate_and_reap_after_exit_reaps_only():
    runner = ProcessRunner(shutdown_timeout=5)
    child = runner.start(_python("pass"))
    _wait_for_exit(runner, child)

    runner.terminate_and_reap(child)

    assert child.reaped
    assert runner.poll_exit(child).succeeded


def test_start_missing_binary_raises_launch_error(tmp_path):
    runner = ProcessRunner(shutdown_timeout=5)
    with pytest.raises(ChildLaunchError):
        runner.start([str(tmp_path / "llama-cli"), "-m", "model.gguf"])
