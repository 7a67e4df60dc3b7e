import asyncio
import logging
import sys

import pytest

from lease_lock import cli


@pytest.fixture(autouse=True)
def memory_backend(monkeypatch):
    monkeypatch.setenv("LOCK_BACKEND", "memory")
    monkeypatch.setenv("LOCK_KEY_PREFIX", "lock:")


def test_run_returns_command_exit_code():
    code = cli.main(
        ["run", "nightly", "--", sys.executable, "-c", "import sys; sys.exit(3)"]
    )

    assert code == 3


def test_run_without_command_is_usage_error(capsys):
    assert cli.main(["run", "nightly"]) == 2
    assert "no command given" in capsys.readouterr().err


def test_run_with_unknown_pool_reports_store_error(capsys):
    code = cli.main(["--pool", "reports", "run", "nightly", "--", sys.executable, "-c", "pass"])

    assert code == cli.EXIT_STORE_ERROR
    assert "reports" in capsys.readouterr().err


def test_status_of_free_lock(capsys):
    assert cli.main(["status", "nightly"]) == 0
    assert "lock:nightly: free" in capsys.readouterr().out


def test_log_records_get_default_lock_key():
    record = logging.LogRecord("x", logging.INFO, __file__, 1, "msg", None, None)

    assert cli._LockKeyFilter().filter(record) is True
    assert record.lock_key == "-"


@pytest.mark.asyncio
async def test_cancelled_run_terminates_child(monkeypatch):
    started = []
    spawn = asyncio.create_subprocess_exec

    async def recording_spawn(*cmd, **kwargs):
        process = await spawn(*cmd, **kwargs)
        started.append(process)
        return process

    monkeypatch.setattr(asyncio, "create_subprocess_exec", recording_spawn)
    task = asyncio.create_task(
        cli._run_child([sys.executable, "-c", "import time; time.sleep(30)"])
    )
    await asyncio.sleep(0.5)
    task.cancel()

    with pytest.raises(asyncio.CancelledError):
        await task
    assert len(started) == 1
    assert started[0].returncode is not None
