import sys

import pytest

from ocr_jobs.errors import CommandError
from ocr_jobs.schemas import CommandHistory
from ocr_jobs.services.command_runner import CommandRunner


def test_run_captures_combined_output() -> None:
    history = CommandHistory()
    runner = CommandRunner(history=history)

    output = runner.run(sys.executable, "-c", "import sys; print('out'); print('err', file=sys.stderr)")

    assert "out" in output
    assert "err" in output
    assert len(history.commands) == 1
    record = history.commands[0]
    assert record.command == sys.executable
    assert record.arguments[0] == "-c"
    assert float(record.duration) >= 0


def test_nonzero_exit_raises_and_is_recorded() -> None:
    history = CommandHistory()
    runner = CommandRunner(history=history)

    with pytest.raises(CommandError) as excinfo:
        runner.run(sys.executable, "-c", "print('bad input'); raise SystemExit(3)")

    assert "exit status 3" in str(excinfo.value)
    assert "bad input" in excinfo.value.output
    assert history.commands[0].output.strip() == "bad input"


def test_missing_program_raises() -> None:
    runner = CommandRunner()

    with pytest.raises(CommandError):
        runner.run("definitely-not-an-installed-program-ocr")

    assert len(runner.history.commands) == 1


def test_timeout_raises() -> None:
    runner = CommandRunner(timeout=0.2)

    with pytest.raises(CommandError) as excinfo:
        runner.run(sys.executable, "-c", "import time; time.sleep(5)")

    assert "timed out" in str(excinfo.value)


def test_history_is_per_runner() -> None:
    first = CommandRunner()
    second = CommandRunner()

    first.run(sys.executable, "-c", "pass")

    assert len(first.history.commands) == 1
    assert second.history.commands == []
    assert first.history.to_dict()["commands"][0]["command"] == sys.executable
