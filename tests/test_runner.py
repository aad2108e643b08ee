import sys
from pathlib import Path

from embpipe.models import CommandSpec
from embpipe.runner import COMMAND_NOT_FOUND, DryRunRunner, SubprocessRunner


def test_subprocess_runner_captures_output(tmp_path: Path) -> None:
    command = CommandSpec(
        argv=(
            sys.executable,
            "-c",
            "import os, sys; print(os.getcwd()); "
            "print(os.environ['EMBPIPE_TEST'], file=sys.stderr)",
        ),
        env={"EMBPIPE_TEST": "marker"},
        cwd=str(tmp_path),
    )

    result = SubprocessRunner().run(command)

    assert result.ok
    assert Path(result.stdout.strip()).resolve() == tmp_path.resolve()
    assert result.stderr.strip() == "marker"


def test_subprocess_runner_reports_exit_status() -> None:
    result = SubprocessRunner().run(CommandSpec(argv=(sys.executable, "-c", "raise SystemExit(3)")))

    assert result.returncode == 3
    assert not result.ok


def test_missing_command_is_not_found() -> None:
    result = SubprocessRunner().run(CommandSpec(argv=("embpipe-no-such-tool", "--version")))

    assert result.returncode == COMMAND_NOT_FOUND
    assert "embpipe-no-such-tool: command not found" in result.stderr


def test_dry_run_runner_records_without_running() -> None:
    runner = DryRunRunner()
    command = CommandSpec(argv=("apt-get", "update"))

    result = runner.run(command)

    assert result.ok
    assert runner.commands == [command]


def test_dry_run_runner_reports_nothing_installed() -> None:
    runner = DryRunRunner()

    result = runner.run(CommandSpec(argv=("rustup", "--version"), read_only=True))

    assert not result.ok
    assert result.stdout == ""
    assert runner.commands == []
