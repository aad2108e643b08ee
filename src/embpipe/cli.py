"""Command-line entry point.

Usage:
    embpipe provision [--check] [--shell-integration] [--report PATH]
    embpipe build [--target TRIPLE] [--profile NAME]
    embpipe flash [--artifact PATH] [--board CFG] [--require-artifact]

Each subcommand is a standalone invocation; run them in that order.
"""

from __future__ import annotations

import argparse
import shlex
import sys
from pathlib import Path

from embpipe.builders import BuildSpec, XargoBuilder
from embpipe.config import PipelineConfig, load_config, toolchain_env
from embpipe.errors import BuildFailure, PipelineError
from embpipe.flash import Flasher, batch_command, get_programmer
from embpipe.models import FlashResult, ProvisionResult
from embpipe.observability import StructuredLogger
from embpipe.provision import AptInstaller, Provisioner, RustupManager
from embpipe.runner import CommandRunner, DryRunRunner, SubprocessRunner


def cmd_provision(
    args: argparse.Namespace,
    config: PipelineConfig,
    logger: StructuredLogger,
) -> int:
    runner: CommandRunner = DryRunRunner() if args.dry_run else SubprocessRunner()
    if args.shell_integration:
        config = config.with_overrides(shell_integration=True)
    provisioner = Provisioner(
        config=config,
        packages=AptInstaller(runner, privilege=config.privilege),
        toolchains=RustupManager(runner, env=toolchain_env(config)),
        logger=logger,
    )
    if args.check:
        ready = provisioner.check()
        print(provisioner.state.value if ready else "unprovisioned")
        return 0 if ready else 1

    result = provisioner.run()
    if isinstance(runner, DryRunRunner):
        for command in runner.commands:
            print(shlex.join(command.argv))
    if args.report is not None:
        _write_report(result, args.report)
    print(result.state.value)
    return 0


def cmd_build(
    args: argparse.Namespace,
    config: PipelineConfig,
    logger: StructuredLogger,
) -> int:
    spec = BuildSpec(
        project_dir=config.project_dir,
        target=config.target,
        profile=config.profile,
        binary_name=config.binary_name,
        env=toolchain_env(config),
    )
    builder = XargoBuilder(runner=SubprocessRunner(passthrough=True), logger=logger)
    if args.dry_run:
        print(shlex.join(builder.command(spec)))
        print(spec.artifact_path)
        return 0
    artifact = builder.build(spec)
    print(artifact.path)
    return 0


def cmd_flash(
    args: argparse.Namespace,
    config: PipelineConfig,
    logger: StructuredLogger,
) -> int:
    artifact = args.artifact if args.artifact is not None else config.artifact
    board = args.board or config.board_config
    flasher = Flasher(
        programmer=get_programmer("dry_run" if args.dry_run else "openocd", binary=config.openocd),
        board_config=board,
        require_artifact=args.require_artifact,
        logger=logger,
    )
    if args.dry_run:
        commands = flasher.commands(artifact)
        print(shlex.join(batch_command(config.openocd, board, commands)))
    result = flasher.flash(artifact)
    if args.report is not None:
        _write_report(result, args.report)
    print(result.state.value)
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="embpipe",
        description="Provision, build, and flash cross-compiled firmware",
    )
    parser.add_argument("--config", type=Path, help="JSON configuration file")
    parser.add_argument("--project-dir", type=Path, help="Firmware project directory")
    parser.add_argument("--log-file", type=Path, help="Write structured logs as JSON lines")
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Print commands without running them",
    )
    parser.add_argument("--quiet", action="store_true", help="Do not echo progress to stderr")
    sub = parser.add_subparsers(dest="command", required=True)

    provision_p = sub.add_parser("provision", help="Install and pin the toolchains")
    provision_p.add_argument("--check", action="store_true", help="Only report whether provisioned")
    provision_p.add_argument(
        "--shell-integration",
        action="store_true",
        help="Append `cd <project-dir>` to the shell profile",
    )
    provision_p.add_argument("--report", type=Path, help="Write a .json or .cbor report")
    provision_p.set_defaults(handler=cmd_provision)

    build_p = sub.add_parser("build", help="Cross-compile the firmware")
    build_p.add_argument("--target", help="Target triple")
    build_p.add_argument("--profile", help="Build profile")
    build_p.set_defaults(handler=cmd_build)

    flash_p = sub.add_parser("flash", help="Erase, write, and resume the target")
    flash_p.add_argument("--artifact", type=Path, help="Firmware image to write")
    flash_p.add_argument("--board", help="Board configuration file for the adapter")
    flash_p.add_argument(
        "--require-artifact",
        action="store_true",
        help="Fail before contacting the adapter when the artifact is missing",
    )
    flash_p.add_argument("--report", type=Path, help="Write a .json or .cbor report")
    flash_p.set_defaults(handler=cmd_flash)
    return parser


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    logger = StructuredLogger(stream=None if args.quiet else sys.stderr)
    try:
        config = load_config(args.config) if args.config is not None else PipelineConfig()
        config = config.with_overrides(
            project_dir=args.project_dir.resolve() if args.project_dir is not None else None,
            target=getattr(args, "target", None),
            profile=getattr(args, "profile", None),
        )
        return args.handler(args, config, logger)
    except BuildFailure as exc:
        # Tool output is forwarded as-is; it is empty when it already streamed.
        sys.stdout.write(exc.stdout)
        sys.stderr.write(exc.stderr)
        print(f"error[{exc.code}]: {exc}", file=sys.stderr)
        return exc.exit_code
    except PipelineError as exc:
        print(f"error[{exc.code}]: {exc}", file=sys.stderr)
        return exc.exit_code
    finally:
        if args.log_file is not None:
            logger.to_json_lines(args.log_file)


def _write_report(result: ProvisionResult | FlashResult, path: Path) -> None:
    if path.suffix == ".cbor":
        result.to_cbor(path)
    else:
        result.to_json(path)
