import hashlib
from pathlib import Path

import pytest

from embpipe.builders import BuildSpec, XargoBuilder
from embpipe.errors import BuildFailure
from embpipe.observability import StructuredLogger


def _spec(project_dir: Path, **overrides) -> BuildSpec:
    values = {
        "project_dir": project_dir,
        "target": "thumbv7em-none-eabihf",
        "profile": "release",
        "binary_name": "emb1",
        "env": {"PATH": "/home/dev/.cargo/bin:/usr/bin"},
    }
    values.update(overrides)
    return BuildSpec(**values)


def _write_artifact(spec: BuildSpec, payload: bytes = b"\x7fELF firmware") -> Path:
    spec.artifact_path.parent.mkdir(parents=True, exist_ok=True)
    spec.artifact_path.write_bytes(payload)
    return spec.artifact_path


def test_release_build_command_and_artifact(fake_runner, tmp_path: Path) -> None:
    spec = _spec(tmp_path)
    expected = _write_artifact(spec)
    builder = XargoBuilder(runner=fake_runner)

    artifact = builder.build(spec)

    assert fake_runner.argvs == [
        ("xargo", "build", "--release", "--target", "thumbv7em-none-eabihf")
    ]
    call = fake_runner.calls[0]
    assert call.cwd == str(tmp_path)
    assert call.env["PATH"].startswith("/home/dev/.cargo/bin")
    assert artifact.path == tmp_path / "target" / "thumbv7em-none-eabihf" / "release" / "emb1"
    assert artifact.path == expected
    assert artifact.size == len(b"\x7fELF firmware")
    assert artifact.sha256 == hashlib.sha256(b"\x7fELF firmware").hexdigest()


def test_artifact_path_is_deterministic(tmp_path: Path) -> None:
    first = _spec(tmp_path).artifact_path
    second = _spec(tmp_path).artifact_path

    assert first == second
    assert first.relative_to(tmp_path).parts == (
        "target",
        "thumbv7em-none-eabihf",
        "release",
        "emb1",
    )


@pytest.mark.parametrize(
    ("profile", "flags"),
    [
        ("release", ("--release",)),
        ("debug", ()),
        ("size-opt", ("--profile", "size-opt")),
    ],
)
def test_profile_selects_build_flags(
    fake_runner, tmp_path: Path, profile: str, flags: tuple[str, ...]
) -> None:
    spec = _spec(tmp_path, profile=profile, flags=("--features", "semihosting"))

    command = XargoBuilder(runner=fake_runner).command(spec)

    assert command == (
        "xargo",
        "build",
        *flags,
        "--target",
        "thumbv7em-none-eabihf",
        "--features",
        "semihosting",
    )
    assert spec.artifact_path.parent.name == profile


def test_compile_failure_keeps_diagnostics_verbatim(fake_runner, tmp_path: Path) -> None:
    stderr = (
        "   Compiling emb1 v0.1.0 (/home/dev/emb1)\n"
        "error[E0425]: cannot find value `LED` in this scope\n"
    )
    fake_runner.respond("xargo", returncode=101, stdout="", stderr=stderr)
    builder = XargoBuilder(runner=fake_runner)

    with pytest.raises(BuildFailure) as excinfo:
        builder.build(_spec(tmp_path))

    assert excinfo.value.stderr == stderr
    assert excinfo.value.returncode == 101
    assert excinfo.value.exit_code == 101
    assert excinfo.value.code == "E_BUILD"
    assert excinfo.value.context["profile"] == "release"


def test_missing_artifact_after_success_is_a_failure(fake_runner, tmp_path: Path) -> None:
    with pytest.raises(BuildFailure) as excinfo:
        XargoBuilder(runner=fake_runner).build(_spec(tmp_path, binary_name="blinky"))

    assert excinfo.value.exit_code == 1
    assert excinfo.value.context["artifact"].endswith("release/blinky")


def test_custom_tool_and_logging(fake_runner, tmp_path: Path) -> None:
    spec = _spec(tmp_path)
    _write_artifact(spec)
    logger = StructuredLogger()

    XargoBuilder(runner=fake_runner, tool="cargo", logger=logger).build(spec)

    assert fake_runner.argvs[0][0] == "cargo"
    records = logger.records_for_component("builder")
    assert records[0]["extra"]["artifact"] == str(spec.artifact_path)
    assert records[-1]["message"].startswith("Built ")
