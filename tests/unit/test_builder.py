"""Unit tests for the build executor."""

import sys
from pathlib import Path

import pytest

from repodeploy.core.exceptions import BuildError, UnsupportedProject
from repodeploy.models.profile import ProfileKind, ProjectProfile
from repodeploy.services.builder import BuildExecutor


def python_profile(root: Path, code: str, output_dir: str | None = "dist") -> ProjectProfile:
    """A buildable profile whose build step is a Python snippet."""
    return ProjectProfile(
        kind=ProfileKind.BUILDABLE,
        root=root,
        build_command=[sys.executable, "-c", code],
        output_dir=output_dir,
        reason="test",
    )


class TestBuildExecutor:
    """Tests for BuildExecutor."""

    @pytest.fixture
    def builder(self) -> BuildExecutor:
        return BuildExecutor(timeout=30)

    async def test_static_is_pass_through(self, builder, tmp_path: Path):
        (tmp_path / "index.html").write_text("<html></html>")
        profile = ProjectProfile(kind=ProfileKind.STATIC, root=tmp_path)

        assert await builder.build(profile) == tmp_path

    async def test_unknown_is_unsupported(self, builder, tmp_path: Path):
        profile = ProjectProfile(kind=ProfileKind.UNKNOWN, root=tmp_path, reason="nothing found")

        with pytest.raises(UnsupportedProject, match="nothing found"):
            await builder.build(profile)

    async def test_runs_install_then_build(self, builder, tmp_path: Path):
        profile = python_profile(
            tmp_path,
            "import pathlib; assert pathlib.Path('installed').exists(); "
            "pathlib.Path('dist').mkdir(); pathlib.Path('dist/index.html').write_text('ok')",
        )
        profile.install_command = [
            sys.executable,
            "-c",
            "import pathlib; pathlib.Path('installed').write_text('yes')",
        ]

        output = await builder.build(profile)

        assert output == (tmp_path / "dist").resolve()
        assert (output / "index.html").read_text() == "ok"

    async def test_falls_back_to_known_output_dirs(self, builder, tmp_path: Path):
        profile = python_profile(
            tmp_path,
            "import pathlib; pathlib.Path('build').mkdir()",
            output_dir=None,
        )

        assert (await builder.build(profile)).name == "build"

    async def test_failed_command_captures_output(self, builder, tmp_path: Path):
        profile = python_profile(
            tmp_path,
            "import sys; print('compiling'); sys.stderr.write('syntax error'); sys.exit(3)",
        )

        with pytest.raises(BuildError) as exc_info:
            await builder.build(profile)

        assert "exit code 3" in exc_info.value.message
        assert "syntax error" in exc_info.value.output
        assert "compiling" in exc_info.value.output

    async def test_timeout(self, tmp_path: Path):
        builder = BuildExecutor(timeout=0.5)
        profile = python_profile(
            tmp_path,
            "import time; print('bundling assets', flush=True); time.sleep(30)",
        )

        with pytest.raises(BuildError, match="timed out") as exc_info:
            await builder.build(profile)

        assert "bundling assets" in exc_info.value.output
        assert exc_info.value.details["output"] == exc_info.value.output

    async def test_missing_output_directory(self, builder, tmp_path: Path):
        profile = python_profile(tmp_path, "pass")

        with pytest.raises(BuildError, match="no output directory"):
            await builder.build(profile)

    async def test_missing_executable(self, builder, tmp_path: Path):
        profile = ProjectProfile(
            kind=ProfileKind.BUILDABLE,
            root=tmp_path,
            build_command=["definitely-not-a-real-tool-xyz", "build"],
        )

        with pytest.raises(BuildError, match="Failed to start"):
            await builder.build(profile)
