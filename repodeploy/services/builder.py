"""Build Executor.

Turns a detected profile into a directory of static output.
"""

import asyncio
import os
from pathlib import Path

from repodeploy.config import settings
from repodeploy.core.exceptions import BuildError, UnsupportedProject
from repodeploy.models.profile import ProfileKind, ProjectProfile
from repodeploy.utils.logging import get_logger

# Checked in order when the profile carries no usable output hint
OUTPUT_CANDIDATES = ("dist", "build", "out", "public")

# Captured output kept on a BuildError
MAX_OUTPUT_CHARS = 4000

# Seconds to keep reading pipes after a command is killed
READER_GRACE_SECONDS = 2.0


class BuildExecutor:
    """Runs install and build commands for buildable profiles."""

    def __init__(self, timeout: float | None = None):
        self.timeout = timeout if timeout is not None else settings.build_timeout_seconds
        self.logger = get_logger("builder")

    async def build(self, profile: ProjectProfile) -> Path:
        """Produce the build output directory for ``profile``.

        Static profiles are a pass-through: the tree root is the output and
        nothing is executed.

        Raises:
            UnsupportedProject: profile is unknown
            BuildError: a command failed, timed out, or left no output
        """
        if profile.kind == ProfileKind.STATIC:
            self.logger.info("builder.static_passthrough", root=str(profile.root))
            return profile.root

        if profile.kind != ProfileKind.BUILDABLE or not profile.build_command:
            raise UnsupportedProject(f"Cannot build project: {profile.reason}")

        if profile.install_command:
            await self._run(profile.install_command, profile.root, "install")
        await self._run(profile.build_command, profile.root, "build")

        output = self._resolve_output(profile)
        self.logger.info("builder.completed", output_dir=str(output))
        return output

    async def _run(self, command: list[str], cwd: Path, phase: str) -> None:
        """Run one command with the configured timeout."""
        self.logger.info(
            "builder.running_command",
            phase=phase,
            cmd=" ".join(command),
            cwd=str(cwd),
        )

        env = os.environ.copy()
        env["CI"] = "true"

        try:
            process = await asyncio.create_subprocess_exec(
                *command,
                cwd=str(cwd),
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                env=env,
            )
        except (FileNotFoundError, PermissionError) as e:
            raise BuildError(f"Failed to start {phase} command '{command[0]}': {e}") from e

        # Output is collected into buffers owned here so a timeout keeps it
        stdout, stderr = bytearray(), bytearray()
        readers = [
            asyncio.create_task(_drain(process.stdout, stdout)),
            asyncio.create_task(_drain(process.stderr, stderr)),
        ]

        try:
            await asyncio.wait_for(process.wait(), timeout=self.timeout)
            await asyncio.gather(*readers)
        except asyncio.TimeoutError:
            await self._kill(process)
            await _stop_readers(readers)
            output = _format_output(process.returncode, stdout, stderr)
            self.logger.error(
                "builder.command_timed_out",
                phase=phase,
                timeout=self.timeout,
                error_preview=output[:500],
            )
            raise BuildError(
                f"{phase.capitalize()} timed out after {self.timeout} seconds",
                output=output,
            )
        except asyncio.CancelledError:
            await self._kill(process)
            await _stop_readers(readers)
            self.logger.info("builder.cancelled", phase=phase)
            raise

        if process.returncode != 0:
            output = _format_output(process.returncode, stdout, stderr)
            self.logger.error(
                "builder.command_failed",
                phase=phase,
                returncode=process.returncode,
                error_preview=output[:500],
            )
            raise BuildError(
                f"{phase.capitalize()} failed with exit code {process.returncode}",
                output=output,
            )

    @staticmethod
    async def _kill(process: asyncio.subprocess.Process) -> None:
        if process.returncode is None:
            try:
                process.kill()
            except ProcessLookupError:
                pass
            await process.wait()

    def _resolve_output(self, profile: ProjectProfile) -> Path:
        root = profile.root.resolve()
        candidates = [profile.output_dir] if profile.output_dir else []
        candidates += [c for c in OUTPUT_CANDIDATES if c != profile.output_dir]

        for candidate in candidates:
            path = (root / candidate).resolve()
            if not path.is_relative_to(root):
                raise BuildError(f"Build output escapes the source tree: {candidate}")
            if path.is_dir():
                return path

        raise BuildError(
            "Build finished but no output directory was found "
            f"(looked for {', '.join(candidates)})"
        )


def _format_output(returncode: int | None, stdout: bytes, stderr: bytes) -> str:
    stdout_text = stdout.decode(errors="replace") if stdout else ""
    stderr_text = stderr.decode(errors="replace") if stderr else ""

    output = f"Exit code: {returncode}\n"
    if stderr_text:
        output += f"STDERR:\n{stderr_text[-MAX_OUTPUT_CHARS:]}\n"
    if stdout_text:
        output += f"STDOUT:\n{stdout_text[-MAX_OUTPUT_CHARS:]}"
    return output


async def _drain(stream: asyncio.StreamReader, buffer: bytearray) -> None:
    while True:
        chunk = await stream.read(65536)
        if not chunk:
            return
        buffer.extend(chunk)


async def _stop_readers(readers: list[asyncio.Task]) -> None:
    """Give readers a moment to hit EOF after a kill, then drop them.

    Grandchildren of a killed command can keep the pipes open.
    """
    _, pending = await asyncio.wait(readers, timeout=READER_GRACE_SECONDS)
    for reader in pending:
        reader.cancel()
    if pending:
        await asyncio.wait(pending)
