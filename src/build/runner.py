# src/build/runner.py - v1
"""Build Runner: run a source snapshot's buildspec and package its output.

The source artifact is extracted into a throwaway working directory, so the
stored source bytes are never touched. Commands run phase by phase through
the configured shell; the first non-zero exit or a timeout stops the build
and raises BuildFailed with the captured output.
"""

from __future__ import annotations

import asyncio
import logging
import os
import tempfile
import time
from dataclasses import dataclass, field
from pathlib import Path

from stagegate.build.buildspec import BuildSpec, parse_buildspec
from stagegate.core.errors import BuildFailed
from stagegate.storage.bundles import extract_to, zip_files

logger = logging.getLogger(__name__)

# Diagnostics kept on a failure (tail of the combined output).
MAX_DIAGNOSTICS_CHARS = 64_000

# Host variables a build may see; everything else the orchestrator holds
# (webhook secret, cloud credentials) stays out of build commands.
DEFAULT_INHERITED_ENV = ("PATH", "HOME", "LANG", "LC_ALL", "TMPDIR", "TZ")


@dataclass
class BuildOutput:
    """Result of a successful build."""

    payload: bytes
    files: list[str]
    diagnostics: str
    commands_run: int
    duration_s: float = 0.0
    env: dict[str, str] = field(default_factory=dict)


class BuildRunner:
    """Executes buildspec commands against a zipped source snapshot.

    Args:
        buildspec_filename: Buildspec path inside the source snapshot.
        shell: Shell executable used to run each command.
        timeout_s: Wall-clock limit for the whole build.
        inherit_env: Names of host environment variables passed to commands.
    """

    def __init__(
        self,
        buildspec_filename: str = "buildspec.yml",
        shell: str = "/bin/sh",
        timeout_s: float = 3600,
        inherit_env: tuple[str, ...] = DEFAULT_INHERITED_ENV,
    ) -> None:
        self._buildspec_filename = buildspec_filename
        self._shell = shell
        self._timeout_s = timeout_s
        self._inherit_env = inherit_env

    async def run(
        self,
        source_payload: bytes,
        extra_env: dict[str, str] | None = None,
        buildspec_filename: str | None = None,
    ) -> BuildOutput:
        """Build the snapshot and return the zipped build output.

        Raises:
            BuildFailed: Missing or invalid buildspec, failing command,
                timeout, or no files matched by ``artifacts.files``.
        """
        spec_name = buildspec_filename or self._buildspec_filename
        started = time.monotonic()

        with tempfile.TemporaryDirectory(prefix="stagegate-build-") as tmp:
            workdir = Path(tmp)
            extract_to(source_payload, workdir)

            spec_path = workdir / spec_name
            if not spec_path.is_file():
                raise BuildFailed(f"Build specification '{spec_name}' not found in source")
            spec = parse_buildspec(spec_path.read_text(encoding="utf-8"), spec_name)

            env = {k: os.environ[k] for k in self._inherit_env if k in os.environ}
            env.update(spec.env.variables)
            env.update(extra_env or {})

            diagnostics, count = await self._run_commands(spec, workdir, env, started)
            files = _collect_artifacts(spec, workdir)

        duration = time.monotonic() - started
        logger.info(
            "Build succeeded: %d commands, %d output files in %.1fs",
            count, len(files), duration,
        )
        return BuildOutput(
            payload=zip_files(files),
            files=sorted(files),
            diagnostics=diagnostics,
            commands_run=count,
            duration_s=duration,
            env=dict(spec.env.variables),
        )

    async def _run_commands(
        self,
        spec: BuildSpec,
        workdir: Path,
        env: dict[str, str],
        started: float,
    ) -> tuple[str, int]:
        transcript: list[str] = []
        count = 0
        for phase, command in spec.commands():
            remaining = self._timeout_s - (time.monotonic() - started)
            transcript.append(f"[{phase}] $ {command}\n")
            logger.debug("Running [%s] %s", phase, command)

            proc = await asyncio.create_subprocess_shell(
                command,
                cwd=str(workdir),
                env=env,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.STDOUT,
                executable=self._shell,
            )
            try:
                stdout, _ = await asyncio.wait_for(
                    proc.communicate(), timeout=max(remaining, 0.001)
                )
            except asyncio.TimeoutError:
                proc.kill()
                await proc.wait()
                transcript.append(f"Build timed out after {self._timeout_s}s\n")
                raise BuildFailed(
                    f"Build timed out in phase '{phase}'",
                    diagnostics=_tail("".join(transcript)),
                ) from None

            transcript.append(stdout.decode("utf-8", errors="replace"))
            count += 1
            if proc.returncode != 0:
                transcript.append(f"Command exited with status {proc.returncode}\n")
                raise BuildFailed(
                    f"Command failed in phase '{phase}' (exit {proc.returncode}): {command}",
                    diagnostics=_tail("".join(transcript)),
                    exit_code=proc.returncode,
                )
        return "".join(transcript), count


def _collect_artifacts(spec: BuildSpec, workdir: Path) -> dict[str, bytes]:
    """Gather files matched by ``artifacts.files`` under ``base-directory``."""
    base = (workdir / spec.artifacts.base_directory).resolve()
    if base != workdir.resolve() and workdir.resolve() not in base.parents:
        raise BuildFailed(
            f"artifacts.base-directory escapes the source tree: {spec.artifacts.base_directory}"
        )
    if not base.is_dir():
        raise BuildFailed(
            f"artifacts.base-directory not found: {spec.artifacts.base_directory}"
        )

    files: dict[str, bytes] = {}
    for pattern in spec.artifacts.files:
        for path in sorted(base.glob(pattern)):
            if not path.is_file():
                continue
            arcname = path.name if spec.artifacts.discard_paths else path.relative_to(base).as_posix()
            if arcname in files and files[arcname] != path.read_bytes():
                raise BuildFailed(f"Two output files map to '{arcname}' with discard-paths")
            files[arcname] = path.read_bytes()

    if not files:
        raise BuildFailed(
            f"No files matched artifacts.files {spec.artifacts.files} "
            f"in '{spec.artifacts.base_directory}'"
        )
    return files


def _tail(text: str) -> str:
    if len(text) <= MAX_DIAGNOSTICS_CHARS:
        return text
    return "...(truncated)...\n" + text[-MAX_DIAGNOSTICS_CHARS:]
