"""
Container Executor
==================

Runs one agent container to completion.

Guarantees:
1. The container engine is always invoked with a discrete argument list,
   never through a shell. User text only ever travels as the value of a
   ``-e NAME=VALUE`` element.
2. The image is verified before launch and rebuilt at most once.
3. The lifetime is a hard wall-clock ceiling; on expiry the process is
   killed and the container force-stopped.
4. Empty stdout triggers one ``docker logs`` recovery pass.
5. Every argument list, stderr/stdout snippet and error detail that leaves
   this module has been through the sanitizer.
"""

import asyncio
import re
import time
from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional, Sequence
from uuid import uuid4

import structlog

from claude_hub.core.config import Settings
from claude_hub.core.credentials import CredentialVault
from claude_hub.core.exceptions import ExecutionFailure, ExecutionTimeout, ImageMissing, LaunchFailure
from claude_hub.core.execution.security import security_flags, security_profile_from_settings
from claude_hub.core.models import ExecutionResult, LaunchSpecification, VolumeMount
from claude_hub.core.sanitize import redact, redact_args

logger = structlog.get_logger()

# Timeout for auxiliary docker calls (inspect, logs, kill, volume create)
AUX_TIMEOUT_SECONDS = 30.0
# Image builds can be slow but must still be bounded
BUILD_TIMEOUT_SECONDS = 1800.0
SNIPPET_CHARS = 500


# ==========================================================================
# Process runner
# ==========================================================================

@dataclass
class ProcessResult:
    returncode: int
    stdout: str
    stderr: str

    @property
    def ok(self) -> bool:
        return self.returncode == 0


class DockerRunner:
    """Thin async wrapper around the container engine CLI."""

    def __init__(self, binary: str = "docker"):
        self.binary = binary

    async def run(self, args: Sequence[str], timeout: Optional[float] = None) -> ProcessResult:
        """
        Run ``<binary> *args`` and collect output.

        Raises asyncio.TimeoutError after killing the process if ``timeout``
        elapses first.
        """
        proc = await asyncio.create_subprocess_exec(
            self.binary, *args,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
        try:
            stdout, stderr = await asyncio.wait_for(proc.communicate(), timeout=timeout)
        except asyncio.TimeoutError:
            proc.kill()
            await proc.wait()
            raise

        return ProcessResult(
            returncode=proc.returncode if proc.returncode is not None else -1,
            stdout=stdout.decode("utf-8", errors="replace") if stdout else "",
            stderr=stderr.decode("utf-8", errors="replace") if stderr else "",
        )


# ==========================================================================
# Launch specification helpers
# ==========================================================================

def container_name_for(repo_full_name: str, prefix: str = "claude") -> str:
    """Unique container name derived from the repository, safe as a docker name."""
    safe = re.sub(r"[^a-zA-Z0-9\-_]", "-", repo_full_name)
    return f"{prefix}-{safe}-{int(time.time() * 1000)}-{uuid4().hex[:6]}"


def build_launch_spec(
    settings: Settings,
    container_name: str,
    environment: Dict[str, str],
    volume_mounts: Optional[Iterable[VolumeMount]] = None,
    entrypoint: Optional[str] = "",
) -> LaunchSpecification:
    """
    Assemble a LaunchSpecification from settings.

    ``entrypoint`` defaults to the configured operation entrypoint; pass
    None to keep the image's own entrypoint.
    """
    mounts = list(volume_mounts or [])
    if settings.CLAUDE_AUTH_HOST_DIR:
        mounts.append(VolumeMount(settings.CLAUDE_AUTH_HOST_DIR, "/home/node/.claude"))

    return LaunchSpecification(
        container_name=container_name,
        image=settings.CLAUDE_CONTAINER_IMAGE,
        entrypoint=settings.CLAUDE_ENTRYPOINT if entrypoint == "" else (entrypoint or ""),
        environment=dict(environment),
        security_profile=security_profile_from_settings(settings),
        volume_mounts=mounts,
    )


def build_docker_args(spec: LaunchSpecification) -> List[str]:
    """``docker run`` argument list for a launch specification."""
    args = ["run", "--rm"]
    args += security_flags(spec.security_profile)
    args += ["--name", spec.container_name]
    for mount in spec.volume_mounts:
        args += ["-v", mount.as_arg()]
    for key, value in spec.environment.items():
        if value is None:
            continue
        args += ["-e", f"{key}={value}"]
    if spec.entrypoint:
        args += ["--entrypoint", spec.entrypoint]
    args.append(spec.image)
    return args


# ==========================================================================
# Executor
# ==========================================================================

class ContainerExecutor:
    """
    Executes launch specifications through the container engine.

    Usage:
        executor = ContainerExecutor(settings, vault)
        result = await executor.execute(spec, prompt, timeout_ms=600_000)
    """

    def __init__(
        self,
        settings: Settings,
        vault: CredentialVault,
        runner: Optional[DockerRunner] = None,
    ):
        self.settings = settings
        self.vault = vault
        self.runner = runner or DockerRunner(settings.DOCKER_BINARY)
        self._verified_images: set[str] = set()
        self._image_lock = asyncio.Lock()

    def _sanitize(self, text: str) -> str:
        return redact(text, self.vault.known_values())

    # ----------------------------------------------------------------------
    # Image
    # ----------------------------------------------------------------------

    async def ensure_image(self, image: str) -> None:
        """Verify the image exists, rebuilding it once if absent."""
        if image in self._verified_images:
            return

        async with self._image_lock:
            if image in self._verified_images:
                return

            try:
                inspect = await self.runner.run(["image", "inspect", image], timeout=AUX_TIMEOUT_SECONDS)
            except asyncio.TimeoutError:
                logger.error("Container image inspection timed out", image=image)
                raise LaunchFailure("Container engine did not respond", detail="image inspect timed out")
            except OSError as e:
                detail = self._sanitize(str(e))
                logger.error("Container engine could not be invoked", image=image, error=detail)
                raise LaunchFailure("Container engine could not be invoked", detail=detail)

            if inspect.ok:
                self._verified_images.add(image)
                return

            logger.info("Container image missing, rebuilding", image=image)
            try:
                build = await self.runner.run(
                    [
                        "build",
                        "-f", self.settings.CLAUDE_DOCKERFILE,
                        "-t", image,
                        self.settings.CLAUDE_BUILD_CONTEXT,
                    ],
                    timeout=BUILD_TIMEOUT_SECONDS,
                )
            except asyncio.TimeoutError:
                logger.error("Container image rebuild timed out", image=image)
                raise ImageMissing(image, "rebuild timed out")
            except OSError as e:
                detail = self._sanitize(str(e))
                logger.error("Container image rebuild could not be started", image=image, error=detail)
                raise LaunchFailure("Container engine could not be invoked", detail=detail)

            if not build.ok:
                detail = self._sanitize(build.stderr[-SNIPPET_CHARS:])
                logger.error("Container image rebuild failed", image=image, stderr=detail)
                raise ImageMissing(image, detail)

            logger.info("Container image rebuilt", image=image)
            self._verified_images.add(image)

    # ----------------------------------------------------------------------
    # Execution
    # ----------------------------------------------------------------------

    async def execute(
        self,
        spec: LaunchSpecification,
        prompt: str,
        timeout_ms: Optional[int] = None,
    ) -> ExecutionResult:
        """
        Run the container to completion with ``prompt`` as its instruction text.

        Raises ImageMissing, LaunchFailure or ExecutionTimeout.
        """
        timeout_ms = timeout_ms or self.settings.CONTAINER_LIFETIME_MS
        name = spec.container_name
        secrets = self.vault.known_values()

        await self.ensure_image(spec.image)

        spec.environment["COMMAND"] = prompt
        args = build_docker_args(spec)

        logger.info(
            "Starting agent container",
            container=name,
            docker_args=redact_args(args, secrets),
            timeout_ms=timeout_ms,
        )

        started = time.monotonic()
        try:
            result = await self.runner.run(args, timeout=timeout_ms / 1000)
        except asyncio.TimeoutError:
            logger.error("Agent container exceeded lifetime", container=name, timeout_ms=timeout_ms)
            await self.kill(name)
            raise ExecutionTimeout(name, timeout_ms)
        except OSError as e:
            detail = self._sanitize(str(e))
            logger.error("Agent container could not be launched", container=name, error=detail)
            raise LaunchFailure("Container engine could not be invoked", container_name=name, detail=detail)

        elapsed_ms = int((time.monotonic() - started) * 1000)

        if not result.ok:
            await self._fail(name, result, args)

        stdout = result.stdout.strip()
        recovered = False
        if not stdout:
            logger.warning("Empty output from agent container, reading logs", container=name)
            stdout = await self.logs(name)
            recovered = bool(stdout)
            if not recovered:
                raise ExecutionFailure("Container produced no output", container_name=name)
            logger.info("Recovered agent output from container logs", container=name)

        stdout = self._sanitize(stdout)
        logger.info(
            "Agent container finished",
            container=name,
            output_length=len(stdout),
            execution_time_ms=elapsed_ms,
            recovered_from_logs=recovered,
        )
        return ExecutionResult(
            stdout=stdout,
            recovered_from_logs=recovered,
            container_name=name,
            execution_time_ms=elapsed_ms,
        )

    async def _fail(self, name: str, result: ProcessResult, args: List[str]) -> None:
        stderr = self._sanitize(result.stderr[-SNIPPET_CHARS:])
        stdout = self._sanitize(result.stdout[-SNIPPET_CHARS:])
        logger.error(
            "Agent container failed",
            container=name,
            exit_code=result.returncode,
            stderr=stderr,
            stdout=stdout,
            docker_args=redact_args(args, self.vault.known_values()),
        )

        container_logs = await self.logs(name)
        if container_logs:
            logger.error("Agent container logs", container=name, logs=container_logs[-SNIPPET_CHARS:])

        await self.kill(name)
        raise LaunchFailure(
            f"Container exited with code {result.returncode}",
            container_name=name,
            detail=stderr,
            exit_code=result.returncode,
        )

    # ----------------------------------------------------------------------
    # Auxiliary commands
    # ----------------------------------------------------------------------

    async def logs(self, name: str) -> str:
        """Sanitized ``docker logs`` output, empty string when unavailable."""
        try:
            result = await self.runner.run(["logs", name], timeout=AUX_TIMEOUT_SECONDS)
        except (asyncio.TimeoutError, OSError) as e:
            logger.warning("Failed to read container logs", container=name, error=str(e))
            return ""
        if not result.ok:
            logger.warning("Failed to read container logs", container=name, stderr=self._sanitize(result.stderr))
            return ""
        return self._sanitize((result.stdout or result.stderr).strip())

    async def kill(self, name: str) -> None:
        """Best-effort stop; the container may already be gone."""
        try:
            result = await self.runner.run(["kill", name], timeout=AUX_TIMEOUT_SECONDS)
        except (asyncio.TimeoutError, OSError) as e:
            logger.debug("Container kill failed", container=name, error=str(e))
            return
        if not result.ok:
            logger.debug("Container kill failed", container=name, stderr=self._sanitize(result.stderr))

    async def prepare_volume(self, name: str) -> str:
        """Create the named workspace volume; returns the volume name."""
        try:
            result = await self.runner.run(["volume", "create", name], timeout=AUX_TIMEOUT_SECONDS)
        except (asyncio.TimeoutError, OSError) as e:
            detail = self._sanitize(str(e))
            logger.error("Failed to create workspace volume", volume=name, error=detail)
            raise LaunchFailure("Workspace volume could not be created", container_name=name, detail=detail)
        if not result.ok:
            detail = self._sanitize(result.stderr)
            logger.error("Failed to create workspace volume", volume=name, stderr=detail)
            raise LaunchFailure("Workspace volume could not be created", container_name=name, detail=detail)
        return name
