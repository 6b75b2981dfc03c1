"""Helpers for running integration builds: commands, config and context tarballs."""

from __future__ import annotations

import logging
import os
import signal
import subprocess
import tarfile
import tempfile
import time
from dataclasses import dataclass
from typing import Any, Callable, Sequence

logger = logging.getLogger(__name__)

GCR_REPO_PREFIX = "gcr.io/"


@dataclass
class IntegrationTestConfig:
    """Settings shared by the integration test runs."""

    gcs_bucket: str = ""
    image_repo: str = ""
    onbuild_base_image: str = ""
    hardlink_base_image: str = ""
    service_account: str = ""
    docker_major_version: int = 0
    gcs_client: Any = None
    dockerfiles_pattern: str = ""

    def is_gcr_repository(self) -> bool:
        return self.image_repo.startswith(GCR_REPO_PREFIX)


class CommandError(Exception):
    """Raised when a command exits with a non-zero status."""

    def __init__(
        self,
        args: Sequence[str],
        returncode: int,
        output: bytes = b"",
        stderr: bytes = b"",
    ) -> None:
        super().__init__(f"command {list(args)!r} exited with status {returncode}")
        self.args_run = list(args)
        self.returncode = returncode
        self.output = output
        self.stderr = stderr


def run_on_interrupt(f: Callable[[], None]) -> Any:
    """Run ``f`` and exit with status 1 when an interrupt arrives.

    Returns the handler that was installed before.
    """

    def _handler(signum: int, frame: Any) -> None:
        logger.warning("Interrupted, cleaning up.")
        f()
        raise SystemExit(1)

    return signal.signal(signal.SIGINT, _handler)


def run_command_without_test(cmd: Sequence[str]) -> bytes:
    """Run ``cmd`` and return its combined standard output and error."""
    proc = subprocess.run(
        list(cmd), stdout=subprocess.PIPE, stderr=subprocess.STDOUT, check=False
    )
    if proc.returncode != 0:
        raise CommandError(cmd, proc.returncode, output=proc.stdout)
    return proc.stdout


def run_command(cmd: Sequence[str]) -> bytes:
    """Run ``cmd`` and return its standard output; log details on failure."""
    proc = subprocess.run(
        list(cmd), stdout=subprocess.PIPE, stderr=subprocess.PIPE, check=False
    )
    if proc.returncode != 0:
        logger.error("%s", list(cmd))
        logger.error("%s", proc.stderr.decode(errors="replace"))
        logger.error("%s", proc.stdout.decode(errors="replace"))
        raise CommandError(cmd, proc.returncode, output=proc.stdout, stderr=proc.stderr)
    return proc.stdout


def create_integration_tarball(directory: str | None = None) -> str:
    """Write the contents of ``directory`` (default: the working directory) to a
    gzipped tarball in a fresh temporary directory and return its path."""
    logger.info("Creating tarball of integration test files to use as build context")
    source = directory if directory is not None else os.getcwd()
    try:
        temp_dir = tempfile.mkdtemp()
    except OSError as exc:
        raise OSError(
            f"Failed to create temporary directory to hold tarball: {exc}"
        ) from exc
    context_path = os.path.join(temp_dir, f"context_{time.time_ns()}.tar.gz")
    try:
        with tarfile.open(context_path, "w:gz") as archive:
            for name in sorted(os.listdir(source)):
                archive.add(os.path.join(source, name), arcname=name)
    except OSError as exc:
        raise OSError(f"creating tarball of integration dir: {exc}") from exc
    os.chmod(context_path, 0o644)
    return context_path