"""Build context sources: local directories, local tarballs and remote tarballs."""

from __future__ import annotations

import abc
import logging
import os
import sys
import tarfile
from dataclasses import dataclass
from typing import BinaryIO, Callable

import requests

logger = logging.getLogger(__name__)

TAR_BUILD_CONTEXT_PREFIX = "tar://"
GCS_BUILD_CONTEXT_PREFIX = "gs://"
S3_BUILD_CONTEXT_PREFIX = "s3://"
LOCAL_DIR_BUILD_CONTEXT_PREFIX = "dir://"
GIT_BUILD_CONTEXT_PREFIX = "git://"
HTTPS_BUILD_CONTEXT_PREFIX = "https://"

CONTEXT_TAR = "context.tar.gz"

UNKNOWN_PREFIX_MESSAGE = (
    "unknown build context prefix provided, please use one of the following: "
    "gs://, dir://, tar://, s3://, git://, https://"
)

_UNSUPPORTED_PREFIXES = (
    GCS_BUILD_CONTEXT_PREFIX,
    S3_BUILD_CONTEXT_PREFIX,
    GIT_BUILD_CONTEXT_PREFIX,
)


class BuildContextError(Exception):
    """Raised when a build context cannot be located or unpacked."""


@dataclass
class BuildOptions:
    """Options that influence how a build context is fetched."""

    git_branch: str = ""
    git_single_branch: bool = False
    git_recurse_submodules: bool = False


class BuildContext(abc.ABC):
    """A source of build context that can be made available as a directory."""

    @abc.abstractmethod
    def unpack(self) -> str:
        """Make the context available on disk and return its directory."""


def _extract_member(
    archive: tarfile.TarFile, member: tarfile.TarInfo, directory: str
) -> None:
    root = os.path.realpath(directory)
    target = os.path.realpath(os.path.join(root, member.name))
    if target != root and not target.startswith(root + os.sep):
        raise BuildContextError(f"archive entry {member.name!r} escapes {directory}")
    if hasattr(tarfile, "data_filter"):
        archive.extract(member, directory, filter="data")
    else:
        archive.extract(member, directory)


def _extract_all(archive: tarfile.TarFile, directory: str) -> None:
    for member in archive:
        _extract_member(archive, member, directory)


def unpack_compressed_tar(tar_path: str, directory: str) -> None:
    """Unpack a (possibly compressed) tar archive into ``directory``."""
    try:
        with tarfile.open(tar_path, "r:*") as archive:
            _extract_all(archive, directory)
    except (OSError, EOFError, tarfile.TarError) as exc:
        raise BuildContextError(f"unpacking {tar_path}: {exc}") from exc


@dataclass
class Dir(BuildContext):
    """A build context that is already an unpacked directory."""

    context: str

    def unpack(self) -> str:
        return self.context


@dataclass
class HTTPSTar(BuildContext):
    """A gzipped tarball downloaded from a web server."""

    context: str
    directory: str
    timeout: float | None = None

    def unpack(self) -> str:
        logger.info("Retrieving https tar file")
        tar_path = os.path.join(self.directory, CONTEXT_TAR)
        try:
            os.makedirs(self.directory, mode=0o750, exist_ok=True)
        except OSError as exc:
            raise BuildContextError(f"creating {self.directory}: {exc}") from exc

        try:
            with requests.get(self.context, stream=True, timeout=self.timeout) as resp:
                if resp.status_code != 200:
                    raise BuildContextError(
                        "HTTPSTar bad status from server: "
                        f"{resp.status_code} {resp.reason}"
                    )
                with open(tar_path, "wb") as out:
                    for chunk in resp.iter_content(chunk_size=65536):
                        out.write(chunk)
        except requests.RequestException as exc:
            raise BuildContextError(f"downloading {self.context}: {exc}") from exc
        except OSError as exc:
            raise BuildContextError(f"writing {tar_path}: {exc}") from exc

        logger.info("Retrieved https tar file")
        unpack_compressed_tar(tar_path, self.directory)
        logger.info("Extracted https tar file")

        # Remove the tar so it doesn't interfere with subsequent commands.
        os.remove(tar_path)
        return self.directory


@dataclass
class Tar(BuildContext):
    """A local gzipped tarball, or one streamed on standard input."""

    context: str
    directory: str
    stdin: BinaryIO | None = None

    def unpack(self) -> str:
        try:
            os.makedirs(self.directory, mode=0o750, exist_ok=True)
        except OSError as exc:
            raise BuildContextError(f"unpacking tar from build context: {exc}") from exc

        if self.context == "stdin":
            stream = self.stdin if self.stdin is not None else sys.stdin.buffer
            if stream.isatty():
                raise BuildContextError(
                    "no data found.. don't forget to add the '--interactive, -i' flag"
                )
            logger.info("To simulate EOF and exit, press 'Ctrl+D'")
            try:
                with tarfile.open(fileobj=stream, mode="r|gz") as archive:
                    _extract_all(archive, self.directory)
            except (OSError, EOFError, tarfile.TarError) as exc:
                raise BuildContextError(f"unpacking tar from stdin: {exc}") from exc
            return self.directory

        unpack_compressed_tar(self.context, self.directory)
        return self.directory


def _split_prefix(src_context: str) -> tuple[str, str] | None:
    parts = src_context.split("://")
    if len(parts) < 2:
        return None
    prefix = parts[0] + "://"
    context = parts[1] + ("://" if len(parts) > 2 else "")
    return prefix, context


def get_build_context(
    src_context: str, opts: BuildOptions, directory: str
) -> BuildContext:
    """Pick the build context source that matches the prefix of ``src_context``.

    ``directory`` is where downloaded or archived contexts are unpacked.
    """
    split = _split_prefix(src_context)
    if split is not None:
        prefix, context = split
        factories: dict[str, Callable[[], BuildContext]] = {
            LOCAL_DIR_BUILD_CONTEXT_PREFIX: lambda: Dir(context=context),
            HTTPS_BUILD_CONTEXT_PREFIX: lambda: HTTPSTar(
                context=src_context, directory=directory
            ),
            TAR_BUILD_CONTEXT_PREFIX: lambda: Tar(context=context, directory=directory),
        }
        if prefix in factories:
            return factories[prefix]()
        if prefix in _UNSUPPORTED_PREFIXES:
            raise BuildContextError(
                f"build context prefix {prefix} is not supported by this build"
            )
    raise BuildContextError(UNKNOWN_PREFIX_MESSAGE)