"""Preparation steps the executor runs before it builds an image."""

from __future__ import annotations

import logging
import os
import platform
import shutil
import subprocess
import sys
from typing import Mapping, MutableMapping

from containerbuild.buildcontext import (
    GCS_BUILD_CONTEXT_PREFIX,
    BuildContextError,
    get_build_context,
)
from containerbuild.executor_options import (
    DEFAULT_KANIKO_PATH,
    KanikoOptions,
    OptionsError,
    cache_flags_valid,
    check_no_deprecated_flags,
    is_url,
    resolve_environment_build_args,
    should_skip,
)
from containerbuild.integration import CommandError

logger = logging.getLogger(__name__)

DEFAULT_BUILD_CONTEXT_DIR = os.path.join(DEFAULT_KANIKO_PATH, "buildcontext")
DEFAULT_DOCKERFILE_TARGET = os.path.join(DEFAULT_KANIKO_PATH, "Dockerfile")
VAR_RUN = "/var/run"

_RELATIVE_PATH_FIELDS = (
    "dockerfile_path",
    "src_context",
    "cache_dir",
    "tar_path",
    "digest_file",
    "image_name_digest_file",
    "image_name_tag_digest_file",
)

_ARCH_ALIASES = {
    "x86_64": "amd64",
    "amd64": "amd64",
    "x64": "amd64",
    "aarch64": "arm64",
    "arm64": "arm64",
    "armv8": "arm64",
    "i386": "386",
    "i486": "386",
    "i586": "386",
    "i686": "386",
    "x86": "386",
    "armv7l": "arm/v7",
    "armv7": "arm/v7",
    "armv6l": "arm/v6",
    "armv6": "arm/v6",
    "armv5l": "arm/v5",
}


class ExecutorError(Exception):
    """Raised when the executor cannot prepare or run a build."""


def _default_platform() -> str:
    if sys.platform.startswith("linux"):
        os_name = "linux"
    elif sys.platform == "win32":
        os_name = "windows"
    else:
        os_name = sys.platform
    machine = platform.machine().lower()
    arch = _ARCH_ALIASES.get(machine, machine or "amd64")
    return f"{os_name}/{arch}"


def _validate_platform(spec: str) -> None:
    base = spec.split(":", 1)[0]
    if len(base.split("/")) > 3:
        raise ExecutorError(
            f"Invalid platform {spec!r}: too many slashes in platform spec: {spec}"
        )


def check_kaniko_dir(directory: str, default_path: str = DEFAULT_KANIKO_PATH) -> None:
    """Move the working directory from ``default_path`` to ``directory``.

    Nothing happens when both are the same. Otherwise the contents are copied
    (the target may be on another partition), the old directory is removed and
    ``DOCKER_CONFIG`` is pointed at the new one.
    """
    if directory == default_path:
        return
    try:
        shutil.copytree(default_path, directory, symlinks=True, dirs_exist_ok=True)
        shutil.rmtree(default_path)
    except OSError as exc:
        raise ExecutorError(f"moving {default_path} to {directory}: {exc}") from exc
    os.environ["DOCKER_CONFIG"] = os.path.join(directory, ".docker")


def _copy_file(src: str, dest: str) -> None:
    parent = os.path.dirname(dest)
    if parent:
        os.makedirs(parent, exist_ok=True)
    shutil.copy2(src, dest)


def copy_dockerfile(
    opts: KanikoOptions, target_path: str = DEFAULT_DOCKERFILE_TARGET
) -> None:
    """Copy the Dockerfile (and its ``.dockerignore``) to ``target_path``.

    Keeping it there means an ignore rule cannot copy it into the image.
    """
    try:
        _copy_file(opts.dockerfile_path, target_path)
    except OSError as exc:
        raise ExecutorError(f"copying dockerfile: {exc}") from exc
    dockerignore = opts.dockerfile_path + ".dockerignore"
    if os.path.lexists(dockerignore):
        try:
            _copy_file(dockerignore, target_path + ".dockerignore")
        except OSError as exc:
            raise ExecutorError(f"copying Dockerfile.dockerignore: {exc}") from exc
    opts.dockerfile_path = target_path


def resolve_dockerfile_path(
    opts: KanikoOptions, target_path: str = DEFAULT_DOCKERFILE_TARGET
) -> None:
    """Make the Dockerfile path absolute and copy the file to ``target_path``."""
    if is_url(opts.dockerfile_path):
        return
    if os.path.lexists(opts.dockerfile_path):
        opts.dockerfile_path = os.path.abspath(opts.dockerfile_path)
        copy_dockerfile(opts, target_path)
        return
    in_context = os.path.join(opts.src_context, opts.dockerfile_path)
    if os.path.lexists(in_context):
        opts.dockerfile_path = os.path.abspath(in_context)
        copy_dockerfile(opts, target_path)
        return
    raise ExecutorError(
        "please provide a valid path to a Dockerfile within the build context "
        "with --dockerfile"
    )


def resolve_source_context(
    opts: KanikoOptions,
    ctx_sub_path: str | None = None,
    build_context_dir: str = DEFAULT_BUILD_CONTEXT_DIR,
) -> None:
    """Unpack a remote or archived context and point ``src_context`` at it."""
    sub_path = opts.ctx_sub_path if ctx_sub_path is None else ctx_sub_path
    if not opts.src_context and not opts.bucket:
        raise ExecutorError(
            "please specify a path to the build context with the --context flag "
            "or a bucket with the --bucket flag"
        )
    if opts.src_context and "://" not in opts.src_context:
        return
    if opts.bucket:
        if "://" not in opts.bucket:
            # Without a prefix the bucket is taken to be Google Cloud Storage.
            opts.src_context = GCS_BUILD_CONTEXT_PREFIX + opts.bucket
        else:
            opts.src_context = opts.bucket
    try:
        context = get_build_context(opts.src_context, opts.git, build_context_dir)
        logger.debug("Getting source context from %s", opts.src_context)
        opts.src_context = context.unpack()
    except BuildContextError as exc:
        raise ExecutorError(str(exc)) from exc
    if sub_path:
        opts.src_context = os.path.join(opts.src_context, sub_path)
        if not os.path.exists(opts.src_context):
            raise ExecutorError(f"context sub path {opts.src_context} does not exist")
    logger.debug("Build context located at %s", opts.src_context)


def resolve_relative_paths(opts: KanikoOptions) -> None:
    """Turn every relative path option into an absolute one."""
    for name in _RELATIVE_PATH_FIELDS:
        path = getattr(opts, name)
        if should_skip(path):
            logger.debug("Skip resolving path %s", path)
            continue
        resolved = os.path.abspath(path)
        setattr(opts, name, resolved)
        logger.debug("Resolved relative path %s to %s", path, resolved)


def ignore_paths(opts: KanikoOptions) -> list[str]:
    """Return the paths to leave out of image snapshots."""
    paths = []
    if opts.ignore_var_run:
        # A socket mounted under /var/run makes the directory exist with no way
        # to tell whether it came from the base image.
        logger.debug("Adding /var/run to default ignore list")
        paths.append(VAR_RUN)
    paths.extend(opts.ignore_paths)
    return paths


def _validate_flags(opts: KanikoOptions, environ: Mapping[str, str]) -> None:
    check_no_deprecated_flags(opts)
    mirror = environ.get("KANIKO_REGISTRY_MIRROR")
    if mirror is not None:
        opts.registry_mirrors.append(mirror)
    if not opts.custom_platform:
        opts.custom_platform = _default_platform()
    _validate_platform(opts.custom_platform)


def pre_run(
    opts: KanikoOptions,
    ctx_sub_path: str | None = None,
    build_context_dir: str = DEFAULT_BUILD_CONTEXT_DIR,
    dockerfile_target: str = DEFAULT_DOCKERFILE_TARGET,
    environ: MutableMapping[str, str] | None = None,
) -> list[str]:
    """Check and resolve the options before a build.

    Returns the paths to leave out of snapshots.
    """
    env = os.environ if environ is None else environ
    if opts.command != "executor":
        return []

    _validate_flags(opts, env)

    # The command line flag takes precedence over the KANIKO_DIR variable.
    directory = env.get("KANIKO_DIR", DEFAULT_KANIKO_PATH)
    if opts.kaniko_dir != DEFAULT_KANIKO_PATH:
        directory = opts.kaniko_dir
    check_kaniko_dir(directory, DEFAULT_KANIKO_PATH)

    resolve_environment_build_args(opts.build_args, lambda key: env.get(key, ""))

    if not opts.no_push and not opts.destinations:
        raise ExecutorError("you must provide --destination, or use --no-push")
    try:
        cache_flags_valid(opts)
    except OptionsError as exc:
        raise ExecutorError(f"cache flags invalid: {exc}") from exc
    try:
        resolve_source_context(opts, ctx_sub_path, build_context_dir)
    except ExecutorError as exc:
        raise ExecutorError(f"error resolving source context: {exc}") from exc
    try:
        resolve_dockerfile_path(opts, dockerfile_target)
    except ExecutorError as exc:
        raise ExecutorError(f"error resolving dockerfile path: {exc}") from exc
    if not opts.destinations and opts.image_name_digest_file:
        raise ExecutorError(
            "you must provide --destination if setting ImageNameDigestFile"
        )
    if not opts.destinations and opts.image_name_tag_digest_file:
        raise ExecutorError(
            "you must provide --destination if setting ImageNameTagDigestFile"
        )
    return ignore_paths(opts)


def exit_code_for(err: BaseException) -> int:
    """Return the exit status a failed build should end with.

    A failed command anywhere in the chain of causes passes its own status on;
    anything else gives 1.
    """
    seen: set[int] = set()
    current: BaseException | None = err
    while current is not None and id(current) not in seen:
        seen.add(id(current))
        if isinstance(current, (subprocess.CalledProcessError, CommandError)):
            return current.returncode
        current = current.__cause__ or current.__context__
    return 1