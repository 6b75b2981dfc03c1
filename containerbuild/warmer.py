"""Command-line options and checks of the base image cache warmer."""

from __future__ import annotations

import argparse
import os
from dataclasses import dataclass, field, fields
from datetime import timedelta
from typing import Sequence

from containerbuild.executor import ExecutorError, _default_platform, _validate_platform
from containerbuild.executor_options import (
    DEFAULT_CACHE_TTL,
    DEFAULT_LOG_FORMAT,
    DEFAULT_LOG_LEVEL,
    DEFAULT_LOG_TIMESTAMP,
    LOG_FORMATS,
    LOG_LEVELS,
    _add_bool,
    _KeyValueAction,
    _parse_duration,
)
from containerbuild.executor_options import is_url as _is_url

NO_INPUT_MESSAGE = (
    "You must select at least one image to cache or a dockerfilepath to parse"
)
INVALID_DOCKERFILE_MESSAGE = (
    "please provide a valid path to a Dockerfile within the build context "
    "with --dockerfile"
)


class WarmerError(Exception):
    """Raised when the warmer's options are invalid or it cannot prepare."""


@dataclass
class WarmerOptions:
    """Everything the cache warmer is told on its command line."""

    log_level: str = DEFAULT_LOG_LEVEL
    log_format: str = DEFAULT_LOG_FORMAT
    log_timestamp: bool = DEFAULT_LOG_TIMESTAMP

    images: list[str] = field(default_factory=list)
    cache_dir: str = "/cache"
    force: bool = False
    cache_ttl: timedelta = DEFAULT_CACHE_TTL
    insecure_pull: bool = False
    skip_tls_verify_pull: bool = False
    insecure_registries: list[str] = field(default_factory=list)
    skip_tls_verify_registries: list[str] = field(default_factory=list)
    registries_certificates: dict[str, str] = field(default_factory=dict)
    registries_client_certificates: dict[str, str] = field(default_factory=dict)
    registry_mirrors: list[str] = field(default_factory=list)
    skip_default_registry_fallback: bool = False
    custom_platform: str = ""
    dockerfile_path: str = ""
    build_args: list[str] = field(default_factory=list)


def build_parser() -> argparse.ArgumentParser:
    """Return the argument parser for the cache warmer command."""
    p = argparse.ArgumentParser(prog="warmer", description="cache warmer")
    p.add_argument("-v", "--verbosity", dest="log_level", default=DEFAULT_LOG_LEVEL,
                   choices=LOG_LEVELS, help="Log level")
    p.add_argument("--log-format", dest="log_format", default=DEFAULT_LOG_FORMAT,
                   choices=LOG_FORMATS, help="Log format")
    _add_bool(p, "--log-timestamp", "log_timestamp", DEFAULT_LOG_TIMESTAMP,
              "Timestamp in log output")

    p.add_argument("-i", "--image", dest="images", action="append", default=None,
                   help="Image to cache. Set it repeatedly for multiple images.")
    p.add_argument("-c", "--cache-dir", dest="cache_dir", default="/cache",
                   help="Directory of the cache.")
    _add_bool(p, "--force", "force", False, "Force cache overwriting.")
    p.add_argument("-f", dest="force", action="store_const", const=True,
                   help=argparse.SUPPRESS)
    p.add_argument("--cache-ttl", dest="cache_ttl", type=_parse_duration,
                   default=DEFAULT_CACHE_TTL,
                   help="Cache timeout in hours. Defaults to two weeks.")
    _add_bool(p, "--insecure-pull", "insecure_pull", False,
              "Pull from insecure registry using plain HTTP")
    _add_bool(p, "--skip-tls-verify-pull", "skip_tls_verify_pull", False,
              "Pull from insecure registry ignoring TLS verify")
    p.add_argument("--insecure-registry", dest="insecure_registries", action="append",
                   default=None, help="Insecure registry using plain HTTP to pull.")
    p.add_argument("--skip-tls-verify-registry", dest="skip_tls_verify_registries",
                   action="append", default=None,
                   help="Insecure registry ignoring TLS verify to pull.")
    p.add_argument("--registry-certificate", dest="registries_certificates",
                   action=_KeyValueAction, default=None,
                   help="my.registry.url=/path/to/the/server/certificate")
    p.add_argument("--registry-client-cert", dest="registries_client_certificates",
                   action=_KeyValueAction, default=None,
                   help="my.registry.url=/path/to/client/cert,/path/to/client/key")
    p.add_argument("--registry-mirror", dest="registry_mirrors", action="append",
                   default=None, help="Registry mirror to use as pull-through cache.")
    _add_bool(p, "--skip-default-registry-fallback", "skip_default_registry_fallback",
              False, "Do not fall back to the default registry.")
    p.add_argument("--customPlatform", dest="custom_platform", default="",
                   help="Specify the build platform if different from the current host")
    p.add_argument("-d", "--dockerfile", dest="dockerfile_path", default="",
                   help="Path to the dockerfile to be cached.")
    p.add_argument("--build-arg", dest="build_args", action="append", default=None,
                   help="Build args used to resolve the base images.")
    return p


def parse_args(argv: Sequence[str] | None = None) -> WarmerOptions:
    """Parse the warmer command line into a :class:`WarmerOptions`.

    The platform defaults to the current one and is checked here.
    """
    ns = vars(build_parser().parse_args(argv))
    known = {f.name for f in fields(WarmerOptions)}
    values = {key: value for key, value in ns.items() if key in known and value is not None}
    opts = WarmerOptions(**values)
    if not opts.custom_platform:
        opts.custom_platform = _default_platform()
    try:
        _validate_platform(opts.custom_platform)
    except ExecutorError as exc:
        raise WarmerError(str(exc)) from exc
    return opts


def is_url(path: str) -> bool:
    """Tell whether ``path`` is an http or https URL."""
    return _is_url(path)


def validate_dockerfile_path(opts: WarmerOptions) -> None:
    """Make a local Dockerfile path absolute; raise if it does not exist."""
    if is_url(opts.dockerfile_path):
        return
    if os.path.lexists(opts.dockerfile_path):
        opts.dockerfile_path = os.path.abspath(opts.dockerfile_path)
        return
    raise WarmerError(INVALID_DOCKERFILE_MESSAGE)


def pre_run(opts: WarmerOptions) -> None:
    """Check that there is something to cache and that the Dockerfile exists."""
    if not opts.images and not opts.dockerfile_path:
        raise WarmerError(NO_INPUT_MESSAGE)
    if opts.dockerfile_path:
        try:
            validate_dockerfile_path(opts)
        except WarmerError as exc:
            raise WarmerError(f"error validating dockerfile path: {exc}") from exc


def ensure_cache_dir(opts: WarmerOptions) -> None:
    """Create the cache directory when it does not exist yet."""
    if os.path.exists(opts.cache_dir):
        return
    try:
        os.makedirs(opts.cache_dir, mode=0o755, exist_ok=True)
    except OSError as exc:
        raise WarmerError(f"Failed to create cache directory: {exc}") from exc