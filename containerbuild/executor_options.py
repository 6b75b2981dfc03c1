"""Command-line options of the image build executor."""

from __future__ import annotations

import argparse
import logging
import os
import re
from dataclasses import dataclass, field, fields
from datetime import timedelta
from typing import Any, Callable, Sequence

from containerbuild.buildcontext import BuildOptions

logger = logging.getLogger(__name__)

DEFAULT_KANIKO_PATH = "/kaniko"
DEFAULT_LOG_LEVEL = "info"
DEFAULT_LOG_FORMAT = "color"
DEFAULT_LOG_TIMESTAMP = False
DEFAULT_CACHE_TTL = timedelta(hours=336)

LOG_LEVELS = ("trace", "debug", "info", "warn", "error", "fatal", "panic")
LOG_FORMATS = ("text", "color", "json")
COMPRESSIONS = ("gzip", "zstd")

_URL_RE = re.compile(r"^https?://")
_DURATION_PART_RE = re.compile(r"(\d+(?:\.\d*)?|\.\d+)(ns|us|µs|μs|ms|s|m|h)")
_DURATION_UNITS = {
    "ns": 1e-9,
    "us": 1e-6,
    "µs": 1e-6,
    "μs": 1e-6,
    "ms": 1e-3,
    "s": 1.0,
    "m": 60.0,
    "h": 3600.0,
}
_TRUE_WORDS = {"1", "t", "T", "TRUE", "true", "True"}
_FALSE_WORDS = {"0", "f", "F", "FALSE", "false", "False"}


class OptionsError(Exception):
    """Raised when the given options do not fit together."""


@dataclass
class KanikoOptions:
    """Everything the executor is told on its command line."""

    command: str = "executor"
    log_level: str = DEFAULT_LOG_LEVEL
    log_format: str = DEFAULT_LOG_FORMAT
    log_timestamp: bool = DEFAULT_LOG_TIMESTAMP
    force: bool = False
    ctx_sub_path: str = ""

    dockerfile_path: str = "Dockerfile"
    src_context: str = "/workspace/"
    bucket: str = ""
    destinations: list[str] = field(default_factory=list)
    snapshot_mode: str = "full"
    custom_platform: str = ""
    build_args: list[str] = field(default_factory=list)
    insecure: bool = False
    skip_tls_verify: bool = False
    insecure_pull: bool = False
    skip_tls_verify_pull: bool = False
    push_retry: int = 0
    image_fs_extract_retry: int = 0
    kaniko_dir: str = DEFAULT_KANIKO_PATH
    tar_path: str = ""
    single_snapshot: bool = False
    reproducible: bool = False
    target: str = ""
    no_push: bool = False
    no_push_cache: bool = False
    cache_repo: str = ""
    cache_dir: str = "/cache"
    digest_file: str = ""
    image_name_digest_file: str = ""
    image_name_tag_digest_file: str = ""
    oci_layout_path: str = ""
    compression: str = ""
    compression_level: int = -1
    cache: bool = False
    compressed_caching: bool = True
    cleanup: bool = False
    cache_ttl: timedelta = DEFAULT_CACHE_TTL
    insecure_registries: list[str] = field(default_factory=list)
    skip_tls_verify_registries: list[str] = field(default_factory=list)
    registries_certificates: dict[str, str] = field(default_factory=dict)
    registries_client_certificates: dict[str, str] = field(default_factory=dict)
    registry_mirrors: list[str] = field(default_factory=list)
    skip_default_registry_fallback: bool = False
    ignore_var_run: bool = True
    labels: list[str] = field(default_factory=list)
    skip_unused_stages: bool = False
    run_v2: bool = False
    git: BuildOptions = field(default_factory=BuildOptions)
    cache_copy_layers: bool = False
    cache_run_layers: bool = True
    ignore_paths: list[str] = field(default_factory=list)
    force_build_metadata: bool = False
    skip_push_permission_check: bool = False

    snapshot_mode_deprecated: str = ""
    custom_platform_deprecated: str = ""
    tar_path_deprecated: str = ""


def _parse_bool(text: str) -> bool:
    if text in _TRUE_WORDS:
        return True
    if text in _FALSE_WORDS:
        return False
    raise argparse.ArgumentTypeError(f"invalid boolean value {text!r}")


def _parse_duration(text: str) -> timedelta:
    """Parse a duration such as ``6h``, ``1h30m`` or ``1.5s``."""
    raw = text.strip()
    sign = 1.0
    if raw[:1] in ("+", "-"):
        sign = -1.0 if raw[0] == "-" else 1.0
        raw = raw[1:]
    if raw == "0":
        return timedelta(0)
    if not raw:
        raise argparse.ArgumentTypeError(f"invalid duration {text!r}")
    seconds = 0.0
    pos = 0
    for match in _DURATION_PART_RE.finditer(raw):
        if match.start() != pos:
            raise argparse.ArgumentTypeError(f"invalid duration {text!r}")
        seconds += float(match.group(1)) * _DURATION_UNITS[match.group(2)]
        pos = match.end()
    if pos != len(raw):
        raise argparse.ArgumentTypeError(f"invalid duration {text!r}")
    return timedelta(seconds=sign * seconds)


def _parse_git_options(text: str) -> BuildOptions:
    opts = BuildOptions()
    for part in filter(None, text.split(",")):
        key, sep, value = part.partition("=")
        if not sep:
            raise argparse.ArgumentTypeError(f"invalid git option {part!r}")
        if key == "branch":
            opts.git_branch = value
        elif key == "single-branch":
            opts.git_single_branch = _parse_bool(value)
        elif key == "recurse-submodules":
            opts.git_recurse_submodules = _parse_bool(value)
        else:
            raise argparse.ArgumentTypeError(f"unknown git option {key!r}")
    return opts


class _KeyValueAction(argparse.Action):
    """Collects repeated ``key=value`` arguments into a dict."""

    def __call__(
        self,
        parser: argparse.ArgumentParser,
        namespace: argparse.Namespace,
        values: Any,
        option_string: str | None = None,
    ) -> None:
        key, sep, value = str(values).partition("=")
        if not sep or not key:
            parser.error(f"{option_string}: expected key=value, got {values!r}")
        mapping = dict(getattr(namespace, self.dest) or {})
        mapping[key] = value
        setattr(namespace, self.dest, mapping)


def _add_bool(
    parser: argparse.ArgumentParser, flag: str, dest: str, default: bool, help_text: str
) -> None:
    parser.add_argument(
        flag,
        dest=dest,
        nargs="?",
        const=True,
        default=default,
        type=_parse_bool,
        metavar="BOOL",
        help=help_text,
    )


def build_parser() -> argparse.ArgumentParser:
    """Return the argument parser for the executor command."""
    p = argparse.ArgumentParser(prog="executor")
    p.add_argument("command", nargs="?", choices=["version"], default=None)

    p.add_argument("-v", "--verbosity", dest="log_level", default=DEFAULT_LOG_LEVEL,
                   choices=LOG_LEVELS, help="Log level")
    p.add_argument("--log-format", dest="log_format", default=DEFAULT_LOG_FORMAT,
                   choices=LOG_FORMATS, help="Log format")
    _add_bool(p, "--log-timestamp", "log_timestamp", DEFAULT_LOG_TIMESTAMP,
              "Timestamp in log output")
    _add_bool(p, "--force", "force", False, "Force building outside of a container")

    p.add_argument("-f", "--dockerfile", dest="dockerfile_path", default="Dockerfile",
                   help="Path to the dockerfile to be built.")
    p.add_argument("-c", "--context", dest="src_context", default="/workspace/",
                   help="Path to the dockerfile build context.")
    p.add_argument("--context-sub-path", dest="ctx_sub_path", default="",
                   help="Sub path within the given context.")
    p.add_argument("-b", "--bucket", dest="bucket", default="", help=argparse.SUPPRESS)
    p.add_argument("-d", "--destination", dest="destinations", action="append",
                   default=None, help="Registry the final image should be pushed to.")
    p.add_argument("--snapshot-mode", dest="snapshot_mode", default="full",
                   help="Change the file attributes inspected during snapshotting")
    p.add_argument("--custom-platform", dest="custom_platform", default="",
                   help="Specify the build platform if different from the current host")
    p.add_argument("--build-arg", dest="build_args", action="append", default=None,
                   help="ARG values at build time.")
    _add_bool(p, "--insecure", "insecure", False, "Push to insecure registry using plain HTTP")
    _add_bool(p, "--skip-tls-verify", "skip_tls_verify", False,
              "Push to insecure registry ignoring TLS verify")
    _add_bool(p, "--insecure-pull", "insecure_pull", False,
              "Pull from insecure registry using plain HTTP")
    _add_bool(p, "--skip-tls-verify-pull", "skip_tls_verify_pull", False,
              "Pull from insecure registry ignoring TLS verify")
    p.add_argument("--push-retry", dest="push_retry", type=int, default=0,
                   help="Number of retries for the push operation")
    p.add_argument("--image-fs-extract-retry", dest="image_fs_extract_retry", type=int,
                   default=0, help="Number of retries for image FS extraction")
    p.add_argument("--kaniko-dir", dest="kaniko_dir", default=DEFAULT_KANIKO_PATH,
                   help="Path to the kaniko directory.")
    p.add_argument("--tar-path", dest="tar_path", default="",
                   help="Path to save the image in as a tarball instead of pushing")
    _add_bool(p, "--single-snapshot", "single_snapshot", False,
              "Take a single snapshot at the end of the build.")
    _add_bool(p, "--reproducible", "reproducible", False,
              "Strip timestamps out of the image to make it reproducible")
    p.add_argument("--target", dest="target", default="",
                   help="Set the target build stage to build")
    _add_bool(p, "--no-push", "no_push", False, "Do not push the image to the registry")
    _add_bool(p, "--no-push-cache", "no_push_cache", False,
              "Do not push the cache layers to the registry")
    p.add_argument("--cache-repo", dest="cache_repo", default="",
                   help="Repository to use as a cache")
    p.add_argument("--cache-dir", dest="cache_dir", default="/cache",
                   help="Local directory to use as a cache.")
    p.add_argument("--digest-file", dest="digest_file", default="",
                   help="File to save the digest of the built image to.")
    p.add_argument("--image-name-with-digest-file", dest="image_name_digest_file",
                   default="", help="File to save the image name w/ digest to.")
    p.add_argument("--image-name-tag-with-digest-file", dest="image_name_tag_digest_file",
                   default="", help="File to save the image name w/ tag w/ digest to.")
    p.add_argument("--oci-layout-path", dest="oci_layout_path", default="",
                   help="Path to save the OCI image layout of the built image.")
    p.add_argument("--compression", dest="compression", default="", choices=COMPRESSIONS,
                   help="Compression algorithm (gzip, zstd)")
    p.add_argument("--compression-level", dest="compression_level", type=int, default=-1,
                   help="Compression level")
    _add_bool(p, "--cache", "cache", False, "Use cache when building image")
    _add_bool(p, "--compressed-caching", "compressed_caching", True,
              "Compress the cached layers.")
    _add_bool(p, "--cleanup", "cleanup", False, "Clean the filesystem at the end")
    p.add_argument("--cache-ttl", dest="cache_ttl", type=_parse_duration,
                   default=DEFAULT_CACHE_TTL, help="Cache timeout, e.g. 6h.")
    p.add_argument("--insecure-registry", dest="insecure_registries", action="append",
                   default=None, help="Insecure registry using plain HTTP.")
    p.add_argument("--skip-tls-verify-registry", dest="skip_tls_verify_registries",
                   action="append", default=None,
                   help="Insecure registry ignoring TLS verify.")
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
    _add_bool(p, "--ignore-var-run", "ignore_var_run", True,
              "Ignore /var/run directory when taking image snapshot.")
    _add_bool(p, "--whitelist-var-run", "whitelist_var_run", None, argparse.SUPPRESS)
    p.add_argument("--label", dest="labels", action="append", default=None,
                   help="Set metadata for an image.")
    _add_bool(p, "--skip-unused-stages", "skip_unused_stages", False,
              "Build only used stages.")
    _add_bool(p, "--use-new-run", "run_v2", False,
              "Use the experimental run implementation.")
    p.add_argument("--git", dest="git", type=_parse_git_options, default=None,
                   help="Branch to clone if build context is a git repository")
    _add_bool(p, "--cache-copy-layers", "cache_copy_layers", False, "Caches copy layers")
    _add_bool(p, "--cache-run-layers", "cache_run_layers", True, "Caches run layers")
    p.add_argument("--ignore-path", dest="ignore_paths", action="append", default=None,
                   help="Ignore these paths when taking a snapshot.")
    _add_bool(p, "--force-build-metadata", "force_build_metadata", False,
              "Force add metadata layers to build image")
    _add_bool(p, "--skip-push-permission-check", "skip_push_permission_check", False,
              "Skip check of the push permission")

    p.add_argument("--snapshotMode", dest="snapshot_mode_deprecated", default="",
                   help="Deprecated. Use '--snapshot-mode'.")
    p.add_argument("--customPlatform", dest="custom_platform_deprecated", default="",
                   help="Deprecated. Use '--custom-platform'.")
    p.add_argument("--tarPath", dest="tar_path_deprecated", default="",
                   help="Deprecated. Use '--tar-path'.")
    return p


def parse_args(argv: Sequence[str] | None = None) -> KanikoOptions:
    """Parse the executor command line into a :class:`KanikoOptions`."""
    ns = vars(build_parser().parse_args(argv))
    command = ns.pop("command") or "executor"
    whitelist = ns.pop("whitelist_var_run")
    if whitelist is not None:
        logger.warning(
            "Flag --whitelist-var-run has been deprecated, "
            "Please use ignore-var-run instead."
        )
        ns["ignore_var_run"] = whitelist
    known = {f.name for f in fields(KanikoOptions)}
    values = {key: value for key, value in ns.items() if key in known and value is not None}
    return KanikoOptions(command=command, **values)


def check_no_deprecated_flags(opts: KanikoOptions) -> None:
    """Carry deprecated flag values over to their replacements, with a warning."""
    if opts.custom_platform_deprecated:
        logger.warning("Flag --customPlatform is deprecated. Use: --custom-platform")
        opts.custom_platform = opts.custom_platform_deprecated
    if opts.snapshot_mode_deprecated:
        logger.warning("Flag --snapshotMode is deprecated. Use: --snapshot-mode")
        opts.snapshot_mode = opts.snapshot_mode_deprecated
    if opts.tar_path_deprecated:
        logger.warning("Flag --tarPath is deprecated. Use: --tar-path")
        opts.tar_path = opts.tar_path_deprecated


def cache_flags_valid(opts: KanikoOptions) -> None:
    """Raise :class:`OptionsError` when the caching flags do not fit together."""
    if not opts.cache:
        return
    if not opts.cache_repo and opts.no_push:
        raise OptionsError(
            "if using cache with --no-push, specify cache repo with --cache-repo"
        )


def resolve_environment_build_args(
    arguments: list[str], resolver: Callable[[str], str]
) -> None:
    """Give every build arg without a value the value ``resolver`` finds for it.

    The list is changed in place.
    """
    arguments[:] = [
        arg if "=" in arg else f"{arg}={resolver(arg)}" for arg in arguments
    ]


def is_url(path: str) -> bool:
    """Tell whether ``path`` is an http or https URL."""
    return _URL_RE.match(path) is not None


def should_skip(path: str) -> bool:
    """Tell whether ``path`` needs no resolving to an absolute path."""
    return path == "" or is_url(path) or os.path.isabs(path)


def version_text(version: str) -> str:
    """Return the line the ``version`` command prints."""
    return f"Kaniko version :  {version}"