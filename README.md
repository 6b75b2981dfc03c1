# containerbuild

Building blocks for a daemonless container image builder: fetching and
unpacking the build context, parsing and checking the builder's and the
cache warmer's options, preparing a build before it runs, helpers for
integration runs, and a small command that lists merged pull requests for
release notes.

## Installation

```
pip install containerbuild
```

For running the test suite:

```
pip install "containerbuild[test]"
pytest
```

## Build contexts (`containerbuild.buildcontext`)

A build context is named by a prefix that says where it comes from:

| Prefix      | Handler    | Meaning                                              |
|-------------|------------|------------------------------------------------------|
| `dir://`    | `Dir`      | a directory that is already unpacked                 |
| `tar://`    | `Tar`      | a local compressed tarball, or `tar://stdin`         |
| `https://`  | `HTTPSTar` | a gzipped tarball downloaded from a web server       |

`get_build_context(src_context, opts, directory)` picks the handler for the
prefix; `directory` is where archives are unpacked. Every handler is a
`BuildContext` whose `unpack()` returns the directory holding the context:

```python
from containerbuild.buildcontext import BuildOptions, get_build_context

ctx = get_build_context("tar:///tmp/context.tar.gz", BuildOptions(), "/kaniko/buildcontext")
directory = ctx.unpack()
```

- `Dir.unpack()` returns the path after the prefix as it is.
- `Tar.unpack()` creates the target directory and unpacks the archive. With
  `tar://stdin` it reads a gzipped tar stream from standard input (or from
  the `stdin` stream it was given) and refuses to read from a terminal.
- `HTTPSTar.unpack()` downloads the archive to `context.tar.gz` in the
  target directory, unpacks it and removes the downloaded file. Any status
  other than 200 is an error.

`unpack_compressed_tar(tar_path, directory)` unpacks a tarball (any
compression `tarfile` recognises) on its own. Entries that would land
outside the target directory are refused.

An unknown prefix, a bad HTTP status, a failed download or a corrupt
archive raises `BuildContextError`.

## Executor options (`containerbuild.executor_options`)

`build_parser()` returns the executor's `argparse` parser and
`parse_args(argv)` turns a command line into a `KanikoOptions` dataclass
with the builder's flags and defaults: `--dockerfile/-f` (`Dockerfile`),
`--context/-c` (`/workspace/`), `--destination/-d`, `--build-arg`,
`--cache`, `--cache-repo`, `--cache-dir` (`/cache`), `--cache-ttl` (two
weeks, written like `6h` or `1h30m`), `--no-push`, `--kaniko-dir`,
`--registry-mirror`, `--registry-certificate key=value`, `--git
branch=...,single-branch=...,recurse-submodules=...` and the rest. Boolean
flags take an optional value (`--cache`, `--cache=false`). The deprecated
`--snapshotMode`, `--customPlatform`, `--tarPath` and `--whitelist-var-run`
are still accepted; a positional `version` sets `command` to `"version"`.

Helpers:

- `check_no_deprecated_flags(opts)` copies deprecated values to their
  replacements and logs a warning.
- `cache_flags_valid(opts)` raises `OptionsError` when `--cache` and
  `--no-push` are used without `--cache-repo`.
- `resolve_environment_build_args(arguments, resolver)` gives each build
  arg without `=` the value `resolver` returns for it, in place.
- `is_url(path)` and `should_skip(path)` tell URLs, empty and absolute
  paths apart from paths that still need resolving.
- `version_text(version)` returns the line the `version` command prints.

## Preparing a build (`containerbuild.executor`)

`pre_run(opts, ...)` runs the checks that come before a build: it applies
deprecated flags, takes a mirror from `KANIKO_REGISTRY_MIRROR`, defaults
and checks the platform, moves the working directory when `--kaniko-dir`
(or `KANIKO_DIR`) differs from `/kaniko` (`check_kaniko_dir`), fills in
build args from the environment, insists on `--destination` unless
`--no-push`, unpacks the source context (`resolve_source_context`, with an
optional sub path), makes the Dockerfile path absolute and copies it with
its `.dockerignore` to the target path (`resolve_dockerfile_path`,
`copy_dockerfile`). It returns the paths to leave out of snapshots
(`ignore_paths`: `/var/run` unless `--ignore-var-run=false`, plus every
`--ignore-path`). Failures raise `ExecutorError`.

`resolve_relative_paths(opts)` makes the path options absolute, and
`exit_code_for(err)` returns the status of a failed command found in an
error's chain of causes, or 1.

## Cache warmer (`containerbuild.warmer`)

`parse_args(argv)` parses the warmer's flags (`--image/-i`,
`--cache-dir/-c`, `--force/-f`, `--cache-ttl`, `--dockerfile/-d`,
`--build-arg`, `--customPlatform`, registry flags) into `WarmerOptions`,
defaulting and checking the platform. `pre_run(opts)` requires at least
one image or a Dockerfile and makes a local Dockerfile path absolute
(`validate_dockerfile_path`). `ensure_cache_dir(opts)` creates the cache
directory. Problems raise `WarmerError`.

## Integration helpers (`containerbuild.integration`)

- `run_command_without_test(cmd)` runs a command and returns its combined
  output; `run_command(cmd)` returns standard output and logs the details
  when it fails. Both raise `CommandError` (with `returncode`, `output`,
  `stderr`) on a non-zero exit.
- `run_on_interrupt(f)` installs a SIGINT handler that runs `f` and exits
  with status 1; it returns the previous handler.
- `create_integration_tarball(directory=None)` writes a directory (by
  default the working directory) to a gzipped tarball in a new temporary
  directory and returns its path.
- `IntegrationTestConfig` holds shared settings;
  `is_gcr_repository()` tells whether the image repository is under
  `gcr.io/`.

## Release notes

List the pull requests merged since the latest published release, in
changelog Markdown:

```
containerbuild-release-notes
```

If you hit the anonymous rate limit of the hosting service's API, pass a
personal access token:

```
containerbuild-release-notes --token token
```

Each line has the form `* <title> [#<number>](<link to the pull request>)`.
From Python, `GitHubClient`, `merged_since(client, org, repo)` and
`format_pull_request(pr, org, repo)` do the same work.

## What this package does not do

- It does not build, snapshot or push images, and it does not pull base
  images into a cache. It parses and checks the options for those steps
  and prepares the context and Dockerfile, but it has no command that
  runs a build or warms a cache.
- Build contexts from `gs://`, `s3://` and `git://` are recognised but not
  supported: `get_build_context` raises `BuildContextError` for them, and
  contexts on Azure Blob Storage are not handled.
- It does not upload benchmark files or talk to cloud storage.