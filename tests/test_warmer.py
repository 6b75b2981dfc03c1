import os
from datetime import timedelta

import pytest

from containerbuild import warmer
from containerbuild.warmer import WarmerError, WarmerOptions


def test_parse_defaults():
    opts = warmer.parse_args(["-i", "busybox"])
    assert opts.cache_dir == "/cache"
    assert opts.cache_ttl == timedelta(hours=336)
    assert opts.force is False
    assert opts.images == ["busybox"]
    assert opts.dockerfile_path == ""
    assert "/" in opts.custom_platform


def test_parse_repeated_images_and_options():
    opts = warmer.parse_args([
        "-i", "busybox", "--image", "alpine", "-c", "/tmp/c", "-f",
        "--cache-ttl", "6h", "--registry-mirror", "mirror.example.com",
        "--registry-certificate", "reg.example.com=/certs/ca.pem",
        "--build-arg", "A=1", "-d", "Dockerfile",
    ])
    assert opts.images == ["busybox", "alpine"]
    assert opts.cache_dir == "/tmp/c"
    assert opts.force is True
    assert opts.cache_ttl == timedelta(hours=6)
    assert opts.registry_mirrors == ["mirror.example.com"]
    assert opts.registries_certificates == {"reg.example.com": "/certs/ca.pem"}
    assert opts.build_args == ["A=1"]
    assert opts.dockerfile_path == "Dockerfile"


def test_parse_keeps_given_platform():
    opts = warmer.parse_args(["--customPlatform", "linux/arm64"])
    assert opts.custom_platform == "linux/arm64"


def test_parse_rejects_invalid_platform():
    with pytest.raises(WarmerError):
        warmer.parse_args(["--customPlatform", "a/b/c/d"])


@pytest.mark.parametrize(
    "path,expected",
    [
        ("http://test", True),
        ("https://test", True),
        ("", False),
        ("/tmp/test", False),
        (".././test", False),
    ],
)
def test_is_url(path, expected):
    assert warmer.is_url(path) is expected


def test_pre_run_requires_image_or_dockerfile():
    with pytest.raises(WarmerError, match="at least one image"):
        warmer.pre_run(WarmerOptions())


def test_pre_run_with_images_only_leaves_options():
    opts = WarmerOptions(images=["busybox"])
    warmer.pre_run(opts)
    assert opts.dockerfile_path == ""
    assert opts.images == ["busybox"]


def test_pre_run_missing_dockerfile(tmp_path):
    opts = WarmerOptions(dockerfile_path=str(tmp_path / "missing"))
    with pytest.raises(WarmerError, match="error validating dockerfile path"):
        warmer.pre_run(opts)


def test_validate_dockerfile_path_makes_absolute(tmp_path, monkeypatch):
    (tmp_path / "Dockerfile").write_text("FROM scratch\n")
    monkeypatch.chdir(tmp_path)
    opts = WarmerOptions(dockerfile_path="Dockerfile")
    warmer.validate_dockerfile_path(opts)
    assert opts.dockerfile_path == os.path.join(os.getcwd(), "Dockerfile")
    assert os.path.isabs(opts.dockerfile_path)


def test_validate_dockerfile_path_keeps_url():
    opts = WarmerOptions(dockerfile_path="https://example.com/Dockerfile")
    warmer.validate_dockerfile_path(opts)
    assert opts.dockerfile_path == "https://example.com/Dockerfile"


def test_ensure_cache_dir_creates(tmp_path):
    target = tmp_path / "a" / "b"
    warmer.ensure_cache_dir(WarmerOptions(cache_dir=str(target)))
    assert target.is_dir()


def test_ensure_cache_dir_failure(tmp_path):
    blocker = tmp_path / "file"
    blocker.write_text("x")
    with pytest.raises(WarmerError, match="Failed to create cache directory"):
        warmer.ensure_cache_dir(WarmerOptions(cache_dir=str(blocker / "sub")))