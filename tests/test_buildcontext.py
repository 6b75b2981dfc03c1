import gzip
import hashlib
import io
import tarfile

import pytest
import responses

from containerbuild.buildcontext import (
    CONTEXT_TAR,
    UNKNOWN_PREFIX_MESSAGE,
    BuildContextError,
    BuildOptions,
    Dir,
    HTTPSTar,
    Tar,
    get_build_context,
    unpack_compressed_tar,
)

VALID_DOCKERFILE = "Dockerfile_valid"
INVALID_DOCKERFILE = "Dockerfile_invalid"
NON_EXISTING_DOCKERFILE = "Dockerfile_non_existing"


def _sha(path):
    return hashlib.sha256(path.read_bytes()).hexdigest()


def _tar_gz_bytes(name, content):
    buf = io.BytesIO()
    with tarfile.open(fileobj=buf, mode="w:gz") as archive:
        info = tarfile.TarInfo(name)
        info.size = len(content)
        archive.addfile(info, io.BytesIO(content))
    return buf.getvalue()


@pytest.fixture
def mocked_http():
    with responses.RequestsMock(assert_all_requests_are_fired=False) as rsps:
        yield rsps


@pytest.fixture
def tar_setup(tmp_path):
    src = tmp_path / "test_dir"
    src.mkdir()
    (src / VALID_DOCKERFILE).write_text('FROM debian:10.13\nRUN echo "valid"')
    (src / INVALID_DOCKERFILE).write_text('FROM debian:10.13\nRUN echo "invalid"')
    valid_tar = src / f"{VALID_DOCKERFILE}.tar.gz"
    with tarfile.open(valid_tar, "w:gz") as archive:
        archive.add(src / VALID_DOCKERFILE, arcname=VALID_DOCKERFILE)
    (src / f"{INVALID_DOCKERFILE}.tar.gz").write_bytes(b"")
    unpack_dir = src / "dir_where_to_unpack"
    unpack_dir.mkdir()
    return src, unpack_dir


def test_local_tar_valid(tar_setup):
    src, unpack_dir = tar_setup
    unpack_compressed_tar(str(src / f"{VALID_DOCKERFILE}.tar.gz"), str(unpack_dir))
    assert _sha(src / VALID_DOCKERFILE) == _sha(unpack_dir / VALID_DOCKERFILE)


def test_local_tar_invalid(tar_setup):
    src, unpack_dir = tar_setup
    with pytest.raises(BuildContextError):
        unpack_compressed_tar(
            str(src / f"{INVALID_DOCKERFILE}.tar.gz"), str(unpack_dir)
        )
    assert (src / INVALID_DOCKERFILE).exists()
    assert not (unpack_dir / INVALID_DOCKERFILE).exists()


def test_local_tar_non_existing(tar_setup):
    src, unpack_dir = tar_setup
    with pytest.raises(BuildContextError):
        unpack_compressed_tar(
            str(src / f"{NON_EXISTING_DOCKERFILE}.tar.gz"), str(unpack_dir)
        )
    assert not (src / NON_EXISTING_DOCKERFILE).exists()
    assert not (unpack_dir / NON_EXISTING_DOCKERFILE).exists()


def test_tar_context_unpacks_local_file(tar_setup, tmp_path):
    src, _ = tar_setup
    target = tmp_path / "ctx"
    result = Tar(context=str(src / f"{VALID_DOCKERFILE}.tar.gz"), directory=str(target)).unpack()
    assert result == str(target)
    assert _sha(target / VALID_DOCKERFILE) == _sha(src / VALID_DOCKERFILE)


def test_tar_context_from_stdin(tmp_path):
    data = _tar_gz_bytes("Dockerfile", b"FROM scratch\n")
    target = tmp_path / "ctx"
    result = Tar(context="stdin", directory=str(target), stdin=io.BytesIO(data)).unpack()
    assert result == str(target)
    assert (target / "Dockerfile").read_bytes() == b"FROM scratch\n"


class _Terminal(io.BytesIO):
    def isatty(self):
        return True


def test_tar_context_stdin_terminal_is_rejected(tmp_path):
    with pytest.raises(BuildContextError, match="--interactive, -i"):
        Tar(context="stdin", directory=str(tmp_path / "ctx"), stdin=_Terminal()).unpack()


def test_tar_context_stdin_not_gzip(tmp_path):
    with pytest.raises(BuildContextError):
        Tar(
            context="stdin",
            directory=str(tmp_path / "ctx"),
            stdin=io.BytesIO(b"corrupted message"),
        ).unpack()


def test_unpack_rejects_escaping_entries(tmp_path):
    archive_path = tmp_path / "evil.tar.gz"
    archive_path.write_bytes(_tar_gz_bytes("../escaped", b"x"))
    target = tmp_path / "out"
    target.mkdir()
    with pytest.raises(BuildContextError):
        unpack_compressed_tar(str(archive_path), str(target))
    assert not (tmp_path / "escaped").exists()


def test_https_tar_bad_status(tmp_path, mocked_http):
    url = "http://127.0.0.1/data.tar.gz"
    mocked_http.add(responses.GET, url, body=b"corrupted message", status=400)
    with pytest.raises(BuildContextError, match="HTTPSTar bad status from server"):
        HTTPSTar(context=url, directory=str(tmp_path)).unpack()


def test_https_tar_bad_data(tmp_path, mocked_http):
    url = "http://127.0.0.1/data.tar.gz"
    mocked_http.add(responses.GET, url, body=b"corrupted message", status=200)
    with pytest.raises(BuildContextError):
        HTTPSTar(context=url, directory=str(tmp_path)).unpack()


def test_https_tar_good_data(tmp_path, mocked_http):
    url = "https://files.example.com/data.tar.gz"
    mocked_http.add(
        responses.GET, url, body=_tar_gz_bytes("Dockerfile", b"FROM scratch\n"), status=200
    )
    result = HTTPSTar(context=url, directory=str(tmp_path)).unpack()
    assert result == str(tmp_path)
    assert (tmp_path / "Dockerfile").read_bytes() == b"FROM scratch\n"
    assert not (tmp_path / CONTEXT_TAR).exists()


def test_dir_unpack_returns_context():
    assert Dir(context="/workspace/").unpack() == "/workspace/"


def test_get_build_context_dir(tmp_path):
    ctx = get_build_context("dir:///workspace/", BuildOptions(), str(tmp_path))
    assert ctx == Dir(context="/workspace/")
    assert ctx.unpack() == "/workspace/"


def test_get_build_context_tar(tmp_path):
    ctx = get_build_context("tar://stdin", BuildOptions(), str(tmp_path))
    assert ctx == Tar(context="stdin", directory=str(tmp_path))


def test_get_build_context_https(tmp_path):
    url = "https://files.example.com/ctx.tar.gz"
    ctx = get_build_context(url, BuildOptions(), str(tmp_path))
    assert ctx == HTTPSTar(context=url, directory=str(tmp_path))


@pytest.mark.parametrize("src", ["/workspace", "ftp://host/x", "http://host/x.tar.gz"])
def test_get_build_context_unknown_prefix(src, tmp_path):
    with pytest.raises(BuildContextError) as info:
        get_build_context(src, BuildOptions(), str(tmp_path))
    assert str(info.value) == UNKNOWN_PREFIX_MESSAGE


@pytest.mark.parametrize("src", ["gs://bucket/ctx.tar.gz", "s3://bucket/ctx", "git://host/repo"])
def test_get_build_context_unsupported_prefix(src, tmp_path):
    with pytest.raises(BuildContextError, match="not supported"):
        get_build_context(src, BuildOptions(git_branch="main"), str(tmp_path))


def test_gzip_stdin_roundtrip_of_plain_gzip(tmp_path):
    buf = io.BytesIO()
    with tarfile.open(fileobj=buf, mode="w") as archive:
        info = tarfile.TarInfo("a.txt")
        info.size = 3
        archive.addfile(info, io.BytesIO(b"abc"))
    data = gzip.compress(buf.getvalue())
    Tar(context="stdin", directory=str(tmp_path), stdin=io.BytesIO(data)).unpack()
    assert (tmp_path / "a.txt").read_bytes() == b"abc"