import io
import tarfile
from pathlib import Path

import pytest

from netharness.artifacts.distributor import (
    ArtifactDistributor,
    ArtifactSource,
    DeployMethod,
    ResolvedArtifacts,
    read_release_version,
)
from netharness.errors import ArtifactError


def _tarball(path: Path, files: dict) -> Path:
    with tarfile.open(path, "w:bz2") as tar:
        for name, content in files.items():
            data = content.encode()
            info = tarfile.TarInfo(name)
            info.size = len(data)
            tar.addfile(info, io.BytesIO(data))
    return path


# ----------------- source validation -----------------

def test_source_kinds(tmp_path: Path):
    tb = _tarball(tmp_path / "r.tar.bz2", {"solana-release/bin/x": "x"})
    assert ArtifactSource().method is DeployMethod.LOCAL
    assert ArtifactSource(tarball=tb).method is DeployMethod.TAR
    assert ArtifactSource(channel="beta").method is DeployMethod.TAR
    assert ArtifactSource(channel="v0.12.3").channel == "v0.12.3"


@pytest.mark.parametrize("channel", ["nightly", "0.12", "v", "edge; rm -rf /"])
def test_invalid_channel(channel):
    with pytest.raises(ArtifactError, match="Invalid release channel"):
        ArtifactSource(channel=channel)


def test_unreadable_tarball(tmp_path: Path):
    with pytest.raises(ArtifactError, match="File not readable"):
        ArtifactSource(tarball=tmp_path / "missing.tar.bz2")


def test_tarball_and_channel_are_exclusive(tmp_path: Path):
    tb = _tarball(tmp_path / "r.tar.bz2", {"a": "a"})
    with pytest.raises(ArtifactError):
        ArtifactSource(tarball=tb, channel="edge")


def test_missing_program_dir(tmp_path: Path):
    with pytest.raises(ArtifactError):
        ArtifactSource(programs=tmp_path / "nope")


# ----------------- resolution -----------------

def test_unpack_reads_version(tmp_path: Path):
    tb = _tarball(tmp_path / "r.tar.bz2", {
        "solana-release/bin/solana-fullnode": "bin",
        "solana-release/version.yml": "channel: edge\nversion: 0.12.3\n",
    })
    root = tmp_path / "work"
    root.mkdir()
    resolved = ArtifactDistributor(root).resolve(ArtifactSource(tarball=tb))
    assert resolved.method is DeployMethod.TAR
    assert resolved.version == "0.12.3"
    assert (resolved.bin_dir / "solana-fullnode").read_text() == "bin"


def test_unpack_without_version_file(tmp_path: Path):
    tb = _tarball(tmp_path / "r.tar.bz2", {"solana-release/bin/x": "x"})
    assert ArtifactDistributor(tmp_path).resolve(ArtifactSource(tarball=tb)).version == "tar-unknown"


def test_unpack_without_bin_is_artifact_error(tmp_path: Path):
    tb = _tarball(tmp_path / "r.tar.bz2", {"solana-release/README": "x"})
    with pytest.raises(ArtifactError, match="solana-release/bin"):
        ArtifactDistributor(tmp_path).resolve(ArtifactSource(tarball=tb))


def test_corrupt_tarball_is_artifact_error(tmp_path: Path):
    tb = tmp_path / "r.tar.bz2"
    tb.write_bytes(b"not a tarball")
    with pytest.raises(ArtifactError):
        ArtifactDistributor(tmp_path).resolve(ArtifactSource(tarball=tb))


class FakeDownload:
    def __init__(self, status, body=b""):
        self.status_code = status
        self.body = body
    def __enter__(self): return self
    def __exit__(self, *a): return False
    def iter_content(self, chunk_size):
        yield self.body


class FakeHttp:
    def __init__(self, response):
        self.response = response
        self.urls = []
    def get(self, url, stream=False, timeout=None):
        self.urls.append(url)
        return self.response


def test_download_channel(tmp_path: Path):
    src = _tarball(tmp_path / "src.tar.bz2", {"solana-release/bin/x": "x"})
    http = FakeHttp(FakeDownload(200, src.read_bytes()))
    work = tmp_path / "work"
    work.mkdir()
    resolved = ArtifactDistributor(work, session=http).resolve(ArtifactSource(channel="stable"))
    assert http.urls == [
        "http://solana-release.s3.amazonaws.com/stable/solana-release-x86_64-unknown-linux-gnu.tar.bz2"
    ]
    assert resolved.bin_dir == work / "solana-release" / "bin"


def test_download_http_error(tmp_path: Path):
    http = FakeHttp(FakeDownload(404))
    with pytest.raises(ArtifactError, match="HTTP 404"):
        ArtifactDistributor(tmp_path, session=http).resolve(ArtifactSource(channel="edge"))


def test_local_build_uses_install_script_and_git_head(tmp_path: Path, monkeypatch):
    import netharness.artifacts.distributor as mod

    calls = []

    def fake_run_logged(cmd, *, label, cwd=None, **kw):
        calls.append((label, cmd))
        (Path(cmd[1]) / "bin").mkdir(parents=True, exist_ok=True)

    monkeypatch.setattr(mod, "run_logged", fake_run_logged)
    monkeypatch.setattr(mod, "capture", lambda cmd, cwd=None: None)
    programs = tmp_path / "programs"
    programs.mkdir()

    resolved = ArtifactDistributor(tmp_path).resolve(ArtifactSource(features="cuda", programs=programs))

    assert calls[0] == ("build", ["scripts/cargo-install-all.sh", str(tmp_path / "farf"), "cuda"])
    assert calls[1][0] == "build-programs"
    assert resolved.version == "local-unknown"
    assert resolved.method is DeployMethod.LOCAL


def test_failed_build_is_artifact_error(tmp_path: Path, monkeypatch):
    import netharness.artifacts.distributor as mod

    def boom(cmd, **kw):
        raise RuntimeError("build failed (rc=101)")

    monkeypatch.setattr(mod, "run_logged", boom)
    with pytest.raises(ArtifactError, match="rc=101"):
        ArtifactDistributor(tmp_path).resolve(ArtifactSource())


def test_read_release_version_garbage(tmp_path: Path):
    p = tmp_path / "version.yml"
    p.write_text(": : :\n  - [")
    assert read_release_version(p) == "tar-unknown"
    p.write_text("- a list\n")
    assert read_release_version(p) == "tar-unknown"


# ----------------- distribution -----------------

def test_pull_failure_is_artifact_error(fleet, tmp_path: Path):
    host = fleet.host("10.0.0.2")
    host.fail["rsync -rc"] = (5, "@ERROR: Unknown module")
    with pytest.raises(ArtifactError, match="10.0.0.1"):
        ArtifactDistributor(tmp_path).pull(fleet.connect("10.0.0.2"), "10.0.0.1", "netharness")


def test_serve_records_daemon(fleet, tmp_path: Path):
    rec = ArtifactDistributor(tmp_path).serve(fleet.connect("10.0.0.1"), "netharness")
    host = fleet.hosts["10.0.0.1"]
    assert rec["name"] == "rsyncd"
    assert "[netharness]" in host.texts["netharness/rsyncd.conf"]
    assert "rsync --daemon --no-detach --config=rsyncd.conf" in host.commands[-1]


def test_push_uploads_bin_only(fleet, tmp_path: Path):
    bin_dir = tmp_path / "bin"
    bin_dir.mkdir()
    (bin_dir / "a").write_text("a")
    (bin_dir / "b").write_text("b")
    n = ArtifactDistributor(tmp_path).push(
        fleet.connect("10.0.0.1"), ResolvedArtifacts(DeployMethod.LOCAL, bin_dir, "v"), "netharness"
    )
    assert n == 2
    assert fleet.hosts["10.0.0.1"].uploads == [(str(bin_dir), "netharness/bin")]


def test_tarball_escaping_work_dir_is_artifact_error(tmp_path: Path):
    tb = _tarball(tmp_path / "r.tar.bz2", {"solana-release/bin/x": "x", "../escaped": "boom"})
    work = tmp_path / "work"
    work.mkdir()
    with pytest.raises(ArtifactError):
        ArtifactDistributor(work).resolve(ArtifactSource(tarball=tb))
    assert not (tmp_path / "escaped").exists()
