# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/netharness/artifacts/distributor.py

from __future__ import annotations

import logging
import os
import re
import shutil
import tarfile
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Optional

import requests
import yaml

from ..errors import ArtifactError
from ..utils.shell import capture, run_logged
from ..utils.ssh_runner import SSHRunner, SSHCommandError, supervised_launch

log = logging.getLogger("netharness")

RELEASE_URL = (
    "http://solana-release.s3.amazonaws.com/{channel}/"
    "solana-release-x86_64-unknown-linux-gnu.tar.bz2"
)
RELEASE_CHANNELS = ("edge", "beta", "stable")
_VERSION_TAG = re.compile(r"^v\d+(\.\d+){0,2}\S*$")

ARTIFACT_PORT = 8000
RSYNC_MODULE = "netharness"


class DeployMethod(str, Enum):
    LOCAL = "local"
    TAR = "tar"


def validate_channel(channel: str) -> str:
    if channel in RELEASE_CHANNELS or _VERSION_TAG.match(channel):
        return channel
    raise ArtifactError(f"Invalid release channel: {channel}")


@dataclass(frozen=True)
class ArtifactSource:
    """
    Where the binaries come from.

    tarball  - a release tarball already on disk
    channel  - edge|beta|stable or a vX.Y.Z tag, downloaded
    neither  - build from the local source tree with `features`
    """

    tarball: Optional[Path] = None
    channel: Optional[str] = None
    features: str = ""
    programs: Optional[Path] = None

    def __post_init__(self) -> None:
        if self.tarball is not None and self.channel is not None:
            raise ArtifactError("pass either a tarball or a release channel, not both")
        if self.tarball is not None and not os.access(self.tarball, os.R_OK):
            raise ArtifactError(f"File not readable: {self.tarball}")
        if self.channel is not None:
            validate_channel(self.channel)
        if self.programs is not None and not Path(self.programs).is_dir():
            raise ArtifactError(f"custom program directory not found: {self.programs}")

    @property
    def method(self) -> DeployMethod:
        if self.tarball is not None or self.channel is not None:
            return DeployMethod.TAR
        return DeployMethod.LOCAL


@dataclass(frozen=True)
class ResolvedArtifacts:
    method: DeployMethod
    bin_dir: Path
    version: str


class ArtifactDistributor:
    """
    Resolves deployable binaries on the controlling host and moves them to
    nodes. Only the bootstrap leader receives them from here; every other
    node pulls them from the leader's rsync daemon.
    """

    def __init__(
        self,
        source_root: Path,
        *,
        session: Optional[requests.Session] = None,
        release_url: str = RELEASE_URL,
        download_timeout: float = 600.0,
    ):
        self.source_root = Path(source_root)
        self.session = session or requests.Session()
        self.release_url = release_url
        self.download_timeout = download_timeout

    # ------------------ resolution ------------------

    def resolve(self, source: ArtifactSource) -> ResolvedArtifacts:
        try:
            if source.method is DeployMethod.LOCAL:
                return self._build(source)
            tarball = source.tarball
            if source.channel is not None:
                tarball = self._download(source.channel)
            return self._unpack(tarball)
        except ArtifactError:
            raise
        except (OSError, RuntimeError, tarfile.TarError, requests.RequestException) as exc:
            raise ArtifactError(f"artifact resolution failed: {exc}") from exc

    def _build(self, source: ArtifactSource) -> ResolvedArtifacts:
        out = self.source_root / "farf"
        shutil.rmtree(out, ignore_errors=True)
        run_logged(
            ["scripts/cargo-install-all.sh", str(out), source.features],
            label="build",
            cwd=self.source_root,
        )
        if source.programs is not None:
            run_logged(
                ["scripts/cargo-install-custom-programs.sh", str(out), str(source.programs)],
                label="build-programs",
                cwd=self.source_root,
            )
        bin_dir = out / "bin"
        if not bin_dir.is_dir():
            raise ArtifactError(f"build produced no binaries under {bin_dir}")
        version = capture(["git", "rev-parse", "HEAD"], cwd=self.source_root) or "local-unknown"
        return ResolvedArtifacts(DeployMethod.LOCAL, bin_dir, version)

    def _download(self, channel: str) -> Path:
        url = self.release_url.format(channel=channel)
        dest = self.source_root / "solana-release.tar.bz2"
        dest.unlink(missing_ok=True)
        log.info("[artifacts] downloading %s", url)
        with self.session.get(url, stream=True, timeout=self.download_timeout) as resp:
            if resp.status_code != 200:
                raise ArtifactError(f"download of {url} failed: HTTP {resp.status_code}")
            with dest.open("wb") as f:
                for chunk in resp.iter_content(chunk_size=1 << 20):
                    f.write(chunk)
        return dest

    def _unpack(self, tarball: Path) -> ResolvedArtifacts:
        release_dir = self.source_root / "solana-release"
        shutil.rmtree(release_dir, ignore_errors=True)
        with tarfile.open(tarball, "r:*") as tar:
            tar.extractall(self.source_root, filter="data")
        bin_dir = release_dir / "bin"
        if not bin_dir.is_dir():
            raise ArtifactError(f"{tarball} does not contain solana-release/bin")
        version = read_release_version(release_dir / "version.yml")
        log.info("[artifacts] unpacked %s (version %s)", tarball, version)
        return ResolvedArtifacts(DeployMethod.TAR, bin_dir, version)

    # ------------------ distribution ------------------

    def push(self, runner: SSHRunner, artifacts: ResolvedArtifacts, remote_root: str) -> int:
        """Upload bin/ to the leader. Returns the number of files transferred."""
        remote_bin = f"{remote_root}/bin"
        runner.check(f"mkdir -p {remote_bin}")
        return runner.put_dir(artifacts.bin_dir, remote_bin)

    def serve(self, runner: SSHRunner, remote_root: str) -> dict:
        """
        Start an rsync daemon on the leader exporting its install directory.
        Returns the supervision record ({name, pid, pgid}) of the daemon.
        """
        conf = (
            f"port = {ARTIFACT_PORT}\n"
            f"[{RSYNC_MODULE}]\n"
            "    read only = yes\n"
            "    use chroot = no\n"
        )
        runner.put_text(conf, f"{remote_root}/rsyncd.conf")
        return runner.run_json(
            f"cd {remote_root} || exit 1; "
            'echo "    path = $PWD" >> rsyncd.conf; '
            + supervised_launch("rsyncd", "rsync --daemon --no-detach --config=rsyncd.conf", "logs/rsyncd.log")
        )

    def pull(self, runner: SSHRunner, leader: str, remote_root: str) -> None:
        """Fetch bin/ on a follower from the leader's rsync daemon."""
        try:
            runner.check(
                f"mkdir -p {remote_root}/bin && "
                f"rsync -rc --timeout=60 rsync://{leader}:{ARTIFACT_PORT}/{RSYNC_MODULE}/bin/ {remote_root}/bin/"
            )
        except SSHCommandError as exc:
            raise ArtifactError(f"pull from leader {leader} failed: {exc}") from exc


def read_release_version(path: Path) -> str:
    if not path.is_file():
        return "tar-unknown"
    try:
        data = yaml.safe_load(path.read_text()) or {}
    except yaml.YAMLError:
        return "tar-unknown"
    version = data.get("version") if isinstance(data, dict) else None
    return str(version) if version else "tar-unknown"
