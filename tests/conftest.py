import json
import re
import shutil
import subprocess
import threading
from pathlib import Path

import pytest

from netharness.artifacts.distributor import ArtifactDistributor, DeployMethod, ResolvedArtifacts
from netharness.config.models import NetConfig
from netharness.utils.ssh_runner import SSHCommandError

# ----------------- Fake remote hosts -----------------

class FakeHost:
    """Answers the shell snippets the harness sends, well enough to track launches."""

    def __init__(self, address, fleet):
        self.address = address
        self.fleet = fleet
        self.commands = []
        self.envs = []
        self.uploads = []
        self.texts = {}
        self.fail = {}          # substring -> (rc, stderr)
        self.supervised = []
        self._pid = 1000

    def respond(self, cmd, env):
        self.commands.append(cmd)
        self.envs.append(env)
        self.fleet.record(self.address, cmd)
        for needle, (rc, err) in self.fail.items():
            if needle in cmd:
                return rc, "", err
        if "setsid" in cmd:
            self._pid += 1
            name = re.findall(r"supervised/([\w-]+)\.json", cmd)[-1]
            rec = {"name": name, "pid": self._pid, "pgid": self._pid}
            self.supervised.append(rec)
            return 0, "noise\n" + json.dumps(rec) + "\n", ""
        if cmd.startswith("cat ") and "supervised" in cmd:
            return 0, "".join(json.dumps(r) + "\n" for r in self.supervised), ""
        if cmd.startswith("rm -f") and "supervised" in cmd:
            self.supervised = []
        return 0, "", ""


class FakeRunner:
    def __init__(self, host):
        self.host = host
        self.address = host.address
        self.closed = False

    def run(self, cmd, *, env=None, timeout=None):
        return self.host.respond(cmd, env)

    def check(self, cmd, **kw):
        rc, out, err = self.run(cmd, **kw)
        if rc != 0:
            raise SSHCommandError(cmd, rc, err)
        return out

    def run_json(self, cmd, **kw):
        out = self.check(cmd, **kw)
        return json.loads([ln for ln in out.splitlines() if ln.strip()][-1])

    def put_text(self, content, remote_path):
        self.host.texts[remote_path] = content

    def put_dir(self, local_dir, remote_dir):
        self.host.uploads.append((str(local_dir), remote_dir))
        return len(list(Path(local_dir).iterdir()))

    def fetch_file(self, remote_path, local_path):
        if "missing" in self.host.fail:
            raise IOError(f"{remote_path}: no such file")
        Path(local_path).write_text(f"{self.address}:{remote_path}\n")

    def close(self):
        self.closed = True

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.close()


class FakeFleet:
    def __init__(self):
        self.hosts = {}
        self.unreachable = set()
        self.trace = []
        self._lock = threading.Lock()

    def host(self, address):
        with self._lock:
            if address not in self.hosts:
                self.hosts[address] = FakeHost(address, self)
            return self.hosts[address]

    def record(self, address, cmd):
        with self._lock:
            self.trace.append((address, cmd))

    def connect(self, address, log_file=None):
        if address in self.unreachable:
            self.record(address, "<unreachable>")
            raise OSError(f"{address}: connection refused")
        return FakeRunner(self.host(address))

    def touched(self):
        return [a for a, c in self.trace if c != "<unreachable>"]


class StubDistributor(ArtifactDistributor):
    def __init__(self, root, artifacts):
        super().__init__(root)
        self.artifacts = artifacts
        self.error = None
        self.resolve_calls = 0

    def resolve(self, source):
        self.resolve_calls += 1
        if self.error is not None:
            raise self.error
        return self.artifacts


class Capture:
    def __init__(self): self.events = []
    def notify(self, ev): self.events.append(ev)
    def of(self, kind): return [e for e in self.events if isinstance(e, kind)]


# ----------------- Fixtures -----------------

@pytest.fixture
def fleet():
    return FakeFleet()


@pytest.fixture
def capture():
    return Capture()


@pytest.fixture
def make_cfg():
    def _make(**kw):
        kw.setdefault("fullnodes", ["10.0.0.1", "10.0.0.2", "10.0.0.3"])
        kw.setdefault("throttle", {"stagger_pause_s": 0})
        return NetConfig.model_validate(kw)
    return _make


@pytest.fixture
def artifacts(tmp_path: Path):
    bin_dir = tmp_path / "release" / "bin"
    bin_dir.mkdir(parents=True)
    (bin_dir / "solana-fullnode").write_text("#!/bin/sh\n")
    return ResolvedArtifacts(DeployMethod.TAR, bin_dir, "0.12.3")


@pytest.fixture
def distributor(tmp_path: Path, artifacts):
    return StubDistributor(tmp_path, artifacts)


# ----------------- Local shell stand-in for paramiko -----------------

class _LocalChannel:
    def __init__(self, rc): self._rc = rc
    def recv_exit_status(self): return self._rc


class _LocalStream:
    def __init__(self, data, rc=0):
        self._data = data
        self.channel = _LocalChannel(rc)
    def read(self): return self._data


class LocalShellClient:
    """Runs exec_command through the local shell, so real quoting and env rules apply."""

    def __init__(self, cwd):
        self.cwd = Path(cwd)
        self.commands = []

    def exec_command(self, cmd, timeout=None):
        self.commands.append(cmd)
        proc = subprocess.run(cmd, shell=True, cwd=self.cwd, capture_output=True, timeout=timeout or 30)
        return None, _LocalStream(proc.stdout, proc.returncode), _LocalStream(proc.stderr)

    def close(self):
        pass


@pytest.fixture
def local_shell(tmp_path: Path):
    if shutil.which("bash") is None:
        pytest.skip("bash not available")
    return LocalShellClient(tmp_path)
