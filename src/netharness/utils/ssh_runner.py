# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/netharness/utils/ssh_runner.py

from __future__ import annotations

import json
import posixpath
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Mapping, Optional

import paramiko

from ..errors import HarnessError


class SSHCommandError(HarnessError):
    def __init__(self, cmd: str, rc: int, stderr: str):
        super().__init__(f"remote command failed (rc={rc}): {cmd}\n{stderr.strip()}")
        self.cmd = cmd
        self.rc = rc
        self.stderr = stderr


def shq(v: str) -> str:
    """Single-quote for bash."""
    return "'" + v.replace("'", "'\"'\"'") + "'"


def supervised_launch(name: str, command: str, log_path: str, *, settle_s: float = 0.5) -> str:
    """
    Shell snippet that forks `command` into its own process group, confirms
    it is still alive after `settle_s`, records {name, pid, pgid} under
    supervised/<name>.json and prints that record. Runs from the install root.
    Exits 3 when the process is gone before confirmation.
    """
    return (
        f"mkdir -p supervised logs; "
        f"setsid {command} > {log_path} 2>&1 < /dev/null & "
        f"pid=$!; sleep {settle_s}; kill -0 $pid || exit 3; "
        "pgid=$(ps -o pgid= $pid | tr -d '[:space:]'); "
        f"printf '{{\"name\": \"{name}\", \"pid\": %s, \"pgid\": %s}}\\n' $pid ${{pgid:-$pid}} "
        f"| tee supervised/{name}.json"
    )


class SSHRunner:
    def __init__(
        self,
        client: paramiko.SSHClient,
        *,
        address: str = "unknown",
        cmd_timeout: Optional[float] = None,
        log_file: Optional[Path] = None,
    ):
        self.client = client
        self.address = address
        self.cmd_timeout = cmd_timeout
        self.log_file = log_file

    def _log(self, text: str) -> None:
        if self.log_file is None:
            return
        with open(self.log_file, "a", encoding="utf-8") as f:
            f.write(text)

    def run(
        self,
        cmd: str,
        *,
        env: Optional[Mapping[str, str]] = None,
        timeout: Optional[float] = None,
    ) -> tuple[int, str, str]:
        # exported so every command in a chain, and anything it forks, sees env
        prefix = "".join(f"export {k}={shq(str(v))}; " for k, v in (env or {}).items())
        final = f"bash -lc {shq(prefix + cmd)}"

        ts = datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")
        self._log(f"\n[{ts}] ({self.address}) $ {final}\n")

        stdin, stdout, stderr = self.client.exec_command(final, timeout=timeout or self.cmd_timeout)
        out = stdout.read().decode("utf-8", "replace")
        err = stderr.read().decode("utf-8", "replace")
        rc = stdout.channel.recv_exit_status()

        if out.strip():
            self._log(f"({self.address}) [stdout]\n{out}\n")
        if err.strip():
            self._log(f"({self.address}) [stderr]\n{err}\n")
        self._log(f"({self.address}) [exit {rc}]\n")
        return rc, out, err

    def check(self, cmd: str, **kw) -> str:
        rc, out, err = self.run(cmd, **kw)
        if rc != 0:
            raise SSHCommandError(cmd, rc, err)
        return out

    def run_json(self, cmd: str, **kw) -> Any:
        """
        Run a command whose last stdout line is a JSON document and return it
        decoded. Anything printed before that line is treated as noise.
        """
        out = self.check(cmd, **kw)
        lines = [ln for ln in out.splitlines() if ln.strip()]
        if not lines:
            raise SSHCommandError(cmd, 0, "expected a JSON result, got no output")
        try:
            return json.loads(lines[-1])
        except json.JSONDecodeError as exc:
            raise SSHCommandError(cmd, 0, f"undecodable result {lines[-1]!r}: {exc}") from exc

    def put_text(self, content: str, remote_path: str) -> None:
        sftp = self.client.open_sftp()
        try:
            with sftp.open(remote_path, "w") as f:
                f.write(content)
        finally:
            sftp.close()

    def put_dir(self, local_dir: Path, remote_dir: str) -> int:
        """
        Recursively upload a directory using SFTP. Returns the number of files sent.
        """
        sftp = self.client.open_sftp()
        try:
            count = self._put_dir_recursive(sftp, Path(local_dir), remote_dir)
        finally:
            sftp.close()
        self._log(f"({self.address}) uploaded {count} files: {local_dir} -> {remote_dir}\n")
        return count

    def _put_dir_recursive(self, sftp, local: Path, remote: str) -> int:
        try:
            sftp.mkdir(remote)
        except IOError:
            pass  # already exists

        count = 0
        for item in sorted(local.iterdir()):
            rpath = posixpath.join(remote, item.name)
            if item.is_dir():
                count += self._put_dir_recursive(sftp, item, rpath)
            else:
                sftp.put(str(item), rpath)
                count += 1
        return count

    def fetch_file(self, remote_path: str, local_path: str | Path) -> None:
        sftp = self.client.open_sftp()
        try:
            sftp.get(remote_path, str(local_path))
        finally:
            sftp.close()

    def close(self) -> None:
        self.client.close()

    def __enter__(self) -> "SSHRunner":
        return self

    def __exit__(self, *exc) -> None:
        self.close()
