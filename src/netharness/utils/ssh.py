# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

from __future__ import annotations

from pathlib import Path
from typing import Optional

import paramiko

from ..config.models import SshSettings
from .ssh_runner import SSHRunner


def _load_pkey(path: str) -> Optional[paramiko.PKey]:
    for key_cls in (
        paramiko.Ed25519Key,
        paramiko.RSAKey,
        paramiko.ECDSAKey,
    ):
        try:
            return key_cls.from_private_key_file(path)
        except paramiko.SSHException:
            continue
    return None


def open_ssh(
    address: str,
    settings: SshSettings,
    *,
    log_file: Optional[Path] = None,
) -> SSHRunner:
    client = paramiko.SSHClient()
    client.set_missing_host_key_policy(paramiko.AutoAddPolicy())

    pkey = None
    if settings.pkey_path:
        pkey = _load_pkey(str(Path(settings.pkey_path).expanduser()))

    client.connect(
        hostname=address,
        port=settings.port,
        username=settings.username,
        password=settings.password if not pkey else None,
        pkey=pkey,
        timeout=settings.connect_timeout,
        allow_agent=True,
        look_for_keys=True,
    )

    return SSHRunner(
        client,
        address=address,
        cmd_timeout=settings.cmd_timeout,
        log_file=log_file,
    )
