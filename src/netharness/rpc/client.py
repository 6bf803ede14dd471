# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/netharness/rpc/client.py

from __future__ import annotations

import itertools
import logging
import time
from typing import Any, Callable, List, Mapping, Optional, Union

import requests

from ..errors import RpcError
from ..gossip.models import ContactInfo

log = logging.getLogger("netharness")

_ids = itertools.count(1)

GossipEntry = Union[ContactInfo, Mapping[str, Any]]


class ControlPlaneClient:
    """
    Synchronous JSON-RPC client bound to one node's client-facing endpoint.

    Every method is a single request. Failures (timeout, connection refused,
    HTTP error, undecodable body, JSON-RPC error object) surface as RpcError;
    nothing is retried here.
    """

    def __init__(
        self,
        endpoint: str,
        *,
        timeout: float = 10.0,
        session: Optional[requests.Session] = None,
    ):
        self.endpoint = endpoint
        self.timeout = timeout
        self.session = session or requests.Session()

    def __repr__(self) -> str:
        return f"ControlPlaneClient({self.endpoint!r})"

    def call(self, method: str, params: Optional[list] = None, *, timeout: Optional[float] = None) -> Any:
        payload = {"jsonrpc": "2.0", "id": next(_ids), "method": method, "params": params or []}
        timeout = self.timeout if timeout is None else timeout
        try:
            resp = self.session.post(self.endpoint, json=payload, timeout=timeout)
        except requests.Timeout as exc:
            raise RpcError(method, self.endpoint, f"timed out after {timeout}s") from exc
        except requests.RequestException as exc:
            raise RpcError(method, self.endpoint, f"request failed: {exc}") from exc

        if resp.status_code != 200:
            raise RpcError(method, self.endpoint, f"HTTP {resp.status_code}")
        try:
            body = resp.json()
        except ValueError as exc:
            raise RpcError(method, self.endpoint, "undecodable response body") from exc
        if not isinstance(body, dict):
            raise RpcError(method, self.endpoint, f"unexpected response {body!r}")

        err = body.get("error")
        if err:
            if isinstance(err, dict):
                raise RpcError(method, self.endpoint, str(err.get("message", err)), code=err.get("code"))
            raise RpcError(method, self.endpoint, str(err))
        if "result" not in body:
            raise RpcError(method, self.endpoint, "response has neither result nor error")
        return body["result"]

    def _ack(self, method: str, params: Optional[list] = None) -> None:
        result = self.call(method, params)
        if result is False:
            raise RpcError(method, self.endpoint, "request rejected by node")

    # ------------------ gossip control ------------------

    def push_gossip_entry(self, entry: GossipEntry) -> None:
        """
        Insert a contact record into the node's gossip table. The record is
        forwarded as-is, so deliberately invalid entries reach the node.
        """
        record = entry.to_dict() if isinstance(entry, ContactInfo) else dict(entry)
        self._ack("pushGossipEntry", [record])

    def refresh_active_set(self) -> None:
        """Ask the node to re-pick its active gossip peers now."""
        self._ack("refreshActiveSet")

    def cluster_nodes(self, *, timeout: Optional[float] = None) -> List[dict]:
        result = self.call("getClusterNodes", timeout=timeout)
        if not isinstance(result, list):
            raise RpcError("getClusterNodes", self.endpoint, f"expected a list, got {type(result).__name__}")
        return result

    # ------------------ queries ------------------

    def get_health(self) -> str:
        return str(self.call("getHealth"))

    def is_healthy(self) -> bool:
        try:
            return self.get_health() == "ok"
        except RpcError:
            return False

    def get_balance(self, pubkey: str) -> int:
        result = self.call("getBalance", [pubkey])
        if isinstance(result, dict):
            result = result.get("value")
        return int(result)

    def get_transaction_count(self) -> int:
        return int(self.call("getTransactionCount"))

    def get_recent_blockhash(self) -> str:
        result = self.call("getRecentBlockhash")
        if isinstance(result, dict):
            result = result.get("blockhash")
        if not result:
            raise RpcError("getRecentBlockhash", self.endpoint, "no blockhash in response")
        return str(result)

    # ------------------ transfers ------------------

    def send_transaction(self, encoded: str) -> str:
        return str(self.call("sendTransaction", [encoded]))

    def get_signature_status(self, signature: str) -> Optional[str]:
        result = self.call("getSignatureStatus", [signature])
        if isinstance(result, dict):
            if result.get("err"):
                return "failed"
            return result.get("confirmationStatus") or "confirmed"
        return result

    def can_spend(self, pubkey: str, amount: int) -> bool:
        return self.get_balance(pubkey) >= amount

    def transfer(self, credential, to: str, amount: int) -> str:
        """Sign a transfer with `credential` and submit it. Returns the signature."""
        blockhash = self.get_recent_blockhash()
        return self.send_transaction(credential.sign_transfer(to, amount, blockhash))

    def confirm_transaction(
        self,
        signature: str,
        *,
        timeout_s: float = 30.0,
        poll_s: float = 0.5,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ) -> bool:
        """
        Wait until `signature` is confirmed or `timeout_s` elapses.

        RpcErrors from individual status queries propagate.
        """
        deadline = clock() + timeout_s
        while True:
            status = self.get_signature_status(signature)
            if status in ("confirmed", "finalized"):
                return True
            if status == "failed":
                return False
            if clock() >= deadline:
                log.warning("transaction %s not confirmed within %ss", signature, timeout_s)
                return False
            sleep(poll_s)
