from __future__ import annotations

import asyncio
import base64
from typing import Any, Dict, List, Optional, Sequence, Tuple

import httpx
from solders.hash import Hash
from solders.instruction import Instruction
from solders.keypair import Keypair
from solders.message import Message
from solders.pubkey import Pubkey
from solders.transaction import VersionedTransaction

from .errors import ConfigurationError, RpcError
from .project_constants import CLUSTER_URLS


def cluster_rpc_url(cluster: str) -> str:
    try:
        return CLUSTER_URLS[cluster]
    except KeyError:
        raise ConfigurationError(
            f"Unknown cluster {cluster!r}, expected one of: {', '.join(CLUSTER_URLS)}"
        ) from None


class AsyncRpcClient:
    def __init__(
        self,
        rpc_url: str,
        timeout_s: float = 60.0,
        commitment: str = "confirmed",
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.rpc_url = rpc_url
        self.commitment = commitment
        self.client = httpx.AsyncClient(timeout=timeout_s, transport=transport)

    async def close(self) -> None:
        await self.client.aclose()

    async def __aenter__(self) -> "AsyncRpcClient":
        return self

    async def __aexit__(self, *exc: Any) -> None:
        await self.close()

    async def _post(self, method: str, params: List[Any]) -> Dict[str, Any]:
        payload = {"jsonrpc": "2.0", "id": 1, "method": method, "params": params}
        resp = await self.client.post(self.rpc_url, json=payload)
        resp.raise_for_status()
        data = resp.json()
        if "error" in data:
            raise RpcError(f"RPC error ({method}): {data['error']}")
        return data

    async def get_balance(self, address: Pubkey | str) -> int:
        """Returns the balance in lamports."""
        data = await self._post(
            "getBalance", [str(address), {"commitment": self.commitment}]
        )
        return int(data["result"]["value"])

    async def get_account_info(self, address: Pubkey | str) -> Optional[Tuple[str, bytes]]:
        """
        Returns (owner program id, raw account data) or None if the account
        does not exist.
        """
        data = await self._post(
            "getAccountInfo",
            [str(address), {"encoding": "base64", "commitment": self.commitment}],
        )
        value = data["result"]["value"]
        if value is None:
            return None
        # value['data'] is [base64_str, "base64"]
        return value["owner"], base64.b64decode(value["data"][0])

    async def get_latest_blockhash(self) -> Hash:
        data = await self._post(
            "getLatestBlockhash", [{"commitment": self.commitment}]
        )
        return Hash.from_string(data["result"]["value"]["blockhash"])

    async def get_minimum_balance_for_rent_exemption(self, size: int) -> int:
        data = await self._post("getMinimumBalanceForRentExemption", [size])
        return int(data["result"])

    async def send_transaction(
        self,
        instructions: Sequence[Instruction],
        payer: Keypair,
        signers: Sequence[Keypair] = (),
        confirm: bool = True,
    ) -> str:
        """Signs with payer + signers, submits, and returns the signature."""
        blockhash = await self.get_latest_blockhash()
        message = Message.new_with_blockhash(list(instructions), payer.pubkey(), blockhash)
        tx = VersionedTransaction(message, [payer, *signers])
        encoded = base64.b64encode(bytes(tx)).decode("ascii")
        data = await self._post(
            "sendTransaction",
            [encoded, {"encoding": "base64", "preflightCommitment": self.commitment}],
        )
        signature = data["result"]
        if confirm:
            await self.wait_for_confirmation(signature)
        return signature

    async def wait_for_confirmation(
        self, signature: str, timeout_s: float = 60.0, interval_s: float = 1.0
    ) -> None:
        waited = 0.0
        while waited < timeout_s:
            data = await self._post("getSignatureStatuses", [[signature]])
            status = data["result"]["value"][0]
            if status is not None:
                if status.get("err") is not None:
                    raise RpcError(f"Transaction {signature} failed: {status['err']}")
                if status.get("confirmationStatus") in ("confirmed", "finalized"):
                    return
            await asyncio.sleep(interval_s)
            waited += interval_s
        raise RpcError(f"Transaction {signature} not confirmed after {timeout_s}s")
