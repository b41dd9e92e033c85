from __future__ import annotations

import asyncio
from typing import Callable, Dict, List, Optional, Tuple

import pytest
from solders.keypair import Keypair
from solders.pubkey import Pubkey

from candy_minter.candy_machine import (
    CANDY_MACHINE_LAYOUT,
    find_candy_machine_address,
    uuid_for,
)
from candy_minter.errors import RpcError
from candy_minter.project_constants import (
    CANDY_MACHINE_ACCOUNT_DISCRIMINATOR,
    CANDY_MACHINE_PROGRAM_ID,
    LAMPORTS_PER_SOL,
)
from candy_minter.run_log import RunLog


def new_pubkey() -> Pubkey:
    return Keypair().pubkey()


def candy_machine_account(
    config: Pubkey,
    wallet: Pubkey,
    price: int = LAMPORTS_PER_SOL // 2,
    items_available: int = 100,
    items_redeemed: int = 3,
) -> bytes:
    uuid = uuid_for(str(config))
    _, bump = find_candy_machine_address(config, uuid)
    return CANDY_MACHINE_ACCOUNT_DISCRIMINATOR + CANDY_MACHINE_LAYOUT.build(
        {
            "authority": new_pubkey(),
            "wallet": wallet,
            "token_mint": None,
            "config": config,
            "data": {
                "uuid": uuid,
                "price": price,
                "items_available": items_available,
                "go_live_date": None,
            },
            "items_redeemed": items_redeemed,
            "bump": bump,
        }
    )


class FakeChain:
    """In-memory stand-in for AsyncRpcClient."""

    def __init__(
        self,
        balances: Optional[List[int]] = None,
        fail_send: Optional[Callable[[list], bool]] = None,
    ) -> None:
        self.accounts: Dict[str, Tuple[str, bytes]] = {}
        self.balances = list(balances or [10 * LAMPORTS_PER_SOL])
        self.balance_calls = 0
        self.fail_send = fail_send
        self.sent: List[list] = []
        self.signers: List[list] = []

    def add_candy_machine(self, config: Pubkey, owner: str = CANDY_MACHINE_PROGRAM_ID) -> Pubkey:
        wallet = new_pubkey()
        address, _ = find_candy_machine_address(config, uuid_for(str(config)))
        self.accounts[str(address)] = (owner, candy_machine_account(config, wallet))
        return address

    async def get_account_info(self, address):
        await asyncio.sleep(0)
        return self.accounts.get(str(address))

    async def get_balance(self, address) -> int:
        await asyncio.sleep(0)
        idx = min(self.balance_calls, len(self.balances) - 1)
        self.balance_calls += 1
        return self.balances[idx]

    async def close(self) -> None:
        return None

    async def get_minimum_balance_for_rent_exemption(self, size: int) -> int:
        return 1_461_600

    async def send_transaction(self, instructions, payer, signers=()) -> str:
        await asyncio.sleep(0)
        if self.fail_send is not None and self.fail_send(list(instructions)):
            raise RpcError("Transaction simulation failed")
        self.sent.append(list(instructions))
        self.signers.append(list(signers))
        return f"sig{len(self.sent)}"


@pytest.fixture
def run_log(tmp_path):
    with RunLog(tmp_path / "logs", "test") as rl:
        yield rl
