from __future__ import annotations

import asyncio
import logging
from typing import Any, Iterable, Optional, Protocol, Tuple

import httpx
from solders.pubkey import Pubkey

from .candy_machine import (
    ResolvedContract,
    find_candy_machine_address,
    parse_candy_machine,
    uuid_for,
)
from .errors import DiscoveryError, RpcError
from .project_constants import CANDY_MACHINE_PROGRAM_ID
from .scanner import scan_candidates
from .scrape import fetch_site_texts

log = logging.getLogger("resolve")


class AccountReader(Protocol):
    async def get_account_info(self, address: Any) -> Optional[Tuple[str, bytes]]:
        ...


async def resolve_contract(rpc: AccountReader, address: str) -> ResolvedContract:
    """Fetches and decodes the candy machine behind a config address."""
    try:
        config = Pubkey.from_string(address)
    except ValueError as e:
        raise DiscoveryError(f"{address}: not a public key ({e})") from None

    uuid = uuid_for(address)
    candy_machine, _ = find_candy_machine_address(config, uuid)
    try:
        info = await rpc.get_account_info(candy_machine)
    except (RpcError, httpx.HTTPError) as e:
        raise DiscoveryError(
            f"{address}: cannot read {candy_machine} ({type(e).__name__}: {e})"
        ) from None
    if info is None:
        raise DiscoveryError(f"{address}: no candy machine at {candy_machine}")

    owner, data = info
    if owner != CANDY_MACHINE_PROGRAM_ID:
        raise DiscoveryError(f"{address}: {candy_machine} is owned by {owner}")
    try:
        state = parse_candy_machine(data)
    except ValueError as e:
        raise DiscoveryError(f"{address}: {e}") from None

    return ResolvedContract(
        config=address,
        uuid=uuid,
        candy_machine=str(candy_machine),
        state=state,
    )


async def resolve_candidates(
    rpc: AccountReader, candidates: Iterable[str]
) -> ResolvedContract:
    """
    Checks every candidate concurrently and returns the first one that is a
    live candy machine. Remaining checks are cancelled and their results
    dropped.
    """
    pending = {
        asyncio.create_task(resolve_contract(rpc, c), name=c) for c in candidates
    }
    if not pending:
        raise DiscoveryError("No candidates to resolve")

    total = len(pending)
    try:
        while pending:
            done, pending = await asyncio.wait(
                pending, return_when=asyncio.FIRST_COMPLETED
            )
            for task in done:
                err = task.exception()
                if err is None:
                    return task.result()
                log.debug("Candidate %s rejected: %s", task.get_name(), err)
    finally:
        for task in pending:
            task.cancel()

    raise DiscoveryError(f"None of {total} candidates is a candy machine")


async def discover_from_site(rpc: AccountReader, url: str, timeout_s: float = 30.0) -> ResolvedContract:
    """Scrapes a mint site and resolves the candy machine it mints from."""
    try:
        texts = await fetch_site_texts(url, timeout_s=timeout_s)
    except httpx.HTTPError as e:
        raise DiscoveryError(f"Failed to download mint site {url}: {e}") from None
    candidates = scan_candidates(texts)
    log.info(
        "Found %d data that may be candy machines. Confirming with Solana...",
        len(candidates),
    )
    return await resolve_candidates(rpc, candidates)
