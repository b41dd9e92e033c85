from __future__ import annotations

import asyncio
import json
from dataclasses import dataclass
from pathlib import Path
from typing import Any, List, Optional, Protocol, Sequence, Tuple

from solders.keypair import Keypair
from solders.pubkey import Pubkey

from .candy_machine import (
    ConfigSettings,
    Creator,
    add_config_lines_ix,
    config_account_size,
    initialize_candy_machine_ix,
    initialize_config_ixs,
)
from .errors import BatchUploadError, ConfigurationError
from .project_constants import (
    CONFIG_LINES_PER_BATCH,
    MAX_CREATOR_LIMIT,
    MAX_SYMBOL_LENGTH,
    URI_ID_PLACEHOLDER,
)
from .run_log import RunLog


class TransactionSender(Protocol):
    async def send_transaction(
        self, instructions: Sequence[Any], payer: Keypair, signers: Sequence[Keypair] = ...
    ) -> str:
        ...


class ConfigCreatorRpc(TransactionSender, Protocol):
    async def get_minimum_balance_for_rent_exemption(self, size: int) -> int:
        ...


@dataclass(frozen=True)
class MetadataItem:
    name: str
    path: str


@dataclass(frozen=True)
class UploadBatch:
    index: int
    offset: int
    items: Tuple[MetadataItem, ...]


@dataclass(frozen=True)
class BatchResult:
    index: int
    offset: int
    count: int
    signature: Optional[str] = None
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error is None


def _sort_key(path: Path) -> Tuple[int, int, str]:
    # 2.json before 10.json; non-numeric names after, alphabetically
    if path.stem.isdigit():
        return 0, int(path.stem), ""
    return 1, 0, path.stem


def load_metadata_items(assets_dir: str | Path) -> List[MetadataItem]:
    root = Path(assets_dir)
    if not root.is_dir():
        raise ConfigurationError(f"Assets directory not found: {root}")
    items: List[MetadataItem] = []
    for path in sorted(root.glob("*.json"), key=_sort_key):
        with open(path, "r", encoding="utf-8") as f:
            meta = json.load(f)
        if not meta.get("name"):
            raise ConfigurationError(f"{path}: metadata has no 'name'")
        items.append(MetadataItem(name=meta["name"], path=str(path)))
    if not items:
        raise ConfigurationError(f"No NFT metadata (.json) found in {root}")
    return items


def make_batches(
    items: Sequence[MetadataItem], size: int = CONFIG_LINES_PER_BATCH
) -> List[UploadBatch]:
    return [
        UploadBatch(index=i, offset=start, items=tuple(items[start : start + size]))
        for i, start in enumerate(range(0, len(items), size))
    ]


def config_lines(batch: UploadBatch, uri_template: str) -> List[Tuple[str, str]]:
    return [
        (item.name, uri_template.replace(URI_ID_PLACEHOLDER, str(batch.offset + pos)))
        for pos, item in enumerate(batch.items)
    ]


async def _upload_batch(
    rpc: TransactionSender,
    payer: Keypair,
    config: Pubkey,
    batch: UploadBatch,
    uri_template: str,
    log: RunLog,
) -> BatchResult:
    count = len(batch.items)
    log.info("Add config lines: %d ~ %d...", batch.offset, batch.offset + count)
    ix = add_config_lines_ix(
        config, payer.pubkey(), batch.offset, config_lines(batch, uri_template)
    )
    try:
        signature = await rpc.send_transaction([ix], payer)
    except Exception as e:
        err = BatchUploadError(batch.offset, count, e)
        log.err("[UPLOAD] %s", err)
        return BatchResult(batch.index, batch.offset, count, error=str(err))
    log.tx(signature)
    return BatchResult(batch.index, batch.offset, count, signature=signature)


async def upload_config_lines(
    rpc: TransactionSender,
    payer: Keypair,
    config: Pubkey,
    items: Sequence[MetadataItem],
    uri_template: str,
    log: RunLog,
) -> List[BatchResult]:
    """
    Uploads items as config lines, one transaction per batch of 10.
    Batches are dispatched in offset order; a failed batch is recorded and
    does not stop the others. Results come back in offset order.
    """
    batches = make_batches(items)
    log.info("%d NFTs, %d batches", len(items), len(batches))
    results = await asyncio.gather(
        *(_upload_batch(rpc, payer, config, b, uri_template, log) for b in batches)
    )
    failed = sum(1 for r in results if not r.ok)
    log.info("Upload done: %d batches ok, %d failed", len(results) - failed, failed)
    return list(results)


async def initialize_candy_machine(
    rpc: TransactionSender,
    payer: Keypair,
    config: Pubkey,
    price_lamports: int,
    items_available: int,
    go_live_date: Optional[int] = None,
) -> str:
    ix = initialize_candy_machine_ix(
        config, payer.pubkey(), price_lamports, items_available, go_live_date
    )
    return await rpc.send_transaction([ix], payer)


def load_collection_settings(items: Sequence[MetadataItem]) -> ConfigSettings:
    """
    Collection-wide config values, taken from the first metadata file:
    ``symbol``, ``seller_fee_basis_points`` and ``properties.creators``.
    """
    if not items:
        raise ConfigurationError("No NFT metadata to read collection settings from")
    path = items[0].path
    with open(path, "r", encoding="utf-8") as f:
        meta = json.load(f)

    symbol = meta.get("symbol")
    fee = meta.get("seller_fee_basis_points")
    raw_creators = (meta.get("properties") or {}).get("creators")
    if symbol is None or fee is None or not raw_creators:
        raise ConfigurationError(
            f"{path}: need symbol, seller_fee_basis_points and properties.creators"
        )
    if len(symbol) > MAX_SYMBOL_LENGTH:
        raise ConfigurationError(f"{path}: symbol longer than {MAX_SYMBOL_LENGTH}")
    if not 0 <= int(fee) <= 10_000:
        raise ConfigurationError(f"{path}: seller_fee_basis_points out of range: {fee}")
    if len(raw_creators) > MAX_CREATOR_LIMIT:
        raise ConfigurationError(f"{path}: more than {MAX_CREATOR_LIMIT} creators")

    creators = []
    for c in raw_creators:
        address = str(c.get("address") or "")
        try:
            Pubkey.from_string(address)
        except ValueError:
            raise ConfigurationError(f"{path}: invalid creator address {address!r}") from None
        creators.append(Creator(address=address, share=int(c.get("share", 0))))
    if sum(c.share for c in creators) != 100:
        raise ConfigurationError(f"{path}: creator shares must add up to 100")

    return ConfigSettings(
        max_number_of_lines=len(items),
        symbol=symbol,
        seller_fee_basis_points=int(fee),
        creators=tuple(creators),
    )


async def create_candy_machine_config(
    rpc: ConfigCreatorRpc, payer: Keypair, settings: ConfigSettings
) -> Tuple[Pubkey, str]:
    """Creates a fresh config account sized for the collection. Returns (config, signature)."""
    config = Keypair()
    rent = await rpc.get_minimum_balance_for_rent_exemption(
        config_account_size(settings.max_number_of_lines)
    )
    ixs = initialize_config_ixs(config.pubkey(), payer.pubkey(), settings, rent)
    signature = await rpc.send_transaction(ixs, payer, [config])
    return config.pubkey(), signature
