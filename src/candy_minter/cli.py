from __future__ import annotations

import argparse
import asyncio
import logging
import signal
from typing import Dict, List, Tuple

import httpx
from solders.pubkey import Pubkey

from .candy_machine import ResolvedContract
from .config import (
    CandyMachineRecord,
    ChainContext,
    RunConfig,
    Settings,
    connect,
    load_candy_machine_record,
    load_candy_machine_records,
    load_run_config,
    record_path,
    save_candy_machine_record,
)
from .errors import ConfigurationError, DiscoveryError, RpcError
from .minter import MintAttempt, MintLoopDriver
from .project_constants import CANDY_MACHINE_SAVE_DIR, CLUSTER_URLS, LAMPORTS_PER_SOL
from .resolver import discover_from_site, resolve_contract
from .rpc import AsyncRpcClient
from .run_log import RunLog
from .scrape import url_to_dir
from .uploader import (
    create_candy_machine_config,
    initialize_candy_machine,
    load_collection_settings,
    load_metadata_items,
    upload_config_lines,
)


def setup_logging(verbose: bool) -> None:
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(level=level, format="%(levelname)s: %(message)s")


def _parse_pubkey(value: str) -> Pubkey:
    try:
        return Pubkey.from_string(value)
    except ValueError:
        raise ConfigurationError(f"Not a valid address: {value}") from None


def _install_stop_handler(drivers: List[MintLoopDriver]) -> None:
    # Ctrl-C stops dispatching but still writes the reports.
    def stop_all() -> None:
        for driver in drivers:
            driver.stop.set()

    try:
        asyncio.get_running_loop().add_signal_handler(signal.SIGINT, stop_all)
    except (NotImplementedError, RuntimeError):
        pass


async def _ready_contract(
    ctx: ChainContext, cfg: RunConfig, run_log: RunLog, save_dir: str
) -> ResolvedContract:
    address = cfg.candy_machine
    record_file = record_path(url_to_dir(cfg.mint_url), save_dir) if cfg.mint_url else None

    if not address and record_file is not None:
        record = load_candy_machine_record(record_file)
        if record is not None and record.network == cfg.cluster:
            run_log.info("Using saved candy machine %s (%s)", record.config, record_file)
            address = record.config

    if address:
        return await resolve_contract(ctx.rpc, address)

    run_log.info("CandyMachine is not found, try to get it from MintUrl (%s)", cfg.mint_url)
    run_log.info("Downloading mint site resources...")
    contract = await discover_from_site(ctx.rpc, cfg.mint_url)
    run_log.info("Candy machine has been obtained: %s, saving...", contract.config)
    save_candy_machine_record(
        CandyMachineRecord.for_address(contract.config, cfg.cluster), record_file
    )
    return contract


async def _drive(
    ctx: ChainContext,
    cfg: RunConfig,
    contract: ResolvedContract,
    run_log: RunLog,
    drivers: List[MintLoopDriver],
) -> List[MintAttempt]:
    run_log.info(
        "Candy machine %s: price %s sol, %d/%d redeemed",
        contract.config,
        contract.state.price / LAMPORTS_PER_SOL,
        contract.state.items_redeemed,
        contract.state.items_available,
    )
    driver = MintLoopDriver(
        ctx.rpc,
        ctx.payer,
        contract,
        run_log,
        min_balance_sol=cfg.balance_threshold,
        balance_interval_s=cfg.balance_interval,
        concurrency=cfg.concurrency,
    )
    drivers.append(driver)
    attempts = await driver.run(cfg.mint_count)
    run_log.info("Done!")
    print(f"🧾 Wrote results: {run_log.result_path}")
    return attempts


async def _mint(cfg: RunConfig, args: argparse.Namespace) -> List[MintAttempt]:
    settings = Settings.from_env(cfg.cluster, rpc_url_override=args.rpc_url, timeout_s=args.timeout)
    drivers: List[MintLoopDriver] = []
    with RunLog(cfg.logs_dir, cfg.name) as run_log:
        run_log.info("Config Loaded! %s", cfg.describe())
        ctx = connect(cfg.cluster, cfg.wallet_key_path, settings)
        try:
            run_log.info("Connecting to cluster (%s)...", cfg.cluster)
            try:
                contract = await _ready_contract(ctx, cfg, run_log, args.save_dir)
            except DiscoveryError as e:
                run_log.err("[DISCOVERY] %s", e)
                raise
            _install_stop_handler(drivers)
            return await _drive(ctx, cfg, contract, run_log, drivers)
        finally:
            await ctx.rpc.close()


async def _mint_record(
    ctx: ChainContext,
    cfg: RunConfig,
    record: CandyMachineRecord,
    drivers: List[MintLoopDriver],
) -> List[MintAttempt]:
    with RunLog(cfg.logs_dir, f"{cfg.name}_{record.uuid}") as run_log:
        run_log.info("Config Loaded! %s; Candy Machine: %s", cfg.describe(), record.config)
        try:
            contract = await resolve_contract(ctx.rpc, record.config)
        except DiscoveryError as e:
            run_log.err("[DISCOVERY] %s", e)
            return []
        return await _drive(ctx, cfg, contract, run_log, drivers)


async def _mint_records(cfg: RunConfig, args: argparse.Namespace) -> Dict[str, List[MintAttempt]]:
    records = load_candy_machine_records(args.records_dir, cfg.cluster)
    if not records:
        raise ConfigurationError(
            f"No {cfg.cluster} candy machine records found in {args.records_dir}"
        )
    settings = Settings.from_env(cfg.cluster, rpc_url_override=args.rpc_url, timeout_s=args.timeout)
    ctx = connect(cfg.cluster, cfg.wallet_key_path, settings)
    drivers: List[MintLoopDriver] = []
    _install_stop_handler(drivers)
    try:
        results = await asyncio.gather(
            *(_mint_record(ctx, cfg, r, drivers) for r in records)
        )
    finally:
        await ctx.rpc.close()
    return {r.config: attempts for r, attempts in zip(records, results)}


def cmd_mint(args: argparse.Namespace) -> int:
    if args.records_dir:
        cfg = load_run_config(args.config, require_target=False)
        by_machine = asyncio.run(_mint_records(cfg, args))
    else:
        cfg = load_run_config(args.config)
        by_machine = {cfg.candy_machine or cfg.mint_url: asyncio.run(_mint(cfg, args))}

    print("========================================")
    print(f"Task          : {cfg.name}")
    for machine, attempts in by_machine.items():
        ok = sum(1 for a in attempts if a.success)
        print(f"{machine}")
        print(f"  Attempts      : {len(attempts)}")
        print(f"  Minted        : {ok}")
        print(f"  Failed/skipped: {len(attempts) - ok}")
    return 0


async def _scrape(args: argparse.Namespace) -> CandyMachineRecord:
    settings = Settings.from_env(args.cluster, rpc_url_override=args.rpc_url, timeout_s=args.timeout)
    async with AsyncRpcClient(settings.rpc_url, timeout_s=settings.timeout_s) as rpc:
        contract = await discover_from_site(rpc, args.url)
    record = CandyMachineRecord.for_address(contract.config, args.cluster)
    path = save_candy_machine_record(record, record_path(url_to_dir(args.url), args.save_dir))
    print("✔️ Candy machine has been obtained!")
    print(f" - MintSite     : {args.url}")
    print(f" - CandyMachine : {contract.config}")
    print(f" - Price        : {contract.state.price / LAMPORTS_PER_SOL} sol")
    print(f" - Items        : {contract.state.items_redeemed}/{contract.state.items_available}")
    print(f"✔️ Config file saved at {path}")
    return record


def cmd_scrape(args: argparse.Namespace) -> int:
    asyncio.run(_scrape(args))
    return 0


async def _upload(args: argparse.Namespace) -> int:
    config = _parse_pubkey(args.config_address)
    items = load_metadata_items(args.assets_dir)
    settings = Settings.from_env(args.cluster, rpc_url_override=args.rpc_url, timeout_s=args.timeout)
    ctx = connect(args.cluster, args.keypair, settings)
    try:
        with RunLog(args.logs_dir, "upload") as run_log:
            results = await upload_config_lines(
                ctx.rpc, ctx.payer, config, items, args.base_url, run_log
            )
    finally:
        await ctx.rpc.close()

    failed = [r for r in results if not r.ok]
    print(f"{len(items)} NFTs in {len(results)} batches, {len(failed)} failed")
    for r in failed:
        print(f"[ERR] lines {r.offset} ~ {r.offset + r.count}: {r.error}")
    return 1 if failed else 0


def cmd_upload(args: argparse.Namespace) -> int:
    return asyncio.run(_upload(args))


async def _create(args: argparse.Namespace) -> Tuple[str, str]:
    items = load_metadata_items(args.assets_dir)
    config_settings = load_collection_settings(items)
    print(f"{len(items)} NFTs found")
    settings = Settings.from_env(args.cluster, rpc_url_override=args.rpc_url, timeout_s=args.timeout)
    ctx = connect(args.cluster, args.keypair, settings)
    try:
        config, tx = await create_candy_machine_config(ctx.rpc, ctx.payer, config_settings)
    finally:
        await ctx.rpc.close()
    return str(config), tx


def cmd_create(args: argparse.Namespace) -> int:
    config, tx = asyncio.run(_create(args))
    print("🌈 Candy machine config has been created successfully!")
    print(f" >> PublicKey: {config}")
    print(f" >> UUID     : {config[:6]}")
    print(f" >> TX       : {tx}")
    return 0


async def _init(args: argparse.Namespace) -> str:
    config = _parse_pubkey(args.config_address)
    settings = Settings.from_env(args.cluster, rpc_url_override=args.rpc_url, timeout_s=args.timeout)
    ctx = connect(args.cluster, args.keypair, settings)
    try:
        return await initialize_candy_machine(
            ctx.rpc,
            ctx.payer,
            config,
            price_lamports=int(round(args.price * LAMPORTS_PER_SOL)),
            items_available=args.items,
            go_live_date=args.go_live,
        )
    finally:
        await ctx.rpc.close()


def cmd_init(args: argparse.Namespace) -> int:
    if args.items <= 0:
        raise ConfigurationError("--items must be positive")
    if args.price < 0:
        raise ConfigurationError("--price must not be negative")
    tx = asyncio.run(_init(args))
    print("🌈 Candy machine has been initialized successfully!")
    print(f" >> Config: {args.config_address}")
    print(f" >> UUID  : {args.config_address[:6]}")
    print(f" >> TX    : {tx}")
    return 0


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(
        prog="candy-minter",
        description="Solana candy machine setup, discovery and mint automation.",
    )
    p.add_argument("--verbose", action="store_true", help="Enable debug logging.")
    p.add_argument("--rpc-url", default=None, help="Override RPC URL (else env, else cluster).")
    p.add_argument("--timeout", type=float, default=60.0, help="RPC timeout seconds.")
    p.add_argument(
        "--save-dir",
        default=CANDY_MACHINE_SAVE_DIR,
        help="Directory for discovered candy machine files.",
    )

    sub = p.add_subparsers(dest="cmd", required=True)

    m = sub.add_parser("mint", help="Run a mint task from a JSON config file.")
    m.add_argument("--config", required=True, help="Path to the mint task config JSON.")
    m.add_argument(
        "--records-dir",
        default=None,
        help="Mint from every saved candy machine in this directory instead.",
    )
    m.set_defaults(func=cmd_mint)

    s = sub.add_parser("scrape", help="Find the candy machine behind a mint site.")
    s.add_argument("--url", required=True, help="Mint site url (http:// or https://).")
    s.add_argument("--cluster", default="mainnet-beta", choices=sorted(CLUSTER_URLS))
    s.set_defaults(func=cmd_scrape)

    c = sub.add_parser("create", help="Create a candy machine config account for a collection.")
    c.add_argument("--assets-dir", required=True, help='Directory with "1.json", "2.json"...')
    c.add_argument("--cluster", default="devnet", choices=sorted(CLUSTER_URLS))
    c.add_argument("--keypair", required=True, help="Authority wallet key file.")
    c.set_defaults(func=cmd_create)

    u = sub.add_parser("upload", help="Upload NFT metadata as config lines.")
    u.add_argument("--config-address", required=True, help="Candy machine config address.")
    u.add_argument("--assets-dir", required=True, help='Directory with "1.json", "2.json"...')
    u.add_argument(
        "--base-url",
        required=True,
        help='Item uri template, "$id" is replaced with the NFT index.',
    )
    u.add_argument("--cluster", default="devnet", choices=sorted(CLUSTER_URLS))
    u.add_argument("--keypair", required=True, help="Authority wallet key file.")
    u.add_argument("--logs-dir", default="logs", help="Directory for run logs.")
    u.set_defaults(func=cmd_upload)

    i = sub.add_parser("init", help="Initialize a candy machine for a config account.")
    i.add_argument("--config-address", required=True, help="Candy machine config address.")
    i.add_argument("--price", required=True, type=float, help="Mint price in SOL.")
    i.add_argument("--items", required=True, type=int, help="Items available.")
    i.add_argument("--go-live", type=int, default=None, help="Go-live unix timestamp.")
    i.add_argument("--cluster", default="devnet", choices=sorted(CLUSTER_URLS))
    i.add_argument("--keypair", required=True, help="Authority wallet key file.")
    i.set_defaults(func=cmd_init)

    return p


def main() -> None:
    parser = build_parser()
    args = parser.parse_args()
    setup_logging(args.verbose)
    log = logging.getLogger("cli")
    try:
        code = args.func(args)
    except (ConfigurationError, DiscoveryError, RpcError, httpx.HTTPError) as e:
        log.error("%s: %s", type(e).__name__, e)
        code = 1
    raise SystemExit(code)
