from __future__ import annotations

import json
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Optional

import base58
from dotenv import load_dotenv
from solders.keypair import Keypair

from .errors import ConfigurationError
from .project_constants import (
    ADDRESS_MAX_LEN,
    ADDRESS_MIN_LEN,
    BALANCE_CHECK_INTERVAL_S,
    CANDY_MACHINE_SAVE_DIR,
    CLUSTER_URLS,
    DEFAULT_MINT_CONCURRENCY,
    MIN_BALANCE_SOL,
    UNLIMITED_MINT,
    UUID_LEN,
)
from .rpc import AsyncRpcClient, cluster_rpc_url


@dataclass(frozen=True)
class Settings:
    rpc_url: str
    timeout_s: float = 60.0

    @staticmethod
    def from_env(
        cluster: str,
        rpc_url_override: str | None = None,
        timeout_s: float = 60.0,
    ) -> "Settings":
        load_dotenv()

        # If user provides --rpc-url, trust it.
        if rpc_url_override:
            return Settings(rpc_url=rpc_url_override, timeout_s=timeout_s)

        # Otherwise RPC_URL from env, else the public endpoint of the cluster.
        env_rpc = os.getenv("RPC_URL", "").strip()
        if env_rpc:
            return Settings(rpc_url=env_rpc, timeout_s=timeout_s)

        return Settings(rpc_url=cluster_rpc_url(cluster), timeout_s=timeout_s)


@dataclass(frozen=True)
class RunConfig:
    name: str
    cluster: str
    wallet_key_path: str
    mint_count: int
    logs_dir: str
    candy_machine: str = ""
    mint_url: str = ""
    concurrency: int = DEFAULT_MINT_CONCURRENCY
    balance_threshold: float = MIN_BALANCE_SOL
    balance_interval: float = BALANCE_CHECK_INTERVAL_S

    @staticmethod
    def from_dict(raw: Dict[str, Any], require_target: bool = True) -> "RunConfig":
        try:
            cfg = RunConfig(
                name=str(raw.get("name") or "mint"),
                cluster=str(raw.get("cluster") or "").strip(),
                wallet_key_path=str(raw.get("walletPrivKey") or "").strip(),
                mint_count=int(raw.get("mintCount", 1)),
                logs_dir=str(raw.get("logsDir") or "logs"),
                candy_machine=str(raw.get("candyMachine") or "").strip(),
                mint_url=str(raw.get("mintUrl") or "").strip(),
                concurrency=int(raw.get("concurrency", DEFAULT_MINT_CONCURRENCY)),
                balance_threshold=float(raw.get("balanceThreshold", MIN_BALANCE_SOL)),
                balance_interval=float(raw.get("balanceInterval", BALANCE_CHECK_INTERVAL_S)),
            )
        except (TypeError, ValueError) as e:
            raise ConfigurationError(f"Invalid run config: {e}") from None
        cfg.validate(require_target)
        return cfg

    def validate(self, require_target: bool = True) -> None:
        if require_target and not self.candy_machine and not self.mint_url:
            raise ConfigurationError("Require candy machine or mint site url")
        if " " in self.candy_machine or " " in self.mint_url:
            raise ConfigurationError("mintUrl and candyMachine should not have spaces")
        if not self.cluster:
            raise ConfigurationError("Require solana cluster")
        if self.cluster not in CLUSTER_URLS:
            raise ConfigurationError(f"Unknown cluster: {self.cluster}")
        if self.candy_machine and not (
            ADDRESS_MIN_LEN <= len(self.candy_machine) <= ADDRESS_MAX_LEN
        ):
            raise ConfigurationError(f"Not a valid candy machine: {self.candy_machine}")
        if not self.candy_machine and self.mint_url and not self.mint_url.startswith(
            ("http://", "https://")
        ):
            raise ConfigurationError(
                'Please enter a valid url (starts with "http://" or "https://")'
            )
        if not self.wallet_key_path:
            raise ConfigurationError("Require walletPrivKey (wallet key file path)")
        if self.mint_count < UNLIMITED_MINT:
            raise ConfigurationError(f"Invalid mintCount: {self.mint_count}")

    def describe(self) -> str:
        count = "Unlimited" if self.mint_count == UNLIMITED_MINT else self.mint_count
        return (
            f'Task: "{self.name}"; Cluster: "{self.cluster}"; MintCount: "{count}"; '
            f'Candy Machine: "{self.candy_machine}"'
        )


def load_run_config(path: str | Path, require_target: bool = True) -> RunConfig:
    try:
        with open(path, "r", encoding="utf-8") as f:
            raw = json.load(f)
    except (OSError, json.JSONDecodeError) as e:
        raise ConfigurationError(f"Cannot read run config {path}: {e}") from None
    if not isinstance(raw, dict):
        raise ConfigurationError(f"Run config {path} must be a JSON object")
    return RunConfig.from_dict(raw, require_target)


@dataclass(frozen=True)
class CandyMachineRecord:
    config: str
    uuid: str
    network: str

    @staticmethod
    def for_address(config: str, network: str) -> "CandyMachineRecord":
        return CandyMachineRecord(config=config, uuid=config[:UUID_LEN], network=network)

    def to_dict(self) -> Dict[str, str]:
        return {
            "CANDY_MACHINE_PROGRAM_UUID": self.uuid,
            "CANDY_MACHINE_PROGRAM_CONFIG": self.config,
            "CONNECTION_NETWORK": self.network,
        }


def record_path(site_dir: str, save_dir: str | Path = CANDY_MACHINE_SAVE_DIR) -> Path:
    return Path(save_dir) / f"{site_dir}.json"


def load_candy_machine_record(path: str | Path) -> Optional[CandyMachineRecord]:
    p = Path(path)
    if not p.exists():
        return None
    try:
        with open(p, "r", encoding="utf-8") as f:
            raw = json.load(f)
    except (OSError, json.JSONDecodeError) as e:
        raise ConfigurationError(f"Cannot read candy machine record {p}: {e}") from None
    if not isinstance(raw, dict):
        raise ConfigurationError(f"Candy machine record {p} must be a JSON object")
    config = raw.get("CANDY_MACHINE_PROGRAM_CONFIG", "")
    if not config:
        return None
    record = CandyMachineRecord(
        config=config,
        uuid=raw.get("CANDY_MACHINE_PROGRAM_UUID") or config[:UUID_LEN],
        network=raw.get("CONNECTION_NETWORK", ""),
    )
    if record.uuid != config[:UUID_LEN]:
        raise ConfigurationError(f"{p}: uuid {record.uuid} does not match {config}")
    return record


def load_candy_machine_records(
    save_dir: str | Path, network: str
) -> List[CandyMachineRecord]:
    """Saved records usable on `network`, in file name order. Untagged records match any."""
    root = Path(save_dir)
    if not root.is_dir():
        raise ConfigurationError(f"Candy machine directory not found: {root}")
    records: List[CandyMachineRecord] = []
    for path in sorted(root.glob("*.json")):
        record = load_candy_machine_record(path)
        if record is None:
            continue
        if record.network and record.network != network:
            continue
        records.append(record)
    return records


def save_candy_machine_record(record: CandyMachineRecord, path: str | Path) -> Path:
    p = Path(path)
    p.parent.mkdir(parents=True, exist_ok=True)
    with open(p, "w", encoding="utf-8") as f:
        json.dump(record.to_dict(), f, indent=2)
    return p


def load_keypair(path: str | Path) -> Keypair:
    """
    Supports:
    1) Solana CLI key file: JSON array of 64 secret key bytes
    2) Raw base58-encoded secret key
    """
    try:
        with open(path, "r", encoding="utf-8") as f:
            raw = f.read().strip()
    except OSError as e:
        raise ConfigurationError(f"Cannot read wallet key file {path}: {e}") from None

    try:
        if raw.startswith("["):
            secret = bytes(json.loads(raw))
        else:
            secret = base58.b58decode(raw)
        return Keypair.from_bytes(secret)
    except (TypeError, ValueError) as e:
        raise ConfigurationError(f"Invalid wallet key file {path}: {e}") from None


@dataclass(frozen=True)
class ChainContext:
    rpc: AsyncRpcClient
    payer: Keypair
    cluster: str


def connect(cluster: str, key_path: str | Path, settings: Settings) -> ChainContext:
    """Builds the rpc client and payer for a run. Caller closes ctx.rpc."""
    payer = load_keypair(key_path)
    rpc = AsyncRpcClient(settings.rpc_url, timeout_s=settings.timeout_s)
    return ChainContext(rpc=rpc, payer=payer, cluster=cluster)
