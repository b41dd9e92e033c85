import json

import base58
import pytest
from solders.keypair import Keypair

from candy_minter.config import (
    CandyMachineRecord,
    RunConfig,
    Settings,
    load_candy_machine_record,
    load_candy_machine_records,
    load_keypair,
    load_run_config,
    save_candy_machine_record,
)
from candy_minter.errors import ConfigurationError

CANDY = "53kf3BvG4yWWDjvzjc2v8hkbSAu5QtcnttMoqcsY49xA"


def _raw(**over):
    raw = {
        "name": "drop",
        "cluster": "devnet",
        "candyMachine": CANDY,
        "mintUrl": "",
        "walletPrivKey": "wallet.json",
        "mintCount": 3,
        "logsDir": "logs",
    }
    raw.update(over)
    return raw


def test_run_config_from_dict():
    cfg = RunConfig.from_dict(_raw())
    assert cfg.candy_machine == CANDY
    assert cfg.mint_count == 3
    assert cfg.balance_threshold == 1.0
    assert cfg.balance_interval == 5.0
    assert 'MintCount: "3"' in cfg.describe()


def test_run_config_unlimited_describe():
    assert 'MintCount: "Unlimited"' in RunConfig.from_dict(_raw(mintCount=-1)).describe()


@pytest.mark.parametrize(
    "over",
    [
        {"candyMachine": "", "mintUrl": ""},
        {"candyMachine": "", "mintUrl": "mint.example"},
        {"candyMachine": "short"},
        {"candyMachine": CANDY[:10] + " " + CANDY[10:]},
        {"cluster": ""},
        {"cluster": "localnet"},
        {"walletPrivKey": ""},
        {"mintCount": -5},
        {"mintCount": "many"},
    ],
)
def test_run_config_rejects(over):
    with pytest.raises(ConfigurationError):
        RunConfig.from_dict(_raw(**over))


def test_run_config_trims_whitespace():
    cfg = RunConfig.from_dict(_raw(candyMachine=f"  {CANDY} "))
    assert cfg.candy_machine == CANDY


def test_load_run_config_file(tmp_path):
    path = tmp_path / "task.json"
    path.write_text(json.dumps(_raw(candyMachine="", mintUrl="https://mint.example")), encoding="utf-8")
    cfg = load_run_config(path)
    assert cfg.mint_url == "https://mint.example"
    with pytest.raises(ConfigurationError):
        load_run_config(tmp_path / "missing.json")


def test_settings_precedence(monkeypatch):
    monkeypatch.setattr("candy_minter.config.load_dotenv", lambda: None)
    monkeypatch.delenv("RPC_URL", raising=False)
    assert Settings.from_env("devnet").rpc_url == "https://api.devnet.solana.com"
    monkeypatch.setenv("RPC_URL", "https://env.rpc")
    assert Settings.from_env("devnet").rpc_url == "https://env.rpc"
    assert Settings.from_env("devnet", rpc_url_override="https://cli.rpc").rpc_url == "https://cli.rpc"


def test_load_keypair_formats(tmp_path):
    kp = Keypair()
    as_json = tmp_path / "id.json"
    as_json.write_text(json.dumps(list(bytes(kp))), encoding="utf-8")
    as_b58 = tmp_path / "id.txt"
    as_b58.write_text(base58.b58encode(bytes(kp)).decode(), encoding="utf-8")
    assert load_keypair(as_json).pubkey() == kp.pubkey()
    assert load_keypair(as_b58).pubkey() == kp.pubkey()


def test_load_keypair_invalid(tmp_path):
    bad = tmp_path / "bad.json"
    bad.write_text("[1, 2, 3]", encoding="utf-8")
    with pytest.raises(ConfigurationError):
        load_keypair(bad)
    with pytest.raises(ConfigurationError):
        load_keypair(tmp_path / "nope.json")


def test_candy_machine_record_file(tmp_path):
    record = CandyMachineRecord.for_address(CANDY, "mainnet-beta")
    assert record.uuid == CANDY[:6]
    path = save_candy_machine_record(record, tmp_path / "sites" / "mint_io.json")
    assert json.loads(path.read_text(encoding="utf-8")) == {
        "CANDY_MACHINE_PROGRAM_UUID": "53kf3B",
        "CANDY_MACHINE_PROGRAM_CONFIG": CANDY,
        "CONNECTION_NETWORK": "mainnet-beta",
    }
    assert load_candy_machine_record(path) == record
    assert load_candy_machine_record(tmp_path / "absent.json") is None


def test_candy_machine_record_uuid_mismatch(tmp_path):
    path = tmp_path / "x.json"
    path.write_text(
        json.dumps({"CANDY_MACHINE_PROGRAM_CONFIG": CANDY, "CANDY_MACHINE_PROGRAM_UUID": "zzzzzz"}),
        encoding="utf-8",
    )
    with pytest.raises(ConfigurationError):
        load_candy_machine_record(path)


def test_candy_machine_record_malformed_json(tmp_path):
    path = tmp_path / "broken.json"
    path.write_text("{not json", encoding="utf-8")
    with pytest.raises(ConfigurationError):
        load_candy_machine_record(path)


def test_load_candy_machine_records_filters_by_network(tmp_path):
    other = str(Keypair().pubkey())
    untagged = str(Keypair().pubkey())
    save_candy_machine_record(CandyMachineRecord.for_address(CANDY, "devnet"), tmp_path / "a.json")
    save_candy_machine_record(CandyMachineRecord.for_address(other, "mainnet-beta"), tmp_path / "b.json")
    (tmp_path / "c.json").write_text(
        json.dumps({"CANDY_MACHINE_PROGRAM_CONFIG": untagged}), encoding="utf-8"
    )
    (tmp_path / "d.json").write_text("{}", encoding="utf-8")

    records = load_candy_machine_records(tmp_path, "devnet")
    assert [r.config for r in records] == [CANDY, untagged]
    with pytest.raises(ConfigurationError):
        load_candy_machine_records(tmp_path / "missing", "devnet")


def test_run_config_without_target_for_records_mode():
    raw = _raw(candyMachine="", mintUrl="")
    with pytest.raises(ConfigurationError):
        RunConfig.from_dict(raw)
    cfg = RunConfig.from_dict(raw, require_target=False)
    assert cfg.candy_machine == "" and cfg.mint_url == ""
