import asyncio
import json

import pytest
from solders.keypair import Keypair

from candy_minter import cli
from candy_minter.config import CandyMachineRecord, ChainContext, save_candy_machine_record
from candy_minter.resolver import resolve_contract

from conftest import FakeChain, new_pubkey


@pytest.fixture(autouse=True)
def no_dotenv(monkeypatch):
    monkeypatch.setattr("candy_minter.config.load_dotenv", lambda: None)
    monkeypatch.delenv("RPC_URL", raising=False)


def _fake_connect(monkeypatch, chain):
    def connect(cluster, key_path, settings):
        return ChainContext(rpc=chain, payer=Keypair(), cluster=cluster)

    monkeypatch.setattr(cli, "connect", connect)


def test_parser_subcommands():
    p = cli.build_parser()
    args = p.parse_args(["--save-dir", "out", "scrape", "--url", "https://mint.example"])
    assert args.func is cli.cmd_scrape
    assert args.cluster == "mainnet-beta"
    assert args.save_dir == "out"

    args = p.parse_args(
        ["init", "--config-address", "abc", "--price", "0.5", "--items", "20", "--keypair", "k"]
    )
    assert args.func is cli.cmd_init
    assert args.go_live is None
    assert args.cluster == "devnet"


def test_mint_with_known_address(tmp_path, monkeypatch):
    chain = FakeChain()
    config = new_pubkey()
    chain.add_candy_machine(config)
    _fake_connect(monkeypatch, chain)

    cfg_file = tmp_path / "task.json"
    cfg_file.write_text(
        json.dumps(
            {
                "name": "drop",
                "cluster": "devnet",
                "candyMachine": str(config),
                "walletPrivKey": "id.json",
                "mintCount": 2,
                "logsDir": str(tmp_path / "logs"),
            }
        ),
        encoding="utf-8",
    )
    args = cli.build_parser().parse_args(["mint", "--config", str(cfg_file)])

    assert args.func(args) == 0
    assert len(chain.sent) == 2
    (report,) = (tmp_path / "logs").glob("drop_*/mint_result_*.json")
    assert [a["index"] for a in json.loads(report.read_text())] == [0, 1]


def test_scrape_saves_record(tmp_path, monkeypatch):
    chain = FakeChain()
    config = new_pubkey()
    chain.add_candy_machine(config)
    contract = asyncio.run(resolve_contract(chain, str(config)))

    async def discover(rpc, url, timeout_s=30.0):
        return contract

    monkeypatch.setattr(cli, "discover_from_site", discover)
    args = cli.build_parser().parse_args(
        ["--save-dir", str(tmp_path), "scrape", "--url", "https://mint.example.com", "--cluster", "devnet"]
    )

    assert args.func(args) == 0
    saved = json.loads((tmp_path / "mint_example_com.json").read_text())
    assert saved == {
        "CANDY_MACHINE_PROGRAM_UUID": str(config)[:6],
        "CANDY_MACHINE_PROGRAM_CONFIG": str(config),
        "CONNECTION_NETWORK": "devnet",
    }


def test_upload_exit_code_reflects_failed_batches(tmp_path, monkeypatch):
    assets = tmp_path / "assets"
    assets.mkdir()
    for i in range(12):
        (assets / f"{i}.json").write_text(json.dumps({"name": f"#{i}"}), encoding="utf-8")

    chain = FakeChain(fail_send=lambda ixs: ixs[0].data[8:12] != b"\x00\x00\x00\x00")
    _fake_connect(monkeypatch, chain)
    args = cli.build_parser().parse_args(
        [
            "upload",
            "--config-address", str(new_pubkey()),
            "--assets-dir", str(assets),
            "--base-url", "https://arweave.net/$id",
            "--keypair", "id.json",
            "--logs-dir", str(tmp_path / "logs"),
        ]
    )

    assert args.func(args) == 1
    assert len(chain.sent) == 1


def test_main_reports_configuration_errors(tmp_path, monkeypatch, caplog):
    monkeypatch.setattr(
        "sys.argv", ["candy-minter", "mint", "--config", str(tmp_path / "missing.json")]
    )
    with pytest.raises(SystemExit) as exc:
        cli.main()
    assert exc.value.code == 1
    assert "ConfigurationError" in caplog.text


def _key_file(tmp_path):
    path = tmp_path / "id.json"
    path.write_text(json.dumps(list(bytes(Keypair()))), encoding="utf-8")
    return str(path)


def test_mint_from_records_directory(tmp_path, monkeypatch):
    chain = FakeChain()
    live = [new_pubkey(), new_pubkey()]
    for config in live:
        chain.add_candy_machine(config)
    gone = new_pubkey()
    records = tmp_path / "records"
    for i, config in enumerate([*live, gone]):
        save_candy_machine_record(
            CandyMachineRecord.for_address(str(config), "devnet"), records / f"{i}.json"
        )
    save_candy_machine_record(
        CandyMachineRecord.for_address(str(new_pubkey()), "mainnet-beta"), records / "other.json"
    )
    _fake_connect(monkeypatch, chain)

    cfg_file = tmp_path / "task.json"
    cfg_file.write_text(
        json.dumps(
            {
                "name": "sweep",
                "cluster": "devnet",
                "walletPrivKey": "id.json",
                "mintCount": 1,
                "logsDir": str(tmp_path / "logs"),
            }
        ),
        encoding="utf-8",
    )
    args = cli.build_parser().parse_args(
        ["mint", "--config", str(cfg_file), "--records-dir", str(records)]
    )

    assert args.func(args) == 0
    assert len(chain.sent) == 2
    assert len(list((tmp_path / "logs").glob("sweep_*/mint_result_*.json"))) == 2
    (gone_log,) = (tmp_path / "logs").glob(f"sweep_{str(gone)[:6]}_*")
    assert "[DISCOVERY]" in (gone_log / "err.out").read_text(encoding="utf-8")


def test_create_config_from_collection_metadata(tmp_path, monkeypatch, capsys):
    assets = tmp_path / "assets"
    assets.mkdir()
    creator = {"address": str(new_pubkey()), "share": 100}
    for i in range(3):
        meta = {"name": f"#{i}", "symbol": "DROP", "seller_fee_basis_points": 250}
        meta["properties"] = {"creators": [creator]}
        (assets / f"{i}.json").write_text(json.dumps(meta), encoding="utf-8")
    chain = FakeChain()
    _fake_connect(monkeypatch, chain)

    args = cli.build_parser().parse_args(
        ["create", "--assets-dir", str(assets), "--keypair", "id.json"]
    )

    assert args.func(args) == 0
    (ixs,) = chain.sent
    assert len(ixs) == 2
    (signers,) = chain.signers
    out = capsys.readouterr().out
    assert f"PublicKey: {signers[0].pubkey()}" in out


def test_mint_with_unreachable_rpc_exits_cleanly(tmp_path, monkeypatch):
    cfg_file = tmp_path / "task.json"
    cfg_file.write_text(
        json.dumps(
            {
                "name": "offline",
                "cluster": "devnet",
                "candyMachine": str(new_pubkey()),
                "walletPrivKey": _key_file(tmp_path),
                "mintCount": 1,
                "logsDir": str(tmp_path / "logs"),
            }
        ),
        encoding="utf-8",
    )
    monkeypatch.setattr(
        "sys.argv",
        [
            "candy-minter", "--rpc-url", "http://127.0.0.1:9", "--timeout", "2",
            "mint", "--config", str(cfg_file),
        ],
    )
    with pytest.raises(SystemExit) as exc:
        cli.main()
    assert exc.value.code == 1
    (run_dir,) = (tmp_path / "logs").glob("offline_*")
    assert "[DISCOVERY]" in (run_dir / "err.out").read_text(encoding="utf-8")


def test_init_with_unreachable_rpc_exits_cleanly(tmp_path, monkeypatch, caplog):
    monkeypatch.setattr(
        "sys.argv",
        [
            "candy-minter", "--rpc-url", "http://127.0.0.1:9", "--timeout", "2",
            "init", "--config-address", str(new_pubkey()), "--price", "0.1",
            "--items", "10", "--keypair", _key_file(tmp_path),
        ],
    )
    with pytest.raises(SystemExit) as exc:
        cli.main()
    assert exc.value.code == 1
    assert "Connect" in caplog.text
