"""
Candy machine v1 account layouts, address derivation and instruction builders.

Anchor accounts and instructions start with an 8-byte discriminator, the rest
is borsh.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Any, List, Optional, Sequence, Tuple

from borsh_construct import U8, U16, U32, U64, I64, Bool, CStruct, Option, String, Vec
from construct import Adapter, Bytes, ConstructError
from solders.instruction import AccountMeta, Instruction
from solders.keypair import Keypair
from solders.pubkey import Pubkey
from solders.system_program import ID as SYSTEM_PROGRAM_ID
from solders.system_program import CreateAccountParams, create_account
from solders.sysvar import CLOCK, RENT
from spl.token.instructions import (
    InitializeMintParams,
    MintToParams,
    create_associated_token_account,
    get_associated_token_address,
    initialize_mint,
    mint_to,
)

from .project_constants import (
    ADD_CONFIG_LINES_DISCRIMINATOR,
    CANDY_MACHINE_ACCOUNT_DISCRIMINATOR,
    CANDY_MACHINE_PROGRAM_ID,
    CANDY_MACHINE_SEED,
    CONFIG_ARRAY_START,
    CONFIG_LINE_SIZE,
    INITIALIZE_CANDY_MACHINE_DISCRIMINATOR,
    INITIALIZE_CONFIG_DISCRIMINATOR,
    MINT_ACCOUNT_SIZE,
    MINT_NFT_DISCRIMINATOR,
    TOKEN_METADATA_PROGRAM_ID,
    TOKEN_PROGRAM_ID,
    UUID_LEN,
)

CANDY_PROGRAM = Pubkey.from_string(CANDY_MACHINE_PROGRAM_ID)
METADATA_PROGRAM = Pubkey.from_string(TOKEN_METADATA_PROGRAM_ID)
TOKEN_PROGRAM = Pubkey.from_string(TOKEN_PROGRAM_ID)


class _PubkeyAdapter(Adapter):
    def _decode(self, obj: bytes, context: Any, path: Any) -> Pubkey:
        return Pubkey(obj)

    def _encode(self, obj: Pubkey, context: Any, path: Any) -> bytes:
        return bytes(obj)


PUBKEY = _PubkeyAdapter(Bytes(32))

CANDY_MACHINE_DATA = CStruct(
    "uuid" / String,
    "price" / U64,
    "items_available" / U64,
    "go_live_date" / Option(I64),
)

CANDY_MACHINE_LAYOUT = CStruct(
    "authority" / PUBKEY,
    "wallet" / PUBKEY,
    "token_mint" / Option(PUBKEY),
    "config" / PUBKEY,
    "data" / CANDY_MACHINE_DATA,
    "items_redeemed" / U64,
    "bump" / U8,
)

CREATOR = CStruct("address" / PUBKEY, "verified" / Bool, "share" / U8)

CONFIG_DATA = CStruct(
    "uuid" / String,
    "symbol" / String,
    "seller_fee_basis_points" / U16,
    "creators" / Vec(CREATOR),
    "max_supply" / U64,
    "is_mutable" / Bool,
    "retain_authority" / Bool,
    "max_number_of_lines" / U32,
)

CONFIG_LINE = CStruct("name" / String, "uri" / String)

ADD_CONFIG_LINES_ARGS = CStruct("index" / U32, "config_lines" / Vec(CONFIG_LINE))

INITIALIZE_CANDY_MACHINE_ARGS = CStruct("bump" / U8, "data" / CANDY_MACHINE_DATA)


@dataclass(frozen=True)
class CandyMachineState:
    authority: str
    wallet: str
    token_mint: Optional[str]
    config: str
    uuid: str
    price: int  # lamports
    items_available: int
    go_live_date: Optional[int]
    items_redeemed: int
    bump: int


@dataclass(frozen=True)
class ResolvedContract:
    config: str
    uuid: str
    candy_machine: str
    state: CandyMachineState


@dataclass(frozen=True)
class Creator:
    address: str
    share: int
    verified: bool = True


@dataclass(frozen=True)
class ConfigSettings:
    """What initialize_config writes into a new config account."""

    max_number_of_lines: int
    symbol: str
    seller_fee_basis_points: int
    creators: Tuple[Creator, ...]
    max_supply: int = 0
    is_mutable: bool = True
    retain_authority: bool = True


def uuid_for(config: str) -> str:
    return config[:UUID_LEN]


def find_candy_machine_address(config: Pubkey, uuid: str) -> Tuple[Pubkey, int]:
    return Pubkey.find_program_address(
        [CANDY_MACHINE_SEED, bytes(config), uuid.encode("utf-8")], CANDY_PROGRAM
    )


def find_metadata_address(mint: Pubkey) -> Pubkey:
    return Pubkey.find_program_address(
        [b"metadata", bytes(METADATA_PROGRAM), bytes(mint)], METADATA_PROGRAM
    )[0]


def find_master_edition_address(mint: Pubkey) -> Pubkey:
    return Pubkey.find_program_address(
        [b"metadata", bytes(METADATA_PROGRAM), bytes(mint), b"edition"],
        METADATA_PROGRAM,
    )[0]


def config_account_size(max_number_of_lines: int) -> int:
    return (
        CONFIG_ARRAY_START
        + 4
        + max_number_of_lines * CONFIG_LINE_SIZE
        + 4
        + math.ceil(max_number_of_lines / 8)
    )


def parse_candy_machine(account_data: bytes) -> CandyMachineState:
    if account_data[:8] != CANDY_MACHINE_ACCOUNT_DISCRIMINATOR:
        raise ValueError("Not a candy machine account")
    try:
        raw = CANDY_MACHINE_LAYOUT.parse(account_data[8:])
    except ConstructError as e:
        raise ValueError(f"Malformed candy machine account: {e}") from None
    return CandyMachineState(
        authority=str(raw.authority),
        wallet=str(raw.wallet),
        token_mint=str(raw.token_mint) if raw.token_mint is not None else None,
        config=str(raw.config),
        uuid=raw.data.uuid,
        price=raw.data.price,
        items_available=raw.data.items_available,
        go_live_date=raw.data.go_live_date,
        items_redeemed=raw.items_redeemed,
        bump=raw.bump,
    )


def encode_candy_machine_data(
    uuid: str, price: int, items_available: int, go_live_date: Optional[int] = None
) -> bytes:
    return CANDY_MACHINE_DATA.build(
        {
            "uuid": uuid,
            "price": price,
            "items_available": items_available,
            "go_live_date": go_live_date,
        }
    )


def initialize_config_ixs(
    config: Pubkey,
    payer: Pubkey,
    settings: ConfigSettings,
    rent_lamports: int,
) -> List[Instruction]:
    """Allocates the config account (owned by the candy program) and initializes it."""
    data = INITIALIZE_CONFIG_DISCRIMINATOR + CONFIG_DATA.build(
        {
            "uuid": uuid_for(str(config)),
            "symbol": settings.symbol,
            "seller_fee_basis_points": settings.seller_fee_basis_points,
            "creators": [
                {
                    "address": Pubkey.from_string(c.address),
                    "verified": c.verified,
                    "share": c.share,
                }
                for c in settings.creators
            ],
            "max_supply": settings.max_supply,
            "is_mutable": settings.is_mutable,
            "retain_authority": settings.retain_authority,
            "max_number_of_lines": settings.max_number_of_lines,
        }
    )
    return [
        create_account(
            CreateAccountParams(
                from_pubkey=payer,
                to_pubkey=config,
                lamports=rent_lamports,
                space=config_account_size(settings.max_number_of_lines),
                owner=CANDY_PROGRAM,
            )
        ),
        Instruction(
            CANDY_PROGRAM,
            data,
            [
                AccountMeta(config, is_signer=False, is_writable=True),
                AccountMeta(payer, is_signer=False, is_writable=False),
                AccountMeta(payer, is_signer=True, is_writable=True),
                AccountMeta(RENT, is_signer=False, is_writable=False),
            ],
        ),
    ]


def add_config_lines_ix(
    config: Pubkey,
    authority: Pubkey,
    index: int,
    lines: Sequence[Tuple[str, str]],
) -> Instruction:
    """lines are (name, uri) pairs."""
    data = ADD_CONFIG_LINES_DISCRIMINATOR + ADD_CONFIG_LINES_ARGS.build(
        {
            "index": index,
            "config_lines": [{"name": name, "uri": uri} for name, uri in lines],
        }
    )
    return Instruction(
        CANDY_PROGRAM,
        data,
        [
            AccountMeta(config, is_signer=False, is_writable=True),
            AccountMeta(authority, is_signer=True, is_writable=False),
        ],
    )


def initialize_candy_machine_ix(
    config: Pubkey,
    authority: Pubkey,
    price: int,
    items_available: int,
    go_live_date: Optional[int] = None,
) -> Instruction:
    uuid = uuid_for(str(config))
    candy_machine, bump = find_candy_machine_address(config, uuid)
    data = INITIALIZE_CANDY_MACHINE_DISCRIMINATOR + INITIALIZE_CANDY_MACHINE_ARGS.build(
        {
            "bump": bump,
            "data": {
                "uuid": uuid,
                "price": price,
                "items_available": items_available,
                "go_live_date": go_live_date,
            },
        }
    )
    return Instruction(
        CANDY_PROGRAM,
        data,
        [
            AccountMeta(candy_machine, is_signer=False, is_writable=True),
            AccountMeta(authority, is_signer=False, is_writable=False),
            AccountMeta(config, is_signer=False, is_writable=False),
            AccountMeta(authority, is_signer=True, is_writable=False),
            AccountMeta(authority, is_signer=True, is_writable=True),
            AccountMeta(SYSTEM_PROGRAM_ID, is_signer=False, is_writable=False),
            AccountMeta(RENT, is_signer=False, is_writable=False),
        ],
    )


def mint_nft_instructions(
    contract: ResolvedContract,
    payer: Pubkey,
    mint: Keypair,
    rent_lamports: int,
) -> List[Instruction]:
    """
    Instructions for one mint: create the mint account, initialize it, create
    the payer's token account, mint one token, then call mint_nft.
    """
    mint_key = mint.pubkey()
    token = get_associated_token_address(payer, mint_key)
    metadata = find_metadata_address(mint_key)
    master_edition = find_master_edition_address(mint_key)

    mint_nft = Instruction(
        CANDY_PROGRAM,
        MINT_NFT_DISCRIMINATOR,
        [
            AccountMeta(Pubkey.from_string(contract.config), is_signer=False, is_writable=False),
            AccountMeta(Pubkey.from_string(contract.candy_machine), is_signer=False, is_writable=True),
            AccountMeta(payer, is_signer=True, is_writable=True),
            AccountMeta(Pubkey.from_string(contract.state.wallet), is_signer=False, is_writable=True),
            AccountMeta(metadata, is_signer=False, is_writable=True),
            AccountMeta(mint_key, is_signer=False, is_writable=True),
            AccountMeta(payer, is_signer=True, is_writable=False),
            AccountMeta(payer, is_signer=True, is_writable=False),
            AccountMeta(master_edition, is_signer=False, is_writable=True),
            AccountMeta(METADATA_PROGRAM, is_signer=False, is_writable=False),
            AccountMeta(TOKEN_PROGRAM, is_signer=False, is_writable=False),
            AccountMeta(SYSTEM_PROGRAM_ID, is_signer=False, is_writable=False),
            AccountMeta(RENT, is_signer=False, is_writable=False),
            AccountMeta(CLOCK, is_signer=False, is_writable=False),
        ],
    )

    return [
        create_account(
            CreateAccountParams(
                from_pubkey=payer,
                to_pubkey=mint_key,
                lamports=rent_lamports,
                space=MINT_ACCOUNT_SIZE,
                owner=TOKEN_PROGRAM,
            )
        ),
        initialize_mint(
            InitializeMintParams(
                decimals=0,
                program_id=TOKEN_PROGRAM,
                mint=mint_key,
                mint_authority=payer,
                freeze_authority=payer,
            )
        ),
        create_associated_token_account(payer, payer, mint_key),
        mint_to(
            MintToParams(
                program_id=TOKEN_PROGRAM,
                mint=mint_key,
                dest=token,
                mint_authority=payer,
                amount=1,
            )
        ),
        mint_nft,
    ]
