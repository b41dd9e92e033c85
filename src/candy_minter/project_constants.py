"""
Fixed parameters of the candy machine v1 program and of the mint loop.

Program ids and seeds must match what is deployed on chain.
"""

# Candy machine v1 program
UUID_LEN = 6
CANDY_MACHINE_PROGRAM_ID = "cndyAnrLdpjq1Ssp1z8xxDsB8dxe7u4HL5Nxi2K5WXZ"
CANDY_MACHINE_SEED = b"candy_machine"

# Anchor discriminators, sha256("<namespace>:<name>")[:8]
CANDY_MACHINE_ACCOUNT_DISCRIMINATOR = bytes.fromhex("33adb17119f16dbd")
CONFIG_ACCOUNT_DISCRIMINATOR = bytes.fromhex("9b0caae01efacc82")
INITIALIZE_CONFIG_DISCRIMINATOR = bytes.fromhex("d07f1501c2bec446")
INITIALIZE_CANDY_MACHINE_DISCRIMINATOR = bytes.fromhex("8e89a76b2f27f07c")
ADD_CONFIG_LINES_DISCRIMINATOR = bytes.fromhex("df32e0e39708736a")
MINT_NFT_DISCRIMINATOR = bytes.fromhex("d33906a70fdb23fb")

# Config account sizing
MAX_SYMBOL_LENGTH = 10
MAX_NAME_LENGTH = 32
MAX_URI_LENGTH = 200
MAX_CREATOR_LIMIT = 5
MAX_CREATOR_LEN = 32 + 1 + 1
CONFIG_ARRAY_START = (
    8  # discriminator
    + 32  # authority
    + 4 + UUID_LEN  # uuid string
    + 4 + MAX_SYMBOL_LENGTH  # symbol string
    + 2  # seller fee basis points
    + 1 + 4 + MAX_CREATOR_LIMIT * MAX_CREATOR_LEN  # creators option + vec
    + 8  # max supply
    + 1  # is mutable
    + 1  # retain authority
    + 4  # max number of lines
)
CONFIG_LINE_SIZE = 4 + MAX_NAME_LENGTH + 4 + MAX_URI_LENGTH

# Metaplex token metadata
TOKEN_METADATA_PROGRAM_ID = "metaqbxxUerdq28cj1RbAWkYQm3ybzjb6a8bt518x1s"

# SPL programs
TOKEN_PROGRAM_ID = "TokenkegQfeZyiNwAJbNbGKPFXCWuBvf9Ss623VQ5DA"
ASSOCIATED_TOKEN_PROGRAM_ID = "ATokenGPvbdGVxr1b2hvZbsiqW5xWH25efTNsLJA8knL"

# SPL mint account size (MintLayout.span)
MINT_ACCOUNT_SIZE = 82

LAMPORTS_PER_SOL = 1_000_000_000

# Public RPC endpoints per cluster
CLUSTER_URLS = {
    "mainnet-beta": "https://api.mainnet-beta.solana.com",
    "devnet": "https://api.devnet.solana.com",
    "testnet": "https://api.testnet.solana.com",
}

# Strings that look like addresses in mint site bundles but never are a config
EXCLUDED_ADDRESSES = frozenset(
    {
        TOKEN_METADATA_PROGRAM_ID,
        CANDY_MACHINE_PROGRAM_ID,
        TOKEN_PROGRAM_ID,
        ASSOCIATED_TOKEN_PROGRAM_ID,
        "InvalidAddressBecauseDestinationIsAlsoSource",
        "NotEnoughBalanceBecauseDestinationNotCreated",
        "UnavailableTezosOriginatedAccountReceive",
        "HvwC9QSAzvGXhhVrgPmauVwFWcYZhne3hVot9EbHuFTm",
    }
)
# System program / sysvar style ids
EXCLUDED_MARKER = "11111111"

ADDRESS_MIN_LEN = 40
ADDRESS_MAX_LEN = 50

# Config lines per add_config_lines transaction
CONFIG_LINES_PER_BATCH = 10
URI_ID_PLACEHOLDER = "$id"

# Mint loop
UNLIMITED_MINT = -1
MIN_BALANCE_SOL = 1.0
BALANCE_CHECK_INTERVAL_S = 5.0
UNBOUNDED_PAUSE_EVERY = 10
UNBOUNDED_PAUSE_S = 1.0
DEFAULT_MINT_CONCURRENCY = 10

# Where discovered candy machines are saved
CANDY_MACHINE_SAVE_DIR = "candy_machines"
