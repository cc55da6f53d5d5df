"""Protocol constants shared by the engine and the ledger contract."""

# BN254 scalar field
FIELD_MODULUS = 21888242871839275222246405745257275088548364400416034343698204186575808495617
FIELD_BITS = 254
FIELD_BYTES = 32

# secp256k1 group order
SECP256K1_ORDER = 0xFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFEBAAEDCE6AF48A03BBFD25E8CD0364141

ADDRESS_SIZE = 20
NULLIFIER_SIZE = 32

# Commit-reveal
COMMIT_REVEAL_DELAY = 240  # blocks
ORDER_EXPIRATION = 7200  # blocks

# Encrypted order slot
ENCRYPTED_ORDER_SIZE = 512
EPHEMERAL_KEY_SIZE = 33
CIPHER_NONCE_SIZE = 24
CIPHER_TAG_SIZE = 16
CIPHERTEXT_SIZE = ENCRYPTED_ORDER_SIZE - EPHEMERAL_KEY_SIZE - CIPHER_NONCE_SIZE  # 455
PADDED_PLAINTEXT_SIZE = CIPHERTEXT_SIZE - CIPHER_TAG_SIZE  # 439
LENGTH_PREFIX_SIZE = 2
MAX_ORDER_PLAINTEXT = PADDED_PLAINTEXT_SIZE - LENGTH_PREFIX_SIZE  # 437

# HD wallet
HD_MASTER_KEY_SALT = b"ed25519 seed"
HARDENED_OFFSET = 0x80000000
BIP44_PURPOSE = 44
ETHEREUM_COIN_TYPE = 60
VALID_MNEMONIC_LENGTHS = (12, 15, 18, 21, 24)
VALID_ENTROPY_BITS = (128, 160, 192, 224, 256)

# Seed vault
SEED_RECORD_TYPE = "hd_seed"
SEED_RECORD_VERSION = 1
KDF_ITERATIONS = 100_000
KDF_SALT_SIZE = 16
AES_GCM_IV_SIZE = 12

# Trading limits
USDC_DECIMALS = 6
PRICE_DECIMALS = 18
MAX_LEVERAGE = 50
MIN_ORDER_SIZE = "100"
MAX_ORDER_SIZE = "1000000"
UINT256_MAX = 2**256 - 1

# Keeper selection
DEFAULT_SUCCESS_RATE = 0.5
KEEPER_SAMPLE_SIZE = 10
