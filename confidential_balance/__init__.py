"""
confidential_balance: client engine for confidential token balances.

Balances for a token are held on-chain as chunked twisted-ElGamal
ciphertexts over secp256k1.  This package:

- encodes amounts into fixed-radix chunks and encrypts/decrypts them
  (``chunked``, ``elgamal``, ``keys``),
- proves withdraw, transfer, normalization and key-rotation operations
  (``backend``, ``prover``, ``sigma``, ``range_proof``),
- reads stores and builds the ledger payloads (``reader``, ``builder``),
- sequences multi-step flows such as safe rollover and safe key rotation
  against a mutable ledger (``orchestrator``).

Quick start
-----------
::

    from confidential_balance import (
        DecryptionKey, LocalLedger, NetworkConfig,
        ReferenceProofBackend, SafeOrchestrator,
    )

    network = NetworkConfig.for_network("local")
    backend = ReferenceProofBackend()
    ledger = LocalLedger(network, backend)
    flows = SafeOrchestrator(ledger, network, backend)

    key = DecryptionKey.generate()
    await flows.register("0xa11ce", "0xusd", key)
    await flows.deposit("0xa11ce", "0xusd", 1000)
    await flows.safe_rollover("0xa11ce", "0xusd", key)
"""

__version__ = "0.1.0"

# ── core types ──────────────────────────────────────────────────────────
from .curve import Scalar, Point, G, H, ORDER
from .keys import DecryptionKey, EncryptionKey

# ── chunked balances ────────────────────────────────────────────────────
from .elgamal import ChunkCiphertext
from .chunked import (
    CHUNK_BITS,
    RADIX,
    BALANCE_CHUNKS,
    AMOUNT_CHUNKS,
    EXTENDED_CHUNK_BITS,
    ConfidentialBalance,
    encode,
    decode,
    encrypt_amount,
    decrypt_chunks,
    decrypt_balance,
)

# ── proofs ──────────────────────────────────────────────────────────────
from .backend import (
    ProofBackend,
    ProofTask,
    WithdrawProof,
    TransferProof,
    NormalizationProof,
    KeyRotationProof,
)
from .prover import ReferenceProofBackend

# ── ledger access ───────────────────────────────────────────────────────
from .config import NetworkConfig, ClientConfig, load_config
from .payload import EntryFunction, Transaction, TransactionResult
from .ledger import LedgerClient, RestLedgerClient
from .devnet import LocalLedger
from .reader import BalanceStoreReader, ConfidentialStore, DecryptedBalance, StoreFlags
from .builder import OperationBuilder
from .orchestrator import SafeOrchestrator

# ── errors ──────────────────────────────────────────────────────────────
from .errors import (
    ConfidentialBalanceError,
    ValidationError,
    RangeError,
    InvalidKeyLength,
    ChunkArityMismatch,
    DecryptionMismatch,
    ProofConstructionError,
    InsufficientBalance,
    LedgerError,
    TransactionFailed,
    CommitTimeout,
    SafeFlowError,
    MissingDecryptionKey,
    PartialFlowError,
)

__all__ = [
    # version
    "__version__",
    # core
    "Scalar", "Point", "G", "H", "ORDER",
    "DecryptionKey", "EncryptionKey",
    # chunked balances
    "ChunkCiphertext", "ConfidentialBalance",
    "CHUNK_BITS", "RADIX", "BALANCE_CHUNKS", "AMOUNT_CHUNKS", "EXTENDED_CHUNK_BITS",
    "encode", "decode", "encrypt_amount", "decrypt_chunks", "decrypt_balance",
    # proofs
    "ProofBackend", "ProofTask", "ReferenceProofBackend",
    "WithdrawProof", "TransferProof", "NormalizationProof", "KeyRotationProof",
    # ledger access
    "NetworkConfig", "ClientConfig", "load_config",
    "EntryFunction", "Transaction", "TransactionResult",
    "LedgerClient", "RestLedgerClient", "LocalLedger",
    "BalanceStoreReader", "ConfidentialStore", "DecryptedBalance", "StoreFlags",
    "OperationBuilder", "SafeOrchestrator",
    # errors
    "ConfidentialBalanceError", "ValidationError", "RangeError",
    "InvalidKeyLength", "ChunkArityMismatch", "DecryptionMismatch",
    "ProofConstructionError", "InsufficientBalance",
    "LedgerError", "TransactionFailed", "CommitTimeout",
    "SafeFlowError", "MissingDecryptionKey", "PartialFlowError",
]
