"""
Key and address derivation for the destination chain.

The destination chain follows the ARK convention: the private key is the
SHA-256 digest of the wallet passphrase, public keys are compressed
secp256k1 points and addresses are Base58Check(version || RIPEMD-160(pubkey)).
"""

import hashlib
from dataclasses import dataclass, field

from bip_utils import Base58Decoder, Base58Encoder, Bip39MnemonicGenerator, Bip39WordsNum
from bip_utils.utils.crypto import Ripemd160
from cryptography.hazmat.primitives.asymmetric.utils import encode_dss_signature
from eth_keys import keys

SECP256K1_N = 0xFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFEBAAEDCE6AF48A03BBFD25E8CD0364141


@dataclass(frozen=True, slots=True)
class WalletKeys:
    """Plaintext key material of a freshly generated wallet."""
    mnemonic: str = field(repr=False)
    private_key: str = field(repr=False)
    public_key: str
    address: str


def generate_mnemonic() -> str:
    """Generate a 24-word BIP-39 mnemonic from fresh OS entropy."""
    return Bip39MnemonicGenerator().FromWordsNumber(Bip39WordsNum.WORDS_NUM_24).ToStr()


def private_key_from_passphrase(passphrase: str) -> bytes:
    return hashlib.sha256(passphrase.encode("utf-8")).digest()


def public_key_from_private_key(private_key: bytes) -> bytes:
    """Compressed (33-byte) secp256k1 public key."""
    return keys.PrivateKey(private_key).public_key.to_compressed_bytes()


def address_from_public_key(public_key: bytes, version: int) -> str:
    return Base58Encoder.CheckEncode(bytes([version]) + Ripemd160.QuickDigest(public_key))


def decode_address(address: str) -> bytes:
    """Decode a Base58Check address into its 21 raw bytes (version + hash)."""
    raw = Base58Decoder.CheckDecode(address)
    if len(raw) != 21:
        raise ValueError(f"Invalid address length for {address}: {len(raw)} bytes")
    return raw


def keys_from_passphrase(passphrase: str, version: int) -> WalletKeys:
    private_key = private_key_from_passphrase(passphrase)
    public_key = public_key_from_private_key(private_key)
    return WalletKeys(
        mnemonic=passphrase,
        private_key=private_key.hex(),
        public_key=public_key.hex(),
        address=address_from_public_key(public_key, version),
    )


def generate_wallet_keys(version: int) -> WalletKeys:
    """Create a brand-new wallet; never derived from caller-supplied input."""
    return keys_from_passphrase(generate_mnemonic(), version)


def sign_hash(message_hash: bytes, private_key: bytes) -> bytes:
    """Sign a 32-byte digest with ECDSA and return a low-S DER signature."""
    signature = keys.PrivateKey(private_key).sign_msg_hash(message_hash)
    r, s = signature.r, signature.s
    if s > SECP256K1_N // 2:
        s = SECP256K1_N - s
    return encode_dss_signature(r, s)
