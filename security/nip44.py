"""
NIP-44 v2 payload encryption over secp256k1.

Conversation keys come from an ECDH x-coordinate run through HKDF-extract;
each message derives ChaCha20 and HMAC keys from a random 32-byte nonce.
"""

import base64
import binascii
import math
import os
import struct

from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives import hashes, hmac
from cryptography.hazmat.primitives.asymmetric import ec
from cryptography.hazmat.primitives.ciphers import Cipher, algorithms
from cryptography.hazmat.primitives.kdf.hkdf import HKDFExpand

from common.exceptions import DecryptionFailedError

VERSION = 2
SALT = b"nip44-v2"
MIN_PLAINTEXT_SIZE = 1
MAX_PLAINTEXT_SIZE = 0xFFFF


def _hmac_sha256(key: bytes, *parts: bytes) -> bytes:
    mac = hmac.HMAC(key, hashes.SHA256())
    for part in parts:
        mac.update(part)
    return mac.finalize()


def load_private_key(secret_key: bytes) -> ec.EllipticCurvePrivateKey:
    """
    Build a secp256k1 private key from 32 raw bytes.

    Raises:
        ValueError: If the scalar is zero or not below the curve order
    """
    if len(secret_key) != 32:
        raise ValueError("secret key must be 32 bytes")
    return ec.derive_private_key(int.from_bytes(secret_key, "big"), ec.SECP256K1())


def load_xonly_public_key(pubkey_hex: str) -> ec.EllipticCurvePublicKey:
    """Lift a 32-byte x-only public key to the point with even y."""
    raw = bytes.fromhex(pubkey_hex)
    if len(raw) != 32:
        raise ValueError("public key must be 32 bytes")
    return ec.EllipticCurvePublicKey.from_encoded_point(ec.SECP256K1(), b"\x02" + raw)


def xonly_public_key(secret_key: bytes) -> str:
    """Hex x-only public key for a raw secret key."""
    numbers = load_private_key(secret_key).public_key().public_numbers()
    return numbers.x.to_bytes(32, "big").hex()


def get_conversation_key(secret_key: bytes, pubkey_hex: str) -> bytes:
    """
    Derive the symmetric conversation key shared by (secret_key, pubkey).

    Args:
        secret_key: 32-byte secp256k1 secret
        pubkey_hex: 64-char hex x-only public key of the other party

    Returns:
        32-byte conversation key
    """
    private_key = load_private_key(secret_key)
    shared_x = private_key.exchange(ec.ECDH(), load_xonly_public_key(pubkey_hex))
    return _hmac_sha256(SALT, shared_x)


def _message_keys(conversation_key: bytes, nonce: bytes) -> tuple[bytes, bytes, bytes]:
    keys = HKDFExpand(algorithm=hashes.SHA256(), length=76, info=nonce).derive(conversation_key)
    return keys[0:32], keys[32:44], keys[44:76]


def calc_padded_len(unpadded_len: int) -> int:
    """Padded plaintext length for a message of unpadded_len bytes."""
    if unpadded_len <= 32:
        return 32
    next_power = 1 << (math.floor(math.log2(unpadded_len - 1)) + 1)
    chunk = 32 if next_power <= 256 else next_power // 8
    return chunk * ((unpadded_len - 1) // chunk + 1)


def _pad(plaintext: str) -> bytes:
    raw = plaintext.encode("utf-8")
    if not MIN_PLAINTEXT_SIZE <= len(raw) <= MAX_PLAINTEXT_SIZE:
        raise ValueError("invalid plaintext length")
    padding = b"\x00" * (calc_padded_len(len(raw)) - len(raw))
    return struct.pack(">H", len(raw)) + raw + padding


def _unpad(padded: bytes) -> str:
    unpadded_len = struct.unpack(">H", padded[:2])[0]
    unpadded = padded[2:2 + unpadded_len]
    if (
        unpadded_len < MIN_PLAINTEXT_SIZE
        or len(unpadded) != unpadded_len
        or len(padded) != 2 + calc_padded_len(unpadded_len)
    ):
        raise DecryptionFailedError("invalid padding")
    return unpadded.decode("utf-8")


def _chacha20(key: bytes, nonce: bytes, data: bytes) -> bytes:
    # cryptography takes a 16-byte nonce: 4-byte little-endian counter, then the 12-byte nonce
    cipher = Cipher(algorithms.ChaCha20(key, b"\x00\x00\x00\x00" + nonce), mode=None)
    return cipher.encryptor().update(data)


def encrypt(plaintext: str, conversation_key: bytes, nonce: bytes | None = None) -> str:
    """
    Encrypt plaintext into a base64 NIP-44 v2 payload.

    Args:
        plaintext: UTF-8 text between 1 and 65535 bytes
        conversation_key: Key from get_conversation_key
        nonce: Optional fixed 32-byte nonce (random when omitted)

    Returns:
        Base64 payload string
    """
    nonce = nonce if nonce is not None else os.urandom(32)
    chacha_key, chacha_nonce, hmac_key = _message_keys(conversation_key, nonce)
    ciphertext = _chacha20(chacha_key, chacha_nonce, _pad(plaintext))
    mac = _hmac_sha256(hmac_key, nonce, ciphertext)
    return base64.b64encode(bytes([VERSION]) + nonce + ciphertext + mac).decode("ascii")


def decrypt(payload: str, conversation_key: bytes) -> str:
    """
    Decrypt a base64 NIP-44 v2 payload.

    Raises:
        DecryptionFailedError: On unknown version, bad length, MAC mismatch or bad padding
    """
    if not payload or payload[0] == "#":
        raise DecryptionFailedError("unknown encryption version")
    if not 132 <= len(payload) <= 87472:
        raise DecryptionFailedError(f"invalid payload length: {len(payload)}")

    try:
        data = base64.b64decode(payload, validate=True)
    except (binascii.Error, ValueError) as e:
        raise DecryptionFailedError(f"invalid base64 payload: {e}") from e

    if not 99 <= len(data) <= 65603:
        raise DecryptionFailedError(f"invalid data length: {len(data)}")
    if data[0] != VERSION:
        raise DecryptionFailedError(f"unknown encryption version {data[0]}")

    nonce, ciphertext, mac = data[1:33], data[33:-32], data[-32:]
    chacha_key, chacha_nonce, hmac_key = _message_keys(conversation_key, nonce)

    verifier = hmac.HMAC(hmac_key, hashes.SHA256())
    verifier.update(nonce)
    verifier.update(ciphertext)
    try:
        verifier.verify(mac)
    except InvalidSignature as e:
        raise DecryptionFailedError("invalid MAC") from e

    try:
        return _unpad(_chacha20(chacha_key, chacha_nonce, ciphertext))
    except UnicodeDecodeError as e:
        raise DecryptionFailedError("decrypted payload is not UTF-8") from e
