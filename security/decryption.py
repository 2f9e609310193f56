"""NIP-44 chunk decryption using self-encryption (same key pair on both sides)."""

import base64
import binascii

from common.exceptions import DecryptionFailedError
from security import nip44


def _decrypt_to_str(ciphertext: str, secret_key: bytes, pubkey: str) -> str:
    try:
        conversation_key = nip44.get_conversation_key(bytes(secret_key), pubkey)
    except ValueError as e:
        raise DecryptionFailedError(f"Cannot derive conversation key: {e}") from e
    return nip44.decrypt(ciphertext, conversation_key)


def decrypt_chunk(ciphertext: str, secret_key: bytes, pubkey: str) -> bytes:
    """
    Decrypt a chunk and return the UTF-8 bytes of the plaintext.

    Args:
        ciphertext: NIP-44 payload
        secret_key: 32-byte secret key
        pubkey: Hex public key matching secret_key

    Raises:
        DecryptionFailedError: On wrong key or corrupted payload
    """
    return _decrypt_to_str(ciphertext, secret_key, pubkey).encode("utf-8")


def decrypt_chunk_binary(ciphertext: str, secret_key: bytes, pubkey: str) -> bytes:
    """
    Decrypt a chunk whose plaintext is base64 of binary data.

    Raises:
        DecryptionFailedError: On wrong key, corrupted payload or malformed base64
    """
    return base64_to_bytes(_decrypt_to_str(ciphertext, secret_key, pubkey))


def base64_to_bytes(value: str) -> bytes:
    """Strict base64 decode; malformed input raises DecryptionFailedError."""
    try:
        return base64.b64decode(value, validate=True)
    except (binascii.Error, ValueError) as e:
        raise DecryptionFailedError(f"Malformed base64 chunk data: {e}") from e
