"""
Key management for nostr identities.

Converts between npub, nsec and hex public keys. Secret keys are returned as
bytearray so callers can zero them with clear_secret_key once done; str
values never carry secret material.
"""

import logging
import re
from dataclasses import dataclass
from typing import Optional

import bech32

from common.exceptions import InvalidFormatError, InvalidKeyFormatError
from security.nip44 import xonly_public_key

logger = logging.getLogger(__name__)

NPUB_PREFIX = "npub"
NSEC_PREFIX = "nsec"

_HEX_PUBKEY_RE = re.compile(r"^[0-9a-fA-F]{64}$")


def _decode_bech32(value: str) -> tuple[str, bytes]:
    """
    Decode a NIP-19 bech32 string into (prefix, payload bytes).

    Raises:
        InvalidFormatError: If the checksum or payload is invalid
    """
    hrp, words = bech32.bech32_decode(value)
    if hrp is None or words is None:
        raise InvalidFormatError("Invalid bech32 string")
    data = bech32.convertbits(words, 5, 8, False)
    if data is None or len(data) != 32:
        raise InvalidFormatError(f"Invalid {hrp} payload length")
    return hrp, bytes(data)


def nsec_to_secret_key(nsec: str) -> bytearray:
    """
    Decode an nsec string to raw secret key bytes.

    Raises:
        InvalidFormatError: If the string is not an nsec
    """
    hrp, data = _decode_bech32(nsec)
    if hrp != NSEC_PREFIX:
        raise InvalidFormatError("Invalid nsec format")
    return bytearray(data)


def npub_to_public_key(npub: str) -> str:
    """
    Decode an npub string to a hex public key.

    Raises:
        InvalidFormatError: If the string is not an npub
    """
    hrp, data = _decode_bech32(npub)
    if hrp != NPUB_PREFIX:
        raise InvalidFormatError("Invalid npub format")
    return data.hex()


def get_public_key_from_secret(secret_key: bytes) -> str:
    """Derive the hex public key for a secret key."""
    return xonly_public_key(bytes(secret_key))


def public_key_to_npub(pubkey_hex: str) -> str:
    """Encode a hex public key as npub."""
    words = bech32.convertbits(bytes.fromhex(pubkey_hex), 8, 5, True)
    return bech32.bech32_encode(NPUB_PREFIX, words)


def secret_key_to_nsec(secret_key: bytes) -> str:
    """Encode raw secret key bytes as nsec."""
    words = bech32.convertbits(bytes(secret_key), 8, 5, True)
    return bech32.bech32_encode(NSEC_PREFIX, words)


def clear_secret_key(secret_key: bytearray) -> None:
    """Overwrite a secret key buffer with zeros."""
    for i in range(len(secret_key)):
        secret_key[i] = 0


def is_valid_npub(value: str) -> bool:
    if not value.startswith(NPUB_PREFIX + "1"):
        return False
    try:
        npub_to_public_key(value)
    except InvalidFormatError:
        return False
    return True


def is_valid_nsec(value: str) -> bool:
    if not value.startswith(NSEC_PREFIX + "1"):
        return False
    try:
        secret = nsec_to_secret_key(value)
    except InvalidFormatError:
        return False
    clear_secret_key(secret)
    return True


def is_valid_hex_pubkey(value: str) -> bool:
    """True iff value is exactly 64 hex characters."""
    return bool(_HEX_PUBKEY_RE.match(value))


@dataclass
class NormalizedKey:
    """
    Result of normalize_to_public_key.

    Usable as a context manager; leaving the block zeroes secret_key.
    """
    pubkey: str
    secret_key: Optional[bytearray] = None

    def clear(self) -> None:
        if self.secret_key is not None:
            clear_secret_key(self.secret_key)

    def __enter__(self) -> 'NormalizedKey':
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.clear()


def normalize_to_public_key(value: str) -> NormalizedKey:
    """
    Normalize npub, nsec or hex input to a hex public key.

    For nsec input the decoded secret is returned too; the caller owns it and
    must clear it after use.

    Raises:
        InvalidKeyFormatError: If the input matches none of the accepted forms
    """
    trimmed = value.strip()

    if is_valid_npub(trimmed):
        return NormalizedKey(pubkey=npub_to_public_key(trimmed))

    if is_valid_nsec(trimmed):
        secret_key = nsec_to_secret_key(trimmed)
        try:
            pubkey = get_public_key_from_secret(secret_key)
        except ValueError as e:
            clear_secret_key(secret_key)
            raise InvalidKeyFormatError(f"Invalid secret key: {e}") from e
        logger.debug(f"Derived public key {pubkey[:8]}... from nsec input")
        return NormalizedKey(pubkey=pubkey, secret_key=secret_key)

    if is_valid_hex_pubkey(trimmed):
        return NormalizedKey(pubkey=trimmed.lower())

    raise InvalidKeyFormatError("Invalid key format. Use npub, nsec, or hex public key.")
