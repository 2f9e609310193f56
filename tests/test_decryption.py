"""Tests for NIP-44 payloads and the chunk decryption helpers."""

import base64

import pytest

from common.exceptions import DecryptionFailedError
from conftest import OTHER_PUBKEY_HEX, OTHER_SECRET_KEY_HEX, PUBKEY_HEX, SECRET_KEY_HEX, encrypt_chunk
from security import nip44
from security.decryption import base64_to_bytes, decrypt_chunk, decrypt_chunk_binary


def _self_key() -> bytes:
    return nip44.get_conversation_key(bytes.fromhex(SECRET_KEY_HEX), PUBKEY_HEX)


class TestConversationKey:

    def test_is_symmetric_between_two_parties(self):
        ab = nip44.get_conversation_key(bytes.fromhex(SECRET_KEY_HEX), OTHER_PUBKEY_HEX)
        ba = nip44.get_conversation_key(bytes.fromhex(OTHER_SECRET_KEY_HEX), PUBKEY_HEX)

        assert ab == ba
        assert len(ab) == 32

    def test_differs_for_self_encryption(self):
        assert _self_key() != nip44.get_conversation_key(bytes.fromhex(SECRET_KEY_HEX), OTHER_PUBKEY_HEX)


class TestPadding:

    @pytest.mark.parametrize("unpadded,padded", [
        (1, 32), (32, 32), (33, 64), (64, 64), (65, 96), (100, 128),
        (200, 224), (320, 320), (515, 640), (1020, 1024), (65535, 65536),
    ])
    def test_calc_padded_len(self, unpadded, padded):
        assert nip44.calc_padded_len(unpadded) == padded


class TestPayload:

    def test_encrypt_then_decrypt(self):
        key = _self_key()
        payload = nip44.encrypt("hello nostr", key)

        assert base64.b64decode(payload)[0] == 2
        assert nip44.decrypt(payload, key) == "hello nostr"

    def test_fixed_nonce_is_deterministic(self):
        key = _self_key()
        nonce = bytes(31) + b"\x01"

        assert nip44.encrypt("a", key, nonce=nonce) == nip44.encrypt("a", key, nonce=nonce)

    def test_tampered_ciphertext_fails_mac(self):
        key = _self_key()
        raw = bytearray(base64.b64decode(nip44.encrypt("hello nostr", key)))
        raw[40] ^= 0x01

        with pytest.raises(DecryptionFailedError, match="MAC"):
            nip44.decrypt(base64.b64encode(bytes(raw)).decode(), key)

    def test_wrong_key_fails(self):
        payload = nip44.encrypt("hello nostr", _self_key())
        other = nip44.get_conversation_key(bytes.fromhex(OTHER_SECRET_KEY_HEX), OTHER_PUBKEY_HEX)

        with pytest.raises(DecryptionFailedError):
            nip44.decrypt(payload, other)

    def test_hash_prefixed_payload_is_unknown_version(self):
        with pytest.raises(DecryptionFailedError, match="version"):
            nip44.decrypt("#" + "A" * 200, _self_key())

    def test_short_payload_is_rejected(self):
        with pytest.raises(DecryptionFailedError, match="length"):
            nip44.decrypt("AgAA", _self_key())


class TestChunkDecryption:

    def test_binary_chunk_round_trips_bytes(self, secret_key):
        data = bytes(range(256))

        assert decrypt_chunk_binary(encrypt_chunk(data), secret_key, PUBKEY_HEX) == data

    def test_text_and_binary_entry_points_agree(self, secret_key):
        data = b"\x00\x01binary\xff"
        ciphertext = encrypt_chunk(data)

        as_text = decrypt_chunk(ciphertext, secret_key, PUBKEY_HEX)

        assert base64.b64decode(as_text) == decrypt_chunk_binary(ciphertext, secret_key, PUBKEY_HEX)

    def test_text_entry_point_returns_utf8(self, secret_key):
        ciphertext = nip44.encrypt("grüße", _self_key())

        assert decrypt_chunk(ciphertext, secret_key, PUBKEY_HEX) == "grüße".encode("utf-8")

    def test_non_base64_plaintext_fails_binary_decode(self, secret_key):
        ciphertext = nip44.encrypt("not base64!", _self_key())

        with pytest.raises(DecryptionFailedError, match="base64"):
            decrypt_chunk_binary(ciphertext, secret_key, PUBKEY_HEX)

    def test_wrong_secret_key_fails(self):
        ciphertext = encrypt_chunk(b"data")

        with pytest.raises(DecryptionFailedError):
            decrypt_chunk_binary(ciphertext, bytes.fromhex(OTHER_SECRET_KEY_HEX), PUBKEY_HEX)

    def test_invalid_pubkey_fails(self, secret_key):
        with pytest.raises(DecryptionFailedError):
            decrypt_chunk(encrypt_chunk(b"data"), secret_key, "ff" * 32)


def test_base64_to_bytes_is_strict():
    with pytest.raises(DecryptionFailedError):
        base64_to_bytes("abc$")
