"""Custom exception classes for key handling, record resolution and reconstruction."""


class NostrSaveError(Exception):
    """
    Base exception class for all nostrsave-related errors.
    """
    pass


class InvalidFormatError(NostrSaveError):
    """
    Raised when a bech32 key decodes to a different kind than expected.
    """
    pass


class InvalidKeyFormatError(NostrSaveError):
    """
    Raised when input is not an npub, an nsec or a 64-char hex public key.
    """
    pass


class UnsupportedVersionError(NostrSaveError):
    """
    Raised when an index or manifest declares a schema version other than 2.
    """

    def __init__(self, record_type: str, version):
        self.record_type = record_type
        self.version = version
        super().__init__(
            f"Unsupported {record_type} version {version}. Only version 2 is supported."
        )


class ParseFailureError(NostrSaveError):
    """
    Raised when a record payload is not valid JSON or misses required fields.
    """
    pass


class StoredFileNotFoundError(NostrSaveError):
    """
    Raised when a file hash is absent from the current index and every archive page.
    """
    pass


class ManifestNotFoundError(NostrSaveError):
    """
    Raised when no relay returns a manifest for a file hash.
    """
    pass


class IncompleteFileError(NostrSaveError):
    """
    Raised when fewer chunks were retrieved than the manifest declares.
    """

    def __init__(self, fetched: int, total: int):
        self.fetched = fetched
        self.total = total
        super().__init__(f"Retrieved {fetched} of {total} chunks")


class DecryptionFailedError(NostrSaveError):
    """
    Raised when a payload cannot be decrypted or decoded.
    """
    pass


class SecretKeyRequiredError(DecryptionFailedError):
    """
    Raised when an encrypted chunk is reconstructed without a secret key.
    """
    pass


class ChecksumMismatchError(NostrSaveError):
    """
    Raised when reassembled bytes do not hash to the requested file hash.
    """
    pass


class RelayError(NostrSaveError):
    """
    Raised when a relay connection cannot be used.
    """
    pass
