"""
Exception hierarchy for the encrypted search history store.
"""


class HistoryError(Exception):
    """Base exception for history store operations"""
    pass


class CryptoError(HistoryError):
    """Base exception for key derivation, envelope and cipher failures"""
    pass


class ValidationError(CryptoError, ValueError):
    """Raised for malformed caller input (empty identifier, non-list results, ...)"""
    pass


class FormatError(CryptoError):
    """
    Raised when an envelope or decrypted payload fails structural checks.

    Attributes:
        check: name of the first failing check
    """

    def __init__(self, check: str, message: str):
        super().__init__(message)
        self.check = check


class DecryptionError(CryptoError):
    """Raised when authenticated decryption fails (wrong identifier or tampered data)"""
    pass


class DatastoreError(HistoryError):
    """Raised when the backing table rejects a read, write or delete"""
    pass
