"""
Stream Errors

Error taxonomy for decorated note streams:
- ConfigurationError: encryption requested without a password
- CorruptedHeaderError: salt/IV header shorter than required
- CryptographicError: invalid final padding block on decrypt
- DataFormatError: compressed payload is not valid gzip data

File system failures are not wrapped; they surface as the builtin
OSError family (FileNotFoundError, PermissionError, ...).
"""


class StreamError(ValueError):
    """Base class for all decorated stream failures."""


class ConfigurationError(StreamError):
    """Invalid stream configuration, detected before any I/O."""


class CorruptedHeaderError(StreamError):
    """The unencrypted salt/IV header is missing or truncated."""

    def __init__(self, field: str, expected: int = 0, got: int = 0):
        self.field = field
        self.expected = expected
        self.got = got
        message = f"File header ({field}) is missing or corrupted"
        if expected:
            message += f": expected {expected} bytes, got {got}"
        super().__init__(message)


class CryptographicError(StreamError):
    """
    Decryption failed on the final block.

    Raised for a wrong password and for truncated or corrupted
    ciphertext alike; CBC without an authentication tag cannot
    tell the two apart.
    """


class DataFormatError(StreamError):
    """Compressed payload is corrupted or was never compressed."""
