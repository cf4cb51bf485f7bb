"""
Stream Decoration Factory

Builds layered byte streams for note files with:
- Optional password-based encryption (AES-256-CBC, PKCS7 padding)
- PBKDF2-HMAC-SHA256 key derivation (100,000 iterations)
- Optional gzip compression (maximum level by default)

The caller only ever sees the outermost stream: plaintext goes in on
the write side and comes out on the read side. Closing that stream
closes every layer beneath it, outermost first.

File Format:
    [salt | iv | payload]

    Salt (16): PBKDF2 salt         -- only when encrypted
    IV (16):   AES-CBC IV          -- only when encrypted
    Payload:   AES-CBC(gzip(text)), AES-CBC(text), gzip(text) or text

Known weakness:
    There is no authentication tag. Corrupted ciphertext that still
    unpads correctly decrypts to wrong plaintext without an error.
    Adding a MAC would change the on-disk format.
"""

import codecs
import io
import logging
import os
import secrets
from dataclasses import dataclass
from typing import BinaryIO, Optional

from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC
from cryptography.hazmat.backends import default_backend

from .exceptions import ConfigurationError, CorruptedHeaderError
from .layers import (
    CompressingWriter, DecompressingReader,
    DecryptingReader, EncryptingWriter,
)


logger = logging.getLogger(__name__)

# Constants
SALT_SIZE = 16              # 128-bit salt
IV_SIZE = 16                # AES block size
KEY_SIZE = 32               # 256-bit AES key
HEADER_SIZE = SALT_SIZE + IV_SIZE  # Total: 32 bytes

# PBKDF2 configuration
PBKDF2_ITERATIONS = 100_000
PBKDF2_ALGORITHM = hashes.SHA256()

DEFAULT_COMPRESSION_LEVEL = 9   # zlib maximum
DEFAULT_ENCODING = "utf-8"

GZIP_MAGIC = b"\x1f\x8b"


@dataclass
class FileHeader:
    """Unencrypted header stored in front of an encrypted payload."""
    salt: bytes
    iv: bytes

    @classmethod
    def generate(cls) -> 'FileHeader':
        """Fresh random salt and IV from the OS CSPRNG."""
        return cls(salt=secrets.token_bytes(SALT_SIZE), iv=secrets.token_bytes(IV_SIZE))

    def to_bytes(self) -> bytes:
        """Serialize header to bytes."""
        return self.salt + self.iv

    @classmethod
    def from_bytes(cls, data: bytes) -> 'FileHeader':
        """
        Deserialize header from the start of a buffer.

        Raises:
            CorruptedHeaderError: If the buffer is too short
        """
        return cls.read_from(io.BytesIO(data))

    @classmethod
    def read_from(cls, stream: BinaryIO) -> 'FileHeader':
        """
        Read salt then IV from a stream positioned at the file start.

        The stream is left open; releasing it is the caller's job.

        Raises:
            CorruptedHeaderError: If fewer bytes than a field needs remain
        """
        salt = _read_exact(stream, SALT_SIZE)
        if len(salt) != SALT_SIZE:
            raise CorruptedHeaderError("salt", SALT_SIZE, len(salt))

        iv = _read_exact(stream, IV_SIZE)
        if len(iv) != IV_SIZE:
            raise CorruptedHeaderError("iv", IV_SIZE, len(iv))

        return cls(salt=salt, iv=iv)


def _read_exact(stream: BinaryIO, size: int) -> bytes:
    """Read up to size bytes, looping over short reads until EOF."""
    data = b""
    while len(data) < size:
        chunk = stream.read(size - len(data))
        if not chunk:
            break
        data += chunk
    return data


def derive_key(password: str, salt: bytes, key_length: int = KEY_SIZE,
               iterations: int = PBKDF2_ITERATIONS) -> bytes:
    """
    Derive an encryption key from a password using PBKDF2.

    Args:
        password: User password (UTF-8 encoded before hashing)
        salt: Per-file random salt
        key_length: Key size in bytes
        iterations: Number of iterations

    Returns:
        key_length-byte derived key
    """
    kdf = PBKDF2HMAC(
        algorithm=PBKDF2_ALGORITHM,
        length=key_length,
        salt=salt,
        iterations=iterations,
        backend=default_backend()
    )
    return kdf.derive(password.encode('utf-8'))


@dataclass
class StreamConfig:
    """Layer selection for one stream chain."""
    compress: bool = False
    encrypt: bool = False
    password: Optional[str] = ""
    compression_level: int = DEFAULT_COMPRESSION_LEVEL
    iterations: int = PBKDF2_ITERATIONS

    def validate(self) -> None:
        """
        Check the configuration before any file is touched.

        Raises:
            ConfigurationError: Encryption without a password, or an
                out-of-range compression level / iteration count
        """
        if self.encrypt and not self.password:
            raise ConfigurationError("Password required when encryption is requested")
        if not 0 <= self.compression_level <= 9:
            raise ConfigurationError(
                f"Compression level must be between 0 and 9, got {self.compression_level}"
            )
        if self.iterations < 1:
            raise ConfigurationError(f"Iteration count must be positive, got {self.iterations}")

    def describe(self) -> dict:
        """Log-safe summary (never includes the password)."""
        return {
            'compress': self.compress,
            'encrypt': self.encrypt,
            'compression_level': self.compression_level if self.compress else None,
            'iterations': self.iterations if self.encrypt else None,
        }


class StreamDecoratorFactory:
    """
    Opens note files through optional compression and encryption layers.

    Example:
        >>> factory = StreamDecoratorFactory(StreamConfig(compress=True, encrypt=True, password="pw"))
        >>> with factory.open_write("note.bin") as stream:
        ...     stream.write(b"remember the milk")
        >>> with factory.open_read("note.bin") as stream:
        ...     stream.read()
        b'remember the milk'
    """

    def __init__(self, config: Optional[StreamConfig] = None, event_logger=None):
        """
        Args:
            config: Layer configuration (plain file I/O when omitted)
            event_logger: Optional EventLogger receiving audit events
        """
        self._config = config or StreamConfig()
        self._event_logger = event_logger

    @property
    def config(self) -> StreamConfig:
        return self._config

    def _validate(self, path, mode: str) -> None:
        try:
            self._config.validate()
        except ConfigurationError as exc:
            logger.warning("Refusing to open %s stream: %s", mode, exc)
            if self._event_logger is not None:
                self._event_logger.log_config_rejected(path, mode, str(exc))
            raise

    def _opened(self, path, mode: str) -> None:
        logger.debug("Opened %s stream chain %s", mode, self._config.describe())
        if self._event_logger is not None:
            self._event_logger.log_stream_open(
                path, mode, self._config.compress, self._config.encrypt
            )

    def open_write(self, path) -> BinaryIO:
        """
        Create (or truncate) a file and return its outermost writable stream.

        Args:
            path: Destination file path

        Returns:
            Binary stream accepting plaintext; close it to finalize
            the cipher padding and gzip trailer

        Raises:
            ConfigurationError: Encryption requested without a password
            OSError: The file cannot be created
        """
        config = self._config
        self._validate(path, "write")

        raw = open(path, 'wb')
        current = raw
        try:
            if config.encrypt:
                header = FileHeader.generate()
                # Header must be on disk before any ciphertext
                raw.write(header.to_bytes())
                raw.flush()

                key = derive_key(config.password, header.salt, KEY_SIZE, config.iterations)
                current = EncryptingWriter(raw, key, header.iv)

            if config.compress:
                current = CompressingWriter(current, config.compression_level)

            stream = raw if current is raw else io.BufferedWriter(current)
        except BaseException:
            current.close()
            raise

        self._opened(path, "write")
        return stream

    def open_read(self, path) -> BinaryIO:
        """
        Open a file and return its outermost readable stream.

        Wrong passwords are not detected here: the cipher layer raises
        CryptographicError once the padded tail is read.

        Raises:
            ConfigurationError: Decryption requested without a password
            OSError: The file cannot be opened
            CorruptedHeaderError: Salt or IV is truncated
        """
        config = self._config
        self._validate(path, "read")

        raw = open(path, 'rb')
        current = raw
        try:
            if config.encrypt:
                try:
                    header = FileHeader.read_from(raw)
                except CorruptedHeaderError as exc:
                    logger.warning("Corrupted header: %s", exc)
                    if self._event_logger is not None:
                        self._event_logger.log_header_corrupted(path, exc.field)
                    raise

                key = derive_key(config.password, header.salt, KEY_SIZE, config.iterations)
                current = DecryptingReader(raw, key, header.iv)

            if config.compress:
                current = DecompressingReader(current)

            stream = raw if current is raw else io.BufferedReader(current)
        except BaseException:
            current.close()
            raise

        self._opened(path, "read")
        return stream

    def write_text(self, path, text: str, encoding: str = DEFAULT_ENCODING) -> None:
        """Write a note's text through the stream chain."""
        with self.open_write(path) as stream:
            stream.write(text.encode(encoding))

    def read_text(self, path, encoding: Optional[str] = None) -> str:
        """
        Read a note's text back through the stream chain.

        A leading byte order mark selects the encoding and is dropped;
        without one, ``encoding`` (UTF-8 by default) is used. Undecodable
        bytes become U+FFFD rather than raising.
        """
        with self.open_read(path) as stream:
            data = stream.read()

        bom_encoding, bom_length = _detect_bom(data)
        if bom_encoding is not None:
            return data[bom_length:].decode(bom_encoding, errors="replace")
        return data.decode(encoding or DEFAULT_ENCODING, errors="replace")


def _detect_bom(data: bytes):
    """Return (encoding, bom_length) for a leading BOM, else (None, 0)."""
    # UTF-32 LE must be checked before UTF-16 LE (shared prefix)
    for bom, encoding in (
        (codecs.BOM_UTF8, 'utf-8'),
        (codecs.BOM_UTF32_LE, 'utf-32-le'),
        (codecs.BOM_UTF32_BE, 'utf-32-be'),
        (codecs.BOM_UTF16_LE, 'utf-16-le'),
        (codecs.BOM_UTF16_BE, 'utf-16-be'),
    ):
        if data.startswith(bom):
            return encoding, len(bom)
    return None, 0


# Convenience functions

def open_write_decorated(path, compress: bool = False, encrypt: bool = False,
                         password: Optional[str] = "", event_logger=None,
                         **options) -> BinaryIO:
    """Open a decorated write stream (see StreamDecoratorFactory.open_write)."""
    config = StreamConfig(compress=compress, encrypt=encrypt, password=password, **options)
    return StreamDecoratorFactory(config, event_logger).open_write(path)


def open_read_decorated(path, compress: bool = False, encrypt: bool = False,
                        password: Optional[str] = "", event_logger=None,
                        **options) -> BinaryIO:
    """Open a decorated read stream (see StreamDecoratorFactory.open_read)."""
    config = StreamConfig(compress=compress, encrypt=encrypt, password=password, **options)
    return StreamDecoratorFactory(config, event_logger).open_read(path)


def write_note(path, text: str, compress: bool = False, encrypt: bool = False,
               password: Optional[str] = "", encoding: str = DEFAULT_ENCODING,
               event_logger=None, **options) -> None:
    """Write note text to path. The parent directory must already exist."""
    config = StreamConfig(compress=compress, encrypt=encrypt, password=password, **options)
    StreamDecoratorFactory(config, event_logger).write_text(path, text, encoding)


def read_note(path, compress: bool = False, encrypt: bool = False,
              password: Optional[str] = "", encoding: Optional[str] = None,
              event_logger=None, **options) -> str:
    """Read note text from path."""
    config = StreamConfig(compress=compress, encrypt=encrypt, password=password, **options)
    return StreamDecoratorFactory(config, event_logger).read_text(path, encoding)


def get_file_info(path) -> dict:
    """
    Get information about a note file without decrypting it.

    Whether a file is encrypted is not recorded anywhere, so the
    result only says what the layout permits.

    Args:
        path: Path to the note file

    Returns:
        Dict with size, header fields (if long enough) and layout hints
    """
    size = os.path.getsize(path)
    with open(path, 'rb') as f:
        prefix = f.read(HEADER_SIZE)

    info = {
        'size': size,
        'gzip_magic': prefix.startswith(GZIP_MAGIC),
        'header_possible': False,
        'salt': None,
        'iv': None,
        'payload_size': size,
    }

    payload_size = size - HEADER_SIZE
    # Smallest CBC payload is one padded block
    if payload_size > 0 and payload_size % IV_SIZE == 0:
        header = FileHeader.from_bytes(prefix)
        info.update({
            'header_possible': True,
            'salt': header.salt.hex(),
            'iv': header.iv.hex(),
            'payload_size': payload_size,
        })
    return info
