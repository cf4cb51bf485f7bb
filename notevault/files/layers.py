"""
Stream Layers

Owning byte-stream decorators used to build a note stream chain:
- EncryptingWriter / DecryptingReader: AES-CBC with PKCS7 padding
- CompressingWriter / DecompressingReader: DEFLATE in a gzip container

Ownership:
    Every layer exclusively owns the stream it wraps. Closing a layer
    finalizes it (final cipher block, gzip trailer) and then closes the
    wrapped stream exactly once, even if finalization fails.

    raw file  <-  EncryptingWriter  <-  CompressingWriter  <-  caller
"""

import io
import logging
import zlib
from typing import BinaryIO, Optional

from cryptography.hazmat.primitives import padding
from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes
from cryptography.hazmat.backends import default_backend

from .exceptions import CryptographicError, DataFormatError


logger = logging.getLogger(__name__)

# Constants
DEFAULT_CHUNK_SIZE = 64 * 1024          # 64 KiB reads from the inner stream
BLOCK_SIZE_BITS = algorithms.AES.block_size  # 128
GZIP_WBITS = 16 + zlib.MAX_WBITS        # zlib with gzip header/trailer


class OwningLayer(io.RawIOBase):
    """
    Base class for a stream layer that owns the stream it wraps.

    Subclasses put trailing output in _finalize(); close() guarantees
    the inner stream is closed afterwards on every exit path.
    """

    def __init__(self, inner: BinaryIO):
        super().__init__()
        self._inner = inner
        self._finalized = False

    @property
    def inner(self) -> BinaryIO:
        """The wrapped stream (owned by this layer)."""
        return self._inner

    def _ensure_open(self) -> None:
        if self.closed:
            raise ValueError("I/O operation on closed stream")

    def _finalize(self) -> None:
        """Write any trailing data to the inner stream."""

    def flush(self) -> None:
        super().flush()
        if self.writable() and not self._finalized:
            self._inner.flush()

    def close(self) -> None:
        if self.closed:
            return
        try:
            if not self._finalized:
                self._finalized = True
                self._finalize()
        finally:
            try:
                self._inner.close()
            finally:
                super().close()


class EncryptingWriter(OwningLayer):
    """
    AES-CBC encrypting layer with PKCS7 padding.

    Only whole blocks reach the inner stream while writing; the final
    padded block is written on close.
    """

    def __init__(self, inner: BinaryIO, key: bytes, iv: bytes):
        """
        Args:
            inner: Writable stream positioned after the header
            key: AES key (16, 24 or 32 bytes)
            iv: 16-byte initialization vector
        """
        super().__init__(inner)
        cipher = Cipher(algorithms.AES(key), modes.CBC(iv), backend=default_backend())
        self._encryptor = cipher.encryptor()
        self._padder = padding.PKCS7(BLOCK_SIZE_BITS).padder()

    def writable(self) -> bool:
        return True

    def write(self, b) -> int:
        self._ensure_open()
        data = bytes(b)
        ciphertext = self._encryptor.update(self._padder.update(data))
        if ciphertext:
            self._inner.write(ciphertext)
        return len(data)

    def _finalize(self) -> None:
        tail = self._encryptor.update(self._padder.finalize())
        tail += self._encryptor.finalize()
        self._inner.write(tail)
        self._inner.flush()


class DecryptingReader(OwningLayer):
    """
    AES-CBC decrypting layer with PKCS7 unpadding.

    The unpadder holds back the last block until the inner stream hits
    EOF, so a wrong password or truncated ciphertext is only reported
    when the tail is consumed.
    """

    def __init__(self, inner: BinaryIO, key: bytes, iv: bytes,
                 chunk_size: int = DEFAULT_CHUNK_SIZE):
        super().__init__(inner)
        cipher = Cipher(algorithms.AES(key), modes.CBC(iv), backend=default_backend())
        self._decryptor = cipher.decryptor()
        self._unpadder = padding.PKCS7(BLOCK_SIZE_BITS).unpadder()
        self._chunk_size = chunk_size
        self._buffer = bytearray()
        self._eof = False
        self._failed = False

    def readable(self) -> bool:
        return True

    def readinto(self, b) -> int:
        self._ensure_open()
        while not self._buffer and not self._eof:
            self._fill()
        n = min(len(b), len(self._buffer))
        b[:n] = self._buffer[:n]
        del self._buffer[:n]
        return n

    def drain(self) -> None:
        """
        Consume and discard the rest of the ciphertext.

        Raises:
            CryptographicError: If the final block has invalid padding
        """
        self._ensure_open()
        self._buffer.clear()
        while not self._eof:
            self._fill()
            self._buffer.clear()

    def _fill(self) -> None:
        if self._failed:
            raise CryptographicError("Decryption already failed on this stream")
        chunk = self._inner.read(self._chunk_size)
        try:
            if chunk:
                self._buffer += self._unpadder.update(self._decryptor.update(chunk))
            else:
                self._eof = True
                self._buffer += self._unpadder.update(self._decryptor.finalize())
                self._buffer += self._unpadder.finalize()
        except ValueError as exc:
            self._failed = True
            self._eof = False
            self._buffer.clear()
            logger.warning("Decryption failed at end of ciphertext: %s", exc)
            raise CryptographicError(
                "Decryption failed - wrong password or corrupted data"
            ) from exc


class CompressingWriter(OwningLayer):
    """DEFLATE compressing layer producing a single gzip member."""

    def __init__(self, inner: BinaryIO, level: int = zlib.Z_BEST_COMPRESSION):
        super().__init__(inner)
        self._compressor = zlib.compressobj(level, zlib.DEFLATED, GZIP_WBITS)

    def writable(self) -> bool:
        return True

    def write(self, b) -> int:
        self._ensure_open()
        data = bytes(b)
        compressed = self._compressor.compress(data)
        if compressed:
            self._inner.write(compressed)
        return len(data)

    def _finalize(self) -> None:
        self._inner.write(self._compressor.flush())
        self._inner.flush()


class DecompressingReader(OwningLayer):
    """
    Gzip decompressing layer.

    Concatenated gzip members are decoded back to back. An inner stream
    with no bytes at all decodes to nothing; anything else that is not
    a complete gzip stream raises DataFormatError.
    """

    def __init__(self, inner: BinaryIO, chunk_size: int = DEFAULT_CHUNK_SIZE):
        super().__init__(inner)
        self._chunk_size = chunk_size
        self._decompressor = zlib.decompressobj(GZIP_WBITS)
        self._member_open = False
        self._eof = False

    def readable(self) -> bool:
        return True

    def readinto(self, b) -> int:
        self._ensure_open()
        size = len(b)
        if size == 0:
            return 0
        data = b""
        while not data and not self._eof:
            data = self._next_output(size)
        n = len(data)
        b[:n] = data
        return n

    def _next_output(self, size: int) -> bytes:
        if self._decompressor.eof:
            # Member complete; anything left over starts the next member
            pending = self._decompressor.unused_data or self._inner.read(self._chunk_size)
            if not pending:
                self._eof = True
                return b""
            self._decompressor = zlib.decompressobj(GZIP_WBITS)
            return self._decompress(pending, size)

        pending = self._decompressor.unconsumed_tail
        if not pending:
            pending = self._inner.read(self._chunk_size)
            if not pending:
                if self._member_open:
                    self._fail(None, "Compressed stream ended unexpectedly")
                self._eof = True
                return b""
        return self._decompress(pending, size)

    def _decompress(self, data: bytes, size: int) -> bytes:
        self._member_open = True
        try:
            return self._decompressor.decompress(data, size)
        except zlib.error as exc:
            self._fail(exc, "Invalid compressed data")

    def _fail(self, exc: Optional[Exception], message: str) -> None:
        # A wrong password yields garbage here before the cipher sees its
        # padding; let the cipher layer report that first.
        if isinstance(self._inner, DecryptingReader):
            self._inner.drain()
        logger.warning("Decompression failed: %s", message)
        raise DataFormatError(message) from exc
