# File Streams Module
"""
Decorated note streams including:
- PBKDF2-HMAC-SHA256 key derivation (100,000 iterations)
- AES-256-CBC encryption with PKCS7 padding
- gzip (DEFLATE) compression
- Unencrypted salt + IV header for later decryption

Layer order (outermost first):
    compression -> encryption -> raw file
"""

# Lazy imports to avoid RuntimeWarning when running module directly
def __getattr__(name):
    """Lazy import to avoid circular import issues when running module directly."""
    if name in ('StreamError', 'ConfigurationError', 'CorruptedHeaderError',
                'CryptographicError', 'DataFormatError'):
        from . import exceptions
        return getattr(exceptions, name)
    from . import stream_factory
    return getattr(stream_factory, name)

__all__ = [
    'StreamDecoratorFactory',
    'StreamConfig',
    'FileHeader',
    'open_write_decorated',
    'open_read_decorated',
    'write_note',
    'read_note',
    'get_file_info',
    'derive_key',
    'StreamError',
    'ConfigurationError',
    'CorruptedHeaderError',
    'CryptographicError',
    'DataFormatError',
    'PBKDF2_ITERATIONS',
    'HEADER_SIZE',
]
