# NoteVault
"""
Note storage with optional compression and password-based encryption.

Modules:
- files: decorated note streams (gzip, AES-256-CBC, salt/IV header)
- integration: audit event logging
"""

__version__ = "1.0.0"
