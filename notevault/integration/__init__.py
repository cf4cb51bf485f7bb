# Integration Module
"""
Audit logging for note stream operations.

All events are logged with privacy-preserving path hashes.
"""

# Lazy imports to avoid RuntimeWarning when running module directly
def __getattr__(name):
    """Lazy import to avoid circular import issues."""
    from . import event_logger
    return getattr(event_logger, name)

__all__ = [
    'EventType',
    'SecurityEvent',
    'EventLogger',
    'get_path_hash',
    'create_event_logger',
]
