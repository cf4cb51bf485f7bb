"""
Event Logger Module

Audit trail for note stream operations.
Every chain the stream factory opens (or refuses to open) is recorded
as a security event and mirrored to the standard logging system.

Features:
- Stream open events (read / write) with the layer configuration
- Rejected configurations (encryption without a password)
- Corrupted header detection
- Privacy-preserving path hashes (SHA-256), never plaintext paths
- JSON export / import of the audit log

Passwords, keys and note contents are never part of an event.
"""

import hashlib
import json
import logging
import os
import threading
import time
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Optional, List, Dict, Any, Callable


logger = logging.getLogger(__name__)


# ============================================================================
# Constants
# ============================================================================

EVENT_VERSION = "1.0"
SYSTEM_PATH_HASH = "system"


# ============================================================================
# Privacy Functions
# ============================================================================

def get_path_hash(path) -> str:
    """
    Compute privacy-preserving hash of a file path.

    Paths often contain user names and note titles, so only the
    SHA-256 of the path is stored. Events for the same file can still
    be correlated.

    Args:
        path: str or os.PathLike

    Returns:
        Hex-encoded SHA-256 hash of the path
    """
    return hashlib.sha256(os.fspath(path).encode("utf-8")).hexdigest()


def get_path_hash_short(path) -> str:
    """First 16 hex characters of the path hash, for display."""
    return get_path_hash(path)[:16]


# ============================================================================
# Event Types
# ============================================================================

class EventType(Enum):
    """Types of stream events that can be logged."""

    # Stream chain events
    STREAM_OPEN_WRITE = "stream_open_write"
    STREAM_OPEN_READ = "stream_open_read"

    # Failures detected by the factory
    CONFIG_REJECTED = "config_rejected"
    HEADER_CORRUPTED = "header_corrupted"

    # System events
    SYSTEM_START = "system_start"


# ============================================================================
# Event Structure
# ============================================================================

@dataclass
class SecurityEvent:
    """
    Represents a stream event to be logged.

    The file is identified only by the hash of its path.
    """
    event_type: EventType
    path_hash: str
    timestamp: int  # Unix timestamp
    details: Dict[str, Any] = field(default_factory=dict)

    def to_record(self) -> str:
        """Convert event to a compact JSON record."""
        return json.dumps({
            'version': EVENT_VERSION,
            'type': self.event_type.value,
            'path': self.path_hash,
            'time': self.timestamp,
            'iso_time': datetime.fromtimestamp(self.timestamp).isoformat(),
            'details': self.details,
        }, separators=(',', ':'))

    @classmethod
    def from_record(cls, record: str) -> 'SecurityEvent':
        """Parse event from a JSON record."""
        data = json.loads(record)
        return cls(
            event_type=EventType(data['type']),
            path_hash=data['path'],
            timestamp=data['time'],
            details=data.get('details', {}),
        )

    def __str__(self) -> str:
        dt = datetime.fromtimestamp(self.timestamp)
        return (
            f"[{dt.strftime('%Y-%m-%d %H:%M:%S')}] "
            f"{self.event_type.value} | "
            f"path:{self.path_hash[:8]}..."
        )


# ============================================================================
# Event Logger
# ============================================================================

class EventLogger:
    """
    In-memory audit trail of stream events.

    Safe to share between factories used from different threads.
    Each event is also emitted on the ``notevault.integration.event_logger``
    logger at ``log_level``.
    """

    def __init__(self, log_level: int = logging.INFO, record_start: bool = True):
        """
        Initialize the event logger.

        Args:
            log_level: Level used when mirroring events to logging
            record_start: If True, record a SYSTEM_START event
        """
        self._events: List[SecurityEvent] = []
        self._callbacks: List[Callable[[SecurityEvent], None]] = []
        self._lock = threading.Lock()
        self._log_level = log_level

        if record_start:
            self._log_system_event(EventType.SYSTEM_START)

    def _log_system_event(self, event_type: EventType) -> None:
        """Log a system event (no file)."""
        event = SecurityEvent(
            event_type=event_type,
            path_hash=SYSTEM_PATH_HASH,
            timestamp=int(time.time()),
            details={'node': 'notevault'}
        )
        self._add_event(event)

    def _add_event(self, event: SecurityEvent) -> None:
        with self._lock:
            self._events.append(event)
            callbacks = list(self._callbacks)

        logger.log(self._log_level, "%s %s", event, event.details)

        for callback in callbacks:
            try:
                callback(event)
            except Exception:
                # A broken listener must not break the stream operation
                logger.exception("Event callback %r failed", callback)

    def add_callback(self, callback: Callable[[SecurityEvent], None]) -> None:
        """Add a callback to be notified of new events."""
        with self._lock:
            self._callbacks.append(callback)

    def remove_callback(self, callback: Callable[[SecurityEvent], None]) -> None:
        """Remove a callback."""
        with self._lock:
            if callback in self._callbacks:
                self._callbacks.remove(callback)

    # ========================================================================
    # Stream Events
    # ========================================================================

    def log_stream_open(
        self,
        path,
        mode: str,
        compress: bool,
        encrypt: bool
    ) -> SecurityEvent:
        """
        Log a successfully built stream chain.

        Args:
            path: File path (will be hashed)
            mode: "read" or "write"
            compress: Whether a compression layer is present
            encrypt: Whether a cipher layer is present

        Returns:
            The logged event
        """
        event = SecurityEvent(
            event_type=EventType.STREAM_OPEN_WRITE if mode == "write" else EventType.STREAM_OPEN_READ,
            path_hash=get_path_hash(path),
            timestamp=int(time.time()),
            details={
                'compress': compress,
                'encrypt': encrypt,
                'algo': "AES-256-CBC" if encrypt else None,
            }
        )
        self._add_event(event)
        return event

    def log_config_rejected(self, path, mode: str, reason: str) -> SecurityEvent:
        """Log a configuration refused before any I/O."""
        event = SecurityEvent(
            event_type=EventType.CONFIG_REJECTED,
            path_hash=get_path_hash(path),
            timestamp=int(time.time()),
            details={'mode': mode, 'reason': reason}
        )
        self._add_event(event)
        return event

    def log_header_corrupted(self, path, header_field: str) -> SecurityEvent:
        """Log a truncated salt/IV header."""
        event = SecurityEvent(
            event_type=EventType.HEADER_CORRUPTED,
            path_hash=get_path_hash(path),
            timestamp=int(time.time()),
            details={'field': header_field}
        )
        self._add_event(event)
        return event

    # ========================================================================
    # Retrieval
    # ========================================================================

    def get_all_events(self) -> List[SecurityEvent]:
        """Return a snapshot of all logged events, oldest first."""
        with self._lock:
            return list(self._events)

    def get_path_events(self, path) -> List[SecurityEvent]:
        """
        Get all events for a specific file.

        Args:
            path: The file path to search for

        Returns:
            List of events for that path
        """
        path_hash = get_path_hash(path)
        return [e for e in self.get_all_events() if e.path_hash == path_hash]

    def get_events_by_type(self, event_type: EventType) -> List[SecurityEvent]:
        """Get all events of a specific type."""
        return [
            e for e in self.get_all_events()
            if e.event_type == event_type
        ]

    def get_recent_events(self, count: int = 10) -> List[SecurityEvent]:
        """Get the most recent events."""
        events = self.get_all_events()
        return events[-count:] if count > 0 else []

    def print_audit_log(self, last_n: Optional[int] = None) -> None:
        """Print the audit log in a readable format."""
        events = self.get_all_events()
        total = len(events)
        if last_n:
            events = events[-last_n:]

        print("\n" + "=" * 70)
        print("STREAM AUDIT LOG")
        print("=" * 70)

        for event in events:
            print(event)
            if event.details:
                for k, v in event.details.items():
                    print(f"    {k}: {v}")

        print("=" * 70)
        print(f"Total events: {total}")
        print("=" * 70)

    def export_log(self) -> str:
        """Export the entire audit log as a JSON array of records."""
        return json.dumps([json.loads(e.to_record()) for e in self.get_all_events()])

    @classmethod
    def import_log(cls, json_str: str) -> 'EventLogger':
        """Import an audit log from JSON."""
        imported = cls(record_start=False)
        events = [SecurityEvent.from_record(json.dumps(item)) for item in json.loads(json_str)]
        with imported._lock:
            imported._events = events
        return imported


# ============================================================================
# Convenience Functions
# ============================================================================

def create_event_logger(log_level: int = logging.INFO) -> EventLogger:
    """Create a new event logger."""
    return EventLogger(log_level=log_level)
