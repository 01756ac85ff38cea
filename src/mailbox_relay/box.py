"""
Single-slot mailbox shared by the client-side and server-side relay loops
"""

import threading


class Mailbox:
    """Holds the most recently deposited payload.

    Every put/get is atomic with respect to the other; there is no ordering
    or freshness guarantee between callers on different threads.
    """

    def __init__(self, default: bytes = b""):
        self._lock = threading.Lock()
        self._payload = bytes(default)

    def put(self, payload: bytes) -> None:
        if not isinstance(payload, (bytes, bytearray, memoryview)):
            raise TypeError(f"payload must be bytes, not {type(payload).__name__}")
        # Copy so the caller's buffer can be reused without tearing the slot
        snapshot = bytes(payload)
        with self._lock:
            self._payload = snapshot

    def get(self) -> bytes:
        with self._lock:
            return self._payload

    def __len__(self) -> int:
        with self._lock:
            return len(self._payload)

    def __repr__(self) -> str:
        return f"Mailbox({len(self)} bytes)"
