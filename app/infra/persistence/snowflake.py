# =============================================================================
# File: app/infra/persistence/snowflake.py
# Description: Snowflake ID generator for durable, time-ordered message ids.
# =============================================================================
# 64-bit ids:
#   - 42 bits for timestamp (milliseconds since the campus epoch)
#   - 10 bits for worker ID (1024 server instances max)
#   - 12 bits for sequence (4096 IDs per millisecond per worker)
#
# A message's created_at is derived from its id, so ordering by id is the same
# as ordering by (created_at, id).
# =============================================================================

from __future__ import annotations

import os
import socket
import threading
import time
import zlib
from datetime import datetime, timezone
from typing import Optional

from app.config.logging_config import get_logger

log = get_logger("campus.infra.snowflake")


# =============================================================================
# Constants
# =============================================================================

# 2024-01-01 00:00:00 UTC in milliseconds
CAMPUS_EPOCH = 1704067200000

TIMESTAMP_BITS = 42
WORKER_ID_BITS = 10
SEQUENCE_BITS = 12

MAX_WORKER_ID = (1 << WORKER_ID_BITS) - 1  # 1023
MAX_SEQUENCE = (1 << SEQUENCE_BITS) - 1    # 4095

TIMESTAMP_SHIFT = WORKER_ID_BITS + SEQUENCE_BITS  # 22
WORKER_ID_SHIFT = SEQUENCE_BITS                    # 12

# Clock regressions up to this many ms are waited out
MAX_BACKWARD_DRIFT_MS = 5


# =============================================================================
# Snowflake ID Generator
# =============================================================================
class SnowflakeIDGenerator:
    """
    Thread-safe Snowflake ID generator.

    Usage:
        generator = SnowflakeIDGenerator(worker_id=1)
        message_id = generator.generate_str()
        created_at = generator.datetime_of(int(message_id))
    """

    def __init__(self, worker_id: Optional[int] = None, epoch: int = CAMPUS_EPOCH):
        if worker_id is None:
            worker_id = self._derive_worker_id()

        if worker_id < 0 or worker_id > MAX_WORKER_ID:
            raise ValueError(f"worker_id must be between 0 and {MAX_WORKER_ID}")

        self._worker_id = worker_id
        self._epoch = epoch
        self._sequence = 0
        self._last_timestamp = -1
        self._lock = threading.Lock()

        log.info(f"SnowflakeIDGenerator initialized: worker_id={worker_id}, epoch={epoch}")

    @staticmethod
    def _derive_worker_id() -> int:
        """Derive worker ID from environment or hostname."""
        env_worker_id = os.environ.get('SNOWFLAKE_WORKER_ID')
        if env_worker_id is not None:
            try:
                return int(env_worker_id) % (MAX_WORKER_ID + 1)
            except ValueError:
                log.warning(f"Ignoring non-numeric SNOWFLAKE_WORKER_ID={env_worker_id!r}")

        # Kubernetes StatefulSet style names end in an ordinal ("campus-api-3")
        pod_name = os.environ.get('POD_NAME', os.environ.get('HOSTNAME', ''))
        tail = pod_name.rsplit('-', 1)[-1] if pod_name else ''
        if tail.isdigit():
            return int(tail) % (MAX_WORKER_ID + 1)

        # crc32 is stable across processes, unlike hash()
        return zlib.crc32(socket.gethostname().encode()) % (MAX_WORKER_ID + 1)

    def _current_timestamp(self) -> int:
        return int(time.time() * 1000) - self._epoch

    def generate(self) -> int:
        """
        Generate a new Snowflake ID.

        Raises:
            RuntimeError: If the clock moved backwards more than MAX_BACKWARD_DRIFT_MS
        """
        with self._lock:
            timestamp = self._current_timestamp()

            if timestamp < self._last_timestamp:
                drift = self._last_timestamp - timestamp
                if drift > MAX_BACKWARD_DRIFT_MS:
                    raise RuntimeError(f"Clock moved backwards by {drift}ms. Refusing to generate ID.")
                time.sleep(drift / 1000)
                timestamp = self._wait_next_millis(self._last_timestamp - 1)

            if timestamp == self._last_timestamp:
                self._sequence = (self._sequence + 1) & MAX_SEQUENCE
                if self._sequence == 0:
                    timestamp = self._wait_next_millis(timestamp)
            else:
                self._sequence = 0

            self._last_timestamp = timestamp

            return (
                (timestamp << TIMESTAMP_SHIFT) |
                (self._worker_id << WORKER_ID_SHIFT) |
                self._sequence
            )

    def _wait_next_millis(self, last_timestamp: int) -> int:
        timestamp = self._current_timestamp()
        while timestamp <= last_timestamp:
            time.sleep(0.0001)
            timestamp = self._current_timestamp()
        return timestamp

    def generate_str(self) -> str:
        """Generate a new Snowflake ID as a string."""
        return str(self.generate())

    def timestamp_ms_of(self, snowflake_id: int) -> int:
        """Unix timestamp (milliseconds) encoded in a Snowflake ID."""
        return (snowflake_id >> TIMESTAMP_SHIFT) + self._epoch

    def datetime_of(self, snowflake_id: int) -> datetime:
        """UTC datetime encoded in a Snowflake ID."""
        return datetime.fromtimestamp(self.timestamp_ms_of(snowflake_id) / 1000, tz=timezone.utc)

    @property
    def worker_id(self) -> int:
        return self._worker_id

    @property
    def epoch(self) -> int:
        return self._epoch


def is_snowflake_id(value: str) -> bool:
    """True for decimal strings that fit a positive 63-bit integer."""
    return isinstance(value, str) and value.isdigit() and 0 < int(value) < (1 << 63)


# =============================================================================
# Global Generator Instance
# =============================================================================
_GLOBAL_GENERATOR: Optional[SnowflakeIDGenerator] = None
_GENERATOR_LOCK = threading.Lock()


def get_snowflake_generator(worker_id: Optional[int] = None) -> SnowflakeIDGenerator:
    """
    Get or create the process-wide Snowflake ID generator.

    Args:
        worker_id: Optional worker ID (only used on first call)
    """
    global _GLOBAL_GENERATOR

    if _GLOBAL_GENERATOR is None:
        with _GENERATOR_LOCK:
            if _GLOBAL_GENERATOR is None:
                _GLOBAL_GENERATOR = SnowflakeIDGenerator(worker_id=worker_id)

    return _GLOBAL_GENERATOR
