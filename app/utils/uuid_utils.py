# =============================================================================
# File: app/utils/uuid_utils.py - Client-side identifier utilities
# =============================================================================
# Temporary ids live only in a session's working list and never reach the
# store. They carry a fixed prefix so they can never be mistaken for a durable
# Snowflake id (which is always a decimal string).
#
# Submission ids are client-generated idempotency keys; a retried submission
# reuses the same key so the store can return the original record.
# =============================================================================

import uuid

TEMP_ID_PREFIX = "temp_"


def generate_uuid_str() -> str:
    """Generate a new random UUID as string."""
    return str(uuid.uuid4())


def generate_temp_id() -> str:
    """
    Generate a session-local temporary message id.

    Returns:
        "temp_<32 hex chars>"
    """
    return f"{TEMP_ID_PREFIX}{uuid.uuid4().hex}"


def is_temp_id(message_id: str) -> bool:
    """True if message_id was produced by generate_temp_id()."""
    return isinstance(message_id, str) and message_id.startswith(TEMP_ID_PREFIX)


def generate_submission_id() -> str:
    """Generate an idempotency key for one logical message submission."""
    return str(uuid.uuid4())
