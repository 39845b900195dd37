"""Entity id generation."""

from ulid import ULID


def generate_id() -> str:
    """Generate a text-based entity ID (ULID format)."""
    return str(ULID())
