# shared/uuid_utils.py
"""
UUIDv7 helpers.

UUIDv7 ids are time-ordered, so new users, desserts and usage logs land at
the tail of their primary-key indexes instead of fragmenting them.
"""
from uuid import UUID

from uuid_extensions import uuid7


def generate_uuid7() -> UUID:
    """Generate a time-ordered UUID"""
    return uuid7()


# Primary ID generator
generate_id = generate_uuid7
