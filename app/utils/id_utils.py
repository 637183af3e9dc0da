"""
Identifiers for users, usage records, violations, restrictions and appeals.
"""
from nanoid import generate


def generate_id(size: int = 21) -> str:
    """
    Generate a URL-safe nanoid primary key.

    Args:
        size: Length of the generated ID. Default is 21 characters.
    """
    return generate(size=size)
