"""
Submitter identity hashing.

Network addresses are never stored. They are reduced to an opaque salted
SHA-256 token, used for rate-limit counting and audit correlation only.
"""

import hashlib
from typing import Optional

from prayer_wall.config import get_ip_salt


def hash_submitter(address: Optional[str], salt: Optional[str] = None) -> Optional[str]:
    """
    Hash a network address into a submitter token.

    Args:
        address: Client IP address (or any identifying string)
        salt: Salt override; defaults to the configured ip_salt

    Returns:
        64-char hex digest, or None when no address is known
    """
    if not address:
        return None
    if salt is None:
        salt = get_ip_salt()
    return hashlib.sha256(f"{address}{salt}".encode("utf-8")).hexdigest()
