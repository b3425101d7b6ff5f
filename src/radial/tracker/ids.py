"""Short opaque identifiers for goals and tasks."""

from __future__ import annotations

import secrets
import string

ID_ALPHABET = string.digits + string.ascii_uppercase + string.ascii_lowercase
ID_LENGTH = 8


def generate_id() -> str:
    """Return an 8-char alphanumeric id.

    No dashes or underscores, so ids never look like CLI flags and never need
    quoting.
    """

    return "".join(secrets.choice(ID_ALPHABET) for _ in range(ID_LENGTH))
