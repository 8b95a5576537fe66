"""
Digest helpers for diagnostics.

The extraction result carries a digest of the uploaded bytes so a
failed extraction can be correlated with the exact input that caused it
without keeping the input itself.
"""

import hashlib
from typing import Union


def compute_input_digest(data: Union[bytes, bytearray]) -> str:
    """
    Hash the raw upload.

    Returns:
        A SHA-256 hex digest with an explicit algorithm prefix.
        Example: ``SHA-256:3b7c0e4c...``
    """
    if not isinstance(data, (bytes, bytearray)):
        raise TypeError(
            "compute_input_digest expects bytes, "
            f"got {type(data).__name__}"
        )

    digest = hashlib.sha256(data).hexdigest()
    return f"SHA-256:{digest}"
