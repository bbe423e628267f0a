"""Content integrity checks against server-declared MD5 checksums."""

from __future__ import annotations

import base64
import hashlib

from bulkflow.errors import ChecksumMismatchError


def compute_content_md5(content: bytes) -> str:
    """Base64-encoded MD5 digest of the raw bytes, as the remote API declares it."""

    return base64.b64encode(hashlib.md5(content).digest()).decode("ascii")  # noqa: S324


def is_checksum_correct(content: bytes, declared_checksum: str | None) -> bool:
    """Compare a locally computed checksum with the declared one."""

    if not declared_checksum:
        return False
    return compute_content_md5(content) == declared_checksum.strip()


def verify_checksum(content: bytes, declared_checksum: str | None) -> None:
    """Raise :class:`ChecksumMismatchError` unless the checksums agree."""

    if not is_checksum_correct(content, declared_checksum):
        raise ChecksumMismatchError(
            expected=declared_checksum,
            actual=compute_content_md5(content),
        )
