"""
Hashing and id helpers.

Cache files are addressed by the sha256 of the source url, sharded into
single-character directory levels so no directory grows unbounded.
"""

import hashlib
import secrets
from pathlib import Path

# i, l, o, 0 and 1 are left out to keep ids readable
ID_ALPHABET = "abcdefghjkmnpqrstuvwxyz23456789"


def sha256_hex(text: str) -> str:
    """Compute the hex sha256 digest of a string.

    Args:
        text: Text to hash

    Returns:
        64 character lowercase hex digest
    """
    return hashlib.sha256(text.encode("utf-8")).hexdigest()


def subdirs(name: str, depth: int) -> str:
    """Prefix a name with one directory level per leading character.

    Args:
        name: File name (usually a hash or a compilation id)
        depth: Number of levels (0 returns the name unchanged)

    Returns:
        Relative path such as ``a/b/c/abc...``

    Example:
        >>> subdirs("abcdef", 3)
        'a/b/c/abcdef'
    """
    levels = list(name[: max(depth, 0)])
    return "/".join(levels + [name])


def shard_path(store_dir: str | Path, url: str, depth: int) -> Path:
    """Compute the content-addressed cache path of a source url.

    The path depends only on the url, never on the downloaded content.

    Args:
        store_dir: Cache root directory
        url: Normalized source url
        depth: Shard depth

    Returns:
        Absolute or relative Path below store_dir
    """
    return Path(store_dir) / subdirs(sha256_hex(url), depth)


def generate_id(length: int = 10) -> str:
    """Generate a short public compilation id.

    Args:
        length: Number of characters

    Returns:
        Random id drawn from ID_ALPHABET
    """
    return "".join(secrets.choice(ID_ALPHABET) for _ in range(length))
