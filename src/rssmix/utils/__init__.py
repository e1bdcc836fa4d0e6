"""Helper functions shared by the pipeline stages and the catalogue."""

from rssmix.utils.hash_utils import generate_id, sha256_hex, shard_path, subdirs
from rssmix.utils.time_utils import utcnow
from rssmix.utils.url_utils import normalize_url, split_url

__all__ = [
    "generate_id",
    "normalize_url",
    "sha256_hex",
    "shard_path",
    "split_url",
    "subdirs",
    "utcnow",
]
