from .hashing import bytes_digest, file_digest
from .retry import with_retry

__all__ = [
    "bytes_digest",
    "file_digest",
    "with_retry",
]
