class ArchiveError(Exception):
    """Base class for every error raised by the archiver."""
    pass

class TransientNetworkError(ArchiveError):
    """A network call failed in a way that may succeed when retried."""
    pass

class RequestFailed(TransientNetworkError):
    """A request to an external site has failed."""

    def __init__(self, message: str, status: int | None = None):
        super().__init__(message)
        self.status = status

class ApiError(ArchiveError):
    """The remote API answered, but reported an error or sent a malformed payload."""
    pass

class IntegrityError(ArchiveError):
    """Local files are not in the state the store says they should be."""
    pass

class TargetCollision(IntegrityError):
    """A file already occupies the path a download was about to be persisted to."""

    def __init__(self, path):
        super().__init__(f"refusing to overwrite unaccounted file {path}")
        self.path = path

class ContentLookupError(ArchiveError):
    """A row referenced by ID does not exist in the store."""
    pass

class ConfigurationError(ArchiveError):
    """A credential or base directory needed for the operation is missing or invalid."""
    pass
