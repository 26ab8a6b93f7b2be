"""Project-specific exception types for clearer error semantics."""


class SharebenchError(Exception):
    """Base class for sharebench errors."""
    pass


class ConfigError(ValueError):
    """Configuration validation errors."""
    pass


class InvalidPathFormat(ValueError):
    """Target string is not a usable \\\\host\\share path."""
    pass


class ProbeError(SharebenchError):
    """Failure that ends a single probe; recorded as a failed sample."""
    pass


class ProvisionError(ProbeError, OSError):
    """Payload could not be written completely."""
    pass


class TargetUnreachable(ProbeError):
    """Target SpeedTest directory is missing and cannot be created."""
    pass


class CopyError(ProbeError):
    """Write or read copy failed."""
    pass


class MissingWarmArtifact(ProbeError):
    """Warm run found no leftovers from the preceding cold run."""
    pass


class LockContention(SharebenchError):
    """Another run holds the lock marker."""

    def __init__(self, location, existing_owner: str = ""):
        super().__init__(f"run lock {location} held by {existing_owner or 'unknown owner'}")
        self.location = location
        self.existing_owner = existing_owner


class NotificationError(SharebenchError):
    """Report mail could not be dispatched."""
    pass
