class IdentityError(Exception):
    """Base class for identity reconciliation failures."""


class ValidationError(IdentityError):
    def __init__(self, message: str = "email or phoneNumber required"):
        super().__init__(message)
        self.message = message


class StorageError(IdentityError):
    """The contact store failed or returned data that breaks the link hierarchy."""


class ConflictRetry(StorageError):
    """Transient lock conflict; the whole resolution should be run again."""
