class SyncError(Exception):
    """Base class for progress sync failures."""


class AuthError(SyncError):
    """Bad credentials or a rejected registration."""


class TransportError(SyncError):
    """The sync server or the relay could not be reached."""


class TranslationError(SyncError):
    """A position pointer could not be converted between notations."""
