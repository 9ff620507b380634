"""
plugins/respawn/errors.py

Respawn timer exceptions.
"""


class RespawnError(Exception):
    """Base exception for respawn timer errors."""
    pass


class NotFoundError(RespawnError):
    """
    No active timer exists for the requested boss.

    Raised when:
    - reset is requested for a boss with no running timer
    - a delete-by-index points past the end of the list
    """
    pass


class ValidationError(RespawnError):
    """
    Input rejected before any state was touched.

    Raised when:
    - a duration is non-numeric, non-positive or too long
    - a timezone name is unknown
    - no channel is known to announce a timer in
    """
    pass


class PersistenceError(RespawnError):
    """
    Reading or writing a state file failed.

    Logged and swallowed by the engine; the in-memory state stays
    authoritative for the lifetime of the process.
    """
    pass


class DispatchError(RespawnError):
    """Delivering a chat notification failed."""
    pass
