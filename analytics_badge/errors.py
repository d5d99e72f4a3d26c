"""
Exception taxonomy for badge resolution.

Resolution errors (NotFoundError, DataCorruptionError, UpstreamError) abort a
badge request with no image body. CacheError and PersistenceError raised while
writing back after a successful resolution are logged and swallowed by callers.
"""


class BadgeError(Exception):
    """Base class for all badge resolution failures"""
    pass


class NotFoundError(BadgeError):
    """Raised when a property or its owning account does not exist"""
    pass


class DataCorruptionError(BadgeError):
    """Raised when a cached metric cannot be parsed as an integer"""
    pass


class UpstreamError(BadgeError):
    """Raised when the analytics API, token refresh or code exchange fails"""
    pass


class CacheError(BadgeError):
    """Raised when the fast cache backend is unreachable or rejects a command"""
    pass


class PersistenceError(RuntimeError):
    """Raised when the durable store fails a read or write"""
    pass
