"""Exception types raised by the page store, index and synchronizer."""


class FubakoError(Exception):
    """Base class for all Fubako errors."""


class PageNotFoundError(FubakoError):
    """A page ID is unknown or its backing file is missing."""


class InvalidPageIdError(FubakoError, ValueError):
    """A string, path or link does not decode to a valid PageId."""


class PageReadError(FubakoError):
    """Reading a page or the data directory failed."""


class DataDirNotFoundError(PageReadError):
    """The configured data directory does not exist."""


class LockContentionError(FubakoError):
    """The index lock could not be acquired in time."""


class ForbiddenPathError(FubakoError):
    """A requested file resolves outside the directory it must live in."""


class WatchError(FubakoError):
    """The filesystem watcher failed; the index will no longer be updated."""
