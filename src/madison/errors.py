"""Exceptions raised while fetching, parsing and resolving archive metadata."""


class MadisonError(Exception):
    """Base class for all madison errors."""


class FetchError(MadisonError):
    """Retrieving or decompressing a single index file failed."""

    def __init__(self, message: str, url: str | None = None, status_code: int | None = None):
        super().__init__(message)
        self.url = url
        self.status_code = status_code


class UnknownCoordinate(MadisonError):
    """The suite catalog or settings are malformed.

    Only raised while the catalog is being built, never while answering a query.
    """


class InvalidVersion(ValueError):
    """A version string does not follow ``[epoch:]upstream[-revision]``."""


class ParseWarning(UserWarning):
    """A stanza was dropped from an index file.

    Collected and logged by the parser, never raised to callers.
    """

    def __init__(self, message: str, stanza: int, line: int | None = None):
        super().__init__(message)
        self.stanza = stanza
        self.line = line

    def __str__(self) -> str:
        where = f"stanza {self.stanza}" if self.line is None else f"stanza {self.stanza}, line {self.line}"
        return f"{where}: {self.args[0]}"
