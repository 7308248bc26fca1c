"""Errors raised while crawling, extracting and indexing resources."""

from __future__ import annotations


class _CrawlError(Exception):
    """Base for errors carrying a fixed message and an optional detail."""

    message = "error"

    def __init__(self, detail: object = None) -> None:
        self.detail = detail
        text = self.message if detail is None else f"{self.message}: {detail}"
        super().__init__(text)


class InvalidResourceError(_CrawlError):
    """A resource cannot be indexed and should be recorded as invalid."""

    message = "resource invalid"


class UnsupportedTypeError(InvalidResourceError):
    """The resource has a type the crawler does not support."""

    message = "unsupported type"


class DirectoryTooLargeError(InvalidResourceError):
    """A directory has more entries than the configured maximum."""

    message = "directory too large"


class FileTooLargeError(_CrawlError):
    """A file is larger than an extractor's configured maximum size."""

    message = "file too large"


class UnexpectedResponseError(_CrawlError):
    """A remote service answered with something that could not be used."""

    message = "unexpected response"


class RequestError(_CrawlError):
    """A request to a remote service could not be performed."""

    message = "error performing request"