import pytest

from ipfscrawl.errors import (
    DirectoryTooLargeError,
    FileTooLargeError,
    InvalidResourceError,
    RequestError,
    UnexpectedResponseError,
    UnsupportedTypeError,
)


def test_invalid_resource_message():
    assert str(InvalidResourceError()) == "resource invalid"


def test_invalid_resource_with_detail():
    assert str(InvalidResourceError("test error")) == "resource invalid: test error"


def test_unsupported_type_is_invalid_resource():
    err = UnsupportedTypeError()
    assert isinstance(err, InvalidResourceError)
    assert str(err) == "unsupported type"


def test_directory_too_large_is_invalid_resource():
    err = DirectoryTooLargeError()
    assert isinstance(err, InvalidResourceError)
    assert str(err) == "directory too large"
    with pytest.raises(InvalidResourceError, match="directory too large"):
        raise err


def test_file_too_large_is_not_invalid_resource():
    err = FileTooLargeError(101)
    assert not isinstance(err, InvalidResourceError)
    assert str(err) == "file too large: 101"
    assert err.detail == 101


def test_unexpected_response_keeps_detail():
    err = UnexpectedResponseError("decoding failed")
    assert str(err).endswith(": decoding failed")
    assert err.detail == "decoding failed"


def test_request_error_without_detail_has_no_separator():
    err = RequestError()
    assert err.detail is None
    assert ":" not in str(err)