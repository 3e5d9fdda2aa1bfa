import pytest

from aequi.errors import (
    ApiError,
    BadRequestError,
    InternalError,
    NotFoundError,
    UnauthorizedError,
)


@pytest.mark.parametrize(
    ("error", "status"),
    [
        (NotFoundError("Account 1000 not found"), 404),
        (BadRequestError("Email not configured"), 400),
        (InternalError("Invoice not found after insert"), 500),
    ],
)
def test_status_and_body(error, status):
    body, code = error.to_response()
    assert code == status
    assert body == {"error": error.message}


def test_unauthorized_has_fixed_message():
    body, code = UnauthorizedError().to_response()
    assert code == 401
    assert body == {"error": "Unauthorized"}


def test_errors_are_api_errors_and_raisable():
    error = NotFoundError("Contact not found")
    body, code = error.to_response()
    assert code == 404
    assert body == {"error": "Contact not found"}
    with pytest.raises(ApiError, match="^Contact not found$"):
        raise error


def test_message_passed_through_unchanged():
    error = BadRequestError("Tax rules for year 2030 not available")
    assert error.to_response()[0]["error"] == "Tax rules for year 2030 not available"