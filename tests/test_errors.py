import httpx

from portcullis import ApiError, ErrorKind
from portcullis.errors import auth_error, cancelled_error, http_error, network_error, timeout_error


def test_error_kinds_are_closed():
    assert {k.value for k in ErrorKind} == {
        "NETWORK_ERROR",
        "TIMEOUT",
        "HTTP_ERROR",
        "PARSE_ERROR",
        "AUTH_ERROR",
    }


def test_to_dict_drops_missing_fields():
    err = timeout_error()
    assert err.to_dict() == {"message": "Request timeout", "code": "TIMEOUT"}
    assert isinstance(err, Exception)


def test_network_error_message():
    err = network_error(httpx.ConnectError("refused"))
    assert err.code is ErrorKind.NETWORK_ERROR
    assert err.message == "Network request failed"
    assert err.details == {"error": "refused"}


def test_cancelled_is_timeout_kind():
    err = cancelled_error("screen closed")
    assert err.code is ErrorKind.TIMEOUT
    assert err.message == "Request cancelled"
    assert err.details == {"reason": "screen closed"}


def test_http_and_auth_errors_carry_status_and_body():
    resp = httpx.Response(401, json={"message": "token expired"})
    h = http_error(resp)
    a = auth_error(resp)
    assert (h.code, h.status, h.message) == (ErrorKind.HTTP_ERROR, 401, "token expired")
    assert (a.code, a.status, a.message) == (ErrorKind.AUTH_ERROR, 401, "token expired")
    assert a.details == {"message": "token expired"}


def test_code_compares_to_plain_string():
    err = ApiError("x", code=ErrorKind.HTTP_ERROR, status=500)
    assert err.code == "HTTP_ERROR"
    assert str(err) == "x"
