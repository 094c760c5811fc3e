import pytest
import requests

from symptomcal.errors import AuthRequiredError
from symptomcal.session import PocketBaseAuth, Session


class FakeResponse:
    def __init__(self, status_code, body):
        self.status_code = status_code
        self._body = body

    def json(self):
        return self._body


class FakeHttp:
    def __init__(self, *responses):
        self.responses = list(responses)
        self.posts = []

    def post(self, url, json=None, timeout=None):
        self.posts.append((url, json))
        response = self.responses.pop(0)
        if isinstance(response, Exception):
            raise response
        return response


LOGIN_OK = FakeResponse(200, {"token": "jwt", "record": {"id": "u1", "email": "ann@example.com", "name": "Ann"}})


def test_session_helpers():
    session = Session(user_id="u1", token="jwt")
    assert session.is_authenticated
    assert session.require_user_id() == "u1"
    assert session.auth_headers() == {"Authorization": "jwt"}

    session.clear()
    assert not session.is_authenticated
    assert session.auth_headers() == {}
    with pytest.raises(AuthRequiredError):
        session.require_user_id()


def test_local_session_has_user():
    assert Session.local().require_user_id() == "local-user"


def test_login_success():
    http = FakeHttp(LOGIN_OK)
    outcome = PocketBaseAuth("http://pb.local/", http=http).login("ann@example.com", "secret")

    assert outcome.success
    assert outcome.session.user_id == "u1"
    assert outcome.session.token == "jwt"
    assert http.posts[0] == (
        "http://pb.local/api/collections/users/auth-with-password",
        {"identity": "ann@example.com", "password": "secret"},
    )


def test_login_bad_credentials():
    outcome = PocketBaseAuth("http://pb.local", http=FakeHttp(FakeResponse(400, {}))).login("a@b.c", "x")
    assert not outcome.success
    assert outcome.error == "Invalid email or password."


def test_login_network_error():
    http = FakeHttp(requests.exceptions.ConnectionError("down"))
    outcome = PocketBaseAuth("http://pb.local", http=http).login("a@b.c", "x")
    assert outcome.error == "Login failed. Please try again."


def test_signup_then_login():
    http = FakeHttp(FakeResponse(200, {"id": "u1"}), LOGIN_OK)
    outcome = PocketBaseAuth("http://pb.local", http=http).signup("ann@example.com", "secret12", "secret12")

    assert outcome.success
    url, body = http.posts[0]
    assert url.endswith("/api/collections/users/records")
    assert body["name"] == "ann"
    assert body["passwordConfirm"] == "secret12"


def test_signup_field_error():
    body = {"message": "Failed", "data": {"email": {"message": "The email is invalid or already in use."}}}
    outcome = PocketBaseAuth("http://pb.local", http=FakeHttp(FakeResponse(400, body))).signup("x", "p", "p")
    assert outcome.error == "Email: The email is invalid or already in use."


def test_logout_clears_session():
    session = Session(user_id="u1", token="jwt", email="ann@example.com")
    PocketBaseAuth("http://pb.local").logout(session)
    assert session == Session()
