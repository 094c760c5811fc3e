import base64

import requests

from symptomcal.health_models import HealthModelClient, decode_result


class FakeResponse:
    def __init__(self, status_code, body):
        self.status_code = status_code
        self._body = body

    def json(self):
        return self._body

    def raise_for_status(self):
        if self.status_code >= 400:
            raise requests.exceptions.HTTPError(f"{self.status_code}")


class FakeHttp:
    def __init__(self, response):
        self.response = response
        self.posts = []

    def post(self, url, json=None, timeout=None):
        self.posts.append((url, json))
        if isinstance(self.response, Exception):
            raise self.response
        return self.response


def encoded(text):
    return base64.b64encode(text.encode("utf-8")).decode("ascii")


def test_decode_result():
    assert decode_result(encoded("flu: 0.7")) == "flu: 0.7"
    assert decode_result("plain text!") == "plain text!"
    assert decode_result(None) == ""


def test_predict_physical():
    http = FakeHttp(FakeResponse(200, {"message": "ok", "result": encoded("common cold")}))
    response = HealthModelClient("http://pb.local/", http=http).predict_physical(["fever", "cough"])

    assert response.success
    assert response.data == "common cold"
    assert http.posts == [("http://pb.local/physical-model/", {"symptoms": ["fever", "cough"]})]


def test_predict_mental_sends_profile():
    http = FakeHttp(FakeResponse(200, {"result": encoded("low risk")}))
    response = HealthModelClient("http://pb.local", http=http).predict_mental(["insomnia"], 34, "female")

    assert response.data == "low risk"
    assert http.posts[0][1] == {"symptoms": ["insomnia"], "age": 34, "gender": "female"}


def test_server_error_is_reported():
    http = FakeHttp(FakeResponse(500, {"error": "Failed to process physical model"}))
    response = HealthModelClient("http://pb.local", http=http).predict_physical(["fever"])
    assert not response.success
    assert response.error == "Failed to call physical model"


def test_network_error_is_reported():
    http = FakeHttp(requests.exceptions.ConnectionError("down"))
    response = HealthModelClient("http://pb.local", http=http).predict_mental(["sad"], 30, "")
    assert not response.success
