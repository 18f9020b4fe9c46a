import base64
import io
import json
import zipfile

import jwt as pyjwt
import pytest
from fastapi.testclient import TestClient

import app_server
import auth

SECRET = "test-secret"


@pytest.fixture
def client(monkeypatch, tmp_path):
    monkeypatch.setattr(auth, "AUTH_DISABLED", False)
    monkeypatch.setattr(auth, "JWT_SECRET", SECRET)
    monkeypatch.setattr(app_server, "LAYOUT_DIR", tmp_path)
    return TestClient(app_server.app)


@pytest.fixture
def headers():
    token = pyjwt.encode({"sub": "tester"}, SECRET, algorithm="HS256")
    return {"Authorization": f"Bearer {token}"}


def layout(values: str, team: str = "") -> str:
    return json.dumps(
        {
            "dynamicFields": [
                {"id": "field1", "label": "Field 1", "valuesText": values, "fontSize": 40, "bold": True, "align": "center"},
                {"id": "field2", "label": "Field 2", "valuesText": team},
            ],
            "description": {"text": "Awarded to {field1}", "paddingX": 50, "align": "center"},
        }
    )


def test_health_is_public(client):
    assert client.get("/api/health").json() == {"status": "ok"}


def test_api_requires_token(client):
    assert client.get("/api/layouts").status_code == 401

    bad = {"Authorization": "Bearer not-a-jwt"}
    assert client.get("/api/layouts", headers=bad).status_code == 401


def test_layout_store(client, headers, tmp_path):
    payload = json.loads(layout("Amy"))

    saved = client.post("/api/layout", params={"name": "award"}, json=payload, headers=headers)
    assert saved.status_code == 200
    assert (tmp_path / "award.json").exists()

    assert client.get("/api/layouts", headers=headers).json() == {"files": ["award.json"]}
    loaded = client.get("/api/layout", params={"name": "award"}, headers=headers).json()
    assert loaded["dynamicFields"][0]["valuesText"] == "Amy"

    missing = client.get("/api/layout", params={"name": "nope"}, headers=headers)
    assert missing.status_code == 404


def test_invalid_layout_is_rejected(client, headers):
    payload = {"dynamicFields": [{"id": "field1", "label": "Field 1", "fontSize": -4}]}

    response = client.post("/api/layout", json=payload, headers=headers)

    assert response.status_code == 422


def test_count_check(client, headers):
    response = client.post(
        "/api/count-check",
        data={"layout_json": layout("A\nB\nC", "T1\nT2")},
        headers=headers,
    )

    body = response.json()
    assert body["rows"] == 3
    assert len(body["mismatches"]) == 1


def test_generate_returns_zip(client, headers, template_png):
    response = client.post(
        "/api/generate",
        data={"layout_json": layout("Amy\nBob")},
        files={"template": ("template.png", template_png, "image/png")},
        headers=headers,
    )

    assert response.status_code == 200
    assert response.headers["content-type"] == "application/zip"
    assert "certificates.zip" in response.headers["content-disposition"]
    with zipfile.ZipFile(io.BytesIO(response.content)) as zf:
        assert zf.namelist() == ["Amy.pdf", "Bob.pdf"]


def test_generate_requires_template(client, headers):
    response = client.post("/api/generate", data={"layout_json": layout("Amy")}, headers=headers)

    assert response.status_code == 400


def test_generate_mismatch_needs_confirmation(client, headers, template_png):
    files = {"template": ("template.png", template_png, "image/png")}
    data = {"layout_json": layout("A\nB\nC", "T1\nT2")}

    refused = client.post("/api/generate", data=data, files=files, headers=headers)
    assert refused.status_code == 409
    assert refused.json()["detail"]["mismatches"]

    data["allow_count_mismatch"] = "true"
    accepted = client.post("/api/generate", data=data, files=files, headers=headers)
    assert accepted.status_code == 200


def test_preview_returns_png(client, headers, template_png, logo_png):
    response = client.post(
        "/api/preview",
        data={"layout_json": layout("Amy\nBob"), "row": "1", "width": "400"},
        files=[
            ("template", ("template.png", template_png, "image/png")),
            ("images", ("logo.png", logo_png, "image/png")),
        ],
        headers=headers,
    )

    assert response.status_code == 200
    assert response.headers["content-type"] == "image/png"
    assert response.content.startswith(b"\x89PNG")


def test_preview_rejects_bad_template(client, headers):
    response = client.post(
        "/api/preview",
        data={"layout_json": layout("Amy")},
        files={"template": ("template.gif", b"GIF89a", "image/gif")},
        headers=headers,
    )

    assert response.status_code == 400


def test_expired_token_is_rejected(client):
    token = pyjwt.encode({"sub": "tester", "exp": 1}, SECRET, algorithm="HS256")

    response = client.get("/api/layouts", headers={"Authorization": f"Bearer {token}"})

    assert response.status_code == 401
    assert response.json()["detail"] == "Token has expired."


def test_bearer_token_parsing():
    assert auth.bearer_token("Bearer abc.def") == "abc.def"
    assert auth.bearer_token("bearer  abc ") == "abc"
    for header in (None, "", "Basic abc", "Bearer "):
        with pytest.raises(pyjwt.InvalidTokenError):
            auth.bearer_token(header)


def test_public_paths(monkeypatch):
    monkeypatch.setattr(auth, "AUTH_DISABLED", False)

    assert not auth.requires_auth("/api/health", "GET")
    assert not auth.requires_auth("/api/generate", "OPTIONS")
    assert not auth.requires_auth("/docs", "GET")
    assert auth.requires_auth("/api/generate", "POST")


def test_audience_is_checked_when_configured(monkeypatch):
    monkeypatch.setattr(auth, "JWT_SECRET", SECRET)
    monkeypatch.setattr(auth, "JWT_AUDIENCE", "certbatch")

    good = pyjwt.encode({"sub": "a", "aud": "certbatch"}, SECRET, algorithm="HS256")
    bad = pyjwt.encode({"sub": "a", "aud": "other"}, SECRET, algorithm="HS256")

    assert auth.decode_token(good)["sub"] == "a"
    with pytest.raises(pyjwt.InvalidAudienceError):
        auth.decode_token(bad)


def _segment(data: dict) -> str:
    return base64.urlsafe_b64encode(json.dumps(data).encode()).rstrip(b"=").decode()


class _MissingKeyClient:
    def get_signing_key_from_jwt(self, token):
        raise pyjwt.PyJWKClientError('Unable to find a signing key that matches: "missing"')


@pytest.mark.parametrize("alg", ["RS256", "none"])
def test_unknown_signing_key_is_unauthorized(client, monkeypatch, alg):
    monkeypatch.setattr(auth, "_get_jwks_client", lambda: _MissingKeyClient())
    token = ".".join([_segment({"alg": alg, "typ": "JWT", "kid": "missing"}), _segment({"sub": "a"}), "c2ln"])

    response = client.get("/api/layouts", headers={"Authorization": f"Bearer {token}"})

    assert response.status_code == 401
    assert "signing key" in response.json()["detail"]
