"""
Tests for bearer-token authentication.
"""

import logging
from datetime import datetime, timedelta, timezone

import jwt
import pytest

from api.auth import get_bearer_token, make_jwt, validate_jwt
from api.errors import UnauthorizedError
from config import JWT_ALGORITHM, JWT_ISSUER
from conftest import OWNER_ID, TEST_JWT_SECRET, auth_headers


class TestGetBearerToken:
    def test_extracts_token(self):
        assert get_bearer_token("Bearer abc.def.ghi") == "abc.def.ghi"

    def test_scheme_is_case_insensitive(self):
        assert get_bearer_token("bearer abc") == "abc"

    @pytest.mark.parametrize("header", [None, ""])
    def test_missing_header(self, header):
        with pytest.raises(UnauthorizedError, match="Couldn't find JWT"):
            get_bearer_token(header)

    @pytest.mark.parametrize("header", ["Basic dXNlcjpwYXNz", "Bearer", "Bearer   ", "abc.def.ghi"])
    def test_malformed_header(self, header):
        with pytest.raises(UnauthorizedError, match="Malformed"):
            get_bearer_token(header)


class TestJWT:
    def test_round_trip_returns_subject(self):
        token = make_jwt(OWNER_ID, TEST_JWT_SECRET)
        assert validate_jwt(token, TEST_JWT_SECRET) == OWNER_ID

    def test_claims(self):
        token = make_jwt(OWNER_ID, TEST_JWT_SECRET, expires_in=60)
        claims = jwt.decode(token, TEST_JWT_SECRET, algorithms=[JWT_ALGORITHM], issuer=JWT_ISSUER)
        assert claims["sub"] == OWNER_ID
        assert claims["iss"] == JWT_ISSUER
        assert claims["exp"] - claims["iat"] == 60

    def test_wrong_secret_rejected(self):
        token = make_jwt(OWNER_ID, "some-other-secret-value-0123456789")
        with pytest.raises(UnauthorizedError, match="Couldn't validate JWT"):
            validate_jwt(token, TEST_JWT_SECRET)

    def test_expired_token_rejected(self):
        now = datetime.now(timezone.utc)
        token = jwt.encode(
            {"iss": JWT_ISSUER, "sub": OWNER_ID, "iat": now - timedelta(hours=2), "exp": now - timedelta(hours=1)},
            TEST_JWT_SECRET,
            algorithm=JWT_ALGORITHM,
        )
        with pytest.raises(UnauthorizedError, match="expired"):
            validate_jwt(token, TEST_JWT_SECRET)

    def test_wrong_issuer_rejected(self):
        now = datetime.now(timezone.utc)
        token = jwt.encode(
            {"iss": "someone-else", "sub": OWNER_ID, "exp": now + timedelta(hours=1)},
            TEST_JWT_SECRET,
            algorithm=JWT_ALGORITHM,
        )
        with pytest.raises(UnauthorizedError):
            validate_jwt(token, TEST_JWT_SECRET)

    def test_missing_subject_rejected(self):
        now = datetime.now(timezone.utc)
        token = jwt.encode({"iss": JWT_ISSUER, "exp": now + timedelta(hours=1)}, TEST_JWT_SECRET, algorithm=JWT_ALGORITHM)
        with pytest.raises(UnauthorizedError):
            validate_jwt(token, TEST_JWT_SECRET)

    def test_garbage_rejected(self):
        with pytest.raises(UnauthorizedError):
            validate_jwt("not-a-token", TEST_JWT_SECRET)


class TestAuthenticatedEndpoints:
    def test_no_header_is_401(self, api_client):
        response = api_client.get("/api/videos")
        assert response.status_code == 401
        assert response.json() == {"error": "Couldn't find JWT"}

    def test_bad_token_is_401(self, api_client):
        response = api_client.get("/api/videos", headers={"Authorization": "Bearer nope"})
        assert response.status_code == 401

    def test_valid_token_is_accepted(self, api_client):
        response = api_client.get("/api/videos", headers=auth_headers(OWNER_ID))
        assert response.status_code == 200

    def test_failure_is_logged_to_security_logger(self, api_client, caplog):
        with caplog.at_level(logging.WARNING, logger="security.auth"):
            api_client.get("/api/videos", headers={"Authorization": "Bearer nope"})

        records = [r for r in caplog.records if r.name == "security.auth"]
        assert records
        assert records[-1].event == "auth_failure"
        assert records[-1].path == "/api/videos"
