"""
Tests for the video record endpoints: create, list, get and delete.
"""

import uuid

import pytest

from conftest import OTHER_USER_ID, OWNER_ID, auth_headers, fetch_video_row


class TestCreateVideo:
    def test_create(self, api_client, db_engine):
        response = api_client.post(
            "/api/videos",
            json={"title": "  My first video ", "description": "hello"},
            headers=auth_headers(OWNER_ID),
        )

        assert response.status_code == 201
        data = response.json()
        uuid.UUID(data["id"])
        assert data["user_id"] == OWNER_ID
        assert data["title"] == "My first video"
        assert data["description"] == "hello"
        assert data["video_url"] is None
        assert data["thumbnail_url"] is None
        assert fetch_video_row(db_engine, data["id"])["user_id"] == OWNER_ID

    def test_description_defaults_to_empty(self, api_client):
        response = api_client.post("/api/videos", json={"title": "t"}, headers=auth_headers(OWNER_ID))
        assert response.json()["description"] == ""

    @pytest.mark.parametrize("body", [{}, {"title": ""}, {"title": "   "}, {"title": "x" * 256}])
    def test_invalid_body_is_400(self, api_client, body):
        response = api_client.post("/api/videos", json=body, headers=auth_headers(OWNER_ID))
        assert response.status_code == 400
        assert "error" in response.json()

    def test_requires_auth(self, api_client):
        assert api_client.post("/api/videos", json={"title": "t"}).status_code == 401


class TestListAndGet:
    def test_list_only_own_videos(self, api_client, make_video):
        mine = make_video(OWNER_ID, title="mine")
        make_video(OTHER_USER_ID, title="theirs")

        response = api_client.get("/api/videos", headers=auth_headers(OWNER_ID))

        assert response.status_code == 200
        assert [v["id"] for v in response.json()] == [mine["id"]]

    def test_list_empty(self, api_client):
        response = api_client.get("/api/videos", headers=auth_headers(OWNER_ID))
        assert response.json() == []

    def test_get_own_video(self, api_client, sample_video):
        response = api_client.get(f"/api/videos/{sample_video['id']}", headers=auth_headers(OWNER_ID))

        assert response.status_code == 200
        data = response.json()
        assert data["id"] == sample_video["id"]
        assert data["created_at"].endswith(("+00:00", "Z"))

    def test_get_uppercase_id(self, api_client, sample_video):
        response = api_client.get(f"/api/videos/{sample_video['id'].upper()}", headers=auth_headers(OWNER_ID))
        assert response.status_code == 200

    def test_get_other_users_video_is_403(self, api_client, sample_video):
        response = api_client.get(f"/api/videos/{sample_video['id']}", headers=auth_headers(OTHER_USER_ID))
        assert response.status_code == 403

    def test_get_missing_is_404(self, api_client):
        response = api_client.get(f"/api/videos/{uuid.uuid4()}", headers=auth_headers(OWNER_ID))
        assert response.status_code == 404
        assert response.json() == {"error": "Couldn't find video"}

    def test_get_invalid_id_is_400(self, api_client):
        response = api_client.get("/api/videos/12345", headers=auth_headers(OWNER_ID))
        assert response.status_code == 400
        assert response.json() == {"error": "Invalid video ID"}

    def test_public_video_url_not_presigned(self, api_client, make_video, s3_client):
        video = make_video(video_url="https://cdn.example.com/landscape/abc.mp4")

        response = api_client.get(f"/api/videos/{video['id']}", headers=auth_headers(OWNER_ID))

        assert response.json()["video_url"] == "https://cdn.example.com/landscape/abc.mp4"
        s3_client.generate_presigned_url.assert_not_called()

    def test_private_video_url_presigned_on_read(self, api_client, make_video, s3_client, db_engine):
        stored = "s3://private-bucket/portrait/abc.mp4"
        video = make_video(video_url=stored)

        response = api_client.get(f"/api/videos/{video['id']}", headers=auth_headers(OWNER_ID))

        assert response.json()["video_url"] == s3_client.generate_presigned_url.return_value
        assert fetch_video_row(db_engine, video["id"])["video_url"] == stored
        params = s3_client.generate_presigned_url.call_args.kwargs["Params"]
        assert params == {"Bucket": "private-bucket", "Key": "portrait/abc.mp4"}


class TestDeleteVideo:
    def test_delete(self, api_client, sample_video, db_engine):
        response = api_client.delete(f"/api/videos/{sample_video['id']}", headers=auth_headers(OWNER_ID))

        assert response.status_code == 204
        assert fetch_video_row(db_engine, sample_video["id"]) is None

    def test_delete_removes_local_thumbnail(self, api_client, make_video, test_storage, db_engine):
        import api.uploads

        name = "a" * 64 + ".png"
        (test_storage["assets"] / name).write_bytes(b"png")
        video = make_video(thumbnail_url=f"{api.uploads.ASSETS_BASE_URL}/{name}")

        response = api_client.delete(f"/api/videos/{video['id']}", headers=auth_headers(OWNER_ID))

        assert response.status_code == 204
        assert not (test_storage["assets"] / name).exists()

    def test_delete_other_users_video_is_403(self, api_client, sample_video, db_engine):
        response = api_client.delete(f"/api/videos/{sample_video['id']}", headers=auth_headers(OTHER_USER_ID))

        assert response.status_code == 403
        assert fetch_video_row(db_engine, sample_video["id"]) is not None
