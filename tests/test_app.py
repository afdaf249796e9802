import cloudinary.uploader
from cloudinary.exceptions import Error as CloudinaryError

from routes_upload import MAX_IMAGE_BYTES, UPLOAD_FOLDER
from schemas import COLLECTIONS


def test_service_endpoints(client, make_user):
    make_user()
    assert client.get("/").json() == {"message": "TifinCart API running"}
    assert client.get("/schema").json()["collections"] == COLLECTIONS
    status = client.get("/test").json()
    assert status["connection_status"] == "Connected"
    assert "user" in status["collections"]


def test_unknown_route_uses_error_envelope(client):
    resp = client.get("/api/nowhere")
    assert resp.status_code == 404
    assert resp.json()["success"] is False


def test_malformed_json_is_a_validation_error(client):
    resp = client.post("/api/auth/sign-in", content="{not json", headers={"content-type": "application/json"})
    assert resp.status_code == 400
    assert resp.json()["error"] == "Invalid request data"


def _configure_storage(settings):
    settings.cloudinary_cloud_name = "demo"
    settings.cloudinary_api_key = "key"
    settings.cloudinary_api_secret = "secret"


def test_image_upload(client, login, make_user, settings, monkeypatch):
    _configure_storage(settings)
    calls = []

    def fake_upload(file, **options):
        calls.append({"content": file.read(), **options})
        return {"secure_url": "https://res.cloudinary.com/demo/image/upload/x.jpg", "public_id": "tifincart/x"}

    monkeypatch.setattr(cloudinary.uploader, "upload", fake_upload)
    login(make_user(role="seller"))

    resp = client.post("/api/upload/image", files={"image": ("dal.jpg", b"\xff\xd8jpegdata", "image/jpeg")})
    assert resp.status_code == 200
    assert resp.json()["data"] == {"url": "https://res.cloudinary.com/demo/image/upload/x.jpg",
                                   "public_id": "tifincart/x"}
    assert calls[0]["content"] == b"\xff\xd8jpegdata"
    assert calls[0]["folder"] == UPLOAD_FOLDER
    assert (calls[0]["cloud_name"], calls[0]["api_key"], calls[0]["api_secret"]) == ("demo", "key", "secret")


def test_image_upload_provider_failure(client, login, make_user, settings, monkeypatch):
    _configure_storage(settings)

    def rejected(file, **options):
        raise CloudinaryError("Invalid Signature")

    monkeypatch.setattr(cloudinary.uploader, "upload", rejected)
    login(make_user(role="seller"))
    resp = client.post("/api/upload/image", files={"image": ("dal.jpg", b"data", "image/jpeg")})
    assert resp.status_code == 500
    assert resp.json()["error"] == "Failed to upload image"


def test_image_upload_without_storage(client, login, make_user):
    login(make_user(role="seller"))
    resp = client.post("/api/upload/image", files={"image": ("dal.jpg", b"data", "image/jpeg")})
    assert resp.status_code == 500
    assert resp.json()["error"] == "Image storage is not configured"


def test_image_upload_rejections(client, login, make_user):
    login(make_user())
    assert client.post("/api/upload/image").json()["error"] == "No image file provided"
    resp = client.post("/api/upload/image", files={"image": ("notes.txt", b"hello", "text/plain")})
    assert resp.json()["error"] == "File must be an image"
    big = b"0" * (MAX_IMAGE_BYTES + 1)
    resp = client.post("/api/upload/image", files={"image": ("big.png", big, "image/png")})
    assert resp.status_code == 400
    assert resp.json()["error"] == "Image size must be less than 5MB"


def test_upload_requires_sign_in(client):
    resp = client.post("/api/upload/image", files={"image": ("dal.jpg", b"data", "image/jpeg")})
    assert resp.status_code == 401
