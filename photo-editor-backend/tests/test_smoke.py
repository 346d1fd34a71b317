"""Smoke tests for the FastAPI backend.

These tests exercise the enhance, AI and download endpoints through the
FastAPI TestClient against the app defined in ``main.py``. The hosted
inference API is never contacted: the Replicate client is replaced with
a fake that records what it was asked to run and answers with a real
``FileOutput`` whose download goes through an httpx MockTransport.
"""

import base64
import io
import json
import os

import httpx
import pytest
import replicate
from fastapi.testclient import TestClient
from PIL import Image  # type: ignore
from replicate.helpers import FileOutput

RESULT_URL = "https://replicate.delivery/pbxt/result.png"


class FakeReplicateClient:
    def __init__(self, output):
        self.output = output
        self.calls = []

    async def async_run(self, ref, input=None):
        self.calls.append((ref, input))
        return self.output


def _png_bytes(size=(8, 8)) -> bytes:
    buf = io.BytesIO()
    Image.new("RGBA", size, color=(0, 255, 0, 128)).save(buf, format="PNG")
    return buf.getvalue()


def _decode_data_url(data_url: str):
    header, b64 = data_url.split(",", 1)
    return header, Image.open(io.BytesIO(base64.b64decode(b64)))


@pytest.fixture
def main_module(monkeypatch):
    """Import ``main`` with AI disabled.

    The Replicate token is read on every call, so clearing it here is
    enough even when the module was imported by an earlier test.
    """
    monkeypatch.delenv("REPLICATE_API_TOKEN", raising=False)
    import main  # type: ignore

    return main


@pytest.fixture
def client(main_module):
    return TestClient(main_module.app)


@pytest.fixture
def fake_replicate(monkeypatch, main_module):
    from inference import replicate_agent

    png = _png_bytes()
    transport = httpx.MockTransport(
        lambda request: httpx.Response(200, content=png, headers={"content-type": "image/png"})
    )
    sdk_client = replicate.Client(api_token="r8_test", transport=transport)
    # single-file models answer with one FileOutput, not a list
    fake = FakeReplicateClient(FileOutput(RESULT_URL, sdk_client))
    monkeypatch.setattr(replicate_agent, "_get_client", lambda: fake)
    return fake


def test_health_reports_ai_disabled(client):
    resp = client.get("/health")
    assert resp.status_code == 200
    assert resp.json() == {"status": "ok", "ai_enabled": False}


def test_index_page_is_served(client):
    resp = client.get("/")
    assert resp.status_code == 200
    assert "Photo Editor" in resp.text


def test_enhance_default_returns_jpeg(client, make_image):
    files = {"image": ("photo.jpg", make_image((64, 48)), "image/jpeg")}
    resp = client.post("/api/enhance", files=files, data={"options": json.dumps({"mode": "enhance"})})
    assert resp.status_code == 200, resp.text
    header, img = _decode_data_url(resp.json()["enhancedImage"])
    assert header == "data:image/jpeg;base64"
    assert img.format == "JPEG"
    assert img.size == (64, 48)
    assert resp.headers["cache-control"] == "no-store"


def test_enhance_without_options_uses_defaults(client, make_image):
    files = {"image": ("photo.png", make_image((20, 10), fmt="PNG"), "image/png")}
    resp = client.post("/api/enhance", files=files)
    assert resp.status_code == 200, resp.text
    assert resp.json()["enhancedImage"].startswith("data:image/jpeg;base64,")


def test_enhance_crop_and_compression(client, make_image):
    options = {
        "mode": "vintage",
        "crop": {"x": 10, "y": 10, "width": 100, "height": 50},
        "compression": {"quality": 70, "format": "png", "maxWidth": 60},
    }
    files = {"image": ("photo.jpg", make_image((200, 100)), "image/jpeg")}
    resp = client.post("/api/enhance", files=files, data={"options": json.dumps(options)})
    assert resp.status_code == 200, resp.text
    header, img = _decode_data_url(resp.json()["enhancedImage"])
    assert header == "data:image/png;base64"
    assert img.size == (60, 30)


def test_enhance_ignores_zero_sized_crop(client, make_image):
    options = {"mode": "basic", "crop": {"x": 0, "y": 0, "width": 0, "height": 0}}
    files = {"image": ("photo.jpg", make_image((40, 30)), "image/jpeg")}
    resp = client.post("/api/enhance", files=files, data={"options": json.dumps(options)})
    assert resp.status_code == 200, resp.text
    _, img = _decode_data_url(resp.json()["enhancedImage"])
    assert img.size == (40, 30)


def test_enhance_missing_image(client):
    resp = client.post("/api/enhance", data={"options": "{}"})
    assert resp.status_code == 400
    assert resp.json() == {"error": "No image provided"}


def test_enhance_empty_image(client):
    resp = client.post("/api/enhance", files={"image": ("empty.jpg", b"", "image/jpeg")})
    assert resp.status_code == 400
    assert resp.json()["error"] == "No image provided"


def test_enhance_rejects_undecodable_image(client):
    files = {"image": ("notes.txt", b"definitely not an image", "text/plain")}
    resp = client.post("/api/enhance", files=files)
    assert resp.status_code == 400
    assert resp.json()["error"] == "Unable to decode image."


def test_enhance_rejects_bad_options(client, make_image):
    files = {"image": ("photo.jpg", make_image(), "image/jpeg")}
    resp = client.post("/api/enhance", files=files, data={"options": "{not json"})
    assert resp.status_code == 400
    assert resp.json()["error"].startswith("Invalid options")

    bad_quality = json.dumps({"compression": {"quality": 0}})
    resp = client.post("/api/enhance", files=files, data={"options": bad_quality})
    assert resp.status_code == 400
    assert "compression.quality" in resp.json()["error"]


def test_enhance_rejects_oversize_upload(client, main_module, monkeypatch, make_image):
    monkeypatch.setattr(main_module, "MAX_UPLOAD_BYTES", 16)
    files = {"image": ("photo.jpg", make_image(), "image/jpeg")}
    resp = client.post("/api/enhance", files=files)
    assert resp.status_code == 413


def test_enhance_unexpected_failure_is_generic_500(client, main_module, monkeypatch, make_image):
    def boom(data, options):
        raise RuntimeError("kaboom")

    monkeypatch.setattr(main_module, "process_image", boom)
    files = {"image": ("photo.jpg", make_image(), "image/jpeg")}
    resp = client.post("/api/enhance", files=files)
    assert resp.status_code == 500
    assert resp.json() == {"error": "Failed to process image"}


def test_ai_without_token_is_unavailable(client, make_image):
    files = {"image": ("photo.jpg", make_image(), "image/jpeg")}
    resp = client.post("/api/ai", files=files, data={"options": json.dumps({"mode": "background"})})
    assert resp.status_code == 503
    assert "REPLICATE_API_TOKEN" in resp.json()["error"]


def test_ai_background_removal(client, fake_replicate, make_image):
    files = {"image": ("photo.jpg", make_image(), "image/jpeg")}
    resp = client.post("/api/ai", files=files, data={"options": json.dumps({"mode": "background"})})
    assert resp.status_code == 200, resp.text
    header, img = _decode_data_url(resp.json()["enhancedImage"])
    assert header == "data:image/png;base64"
    assert img.mode == "RGBA"

    ref, payload = fake_replicate.calls[0]
    assert ref.startswith("ilkerc/rembg:")
    assert payload["image"].startswith("data:image/jpeg;base64,")


def test_ai_style_transfer_prompt(client, fake_replicate, make_image):
    options = {"mode": "style", "stylePreset": "dramatic"}
    files = {"image": ("photo.png", make_image(fmt="PNG"), "image/png")}
    resp = client.post("/api/ai", files=files, data={"options": json.dumps(options)})
    assert resp.status_code == 200, resp.text
    _, payload = fake_replicate.calls[0]
    assert payload["prompt"] == "Style of dramatic"
    assert payload["image"].startswith("data:image/png;base64,")


def test_ai_remove_forwards_mask(client, fake_replicate, make_image):
    files = {
        "image": ("photo.jpg", make_image(), "image/jpeg"),
        "mask": ("mask.png", _png_bytes(), "image/png"),
    }
    resp = client.post("/api/ai", files=files, data={"options": json.dumps({"mode": "remove"})})
    assert resp.status_code == 200, resp.text
    _, payload = fake_replicate.calls[0]
    assert payload["mask"].startswith("data:image/png;base64,")
    assert payload["prompt"] == "clean empty background"


def test_ai_unknown_mode(client, fake_replicate, make_image):
    files = {"image": ("photo.jpg", make_image(), "image/jpeg")}
    resp = client.post("/api/ai", files=files, data={"options": json.dumps({"mode": "hdr"})})
    assert resp.status_code == 400
    assert resp.json()["error"] == "Unsupported AI mode 'hdr'."
    assert fake_replicate.calls == []


def test_ai_empty_model_output_is_bad_gateway(client, fake_replicate, make_image):
    fake_replicate.output = []
    files = {"image": ("photo.jpg", make_image(), "image/jpeg")}
    resp = client.post("/api/ai", files=files, data={"options": json.dumps({"mode": "retouch"})})
    assert resp.status_code == 502
    assert resp.json()["error"] == "Model returned no output."


def test_download_returns_attachment(client):
    png = _png_bytes()
    data_url = "data:image/png;base64," + base64.b64encode(png).decode()
    resp = client.post("/api/download", data={"data_url": data_url, "filename": "my photo"})
    assert resp.status_code == 200
    assert resp.content == png
    assert resp.headers["content-type"] == "image/png"
    assert resp.headers["content-disposition"] == 'attachment; filename="my_photo.png"'


def test_download_default_name(client):
    data_url = "data:image/jpeg;base64," + base64.b64encode(b"\xff\xd8\xff").decode()
    resp = client.post("/api/download", data={"data_url": data_url})
    assert resp.status_code == 200
    assert resp.headers["content-disposition"] == 'attachment; filename="processed-image.jpg"'


def test_download_rejects_malformed_data_url(client):
    resp = client.post("/api/download", data={"data_url": "https://example.com/x.png"})
    assert resp.status_code == 400
    assert resp.json() == {"error": "Malformed data URL."}


def test_download_requires_data_url(client):
    resp = client.post("/api/download", data={})
    assert resp.status_code == 400
    assert "data_url" in resp.json()["error"]


def test_ai_reads_whole_file_output(client, fake_replicate, make_image):
    files = {"image": ("photo.jpg", make_image(), "image/jpeg")}
    resp = client.post("/api/ai", files=files, data={"options": json.dumps({"mode": "retouch"})})
    assert resp.status_code == 200, resp.text
    _, img = _decode_data_url(resp.json()["enhancedImage"])
    assert img.size == (8, 8)


def test_download_accepts_large_text_field(client):
    # base64 of the payload is well past the default 1 MB multipart field limit
    payload = os.urandom(900_000)
    data_url = "data:image/png;base64," + base64.b64encode(payload).decode()
    resp = client.post("/api/download", files={"data_url": (None, data_url), "filename": (None, "big")})
    assert resp.status_code == 200, resp.text
    assert resp.content == payload
    assert resp.headers["content-disposition"] == 'attachment; filename="big.png"'


def test_download_accepts_data_url_as_file_part(client):
    png = _png_bytes()
    data_url = "data:image/png;base64," + base64.b64encode(png).decode()
    files = {"data_url": ("result.txt", data_url.encode(), "text/plain")}
    resp = client.post("/api/download", files=files)
    assert resp.status_code == 200, resp.text
    assert resp.content == png


def test_app_logger_is_module_scoped(main_module):
    assert main_module.logger.name == "main"
