from __future__ import annotations

from fastapi.testclient import TestClient

from conftest import PNG_B64, DummyModel
from image_chat.errors import UpstreamError
from image_chat.llm import GenerationConfig
from image_chat.memory import SessionHistory
from image_chat.server import create_app

IMAGE_URL = f"data:image/png;base64,{PNG_B64}"


def _client(missing_config: str, model=None, history=None) -> TestClient:
    app = create_app(config_path=missing_config, model=model or DummyModel(), history=history)
    return TestClient(app)


class FailingModel:
    def generate(self, turns):
        raise UpstreamError("Generation failed", detail="quota exceeded")


class ExplodingModel:
    def generate(self, turns):
        raise RuntimeError("socket closed")


# -----------------------------
# JSON variant
# -----------------------------
def test_generate_returns_image_text_and_history(missing_config):
    history = SessionHistory()
    model = DummyModel()
    client = _client(missing_config, model, history)

    r = client.post("/api/generate", json={"sessionId": "s1", "prompt": "make it blue", "imageDataUrl": IMAGE_URL})
    assert r.status_code == 200
    body = r.json()
    assert body["imageDataUrl"] == IMAGE_URL
    assert body["text"] == "Here is your edit."
    assert [t["role"] for t in body["history"]] == ["user", "model"]
    assert body["history"][0]["parts"] == [
        {"inlineData": {"data": PNG_B64, "mimeType": "image/png"}},
        {"text": "make it blue"},
    ]
    assert model.calls[0] == [body["history"][0]]
    assert history.get("s1") == body["history"]


def test_generate_without_inputs_is_400_and_leaves_history_alone(missing_config):
    history = SessionHistory()
    model = DummyModel()
    client = _client(missing_config, model, history)

    for body in ({}, {"sessionId": "s1"}, {"sessionId": "s1", "prompt": "", "imageDataUrl": ""}):
        r = client.post("/api/generate", json=body)
        assert r.status_code == 400
        assert "error" in r.json()

    assert model.calls == []
    assert "s1" not in history
    assert len(history) == 0


def test_history_grows_by_two_turns_per_exchange(missing_config):
    history = SessionHistory()
    model = DummyModel()
    client = _client(missing_config, model, history)

    for i in range(3):
        r = client.post("/api/generate", json={"sessionId": "alice", "prompt": f"edit {i}"})
        assert r.status_code == 200
        assert len(r.json()["history"]) == 2 * (i + 1)

    stored = history.get("alice")
    assert [t["role"] for t in stored] == ["user", "model"] * 3
    assert [t["parts"][0]["text"] for t in stored[::2]] == ["edit 0", "edit 1", "edit 2"]
    # The model sees prior turns plus the new user turn.
    assert len(model.calls[2]) == 5
    assert model.calls[2][-1] == {"role": "user", "parts": [{"text": "edit 2"}]}


def test_missing_session_id_uses_default(missing_config):
    history = SessionHistory()
    client = _client(missing_config, DummyModel(), history)
    assert client.post("/api/generate", json={"prompt": "hi"}).status_code == 200
    assert len(history.get("default")) == 2


def test_text_only_reply_is_not_an_error(missing_config):
    history = SessionHistory()
    client = _client(missing_config, DummyModel(parts=[{"text": "I need more detail, please."}]), history)

    r = client.post("/api/generate", json={"sessionId": "s", "prompt": "edit"})
    assert r.status_code == 200
    assert r.json()["imageDataUrl"] is None
    assert r.json()["text"] == "I need more detail, please."
    assert len(history.get("s")) == 2


def test_empty_reply_reports_no_image_returned(missing_config):
    client = _client(missing_config, DummyModel(parts=[]))
    r = client.post("/api/generate", json={"prompt": "edit"})
    assert r.status_code == 200
    assert r.json()["imageDataUrl"] is None
    assert r.json()["text"] == "No image returned"


def test_malformed_data_url_is_dropped_silently(missing_config):
    model = DummyModel()
    client = _client(missing_config, model)
    r = client.post("/api/generate", json={"prompt": "hello", "imageDataUrl": "not-a-data-url"})
    assert r.status_code == 200
    assert model.calls[0][-1] == {"role": "user", "parts": [{"text": "hello"}]}


def test_upstream_failure_is_500_with_details_and_no_mutation(missing_config):
    history = SessionHistory()
    client = _client(missing_config, FailingModel(), history)

    r = client.post("/api/generate", json={"sessionId": "s", "prompt": "edit"})
    assert r.status_code == 500
    assert r.json() == {"error": "Generation failed", "details": "quota exceeded"}
    assert history.get("s") == []


def test_unexpected_model_exception_is_500(missing_config):
    client = _client(missing_config, ExplodingModel())
    r = client.post("/api/generate", json={"prompt": "edit"})
    assert r.status_code == 500
    assert r.json()["details"] == "socket closed"


def test_unconfigured_model_is_500(missing_config):
    client = TestClient(create_app(config_path=missing_config))
    r = client.post("/api/generate", json={"prompt": "edit"})
    assert r.status_code == 500
    assert "GEMINI_API_KEY" in r.json()["error"]


def test_oversized_body_is_rejected(missing_config, monkeypatch):
    monkeypatch.setenv("IMAGE_CHAT__SERVER__MAX_BODY_MB", "0.001")
    client = _client(missing_config)
    r = client.post("/api/generate", json={"prompt": "x" * 4096})
    assert r.status_code == 413


# -----------------------------
# Multipart variant
# -----------------------------
def test_images_requires_multipart(missing_config):
    client = _client(missing_config)
    r = client.post("/api/images", json={"prompt": "edit"})
    assert r.status_code == 400
    assert r.json()["error"] == "Expected multipart/form-data"


def test_images_requires_prompt_or_image(missing_config):
    client = _client(missing_config)
    r = client.post("/api/images", files={"prompt": (None, ""), "history": (None, "[]")})
    assert r.status_code == 400


def test_images_missing_credentials_is_500(missing_config):
    client = TestClient(create_app(config_path=missing_config))
    r = client.post("/api/images", files={"prompt": (None, "a cat")})
    assert r.status_code == 500
    assert r.json()["error"] == "Missing GEMINI_API_KEY in environment."


def test_images_forwards_history_and_upload(missing_config):
    model = DummyModel()
    client = _client(missing_config, model)
    prior = '[{"role": "user", "parts": [{"text": "a cat"}]}, {"bad": true}, {"role": "model", "parts": []}]'

    r = client.post(
        "/api/images",
        files={
            "prompt": (None, "add a hat"),
            "history": (None, prior),
            "image": ("photo.JPEG", b"\xff\xd8\xff", "image/jpeg"),
        },
    )
    assert r.status_code == 200
    assert r.json() == {"imageBase64": PNG_B64, "mimeType": "image/png"}

    sent = model.calls[0]
    assert [t["role"] for t in sent] == ["user", "model", "user"]
    assert sent[-1]["parts"] == [
        {"inlineData": {"data": "/9j/", "mimeType": "image/jpeg"}},
        {"text": "add a hat"},
    ]


def test_images_tolerates_unparsable_history(missing_config):
    model = DummyModel()
    client = _client(missing_config, model)
    r = client.post("/api/images", files={"prompt": (None, "a dog"), "history": (None, "{oops")})
    assert r.status_code == 200
    assert model.calls[0] == [{"role": "user", "parts": [{"text": "a dog"}]}]


def test_images_without_image_is_502(missing_config):
    client = _client(missing_config, DummyModel(parts=[{"text": "I can only describe it."}]))
    r = client.post("/api/images", files={"prompt": (None, "a dog")})
    assert r.status_code == 502
    assert r.json()["error"] == "Model did not return an image."


def test_images_upstream_failure_is_500(missing_config):
    client = _client(missing_config, FailingModel())
    r = client.post("/api/images", files={"prompt": (None, "a dog")})
    assert r.status_code == 500
    assert r.json()["details"] == "quota exceeded"


# -----------------------------
# Misc routes
# -----------------------------
def test_health_and_sessions(missing_config):
    history = SessionHistory()
    client = _client(missing_config, DummyModel(), history)
    client.post("/api/generate", json={"sessionId": "s", "prompt": "edit"})

    health = client.get("/health").json()
    assert health["ok"] is True
    assert health["sessions"] == 1

    r = client.get("/api/sessions/s")
    assert r.json()["sessionId"] == "s"
    assert len(r.json()["history"]) == 2

    assert client.delete("/api/sessions/s").json() == {"ok": True}
    assert history.get("s") == []


def test_root_serves_ui(missing_config):
    r = _client(missing_config).get("/")
    assert r.status_code == 200
    assert "text/html" in r.headers["content-type"]


# -----------------------------
# Base64 text fallback
# -----------------------------
class RawTextModel(DummyModel):
    """Replies with image bytes as plain text, as some SDKs do for image MIME requests."""

    def __init__(self, generation=None):
        super().__init__(parts=[{"text": PNG_B64}])
        if generation is not None:
            self.generation = generation


def test_images_decodes_base64_text_when_image_mime_requested(missing_config):
    model = RawTextModel(GenerationConfig(response_mime_type="image/png"))
    r = _client(missing_config, model).post("/api/images", files={"prompt": (None, "a dog")})
    assert r.status_code == 200
    assert r.json() == {"imageBase64": PNG_B64, "mimeType": "image/png"}


def test_images_ignores_base64_text_without_image_mime(missing_config):
    r = _client(missing_config, RawTextModel()).post("/api/images", files={"prompt": (None, "a dog")})
    assert r.status_code == 502


def test_generate_decodes_base64_text_when_image_mime_requested(missing_config):
    model = RawTextModel(GenerationConfig(response_mime_type="image/png"))
    r = _client(missing_config, model).post("/api/generate", json={"prompt": "a dog"})
    assert r.status_code == 200
    assert r.json()["imageDataUrl"] == IMAGE_URL


def test_images_infers_type_for_octet_stream_upload(missing_config):
    model = DummyModel()
    client = _client(missing_config, model)
    r = client.post("/api/images", files={"image": ("scan.webp", b"RIFF", "application/octet-stream")})
    assert r.status_code == 200
    assert model.calls[0][-1]["parts"][0]["inlineData"]["mimeType"] == "image/webp"


def test_reading_unknown_session_does_not_create_it(missing_config):
    history = SessionHistory(max_sessions=1)
    client = _client(missing_config, DummyModel(), history)
    client.post("/api/generate", json={"sessionId": "real", "prompt": "edit"})

    for sid in ("x1", "x2", "x3"):
        r = client.get(f"/api/sessions/{sid}")
        assert r.status_code == 200
        assert r.json() == {"sessionId": sid, "history": []}

    assert history.list_sessions() == ["real"]
    assert len(history.get("real")) == 2
