"""Tests for the Gemini gateway client, using a fake requests.post."""

import pytest
import requests

import api_clients
from api_clients import (
    DEFAULT_WATERMARK_INSTRUCTION,
    GUIDE_PERSONA,
    GeminiClient,
    ResponseShape,
    decode_parts,
    parse_sample_rate,
    sanitize_for_tts,
)
from conftest import FakePost, b64, make_response, parts_response
from errors import (
    ChatFailed,
    DecodeError,
    GenerationFailed,
    ImageGenerationFailed,
    MissingApiKey,
    NoImageReturned,
    SpeechGenerationFailed,
)
from models import MODEL_ROLE, USER_ROLE, AudioResult, ChatMessage, ImageResult, TextResult


@pytest.fixture
def fake_post(monkeypatch):
    def install(*responses):
        fake = FakePost(*responses)
        monkeypatch.setattr(api_clients.requests, "post", fake)
        return fake
    return install


def test_missing_api_key_fails_before_any_network_call(no_api_key, fake_post):
    fake = fake_post()
    client = GeminiClient(config={"GEMINI_API_KEY": ""})

    with pytest.raises(MissingApiKey):
        client.generate_script("a quiet lake")

    assert fake.calls == []


def test_generate_script_embeds_topic_and_returns_text(api_key, fake_post):
    fake = fake_post(make_response(200, parts_response({"text": "Close your eyes."})))

    script = GeminiClient().generate_script("a foggy pine forest")

    assert script == "Close your eyes."
    call = fake.calls[0]
    assert call["url"].endswith("/gemini-2.5-flash:generateContent")
    assert call["headers"]["x-goog-api-key"] == "test-key"
    assert "key=" not in call["url"]
    prompt = call["json"]["contents"][0]["parts"][0]["text"]
    assert '"a foggy pine forest"' in prompt
    assert "150-200 words" in prompt
    assert call["timeout"] == 120


def test_explicit_key_wins_over_environment(api_key, fake_post):
    fake = fake_post(make_response(200, parts_response({"text": "ok"})))

    GeminiClient(api_key="explicit").generate_script("calm")

    assert fake.calls[0]["headers"]["x-goog-api-key"] == "explicit"


def test_script_provider_error_is_typed(api_key, fake_post):
    fake_post(make_response(500, {"error": {"message": "internal"}}))

    with pytest.raises(GenerationFailed) as exc_info:
        GeminiClient().generate_script("calm")

    assert "internal" in str(exc_info.value)


def test_quota_errors_mention_quota(api_key, fake_post):
    fake_post(make_response(429, {"error": {"message": "Resource has been exhausted"}}))

    with pytest.raises(ImageGenerationFailed) as exc_info:
        GeminiClient().generate_image("ocean")

    assert "Quota Exceeded" in str(exc_info.value)


def test_network_errors_are_typed(api_key, fake_post):
    fake_post(requests.exceptions.ConnectionError("offline"))

    with pytest.raises(ChatFailed):
        GeminiClient().chat([], "hello")


def test_generate_image_returns_data_url_with_mime(api_key, fake_post):
    fake = fake_post(make_response(200, parts_response(
        {"text": "Here is your image"},
        {"inlineData": {"mimeType": "image/png", "data": "aW1n"}},
    )))

    url = GeminiClient().generate_image("sunrise", "1K", "16:9")

    assert url == "data:image/png;base64,aW1n"
    body = fake.calls[0]["json"]
    assert fake.calls[0]["url"].endswith("/gemini-2.5-flash-image:generateContent")
    assert body["contents"][0]["parts"][0]["text"].startswith("meditation background, sunrise, serene")
    assert body["generationConfig"]["imageConfig"] == {"aspectRatio": "16:9"}


@pytest.mark.parametrize("size", ["2K", "4K"])
def test_high_res_sizes_route_to_pro_model(api_key, fake_post, size):
    fake = fake_post(make_response(200, parts_response({"inlineData": {"mimeType": "image/png", "data": "aW1n"}})))

    GeminiClient().generate_image("sunrise", size)

    assert fake.calls[0]["url"].endswith("/gemini-3-pro-image-preview:generateContent")
    assert fake.calls[0]["json"]["generationConfig"]["imageConfig"] == {"imageSize": size}


def test_unknown_image_size_is_rejected(api_key, fake_post):
    fake = fake_post()

    with pytest.raises(ValueError):
        GeminiClient().generate_image("sunrise", "8K")

    assert fake.calls == []


def test_image_response_without_inline_data_fails(api_key, fake_post):
    fake_post(make_response(200, parts_response({"text": "I cannot draw that."})))

    with pytest.raises(ImageGenerationFailed):
        GeminiClient().generate_image("sunrise")


def test_chat_replays_history_in_order_with_persona(api_key, fake_post):
    fake = fake_post(make_response(200, parts_response({"text": "Breathe slowly."})))
    history = [
        ChatMessage(role=USER_ROLE, text="I feel tense"),
        ChatMessage(role=MODEL_ROLE, text="Let us breathe"),
    ]

    reply = GeminiClient().chat(history, "How long?")

    assert reply == "Breathe slowly."
    body = fake.calls[0]["json"]
    assert body["contents"] == [
        {"role": "user", "parts": [{"text": "I feel tense"}]},
        {"role": "model", "parts": [{"text": "Let us breathe"}]},
        {"role": "user", "parts": [{"text": "How long?"}]},
    ]
    assert body["systemInstruction"] == {"parts": [{"text": GUIDE_PERSONA}]}


def test_chat_without_text_fails(api_key, fake_post):
    fake_post(make_response(200, {"candidates": [{"content": {"parts": []}, "finishReason": "SAFETY"}]}))

    with pytest.raises(ChatFailed) as exc_info:
        GeminiClient().chat([], "hello")

    assert "SAFETY" in str(exc_info.value)


def test_remove_watermark_strips_header_and_keeps_mime(api_key, fake_post):
    fake = fake_post(make_response(200, parts_response({"inlineData": {"mimeType": "image/png", "data": "Y2xlYW4="}})))

    result = GeminiClient().remove_watermark("data:image/png;base64,b3JpZ2luYWw=")

    assert result == "data:image/png;base64,Y2xlYW4="
    parts = fake.calls[0]["json"]["contents"][0]["parts"]
    assert parts[0] == {"text": DEFAULT_WATERMARK_INSTRUCTION}
    assert parts[1] == {"inlineData": {"mimeType": "image/png", "data": "b3JpZ2luYWw="}}


def test_remove_watermark_uses_custom_instruction(api_key, fake_post):
    fake = fake_post(make_response(200, parts_response({"inlineData": {"mimeType": "image/jpeg", "data": "eA=="}})))

    GeminiClient().remove_watermark("b3JpZ2luYWw=", "  remove the date stamp ")

    parts = fake.calls[0]["json"]["contents"][0]["parts"]
    assert parts[0]["text"] == "Edit this image: remove the date stamp. Output only the modified image."
    assert parts[1]["inlineData"]["mimeType"] == "image/jpeg"


def test_remove_watermark_without_image_fails(api_key, fake_post):
    fake_post(make_response(200, parts_response({"text": "No watermark found."})))

    with pytest.raises(NoImageReturned):
        GeminiClient().remove_watermark("data:image/jpeg;base64,eA==")


def test_generate_speech_decodes_pcm_and_rate(api_key, fake_post):
    pcm = b"\x01\x00\x02\x00"
    fake = fake_post(make_response(200, parts_response(
        {"inlineData": {"mimeType": "audio/L16;codec=pcm;rate=16000", "data": b64(pcm)}},
    )))

    audio = GeminiClient(config={"TTS_VOICE": "Leda"}).generate_speech("Relax 😌 **now**")

    assert audio == AudioResult(pcm=pcm, sample_rate=16000)
    body = fake.calls[0]["json"]
    assert body["generationConfig"]["responseModalities"] == ["AUDIO"]
    assert body["generationConfig"]["speechConfig"]["voiceConfig"]["prebuiltVoiceConfig"]["voiceName"] == "Leda"
    assert body["contents"][0]["parts"][0]["text"].endswith("Relax now")


def test_generate_speech_without_audio_fails(api_key, fake_post):
    fake_post(make_response(200, parts_response({"text": "no audio"})))

    with pytest.raises(SpeechGenerationFailed):
        GeminiClient().generate_speech("hello")


def test_decode_parts_first_match_wins_and_skips_thoughts():
    response = parts_response(
        {"text": "thinking...", "thought": True},
        {"text": "first"},
        {"text": "second"},
        {"inlineData": {"mimeType": "image/png", "data": "QQ=="}},
        {"inlineData": {"mimeType": "image/jpeg", "data": "Qg=="}},
    )

    assert decode_parts(response, ResponseShape.TEXT) == TextResult("first")
    assert decode_parts(response, ResponseShape.IMAGE) == ImageResult("QQ==", "image/png")


def test_decode_parts_without_candidates_reports_block_reason():
    with pytest.raises(ImageGenerationFailed) as exc_info:
        decode_parts({"promptFeedback": {"blockReason": "SAFETY"}}, ResponseShape.IMAGE, ImageGenerationFailed)

    assert "SAFETY" in str(exc_info.value)


def test_parse_sample_rate_defaults_to_24k():
    assert parse_sample_rate("audio/L16;codec=pcm;rate=44100") == 44100
    assert parse_sample_rate("audio/pcm") == 24000
    assert parse_sample_rate("") == 24000


def test_sanitize_for_tts():
    assert sanitize_for_tts("  *Breathe*   in 🌿 — slowly  ") == "Breathe in - slowly"


@pytest.mark.parametrize("image", ["", "data:image/png;base64,", "data:image/png;base64,   "])
def test_remove_watermark_rejects_empty_image(api_key, fake_post, image):
    fake = fake_post()

    with pytest.raises(DecodeError):
        GeminiClient().remove_watermark(image)

    assert fake.calls == []
