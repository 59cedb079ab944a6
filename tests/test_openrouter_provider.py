import json

import httpx
import pytest

from conftest import RecordingTransport
from src.core.errors import ExtractionError, ProviderLogicalError, TransportError, ValidationError
from src.media.providers.base import GenerationRequest
from src.media.providers.openrouter_provider import SYSTEM_PROMPT, OpenRouterImageProvider
from src.media.providers.responses import ChatCompletionResponse


def _request(**overrides) -> GenerationRequest:
    values = {
        "prompt": "cat astronaut",
        "aspect_ratio": "16:9",
        "resolution": "1080p",
        "output_format": "png",
        "safety_filter_level": "block_only_high",
        "reference_images": ("data:image/png;base64,QUJD",),
        "api_key": "sk-or-secret",
    }
    values.update(overrides)
    return GenerationRequest(**values)


def _chat(message: dict) -> dict:
    return {"id": "gen-1", "choices": [{"message": {"role": "assistant", **message}}]}


def _provider(transport: RecordingTransport, diagnostics) -> OpenRouterImageProvider:
    return OpenRouterImageProvider(api_key="sk-or-secret", diagnostics=diagnostics, client=transport.client())


@pytest.mark.anyio
async def test_markdown_embedded_image_is_extracted(diagnostics) -> None:
    def _handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json=_chat({"content": "![x](data:image/png;base64,AAAA)"}))

    transport = RecordingTransport(_handler)

    result = await _provider(transport, diagnostics).generate(_request())

    assert result.image == "data:image/png;base64,AAAA"
    assert result.mime_type == "image/png"

    (sent,) = transport.requests
    assert sent.headers["authorization"] == "Bearer sk-or-secret"
    assert sent.headers["x-title"] == "NanoThumbnail"
    body = json.loads(sent.content)
    assert body["modalities"] == ["image"]
    assert body["image_config"] == {"aspect_ratio": "16:9", "image_size": "2K"}
    assert body["messages"][0] == {"role": "system", "content": SYSTEM_PROMPT}
    assert body["messages"][1]["content"] == [
        {"type": "text", "text": "cat astronaut"},
        {"type": "image_url", "image_url": {"url": "data:image/png;base64,QUJD"}},
    ]


def test_extraction_order_prefers_images_array() -> None:
    parsed = ChatCompletionResponse.parse(
        _chat(
            {
                "content": "data:image/png;base64,FROMCONTENT",
                "images": [{"type": "image_url", "image_url": {"url": "data:image/webp;base64,FROMIMAGES"}}],
            }
        )
    )

    assert parsed.locate_image() == "data:image/webp;base64,FROMIMAGES"


def test_extraction_handles_data_uri_and_raw_base64_content() -> None:
    direct = ChatCompletionResponse.parse(_chat({"content": "data:image/jpeg;base64,BBBB"}))
    raw = ChatCompletionResponse.parse(_chat({"content": "iVBORw0KGgoAAAANSUhEUgAA"}))
    parts = ChatCompletionResponse.parse(
        _chat({"content": [{"type": "text", "text": "![thumb](data:image/png;base64,CCCC)"}]})
    )

    assert direct.locate_image() == "data:image/jpeg;base64,BBBB"
    assert raw.locate_image() == "data:image/png;base64,iVBORw0KGgoAAAANSUhEUgAA"
    assert parts.locate_image() == "data:image/png;base64,CCCC"


@pytest.mark.anyio
async def test_text_only_reply_differs_from_http_failure(diagnostics) -> None:
    def _text_only(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json=_chat({"content": "Sorry, I can only describe images."}))

    def _http_failure(request: httpx.Request) -> httpx.Response:
        return httpx.Response(402, json={"error": {"message": "Insufficient credits"}})

    with pytest.raises(ExtractionError) as text_only:
        await _provider(RecordingTransport(_text_only), diagnostics).generate(_request())
    with pytest.raises(TransportError) as http_failure:
        await _provider(RecordingTransport(_http_failure), diagnostics).generate(_request())

    assert text_only.value.kind == "extraction"
    assert text_only.value.status_code == 500
    assert text_only.value.details["message"] == "No image returned by openrouter"
    assert http_failure.value.kind == "transport"
    assert http_failure.value.status_code == 402
    assert http_failure.value.details == {"error": {"message": "Insufficient credits"}}
    assert [report.status_code for report in diagnostics.reports] == [500, 402]


@pytest.mark.anyio
async def test_error_field_in_success_body_is_a_provider_error(diagnostics) -> None:
    def _handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"error": {"message": "Model overloaded", "code": 503}})

    with pytest.raises(ProviderLogicalError) as exc_info:
        await _provider(RecordingTransport(_handler), diagnostics).generate(_request())

    assert exc_info.value.code == "openrouter_error"
    assert exc_info.value.status_code == 500


@pytest.mark.anyio
async def test_missing_key_is_rejected_before_any_request(diagnostics) -> None:
    transport = RecordingTransport(lambda request: httpx.Response(200, json={}))
    provider = OpenRouterImageProvider(api_key="", diagnostics=diagnostics, client=transport.client())

    with pytest.raises(ValidationError):
        await provider.generate(_request())

    assert transport.requests == []
