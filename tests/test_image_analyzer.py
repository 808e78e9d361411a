import asyncio
import json
from types import SimpleNamespace

import httpx
import openai
import pytest

from controllers.analysis_controller import analysis_status_code
from services.openai.analysis_errors import (
    AnalysisRefusedError,
    AnalysisTransportError,
    AnalysisUnparseableError,
)
from services.openai.analysis_prompts import build_analysis_prompt
from services.openai.analysis_schema import RESPONSE_FORMAT
from services.openai.image_analyzer import ImageAnalyzer
from services.openai.model_catalog import resolve_model
from services.openai.response_parser import extract_usage, parse_structured_output


def _response(content=None, refusal=None, usage=True):
    message = SimpleNamespace(content=content, refusal=refusal)
    return SimpleNamespace(
        choices=[SimpleNamespace(message=message)],
        usage=SimpleNamespace(prompt_tokens=120, completion_tokens=40, total_tokens=160) if usage else None,
        system_fingerprint="fp_test",
    )


def _payload(**overrides):
    payload = {
        "image_recognition_description": "A man named Alex standing on a beach at sunset.",
        "image_generation_prompt": "Alex on a beach at sunset, warm light",
        "tags": ["alex", " beach ", ""],
    }
    payload.update(overrides)
    return json.dumps(payload)


class FakeCompletions:
    def __init__(self, response=None, exc=None):
        self.response = response
        self.exc = exc
        self.calls = []

    async def create(self, **kwargs):
        self.calls.append(kwargs)
        if self.exc is not None:
            raise self.exc
        return self.response


def _client(completions):
    return SimpleNamespace(chat=SimpleNamespace(completions=completions))


def _request():
    return httpx.Request("POST", "https://api.openai.com/v1/chat/completions")


def test_prompt_with_context_requires_given_names():
    prompt = build_analysis_prompt("The man is named Alex.")
    assert "Additional context for this image: The man is named Alex." in prompt
    assert "verbatim" in prompt
    assert "Additional context" not in build_analysis_prompt(None)
    assert "Additional context" not in build_analysis_prompt("   ")


def test_parse_structured_output_cleans_tags():
    parsed = parse_structured_output(_response(_payload()))
    assert parsed["prompt"] == "Alex on a beach at sunset, warm light"
    assert parsed["tags"] == ["alex", "beach"]


@pytest.mark.parametrize(
    "response, error",
    [
        (_response(refusal="I can't help with that."), AnalysisRefusedError),
        (_response(""), AnalysisUnparseableError),
        (_response("{not json"), AnalysisUnparseableError),
        (_response(_payload(image_generation_prompt="")), AnalysisUnparseableError),
        (SimpleNamespace(choices=[]), AnalysisUnparseableError),
    ],
)
def test_parse_structured_output_failures(response, error):
    with pytest.raises(error):
        parse_structured_output(response)


def test_extract_usage_handles_missing_usage():
    assert extract_usage(_response(_payload(), usage=False)) is None
    assert extract_usage(_response(_payload()))["total_tokens"] == 160


def test_analyze_sends_structured_request_and_records_metadata(png):
    completions = FakeCompletions(response=_response(_payload()))
    analyzer = ImageAnalyzer(_client(completions), temperature=0.2, seed=42, timeout=30)

    result = asyncio.run(
        analyzer.analyze(png, filename="alex.png", context="The man is named Alex.", model="gpt-4o", mime_type="image/png")
    )

    call = completions.calls[0]
    assert call["model"] == "gpt-4o"
    assert call["response_format"] == RESPONSE_FORMAT
    assert (call["temperature"], call["seed"], call["timeout"]) == (0.2, 42, 30)
    user_content = call["messages"][1]["content"]
    assert "The man is named Alex." in user_content[0]["text"]
    assert user_content[1]["image_url"]["url"].startswith("data:image/png;base64,")

    assert result.prompt == "Alex on a beach at sunset, warm light"
    assert result.metadata.model == "gpt-4o"
    assert result.metadata.usage == {"prompt_tokens": 120, "completion_tokens": 40, "total_tokens": 160}
    assert result.metadata.system_fingerprint == "fp_test"


def test_refusal_carries_filename(png):
    analyzer = ImageAnalyzer(_client(FakeCompletions(response=_response(refusal="no"))))
    with pytest.raises(AnalysisRefusedError) as excinfo:
        asyncio.run(analyzer.analyze(png, filename="x.png", model="gpt-4o-mini"))
    assert excinfo.value.filename == "x.png"
    assert analysis_status_code(excinfo.value) == 422


def test_api_timeout_becomes_transport_error(png):
    analyzer = ImageAnalyzer(_client(FakeCompletions(exc=openai.APITimeoutError(request=_request()))))
    with pytest.raises(AnalysisTransportError) as excinfo:
        asyncio.run(analyzer.analyze(png, filename="x.png", model="gpt-4o-mini"))
    assert excinfo.value.filename == "x.png"
    assert analysis_status_code(excinfo.value) == 504


def test_connection_error_becomes_transport_error(png):
    analyzer = ImageAnalyzer(_client(FakeCompletions(exc=openai.APIConnectionError(request=_request()))))
    with pytest.raises(AnalysisTransportError) as excinfo:
        asyncio.run(analyzer.analyze(png, filename="x.png", model="gpt-4o-mini"))
    assert analysis_status_code(excinfo.value) == 502


def test_analyzer_requires_client():
    with pytest.raises(ValueError):
        ImageAnalyzer(None)


def test_resolve_model():
    assert resolve_model(None, "gpt-4o-mini") == "gpt-4o-mini"
    assert resolve_model("gpt-4o", "gpt-4o-mini") == "gpt-4o"
    assert resolve_model(" ", "my-deployment") == "my-deployment"
    with pytest.raises(ValueError):
        resolve_model("dall-e-3", "gpt-4o-mini")
