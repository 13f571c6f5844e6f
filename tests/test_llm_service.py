import json

import pytest
from pydantic_ai.exceptions import ModelHTTPError
from pydantic_ai.messages import ModelResponse, TextPart
from pydantic_ai.models.function import FunctionModel

from causemap.errors import ConfigurationError, MalformedResponseError, ServiceError, TransientServiceError
from causemap.tools.llm_service import LLMService
from causemap.tools.mock_responses import get_mock_label


def _model(text):
    def respond(messages, info):
        return ModelResponse(parts=[TextPart(content=text)])
    return FunctionModel(respond)


@pytest.mark.asyncio
async def test_mock_mode_returns_canned_json(settings):
    llm = LLMService(settings=settings)
    data = await llm.generate_json("1. a\n   Topics: water, sanitation\n")
    assert data["name"] == "Water Initiatives"
    assert data["keywords"] == ["water", "sanitation"]


@pytest.mark.asyncio
async def test_fenced_json_is_parsed(settings):
    answer = "Sure!\n```json\n" + json.dumps({"name": "Open Data"}) + "\n```"
    llm = LLMService(settings=settings, model=_model(answer))
    assert await llm.generate_json("label this") == {"name": "Open Data"}


@pytest.mark.asyncio
async def test_prose_answer_is_malformed(settings):
    llm = LLMService(settings=settings, model=_model("These projects are about health."))
    with pytest.raises(MalformedResponseError):
        await llm.generate_json("label this")


@pytest.mark.asyncio
@pytest.mark.parametrize("status,expected", [(429, TransientServiceError), (503, TransientServiceError), (401, ServiceError)])
async def test_http_errors_are_translated(settings, status, expected):
    def fail(messages, info):
        raise ModelHTTPError(status_code=status, model_name="test", body="error")

    llm = LLMService(settings=settings, model=FunctionModel(fail))
    with pytest.raises(expected) as exc:
        await llm.complete("hello")
    if expected is ServiceError:
        assert not isinstance(exc.value, TransientServiceError)


def test_live_mode_without_credentials_fails_fast(settings):
    live = settings.model_copy(update={"mock_mode": False, "openai_api_key": "", "llm_base_url": ""})
    with pytest.raises(ConfigurationError):
        LLMService(settings=live)


def test_mock_label_without_topics():
    label = get_mock_label("no topics here")
    assert label["name"] == "Community Technology"
    assert label["confidence"] == 0.5
