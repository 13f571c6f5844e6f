"""
LLM Service — pydantic-ai backed client for cause labeling.

Wraps an OpenAI-compatible chat model (OpenAI, or any local server that
speaks the same API via LLM_BASE_URL) in cached pydantic-ai Agents. In
mock mode the model is a FunctionModel returning deterministic canned
JSON, so the whole pipeline runs offline.

Failures are translated into the pipeline's error taxonomy:
  - 429 / 5xx / timeouts / transport errors → TransientServiceError
  - any other model failure                  → ServiceError
  - unparseable JSON                         → MalformedResponseError
"""

import logging
from typing import Any, Dict, Optional

import httpx
from pydantic_ai import Agent
from pydantic_ai.exceptions import AgentRunError, ModelHTTPError
from pydantic_ai.models import Model
from pydantic_ai.models.function import FunctionModel
from pydantic_ai.models.openai import OpenAIChatModel
from pydantic_ai.providers.openai import OpenAIProvider
from pydantic_ai.settings import ModelSettings

from ..config import Settings, get_settings
from ..errors import ConfigurationError, ServiceError, TransientServiceError
from . import json_repair
from .mock_responses import get_mock_response_for_function_model

logger = logging.getLogger(__name__)

JSON_INSTRUCTION = "\nYou must respond with valid JSON only. No markdown, no explanation."


class LLMService:
    """Language-model client injected into the cause labeler.

    The orchestrator owns its lifecycle: call ``aclose()`` (or use it as an
    async context manager) when the run is over.
    """

    def __init__(
        self,
        settings: Optional[Settings] = None,
        mock_mode: Optional[bool] = None,
        model: Optional[Model] = None,
    ):
        self.settings = settings or get_settings()
        self.mock_mode = self.settings.mock_mode if mock_mode is None else mock_mode
        self._http_client: Optional[httpx.AsyncClient] = None
        self.model = model or self._build_model()
        self._agents: Dict[str, Agent] = {}
        if self.mock_mode and model is None:
            logger.info("LLM: MOCK mode (canned responses)")
        else:
            logger.info(f"LLM: {getattr(self.model, 'model_name', type(self.model).__name__)}")

    def _build_model(self) -> Model:
        if self.mock_mode:
            return FunctionModel(get_mock_response_for_function_model)

        base_url = self.settings.llm_base_url or self.settings.openai_base_url
        api_key = self.settings.openai_api_key
        if not api_key and not self.settings.llm_base_url:
            raise ConfigurationError(
                "OPENAI_API_KEY is not set (set LLM_BASE_URL for a local server, or MOCK_MODE=true)"
            )
        self._http_client = httpx.AsyncClient(timeout=60.0)
        provider = OpenAIProvider(
            base_url=base_url,
            api_key=api_key or "local",
            http_client=self._http_client,
        )
        return OpenAIChatModel(model_name=self.settings.llm_model, provider=provider)

    def _get_or_create_agent(self, system_prompt: str) -> Agent:
        if system_prompt not in self._agents:
            self._agents[system_prompt] = Agent(
                self.model,
                output_type=str,
                system_prompt=system_prompt,
            )
        return self._agents[system_prompt]

    async def complete(
        self,
        prompt: str,
        system_prompt: str = "",
        temperature: Optional[float] = None,
        max_tokens: Optional[int] = None,
    ) -> str:
        """Send a prompt and return the raw text answer."""
        agent = self._get_or_create_agent(system_prompt)
        settings = ModelSettings(
            temperature=self.settings.llm_temperature if temperature is None else temperature,
            max_tokens=max_tokens or self.settings.llm_max_tokens,
        )
        try:
            result = await agent.run(prompt, model_settings=settings)
        except ModelHTTPError as e:
            if e.status_code == 429 or e.status_code >= 500:
                raise TransientServiceError(f"LLM HTTP {e.status_code}: {e}") from e
            raise ServiceError(f"LLM HTTP {e.status_code}: {e}") from e
        except (httpx.TimeoutException, httpx.TransportError) as e:
            raise TransientServiceError(f"LLM transport failure: {e}") from e
        except AgentRunError as e:
            raise ServiceError(f"LLM run failed: {e}") from e

        output = result.output
        if not output or not output.strip():
            raise ServiceError("LLM returned an empty response")
        return output

    async def generate_json(
        self,
        prompt: str,
        system_prompt: str = "",
        temperature: Optional[float] = None,
        max_tokens: Optional[int] = None,
    ) -> Dict[str, Any]:
        """Send a prompt and parse the answer as a JSON object.

        Raises MalformedResponseError when the answer is not usable JSON.
        """
        text = await self.complete(
            prompt,
            system_prompt=system_prompt + JSON_INSTRUCTION,
            temperature=temperature,
            max_tokens=max_tokens,
        )
        return json_repair.parse_json_object(text)

    async def aclose(self) -> None:
        if self._http_client is not None:
            await self._http_client.aclose()
            self._http_client = None

    async def __aenter__(self) -> "LLMService":
        return self

    async def __aexit__(self, *exc) -> None:
        await self.aclose()
