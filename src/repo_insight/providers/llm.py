import json
import logging
from typing import Any, Dict, List, Optional, Type, TypeVar

import openai
from openai import AsyncOpenAI
from pydantic import BaseModel, ValidationError

from ..config import settings

logger = logging.getLogger(__name__)

ModelT = TypeVar("ModelT", bound=BaseModel)


class SummarizationError(Exception):
    """A summarization stage failed: call error or response off-schema."""

    def __init__(self, stage: str, reason: str):
        self.stage = stage
        self.reason = reason
        super().__init__(f"{stage}: {reason}")


class SummarizationTimeout(SummarizationError):
    """The completion call for a stage timed out."""


class LLMClient:
    """Text-completion client returning schema-validated JSON."""

    def __init__(
        self,
        api_key: Optional[str] = None,
        base_url: Optional[str] = None,
        model: Optional[str] = None,
        client: Optional[Any] = None,
    ):
        self.model = model or settings.openai_model
        self.client = client
        if self.client is not None:
            return

        api_key = api_key or settings.openai_api_key
        if not api_key:
            logger.warning("⚠️ No LLM API key configured; AI summaries are disabled")
            return

        self.client = AsyncOpenAI(
            api_key=api_key,
            base_url=base_url or settings.openai_base_url,
            timeout=settings.llm_timeout_s,
            # A failed stage is reported to the caller, never retried here
            max_retries=0,
        )
        logger.info(f"✅ LLM client initialized (model={self.model})")

    @property
    def enabled(self) -> bool:
        return self.client is not None

    async def complete_structured(
        self,
        stage: str,
        messages: List[Dict[str, str]],
        response_model: Type[ModelT],
    ) -> ModelT:
        """Run one prompt and validate the JSON answer against ``response_model``."""
        if not self.client:
            raise SummarizationError(stage, "LLM client is not configured")

        try:
            response = await self.client.chat.completions.create(
                model=self.model,
                messages=messages,
                temperature=settings.llm_temperature,
                max_tokens=settings.llm_max_tokens,
                response_format={"type": "json_object"},
            )
        except openai.APITimeoutError as e:
            raise SummarizationTimeout(stage, "completion timed out") from e
        except openai.OpenAIError as e:
            raise SummarizationError(stage, f"completion failed: {e}") from e

        content = response.choices[0].message.content or ""
        try:
            return response_model.model_validate(json.loads(content))
        except (json.JSONDecodeError, ValidationError) as e:
            raise SummarizationError(stage, f"response did not match schema: {e}") from e
