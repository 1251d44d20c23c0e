"""AI feature breakdown generation.

A breakdown generator turns a natural-language description of an
application into an ordered list of feature drafts. Services depend on
the small `BreakdownGenerator` protocol; the production implementation
calls the OpenAI chat completions API in JSON mode and validates the
reply with pydantic. Every failure is reported as `GenerationError` so
callers can decide whether it is fatal.
"""

from __future__ import annotations

import json
import logging
import os
import time
from typing import List, Optional, Protocol

from openai import OpenAI, OpenAIError
from pydantic import AliasChoices, BaseModel, Field, ValidationError

from ..config import settings

_LOGGER = logging.getLogger("planner.breakdown")

SYSTEM_PROMPT = (
    "You are a product planning assistant. Reply with a JSON object of the form "
    '{"features": [{"name": str, "description": str, "technicalDetail": str}]} and nothing else.'
)


class GenerationError(RuntimeError):
    """The breakdown generator could not produce drafts."""


class FeatureDraft(BaseModel):
    """One generated child record: name, description and technical detail."""
    name: str
    description: str
    # replies sometimes use the column name instead of technicalDetail
    technical_detail: str = Field(
        default="",
        validation_alias=AliasChoices("technicalDetail", "featureSpecs", "technical_detail"),
    )


class BreakdownReply(BaseModel):
    features: List[FeatureDraft]


class BreakdownGenerator(Protocol):
    def generate(self, prompt: str) -> List[FeatureDraft]:
        ...


def application_prompt(name: str, short_description: str, product_specs: str, feature_breakdown: str) -> str:
    """Build the prompt used when an application is created with a breakdown."""
    return (
        f"Generate a breakdown of all possible features for the application named: {name}. "
        f"Here's a brief description of the app: {short_description}. "
        f"Here's a list of product specs: {product_specs} and here's a breakdown of the features "
        f"the user already knows that they want: {feature_breakdown}. "
        "Given all of the provided context, generate a list of features that would be most relevant "
        "to the user's needs. Database integrations should not be a feature but rather baked into the "
        "underlying functionality / use-case based features."
    )


def bulk_feature_prompt(app_name: str, feature_type: str, specifications: str, feature_breakdown: str) -> str:
    """Build the prompt used by the bulk feature generation endpoint."""
    return "\n".join([
        f"Generate a detailed breakdown of features for an application named: {app_name}.",
        f"Type of features needed: {feature_type}",
        f"High-level specifications: {specifications}",
        f"Specific feature requirements: {feature_breakdown}",
        "",
        "Generate a comprehensive list of features that align with these requirements. Each feature should include:",
        "- A clear, concise name",
        "- A detailed description",
        "- Technical specifications for implementation",
        "",
        "Focus on practical, implementable features that directly solve the specified needs.",
    ])


def parse_reply(content: str) -> List[FeatureDraft]:
    """Parse a JSON reply into drafts, raising `GenerationError` on bad shape."""
    try:
        payload = json.loads(content)
    except (TypeError, json.JSONDecodeError) as exc:
        raise GenerationError(f"generator returned invalid JSON: {exc}") from exc
    if isinstance(payload, list):
        payload = {"features": payload}
    try:
        return BreakdownReply.model_validate(payload).features
    except ValidationError as exc:
        raise GenerationError(f"generator reply did not match the draft schema: {exc}") from exc


class OpenAIBreakdownGenerator:
    """Breakdown generator backed by the OpenAI chat completions API.

    The client is created on first use so the service can run without an
    API key as long as no breakdown is requested. Retries are disabled;
    failures surface to the caller immediately.
    """

    def __init__(self, model: Optional[str] = None, api_key: Optional[str] = None, timeout: Optional[float] = None):
        self.model = model or settings.OPENAI_MODEL
        self.api_key = api_key or os.getenv("OPENAI_API_KEY")
        self.timeout = timeout if timeout is not None else settings.LLM_TIMEOUT_SECONDS
        self._client: Optional[OpenAI] = None

    def _get_client(self) -> OpenAI:
        if self._client is None:
            if not self.api_key:
                raise GenerationError("OPENAI_API_KEY is not configured")
            self._client = OpenAI(api_key=self.api_key, timeout=self.timeout, max_retries=0)
        return self._client

    def generate(self, prompt: str) -> List[FeatureDraft]:
        client = self._get_client()
        started = time.perf_counter()
        try:
            response = client.chat.completions.create(
                model=self.model,
                messages=[
                    {"role": "system", "content": SYSTEM_PROMPT},
                    {"role": "user", "content": prompt},
                ],
                response_format={"type": "json_object"},
            )
        except OpenAIError as exc:
            _LOGGER.warning("breakdown_failed model=%s error=%s", self.model, exc)
            raise GenerationError(f"breakdown request failed: {exc}") from exc
        content = response.choices[0].message.content if response.choices else None
        drafts = parse_reply(content or "")
        elapsed_ms = round((time.perf_counter() - started) * 1000.0, 2)
        _LOGGER.info(
            "breakdown_done %s",
            json.dumps({"model": self.model, "prompt_chars": len(prompt), "drafts": len(drafts), "duration_ms": elapsed_ms}),
        )
        return drafts


_default_generator: Optional[OpenAIBreakdownGenerator] = None


def get_breakdown_generator() -> BreakdownGenerator:
    """FastAPI dependency returning the process-wide generator."""
    global _default_generator
    if _default_generator is None:
        _default_generator = OpenAIBreakdownGenerator()
    return _default_generator
