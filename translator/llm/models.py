"""
Wire models for the Ollama generate and tags endpoints.

This module provides the pydantic models exchanged with the server:
- Generation request with sampling options
- Streamed response fragments
- Model listing entries
"""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field

# Policy constants for the interactive translation path
TRANSLATION_TEMPERATURE = 0.3
TRANSLATION_MAX_OUTPUT_TOKENS = 2000


class SamplingOptions(BaseModel):
    """Sampling options sent under "options"."""
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    temperature: float = Field(TRANSLATION_TEMPERATURE, ge=0.0, le=2.0)
    max_output_tokens: int | None = Field(
        TRANSLATION_MAX_OUTPUT_TOKENS, gt=0, alias="num_predict"
    )


class GenerationRequest(BaseModel):
    """Body of POST /api/generate."""
    model_config = ConfigDict(frozen=True)

    model: str = Field(min_length=1)
    prompt: str
    stream: bool = True
    options: SamplingOptions = Field(default_factory=SamplingOptions)

    def to_payload(self) -> dict[str, Any]:
        """Serialize using the wire field names."""
        return self.model_dump(by_alias=True)


class ResponseFragment(BaseModel):
    """One decoded line of the generate response stream."""
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    model: str = ""
    timestamp: str = Field("", alias="created_at")
    delta_text: str = Field(alias="response")
    done: bool


class ModelSummary(BaseModel):
    """Entry of the GET /api/tags listing."""
    model_config = ConfigDict(frozen=True)

    name: str
    modified_at: str = ""


class ModelsResponse(BaseModel):
    """Body of GET /api/tags."""
    models: list[ModelSummary]
