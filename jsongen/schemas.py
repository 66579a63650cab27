"""Pydantic models for request/response validation."""

from typing import Any, Optional

from pydantic import BaseModel, Field


class PromptRequest(BaseModel):
    """Body for create-job and generate.

    The prompt is optional here so a missing or blank prompt gets the
    domain's 400 response rather than a schema error.
    """

    prompt: Optional[str] = Field(default=None, description="Free-text dataset request")


class CreateJobResponse(BaseModel):
    success: bool = True
    jobId: str
    message: str = "Job created successfully. Processing will begin shortly."


class GenerateResponse(BaseModel):
    generatedData: Any
    modelUsed: str
    promptEnhanced: bool
    enhancementMethod: str
    metadata: dict[str, Any]
    remainingTokens: int
    resetTime: str


class ModelHealth(BaseModel):
    model: str
    healthy: bool
    failures: int
    last_error: Optional[str] = None
    last_failure: Optional[str] = None
    last_success: Optional[str] = None


class DependencyHealth(BaseModel):
    status: str
    latency_ms: Optional[float] = None
    error: Optional[str] = None


class HealthResponse(BaseModel):
    status: str
    version: str
    environment: str
    job_store: str
    rate_limit_backend: str
    llm_enabled: bool
    database: Optional[DependencyHealth] = None
    models: list[ModelHealth]
