"""Gemini LLM client over the Generative Language REST API."""

import time

import httpx
import structlog

from jsongen.services.llm_base import (
    BaseLLMClient,
    LLMAPIError,
    LLMError,
    LLMRateLimitError,
    LLMResponse,
    LLMTimeoutError,
    Message,
)

logger = structlog.get_logger(__name__)

JSON_ONLY_SUFFIX = (
    "\n\nIMPORTANT: Return ONLY valid JSON. No markdown code blocks, no explanations."
)


class GeminiLLMClient(BaseLLMClient):
    """LLM client using the Gemini generateContent endpoint."""

    GEMINI_BASE_URL = "https://generativelanguage.googleapis.com/v1beta"

    def __init__(
        self,
        api_key: str,
        default_model: str,
        timeout: int = 60,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        """
        Initialize the Gemini client.

        Args:
            api_key: Google Generative AI API key
            default_model: Model used when a call does not name one
            timeout: Request timeout in seconds
            transport: Optional httpx transport (tests pass a MockTransport)
        """
        super().__init__(default_model)
        self.api_key = api_key
        self.timeout = timeout
        self.provider = "gemini"
        self._transport = transport

    def _build_body(
        self,
        messages: list[Message],
        max_tokens: int,
        temperature: float,
        json_mode: bool,
    ) -> dict:
        system_parts = [m["content"] for m in messages if m["role"] == "system"]
        contents = []
        for msg in messages:
            if msg["role"] == "system":
                continue
            text = msg["content"]
            if json_mode and msg["role"] == "user":
                text += JSON_ONLY_SUFFIX
            contents.append(
                {
                    "role": "model" if msg["role"] == "assistant" else "user",
                    "parts": [{"text": text}],
                }
            )

        generation_config: dict = {
            "temperature": temperature,
            "maxOutputTokens": max_tokens,
        }
        if json_mode:
            generation_config["responseMimeType"] = "application/json"

        body: dict = {"contents": contents, "generationConfig": generation_config}
        if system_parts:
            body["systemInstruction"] = {
                "parts": [{"text": "\n\n".join(system_parts)}]
            }
        return body

    async def generate(
        self,
        *,
        messages: list[Message],
        model: str | None = None,
        max_tokens: int = 4096,
        temperature: float = 0.7,
        json_mode: bool = True,
    ) -> LLMResponse:
        """
        Generate a response using the Gemini API.

        Raises:
            LLMTimeoutError: Request exceeded the client timeout
            LLMRateLimitError: HTTP 429 (quota or rate limit)
            LLMAPIError: Any other non-2xx status, or an empty candidate
            LLMError: Transport failure
        """
        model = model or self.default_model
        body = self._build_body(messages, max_tokens, temperature, json_mode)

        try:
            start = time.perf_counter()
            async with httpx.AsyncClient(
                timeout=self.timeout, transport=self._transport
            ) as client:
                response = await client.post(
                    f"{self.GEMINI_BASE_URL}/models/{model}:generateContent",
                    params={"key": self.api_key},
                    headers={"Content-Type": "application/json"},
                    json=body,
                )
                response.raise_for_status()
                data = response.json()
            latency_ms = (time.perf_counter() - start) * 1000
        except httpx.TimeoutException as e:
            logger.error("gemini_timeout", model=model, timeout=self.timeout)
            raise LLMTimeoutError(
                f"Gemini request timed out after {self.timeout}s",
                provider=self.provider,
                model=model,
                timeout_seconds=self.timeout,
            ) from e
        except httpx.HTTPStatusError as e:
            status = e.response.status_code
            detail = e.response.text[:500]
            logger.error(
                "gemini_http_error", model=model, status_code=status, detail=detail
            )
            if status == 429:
                retry_after = e.response.headers.get("retry-after")
                raise LLMRateLimitError(
                    f"Gemini rate limited: {status} - {detail}",
                    provider=self.provider,
                    model=model,
                    retry_after_seconds=(
                        int(retry_after) if retry_after and retry_after.isdigit() else None
                    ),
                ) from e
            raise LLMAPIError(
                f"Gemini API error: {status} - {detail}",
                provider=self.provider,
                model=model,
                status_code=status,
            ) from e
        except httpx.RequestError as e:
            logger.error("gemini_request_error", model=model, error=str(e))
            raise LLMError(
                f"Gemini request failed: {e}",
                provider=self.provider,
                model=model,
            ) from e

        text = ""
        candidates = data.get("candidates") or []
        if candidates:
            parts = (candidates[0].get("content") or {}).get("parts") or []
            if parts:
                text = parts[0].get("text", "")
        if not text:
            raise LLMAPIError(
                "Empty response from Gemini",
                provider=self.provider,
                model=model,
            )

        usage_data = data.get("usageMetadata") or {}
        usage = None
        if usage_data:
            usage = {
                "input_tokens": usage_data.get("promptTokenCount", 0),
                "output_tokens": usage_data.get("candidatesTokenCount", 0),
            }

        logger.debug(
            "gemini_generation_complete",
            model=model,
            output_chars=len(text),
            latency_ms=round(latency_ms, 2),
        )

        return LLMResponse(
            text=text,
            model=model,
            provider=self.provider,
            usage=usage,
            latency_ms=latency_ms,
        )
