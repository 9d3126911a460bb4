import base64
import logging
import os
import re
import time
from dataclasses import dataclass
from typing import Optional, Protocol

import httpx

from app.core.errors import ExternalServiceError

logger = logging.getLogger("uvicorn.error")

AI_PROVIDER = os.getenv("AI_PROVIDER", "gemini").strip().lower()
AI_MODEL = os.getenv("AI_MODEL", "gemini-1.5-flash").strip()
LLM_TIMEOUT_SECONDS = float(os.getenv("LLM_TIMEOUT_SECONDS", "60"))
LLM_CONNECT_TIMEOUT_SECONDS = float(os.getenv("LLM_CONNECT_TIMEOUT_SECONDS", "10"))
LLM_WRITE_TIMEOUT_SECONDS = float(os.getenv("LLM_WRITE_TIMEOUT_SECONDS", "30"))
LLM_POOL_TIMEOUT_SECONDS = float(os.getenv("LLM_POOL_TIMEOUT_SECONDS", "60"))
LLM_RETRY_COUNT = int(os.getenv("LLM_RETRY_COUNT", "1"))
LLM_RETRY_BACKOFF_SECONDS = float(os.getenv("LLM_RETRY_BACKOFF_SECONDS", "0.75"))
LLM_MAX_OUTPUT_TOKENS = int(os.getenv("LLM_MAX_OUTPUT_TOKENS", "1200"))

_CODE_FENCE = re.compile(r"^```json\s*|```$")


def _http_timeout() -> httpx.Timeout:
    return httpx.Timeout(
        connect=LLM_CONNECT_TIMEOUT_SECONDS,
        read=LLM_TIMEOUT_SECONDS,
        write=LLM_WRITE_TIMEOUT_SECONDS,
        pool=LLM_POOL_TIMEOUT_SECONDS,
    )


@dataclass(frozen=True)
class GenerationResult:
    text: str
    model: str
    tokens_in: Optional[int] = None
    tokens_out: Optional[int] = None


def _api_key(provider: str) -> str:
    if provider == "openai":
        return os.getenv("OPENAI_API_KEY", "")
    if provider == "gemini":
        return os.getenv("GEMINI_API_KEY", "")
    return ""


def _status_detail(exc: httpx.HTTPStatusError) -> tuple[Optional[int], str]:
    if exc.response is None:
        return None, ""
    return exc.response.status_code, (exc.response.text or "").strip()[:220]


def _gemini_request(
    model: str,
    api_key: str,
    prompt: str,
    image_bytes: Optional[bytes],
    image_mime_type: Optional[str],
) -> GenerationResult:
    parts: list[dict] = [{"text": prompt}]
    if image_bytes:
        parts.append(
            {
                "inlineData": {
                    "mimeType": image_mime_type or "image/jpeg",
                    "data": base64.b64encode(image_bytes).decode("ascii"),
                }
            }
        )
    response = httpx.post(
        f"https://generativelanguage.googleapis.com/v1beta/models/{model}:generateContent?key={api_key}",
        headers={"Content-Type": "application/json"},
        json={
            "generationConfig": {"temperature": 0.3, "maxOutputTokens": LLM_MAX_OUTPUT_TOKENS},
            "contents": [{"parts": parts}],
        },
        timeout=_http_timeout(),
    )
    response.raise_for_status()
    data = response.json()
    usage = data.get("usageMetadata", {}) if isinstance(data, dict) else {}
    text = data["candidates"][0]["content"]["parts"][0]["text"]
    return GenerationResult(
        text=str(text),
        model=model,
        tokens_in=int(usage.get("promptTokenCount", 0) or 0),
        tokens_out=int(usage.get("candidatesTokenCount", 0) or 0),
    )


def _openai_request(
    model: str,
    api_key: str,
    prompt: str,
    image_bytes: Optional[bytes],
    image_mime_type: Optional[str],
) -> GenerationResult:
    content: list[dict] = [{"type": "text", "text": prompt}]
    if image_bytes:
        encoded = base64.b64encode(image_bytes).decode("ascii")
        content.append(
            {
                "type": "image_url",
                "image_url": {"url": f"data:{image_mime_type or 'image/jpeg'};base64,{encoded}"},
            }
        )
    response = httpx.post(
        "https://api.openai.com/v1/chat/completions",
        headers={"Authorization": f"Bearer {api_key}", "Content-Type": "application/json"},
        json={
            "model": model,
            "messages": [
                {"role": "system", "content": "Return strict JSON only."},
                {"role": "user", "content": content},
            ],
            "max_completion_tokens": LLM_MAX_OUTPUT_TOKENS,
        },
        timeout=_http_timeout(),
    )
    response.raise_for_status()
    data = response.json()
    usage = data.get("usage", {}) if isinstance(data, dict) else {}
    text = str(data["choices"][0]["message"].get("content", "")).strip()
    if not text:
        raise ValueError("OpenAI chat completion returned empty content")
    return GenerationResult(
        text=text,
        model=model,
        tokens_in=int(usage.get("prompt_tokens", 0) or 0),
        tokens_out=int(usage.get("completion_tokens", 0) or 0),
    )


PROVIDER_REQUESTS = {
    "gemini": _gemini_request,
    "openai": _openai_request,
}


class GenerativeClient(Protocol):
    def generate(
        self,
        prompt: str,
        image_bytes: Optional[bytes] = None,
        image_mime_type: Optional[str] = None,
    ) -> GenerationResult:
        ...


class RealGenerativeClient:
    def __init__(self, provider: str = AI_PROVIDER, model: str = AI_MODEL) -> None:
        self.provider = provider
        self.model = model

    def generate(
        self,
        prompt: str,
        image_bytes: Optional[bytes] = None,
        image_mime_type: Optional[str] = None,
    ) -> GenerationResult:
        request = PROVIDER_REQUESTS.get(self.provider)
        if request is None:
            raise ExternalServiceError(self.provider, self.model, "Unsupported AI provider")
        api_key = _api_key(self.provider)
        if not api_key:
            raise ExternalServiceError(self.provider, self.model, "AI API key is not configured")

        attempts = max(1, LLM_RETRY_COUNT + 1)
        last_error = "unknown error"
        for idx in range(attempts):
            try:
                result = request(self.model, api_key, prompt, image_bytes, image_mime_type)
                text = _CODE_FENCE.sub("", result.text.strip()).strip()
                return GenerationResult(
                    text=text, model=result.model, tokens_in=result.tokens_in, tokens_out=result.tokens_out
                )
            except httpx.HTTPStatusError as exc:
                status, detail = _status_detail(exc)
                # Client errors will not improve on retry.
                if status is not None and status < 500 and status != 429:
                    raise ExternalServiceError(
                        self.provider,
                        self.model,
                        f"AI request failed (status={status}): {detail or 'no response body'}",
                        status_code=status,
                    ) from exc
                last_error = f"status={status}"
                if idx < attempts - 1:
                    time.sleep(LLM_RETRY_BACKOFF_SECONDS * (idx + 1))
                    continue
                raise ExternalServiceError(
                    self.provider, self.model, f"AI request failed: {last_error}", status_code=status
                ) from exc
            except httpx.TimeoutException as exc:
                last_error = "timeout"
                if idx < attempts - 1:
                    time.sleep(LLM_RETRY_BACKOFF_SECONDS * (idx + 1))
                    continue
                raise ExternalServiceError(
                    self.provider, self.model, "AI request timed out while waiting for response."
                ) from exc
            except Exception as exc:
                last_error = str(exc)[:220]
                if idx < attempts - 1:
                    time.sleep(LLM_RETRY_BACKOFF_SECONDS * (idx + 1))
                    continue
                raise ExternalServiceError(
                    self.provider, self.model, f"AI request failed: {last_error}"
                ) from exc
        raise ExternalServiceError(self.provider, self.model, f"AI request failed: {last_error}")


def get_llm_client() -> GenerativeClient:
    return RealGenerativeClient()
