"""Backend communication with the Gemini Generative Language REST API."""

import json
from typing import Any, Dict, List, Optional, Tuple

import requests


class GeminiAPIError(Exception):
    """Non-2xx response from the Gemini REST API.

    Carries the HTTP status, the raw body and, for quota errors, the
    server-provided retry delay so callers can log or classify it.
    """

    def __init__(
        self,
        message: str,
        status: Optional[int] = None,
        status_text: str = "",
        body: str = "",
        retry_after_seconds: Optional[float] = None,
    ):
        super().__init__(message)
        self.status = status
        self.status_text = status_text
        self.body = body
        self.retry_after_seconds = retry_after_seconds


def model_to_path(model: str) -> str:
    """Accept both "models/xxx" and "xxx"."""
    name = str(model or "").strip()
    if not name:
        raise ValueError("Gemini model is required")
    return name if name.startswith("models/") else f"models/{name}"


def parse_retry_delay(body: str) -> Optional[float]:
    """Extract a RetryInfo delay (e.g. ``"retryDelay": "45s"``) from an error body."""
    try:
        data = json.loads(body)
    except (TypeError, ValueError):
        return None
    if not isinstance(data, dict) or not isinstance(data.get("error"), dict):
        return None
    for detail in data["error"].get("details") or []:
        if not isinstance(detail, dict) or "RetryInfo" not in str(detail.get("@type", "")):
            continue
        delay = detail.get("retryDelay")
        if isinstance(delay, str) and delay.endswith("s"):
            try:
                return float(delay[:-1])
            except ValueError:
                return None
    return None


def _raise_for_gemini_status(response: requests.Response, operation: str):
    if response.ok:
        return
    body = response.text or ""
    raise GeminiAPIError(
        f"Gemini {operation} failed ({response.status_code})",
        status=response.status_code,
        status_text=response.reason or "",
        body=body,
        retry_after_seconds=parse_retry_delay(body),
    )


def _require_key(config):
    if not config.GEMINI_API_KEY:
        raise ValueError("GEMINI_API_KEY is required")


def generate_text(config, model: str, prompt: str) -> str:
    """Call ``generateContent`` and return the concatenated text parts."""
    _require_key(config)
    endpoint = f"{config.GEMINI_API_BASE}/{model_to_path(model)}:generateContent"
    payload = {"contents": [{"role": "user", "parts": [{"text": str(prompt or "")}]}]}

    response = requests.post(
        endpoint,
        json=payload,
        headers={"x-goog-api-key": config.GEMINI_API_KEY},
        timeout=config.gemini_timeout,
    )
    _raise_for_gemini_status(response, "generateContent")

    data = response.json()
    candidates = data.get("candidates") or [{}]
    parts = (candidates[0].get("content") or {}).get("parts") or []
    return "".join(part.get("text", "") for part in parts if part.get("text"))


def embed_text(config, model: str, text: str, output_dimensionality: Optional[int] = None) -> List[float]:
    """Call ``embedContent`` and return the embedding values."""
    _require_key(config)
    endpoint = f"{config.GEMINI_API_BASE}/{model_to_path(model)}:embedContent"
    # REST embedContent expects a single "content" object
    payload: Dict[str, Any] = {"content": {"parts": [{"text": str(text or "")}]}}
    if output_dimensionality:
        payload["outputDimensionality"] = int(output_dimensionality)

    response = requests.post(
        endpoint,
        json=payload,
        headers={"x-goog-api-key": config.GEMINI_API_KEY},
        timeout=config.gemini_timeout,
    )
    _raise_for_gemini_status(response, "embedContent")

    data = response.json()
    embedding = data.get("embedding")
    if isinstance(embedding, dict):
        values = embedding.get("values")
    elif data.get("embeddings"):
        values = data["embeddings"][0].get("values")
    else:
        values = embedding
    if not isinstance(values, list):
        raise ValueError("Unexpected embedding response shape from Gemini embedContent")
    return [float(v) for v in values]


def list_models(config, timeout: int = 10) -> List[Dict[str, Any]]:
    """List models available to the configured API key."""
    _require_key(config)
    response = requests.get(
        f"{config.GEMINI_API_BASE}/models",
        headers={"x-goog-api-key": config.GEMINI_API_KEY},
        timeout=timeout,
    )
    _raise_for_gemini_status(response, "listModels")
    return [
        {
            "name": model.get("name", ""),
            "displayName": model.get("displayName", ""),
            "supportedGenerationMethods": model.get("supportedGenerationMethods", []),
        }
        for model in response.json().get("models", [])
    ]


def check_gemini_health(config, timeout: int = 5) -> Tuple[bool, str]:
    """Check if the Gemini API is reachable and the chat model is listed.

    Args:
        config: ServerConfig instance
        timeout: Request timeout in seconds

    Returns:
        Tuple of (is_healthy: bool, message: str)
    """
    if not config.GEMINI_API_KEY:
        return False, "GEMINI_API_KEY is not set. Answers cannot be generated."

    try:
        models = list_models(config, timeout=timeout)
        names = {m["name"] for m in models}
        if model_to_path(config.GEMINI_CHAT_MODEL) in names:
            return True, f"Gemini is healthy. Model '{config.GEMINI_CHAT_MODEL}' is available."
        return (
            False,
            f"Gemini is reachable but model '{config.GEMINI_CHAT_MODEL}' not found "
            f"({len(names)} models listed). Fallback models will be tried.",
        )
    except GeminiAPIError as e:
        return False, f"Gemini health check failed with HTTP {e.status}: {e.status_text}"
    except requests.Timeout:
        return False, f"Gemini health check timed out after {timeout}s."
    except requests.ConnectionError:
        return False, f"Cannot connect to Gemini at {config.GEMINI_API_BASE}."
    except Exception as e:
        return False, f"Gemini health check failed: {e!s}"
