# infrastructure/ai_providers.py
"""HTTP-backed AI providers: self-hosted Ollama and metered cloud APIs (OpenAI, Gemini)"""
import asyncio
import logging
from typing import Any, Dict, List, Optional

import requests

from docintel.config import settings
from docintel.core.domain import (
    CompletionOptions, CompletionResult, EmbeddingResult, Prompt, ProviderDescriptor,
)
from docintel.core.enums import Capability, MessageRole, ProviderKind
from docintel.core.errors import ProviderError
from docintel.core.interfaces import IAIProvider

logger = logging.getLogger(settings.LOGGER_NAME)


class HTTPProvider(IAIProvider):
    """
    Shared plumbing for providers reached over HTTP.

    Requests are blocking (requests library) and run in a worker thread; the
    fallback chain applies the per-attempt deadline on top of `timeout`.
    """

    kind: ProviderKind = ProviderKind.CLOUD

    def __init__(
        self,
        name: str,
        base_url: str,
        chat_models: List[str],
        embedding_models: Dict[str, int],
        max_context_tokens: int,
        timeout: float = settings.REQUEST_TIMEOUT,
        probe_timeout: float = settings.PROVIDER_PROBE_TIMEOUT_SECONDS,
        http: Optional[requests.Session] = None,
    ):
        """
        Args:
            name: Provider name used in status maps and failure reports.
            base_url: API root without trailing slash.
            chat_models: Served chat models; the first one is the default.
            embedding_models: Served embedding models mapped to their dimensionality.
            max_context_tokens: Largest prompt the provider accepts.
            timeout: Request timeout in seconds.
            probe_timeout: Timeout for the health probe in seconds.
            http: Optional shared requests session.
        """
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.probe_timeout = probe_timeout
        self.http = http or requests.Session()
        capabilities = set()
        if embedding_models:
            capabilities.add(Capability.EMBED)
        if chat_models:
            capabilities.add(Capability.COMPLETE)
        self._descriptor = ProviderDescriptor(
            name=name,
            kind=self.kind,
            capabilities=frozenset(capabilities),
            embedding_models=dict(embedding_models),
            chat_models=list(chat_models),
            max_context_tokens=max_context_tokens,
        )

    def describe(self) -> ProviderDescriptor:
        return self._descriptor

    # ============ HTTP ============

    def _headers(self) -> Dict[str, str]:
        return {"Content-Type": "application/json"}

    def _params(self) -> Dict[str, str]:
        return {}

    def _request(self, method: str, path: str, payload: Optional[Dict[str, Any]] = None,
                 timeout: Optional[float] = None) -> Dict[str, Any]:
        url = f"{self.base_url}{path}"
        try:
            response = self.http.request(
                method,
                url,
                json=payload,
                headers=self._headers(),
                params=self._params(),
                timeout=timeout or self.timeout,
            )
            response.raise_for_status()  # Raises an HTTPError for bad responses (4xx or 5xx)
            data = response.json()
        except requests.exceptions.Timeout:
            raise ProviderError(f"{self.name} request timed out after {timeout or self.timeout} seconds")
        except requests.exceptions.ConnectionError:
            raise ProviderError(f"Cannot connect to {self.name} at {self.base_url}")
        except requests.exceptions.HTTPError as e:
            raise ProviderError(f"{self.name} returned an error: {e.response.status_code}")
        except ValueError:
            raise ProviderError(f"{self.name} returned a malformed response")

        if isinstance(data, dict) and data.get("error"):
            raise ProviderError(f"{self.name} error: {data['error']}")
        return data

    async def _post(self, path: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        return await asyncio.to_thread(self._request, "POST", path, payload)

    async def _get(self, path: str, timeout: Optional[float] = None) -> Dict[str, Any]:
        return await asyncio.to_thread(self._request, "GET", path, None, timeout)

    # ============ HELPERS ============

    def _require_embedding_model(self, model: str) -> int:
        dimension = self._descriptor.embedding_dimension(model)
        if dimension is None:
            raise ProviderError(f"{self.name} does not serve embedding model '{model}'")
        return dimension

    def _resolve_chat_model(self, requested: Optional[str]) -> str:
        if not self._descriptor.chat_models:
            raise ProviderError(f"{self.name} cannot generate completions")
        if requested and requested in self._descriptor.chat_models:
            return requested
        return self._descriptor.chat_models[0]

    def _checked(self, vectors: List[List[float]], model: str, expected: int) -> EmbeddingResult:
        dimension = self._require_embedding_model(model)
        if len(vectors) != expected:
            raise ProviderError(f"{self.name} returned {len(vectors)} vectors for {expected} inputs")
        for vector in vectors:
            if len(vector) != dimension:
                raise ProviderError(
                    f"{self.name} returned {len(vector)} dimensions for '{model}', expected {dimension}"
                )
        return EmbeddingResult(vectors=vectors, model=model, provider=self.name, dimension=dimension)

    @staticmethod
    def _chat_messages(prompt: Prompt) -> List[Dict[str, str]]:
        messages = [{"role": "system", "content": prompt.system}] if prompt.system else []
        messages.extend({"role": turn.role.value, "content": turn.content} for turn in prompt.turns)
        return messages


# ============= Ollama =============

class OllamaProvider(HTTPProvider):
    """Self-hosted Ollama server. No egress cost, may be unavailable."""

    kind = ProviderKind.LOCAL

    def __init__(self, base_url: str = settings.OLLAMA_BASE_URL, **kwargs):
        kwargs.setdefault("name", "ollama")
        kwargs.setdefault("chat_models", settings.OLLAMA_CHAT_MODELS)
        kwargs.setdefault("embedding_models", settings.OLLAMA_EMBEDDING_MODELS)
        kwargs.setdefault("max_context_tokens", settings.OLLAMA_MAX_CONTEXT_TOKENS)
        super().__init__(base_url=base_url, **kwargs)

    async def embed(self, texts: List[str], model: str) -> EmbeddingResult:
        self._require_embedding_model(model)
        data = await self._post("/api/embed", {"model": model, "input": texts})
        return self._checked(data.get("embeddings") or [], model, len(texts))

    async def complete(self, prompt: Prompt, options: CompletionOptions) -> CompletionResult:
        model = self._resolve_chat_model(options.model)
        logger.info(f"Sending prompt to Ollama model '{model}'...")
        data = await self._post("/api/chat", {
            "model": model,
            "messages": self._chat_messages(prompt),
            "stream": False,
            "options": {
                "temperature": options.temperature,
                "num_predict": options.max_tokens,
            },
        })
        content = (data.get("message") or {}).get("content", "")
        if not content.strip():
            raise ProviderError("Empty response from Ollama")
        return CompletionResult(
            content=content.strip(),
            model=data.get("model") or model,
            provider=self.name,
            tokens_used=int(data.get("prompt_eval_count") or 0) + int(data.get("eval_count") or 0),
            finish_reason=data.get("done_reason") or ("stop" if data.get("done") else "length"),
        )

    async def probe(self) -> bool:
        try:
            await self._get("/api/tags", timeout=self.probe_timeout)
            return True
        except ProviderError as e:
            logger.warning(f"[PROBE] {self.name} unavailable: {e}")
            return False


# ============= OpenAI =============

class OpenAIProvider(HTTPProvider):
    """OpenAI-compatible cloud API (metered)."""

    def __init__(self, api_key: str = settings.OPENAI_API_KEY,
                 base_url: str = settings.OPENAI_BASE_URL,
                 organization: str = settings.OPENAI_ORGANIZATION, **kwargs):
        kwargs.setdefault("name", "openai")
        kwargs.setdefault("chat_models", settings.OPENAI_CHAT_MODELS)
        kwargs.setdefault("embedding_models", settings.OPENAI_EMBEDDING_MODELS)
        kwargs.setdefault("max_context_tokens", settings.OPENAI_MAX_CONTEXT_TOKENS)
        super().__init__(base_url=base_url, **kwargs)
        self.api_key = api_key
        self.organization = organization

    def _headers(self) -> Dict[str, str]:
        headers = super()._headers()
        headers["Authorization"] = f"Bearer {self.api_key}"
        if self.organization:
            headers["OpenAI-Organization"] = self.organization
        return headers

    def _require_key(self) -> None:
        if not self.api_key:
            raise ProviderError(f"{self.name} API key is not configured")

    async def embed(self, texts: List[str], model: str) -> EmbeddingResult:
        self._require_key()
        self._require_embedding_model(model)
        data = await self._post("/embeddings", {"model": model, "input": texts})
        items = sorted(data.get("data") or [], key=lambda item: item.get("index", 0))
        return self._checked([item["embedding"] for item in items], model, len(texts))

    async def complete(self, prompt: Prompt, options: CompletionOptions) -> CompletionResult:
        self._require_key()
        model = self._resolve_chat_model(options.model)
        data = await self._post("/chat/completions", {
            "model": model,
            "messages": self._chat_messages(prompt),
            "temperature": options.temperature,
            "max_tokens": options.max_tokens,
        })
        choices = data.get("choices") or []
        if not choices:
            raise ProviderError("Empty response from OpenAI")
        return CompletionResult(
            content=(choices[0].get("message") or {}).get("content") or "",
            model=data.get("model") or model,
            provider=self.name,
            tokens_used=int((data.get("usage") or {}).get("total_tokens") or 0),
            finish_reason=choices[0].get("finish_reason"),
        )

    async def probe(self) -> bool:
        if not self.api_key:
            return False
        try:
            await self._get("/models", timeout=self.probe_timeout)
            return True
        except ProviderError as e:
            logger.warning(f"[PROBE] {self.name} unavailable: {e}")
            return False


# ============= Google Gemini =============

class GeminiProvider(HTTPProvider):
    """Google Generative Language API (metered)."""

    _ROLES = {MessageRole.USER: "user", MessageRole.ASSISTANT: "model"}

    def __init__(self, api_key: str = settings.GEMINI_API_KEY,
                 base_url: str = settings.GEMINI_BASE_URL, **kwargs):
        kwargs.setdefault("name", "gemini")
        kwargs.setdefault("chat_models", settings.GEMINI_CHAT_MODELS)
        kwargs.setdefault("embedding_models", settings.GEMINI_EMBEDDING_MODELS)
        kwargs.setdefault("max_context_tokens", settings.GEMINI_MAX_CONTEXT_TOKENS)
        super().__init__(base_url=base_url, **kwargs)
        self.api_key = api_key

    def _params(self) -> Dict[str, str]:
        return {"key": self.api_key}

    def _require_key(self) -> None:
        if not self.api_key:
            raise ProviderError(f"{self.name} API key is not configured")

    async def embed(self, texts: List[str], model: str) -> EmbeddingResult:
        self._require_key()
        self._require_embedding_model(model)
        data = await self._post(f"/models/{model}:batchEmbedContents", {
            "requests": [
                {"model": f"models/{model}", "content": {"parts": [{"text": text}]}}
                for text in texts
            ]
        })
        vectors = [item.get("values") or [] for item in data.get("embeddings") or []]
        return self._checked(vectors, model, len(texts))

    async def complete(self, prompt: Prompt, options: CompletionOptions) -> CompletionResult:
        self._require_key()
        model = self._resolve_chat_model(options.model)
        payload: Dict[str, Any] = {
            "contents": [
                {"role": self._ROLES.get(turn.role, "user"), "parts": [{"text": turn.content}]}
                for turn in prompt.turns
            ],
            "generationConfig": {
                "temperature": options.temperature,
                "maxOutputTokens": options.max_tokens,
            },
        }
        if prompt.system:
            payload["systemInstruction"] = {"parts": [{"text": prompt.system}]}

        data = await self._post(f"/models/{model}:generateContent", payload)
        candidates = data.get("candidates") or []
        parts = ((candidates[0].get("content") or {}).get("parts") or []) if candidates else []
        content = "".join(part.get("text", "") for part in parts)
        if not content.strip():
            raise ProviderError("Empty response from Gemini")
        return CompletionResult(
            content=content,
            model=model,
            provider=self.name,
            tokens_used=int((data.get("usageMetadata") or {}).get("totalTokenCount") or 0),
            finish_reason=candidates[0].get("finishReason"),
        )

    async def probe(self) -> bool:
        if not self.api_key:
            return False
        try:
            await self._get("/models", timeout=self.probe_timeout)
            return True
        except ProviderError as e:
            logger.warning(f"[PROBE] {self.name} unavailable: {e}")
            return False
