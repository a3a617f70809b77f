"""
LLM client - OpenAI-compatible chat completion and embedding endpoints

Transport problems (timeouts, connection errors, 429 and 5xx responses) are
raised as TransientOracleFailure so callers can retry; a response whose
envelope cannot be read is raised as MalformedOracleOutput.
"""

from typing import Any, Dict, List, Optional

import httpx

from worklens.core.errors import MalformedOracleOutput, TransientOracleFailure
from worklens.core.logger import get_logger

logger = get_logger(__name__)

_RETRYABLE_STATUS = {408, 409, 429}


class LLMClient:
    """Thin async wrapper around /chat/completions and /embeddings"""

    def __init__(self, config: Optional[Dict[str, Any]] = None):
        """
        Args:
            config: The [llm] config section; read from the global config when omitted
        """
        self._config_override = config
        self._http: Optional[httpx.AsyncClient] = None
        self.reload_config()

    def reload_config(self) -> None:
        if self._config_override is not None:
            llm_config = dict(self._config_override)
        else:
            from worklens.config.loader import get_config

            llm_config = get_config().get("llm", {}) or {}

        self.provider = llm_config.get("provider", "openai")
        self.base_url = str(llm_config.get("base_url", "https://api.openai.com/v1")).rstrip("/")
        self.api_key = llm_config.get("api_key", "") or ""
        self.model = llm_config.get("model", "gpt-4o-mini")
        self.embedding_model = llm_config.get("embedding_model", "text-embedding-3-small")
        self.timeout = float(llm_config.get("timeout", 60.0))
        self._http = None
        logger.debug(f"LLMClient configured: provider={self.provider}, model={self.model}, base_url={self.base_url}")

    def _headers(self) -> Dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
        return headers

    def _get_http(self) -> httpx.AsyncClient:
        if self._http is None or self._http.is_closed:
            self._http = httpx.AsyncClient(timeout=httpx.Timeout(self.timeout))
        return self._http

    async def aclose(self) -> None:
        if self._http is not None and not self._http.is_closed:
            await self._http.aclose()
        self._http = None

    async def _post(self, path: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        url = f"{self.base_url}{path}"
        try:
            response = await self._get_http().post(url, headers=self._headers(), json=payload)
        except httpx.TimeoutException as e:
            raise TransientOracleFailure(f"Request to {path} timed out: {e}") from e
        except httpx.TransportError as e:
            raise TransientOracleFailure(f"Request to {path} failed: {e}") from e

        if response.status_code in _RETRYABLE_STATUS or response.status_code >= 500:
            raise TransientOracleFailure(
                f"{path} returned HTTP {response.status_code}: {response.text[:200]}",
                status_code=response.status_code,
            )
        if response.status_code >= 400:
            # Client errors will not improve on retry; surface them as an unusable answer
            raise MalformedOracleOutput(
                f"{path} rejected request with HTTP {response.status_code}",
                raw_output=response.text[:500],
            )

        try:
            return response.json()
        except ValueError as e:
            raise MalformedOracleOutput(
                f"{path} returned a non-JSON body", raw_output=response.text[:500]
            ) from e

    async def chat_completion(
        self, messages: List[Dict[str, Any]], **kwargs: Any
    ) -> Dict[str, Any]:
        """
        Send a chat completion request

        Args:
            messages: Conversation message list
            **kwargs: max_tokens, temperature, response_format, ...

        Returns:
            {"content": str, "usage": dict}
        """
        payload: Dict[str, Any] = {"model": kwargs.pop("model", self.model), "messages": messages}
        payload.update({k: v for k, v in kwargs.items() if v is not None})

        body = await self._post("/chat/completions", payload)
        try:
            content = body["choices"][0]["message"]["content"] or ""
        except (KeyError, IndexError, TypeError) as e:
            raise MalformedOracleOutput(
                "chat completion envelope missing choices[0].message.content",
                raw_output=str(body)[:500],
            ) from e

        usage = body.get("usage") or {}
        logger.debug(
            f"Chat completion ok: prompt_tokens={usage.get('prompt_tokens')}, "
            f"completion_tokens={usage.get('completion_tokens')}"
        )
        return {"content": content, "usage": usage}

    async def embed(self, text: str) -> List[float]:
        """Embed one text with the configured embedding model"""
        body = await self._post("/embeddings", {"model": self.embedding_model, "input": text})
        try:
            vector = body["data"][0]["embedding"]
        except (KeyError, IndexError, TypeError) as e:
            raise MalformedOracleOutput(
                "embedding envelope missing data[0].embedding", raw_output=str(body)[:500]
            ) from e

        if not isinstance(vector, list) or not vector:
            raise MalformedOracleOutput("embedding is empty", raw_output=str(body)[:500])
        return [float(x) for x in vector]
