from __future__ import annotations
import logging
from typing import Dict, List, Optional

import openai
from openai import OpenAI

LOG = logging.getLogger("autopitch.llm")


class LLMError(RuntimeError):
    """The completion vendor failed or timed out."""


class LLMRateLimited(LLMError):
    """The completion vendor answered 429."""


class CompletionClient:
    def __init__(self, api_key: str, *, base_url: Optional[str] = None, timeout: float = 30.0):
        if not api_key:
            raise RuntimeError("OPENAI_API_KEY must be set")
        self._api_key = api_key
        self._base_url = base_url
        self._timeout = timeout
        self._client: OpenAI | None = None

    @property
    def client(self) -> OpenAI:
        if self._client is None:
            self._client = OpenAI(
                api_key=self._api_key,
                base_url=self._base_url,
                timeout=self._timeout,
                max_retries=0,
            )
        return self._client

    def complete(
        self,
        messages: List[Dict[str, str]],
        *,
        model: str,
        n: int = 1,
        max_tokens: int = 400,
        temperature: float = 0.6,
    ) -> List[str]:
        """Request ``n`` completions in one call and return their texts."""
        LOG.info("Calling %s, n=%d", model, n)
        try:
            resp = self.client.chat.completions.create(
                model=model,
                messages=messages,
                max_tokens=max_tokens,
                temperature=temperature,
                n=n,
            )
        except openai.RateLimitError as e:
            raise LLMRateLimited(str(e)) from e
        except openai.APIError as e:
            raise LLMError(str(e)) from e

        texts = [(c.message.content or "").strip() for c in (resp.choices or [])]
        texts = [t for t in texts if t]
        LOG.debug("Raw completion snippet: %s...", texts[0][:200] if texts else "")
        return texts
