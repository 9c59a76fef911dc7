"""
BGuard LLM Client Layer

Provider abstraction over Claude (Anthropic) and GPT (OpenAI) with a
rule-based fallback mode, a small prompt cache and tolerant JSON
extraction from model output.
"""

import re
import json
import hashlib
import logging
import threading
from collections import OrderedDict
from datetime import datetime, timedelta
from typing import Optional, Any, Tuple
from enum import Enum
from abc import ABC, abstractmethod

import anthropic
import openai

logger = logging.getLogger(__name__)


class LLMProvider(Enum):
    """Supported LLM providers."""
    ANTHROPIC = "anthropic"
    OPENAI = "openai"
    FALLBACK = "fallback"  # Rule-based fallback


class LLMError(Exception):
    """Raised when a provider call fails or returns unusable output."""


class PromptCache:
    """
    Least-recently-used store of model responses.

    Entries are keyed on the system prompt, user prompt and temperature and
    expire after ``ttl``. One cache is shared by all requests of an app.
    """

    def __init__(self, max_entries: int = 128, ttl: timedelta = timedelta(hours=1)):
        self._entries: "OrderedDict[str, Tuple[str, datetime]]" = OrderedDict()
        self._lock = threading.Lock()
        self.max_entries = max_entries
        self.ttl = ttl
        self.hits = 0

    def __len__(self):
        return len(self._entries)

    @staticmethod
    def key(system_prompt: str, user_prompt: str, temperature: float) -> str:
        digest = hashlib.sha256()
        for part in (system_prompt, user_prompt, f"{temperature:.2f}"):
            digest.update(part.encode('utf-8'))
            digest.update(b'\x00')
        return digest.hexdigest()

    def lookup(self, key: str) -> Optional[str]:
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            response, stored_at = entry
            if datetime.utcnow() - stored_at >= self.ttl:
                del self._entries[key]
                return None
            self._entries.move_to_end(key)
            self.hits += 1
            return response

    def store(self, key: str, response: str):
        with self._lock:
            self._entries[key] = (response, datetime.utcnow())
            self._entries.move_to_end(key)
            while len(self._entries) > self.max_entries:
                self._entries.popitem(last=False)


class BaseLLMClient(ABC):
    """Abstract base class for LLM clients."""

    @abstractmethod
    def is_available(self) -> bool:
        pass

    @abstractmethod
    def generate(self, system_prompt: str, user_prompt: str,
                 temperature: float = 0.7, max_tokens: int = 4000) -> str:
        """Generate a response from the LLM."""
        pass


class AnthropicClient(BaseLLMClient):
    """Claude API client for Anthropic models."""

    def __init__(self, api_key: Optional[str] = None, model: str = "claude-sonnet-4-20250514"):
        self.api_key = api_key
        self.model = model
        self.client = anthropic.Anthropic(api_key=api_key) if api_key else None

    def is_available(self) -> bool:
        return self.client is not None

    def generate(self, system_prompt: str, user_prompt: str,
                 temperature: float = 0.7, max_tokens: int = 4000) -> str:
        if not self.is_available():
            raise LLMError("Anthropic client not available")

        message = self.client.messages.create(
            model=self.model,
            max_tokens=max_tokens,
            temperature=temperature,
            system=system_prompt,
            messages=[{"role": "user", "content": user_prompt}]
        )
        return message.content[0].text


class OpenAIClient(BaseLLMClient):
    """OpenAI API client for GPT models."""

    def __init__(self, api_key: Optional[str] = None, model: str = "gpt-4o"):
        self.api_key = api_key
        self.model = model
        self.client = openai.OpenAI(api_key=api_key) if api_key else None

    def is_available(self) -> bool:
        return self.client is not None

    def generate(self, system_prompt: str, user_prompt: str,
                 temperature: float = 0.7, max_tokens: int = 4000) -> str:
        if not self.is_available():
            raise LLMError("OpenAI client not available")

        response = self.client.chat.completions.create(
            model=self.model,
            max_tokens=max_tokens,
            temperature=temperature,
            messages=[
                {"role": "system", "content": system_prompt},
                {"role": "user", "content": user_prompt}
            ]
        )
        return response.choices[0].message.content


_FENCE_RE = re.compile(r'```(?:json)?\s*(.*?)```', re.DOTALL)


def extract_json(text: str) -> Any:
    """
    Parse the JSON payload of an LLM response.

    Tolerates ``` fences and prose around the object.
    """
    if not text:
        raise LLMError("Empty response from model")
    candidate = text.strip()
    match = _FENCE_RE.search(candidate)
    if match:
        candidate = match.group(1).strip()
    try:
        return json.loads(candidate)
    except json.JSONDecodeError:
        pass

    start, end = candidate.find('{'), candidate.rfind('}')
    if start != -1 and end > start:
        try:
            return json.loads(candidate[start:end + 1])
        except json.JSONDecodeError:
            pass
    raise LLMError("Model response did not contain valid JSON")


class LLMService:
    """
    Entry point used by the analyzers.

    When no provider is usable the service reports ``is_available() ==
    False`` and callers use their rule-based paths.
    """

    def __init__(self, provider: LLMProvider = LLMProvider.FALLBACK,
                 client: Optional[BaseLLMClient] = None,
                 max_tokens: int = 4000, cache: Optional[PromptCache] = None):
        self.provider = provider
        self.client = client
        self.max_tokens = max_tokens
        self.cache = cache

    def is_available(self) -> bool:
        return self.provider != LLMProvider.FALLBACK and self.client is not None

    def complete(self, system_prompt: str, user_prompt: str, temperature: float = 0.3) -> str:
        if not self.is_available():
            raise LLMError("No LLM provider configured")

        key = self.cache.key(system_prompt, user_prompt, temperature) if self.cache is not None else None
        if key:
            cached = self.cache.lookup(key)
            if cached is not None:
                logger.debug(f"{self.provider.value} response served from cache")
                return cached

        try:
            response = self.client.generate(system_prompt, user_prompt,
                                            temperature=temperature, max_tokens=self.max_tokens)
        except LLMError:
            raise
        except Exception as e:
            logger.error(f"{self.provider.value} request failed: {e}")
            raise LLMError(f"LLM request failed: {e}") from e

        if key and response:
            self.cache.store(key, response)
        return response

    def complete_json(self, system_prompt: str, user_prompt: str, temperature: float = 0.3) -> Any:
        return extract_json(self.complete(system_prompt, user_prompt, temperature))


def create_llm_service(provider: str = "auto", anthropic_key: Optional[str] = None,
                       openai_key: Optional[str] = None, model: Optional[str] = None,
                       max_tokens: int = 4000, cache_size: int = 128) -> LLMService:
    """
    Factory function to create an LLM service.

    Args:
        provider: "anthropic", "openai", "auto" (tries anthropic first), or "fallback"
        anthropic_key: Anthropic API key
        openai_key: OpenAI API key
        model: Optional model override
        cache_size: Responses kept in the prompt cache; 0 disables it
    """
    provider = (provider or 'auto').lower()
    cache = PromptCache(max_entries=cache_size) if cache_size > 0 else None

    if provider in ('auto', 'anthropic') and anthropic_key:
        client = AnthropicClient(anthropic_key, model=model or "claude-sonnet-4-20250514")
        return LLMService(LLMProvider.ANTHROPIC, client, max_tokens, cache)

    if provider in ('auto', 'openai') and openai_key:
        client = OpenAIClient(openai_key, model=model or "gpt-4o")
        return LLMService(LLMProvider.OPENAI, client, max_tokens, cache)

    if provider not in ('auto', 'fallback'):
        logger.warning(f"{provider} API not available, falling back to rule-based system")
    return LLMService(LLMProvider.FALLBACK, max_tokens=max_tokens)


def get_llm_service() -> LLMService:
    """Return the current app's service, built once from its configuration."""
    from flask import current_app
    service = current_app.extensions.get('bguard_llm')
    if service is None:
        config = current_app.config
        service = create_llm_service(
            provider=config.get('LLM_PROVIDER', 'auto'),
            anthropic_key=config.get('ANTHROPIC_API_KEY'),
            openai_key=config.get('OPENAI_API_KEY'),
            model=config.get('LLM_MODEL'),
            max_tokens=config.get('LLM_MAX_TOKENS', 4000),
            cache_size=config.get('LLM_CACHE_SIZE', 128),
        )
        current_app.extensions['bguard_llm'] = service
    return service
