"""AI provider interface and the HuggingFace/OpenAI/Anthropic variants.

Variants differ only in request shape and authentication. Transport and
parsing problems never raise: they come back as a Placeholder string, which
the correction loop treats as "no correction available".
"""

import json
import logging
import os
from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Optional, Type

import httpx

from agentic_code_runner.config import Config, ConfigError, ProviderConfig
from agentic_code_runner.constants import (
    ANTHROPIC_VERSION,
    DEFAULT_HTTP_TIMEOUT_S,
    DEFAULT_MAX_TOKENS,
    DEFAULT_PROMPT_FILE,
)

logger = logging.getLogger(__name__)


NO_CONTENT = "No content returned by the AI."

CORRECTION_TEMPLATE = (
    "The code above generated the following error: {diagnostics}. "
    "Please carefully analyse the code and fix all the issues."
)


class Placeholder(str):
    """A provider reply that carries no usable code."""
    pass


def is_placeholder(text: Optional[str]) -> bool:
    return isinstance(text, Placeholder)


@dataclass
class Message:
    """A chat message."""
    role: str  # "system", "user", "assistant"
    content: str


class AIProvider(ABC):
    """Base class for all provider variants."""

    name: str = ""

    def __init__(
        self,
        config: ProviderConfig,
        prompt_file: Path = Path(DEFAULT_PROMPT_FILE),
        timeout: float = DEFAULT_HTTP_TIMEOUT_S,
        trace: bool = False,
        transport: Optional[httpx.BaseTransport] = None,
    ):
        """
        Args:
            config: Endpoint, API key and model for this provider
            prompt_file: Instructional preamble, read on every call
            timeout: HTTP request timeout in seconds
            trace: Record each request as a LangSmith run
            transport: Custom httpx transport (tests use httpx.MockTransport)
        """
        self.config = config
        self.prompt_file = Path(prompt_file)
        self.timeout = timeout
        self.trace = trace
        self._transport = transport

    def generate(self, query: str) -> str:
        """Ask for code that solves the query."""
        messages = [
            Message(role="system", content=self._read_prompt()),
            Message(role="user", content=query),
        ]
        return self._complete(messages, phase="generate")

    def correct(self, query: str, code: str, diagnostics: str) -> str:
        """Ask for a fixed version of code that failed to compile."""
        messages = [
            Message(role="system", content=self._read_prompt()),
            Message(role="user", content=query),
            Message(role="assistant", content=code),
            Message(role="user", content=CORRECTION_TEMPLATE.format(diagnostics=diagnostics)),
        ]
        return self._complete(messages, phase="correct")

    @abstractmethod
    def build_payload(self, messages: List[Message]) -> Dict[str, Any]:
        """Request body for this provider."""
        pass

    def headers(self) -> Dict[str, str]:
        return {
            "Authorization": f"Bearer {self.config.api_key or ''}",
            "Content-Type": "application/json",
        }

    def extract_content(self, data: Dict[str, Any]) -> Optional[str]:
        """Pull the reply text out of a chat-completions response."""
        return data["choices"][0]["message"]["content"]

    def _read_prompt(self) -> str:
        try:
            return self.prompt_file.read_text(encoding="utf-8")
        except OSError as e:
            logger.warning("Error reading the prompt file %s: %s", self.prompt_file, e)
            return ""

    def _complete(self, messages: List[Message], phase: str) -> str:
        payload = self.build_payload(messages)

        if os.environ.get("CODERUN_DEBUG"):
            logger.debug("provider=%s phase=%s payload=%s", self.name, phase, json.dumps(payload)[:2000])

        if not self.trace:
            return self._send(payload)

        from langsmith import traceable

        @traceable(
            name=f"{phase}_{self.name.lower()}",
            run_type="llm",
            metadata={"provider": self.name, "model": self.config.model, "phase": phase},
        )
        def _traced_send(request: Dict[str, Any]) -> str:
            return self._send(request)

        return _traced_send(payload)

    def _send(self, payload: Dict[str, Any]) -> str:
        try:
            with httpx.Client(timeout=self.timeout, transport=self._transport) as client:
                response = client.post(self.config.endpoint, headers=self.headers(), json=payload)
                response.raise_for_status()
                data = response.json()
        except (httpx.HTTPError, httpx.InvalidURL, httpx.StreamError, ValueError) as e:
            logger.error("%s request failed: %s", self.name, e)
            return Placeholder(f"Error calling AI endpoint: {e}")

        try:
            content = self.extract_content(data)
        except (KeyError, IndexError, TypeError, AttributeError) as e:
            logger.error("%s response missing field: %s", self.name, e)
            return Placeholder(NO_CONTENT)

        if not content:
            return Placeholder(NO_CONTENT)
        return content


class HuggingFaceProvider(AIProvider):
    name = "HuggingFace"

    def build_payload(self, messages: List[Message]) -> Dict[str, Any]:
        return {
            "model": self.config.model,
            "messages": [{"role": m.role, "content": m.content} for m in messages],
            "max_tokens": DEFAULT_MAX_TOKENS,
            "stream": False,
        }


class OpenAIProvider(AIProvider):
    name = "OpenAI"

    def build_payload(self, messages: List[Message]) -> Dict[str, Any]:
        return {
            "model": self.config.model,
            "messages": [{"role": m.role, "content": m.content} for m in messages],
            "temperature": 0,
            "max_tokens": DEFAULT_MAX_TOKENS,
            "stream": False,
        }


class AnthropicProvider(AIProvider):
    """Messages API: the system prompt is a top-level field."""

    name = "Anthropic"

    def build_payload(self, messages: List[Message]) -> Dict[str, Any]:
        system = "\n\n".join(m.content for m in messages if m.role == "system" and m.content)
        payload: Dict[str, Any] = {
            "model": self.config.model,
            "messages": [{"role": m.role, "content": m.content} for m in messages if m.role != "system"],
            "temperature": 0,
            "max_tokens": DEFAULT_MAX_TOKENS,
            "stream": False,
        }
        if system:
            payload["system"] = system
        return payload

    def headers(self) -> Dict[str, str]:
        return {
            "x-api-key": self.config.api_key or "",
            "anthropic-version": ANTHROPIC_VERSION,
            "Content-Type": "application/json",
        }

    def extract_content(self, data: Dict[str, Any]) -> Optional[str]:
        return "".join(block.get("text", "") for block in data["content"] if block.get("type") == "text")


PROVIDER_TYPES: Dict[str, Type[AIProvider]] = {
    "huggingface": HuggingFaceProvider,
    "openai": OpenAIProvider,
    "anthropic": AnthropicProvider,
}


def available_providers() -> List[str]:
    """Display names of all provider variants, in menu order."""
    return [cls.name for cls in PROVIDER_TYPES.values()]


def create_provider(name: str, config: Config, **kwargs) -> AIProvider:
    """
    Create a provider variant by name.

    Args:
        name: Provider name, case-insensitive ("HuggingFace", "openai", ...)
        config: Loaded configuration
        **kwargs: Passed to the provider constructor (timeout, transport)

    Raises:
        ConfigError: For an unknown provider or missing provider settings
    """
    key = name.lower()
    provider_cls = PROVIDER_TYPES.get(key)
    if provider_cls is None:
        raise ConfigError(f"Unknown provider: {name}. Available: {', '.join(available_providers())}")

    kwargs.setdefault("prompt_file", config.prompt_file)
    kwargs.setdefault("trace", config.trace)
    return provider_cls(config.provider(key), **kwargs)
