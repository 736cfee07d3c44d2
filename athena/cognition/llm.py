"""Chat-completion backends for the cognition loop."""

from __future__ import annotations

import asyncio
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field, fields
import logging
import os
from pathlib import Path
import threading
from typing import Any, Dict, List, Mapping, Optional, Protocol, Sequence

import openai

logger = logging.getLogger("athena.cognition.llm")

CONTEXT_LENGTH_MARKERS: tuple[str, ...] = (
    "maximum context length",
    "context_length_exceeded",
    "exceed context window",
)
MODEL_SEARCH_DIRS = [
    Path.cwd() / "models",
    Path.home() / ".athena" / "models",
    Path("/opt/llama.cpp/models"),
]


class LLMError(RuntimeError):
    """Raised when the model cannot be reached or refuses the request."""


class ContextLengthExceeded(LLMError):
    """Raised when the prompt no longer fits the model's context budget."""


def _env_int(name: str, default: int) -> int:
    try:
        return int(os.environ.get(name, default))
    except ValueError:
        return default


def is_context_length_error(exc: BaseException) -> bool:
    if getattr(exc, "code", None) == "context_length_exceeded":
        return True
    message = str(exc).lower()
    return any(marker in message for marker in CONTEXT_LENGTH_MARKERS)


@dataclass
class LLMSettings:
    """Endpoint and sampling options shared by every backend."""

    backend: str = "openai"
    model: str = "gpt-4o-mini"
    base_url: Optional[str] = None
    api_key: Optional[str] = None
    api_key_env: str = "OPENAI_API_KEY"
    temperature: float = 0.5
    max_tokens: int = 2048
    timeout_sec: float = 120.0
    model_path: Optional[Path] = None
    n_ctx: int = field(default_factory=lambda: _env_int("LLAMA_CPP_CTX", 8192))
    n_threads: int = field(default_factory=lambda: _env_int("LLAMA_CPP_THREADS", os.cpu_count() or 2))

    @classmethod
    def from_config(cls, config: Mapping[str, Any]) -> "LLMSettings":
        known = {f.name for f in fields(cls)}
        values = {key: value for key, value in config.items() if key in known and value is not None}
        if "model_path" in values:
            values["model_path"] = Path(str(values["model_path"])).expanduser()
        for key, caster in (("temperature", float), ("max_tokens", int), ("timeout_sec", float)):
            if key in values:
                values[key] = caster(values[key])
        return cls(**values)

    def resolve_api_key(self) -> Optional[str]:
        return self.api_key or os.environ.get(self.api_key_env)


class ChatBackend(Protocol):
    async def complete(self, messages: Sequence[Dict[str, Any]], stop: Sequence[str] = ()) -> str:
        ...

    def update_api_key(self, token: str) -> None:
        ...


class OpenAIChatBackend:
    """Any OpenAI-compatible chat endpoint, through ``openai.AsyncOpenAI``."""

    def __init__(self, settings: LLMSettings) -> None:
        self.settings = settings
        self._client: Optional[openai.AsyncOpenAI] = None

    def update_api_key(self, token: str) -> None:
        self.settings.api_key = token
        self._client = None
        logger.info("API key refreshed; client will be rebuilt on next call.")

    def _ensure_client(self) -> openai.AsyncOpenAI:
        if self._client is not None:
            return self._client
        api_key = self.settings.resolve_api_key()
        if not api_key:
            raise LLMError(
                f"No API key configured. Set 'api_key' or the {self.settings.api_key_env} "
                "environment variable."
            )
        self._client = openai.AsyncOpenAI(
            api_key=api_key,
            base_url=self.settings.base_url,
            timeout=self.settings.timeout_sec,
            max_retries=2,
        )
        return self._client

    async def complete(self, messages: Sequence[Dict[str, Any]], stop: Sequence[str] = ()) -> str:
        client = self._ensure_client()
        try:
            completion = await client.chat.completions.create(
                model=self.settings.model,
                messages=list(messages),
                temperature=self.settings.temperature,
                max_tokens=self.settings.max_tokens,
                stop=list(stop) or None,
            )
        except openai.APIError as exc:
            if is_context_length_error(exc):
                raise ContextLengthExceeded(str(exc)) from exc
            raise LLMError(str(exc)) from exc
        content = completion.choices[0].message.content
        logger.debug("completion finished (chars=%s)", len(content or ""))
        return content or ""


class LlamaCppChatBackend:
    """Local GGUF model driven through llama-cpp-python in a worker thread.

    Completions share one single-worker executor: a call that timed out keeps
    running in its thread and the next call queues behind it. A ``Llama``
    instance must never be driven from two threads at once.
    """

    def __init__(self, settings: LLMSettings) -> None:
        self.settings = settings
        self._client: Any = None
        self._client_lock = threading.Lock()
        self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="athena-llama")

    def update_api_key(self, token: str) -> None:
        logger.debug("llama.cpp backend ignores API key refresh.")

    async def complete(self, messages: Sequence[Dict[str, Any]], stop: Sequence[str] = ()) -> str:
        client = await asyncio.to_thread(self._ensure_client)
        flattened = _flatten_messages(messages)

        def _invoke() -> Dict[str, Any]:
            return client.create_chat_completion(
                messages=flattened,
                temperature=self.settings.temperature,
                max_tokens=self.settings.max_tokens,
                stop=list(stop),
            )

        try:
            completion = await asyncio.wait_for(
                asyncio.get_running_loop().run_in_executor(self._executor, _invoke),
                timeout=self.settings.timeout_sec,
            )
        except asyncio.TimeoutError:
            raise LLMError(
                f"llama timed out after {self.settings.timeout_sec} seconds; reduce "
                "max_tokens or raise timeout_sec."
            ) from None
        except ValueError as exc:
            if is_context_length_error(exc):
                raise ContextLengthExceeded(str(exc)) from exc
            raise LLMError(str(exc)) from exc
        text = completion["choices"][0]["message"].get("content") or ""
        logger.debug("llama completed (chars=%s)", len(text))
        return text

    def _ensure_client(self) -> Any:
        if self._client is not None:
            return self._client
        try:
            from llama_cpp import Llama
        except ImportError as exc:
            raise LLMError(
                "llama-cpp-python is not installed. Install the 'llama' extra to use "
                "the llama_cpp backend."
            ) from exc

        model = self._detect_model_path()
        if model is None:
            raise LLMError("No model found. Place a .gguf under ./models or set model_path.")

        with self._client_lock:
            if self._client is None:
                logger.info(
                    "Loading llama model: %s (threads=%s ctx=%s)",
                    model,
                    self.settings.n_threads,
                    self.settings.n_ctx,
                )
                self._client = Llama(
                    model_path=str(model),
                    n_ctx=self.settings.n_ctx,
                    n_threads=self.settings.n_threads,
                    verbose=False,
                )
        return self._client

    def _detect_model_path(self) -> Optional[Path]:
        candidates: List[Path] = []
        env_value = os.environ.get("LLAMA_CPP_MODEL")
        if env_value:
            candidates.append(Path(env_value).expanduser())
        if self.settings.model_path is not None:
            candidates.append(self.settings.model_path)
        for directory in MODEL_SEARCH_DIRS:
            if directory.exists():
                candidates.extend(sorted(directory.glob("*.gguf")))
        for candidate in candidates:
            if candidate.expanduser().exists():
                return candidate.expanduser()
        return None


def _flatten_messages(messages: Sequence[Dict[str, Any]]) -> List[Dict[str, Any]]:
    """Reduce multi-part contents to plain text; images are dropped."""

    flattened: List[Dict[str, Any]] = []
    for message in messages:
        content = message.get("content")
        if isinstance(content, list):
            content = "\n".join(
                part.get("text", "") for part in content if part.get("type") == "text"
            )
        flattened.append({"role": message["role"], "content": content or ""})
    return flattened


BACKENDS = {
    "openai": OpenAIChatBackend,
    "llama_cpp": LlamaCppChatBackend,
}


def build_backend(settings: LLMSettings) -> ChatBackend:
    factory = BACKENDS.get(settings.backend)
    if factory is None:
        raise LLMError(
            f"Unknown LLM backend '{settings.backend}'. Choose one of: {', '.join(sorted(BACKENDS))}."
        )
    return factory(settings)


__all__ = [
    "BACKENDS",
    "ChatBackend",
    "ContextLengthExceeded",
    "LLMError",
    "LLMSettings",
    "LlamaCppChatBackend",
    "OpenAIChatBackend",
    "build_backend",
    "is_context_length_error",
]
