"""
LLM client for Pi Browser.

Wraps a LangChain chat model with the browser tools bound. Each model call
is exposed as a ModelStream: an async iterator of partial events (text
deltas, tool-call announcements) for live display, plus result() for the
fully assembled assistant message once the stream is exhausted.
"""

import logging
import uuid
from dataclasses import dataclass
from typing import Any, AsyncIterator, Optional

from langchain_core.messages import AIMessage, AIMessageChunk
from langchain_openai import ChatOpenAI

from .config import AgentConfig
from .conversation import Conversation
from .errors import ModelClientError

logger = logging.getLogger(__name__)


# Lazy import for optional providers to avoid import errors if not installed
def _get_anthropic_client():
    try:
        from langchain_anthropic import ChatAnthropic
        return ChatAnthropic
    except ImportError:
        return None


def _get_google_client():
    try:
        from langchain_google_genai import ChatGoogleGenerativeAI
        return ChatGoogleGenerativeAI
    except ImportError:
        return None


def create_chat_model(config: AgentConfig):
    """Create the LangChain chat model for the configured endpoint.

    Detects the provider from the endpoint URL or model name. Local
    endpoints (LM Studio, Ollama) speak the OpenAI API even when serving
    Claude- or Gemini-named models.
    """
    model_lower = (config.model or "").lower()
    endpoint_lower = (config.model_endpoint or "").lower()

    is_local_endpoint = any(
        host in endpoint_lower for host in ("localhost", "127.0.0.1", "0.0.0.0")
    )
    is_anthropic = "anthropic" in endpoint_lower or (
        "claude" in model_lower and not is_local_endpoint
    )
    is_google = "googleapis" in endpoint_lower or (
        "gemini" in model_lower and not is_local_endpoint
    )

    if is_anthropic:
        ChatAnthropic = _get_anthropic_client()
        if ChatAnthropic is None:
            raise ImportError("langchain-anthropic not installed. Run: pip install langchain-anthropic")

        anthropic_kwargs = {
            "api_key": config.api_key or "not-required",
            "model": config.model.strip(),
            "max_tokens": config.max_tokens,
            "temperature": config.temperature,
        }
        if config.model_endpoint and "api.anthropic.com" not in config.model_endpoint:
            anthropic_kwargs["anthropic_api_url"] = config.model_endpoint
        return ChatAnthropic(**anthropic_kwargs)

    if is_google:
        ChatGoogle = _get_google_client()
        if ChatGoogle is None:
            raise ImportError("langchain-google-genai not installed. Run: pip install langchain-google-genai")

        return ChatGoogle(
            google_api_key=config.api_key or "not-required",
            model=config.model.strip(),
            max_output_tokens=config.max_tokens,
            temperature=config.temperature,
        )

    # Default: OpenAI and OpenAI-compatible endpoints (LM Studio, Ollama, ...)
    return ChatOpenAI(
        base_url=config.model_endpoint,
        api_key=config.api_key or "not-required",
        model=config.model.strip(),
        max_tokens=config.max_tokens,
        temperature=config.temperature,
        request_timeout=120,
    )


@dataclass(frozen=True)
class StreamEvent:
    """A partial event from a streaming model call."""
    type: str  # "text_delta" | "tool_call_start"
    delta: str = ""
    name: str = ""


def _chunk_text(chunk: AIMessageChunk) -> str:
    content = chunk.content
    if isinstance(content, str):
        return content
    parts = []
    for block in content:
        if isinstance(block, str):
            parts.append(block)
        elif isinstance(block, dict) and block.get("type") == "text":
            parts.append(block.get("text", ""))
    return "".join(parts)


class ModelStream:
    """One streaming model call.

    Iterate it once to observe partial events; then call result(). Calling
    result() on an untouched stream drains it first.
    """

    def __init__(self, chunks: AsyncIterator[AIMessageChunk]):
        self._chunks = chunks
        self._started = False
        self._exhausted = False
        self._aggregate: Optional[AIMessageChunk] = None

    def __aiter__(self) -> AsyncIterator[StreamEvent]:
        if self._started:
            raise RuntimeError("A model stream can only be consumed once")
        self._started = True
        return self._events()

    async def _events(self) -> AsyncIterator[StreamEvent]:
        try:
            async for chunk in self._chunks:
                if self._aggregate is None:
                    self._aggregate = chunk
                else:
                    self._aggregate = self._aggregate + chunk

                text = _chunk_text(chunk)
                if text:
                    yield StreamEvent("text_delta", delta=text)
                for call_chunk in getattr(chunk, "tool_call_chunks", None) or []:
                    if call_chunk.get("name"):
                        yield StreamEvent("tool_call_start", name=call_chunk["name"])
        except ModelClientError:
            raise
        except Exception as e:
            raise ModelClientError(f"{type(e).__name__}: {e}") from e
        self._exhausted = True

    async def result(self) -> AIMessage:
        """The assembled assistant message.

        Tool calls without an id get a generated one so results can always
        be paired with their call.

        Raises:
            RuntimeError: If iteration was started but not finished
            ModelClientError: If the model call fails while draining
        """
        if not self._started:
            async for _ in self:
                pass
        if not self._exhausted:
            raise RuntimeError("Model stream has not been fully consumed")

        aggregate = self._aggregate
        if aggregate is None:
            return AIMessage(content="")

        tool_calls = []
        for call in aggregate.tool_calls:
            tool_calls.append({
                "name": call["name"],
                "args": call.get("args") or {},
                "id": call.get("id") or f"call_{uuid.uuid4().hex[:12]}",
                "type": "tool_call",
            })

        # Calls whose arguments are not valid JSON; the agent answers each
        # with an error result
        invalid_tool_calls = []
        for call in aggregate.invalid_tool_calls:
            logger.warning(
                "Model sent unparseable arguments for %s: %r",
                call.get("name"), call.get("args"),
            )
            invalid_tool_calls.append({
                "name": call.get("name") or "unknown",
                "args": call.get("args"),
                "id": call.get("id") or f"call_{uuid.uuid4().hex[:12]}",
                "error": call.get("error"),
                "type": "invalid_tool_call",
            })

        return AIMessage(
            content=aggregate.content,
            tool_calls=tool_calls,
            invalid_tool_calls=invalid_tool_calls,
            id=aggregate.id,
            response_metadata=aggregate.response_metadata,
            usage_metadata=aggregate.usage_metadata,
        )


class ModelClient:
    """Chat model with the conversation's tool schema bound."""

    def __init__(self, chat_model: Any):
        self.chat_model = chat_model

    @classmethod
    def from_config(cls, config: AgentConfig) -> "ModelClient":
        return cls(create_chat_model(config))

    def stream(self, conversation: Conversation) -> ModelStream:
        """Start one model call over the whole conversation.

        Raises:
            ModelClientError: If the model cannot be prepared for the call
        """
        try:
            bound = self.chat_model.bind_tools(
                [spec.to_openai() for spec in conversation.tools]
            )
            chunks = bound.astream(conversation.to_messages())
        except Exception as e:
            raise ModelClientError(f"{type(e).__name__}: {e}") from e
        return ModelStream(chunks)
