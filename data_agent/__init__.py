from data_agent.agent import DataAgent, RunResult, SYSTEM_PROMPT
from data_agent.context import CancelToken, RunContext
from data_agent.errors import (
    DataAgentError,
    LLMConfigError,
    MalformedResponseError,
    RunCancelledError,
    TransportError,
)
from data_agent.llm_openai import OpenAIChatClient, load_llm
from data_agent.schema import AssistantResponse, Message, ToolCall, ToolKind, ToolRegistry, ToolSpec

__all__ = [
    "AssistantResponse",
    "CancelToken",
    "DataAgent",
    "DataAgentError",
    "LLMConfigError",
    "MalformedResponseError",
    "Message",
    "OpenAIChatClient",
    "RunCancelledError",
    "RunContext",
    "RunResult",
    "SYSTEM_PROMPT",
    "ToolCall",
    "ToolKind",
    "ToolRegistry",
    "ToolSpec",
    "TransportError",
    "load_llm",
]
