
import json
import logging
import os
import threading
from typing import Any, Dict, List, Optional

import openai
from openai import OpenAI

from data_agent.context import CancelToken
from data_agent.errors import (
    LLMConfigError,
    MalformedResponseError,
    RunCancelledError,
    TransportError,
)
from data_agent.schema import AssistantResponse, Message, ToolCall

logger = logging.getLogger(__name__)


class OpenAIChatClient:
    """
    OpenAI 兼容的 Chat Completions 后端（也适用于 DeepSeek / SiliconFlow 等）：
    - complete(messages, tools) -> AssistantResponse
    每次调用恰好一次 HTTP 往返：不重试、不流式。
    """
    def __init__(self, model: str = "gpt-4o-mini", temperature: float = 0.1, top_p: float | None = None,
                 max_tokens: int | None = None, api_base: str | None = None, api_key: str | None = None,
                 timeout: float = 120.0, poll_interval: float = 0.05, client: OpenAI | None = None):
        if client is None:
            api_key = api_key or os.getenv("OPENAI_API_KEY")
            if not api_key:
                raise LLMConfigError("缺少 OPENAI_API_KEY 环境变量或未传入 api_key")
            client_kwargs: Dict[str, Any] = {"api_key": api_key, "max_retries": 0, "timeout": timeout}
            api_base = api_base or os.getenv("OPENAI_BASE_URL")
            if api_base:
                client_kwargs["base_url"] = api_base
            client = OpenAI(**client_kwargs)
        self.client = client
        self.model = model
        self.temperature = temperature
        self.top_p = top_p
        self.max_tokens = max_tokens
        self.poll_interval = poll_interval

    def build_payload(self, messages: List[Message], tools: Optional[List[Dict[str, Any]]] = None) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "model": self.model,
            "messages": [m.to_dict() for m in messages],
            "temperature": self.temperature,
        }
        if tools:
            payload["tools"] = tools
            payload["tool_choice"] = "auto"
        if self.top_p is not None:
            payload["top_p"] = self.top_p
        if self.max_tokens is not None:
            payload["max_tokens"] = self.max_tokens
        return payload

    def complete(self, messages: List[Message], tools: Optional[List[Dict[str, Any]]] = None,
                 cancel: Optional[CancelToken] = None) -> AssistantResponse:
        payload = self.build_payload(messages, tools)
        if cancel is None:
            return self._send(payload)

        cancel.raise_if_cancelled()
        # 在守护线程里发请求，本线程轮询取消信号；取消后直接放弃这次请求，
        # 被放弃的线程不会拖住解释器退出
        outcome: Dict[str, Any] = {}
        done = threading.Event()

        def worker():
            try:
                outcome["response"] = self._send(payload)
            except Exception as e:
                outcome["error"] = e
            finally:
                done.set()

        threading.Thread(target=worker, name="completion", daemon=True).start()
        while not done.wait(self.poll_interval):
            if cancel.cancelled:
                logger.info("completion call abandoned after cancel")
                raise RunCancelledError("run cancelled during completion call")
        if "error" in outcome:
            raise outcome["error"]
        return outcome["response"]

    def _send(self, payload: Dict[str, Any]) -> AssistantResponse:
        logger.debug("chat.completions.create model=%s messages=%d tools=%d",
                     payload["model"], len(payload["messages"]), len(payload.get("tools", [])))
        try:
            resp = self.client.chat.completions.create(**payload)
        except openai.APIStatusError as e:
            raise TransportError("补全请求失败", status_code=e.status_code, body=e.response.text) from e
        except openai.APIConnectionError as e:
            raise TransportError(f"补全请求失败: {e}") from e
        except (openai.APIResponseValidationError, json.JSONDecodeError) as e:
            raise MalformedResponseError(f"无法解析补全响应: {e}") from e
        return parse_response(resp)


def parse_response(resp) -> AssistantResponse:
    choices = getattr(resp, "choices", None)
    if not choices:
        raise MalformedResponseError("响应中缺少 choices")
    message = getattr(choices[0], "message", None)
    if message is None:
        raise MalformedResponseError("响应中缺少 assistant message")

    calls: List[ToolCall] = []
    seen = set()
    for tc in message.tool_calls or []:
        fn = getattr(tc, "function", None)
        if fn is None:
            raise MalformedResponseError(f"不支持的工具调用类型: {getattr(tc, 'type', None)}")
        if tc.id in seen:
            raise MalformedResponseError(f"重复的工具调用 id: {tc.id}")
        seen.add(tc.id)
        raw = fn.arguments or "{}"
        if not isinstance(raw, str):
            raise MalformedResponseError(f"工具 {fn.name} 的参数应为 JSON 字符串，收到 {type(raw).__name__}")
        try:
            args = json.loads(raw)
        except json.JSONDecodeError as e:
            raise MalformedResponseError(f"工具 {fn.name} 的参数不是合法 JSON: {raw!r}") from e
        if not isinstance(args, dict):
            raise MalformedResponseError(f"工具 {fn.name} 的参数必须是 JSON 对象: {raw!r}")
        calls.append(ToolCall(id=tc.id, name=fn.name, arguments=args, raw_arguments=raw))
    return AssistantResponse(content=message.content, tool_calls=calls)


def load_llm(**kwargs) -> OpenAIChatClient:
    """
    统一入口：
    - provider: 目前只支持 "openai"（任何 OpenAI 兼容端点）
    - model, temperature, top_p, max_tokens, timeout, api_base(可选), api_key(可选/或用环境变量)
    """
    provider = (kwargs.get("provider") or "openai").lower()
    if provider != "openai":
        raise LLMConfigError(f"不支持的 provider: {provider}")
    return OpenAIChatClient(
        model=kwargs.get("model", "gpt-4o-mini"),
        temperature=kwargs.get("temperature", 0.1),
        top_p=kwargs.get("top_p"),
        max_tokens=kwargs.get("max_tokens"),
        api_base=kwargs.get("api_base"),
        api_key=kwargs.get("api_key"),
        timeout=kwargs.get("timeout", 120.0),
    )
