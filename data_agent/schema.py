import json
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Type

from pydantic import BaseModel, ValidationError

from data_agent.context import RunContext
from data_agent.errors import (
    SchemaValidationError,
    ToolError,
    ToolExecutionError,
    ToolNotFoundError,
)

logger = logging.getLogger(__name__)

# 工具结果里的错误前缀，模型和测试都靠它识别失败类型
TOOL_NOT_FOUND = "[工具不存在]"
ARGS_INVALID = "[参数错误]"
RUN_FAILED = "[运行错误]"


@dataclass
class ToolCall:
    id: str
    name: str
    arguments: Dict[str, Any]
    raw_arguments: str = "{}"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "type": "function",
            "function": {"name": self.name, "arguments": self.raw_arguments},
        }


@dataclass
class Message:
    role: str  # "system" | "user" | "assistant" | "tool"
    content: Optional[str] = None
    tool_call_id: Optional[str] = None
    tool_calls: List[ToolCall] = field(default_factory=list)
    name: Optional[str] = None

    @classmethod
    def system(cls, content: str) -> "Message":
        return cls("system", content)

    @classmethod
    def user(cls, content: str) -> "Message":
        return cls("user", content)

    @classmethod
    def tool(cls, call: ToolCall, content: str) -> "Message":
        return cls("tool", content, tool_call_id=call.id, name=call.name)

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {"role": self.role, "content": self.content}
        if self.role == "assistant" and self.tool_calls:
            out["tool_calls"] = [c.to_dict() for c in self.tool_calls]
        if self.role == "tool":
            out["tool_call_id"] = self.tool_call_id
            if self.name:
                out["name"] = self.name
        return out


@dataclass
class AssistantResponse:
    content: Optional[str] = None
    tool_calls: List[ToolCall] = field(default_factory=list)

    def to_message(self) -> Message:
        return Message("assistant", self.content, tool_calls=list(self.tool_calls))


class ToolKind(str, Enum):
    QUERY = "query"
    EXTRACT = "extract"
    COMPUTE = "compute"
    CHART = "chart"
    CUSTOM = "custom"


@dataclass
class ToolSpec:
    name: str
    kind: ToolKind
    func: Callable[..., Any]  # func(ctx, **args) -> str
    description: str
    args_model: Type[BaseModel]

    @property
    def schema(self) -> Dict[str, Any]:
        """参数的 JSON schema，原样声明给模型。"""
        return self.args_model.model_json_schema()

    def declaration(self) -> Dict[str, Any]:
        return {
            "type": "function",
            "function": {
                "name": self.name,
                "description": self.description,
                "parameters": self.schema,
            },
        }


@dataclass
class ToolRegistry:
    tools: Dict[str, ToolSpec] = field(default_factory=dict)

    def register(self, name: str, func, description: str, args_model: Type[BaseModel],
                 kind: ToolKind = ToolKind.CUSTOM):
        if name in self.tools:
            raise ValueError(f"工具已注册: {name}")
        self.tools[name] = ToolSpec(name, kind, func, description, args_model)

    def names(self):
        return list(self.tools.keys())

    def resolve(self, name: str) -> ToolSpec:
        try:
            return self.tools[name]
        except KeyError:
            raise ToolNotFoundError(name) from None

    def declarations(self) -> List[Dict[str, Any]]:
        return [spec.declaration() for spec in self.tools.values()]

    def validate(self, spec: ToolSpec, arguments: Dict[str, Any]) -> BaseModel:
        try:
            return spec.args_model.model_validate(arguments)
        except ValidationError as e:
            problems = "; ".join(
                f"{'.'.join(str(p) for p in err['loc']) or '<root>'}: {err['msg']}"
                for err in e.errors()
            )
            raise SchemaValidationError(spec.name, problems) from e

    def execute(self, spec: ToolSpec, args: BaseModel, ctx: RunContext) -> str:
        try:
            result = spec.func(ctx, **dict(args))
        except Exception as e:
            raise ToolExecutionError(spec.name, f"{type(e).__name__}: {e}") from e
        if isinstance(result, str):
            return result
        return json.dumps(result, ensure_ascii=False, default=str)

    def invoke(self, call: ToolCall, ctx: RunContext) -> str:
        """解析 + 校验 + 执行；可恢复错误转成带前缀的结果字符串，不向外抛。"""
        try:
            spec = self.resolve(call.name)
            args = self.validate(spec, call.arguments)
            return self.execute(spec, args, ctx)
        except ToolError as e:
            logger.warning("tool %s failed: %s", call.name, e)
            return format_tool_error(e)


def format_tool_error(err: ToolError) -> str:
    if isinstance(err, ToolNotFoundError):
        return f"{TOOL_NOT_FOUND} {err.tool_name} not found"
    if isinstance(err, SchemaValidationError):
        return f"{ARGS_INVALID} {err.tool_name}: {err}"
    return f"{RUN_FAILED} {err.tool_name}: {err}"
