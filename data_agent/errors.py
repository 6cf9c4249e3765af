"""错误层次。

工具相关错误（ToolError 子类）在注册表内部被捕获并转成工具结果字符串，
不会越过编排边界；LLM 客户端错误与取消会直接抛给调用方。
"""

from __future__ import annotations


class DataAgentError(Exception):
    """所有错误的基类。"""


# ---- 可恢复：写回对话记录，模型继续 ----

class ToolError(DataAgentError):
    """工具调用失败的基类。"""

    def __init__(self, tool_name: str, message: str) -> None:
        self.tool_name = tool_name
        super().__init__(message)


class ToolNotFoundError(ToolError):
    """模型请求了未注册的工具名。"""

    def __init__(self, tool_name: str) -> None:
        super().__init__(tool_name, f"tool not found: {tool_name}")


class SchemaValidationError(ToolError):
    """参数未通过工具声明的 schema 校验。"""


class ToolExecutionError(ToolError):
    """工具执行器本身失败。"""


class ExpressionError(ValueError):
    """表达式求值器拒绝或无法计算的输入。"""


# ---- 致命：终止本次运行 ----

class LLMClientError(DataAgentError):
    """对话补全客户端错误的基类。"""


class LLMConfigError(LLMClientError):
    """缺少或非法的客户端配置（例如没有 API key）。"""


class TransportError(LLMClientError):
    """补全端点返回非 2xx，或网络层失败。

    Attributes:
        status_code: HTTP 状态码；网络错误时为 None。
        body: 响应体原文（可能为空）。
    """

    def __init__(self, message: str, status_code: int | None = None, body: str = "") -> None:
        self.status_code = status_code
        self.body = body
        if status_code is not None:
            message = f"{message} (HTTP {status_code}): {body}"
        super().__init__(message)


class MalformedResponseError(LLMClientError):
    """响应缺少预期字段，或工具参数无法解析。"""


class RunCancelledError(DataAgentError):
    """调用方通过 CancelToken 取消了本次运行。"""


class ImportDataError(DataAgentError):
    """CSV 导入在严格模式下遇到非法行。"""
