import threading
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List

from data_agent.errors import RunCancelledError


class CancelToken:
    """调用方持有的取消信号，可在任意线程调用 cancel()。"""

    def __init__(self):
        self._event = threading.Event()

    def cancel(self):
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def wait(self, timeout: float) -> bool:
        return self._event.wait(timeout)

    def raise_if_cancelled(self):
        if self._event.is_set():
            raise RunCancelledError("run cancelled by caller")


@dataclass
class RunContext:
    """单次运行的工具上下文：运行开始时创建，结束后丢弃。

    - frames: extract_data 提取出的表（变量名 -> 行列表）
    - variables: expr_inter 赋值产生的变量
    """
    engine: Any = None
    output_dir: Path = Path("public")
    frames: Dict[str, List[Dict[str, Any]]] = field(default_factory=dict)
    variables: Dict[str, Any] = field(default_factory=dict)

    def lookup(self, name: str) -> Any:
        """先查变量再查提取表，都没有时抛 KeyError。"""
        if name in self.variables:
            return self.variables[name]
        if name in self.frames:
            return self.frames[name]
        raise KeyError(name)

    def require_engine(self):
        if self.engine is None:
            raise RuntimeError("未配置数据库连接（database_url）")
        return self.engine
