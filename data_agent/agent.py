import logging
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import List, Optional

from data_agent.context import CancelToken, RunContext
from data_agent.schema import Message, ToolRegistry

logger = logging.getLogger(__name__)

SYSTEM_PROMPT = """你是一名智能数据分析助手，请按以下规则工作：
- 数据库查询 → 调用 sql_inter，只需根据用户需求生成 SQL 语句
- 提取整表供后续计算/绘图 → 调用 extract_data，并给出变量名 df_name
- 数据计算 → 调用 expr_inter（只支持算术、比较、索引、赋值以及 col/mean/sum/count 等内置函数）
- 绘图需求 → 调用 fig_inter（基于 extract_data 提取的变量，返回图表 JSON 路径，前端渲染）

回答要求：
- 所有回答用简体中文，专业、简洁、以数据驱动
- 工具返回结构化 JSON 时，提取关键信息简要说明
- 工具返回以 [工具不存在]/[参数错误]/[运行错误] 开头时，向用户说明失败原因
- 不要编造不存在的工具或数据
"""


class AgentState(str, Enum):
    AWAITING_DECISION = "awaiting_decision"
    EXECUTING_TOOLS = "executing_tools"
    AWAITING_SYNTHESIS = "awaiting_synthesis"
    DONE = "done"


@dataclass
class RunResult:
    answer: str
    transcript: List[Message]
    context: RunContext
    completions: int = 0
    states: List[AgentState] = field(default_factory=list)


class DataAgent:
    """
    决策 → 执行 → 综合 的两轮补全协议：
    1) 第一次补全让模型决定是否调用工具；没有工具调用就直接返回内容
    2) 按模型给出的顺序逐个执行工具，结果作为 tool 消息追加
    3) 第二次补全综合工具结果给出最终回答；不会追第二轮工具调用
    agent 本身不保存运行状态，并发运行只共享只读的注册表/客户端/engine。
    """
    def __init__(self, client, registry: Optional[ToolRegistry] = None, engine=None,
                 output_dir: str | Path = "public", system_prompt: str = SYSTEM_PROMPT,
                 offer_tools_on_synthesis: bool = True):
        if registry is None:
            from data_tools import build_registry
            registry = build_registry()
        self.client = client
        self.registry = registry
        self.engine = engine
        self.output_dir = Path(output_dir)
        self.system_prompt = system_prompt
        self.offer_tools_on_synthesis = offer_tools_on_synthesis

    def new_context(self) -> RunContext:
        return RunContext(engine=self.engine, output_dir=self.output_dir)

    def run(self, user_message: str, cancel: Optional[CancelToken] = None) -> RunResult:
        ctx = self.new_context()
        messages = [Message.system(self.system_prompt), Message.user(user_message)]
        result = RunResult(answer="", transcript=messages, context=ctx)
        declarations = self.registry.declarations()

        # 第一步：让模型决定是否调用工具
        self._enter(result, AgentState.AWAITING_DECISION)
        first = self._complete(result, declarations, cancel)
        if not first.tool_calls:
            result.answer = first.content or ""
            self._enter(result, AgentState.DONE)
            return result
        messages.append(first.to_message())

        # 第二步：按顺序逐个执行工具
        self._enter(result, AgentState.EXECUTING_TOOLS)
        for call in first.tool_calls:
            if cancel is not None:
                cancel.raise_if_cancelled()
            logger.info("tool call %s %s(%s)", call.id, call.name, call.raw_arguments)
            observation = self.registry.invoke(call, ctx)
            messages.append(Message.tool(call, observation))

        # 第三步：综合工具结果生成最终回答
        self._enter(result, AgentState.AWAITING_SYNTHESIS)
        final = self._complete(result, declarations if self.offer_tools_on_synthesis else None, cancel)
        if final.tool_calls:
            logger.warning("synthesis pass requested %d more tool calls; ignored", len(final.tool_calls))
        result.answer = final.content or ""
        self._enter(result, AgentState.DONE)
        return result

    def run_agent(self, user_message: str, cancel: Optional[CancelToken] = None) -> str:
        return self.run(user_message, cancel=cancel).answer

    def _complete(self, result: RunResult, declarations, cancel):
        if cancel is not None:
            cancel.raise_if_cancelled()
        result.completions += 1
        return self.client.complete(list(result.transcript), declarations, cancel=cancel)

    def _enter(self, result: RunResult, state: AgentState):
        result.states.append(state)
        logger.debug("agent state -> %s", state.value)
