"""决策 → 执行 → 综合 编排循环的测试。

全部使用脚本化客户端，不访问真实 API。
"""

import json

import pytest
from pydantic import BaseModel

from data_agent.agent import AgentState, DataAgent
from data_agent.context import CancelToken
from data_agent.db import rows_to_json, run_query
from data_agent.errors import MalformedResponseError, RunCancelledError, TransportError
from data_agent.schema import ARGS_INVALID, RUN_FAILED, TOOL_NOT_FOUND, ToolKind, ToolRegistry
from tests.conftest import ScriptedClient, calls, reply


class QueryArgs(BaseModel):
    sql: str


class QueryArgsCode(BaseModel):
    code: str


def query_registry(invocations=None):
    registry = ToolRegistry()

    def query(ctx, sql):
        if invocations is not None:
            invocations.append(sql)
        return rows_to_json(run_query(ctx.require_engine(), sql))

    registry.register("query", query, "run SQL", QueryArgs, kind=ToolKind.QUERY)
    return registry


class TestDirectAnswer:
    def test_no_tool_calls_single_round_trip(self, engine):
        """场景 A：没有工具调用时只请求一次，原样返回内容。"""
        client = ScriptedClient(reply("here are the tables: sales"))
        agent = DataAgent(client, engine=engine)

        result = agent.run("list the tables")

        assert result.answer == "here are the tables: sales"
        assert len(client.calls) == 1
        assert result.completions == 1
        assert [m.role for m in result.transcript] == ["system", "user"]
        assert result.states == [AgentState.AWAITING_DECISION, AgentState.DONE]

    def test_run_agent_returns_answer(self, engine):
        agent = DataAgent(ScriptedClient(reply("hi")), engine=engine)
        assert agent.run_agent("hello") == "hi"

    def test_empty_content_returns_empty_string(self, engine):
        agent = DataAgent(ScriptedClient(reply(None)), engine=engine)
        assert agent.run_agent("hello") == ""

    def test_seed_messages(self, engine):
        client = ScriptedClient(reply("ok"))
        DataAgent(client, engine=engine, system_prompt="SYS").run("question")

        sent = client.calls[0]["messages"]
        assert sent == [
            {"role": "system", "content": "SYS"},
            {"role": "user", "content": "question"},
        ]
        names = [t["function"]["name"] for t in client.calls[0]["tools"]]
        assert names == ["sql_inter", "extract_data", "expr_inter", "fig_inter"]


class TestToolRound:
    def test_query_then_synthesis(self, engine):
        """场景 B：一次查询工具调用，结果写入对话，第二次补全的内容作为最终回答。"""
        sql = "SELECT * FROM sales ORDER BY id DESC LIMIT 3"
        client = ScriptedClient(
            calls(("call_1", "query", {"sql": sql})),
            reply("最近 3 行是 id 5、4、3"),
        )
        agent = DataAgent(client, registry=query_registry(), engine=engine)

        result = agent.run("show me the most recent 3 rows of table sales")

        assert result.answer == "最近 3 行是 id 5、4、3"
        assert result.completions == 2
        tool_msg = result.transcript[3]
        assert tool_msg.role == "tool"
        assert tool_msg.tool_call_id == "call_1"
        rows = json.loads(tool_msg.content)
        assert [r["id"] for r in rows] == [5, 4, 3]

        synthesis = client.calls[1]["messages"]
        assert [m["role"] for m in synthesis] == ["system", "user", "assistant", "tool"]
        assert synthesis[2]["tool_calls"][0]["function"]["arguments"] == json.dumps({"sql": sql})
        assert synthesis[3]["content"] == tool_msg.content
        assert result.states == [
            AgentState.AWAITING_DECISION,
            AgentState.EXECUTING_TOOLS,
            AgentState.AWAITING_SYNTHESIS,
            AgentState.DONE,
        ]

    def test_n_calls_give_n_tool_messages_in_order(self, engine):
        client = ScriptedClient(
            calls(
                ("c1", "sql_inter", {"sql_query": "SELECT COUNT(*) AS n FROM sales"}),
                ("c2", "expr_inter", {"code": "1 + 1"}),
                ("c3", "sql_inter", {"sql_query": "SELECT MAX(amount) AS m FROM sales"}),
            ),
            reply("done"),
        )
        result = DataAgent(client, engine=engine).run("stats")

        tool_msgs = [m for m in result.transcript if m.role == "tool"]
        assert [m.tool_call_id for m in tool_msgs] == ["c1", "c2", "c3"]
        assert json.loads(tool_msgs[0].content) == [{"n": 5}]
        assert tool_msgs[1].content == "2"
        assert json.loads(tool_msgs[2].content) == [{"m": 200}]

    def test_tool_ids_match_preceding_assistant(self, engine):
        client = ScriptedClient(
            calls(("a", "expr_inter", {"code": "2 * 3"}), ("b", "expr_inter", {"code": "7"})),
            reply("ok"),
        )
        transcript = DataAgent(client, engine=engine).run("x").transcript

        assistant = transcript[2]
        assert assistant.role == "assistant"
        ids = {c.id for c in assistant.tool_calls}
        assert {m.tool_call_id for m in transcript[3:]} == ids

    def test_unknown_tool_does_not_abort(self, engine):
        """场景 C：未注册的工具名写回“未找到”结果，综合照常进行。"""
        client = ScriptedClient(
            calls(("c1", "nonexistent_tool", {})),
            reply("抱歉，这个工具不存在。"),
        )
        result = DataAgent(client, engine=engine).run("do something")

        tool_msg = result.transcript[-1]
        assert tool_msg.content.startswith(TOOL_NOT_FOUND)
        assert "nonexistent_tool" in tool_msg.content
        assert result.answer
        assert len(client.calls) == 2

    def test_unknown_tool_mid_batch_keeps_going(self, engine):
        client = ScriptedClient(
            calls(
                ("c1", "expr_inter", {"code": "1"}),
                ("c2", "nope", {}),
                ("c3", "expr_inter", {"code": "3"}),
            ),
            reply("ok"),
        )
        contents = [m.content for m in DataAgent(client, engine=engine).run("x").transcript[3:]]
        assert contents[0] == "1"
        assert contents[1].startswith(TOOL_NOT_FOUND)
        assert contents[2] == "3"

    def test_schema_failure_becomes_tool_result(self, engine):
        client = ScriptedClient(calls(("c1", "sql_inter", {"query": "SELECT 1"})), reply("ok"))
        result = DataAgent(client, engine=engine).run("x")

        content = result.transcript[-1].content
        assert content.startswith(ARGS_INVALID)
        assert "sql_query" in content
        assert result.answer == "ok"

    def test_executor_failure_becomes_tool_result(self, engine):
        client = ScriptedClient(calls(("c1", "sql_inter", {"sql_query": "SELEC broken"})), reply("ok"))
        result = DataAgent(client, engine=engine).run("x")

        assert result.transcript[-1].content.startswith(RUN_FAILED)
        assert result.answer == "ok"

    def test_second_round_tool_calls_ignored(self, engine):
        followup = calls(("c9", "expr_inter", {"code": "1"}))
        followup.content = "final"
        client = ScriptedClient(calls(("c1", "expr_inter", {"code": "1"})), followup)

        result = DataAgent(client, engine=engine).run("x")

        assert result.answer == "final"
        assert result.completions == 2
        assert len([m for m in result.transcript if m.role == "tool"]) == 1

    def test_synthesis_declarations_optional(self, engine):
        client = ScriptedClient(calls(("c1", "expr_inter", {"code": "1"})), reply("ok"))
        DataAgent(client, engine=engine, offer_tools_on_synthesis=False).run("x")

        assert client.calls[0]["tools"]
        assert client.calls[1]["tools"] is None

    def test_extracted_data_flows_between_tools(self, engine):
        client = ScriptedClient(
            calls(
                ("c1", "extract_data", {"sql_query": "SELECT * FROM sales", "df_name": "sales_df"}),
                ("c2", "expr_inter", {"code": "sum(col(sales_df, 'amount'))"}),
            ),
            reply("总额 600"),
        )
        result = DataAgent(client, engine=engine).run("total")

        assert result.transcript[-1].content == "600"
        assert "sales_df" in result.context.frames


class TestFailures:
    def test_transport_error_propagates_without_tools(self, engine):
        """场景 D：补全端点返回 500 时抛出 TransportError，工具一个都不执行。"""
        invocations = []
        client = ScriptedClient(TransportError("补全请求失败", status_code=500, body="boom"))
        agent = DataAgent(client, registry=query_registry(invocations), engine=engine)

        with pytest.raises(TransportError) as exc:
            agent.run_agent("anything")

        assert exc.value.status_code == 500
        assert invocations == []

    def test_transport_error_on_synthesis_propagates(self, engine):
        client = ScriptedClient(
            calls(("c1", "expr_inter", {"code": "1"})),
            TransportError("补全请求失败", status_code=502, body="bad gateway"),
        )
        with pytest.raises(TransportError):
            DataAgent(client, engine=engine).run("x")

    def test_malformed_response_propagates(self, engine):
        client = ScriptedClient(MalformedResponseError("响应中缺少 choices"))
        with pytest.raises(MalformedResponseError):
            DataAgent(client, engine=engine).run("x")

    def test_cancelled_before_run(self, engine):
        token = CancelToken()
        token.cancel()
        client = ScriptedClient(reply("never"))

        with pytest.raises(RunCancelledError):
            DataAgent(client, engine=engine).run("x", cancel=token)
        assert client.calls == []

    def test_cancel_between_passes(self, engine):
        token = CancelToken()
        registry = ToolRegistry()

        def cancelling(ctx, code):
            token.cancel()
            return "cancelled now"

        registry.register("expr_inter", cancelling, "cancel", QueryArgsCode)
        client = ScriptedClient(calls(("c1", "expr_inter", {"code": "x"})), reply("never"))

        with pytest.raises(RunCancelledError):
            DataAgent(client, registry=registry, engine=engine).run("x", cancel=token)
        assert len(client.calls) == 1


class TestStatelessRuns:
    def script(self):
        return (
            calls(
                ("c1", "sql_inter", {"sql_query": "SELECT region, amount FROM sales ORDER BY id"}),
                ("c2", "expr_inter", {"code": "round(600 / 5, 1)"}),
            ),
            reply("平均 120"),
        )

    def test_repeated_runs_identical(self, engine):
        first = DataAgent(ScriptedClient(*self.script()), engine=engine).run("avg")
        second = DataAgent(ScriptedClient(*self.script()), engine=engine).run("avg")

        assert first.answer == second.answer
        assert [m.to_dict() for m in first.transcript] == [m.to_dict() for m in second.transcript]

    def test_context_not_shared_between_runs(self, engine):
        client = ScriptedClient(
            calls(("c1", "extract_data", {"sql_query": "SELECT * FROM sales", "df_name": "t"})),
            reply("ok"),
            calls(("c2", "expr_inter", {"code": "len(t)"})),
            reply("ok"),
        )
        agent = DataAgent(client, engine=engine)

        first = agent.run("extract")
        second = agent.run("use it")

        assert "t" in first.context.frames
        assert second.context.frames == {}
        assert second.transcript[-1].content.startswith(RUN_FAILED)
