"""测试共用的 fixture：临时 SQLite 库、脚本化的补全客户端。"""

import copy
import json

import pytest
from sqlalchemy import text

from data_agent.db import create_data_engine
from data_agent.schema import AssistantResponse, ToolCall


@pytest.fixture
def engine(tmp_path):
    """带一张 sales 表（5 行）的临时 SQLite 库。"""
    eng = create_data_engine(f"sqlite:///{tmp_path / 'demo.db'}")
    with eng.begin() as conn:
        conn.execute(text("CREATE TABLE sales (id INTEGER PRIMARY KEY, region TEXT, amount INTEGER)"))
        conn.execute(
            text("INSERT INTO sales (id, region, amount) VALUES (:id, :region, :amount)"),
            [
                {"id": 1, "region": "north", "amount": 120},
                {"id": 2, "region": "south", "amount": 80},
                {"id": 3, "region": "north", "amount": 200},
                {"id": 4, "region": "east", "amount": 50},
                {"id": 5, "region": "south", "amount": 150},
            ],
        )
    yield eng
    eng.dispose()


class ScriptedClient:
    """按顺序返回预设响应的假客户端，记录每次调用收到的对话与工具声明。"""

    def __init__(self, *responses):
        self.responses = list(responses)
        self.calls = []

    def complete(self, messages, tools=None, cancel=None):
        self.calls.append({
            "messages": [m.to_dict() for m in messages],
            "tools": copy.deepcopy(tools),
        })
        item = self.responses.pop(0)
        if isinstance(item, Exception):
            raise item
        return item


def reply(content):
    return AssistantResponse(content=content)


def calls(*specs):
    """calls(("call_1", "sql_inter", {...}), ...) -> 带工具调用的 AssistantResponse。"""
    return AssistantResponse(
        content=None,
        tool_calls=[
            ToolCall(id=cid, name=name, arguments=args, raw_arguments=json.dumps(args))
            for cid, name, args in specs
        ],
    )
