from pydantic import BaseModel, Field

from data_agent.db import rows_to_json, run_query
from data_agent.schema import ToolKind


class SQLQueryArgs(BaseModel):
    sql_query: str = Field(description="字符串形式的 SQL 查询语句，用于查询数据库中各张表的相关信息")


def sql_inter(ctx, sql_query: str) -> str:
    """在数据库中执行一段 SQL 并返回 JSON 结果；非查询语句返回影响行数。"""
    result = run_query(ctx.require_engine(), sql_query)
    if isinstance(result, int):
        return f"执行成功，影响行数: {result}"
    return rows_to_json(result)


def register(registry):
    registry.register(
        name="sql_inter",
        func=sql_inter,
        description="当用户需要进行数据库查询时调用：运行一段 SQL 并返回 JSON 结果。"
                    "本函数只负责查询，若要把数据提取到当前环境供计算或绘图，请使用 extract_data。",
        args_model=SQLQueryArgs,
        kind=ToolKind.QUERY,
    )
