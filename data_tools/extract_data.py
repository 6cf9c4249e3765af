from pydantic import BaseModel, Field

from data_agent.db import run_query
from data_agent.schema import ToolKind


class ExtractArgs(BaseModel):
    sql_query: str = Field(description="用于提取数据的 SQL 查询语句")
    df_name: str = Field(pattern=r"^[A-Za-z_][A-Za-z0-9_]*$",
                         description="保存结果的变量名，例如 app_uv_df")


def extract_data(ctx, sql_query: str, df_name: str) -> str:
    """把查询结果保存为本次运行内的变量，供 expr_inter / fig_inter 使用。"""
    rows = run_query(ctx.require_engine(), sql_query)
    if isinstance(rows, int):
        raise ValueError("extract_data 只接受返回数据行的查询语句")
    ctx.frames[df_name] = rows
    columns = ", ".join(rows[0].keys()) if rows else "(无)"
    return f"成功创建变量 `{df_name}`，共 {len(rows)} 行，列: {columns}"


def register(registry):
    registry.register(
        name="extract_data",
        func=extract_data,
        description="把数据库中的一张表或一次查询结果提取到当前环境，保存为变量 df_name。"
                    "本函数只负责提取，不负责展示查询结果，展示请使用 sql_inter。",
        args_model=ExtractArgs,
        kind=ToolKind.EXTRACT,
    )
