import logging
import time
from collections import defaultdict
from typing import Literal, Optional

import plotly.graph_objects as go
from pydantic import BaseModel, Field

from data_agent.schema import ToolKind

logger = logging.getLogger(__name__)


class ChartArgs(BaseModel):
    chart_type: Literal["line", "bar", "scatter", "pie"]
    data_ref: str = Field(description="extract_data 保存的变量名")
    x_field: str = Field(description="X 轴（饼图为分类）字段")
    y_field: Optional[str] = Field(default=None, description="Y 轴（饼图为数值）字段；饼图省略时按分类计数")
    title: str
    fname: Optional[str] = Field(default=None, pattern=r"^[A-Za-z0-9_\-]+$",
                                 description="图表文件名（不含扩展名），例如 uv_trend")


def build_figure(rows, chart_type: str, x_field: str, y_field: Optional[str], title: str) -> go.Figure:
    if not rows:
        raise ValueError("数据为空，无法绘图")
    missing = [f for f in (x_field, y_field) if f and f not in rows[0]]
    if missing:
        raise KeyError(f"字段不存在: {', '.join(missing)}；可用字段: {', '.join(rows[0].keys())}")

    if chart_type == "pie":
        totals = defaultdict(float)
        for row in rows:
            totals[str(row[x_field])] += float(row[y_field]) if y_field else 1
        fig = go.Figure(go.Pie(labels=list(totals.keys()), values=list(totals.values())))
    else:
        if not y_field:
            raise ValueError(f"{chart_type} 图需要 y_field")
        x = [row[x_field] for row in rows]
        y = [row[y_field] for row in rows]
        if chart_type == "bar":
            trace = go.Bar(x=x, y=y, name=y_field)
        elif chart_type == "line":
            trace = go.Scatter(x=x, y=y, mode="lines+markers", name=y_field)
        else:
            trace = go.Scatter(x=x, y=y, mode="markers", name=y_field)
        fig = go.Figure(trace)
        fig.update_layout(xaxis_title=x_field, yaxis_title=y_field)
    fig.update_layout(title_text=title)
    return fig


def fig_inter(ctx, chart_type: str, data_ref: str, x_field: str, title: str,
              y_field: Optional[str] = None, fname: Optional[str] = None) -> str:
    """根据提取的数据生成 plotly 图表 JSON，写到 <output_dir>/images/ 下，返回前端可访问的相对路径。"""
    if data_ref not in ctx.frames:
        raise KeyError(f"变量不存在: {data_ref}，请先调用 extract_data")
    fig = build_figure(ctx.frames[data_ref], chart_type, x_field, y_field, title)

    images_dir = ctx.output_dir / "images"
    images_dir.mkdir(parents=True, exist_ok=True)
    chart_id = fname or f"chart_{int(time.time() * 1000)}"
    path = images_dir / f"{chart_id}.json"
    path.write_text(fig.to_json(), encoding="utf-8")
    logger.info("chart written to %s", path)
    return f"images/{chart_id}.json"


def register(registry):
    registry.register(
        name="fig_inter",
        func=fig_inter,
        description="可视化绘图：基于 extract_data 提取的变量生成折线/柱状/散点/饼图（plotly JSON，前端渲染），"
                    "返回图表文件路径。不需要先用 expr_inter 读取数据。",
        args_model=ChartArgs,
        kind=ToolKind.CHART,
    )
