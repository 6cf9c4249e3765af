"""把 app_uv.csv（date,uv 两列）导入数据库，给 demo 准备数据。"""

import logging
from pathlib import Path
from typing import Dict, List

import pandas as pd
from sqlalchemy import Column, Date, Engine, Integer, MetaData, Table, delete, insert

from data_agent.errors import ImportDataError

logger = logging.getLogger(__name__)

metadata = MetaData()

app_uv = Table(
    "app_uv",
    metadata,
    Column("date", Date, primary_key=True),
    Column("uv", Integer, nullable=False),
)


def read_app_uv_csv(csv_path: str | Path, strict: bool = False) -> List[Dict]:
    """读取并清洗 CSV。

    日期无法解析或 uv 不是整数的行：默认记录警告后跳过；strict=True 时直接抛 ImportDataError。
    同一日期出现多次时保留最后一行。
    """
    df = pd.read_csv(csv_path, dtype=str, keep_default_na=False)
    for column in ("date", "uv"):
        if column not in df.columns:
            raise ImportDataError(f"CSV 缺少列: {column}")

    dates = pd.to_datetime(df["date"].str.strip(), errors="coerce", format="mixed")
    uvs = pd.to_numeric(df["uv"].str.strip(), errors="coerce")

    records: Dict = {}
    for i, (raw_date, raw_uv, date, uv) in enumerate(zip(df["date"], df["uv"], dates, uvs), start=2):
        if pd.isna(date):
            problem = f"无效日期: {raw_date!r}"
        elif pd.isna(uv) or not float(uv).is_integer():
            problem = f"无效 UV 值: {raw_uv!r} on {raw_date}"
        else:
            records[date.date()] = {"date": date.date(), "uv": int(uv)}
            continue
        if strict:
            raise ImportDataError(f"第 {i} 行 {problem}")
        logger.warning("skip line %d: %s", i, problem)
    return list(records.values())


def import_app_uv(engine: Engine, csv_path: str | Path, strict: bool = False) -> int:
    """建表（如不存在）并按日期覆盖写入，返回写入行数。"""
    rows = read_app_uv_csv(csv_path, strict=strict)
    metadata.create_all(engine, tables=[app_uv])
    if not rows:
        logger.info("no valid rows in %s, nothing inserted", csv_path)
        return 0
    with engine.begin() as conn:
        conn.execute(delete(app_uv).where(app_uv.c.date.in_([r["date"] for r in rows])))
        conn.execute(insert(app_uv), rows)
    logger.info("imported %d rows into app_uv", len(rows))
    return len(rows)
