"""数据库连接与结果序列化。"""

import datetime
import json
import logging
from decimal import Decimal
from typing import Any, Dict, List

from sqlalchemy import Engine, create_engine, text

logger = logging.getLogger(__name__)


def create_data_engine(url: str = "sqlite://") -> Engine:
    """按 URL 创建 SQLAlchemy engine。

    - ``sqlite://`` 内存库（测试用）
    - ``sqlite:///demo.db`` 本地文件
    - ``mysql+pymysql://root:pw@localhost:3306/demo?charset=utf8mb4`` 与原 MySQL demo 库对应
    """
    return create_engine(url, echo=False)


def run_query(engine: Engine, sql: str) -> List[Dict[str, Any]] | int:
    """执行一条 SQL。返回行的语句返回行列表，其余语句提交后返回影响行数。"""
    with engine.connect() as conn:
        result = conn.execute(text(sql))
        if result.returns_rows:
            rows = [dict(r._mapping) for r in result]
            logger.info("sql returned %d rows: %s", len(rows), sql)
            return rows
        conn.commit()
        logger.info("sql affected %d rows: %s", result.rowcount, sql)
        return result.rowcount


def _json_default(value: Any):
    if isinstance(value, (datetime.date, datetime.datetime, datetime.time)):
        return value.isoformat()
    if isinstance(value, Decimal):
        return float(value)
    if isinstance(value, bytes):
        return value.decode("utf-8", errors="replace")
    return str(value)


def rows_to_json(rows: Any) -> str:
    return json.dumps(rows, ensure_ascii=False, indent=2, default=_json_default)
