import copy
import os
from pathlib import Path
from typing import Any, Dict, Optional

import yaml
from dotenv import load_dotenv

DEFAULT_CONFIG: Dict[str, Any] = {
    "provider": "openai",
    "model": "deepseek-ai/DeepSeek-V3.1",
    "api_base": "https://api.siliconflow.cn/v1",
    "temperature": 0.1,
    "top_p": None,
    "max_tokens": None,
    "timeout": 120.0,
    "database_url": "sqlite:///demo.db",
    "output_dir": "public",
    "log_level": "INFO",
}

# 环境变量 -> 配置项
ENV_OVERRIDES = {
    "OPENAI_BASE_URL": "api_base",
    "DATA_AGENT_MODEL": "model",
    "DATA_AGENT_DATABASE_URL": "database_url",
}


def load_config(path: Optional[str] = None) -> Dict[str, Any]:
    """读取 config.yaml（默认在项目根目录），叠加到默认值上，再应用环境变量覆盖。"""
    load_dotenv()
    cfg = copy.deepcopy(DEFAULT_CONFIG)
    cfg_path = Path(path) if path else Path(__file__).parent.parent / "config.yaml"
    if cfg_path.exists():
        with open(cfg_path, "r", encoding="utf-8") as f:
            cfg.update(yaml.safe_load(f) or {})
    elif path:
        raise FileNotFoundError(f"配置文件不存在: {cfg_path}")
    for env, key in ENV_OVERRIDES.items():
        value = os.getenv(env)
        if value:
            cfg[key] = value
    return cfg
