from data_agent.schema import ToolRegistry
from data_tools import chart, compute, extract_data, sql_query

# 固定的内置工具集合，按声明给模型的顺序排列
BUILTIN_TOOLS = (sql_query, extract_data, compute, chart)


def register_builtin_tools(registry: ToolRegistry) -> ToolRegistry:
    for module in BUILTIN_TOOLS:
        module.register(registry)
    return registry


def build_registry() -> ToolRegistry:
    return register_builtin_tools(ToolRegistry())
