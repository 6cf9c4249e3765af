import ast
import json
import math
import operator
import statistics

from pydantic import BaseModel, Field

from data_agent.errors import ExpressionError
from data_agent.schema import ToolKind

# 指数与序列长度上限，防止 9**9**9 或 "a" * 10**12 这类输入
MAX_EXPONENT = 1000
MAX_SEQUENCE = 100_000

CONSTANTS = {"pi": math.pi, "e": math.e}


class CodeArgs(BaseModel):
    code: str = Field(description="表达式，例如 'mean(col(app_uv_df, \"uv\"))' 或 'total = sum(col(app_uv_df, \"uv\"))'")


def col(table, field):
    """取出提取表中某一列。"""
    try:
        return [row[field] for row in table]
    except (KeyError, TypeError):
        raise ExpressionError(f"列不存在: {field}") from None


def count(values):
    """非空值个数。"""
    return sum(1 for v in values if v is not None)


def unique(values):
    return list(dict.fromkeys(values))


def total(values, start=0):
    """数值求和；不做列表拼接。"""
    if not isinstance(start, (int, float)) or isinstance(start, bool):
        raise ExpressionError("sum 的起始值必须是数字")
    return sum(values, start)


FUNCTIONS = {
    "abs": abs, "min": min, "max": max, "round": round, "sum": total, "len": len, "sorted": sorted,
    "sqrt": math.sqrt, "log": math.log, "exp": math.exp,
    "mean": statistics.mean, "median": statistics.median, "stdev": statistics.stdev,
    "col": col, "count": count, "unique": unique,
}

_BIN_OPS = {
    ast.Add: operator.add, ast.Sub: operator.sub, ast.Mult: operator.mul,
    ast.Div: operator.truediv, ast.FloorDiv: operator.floordiv, ast.Mod: operator.mod,
    ast.Pow: operator.pow,
}
_UNARY_OPS = {ast.UAdd: operator.pos, ast.USub: operator.neg, ast.Not: operator.not_}
_CMP_OPS = {
    ast.Eq: operator.eq, ast.NotEq: operator.ne, ast.Lt: operator.lt, ast.LtE: operator.le,
    ast.Gt: operator.gt, ast.GtE: operator.ge,
    ast.In: lambda a, b: a in b, ast.NotIn: lambda a, b: a not in b,
}


class Evaluator:
    """
    受限表达式求值：解析成 Python AST 后逐节点解释，不调用 eval/exec。
    支持：数字/字符串/列表字面量、算术、比较、and/or/not、条件表达式、索引与切片、
    白名单函数调用、单个 name = expr 赋值。不支持属性访问、lambda、推导式、import 等。
    """
    def __init__(self, ctx):
        self.ctx = ctx

    def run(self, code: str):
        """返回 (赋值目标或 None, 值)。"""
        try:
            tree = ast.parse(code.strip(), mode="exec")
        except SyntaxError as e:
            raise ExpressionError(f"语法错误: {e.msg}") from None
        if len(tree.body) != 1:
            raise ExpressionError("只支持单个表达式或单个赋值语句")
        stmt = tree.body[0]
        if isinstance(stmt, ast.Expr):
            return None, self.eval(stmt.value)
        if isinstance(stmt, ast.Assign) and len(stmt.targets) == 1 and isinstance(stmt.targets[0], ast.Name):
            return stmt.targets[0].id, self.eval(stmt.value)
        raise ExpressionError(f"不支持的语句: {type(stmt).__name__}")

    def eval(self, node):
        if isinstance(node, ast.Constant):
            if isinstance(node.value, complex) or isinstance(node.value, bytes):
                raise ExpressionError("不支持的字面量")
            return node.value
        if isinstance(node, ast.Name):
            return self._name(node.id)
        if isinstance(node, ast.BinOp):
            return self._binop(node)
        if isinstance(node, ast.UnaryOp) and type(node.op) in _UNARY_OPS:
            return _UNARY_OPS[type(node.op)](self.eval(node.operand))
        if isinstance(node, ast.BoolOp):
            return self._boolop(node)
        if isinstance(node, ast.Compare):
            return self._compare(node)
        if isinstance(node, ast.IfExp):
            return self.eval(node.body) if self.eval(node.test) else self.eval(node.orelse)
        if isinstance(node, ast.List):
            return [self.eval(e) for e in node.elts]
        if isinstance(node, ast.Tuple):
            return tuple(self.eval(e) for e in node.elts)
        if isinstance(node, ast.Dict):
            if any(k is None for k in node.keys):
                raise ExpressionError("不支持 ** 展开")
            return {self.eval(k): self.eval(v) for k, v in zip(node.keys, node.values)}
        if isinstance(node, ast.Subscript):
            return self.eval(node.value)[self._index(node.slice)]
        if isinstance(node, ast.Call):
            return self._call(node)
        raise ExpressionError(f"不支持的语法: {type(node).__name__}")

    def _name(self, name):
        try:
            return self.ctx.lookup(name)
        except KeyError:
            pass
        if name in CONSTANTS:
            return CONSTANTS[name]
        raise ExpressionError(f"未定义的名称: {name}")

    def _index(self, node):
        if isinstance(node, ast.Slice):
            parts = (node.lower, node.upper, node.step)
            return slice(*(None if p is None else self.eval(p) for p in parts))
        return self.eval(node)

    def _binop(self, node):
        op = _BIN_OPS.get(type(node.op))
        if op is None:
            raise ExpressionError(f"不支持的运算符: {type(node.op).__name__}")
        left, right = self.eval(node.left), self.eval(node.right)
        if op is operator.pow and isinstance(right, (int, float)):
            if abs(right) > MAX_EXPONENT:
                raise ExpressionError(f"指数过大: {right}")
            if isinstance(left, int) and left.bit_length() * abs(right) > MAX_SEQUENCE:
                raise ExpressionError("结果数值过大")
        if op is operator.mod and isinstance(left, str):
            raise ExpressionError("不支持字符串格式化")
        if op is operator.mul:
            _check_repeat(left, right)
            _check_repeat(right, left)
        if op is operator.add and isinstance(left, (str, list, tuple)) and isinstance(right, (str, list, tuple)):
            if len(left) + len(right) > MAX_SEQUENCE:
                raise ExpressionError("结果序列过长")
        return op(left, right)

    def _boolop(self, node):
        value = None
        for operand in node.values:
            value = self.eval(operand)
            if isinstance(node.op, ast.And) and not value:
                return value
            if isinstance(node.op, ast.Or) and value:
                return value
        return value

    def _compare(self, node):
        left = self.eval(node.left)
        for op, comparator in zip(node.ops, node.comparators):
            if type(op) not in _CMP_OPS:
                raise ExpressionError(f"不支持的比较: {type(op).__name__}")
            right = self.eval(comparator)
            if not _CMP_OPS[type(op)](left, right):
                return False
            left = right
        return True

    def _call(self, node):
        if not isinstance(node.func, ast.Name) or node.func.id not in FUNCTIONS:
            name = node.func.id if isinstance(node.func, ast.Name) else type(node.func).__name__
            raise ExpressionError(f"不允许调用: {name}")
        if node.keywords or any(isinstance(a, ast.Starred) for a in node.args):
            raise ExpressionError("函数调用只支持位置参数")
        return FUNCTIONS[node.func.id](*(self.eval(a) for a in node.args))


def _check_repeat(seq, times):
    if isinstance(seq, (str, list, tuple)) and isinstance(times, int) and len(seq) * times > MAX_SEQUENCE:
        raise ExpressionError("结果序列过长")


def _format(value) -> str:
    if isinstance(value, str):
        return value
    return json.dumps(value, ensure_ascii=False, default=str)


def expr_inter(ctx, code: str) -> str:
    """计算一段受限表达式；name = expr 形式会把结果保存为本次运行内的变量。"""
    target, value = Evaluator(ctx).run(code)
    if target is not None:
        ctx.variables[target] = value
        return f"已设置变量 {target} = {_format(value)}"
    return _format(value)


def register(registry):
    registry.register(
        name="expr_inter",
        func=expr_inter,
        description="数据计算（非绘图）：计算一个表达式或执行一次 name = expr 赋值。"
                    "可直接引用 extract_data 提取的变量，支持 + - * / ** 比较、索引切片，"
                    "以及 col(表, 列) mean median stdev sum min max len count unique sorted round abs sqrt log exp。",
        args_model=CodeArgs,
        kind=ToolKind.COMPUTE,
    )
