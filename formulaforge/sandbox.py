"""Restricted evaluator for formula implementations.

Implementation bodies are parsed with :mod:`ast` and walked by a small
interpreter that only knows numeric expressions, a handful of statements and
a fixed table of functions. Nothing is handed to ``eval`` or ``exec``; a name
or node the interpreter does not know is a fault, not a fallback.
"""

from __future__ import annotations

import ast
import json
import logging
import math
import operator
import textwrap
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Sequence

from .errors import ArgumentCoercionError, ExecutionError, RuntimeFault, SerializationError
from .validator import parse_number

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SandboxLimits:
    max_source_length: int = 4000
    max_nodes: int = 1000
    max_loop_iterations: int = 10000
    max_power_exponent: float = 1000
    max_collection_length: int = 10000
    max_int_bits: int = 4096
    max_total_cells: int = 100000
    result_indent: int = 2


@dataclass
class ExecutionOutcome:
    ok: bool
    result: Optional[str] = None
    error: Optional[str] = None
    kind: Optional[str] = None

    @staticmethod
    def failure(exc: ExecutionError) -> "ExecutionOutcome":
        return ExecutionOutcome(ok=False, error=exc.message, kind=exc.kind)

    def to_dict(self) -> Dict[str, Any]:
        return {"ok": self.ok, "result": self.result, "error": self.error, "kind": self.kind}


class _MathModule:
    def __repr__(self) -> str:
        return "<module 'math'>"


MATH = _MathModule()

_BIN_OPS: Dict[type, Callable[[Any, Any], Any]] = {
    ast.Add: operator.add,
    ast.Sub: operator.sub,
    ast.Mult: operator.mul,
    ast.Div: operator.truediv,
    ast.FloorDiv: operator.floordiv,
    ast.Mod: operator.mod,
    ast.Pow: operator.pow,
}
_UNARY_OPS: Dict[type, Callable[[Any], Any]] = {
    ast.UAdd: operator.pos,
    ast.USub: operator.neg,
    ast.Not: operator.not_,
}
_COMPARE_OPS: Dict[type, Callable[[Any, Any], Any]] = {
    ast.Eq: operator.eq,
    ast.NotEq: operator.ne,
    ast.Lt: operator.lt,
    ast.LtE: operator.le,
    ast.Gt: operator.gt,
    ast.GtE: operator.ge,
    ast.In: lambda a, b: a in b,
    ast.NotIn: lambda a, b: a not in b,
}
_EXCEPTIONS: Dict[str, type] = {
    "Exception": Exception,
    "ValueError": ValueError,
    "ArithmeticError": ArithmeticError,
    "ZeroDivisionError": ZeroDivisionError,
    "RuntimeError": RuntimeError,
    "TypeError": TypeError,
}
_LIST_METHODS = {"append", "extend", "insert", "pop", "index", "count", "reverse", "sort"}
_DICT_METHODS = {"get", "keys", "values", "items"}


def coerce_arguments(args: Sequence[Any]) -> List[float]:
    values: List[float] = []
    for i, a in enumerate(args):
        if isinstance(a, bool):
            raise ArgumentCoercionError(f"argument {i + 1} is not a number: {a!r}")
        if isinstance(a, (int, float)):
            v: Optional[float] = float(a) if math.isfinite(a) else None
        else:
            v = parse_number(str(a))
        if v is None:
            raise ArgumentCoercionError(f"argument {i + 1} is not a finite number: {a!r}")
        values.append(v)
    return values


def to_json(value: Any, indent: Optional[int] = 2, max_values: Optional[int] = None) -> str:
    """Canonical JSON text for a returned value; integral floats print as integers.

    Shared references are written out once per occurrence, so ``max_values``
    bounds the expanded size rather than what the interpreter allocated.
    """
    try:
        return json.dumps(_Normalizer(max_values).normalize(value), indent=indent, allow_nan=False)
    except RecursionError as e:
        raise SerializationError("result is nested too deeply", e) from e
    except (TypeError, ValueError) as e:
        raise SerializationError(f"result cannot be serialized: {e}", e) from e


class _Normalizer:
    def __init__(self, max_values: Optional[int]) -> None:
        self.max_values = max_values
        self.emitted = 0
        self.seen: set = set()

    def normalize(self, value: Any) -> Any:
        self.emitted += 1
        if self.max_values is not None and self.emitted > self.max_values:
            raise SerializationError(f"result has more than {self.max_values} values")
        if value is None or isinstance(value, (bool, str)):
            return value
        if isinstance(value, int):
            return value
        if isinstance(value, float):
            if not math.isfinite(value):
                raise SerializationError(f"result contains a non-finite number ({value})")
            return int(value) if value.is_integer() and abs(value) < 2 ** 53 else value
        if isinstance(value, (list, tuple, dict)):
            if id(value) in self.seen:
                raise SerializationError("result contains a cyclic structure")
            self.seen.add(id(value))
            try:
                if isinstance(value, dict):
                    out = {}
                    for k, v in value.items():
                        if not isinstance(k, (str, int, float, bool)) and k is not None:
                            raise SerializationError(f"result has a non-JSON key of type {type(k).__name__}")
                        out[k if isinstance(k, str) else json.dumps(self.normalize(k))] = self.normalize(v)
                    return out
                return [self.normalize(v) for v in value]
            finally:
                self.seen.discard(id(value))
        raise SerializationError(f"result of type {type(value).__name__} is not JSON serializable")


class _Return(Exception):
    def __init__(self, value: Any) -> None:
        super().__init__()
        self.value = value


class _Break(Exception):
    pass


class _Continue(Exception):
    pass


@dataclass
class Program:
    params: List[str]
    body: Any  # ast.expr for lambda/expression, list of ast.stmt for def
    is_function_body: bool
    imports: Dict[str, Any] = field(default_factory=dict)

    def call(self, args: Sequence[float], limits: SandboxLimits) -> Any:
        if len(args) != len(self.params):
            raise RuntimeFault(f"expected {len(self.params)} arguments, got {len(args)}")
        interp = _Interpreter(limits, dict(self.imports))
        env = dict(zip(self.params, args))
        try:
            if self.is_function_body:
                return interp.run_block(self.body, env)
            return interp.eval(self.body, env)
        except ExecutionError:
            raise
        except _Return as r:
            return r.value
        except (_Break, _Continue):
            raise RuntimeFault("'break' or 'continue' outside loop")
        except RecursionError as e:
            raise RuntimeFault("implementation is nested too deeply", e) from e
        except Exception as e:
            raise RuntimeFault(str(e) or type(e).__name__, e) from e


def compile_body(body: str, param_names: Optional[Sequence[str]] = None, limits: Optional[SandboxLimits] = None) -> Program:
    limits = limits or SandboxLimits()
    if not body or not body.strip():
        raise RuntimeFault("implementation is empty")
    if len(body) > limits.max_source_length:
        raise RuntimeFault(f"implementation exceeds {limits.max_source_length} characters")
    try:
        tree = ast.parse(textwrap.dedent(body).strip(), mode="exec")
    except SyntaxError as e:
        raise RuntimeFault(f"invalid implementation: {e.msg} (line {e.lineno})", e) from e
    except (RecursionError, MemoryError) as e:
        raise RuntimeFault("implementation is nested too deeply", e) from e
    except ValueError as e:
        # e.g. null bytes in the source
        raise RuntimeFault(f"invalid implementation: {e}", e) from e

    nodes = 0
    for node in ast.walk(tree):
        nodes += 1
        if isinstance(node, ast.Name) and node.id.startswith("__"):
            raise RuntimeFault(f"name '{node.id}' is not allowed")
        if isinstance(node, ast.Attribute) and node.attr.startswith("_"):
            raise RuntimeFault(f"attribute '{node.attr}' is not allowed")
    if nodes > limits.max_nodes:
        raise RuntimeFault(f"implementation is too large ({nodes} nodes, limit {limits.max_nodes})")

    imports: Dict[str, Any] = {}
    rest: List[ast.stmt] = []
    for stmt in tree.body:
        if isinstance(stmt, ast.Import):
            for alias in stmt.names:
                if alias.name != "math":
                    raise RuntimeFault(f"import of '{alias.name}' is not allowed")
                imports[alias.asname or "math"] = MATH
        elif isinstance(stmt, ast.ImportFrom):
            if stmt.module != "math":
                raise RuntimeFault(f"import from '{stmt.module}' is not allowed")
            for alias in stmt.names:
                if alias.name == "*" or not hasattr(math, alias.name):
                    raise RuntimeFault(f"cannot import '{alias.name}' from math")
                imports[alias.asname or alias.name] = _math_attr(alias.name)
        else:
            rest.append(stmt)

    if len(rest) != 1:
        raise RuntimeFault("implementation must be a single function or expression")
    stmt = rest[0]
    if isinstance(stmt, ast.FunctionDef):
        return Program(_arg_names(stmt.args), stmt.body, True, imports)
    if isinstance(stmt, ast.Assign) and isinstance(stmt.value, ast.Lambda):
        stmt = ast.Expr(stmt.value)
    if isinstance(stmt, ast.Expr):
        if isinstance(stmt.value, ast.Lambda):
            return Program(_arg_names(stmt.value.args), stmt.value.body, False, imports)
        if param_names is None:
            raise RuntimeFault("a bare expression needs the formula's parameter names")
        return Program(list(param_names), stmt.value, False, imports)
    raise RuntimeFault(f"unsupported implementation: {type(stmt).__name__}")


def _arg_names(args: ast.arguments) -> List[str]:
    if args.vararg or args.kwarg or args.kwonlyargs:
        raise RuntimeFault("only positional parameters are supported")
    return [a.arg for a in list(args.posonlyargs) + list(args.args)]


def _math_attr(name: str) -> Any:
    if name.startswith("_") or not hasattr(math, name):
        raise RuntimeFault(f"math has no attribute '{name}'")
    if name in _BOUNDED_MATH:
        return _BOUNDED_MATH[name]
    return getattr(math, name)


_MAX_COMBINATORIC_ARG = 1000


def _small_int(func: str, n: Any) -> int:
    if isinstance(n, float) and n.is_integer():
        n = int(n)
    if not isinstance(n, int) or isinstance(n, bool) or n < 0 or n > _MAX_COMBINATORIC_ARG:
        raise ValueError(f"{func}() arguments must be integers between 0 and {_MAX_COMBINATORIC_ARG}")
    return n


def _factorial(n: Any) -> int:
    return math.factorial(_small_int("factorial", n))


def _perm(n: Any, k: Any = None) -> int:
    return math.perm(_small_int("perm", n), None if k is None else _small_int("perm", k))


def _comb(n: Any, k: Any) -> int:
    return math.comb(_small_int("comb", n), _small_int("comb", k))


_BOUNDED_MATH: Dict[str, Callable[..., int]] = {"factorial": _factorial, "perm": _perm, "comb": _comb}


class _Interpreter:
    def __init__(self, limits: SandboxLimits, imports: Dict[str, Any]) -> None:
        self.limits = limits
        self.iterations = 0
        self.cells = 0
        self.globals: Dict[str, Any] = {
            "math": MATH,
            "abs": abs,
            "min": min,
            "max": max,
            "round": round,
            "sum": sum,
            "len": len,
            "float": float,
            "int": int,
            "bool": bool,
            "sorted": sorted,
            "list": list,
            "pow": self._pow,
            "range": self._range,
            **_EXCEPTIONS,
            **imports,
        }

    def tick(self) -> None:
        self.iterations += 1
        if self.iterations > self.limits.max_loop_iterations:
            raise RuntimeFault(f"iteration limit of {self.limits.max_loop_iterations} exceeded")

    def check_size(self, value: Any) -> Any:
        if isinstance(value, (list, tuple, str, dict)) and len(value) > self.limits.max_collection_length:
            raise RuntimeFault(f"collection exceeds {self.limits.max_collection_length} items")
        if isinstance(value, int) and not isinstance(value, bool) and value.bit_length() > self.limits.max_int_bits:
            raise RuntimeFault("integer result is too large")
        return value

    def spend(self, cells: int) -> None:
        """Charge newly allocated container items against the per-run budget."""
        self.cells += max(cells, 0)
        if self.cells > self.limits.max_total_cells:
            raise RuntimeFault(f"implementation allocates more than {self.limits.max_total_cells} items")

    def charge(self, value: Any) -> Any:
        if isinstance(value, (list, tuple, str, dict)):
            self.spend(len(value))
        return value

    def _pow(self, base: Any, exp: Any) -> Any:
        if isinstance(exp, (int, float)) and abs(exp) > self.limits.max_power_exponent:
            raise RuntimeFault(f"exponent {exp} exceeds limit of {self.limits.max_power_exponent}")
        return self.check_size(operator.pow(base, exp))

    def _range(self, *args: Any) -> range:
        ints = []
        for a in args:
            if isinstance(a, float) and a.is_integer():
                a = int(a)
            if not isinstance(a, int) or isinstance(a, bool):
                raise ValueError("range() arguments must be integers")
            ints.append(a)
        r = range(*ints)
        if len(r) > self.limits.max_loop_iterations:
            raise RuntimeFault(f"range of {len(r)} items exceeds iteration limit")
        return r

    # statements

    def run_block(self, stmts: Sequence[ast.stmt], env: Dict[str, Any]) -> Any:
        for stmt in stmts:
            self.exec(stmt, env)
        return None

    def exec(self, node: ast.stmt, env: Dict[str, Any]) -> None:
        if isinstance(node, ast.Return):
            raise _Return(self.eval(node.value, env) if node.value is not None else None)
        if isinstance(node, ast.Assign):
            value = self.eval(node.value, env)
            for target in node.targets:
                self.assign(target, value, env)
            return
        if isinstance(node, ast.AnnAssign):
            if node.value is not None:
                self.assign(node.target, self.eval(node.value, env), env)
            return
        if isinstance(node, ast.AugAssign):
            op = _BIN_OPS.get(type(node.op))
            if op is None:
                raise RuntimeFault(f"unsupported operator: {type(node.op).__name__}")
            current = self.eval(_load(node.target), env)
            self.assign(node.target, self.binop(node.op, current, self.eval(node.value, env)), env)
            return
        if isinstance(node, ast.If):
            branch = node.body if self.eval(node.test, env) else node.orelse
            self.run_block(branch, env)
            return
        if isinstance(node, ast.For):
            self.exec_for(node, env)
            return
        if isinstance(node, ast.While):
            self.exec_while(node, env)
            return
        if isinstance(node, ast.Raise):
            self.exec_raise(node, env)
            return
        if isinstance(node, ast.Assert):
            if not self.eval(node.test, env):
                msg = self.eval(node.msg, env) if node.msg is not None else "assertion failed"
                raise AssertionError(msg)
            return
        if isinstance(node, ast.Expr):
            self.eval(node.value, env)
            return
        if isinstance(node, ast.Pass):
            return
        if isinstance(node, ast.Break):
            raise _Break()
        if isinstance(node, ast.Continue):
            raise _Continue()
        raise RuntimeFault(f"unsupported statement: {type(node).__name__}")

    def exec_for(self, node: ast.For, env: Dict[str, Any]) -> None:
        items = self.iterate(self.eval(node.iter, env))
        for item in items:
            self.tick()
            self.assign(node.target, item, env)
            try:
                self.run_block(node.body, env)
            except _Break:
                return
            except _Continue:
                continue
        self.run_block(node.orelse, env)

    def exec_while(self, node: ast.While, env: Dict[str, Any]) -> None:
        while self.eval(node.test, env):
            self.tick()
            try:
                self.run_block(node.body, env)
            except _Break:
                return
            except _Continue:
                continue
        self.run_block(node.orelse, env)

    def exec_raise(self, node: ast.Raise, env: Dict[str, Any]) -> None:
        if node.exc is None:
            raise RuntimeFault("bare 'raise' is not supported")
        exc = self.eval(node.exc, env)
        if isinstance(exc, type) and issubclass(exc, Exception):
            exc = exc()
        if not isinstance(exc, Exception):
            raise RuntimeFault("exceptions must derive from Exception")
        raise exc

    def assign(self, target: ast.expr, value: Any, env: Dict[str, Any]) -> None:
        if isinstance(target, ast.Name):
            env[target.id] = value
        elif isinstance(target, (ast.Tuple, ast.List)):
            items = list(self.iterate(value))
            if len(items) != len(target.elts):
                raise ValueError(f"expected {len(target.elts)} values to unpack, got {len(items)}")
            for t, v in zip(target.elts, items):
                self.assign(t, v, env)
        elif isinstance(target, ast.Subscript):
            container = self.eval(target.value, env)
            if not isinstance(container, (list, dict)):
                raise TypeError(f"'{type(container).__name__}' object does not support item assignment")
            before = len(container)
            container[self.eval(target.slice, env)] = value
            self.spend(len(container) - before)
            self.check_size(container)
        else:
            raise RuntimeFault(f"unsupported assignment target: {type(target).__name__}")

    def iterate(self, value: Any) -> List[Any]:
        if isinstance(value, dict):
            value = list(value.keys())
        if not isinstance(value, (list, tuple, range, str)):
            raise TypeError(f"'{type(value).__name__}' object is not iterable")
        if len(value) > self.limits.max_loop_iterations:
            raise RuntimeFault(f"iteration over {len(value)} items exceeds limit")
        return list(value)

    # expressions

    def eval(self, node: ast.expr, env: Dict[str, Any]) -> Any:
        if isinstance(node, ast.Constant):
            if node.value is None or isinstance(node.value, (bool, int, float, str)):
                return node.value
            raise RuntimeFault(f"unsupported literal: {node.value!r}")
        if isinstance(node, ast.Name):
            if node.id in env:
                return env[node.id]
            if node.id in self.globals:
                return self.globals[node.id]
            raise NameError(f"name '{node.id}' is not defined")
        if isinstance(node, ast.BinOp):
            return self.binop(node.op, self.eval(node.left, env), self.eval(node.right, env))
        if isinstance(node, ast.UnaryOp):
            op = _UNARY_OPS.get(type(node.op))
            if op is None:
                raise RuntimeFault(f"unsupported operator: {type(node.op).__name__}")
            return op(self.eval(node.operand, env))
        if isinstance(node, ast.BoolOp):
            result: Any = None
            for v in node.values:
                result = self.eval(v, env)
                if isinstance(node.op, ast.And) and not result:
                    return result
                if isinstance(node.op, ast.Or) and result:
                    return result
            return result
        if isinstance(node, ast.Compare):
            left = self.eval(node.left, env)
            for op_node, comparator in zip(node.ops, node.comparators):
                op = _COMPARE_OPS.get(type(op_node))
                if op is None:
                    raise RuntimeFault(f"unsupported comparison: {type(op_node).__name__}")
                right = self.eval(comparator, env)
                if not op(left, right):
                    return False
                left = right
            return True
        if isinstance(node, ast.IfExp):
            return self.eval(node.body if self.eval(node.test, env) else node.orelse, env)
        if isinstance(node, (ast.List, ast.Tuple)):
            items = [self.eval(e, env) for e in node.elts]
            return self.charge(self.check_size(items if isinstance(node, ast.List) else tuple(items)))
        if isinstance(node, ast.Dict):
            if any(k is None for k in node.keys):
                raise RuntimeFault("dict unpacking is not supported")
            return self.charge({self.eval(k, env): self.eval(v, env) for k, v in zip(node.keys, node.values)})
        if isinstance(node, ast.Subscript):
            item = self.eval(node.value, env)[self.eval(node.slice, env)]
            return self.charge(item) if isinstance(node.slice, ast.Slice) else item
        if isinstance(node, ast.Slice):
            return slice(
                self.eval(node.lower, env) if node.lower is not None else None,
                self.eval(node.upper, env) if node.upper is not None else None,
                self.eval(node.step, env) if node.step is not None else None,
            )
        if isinstance(node, ast.Attribute):
            base = self.eval(node.value, env)
            if base is MATH:
                return _math_attr(node.attr)
            raise RuntimeFault(f"attribute access '.{node.attr}' is not allowed")
        if isinstance(node, ast.Call):
            return self.call(node, env)
        if isinstance(node, (ast.ListComp, ast.GeneratorExp)):
            return self.comprehension(node, env)
        raise RuntimeFault(f"unsupported expression: {type(node).__name__}")

    def binop(self, op_node: ast.operator, left: Any, right: Any) -> Any:
        if isinstance(op_node, ast.Pow):
            return self._pow(left, right)
        op = _BIN_OPS.get(type(op_node))
        if op is None:
            raise RuntimeFault(f"unsupported operator: {type(op_node).__name__}")
        if isinstance(op_node, ast.Mod) and isinstance(left, str):
            raise RuntimeFault("string formatting is not supported")
        if isinstance(op_node, ast.Mult):
            for seq, n in ((left, right), (right, left)):
                if isinstance(seq, (list, tuple, str)) and isinstance(n, int) and len(seq) * n > self.limits.max_collection_length:
                    raise RuntimeFault(f"collection exceeds {self.limits.max_collection_length} items")
        return self.charge(self.check_size(op(left, right)))

    def call(self, node: ast.Call, env: Dict[str, Any]) -> Any:
        if node.keywords or any(isinstance(a, ast.Starred) for a in node.args):
            raise RuntimeFault("keyword and starred arguments are not supported")
        if isinstance(node.func, ast.Attribute):
            base = self.eval(node.func.value, env)
            if base is not MATH:
                return self.call_method(base, node.func.attr, [self.eval(a, env) for a in node.args])
            func = _math_attr(node.func.attr)
        elif isinstance(node.func, ast.Name):
            func = self.eval(node.func, env)
        else:
            raise RuntimeFault("only named functions can be called")
        if not callable(func):
            raise TypeError(f"'{type(func).__name__}' object is not callable")
        args = [self.eval(a, env) for a in node.args]
        return self.charge(self.check_size(func(*args)))

    def call_method(self, base: Any, name: str, args: List[Any]) -> Any:
        if isinstance(base, list) and name in _LIST_METHODS:
            before = len(base)
            result = getattr(base, name)(*args)
            self.spend(len(base) - before)
            self.check_size(base)
            return result
        if isinstance(base, dict) and name in _DICT_METHODS:
            if name == "get":
                return base.get(*args)
            return self.charge(list(getattr(base, name)(*args)))
        raise RuntimeFault(f"method '{name}' is not allowed on {type(base).__name__}")

    def comprehension(self, node: Any, env: Dict[str, Any]) -> List[Any]:
        results: List[Any] = []

        def walk(index: int, scope: Dict[str, Any]) -> None:
            if index == len(node.generators):
                results.append(self.eval(node.elt, scope))
                self.spend(1)
                self.check_size(results)
                return
            gen = node.generators[index]
            if gen.is_async:
                raise RuntimeFault("async comprehensions are not supported")
            for item in self.iterate(self.eval(gen.iter, scope)):
                self.tick()
                inner = dict(scope)
                self.assign(gen.target, item, inner)
                if all(self.eval(cond, inner) for cond in gen.ifs):
                    walk(index + 1, inner)

        walk(0, dict(env))
        return results


def _load(target: ast.expr) -> ast.expr:
    if isinstance(target, ast.Name):
        return ast.Name(id=target.id, ctx=ast.Load())
    if isinstance(target, ast.Subscript):
        return ast.Subscript(value=target.value, slice=target.slice, ctx=ast.Load())
    raise RuntimeFault(f"unsupported assignment target: {type(target).__name__}")


def execute(
    body: str,
    args: Sequence[Any],
    param_names: Optional[Sequence[str]] = None,
    limits: Optional[SandboxLimits] = None,
) -> ExecutionOutcome:
    """Run ``body`` with ``args`` and return canonical JSON or a captured fault."""
    limits = limits or SandboxLimits()
    try:
        values = coerce_arguments(args)
        program = compile_body(body, param_names, limits)
        raw = program.call(values, limits)
        text = to_json(raw, indent=limits.result_indent, max_values=limits.max_total_cells)
    except ExecutionError as e:
        logger.warning("execution failed (%s): %s", e.kind, e.message)
        return ExecutionOutcome.failure(e)
    return ExecutionOutcome(ok=True, result=text)
