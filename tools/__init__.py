"""
Tools Framework

Auto-registration of tools using decorators and type hints, plus the
registry that dispatches model tool calls to them.

Usage:
    from tools import tool

    @tool
    def get_current_time(ctx) -> dict:
        '''Get the current date and time.'''
        return {"now": ...}

The @tool decorator:
- Generates JSON schema from type hints
- Extracts descriptions from docstrings
- Collects the tool so ``builtin_tools()`` can hand it to a registry

Handlers receive the turn context through a parameter named ``ctx``. They
report failures by returning ``tool_error(...)``; exceptions are also caught
by the registry, so nothing escapes the dispatch boundary.
"""

import asyncio
import dataclasses
import inspect
import json
import logging
import re
import time
from datetime import date, datetime
from pathlib import Path
from typing import Any, Callable, get_type_hints

logger = logging.getLogger(__name__)

_registered_tools: list[dict] = []


def json_serialize(obj):
    """JSON serializer for objects not serializable by default."""
    if isinstance(obj, (datetime, date)):
        return obj.isoformat()
    if isinstance(obj, Path):
        return str(obj)
    if dataclasses.is_dataclass(obj) and not isinstance(obj, type):
        return dataclasses.asdict(obj)
    raise TypeError(f"Object of type {type(obj).__name__} is not JSON serializable")


def tool_error(error: str, fix: str | None = None, **extras) -> dict:
    """Structured error result the model can read and act on."""
    result = {"error": error}
    if fix:
        result["fix"] = fix
    result.update(extras)
    return result


def _python_type_to_json(py_type) -> dict:
    """Convert Python type hints to JSON schema types."""
    type_map = {
        str: {"type": "string"},
        int: {"type": "integer"},
        float: {"type": "number"},
        bool: {"type": "boolean"},
        list: {"type": "array"},
        dict: {"type": "object"},
    }

    # X | None and Optional[X]: describe X
    args = [a for a in getattr(py_type, "__args__", ()) if a is not type(None)]
    if len(args) == 1 and type(None) in getattr(py_type, "__args__", ()):
        py_type = args[0]

    if py_type in type_map:
        return dict(type_map[py_type])

    origin = getattr(py_type, "__origin__", None)
    if origin in type_map:
        return dict(type_map[origin])

    return {"type": "string"}


def _parse_docstring(docstring: str) -> tuple[str, dict[str, str]]:
    """
    Parse a docstring to extract description and argument descriptions.

    Returns:
        (main_description, {arg_name: arg_description})
    """
    if not docstring:
        return "", {}

    lines = docstring.strip().split("\n")
    description_lines = []
    arg_descriptions = {}

    in_args = False
    current_arg = None

    for line in lines:
        stripped = line.strip()

        if stripped.lower() in ("args:", "arguments:", "parameters:"):
            in_args = True
            continue

        if stripped.lower() in ("returns:", "raises:", "examples:", "example:"):
            in_args = False
            continue

        if in_args:
            # "arg_name: description" or "arg_name (type): description"
            match = re.match(r"(\w+)(?:\s*\([^)]*\))?\s*:\s*(.+)", stripped)
            if match:
                current_arg = match.group(1)
                arg_descriptions[current_arg] = match.group(2).strip()
            elif current_arg and stripped:
                arg_descriptions[current_arg] += " " + stripped
        else:
            if stripped:
                description_lines.append(stripped)

    return " ".join(description_lines), arg_descriptions


class Tool:
    """A capability the agent can use."""

    def __init__(
        self,
        name: str,
        description: str,
        parameters: dict,
        fn: Callable,
        provider: str | None = None,
    ):
        self.name = name
        self.description = description
        self.parameters = parameters
        self.fn = fn
        self.provider = provider
        self.schema = {
            "name": name,
            "description": description,
            "parameters": parameters,
        }

    @property
    def is_async(self) -> bool:
        return inspect.iscoroutinefunction(self.fn)

    def missing_arguments(self, params: dict) -> list[str]:
        return [r for r in self.parameters.get("required", []) if r not in params]

    def __repr__(self):
        return f"Tool({self.name!r})"


def tool(fn: Callable = None, *, name: str = None, description: str = None):
    """
    Decorator to convert a function into a Tool.

    Can be used as:
        @tool
        def my_func(...): ...

    Or with options:
        @tool(name="custom_name", description="Custom description")
        def my_func(...): ...

    Async functions produce async tools.
    """
    def decorator(func: Callable):
        tool_name = name or func.__name__

        doc_desc, arg_descs = _parse_docstring(func.__doc__ or "")
        tool_description = description or doc_desc or f"Tool: {tool_name}"

        hints = get_type_hints(func) if hasattr(func, "__annotations__") else {}
        hints.pop("return", None)

        sig = inspect.signature(func)

        properties = {}
        required = []

        for param_name, param in sig.parameters.items():
            if param_name in ("ctx", "self"):
                continue

            prop = _python_type_to_json(hints.get(param_name, str))
            if param_name in arg_descs:
                prop["description"] = arg_descs[param_name]
            properties[param_name] = prop

            if param.default is inspect.Parameter.empty:
                required.append(param_name)

        schema = {
            "type": "object",
            "properties": properties,
        }
        if required:
            schema["required"] = required

        sig_params = set(sig.parameters.keys()) - {"ctx"}
        wants_ctx = "ctx" in sig.parameters

        def build_kwargs(params: dict, ctx) -> dict:
            kwargs = {k: v for k, v in params.items() if k in sig_params}
            if wants_ctx:
                kwargs["ctx"] = ctx
            return kwargs

        if inspect.iscoroutinefunction(func):
            async def wrapper(params: dict, ctx):
                return await func(**build_kwargs(params, ctx))
        else:
            def wrapper(params: dict, ctx):
                return func(**build_kwargs(params, ctx))

        tool_info = {
            "name": tool_name,
            "description": tool_description,
            "parameters": schema,
            "fn": wrapper,
            "original_fn": func,
        }
        _registered_tools.append(tool_info)

        func._tool_info = tool_info
        return func

    if fn is not None:
        return decorator(fn)
    return decorator


def builtin_tools() -> list[Tool]:
    """All tools declared with @tool in the built-in tool modules."""
    # Import modules to trigger registration
    from tools import clock, core_memory, dashboard, filesystem, proactive, schedule, terminal, web  # noqa: F401

    seen = set()
    tools = []
    for info in _registered_tools:
        if info["name"] in seen:
            continue
        seen.add(info["name"])
        tools.append(Tool(
            name=info["name"],
            description=info["description"],
            parameters=info["parameters"],
            fn=info["fn"],
        ))
    return tools


class ToolRegistry:
    """
    Name -> Tool map that executes model tool calls.

    ``execute`` always returns text. Unknown tools, malformed arguments and
    handler exceptions all come back as JSON error objects so the model can
    see the failure and adapt.
    """

    def __init__(self, tools: list[Tool] | None = None, emitter=None):
        self._tools: dict[str, Tool] = {}
        self.emitter = emitter
        for t in tools or []:
            self.register(t)

    def register(self, t: Tool):
        if t.name in self._tools:
            logger.warning("Tool %s registered twice, replacing previous definition", t.name)
        self._tools[t.name] = t

    def unregister_provider(self, provider: str):
        self._tools = {n: t for n, t in self._tools.items() if t.provider != provider}

    def get(self, name: str) -> Tool | None:
        return self._tools.get(name)

    def names(self) -> list[str]:
        return list(self._tools)

    def schemas(self) -> list[dict]:
        return [t.schema for t in self._tools.values()]

    def __contains__(self, name: str) -> bool:
        return name in self._tools

    def __len__(self) -> int:
        return len(self._tools)

    def _emit(self, event: str, data: dict):
        if self.emitter is not None:
            self.emitter.emit(event, data)

    @staticmethod
    def _parse_arguments(raw: Any) -> tuple[dict | None, dict | None]:
        """Returns (params, error)."""
        if raw is None or raw == "":
            return {}, None
        if isinstance(raw, dict):
            return raw, None
        try:
            params = json.loads(raw)
        except (TypeError, ValueError) as e:
            return None, tool_error(
                f"Invalid tool arguments: {e}",
                fix="Send the arguments as a JSON object.",
            )
        if not isinstance(params, dict):
            return None, tool_error(
                f"Invalid tool arguments: expected a JSON object, got {type(params).__name__}",
                fix="Send the arguments as a JSON object.",
            )
        return params, None

    async def execute(self, name: str, arguments: Any, ctx=None) -> str:
        """Run tool ``name`` with JSON ``arguments`` and return the result as text."""
        t = self._tools.get(name)
        if t is None:
            return json.dumps({"error": f"Unknown tool: {name}"})

        params, error = self._parse_arguments(arguments)
        if error is None:
            missing = t.missing_arguments(params)
            if missing:
                error = tool_error(
                    f"Missing required arguments: {', '.join(missing)}",
                    fix=f"Call {name} again with all required arguments.",
                )

        self._emit("tool_start", {"name": name, "input": params if params is not None else arguments})
        start_time = time.time()

        if error is not None:
            result = error
        else:
            try:
                if t.is_async:
                    result = await t.fn(params, ctx)
                else:
                    result = await asyncio.to_thread(t.fn, params, ctx)
            except Exception as e:
                logger.warning("Tool %s failed: %s", name, e)
                result = {"error": f"Tool execution failed: {e}"}

        self._emit("tool_end", {
            "name": name,
            "result": result,
            "duration_ms": int((time.time() - start_time) * 1000),
        })

        if isinstance(result, str):
            return result
        try:
            return json.dumps(result, default=json_serialize, ensure_ascii=False)
        except Exception as e:
            return json.dumps({
                "error": f"Result serialization failed: {e}",
                "original_type": type(result).__name__,
            })
