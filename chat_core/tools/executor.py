import logging
from typing import Any, Dict, Iterable, List, Optional

from chat_core.domain.exceptions import ToolError, ValidationError

from .definitions import ToolCall, ToolDef, ToolResult, ToolSpec

TOOL_FAILURE_MESSAGE = "工具「{name}」执行时出了点问题，暂时拿不到结果，抱歉🙏"

_JSON_TYPES = {
    "string": (str,),
    "integer": (int,),
    "number": (int, float),
    "boolean": (bool,),
    "array": (list, tuple),
    "object": (dict,),
}


def _check_type(name: str, value: Any, expected: str) -> Any:
    types = _JSON_TYPES.get(expected)
    if types is None:
        return value
    # bool 是 int 的子类，需要单独排除
    if expected in {"integer", "number"} and isinstance(value, bool):
        raise ToolError(code="INVALID_TOOL_ARGS", message=f"{name}: expected {expected}, got boolean")
    if expected == "integer" and isinstance(value, float) and value.is_integer():
        return int(value)
    if not isinstance(value, types):
        raise ToolError(
            code="INVALID_TOOL_ARGS",
            message=f"{name}: expected {expected}, got {type(value).__name__}",
        )
    return value


def validate_arguments(tool: ToolDef, arguments: Dict[str, Any]) -> Dict[str, Any]:
    """按声明校验参数，返回规整后的参数字典。

    缺少必填参数、类型不符或必填字符串为空时抛 ToolError。
    """

    if not isinstance(arguments, dict):
        raise ToolError(code="INVALID_TOOL_ARGS", message=f"{tool.name}: arguments must be an object")
    cleaned: Dict[str, Any] = {}
    for pname, param in tool.params.items():
        value = arguments.get(pname)
        if value is None:
            if param.required:
                raise ToolError(code="INVALID_TOOL_ARGS", message=f"{tool.name}: missing required argument {pname!r}")
            continue
        expected = str((param.schema or {}).get("type") or "string")
        value = _check_type(f"{tool.name}.{pname}", value, expected)
        if expected == "string":
            value = value.strip()
            if param.required and not value:
                raise ToolError(code="INVALID_TOOL_ARGS", message=f"{tool.name}: argument {pname!r} is empty")
        cleaned[pname] = value
    return cleaned


class ToolRegistry:
    """工具名 → 处理函数的注册表与分发器。

    分发一旦通过校验就不会再抛异常：处理函数内部的下游失败应返回说明文字，
    万一处理函数本身抛出异常，这里也会记录日志并转换成道歉文字。
    """

    def __init__(self, specs: Iterable[ToolSpec] = (), logger: Optional[logging.Logger] = None):
        self._tools: Dict[str, ToolSpec] = {}
        self._logger = logger or logging.getLogger("chat_core.tools")
        for spec in specs:
            self.register(spec)

    def register(self, spec: ToolSpec) -> None:
        if spec.name in self._tools:
            raise ValidationError(code="DUPLICATE_TOOL", message=spec.name)
        self._tools[spec.name] = spec

    def names(self) -> List[str]:
        return list(self._tools)

    def declarations(self) -> List[ToolDef]:
        return [spec.definition for spec in self._tools.values()]

    def __contains__(self, name: object) -> bool:
        return name in self._tools

    def __len__(self) -> int:
        return len(self._tools)

    def dispatch(self, call: ToolCall) -> ToolResult:
        spec = self._tools.get(call.name)
        if spec is None:
            raise ToolError(code="UNKNOWN_TOOL", message=f"unknown tool: {call.name}")
        args = validate_arguments(spec.definition, call.arguments)
        self._logger.info("Dispatching tool call", extra={"extra": {"tool_name": call.name, "tool_args": args}})
        try:
            content = spec.handler(args)
        except Exception:
            self._logger.exception("Tool handler raised", extra={"extra": {"tool_name": call.name}})
            content = TOOL_FAILURE_MESSAGE.format(name=call.name)
        return ToolResult(name=call.name, content=content if isinstance(content, str) else str(content))


def default_tools(cfg, logger: Optional[logging.Logger] = None) -> List[ToolSpec]:
    """按配置构造内置工具：天气相关 4 个 + 网页读取。"""

    from .url_reader import UrlReaderService, url_reader_tool_specs
    from .weather import WeatherTools, ZutoolClient, weather_tool_specs

    timeout = float(getattr(cfg, "tool_timeout", 10.0))
    zutool = ZutoolClient(
        base_url=getattr(cfg, "zutool_base_url", "https://zutool.jp/api"),
        otenki_asp_url=getattr(cfg, "otenki_asp_url"),
        timeout=timeout,
    )
    reader = UrlReaderService(
        timeout=timeout,
        max_chars=int(getattr(cfg, "url_reader_max_chars", 5000)),
        logger=logger,
    )
    return weather_tool_specs(WeatherTools(zutool, logger=logger)) + url_reader_tool_specs(reader)


def default_registry(cfg, logger: Optional[logging.Logger] = None) -> ToolRegistry:
    return ToolRegistry(default_tools(cfg, logger=logger), logger=logger)
