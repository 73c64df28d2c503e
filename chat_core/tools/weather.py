"""天气相关工具：地点检索、今日天气、头痛预报与多日预报表格。

数据来自 zutool 的公开接口。所有处理函数在下游失败时都返回说明文字，
不会把异常抛给分发器；只有参数本身的问题才由分发器转换为 ToolError。
"""

import logging
from collections import defaultdict
from datetime import date
from typing import Any, Dict, List, Optional, Tuple, Type, TypeVar
from urllib.parse import quote

import httpx
from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError

from chat_core.domain.exceptions import ApiError, BusinessError, NetworkError

from .definitions import ToolDef, ToolParam, ToolSpec
from .zutool_schema import (
    OtenkiAspResponse,
    PainStatusResponse,
    RecordValue,
    WeatherPoint,
    WeatherPointResponse,
    WeatherStatusResponse,
    parse_record_date,
)

M = TypeVar("M", bound=BaseModel)


class ZutoolClient:
    """zutool HTTP 客户端，每次调用新建一个 httpx.Client。"""

    def __init__(self, base_url: str, otenki_asp_url: str, timeout: float = 10.0):
        self._base_url = base_url.rstrip("/")
        self._otenki_asp_url = otenki_asp_url
        self._timeout = timeout

    def get_weather_point(self, keyword: str) -> WeatherPointResponse:
        return self._get(f"{self._base_url}/getweatherpoint/{quote(keyword, safe='')}", WeatherPointResponse)

    def get_weather_status(self, city_code: str) -> WeatherStatusResponse:
        return self._get(f"{self._base_url}/getweatherstatus/{quote(city_code, safe='')}", WeatherStatusResponse)

    def get_pain_status(self, area_code: str, city_code: Optional[str] = None) -> PainStatusResponse:
        params = {"set_point": city_code} if city_code else None
        return self._get(
            f"{self._base_url}/mapi/getpainstatus/{quote(area_code, safe='')}",
            PainStatusResponse,
            params=params,
        )

    def get_otenki_asp(self, city_code: str) -> OtenkiAspResponse:
        url = self._otenki_asp_url.format(city_code=quote(city_code, safe=""))
        return self._get(url, OtenkiAspResponse)

    def _get(self, url: str, model: Type[M], params: Optional[Dict[str, str]] = None) -> M:
        try:
            with httpx.Client(timeout=self._timeout, trust_env=False, follow_redirects=True) as client:
                resp = client.get(url, params=params)
        except httpx.RequestError as e:
            raise NetworkError(code="NETWORK_ERROR", message=str(e))
        if resp.status_code >= 400:
            raise ApiError(code="API_ERROR", message=resp.text[:200], http_status=resp.status_code)
        try:
            return model.model_validate(resp.json())
        except (ValueError, PydanticValidationError) as e:
            # json 解码错误也是 ValueError
            raise ApiError(code="BAD_RESPONSE", message=f"unexpected response from {url}: {e}")


# 天气代码取百位：100 晴、200 阴、300 雨、400 雪
WEATHER_GLYPHS = {
    100: "☀️",
    200: "☁️",
    300: "🌧️",
    400: "🌨️",
}

# 多日预报中 elements 的下标顺序，与表头一一对应
FORECAST_COLUMNS: List[Tuple[str, str]] = [
    ("weather", "天气"),
    ("precipitation", "降水%"),
    ("temp_max", "最高℃"),
    ("temp_min", "最低℃"),
    ("wind_speed", "风速m/s"),
    ("wind_direction", "风向"),
    ("pressure_level", "气压Lv"),
    ("humidity", "湿度%"),
]
_INTEGRAL_COLUMNS = {"precipitation", "humidity", "pressure_level", "wind_direction"}

FORECAST_HEADER = "| 日期 | " + " | ".join(label for _, label in FORECAST_COLUMNS) + " |"
FORECAST_SEPARATOR = "|:---|:---|:----:|:-----:|:-----:|:------:|:--:|:------:|:----:|"


def weather_glyph(code: Any) -> str:
    """把天气代码换成表情符号，无法识别时原样返回。"""

    if code is None:
        return "-"
    raw = str(code)
    try:
        value = float(code)
    except (TypeError, ValueError):
        return raw
    if not value.is_integer():
        return raw
    glyph = WEATHER_GLYPHS.get(int(value) // 100 * 100)
    if glyph is None:
        # 百位之外的代码直接显示，整数值去掉 ".0"
        return str(int(value))
    return glyph


def format_cell(column: str, value: RecordValue) -> str:
    if value is None:
        return "-"
    if column == "weather":
        return weather_glyph(value)
    if isinstance(value, str):
        return value
    if column in _INTEGRAL_COLUMNS and float(value).is_integer():
        return str(int(value))
    return f"{value:.1f}"


def build_forecast_table(resp: OtenkiAspResponse) -> List[str]:
    """按日期聚合 elements，生成 Markdown 表格行（含表头）。"""

    by_date: Dict[date, List[RecordValue]] = defaultdict(lambda: [None] * len(FORECAST_COLUMNS))
    for index, element in enumerate(resp.elements[: len(FORECAST_COLUMNS)]):
        for key, value in element.records.items():
            day = parse_record_date(key)
            if day is None:
                continue
            by_date[day][index] = value
    lines = [FORECAST_HEADER, FORECAST_SEPARATOR]
    for day in sorted(by_date):
        cells = [day.strftime("%m/%d")]
        cells.extend(format_cell(column, value) for (column, _), value in zip(FORECAST_COLUMNS, by_date[day]))
        lines.append("| " + " | ".join(cells) + " |")
    return lines


class WeatherTools:
    """四个天气工具的处理函数集合。"""

    def __init__(self, client: ZutoolClient, logger: Optional[logging.Logger] = None):
        self._client = client
        self._logger = logger or logging.getLogger("chat_core.tools.weather")

    def _first_point(self, location: str) -> Optional[WeatherPoint]:
        points = self._client.get_weather_point(location).result
        return points[0] if points else None

    def _failed(self, what: str, error: BusinessError, **fields) -> None:
        self._logger.warning(
            f"{what} failed",
            extra={"extra": {"error_code": error.code, "error": error.message, **fields}},
        )

    def get_weather(self, args: Dict[str, Any]) -> str:
        location = args["location"]
        try:
            point = self._first_point(location)
        except BusinessError as e:
            self._failed("Weather point lookup", e, location=location)
            return f"「{location}」的天气暂时查不到：地点信息获取失败（{e.code}）"
        if point is None:
            return f"没有找到叫「{location}」的地点，换个说法试试？"
        try:
            status = self._client.get_weather_status(point.city_code)
        except BusinessError as e:
            self._failed("Weather status fetch", e, city_code=point.city_code)
            return f"「{point.name}」({point.city_code}) 的天气获取失败了，抱歉🙏（{e.code}）"

        lines = [f"【{status.place_name or point.name} ({location}) 的天气】"]
        if status.today:
            lines.append("今天的天气：")
            for rec in status.today:
                temp = f"{rec.temp}℃" if rec.temp else "---"
                lines.append(f"  {rec.time}: {temp}, {rec.pressure}hPa, {weather_glyph(rec.weather or None)}")
        else:
            lines.append("  今天暂时没有详细的天气数据")
        return "\n".join(lines)

    def get_pain_status(self, args: Dict[str, Any]) -> str:
        location = args["location"]
        try:
            point = self._first_point(location)
        except BusinessError as e:
            self._failed("Weather point lookup", e, location=location)
            return f"「{location}」的头痛预报暂时查不到：地点信息获取失败（{e.code}）"
        if point is None:
            return f"没有找到叫「{location}」的地点，换个说法试试？"
        if len(point.city_code) < 2:
            return f"「{point.name}」({location}) 的地区代码无法确定"
        area_code = point.city_code[:2]
        try:
            resp = self._client.get_pain_status(area_code, point.city_code)
        except BusinessError as e:
            self._failed("Pain status fetch", e, area_code=area_code, city_code=point.city_code)
            return f"「{point.name}」({point.city_code}) 的头痛预报获取失败了，抱歉🙏（{e.code}）"

        status = resp.painnoterate_status
        return "\n".join(
            [
                f"【{status.area_name or point.name} ({location}) 的头痛预报】",
                f"时段：{status.time_start} ～ {status.time_end}",
                "各等级占比：",
                f"  基本无忧：{status.rate_normal:.1f}%",
                f"  稍需留意：{status.rate_little:.1f}%",
                f"  注意：{status.rate_painful:.1f}%",
                f"  警戒：{status.rate_bad:.1f}%",
            ]
        )

    def search_weather_point(self, args: Dict[str, Any]) -> str:
        keyword = args["keyword"]
        try:
            points = self._client.get_weather_point(keyword).result
        except BusinessError as e:
            self._failed("Weather point search", e, keyword=keyword)
            return f"「{keyword}」的地点检索失败了（{e.code}）"
        lines = [f"【「{keyword}」的地点检索结果】"]
        if not points:
            lines.append(f"  没有与「{keyword}」匹配的地点")
        for p in points:
            lines.append(f"  📍 {p.name} ({p.city_code})")
        return "\n".join(lines)

    def get_otenki_asp_info(self, args: Dict[str, Any]) -> str:
        city_code = args["city_code"]
        try:
            resp = self._client.get_otenki_asp(city_code)
        except BusinessError as e:
            self._failed("Otenki ASP fetch", e, city_code=city_code)
            return f"「{city_code}」的多日预报获取失败了，抱歉🙏（{e.code}）"

        issued = resp.issued_at()
        issued_text = issued.strftime("%Y-%m-%d %H:%M") if issued else "未知"
        lines = [f"【{city_code} 的多日天气预报 ({issued_text})】"]
        if not resp.elements:
            lines.append("  没有找到预报数据")
            return "\n".join(lines)
        lines.extend(build_forecast_table(resp))
        return "\n".join(lines)


def _string_param(name: str, description: str) -> Dict[str, ToolParam]:
    return {name: ToolParam(name=name, description=description, required=True, schema={"type": "string"})}


def weather_tool_specs(tools: WeatherTools) -> List[ToolSpec]:
    return [
        ToolSpec(
            ToolDef(
                name="get_weather",
                description="获取指定地点今天的天气",
                params=_string_param("location", "要查询天气的地点"),
                usage_hint="用户询问某地的天气、气温或气压时使用",
            ),
            tools.get_weather,
        ),
        ToolSpec(
            ToolDef(
                name="get_pain_status",
                description="获取指定地点的头痛（气压病）预报",
                params=_string_param("location", "要查询头痛预报的地点"),
                usage_hint="用户提到头痛、气压不适或想知道气压病风险时使用",
            ),
            tools.get_pain_status,
        ),
        ToolSpec(
            ToolDef(
                name="search_weather_point",
                description="按关键词（地名等）检索地点，返回地点名与地点代码",
                params=_string_param("keyword", "检索关键词"),
                usage_hint="需要确认地点代码，或用户想知道有哪些同名地点时使用",
            ),
            tools.search_weather_point,
        ),
        ToolSpec(
            ToolDef(
                name="get_otenki_asp_info",
                description="按地点代码获取未来几天的天气预报表",
                params=_string_param("city_code", "地点代码（5 位数字）"),
                usage_hint="用户想看未来几天的预报时使用；地点代码可先用 search_weather_point 查到",
            ),
            tools.get_otenki_asp_info,
        ),
    ]
