"""zutool / Otenki ASP 响应的类型化 schema。

外部 API 的字段经常在字符串和数字之间摇摆（"12.5" 与 12.5 都会出现），
这里在解码阶段一次性规整成确定的类型，格式化代码只面对强类型结构。
"""

import json
from datetime import date, datetime
from typing import Annotated, Any, Dict, List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.functional_validators import BeforeValidator


def _to_str(v: Any) -> Any:
    if v is None:
        return ""
    if isinstance(v, (int, float)) and not isinstance(v, bool):
        return str(v)
    return v


def _to_optional_str(v: Any) -> Any:
    if v is None:
        return None
    return _to_str(v)


LooseStr = Annotated[str, BeforeValidator(_to_str)]
OptionalLooseStr = Annotated[Optional[str], BeforeValidator(_to_optional_str)]

# 预报表格的单元格：数值、文本或缺失
RecordValue = Union[float, str, None]


class _Model(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)


class WeatherPoint(_Model):
    city_code: LooseStr
    name: LooseStr = ""
    name_kata: LooseStr = ""


class WeatherPointResponse(_Model):
    result: List[WeatherPoint] = Field(default_factory=list)

    @field_validator("result", mode="before")
    @classmethod
    def _decode_result(cls, v: Any) -> Any:
        # getweatherpoint 把列表编码成 JSON 字符串放在 result 里
        if isinstance(v, str):
            return json.loads(v) if v.strip() else []
        return v or []


class WeatherStatusRecord(_Model):
    time: LooseStr = ""
    weather: LooseStr = ""
    temp: OptionalLooseStr = None
    pressure: LooseStr = ""
    pressure_level: LooseStr = ""


class WeatherStatusResponse(_Model):
    place_name: LooseStr = ""
    place_id: LooseStr = ""
    prefectures_id: LooseStr = ""
    date_time: LooseStr = Field(default="", alias="dateTime")
    today: List[WeatherStatusRecord] = Field(default_factory=list)
    tomorrow: List[WeatherStatusRecord] = Field(default_factory=list)


class PainnoterateStatus(_Model):
    area_name: LooseStr = ""
    time_start: LooseStr = ""
    time_end: LooseStr = ""
    rate_normal: float = Field(default=0.0, alias="rate_0")
    rate_little: float = Field(default=0.0, alias="rate_1")
    rate_painful: float = Field(default=0.0, alias="rate_2")
    rate_bad: float = Field(default=0.0, alias="rate_3")


class PainStatusResponse(_Model):
    painnoterate_status: PainnoterateStatus


class OtenkiElement(_Model):
    content_id: LooseStr = ""
    title: LooseStr = ""
    records: Dict[str, RecordValue] = Field(default_factory=dict)


class OtenkiAspResponse(_Model):
    status: LooseStr = ""
    date_time: OptionalLooseStr = None
    elements: List[OtenkiElement] = Field(default_factory=list)

    def issued_at(self) -> Optional[datetime]:
        """解析 date_time，支持 "2006-01-02 15" 与 ISO-8601 两种格式。"""

        if not self.date_time:
            return None
        try:
            return datetime.strptime(self.date_time, "%Y-%m-%d %H")
        except ValueError:
            pass
        try:
            return datetime.fromisoformat(self.date_time.replace("Z", "+00:00"))
        except ValueError:
            return None


def parse_record_date(key: str) -> Optional[date]:
    """records 的键是 ISO-8601 时间戳，取其所在日期。"""

    try:
        return datetime.fromisoformat(key.replace("Z", "+00:00")).date()
    except ValueError:
        return None
