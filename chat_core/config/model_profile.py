"""模型人设配置。

一个 profile 描述机器人的名字、图标、历史长度以及按用户区分的系统提示词：

    name: Assistant
    model_name: gemini-2.0-flash
    icon: https://example.com/icon.png
    max_history_size: 10
    prompts:
      default: You are a helpful assistant.
      alice: 请用关西腔回答。
    about:
      title: About
      description: ...
      url: https://example.com

文件可以是 YAML，也可以是 JSON（JSON 是 YAML 的子集，统一用 yaml.safe_load 读取）。
"""

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Optional, Union

import yaml

from chat_core.domain.exceptions import ValidationError

DEFAULT_SYSTEM_PROMPT = "You are a helpful assistant."


@dataclass
class About:
    title: str = ""
    description: str = ""
    url: str = ""


@dataclass
class ModelProfile:
    name: str = "assistant"
    model_name: str = ""
    icon: str = ""
    max_history_size: int = 0
    prompts: Dict[str, str] = field(default_factory=lambda: {"default": DEFAULT_SYSTEM_PROMPT})
    about: About = field(default_factory=About)

    def prompt_for(self, username: Optional[str]) -> str:
        """返回该用户的专属提示词，没有则回退到 default。"""

        if not self.prompts:
            return DEFAULT_SYSTEM_PROMPT
        if username and username in self.prompts:
            return self.prompts[username]
        return self.prompts.get("default") or DEFAULT_SYSTEM_PROMPT

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ModelProfile":
        prompts = data.get("prompts") or {}
        if not isinstance(prompts, dict) or not str(prompts.get("default") or "").strip():
            raise ValidationError(code="PROFILE_INVALID", message="default prompt not defined")
        about_raw = data.get("about") or {}
        return cls(
            name=str(data.get("name") or "assistant"),
            model_name=str(data.get("model_name") or ""),
            icon=str(data.get("icon") or ""),
            max_history_size=int(data.get("max_history_size") or 0),
            prompts={str(k): str(v) for k, v in prompts.items()},
            about=About(
                title=str(about_raw.get("title") or ""),
                description=str(about_raw.get("description") or ""),
                url=str(about_raw.get("url") or ""),
            ),
        )


def load_model_profile(path: Union[str, Path]) -> ModelProfile:
    """读取并校验 profile 文件。"""

    p = Path(path).expanduser()
    try:
        data = yaml.safe_load(p.read_text(encoding="utf-8")) or {}
    except (OSError, yaml.YAMLError) as e:
        raise ValidationError(code="PROFILE_READ_ERROR", message=f"{p}: {e}")
    if not isinstance(data, dict):
        raise ValidationError(code="PROFILE_INVALID", message=f"{p} is not a mapping")
    return ModelProfile.from_dict(data)


def load_model_profile_or_default(path: Union[str, Path, None]) -> ModelProfile:
    """文件不存在时返回默认 profile；文件存在但内容非法时照常报错。"""

    if not path or not Path(path).expanduser().exists():
        return ModelProfile()
    return load_model_profile(path)
