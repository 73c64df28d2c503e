"""配置管理模块。

支持从环境变量、.env 以及 config.yaml 加载配置。
"""

import os
import warnings
from pathlib import Path
from typing import Any, Dict, Literal, Optional

import yaml
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


def _load_config_from_yaml() -> Dict[str, Any]:
    """从 config.yaml 加载配置（若存在）。"""
    candidates = []
    explicit = os.getenv("CHAT_CONFIG_FILE")
    if explicit:
        candidates.append(Path(explicit).expanduser())
    candidates.extend([
        Path.cwd() / "config.yaml",
        Path(__file__).resolve().parents[2] / "config.yaml",
    ])

    seen: set[Path] = set()
    for path in candidates:
        if not path or path in seen:
            continue
        seen.add(path)
        try:
            if path.exists():
                data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
                if isinstance(data, dict):
                    return data
                warnings.warn(f"Config file {path} is not a mapping, ignored")
        except (OSError, yaml.YAMLError) as exc:
            warnings.warn(f"Failed to read config file {path}: {exc}")
    return {}


class Settings(BaseSettings):
    """配置设置（使用 Pydantic）。"""

    # ---- Provider 分层配置 ----
    primary_provider: str = Field(default="gemini", description="主模型所属 Provider")
    primary_model: str = Field(default="gemini-2.0-flash", description="主模型名")
    secondary_provider: str = Field(default="gemini", description="第二层模型所属 Provider")
    secondary_model: str = Field(
        default="",
        description="第二层模型名，留空表示不启用",
    )
    local_fallback_enabled: bool = Field(default=False, description="是否启用本地兜底模型")

    # Gemini
    gemini_api_key: Optional[str] = Field(default=None, description="Gemini API 密钥")
    gemini_base_url: str = Field(
        default="https://generativelanguage.googleapis.com/v1beta",
        description="Gemini API 基础URL",
    )
    # Ollama（本地兜底）
    ollama_base_url: str = Field(default="http://localhost:11434", description="Ollama 服务地址")
    ollama_model: str = Field(default="gemma3", description="Ollama 模型名")
    ollama_deadline: float = Field(default=120.0, gt=0, description="Ollama 流式生成的总时限（秒）")

    http_timeout: float = Field(default=30.0, ge=1.0, description="Provider HTTP 超时时间（秒）")
    tool_timeout: float = Field(default=10.0, ge=1.0, description="工具外部请求超时时间（秒）")
    temperature: float = Field(default=0.7, ge=0.0, le=2.0, description="生成温度")

    # ---- 历史记录 ----
    history_backend: Literal["memory", "sqlite", "json"] = Field(
        default="sqlite",
        description="历史记录后端",
    )
    history_db_path: str = Field(default="data", description="SQLite 数据库所在目录")
    storage_root: str = Field(default=".storage", description="JSON 存储根目录")
    max_history_pairs: int = Field(default=10, ge=1, le=200, description="每个会话保留的最大问答对数")

    # ---- 工具 ----
    tools_enabled: bool = Field(default=True, description="是否向模型声明工具")
    tool_result_max_chars: int = Field(default=1800, ge=100, description="回传给模型的工具结果最大字符数")
    url_reader_max_chars: int = Field(default=5000, ge=100, description="网页正文最大字符数")
    zutool_base_url: str = Field(default="https://zutool.jp/api", description="zutool API 基础URL")
    otenki_asp_url: str = Field(
        default="https://ap.otenki.com/OtenkiASP/asp/zutool/{city_code}.json",
        description="Otenki ASP 预报地址模板，{city_code} 会被替换",
    )

    # ---- 提示词与日志 ----
    model_profile_path: str = Field(default="config/model.yaml", description="模型人设/提示词配置文件")
    log_dir: str = Field(default="logs", description="日志目录")
    log_level: str = Field(default="INFO", description="日志级别")
    log_redact_content: bool = Field(default=False, description="是否脱敏日志内容")

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    @staticmethod
    def _config_source() -> Dict[str, Any]:
        return _load_config_from_yaml()

    @field_validator("gemini_api_key")
    @classmethod
    def validate_api_key(cls, v: Optional[str]) -> Optional[str]:
        if v and len(v) < 10:
            raise ValueError("API key seems too short")
        return v

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        level = v.upper()
        if level not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
            raise ValueError(f"Unknown log level: {v}")
        return level

    @property
    def secondary_enabled(self) -> bool:
        return bool(self.secondary_model.strip())

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls,
        init_settings,
        env_settings,
        dotenv_settings,
        file_secret_settings,
    ):
        return (
            init_settings,
            env_settings,
            dotenv_settings,
            cls._config_source,
            file_secret_settings,
        )


settings = Settings()
