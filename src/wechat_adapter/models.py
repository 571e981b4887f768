"""
Pydantic 配置模型

通过 config.yaml 管理除公众号凭据以外的所有配置项。
公众号凭据（Token / AppID / AppSecret / EncodingAESKey）仍由 .env 环境变量提供。
"""

import os
from pathlib import Path
from typing import Mapping, Optional

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from .core.errors import ConfigurationError

_TRUE_VALUES = {"1", "true", "yes", "on"}


class WeChatSettings(BaseModel):
    """公众号配置，加载后只读"""

    model_config = ConfigDict(frozen=True)

    token: str = Field(..., min_length=1, description="服务器配置中的 Token")
    app_id: str = Field(..., min_length=1, description="公众号 AppID")
    app_secret: str = Field(..., min_length=1, description="公众号 AppSecret")
    encoding_aes_key: Optional[str] = Field(None, description="43 位 EncodingAESKey，明文模式可不填")
    passive_response_mode: bool = Field(False, description="是否在 HTTP 响应中被动回复")

    @field_validator("encoding_aes_key")
    @classmethod
    def _check_aes_key(cls, v: Optional[str]) -> Optional[str]:
        if v is not None and v != "" and len(v) != 43:
            raise ValueError("EncodingAESKey 必须为 43 位")
        return v or None

    @classmethod
    def from_env(
        cls,
        environ: Optional[Mapping[str, str]] = None,
        *,
        passive_response_mode: Optional[bool] = None,
    ) -> "WeChatSettings":
        """
        从环境变量读取公众号配置。

        Args:
            environ:               环境变量映射，默认 os.environ
            passive_response_mode: 覆盖 WECHAT_PASSIVE_RESPONSE_MODE

        Raises:
            ConfigurationError: 缺少必填项或取值非法
        """
        env = os.environ if environ is None else environ
        if passive_response_mode is None:
            passive_response_mode = (
                env.get("WECHAT_PASSIVE_RESPONSE_MODE", "").strip().lower() in _TRUE_VALUES
            )
        try:
            return cls(
                token=env.get("WECHAT_TOKEN", ""),
                app_id=env.get("WECHAT_APP_ID", ""),
                app_secret=env.get("WECHAT_APP_SECRET", ""),
                encoding_aes_key=env.get("WECHAT_ENCODING_AES_KEY") or None,
                passive_response_mode=passive_response_mode,
            )
        except ValidationError as e:
            raise ConfigurationError(f"公众号配置非法: {e}") from e


class WeChatConfig(BaseModel):
    passive_response_mode: bool = Field(False, description="是否被动回复")
    workers: int = Field(4, ge=1, description="主动推送后台 worker 数")
    api_base: Optional[str] = Field(None, description="微信接口地址，默认官方地址")
    proxy: Optional[str] = Field(None, description="出站 HTTP 代理")


class ServerConfig(BaseModel):
    host: str = Field("0.0.0.0", description="HTTP 监听地址")
    port: int = Field(8080, description="HTTP 监听端口")
    path: str = Field("/api/messages", description="微信回调路径")


class LogConfig(BaseModel):
    level: str = Field("INFO", description="日志级别")
    dir: Optional[str] = Field(None, description="日志输出目录，不指定则仅控制台")


class AppConfig(BaseModel):
    wechat: WeChatConfig = Field(default_factory=WeChatConfig)
    server: ServerConfig = Field(default_factory=ServerConfig)
    log: LogConfig = Field(default_factory=LogConfig)

    @classmethod
    def from_yaml(cls, path: str | Path = "config.yaml") -> "AppConfig":
        p = Path(path)
        if not p.exists():
            return cls()
        with open(p, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
        return cls.model_validate(data)
