"""
wechat-adapter: 微信公众号 Bot 适配器

接收微信回调（签名校验、安全模式解密），映射为 Activity 交给 Bot 处理，
再将 Bot 的回复以被动回复 XML 或客服消息接口的方式发回微信。

使用:
    from wechat_adapter import WeChatHttpAdapter, WeChatClient, WeChatSettings

    adapter = WeChatHttpAdapter(WeChatClient(), task_queue=AsyncioTaskQueue())
    reply = await adapter.process(body, secret_info, settings, bot_callback)
"""

from .core import (
    AsyncioTaskQueue,
    AuthenticationError,
    ConfigurationError,
    DecryptionError,
    DeliveryError,
    HttpServer,
    TurnContext,
    WeChatAdapterError,
    WeChatApiError,
    WeChatClient,
    WeChatHttpAdapter,
    WeChatMessageMapper,
)
from .models import AppConfig, WeChatSettings

__all__ = [
    "AsyncioTaskQueue", "AuthenticationError", "ConfigurationError", "DecryptionError",
    "DeliveryError", "HttpServer", "TurnContext", "WeChatAdapterError", "WeChatApiError",
    "WeChatClient", "WeChatHttpAdapter", "WeChatMessageMapper", "AppConfig", "WeChatSettings",
]
