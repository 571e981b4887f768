from .adapter import WeChatHttpAdapter
from .errors import (
    AuthenticationError,
    ConfigurationError,
    DecryptionError,
    DeliveryError,
    WeChatAdapterError,
    WeChatApiError,
)
from .http_server import HttpServer, echo_bot
from .mapper import WeChatMessageMapper
from .task_queue import AsyncioTaskQueue, TaskQueue
from .turn_context import TurnContext
from .wechat_client import WeChatClient

__all__ = [
    "WeChatHttpAdapter", "HttpServer", "echo_bot", "WeChatMessageMapper",
    "AsyncioTaskQueue", "TaskQueue", "TurnContext", "WeChatClient",
    "AuthenticationError", "ConfigurationError", "DecryptionError", "DeliveryError",
    "WeChatAdapterError", "WeChatApiError",
]
