"""
wechat_adapter.protocol: 适配器内部公共数据结构

    activity:  Bot 侧活动模型（Activity、ConversationReference 等）
    requests:  微信入站消息（RequestMessage 各变体、SecretInfo）
    responses: 微信出站消息（ResponseMessage 各变体）

使用:
    from wechat_adapter.protocol import Activity, ActivityTypes, TextResponse

    reply = Activity(type=ActivityTypes.MESSAGE, text="收到")
"""

from .activity import (
    CHANNEL_ID,
    Activity,
    ActivityTypes,
    Attachment,
    CardAction,
    ChannelAccount,
    ConversationAccount,
    ConversationReference,
    SuggestedActions,
)
from .requests import (
    EventRequest,
    ImageRequest,
    LinkRequest,
    LocationRequest,
    RequestMessage,
    RequestMessageType,
    SecretInfo,
    TextRequest,
    UnknownRequest,
    VideoRequest,
    VoiceRequest,
)
from .responses import (
    Article,
    ImageResponse,
    MenuItem,
    MessageMenu,
    MessageMenuResponse,
    MPNewsResponse,
    MusicResponse,
    NewsResponse,
    NoResponse,
    ResponseMessage,
    ResponseMessageType,
    SuccessResponse,
    TextResponse,
    VideoResponse,
    VoiceResponse,
)

__all__ = [
    "CHANNEL_ID", "Activity", "ActivityTypes", "Attachment", "CardAction",
    "ChannelAccount", "ConversationAccount", "ConversationReference", "SuggestedActions",
    "EventRequest", "ImageRequest", "LinkRequest", "LocationRequest", "RequestMessage",
    "RequestMessageType", "SecretInfo", "TextRequest", "UnknownRequest", "VideoRequest",
    "VoiceRequest",
    "Article", "ImageResponse", "MenuItem", "MessageMenu", "MessageMenuResponse",
    "MPNewsResponse", "MusicResponse", "NewsResponse", "NoResponse", "ResponseMessage",
    "ResponseMessageType", "SuccessResponse", "TextResponse", "VideoResponse", "VoiceResponse",
]
