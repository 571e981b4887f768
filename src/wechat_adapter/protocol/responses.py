"""
微信出站响应消息数据结构

ResponseMessageType 是响应消息的唯一标签，分发处（被动 XML 序列化与主动推送）
均按该枚举逐一匹配。新增消息类型时需要同时补充两处分发。
"""

import time
from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Any, Union


class ResponseMessageType(str, Enum):
    TEXT = "text"
    IMAGE = "image"
    VOICE = "voice"
    VIDEO = "video"
    MUSIC = "music"
    NEWS = "news"
    MPNEWS = "mpnews"
    MESSAGE_MENU = "msgmenu"
    SUCCESS = "success"
    NO_RESPONSE = "noresponse"


def _now() -> int:
    return int(time.time())


@dataclass
class ResponseMessage:
    """
    所有响应消息的公共字段

    Attributes:
        to_user_name:   接收方 openid
        from_user_name: 公众号原始 ID
        create_time:    秒级时间戳
    """
    to_user_name: str = ""
    from_user_name: str = ""
    create_time: int = field(default_factory=_now)

    msg_type = ResponseMessageType.NO_RESPONSE

    def to_dict(self) -> dict[str, Any]:
        """通用 JSON 形态，供兜底的原样发送接口使用"""
        body = asdict(self)
        for key in ("to_user_name", "from_user_name", "create_time"):
            body.pop(key)
        return {
            "touser": self.to_user_name,
            "msgtype": self.msg_type.value,
            self.msg_type.value: body,
        }


@dataclass
class TextResponse(ResponseMessage):
    content: str = ""

    msg_type = ResponseMessageType.TEXT


@dataclass
class ImageResponse(ResponseMessage):
    media_id: str = ""

    msg_type = ResponseMessageType.IMAGE


@dataclass
class VoiceResponse(ResponseMessage):
    media_id: str = ""

    msg_type = ResponseMessageType.VOICE


@dataclass
class VideoResponse(ResponseMessage):
    media_id: str = ""
    title: str = ""
    description: str = ""

    msg_type = ResponseMessageType.VIDEO


@dataclass
class MusicResponse(ResponseMessage):
    title: str = ""
    description: str = ""
    music_url: str = ""
    hq_music_url: str = ""
    thumb_media_id: str = ""

    msg_type = ResponseMessageType.MUSIC


@dataclass
class Article:
    """图文消息中的一篇文章"""
    title: str = ""
    description: str = ""
    url: str = ""
    pic_url: str = ""


@dataclass
class NewsResponse(ResponseMessage):
    """图文消息，被动回复与客服消息都只允许 1 篇文章"""
    articles: list[Article] = field(default_factory=list)

    msg_type = ResponseMessageType.NEWS


@dataclass
class MPNewsResponse(ResponseMessage):
    """已发布的图文素材，只能通过客服接口发送"""
    media_id: str = ""

    msg_type = ResponseMessageType.MPNEWS


@dataclass
class MenuItem:
    id: str = ""
    content: str = ""


@dataclass
class MessageMenu:
    head_content: str = ""
    items: list[MenuItem] = field(default_factory=list)
    tail_content: str = ""


@dataclass
class MessageMenuResponse(ResponseMessage):
    """菜单消息，只能通过客服接口发送"""
    menu: MessageMenu = field(default_factory=MessageMenu)

    msg_type = ResponseMessageType.MESSAGE_MENU


@dataclass
class SuccessResponse(ResponseMessage):
    """告知微信服务器已收到，不回复用户"""

    msg_type = ResponseMessageType.SUCCESS


@dataclass
class NoResponse(ResponseMessage):
    """无法映射的内容，分发时直接丢弃"""

    msg_type = ResponseMessageType.NO_RESPONSE


AnyResponseMessage = Union[
    TextResponse, ImageResponse, VoiceResponse, VideoResponse, MusicResponse,
    NewsResponse, MPNewsResponse, MessageMenuResponse, SuccessResponse, NoResponse,
]
