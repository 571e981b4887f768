"""
微信入站请求数据结构

每个 webhook 调用解析出恰好一个 RequestMessage，映射为 Activity 后即丢弃。
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Mapping, Optional, Union


class RequestMessageType(str, Enum):
    """微信推送消息的 MsgType"""

    TEXT = "text"
    IMAGE = "image"
    VOICE = "voice"
    VIDEO = "video"
    SHORT_VIDEO = "shortvideo"
    LOCATION = "location"
    LINK = "link"
    EVENT = "event"
    UNKNOWN = "unknown"


@dataclass
class SecretInfo:
    """
    单次回调请求携带的签名参数

    Attributes:
        webhook_signature: 查询参数 signature
        timestamp:         查询参数 timestamp
        nonce:             查询参数 nonce
        echo_string:       查询参数 echostr，仅在配置服务器地址时出现
        encoding_aes_key:  覆盖配置中的 EncodingAESKey（多公众号共用一个入口时使用）
        msg_signature:     安全模式下的消息签名，额外覆盖 Encrypt 字段
    """
    webhook_signature: str
    timestamp: str
    nonce: str
    echo_string: Optional[str] = None
    encoding_aes_key: Optional[str] = None
    msg_signature: Optional[str] = None

    @classmethod
    def from_query(cls, query: Mapping[str, str]) -> "SecretInfo":
        return cls(
            webhook_signature=query.get("signature", ""),
            timestamp=query.get("timestamp", ""),
            nonce=query.get("nonce", ""),
            echo_string=query.get("echostr") or None,
            msg_signature=query.get("msg_signature") or None,
        )


@dataclass
class RequestMessage:
    """
    所有入站消息的公共字段

    Attributes:
        from_user_name: 发送方 openid
        to_user_name:   公众号原始 ID
        create_time:    消息创建时间（秒级时间戳）
        msg_id:         消息 ID，事件推送没有该字段
        raw:            XML 顶层字段原文
    """
    from_user_name: str = ""
    to_user_name: str = ""
    create_time: int = 0
    msg_id: str = ""
    raw: dict[str, str] = field(default_factory=dict)

    msg_type = RequestMessageType.UNKNOWN


@dataclass
class TextRequest(RequestMessage):
    content: str = ""

    msg_type = RequestMessageType.TEXT


@dataclass
class ImageRequest(RequestMessage):
    pic_url: str = ""
    media_id: str = ""

    msg_type = RequestMessageType.IMAGE


@dataclass
class VoiceRequest(RequestMessage):
    media_id: str = ""
    format: str = ""
    recognition: Optional[str] = None   # 开启语音识别后才有

    msg_type = RequestMessageType.VOICE


@dataclass
class VideoRequest(RequestMessage):
    """视频与小视频共用"""
    media_id: str = ""
    thumb_media_id: str = ""
    short: bool = False

    msg_type = RequestMessageType.VIDEO


@dataclass
class LocationRequest(RequestMessage):
    location_x: float = 0.0   # 纬度
    location_y: float = 0.0   # 经度
    scale: int = 0
    label: str = ""

    msg_type = RequestMessageType.LOCATION


@dataclass
class LinkRequest(RequestMessage):
    title: str = ""
    description: str = ""
    url: str = ""

    msg_type = RequestMessageType.LINK


@dataclass
class EventRequest(RequestMessage):
    """
    事件推送: subscribe / unsubscribe / SCAN / LOCATION / CLICK / VIEW 等

    Attributes:
        event:     事件类型
        event_key: 事件 KEY 值（菜单 KEY、二维码参数等）
        ticket:    二维码 ticket
        latitude / longitude / precision: 上报地理位置事件
    """
    event: str = ""
    event_key: Optional[str] = None
    ticket: Optional[str] = None
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    precision: Optional[float] = None

    msg_type = RequestMessageType.EVENT


@dataclass
class UnknownRequest(RequestMessage):
    """无法识别的消息类型，字段原样保存在 raw 中"""
    type_name: str = ""

    msg_type = RequestMessageType.UNKNOWN


AnyRequestMessage = Union[
    TextRequest, ImageRequest, VoiceRequest, VideoRequest,
    LocationRequest, LinkRequest, EventRequest, UnknownRequest,
]
