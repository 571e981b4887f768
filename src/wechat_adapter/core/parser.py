"""
微信推送 XML 解析

按 MsgType 分发到对应的 RequestMessage 变体。无法识别的类型或损坏的 XML
降级为 UnknownRequest，保证与微信服务器的握手不因解析问题而失败。
"""

import logging
from typing import Callable, Optional, Union
from xml.etree.ElementTree import ParseError

from defusedxml import DefusedXmlException
from defusedxml import ElementTree as DET

from ..protocol import (
    EventRequest,
    ImageRequest,
    LinkRequest,
    LocationRequest,
    RequestMessage,
    RequestMessageType,
    TextRequest,
    UnknownRequest,
    VideoRequest,
    VoiceRequest,
)

logger = logging.getLogger("wechat-adapter")

# 损坏的 XML 或含实体声明等被拒绝的 XML
XML_ERRORS = (ParseError, DefusedXmlException)


def parse_xml_fields(xml: Union[str, bytes]) -> dict[str, str]:
    """将 <xml> 顶层子元素展开为 {标签: 文本}，解析失败抛出 XML_ERRORS 中的异常"""
    root = DET.fromstring(xml)
    return {child.tag: child.text or "" for child in root}


def _int(value: Optional[str], default: int = 0) -> int:
    try:
        return int(value) if value else default
    except ValueError:
        return default


def _float(value: Optional[str]) -> Optional[float]:
    try:
        return float(value) if value else None
    except ValueError:
        return None


def _common(raw: dict[str, str]) -> dict:
    return {
        "from_user_name": raw.get("FromUserName", ""),
        "to_user_name": raw.get("ToUserName", ""),
        "create_time": _int(raw.get("CreateTime")),
        "msg_id": raw.get("MsgId", ""),
        "raw": raw,
    }


def _text(raw: dict[str, str]) -> RequestMessage:
    return TextRequest(content=raw.get("Content", ""), **_common(raw))


def _image(raw: dict[str, str]) -> RequestMessage:
    return ImageRequest(
        pic_url=raw.get("PicUrl", ""),
        media_id=raw.get("MediaId", ""),
        **_common(raw),
    )


def _voice(raw: dict[str, str]) -> RequestMessage:
    return VoiceRequest(
        media_id=raw.get("MediaId", ""),
        format=raw.get("Format", ""),
        recognition=raw.get("Recognition") or None,
        **_common(raw),
    )


def _video(raw: dict[str, str]) -> RequestMessage:
    return VideoRequest(
        media_id=raw.get("MediaId", ""),
        thumb_media_id=raw.get("ThumbMediaId", ""),
        short=raw.get("MsgType") == RequestMessageType.SHORT_VIDEO.value,
        **_common(raw),
    )


def _location(raw: dict[str, str]) -> RequestMessage:
    return LocationRequest(
        location_x=_float(raw.get("Location_X")) or 0.0,
        location_y=_float(raw.get("Location_Y")) or 0.0,
        scale=_int(raw.get("Scale")),
        label=raw.get("Label", ""),
        **_common(raw),
    )


def _link(raw: dict[str, str]) -> RequestMessage:
    return LinkRequest(
        title=raw.get("Title", ""),
        description=raw.get("Description", ""),
        url=raw.get("Url", ""),
        **_common(raw),
    )


def _event(raw: dict[str, str]) -> RequestMessage:
    return EventRequest(
        event=raw.get("Event", ""),
        event_key=raw.get("EventKey") or None,
        ticket=raw.get("Ticket") or None,
        latitude=_float(raw.get("Latitude")),
        longitude=_float(raw.get("Longitude")),
        precision=_float(raw.get("Precision")),
        **_common(raw),
    )


# MsgType → 解析函数
_PARSERS: dict[str, Callable[[dict[str, str]], RequestMessage]] = {
    RequestMessageType.TEXT.value: _text,
    RequestMessageType.IMAGE.value: _image,
    RequestMessageType.VOICE.value: _voice,
    RequestMessageType.VIDEO.value: _video,
    RequestMessageType.SHORT_VIDEO.value: _video,
    RequestMessageType.LOCATION.value: _location,
    RequestMessageType.LINK.value: _link,
    RequestMessageType.EVENT.value: _event,
}


def parse_request(xml: Union[str, bytes]) -> RequestMessage:
    """将（已解密的）XML 解析为 RequestMessage，不会抛出异常"""
    try:
        raw = parse_xml_fields(xml)
    except XML_ERRORS as e:
        logger.warning("微信消息 XML 解析失败, 按未知消息处理: %s", e)
        return UnknownRequest()

    msg_type = raw.get("MsgType", "")
    parser = _PARSERS.get(msg_type.lower())
    if parser is None:
        logger.warning("未知的微信消息类型: %r", msg_type)
        return UnknownRequest(type_name=msg_type, **_common(raw))
    return parser(raw)
