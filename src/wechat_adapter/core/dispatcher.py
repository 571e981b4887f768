"""
响应消息投递

被动模式: response_to_xml() 生成微信被动回复 XML，字段顺序与微信文档一致
主动模式: send_responses() 按消息类型逐条调用客服消息接口
"""

import logging
import re
from typing import Any, Protocol

from ..protocol import Article, MessageMenu, ResponseMessage, ResponseMessageType
from .errors import DeliveryError

logger = logging.getLogger("wechat-adapter")

# 微信服务器收到该响应即不再重试，也不会向用户回复
SUCCESS_BODY = "success"


class MessageClient(Protocol):
    """主动推送所需的微信客户端能力"""

    async def get_access_token(self, settings, force_refresh: bool = False) -> str: ...
    async def send_text(self, settings, open_id: str, content: str) -> dict: ...
    async def send_image(self, settings, open_id: str, media_id: str) -> dict: ...
    async def send_voice(self, settings, open_id: str, media_id: str) -> dict: ...
    async def send_video(self, settings, open_id: str, media_id: str,
                         title: str, description: str) -> dict: ...
    async def send_music(self, settings, open_id: str, title: str, description: str,
                         music_url: str, hq_music_url: str, thumb_media_id: str) -> dict: ...
    async def send_news(self, settings, open_id: str, articles: list[Article]) -> dict: ...
    async def send_mpnews(self, settings, open_id: str, media_id: str) -> dict: ...
    async def send_message_menu(self, settings, open_id: str, menu: MessageMenu) -> dict: ...
    async def send_raw(self, settings, open_id: str, payload: Any) -> dict: ...


# -------- 被动回复 XML --------

def _cdata(value: Any) -> str:
    text = "" if value is None else str(value)
    return "<![CDATA[" + text.replace("]]>", "]]]]><![CDATA[>") + "]]>"


def _header(response: ResponseMessage) -> str:
    return (
        f"<ToUserName>{_cdata(response.to_user_name)}</ToUserName>"
        f"<FromUserName>{_cdata(response.from_user_name)}</FromUserName>"
        f"<CreateTime>{int(response.create_time)}</CreateTime>"
        f"<MsgType>{_cdata(response.msg_type.value)}</MsgType>"
    )


def _body(response: ResponseMessage) -> str:
    t = response.msg_type
    if t == ResponseMessageType.TEXT:
        return f"<Content>{_cdata(response.content)}</Content>"
    if t == ResponseMessageType.IMAGE:
        return f"<Image><MediaId>{_cdata(response.media_id)}</MediaId></Image>"
    if t == ResponseMessageType.VOICE:
        return f"<Voice><MediaId>{_cdata(response.media_id)}</MediaId></Voice>"
    if t == ResponseMessageType.VIDEO:
        return (
            "<Video>"
            f"<MediaId>{_cdata(response.media_id)}</MediaId>"
            f"<Title>{_cdata(response.title)}</Title>"
            f"<Description>{_cdata(response.description)}</Description>"
            "</Video>"
        )
    if t == ResponseMessageType.MUSIC:
        return (
            "<Music>"
            f"<Title>{_cdata(response.title)}</Title>"
            f"<Description>{_cdata(response.description)}</Description>"
            f"<MusicUrl>{_cdata(response.music_url)}</MusicUrl>"
            f"<HQMusicUrl>{_cdata(response.hq_music_url)}</HQMusicUrl>"
            f"<ThumbMediaId>{_cdata(response.thumb_media_id)}</ThumbMediaId>"
            "</Music>"
        )
    if t == ResponseMessageType.NEWS:
        items = "".join(
            "<item>"
            f"<Title>{_cdata(a.title)}</Title>"
            f"<Description>{_cdata(a.description)}</Description>"
            f"<PicUrl>{_cdata(a.pic_url)}</PicUrl>"
            f"<Url>{_cdata(a.url)}</Url>"
            "</item>"
            for a in response.articles
        )
        return f"<ArticleCount>{len(response.articles)}</ArticleCount><Articles>{items}</Articles>"
    raise ValueError(f"{t.value} 消息不支持被动回复")


# 可以作为被动回复的类型
PASSIVE_TYPES = frozenset({
    ResponseMessageType.TEXT,
    ResponseMessageType.IMAGE,
    ResponseMessageType.VOICE,
    ResponseMessageType.VIDEO,
    ResponseMessageType.MUSIC,
    ResponseMessageType.NEWS,
})


def response_to_xml(response: ResponseMessage) -> str:
    """
    将单条响应序列化为被动回复 XML。

    success / noresponse 返回 "success"；mpnews 与菜单消息微信不允许被动回复，
    记录警告后同样返回 "success"。
    """
    if response.msg_type not in PASSIVE_TYPES:
        if response.msg_type not in (ResponseMessageType.SUCCESS, ResponseMessageType.NO_RESPONSE):
            logger.warning("%s 消息不支持被动回复, 已忽略", response.msg_type.value)
        return SUCCESS_BODY
    return f"<xml>{_header(response)}{_body(response)}</xml>"


# channel_data 字典的键直接作为标签名
_TAG_RE = re.compile(r"[A-Za-z_][A-Za-z0-9_.-]*")


def _tag(key: Any) -> str:
    if not isinstance(key, str) or not _TAG_RE.fullmatch(key):
        raise ValueError(f"channel_data 键名不能作为 XML 标签: {key!r}")
    return key


def _value_to_xml(value: Any) -> str:
    if isinstance(value, dict):
        return "".join(f"<{_tag(k)}>{_value_to_xml(v)}</{k}>" for k, v in value.items())
    if isinstance(value, list):
        return "".join(f"<item>{_value_to_xml(v)}</item>" for v in value)
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return str(value)
    return _cdata(value)


def channel_data_to_xml(channel_data: Any) -> str:
    """Bot 直接提供的渠道数据：字符串视为现成 XML，dict 按键名展开"""
    if isinstance(channel_data, ResponseMessage):
        return response_to_xml(channel_data)
    if isinstance(channel_data, (str, bytes)):
        return channel_data.decode("utf-8") if isinstance(channel_data, bytes) else channel_data
    if isinstance(channel_data, dict):
        return f"<xml>{_value_to_xml(channel_data)}</xml>"
    raise TypeError(f"无法序列化的 channel_data 类型: {type(channel_data).__name__}")


# -------- 主动推送 --------

async def _send_one(client: MessageClient, settings, response: ResponseMessage, open_id: str):
    t = response.msg_type
    if t == ResponseMessageType.TEXT:
        return await client.send_text(settings, open_id, response.content)
    if t == ResponseMessageType.IMAGE:
        return await client.send_image(settings, open_id, response.media_id)
    if t == ResponseMessageType.NEWS:
        return await client.send_news(settings, open_id, response.articles)
    if t == ResponseMessageType.MUSIC:
        return await client.send_music(
            settings, open_id, response.title, response.description,
            response.music_url, response.hq_music_url, response.thumb_media_id,
        )
    if t == ResponseMessageType.MPNEWS:
        return await client.send_mpnews(settings, open_id, response.media_id)
    if t == ResponseMessageType.VIDEO:
        return await client.send_video(
            settings, open_id, response.media_id, response.title, response.description,
        )
    if t == ResponseMessageType.VOICE:
        return await client.send_voice(settings, open_id, response.media_id)
    if t == ResponseMessageType.MESSAGE_MENU:
        return await client.send_message_menu(settings, open_id, response.menu)
    # success 以及未来新增但未单独处理的类型
    return await client.send_raw(settings, open_id, response.to_dict())


async def send_responses(client: MessageClient, settings,
                         responses: list[ResponseMessage], open_id: str):
    """
    逐条推送响应消息。

    noresponse 直接丢弃。任一条失败即记录日志并抛出 DeliveryError，
    后续消息不再发送，已发送的消息不会撤回。
    """
    for response in responses:
        if response.msg_type == ResponseMessageType.NO_RESPONSE:
            logger.debug("跳过无法映射的响应 (用户 %s)", open_id)
            continue
        try:
            await _send_one(client, settings, response, open_id)
        except DeliveryError:
            logger.exception("向用户 %s 推送 %s 消息失败", open_id, response.msg_type.value)
            raise
        except Exception as e:
            logger.exception("向用户 %s 推送 %s 消息失败", open_id, response.msg_type.value)
            raise DeliveryError(f"推送 {response.msg_type.value} 消息失败: {e}") from e


async def send_channel_data(client: MessageClient, settings, channel_data: Any, open_id: str):
    """原样推送 Bot 提供的渠道数据"""
    try:
        return await client.send_raw(settings, open_id, channel_data)
    except DeliveryError:
        logger.exception("向用户 %s 推送渠道数据失败", open_id)
        raise
    except Exception as e:
        logger.exception("向用户 %s 推送渠道数据失败", open_id)
        raise DeliveryError(f"推送渠道数据失败: {e}") from e
