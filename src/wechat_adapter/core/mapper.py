"""
微信消息与 Activity 之间的双向映射

入站:  RequestMessage → Activity
出站:  Activity → [ResponseMessage, ...]

两个方向都是纯函数，不访问网络。出站附件必须已携带微信 media_id
（本适配器不负责上传素材），只有图片在缺少 media_id 时会退化为单图文。
"""

import logging
import uuid
from datetime import datetime, timezone
from typing import Any, Optional

from ..protocol import (
    Activity,
    ActivityTypes,
    Article,
    Attachment,
    ChannelAccount,
    ConversationAccount,
    EventRequest,
    ImageRequest,
    ImageResponse,
    LinkRequest,
    LocationRequest,
    MenuItem,
    MessageMenu,
    MessageMenuResponse,
    MPNewsResponse,
    MusicResponse,
    NewsResponse,
    NoResponse,
    RequestMessage,
    ResponseMessage,
    TextRequest,
    TextResponse,
    VideoRequest,
    VideoResponse,
    VoiceRequest,
    VoiceResponse,
)

logger = logging.getLogger("wechat-adapter")

# 客服消息与被动回复的文本上限均为 2048 字节
MAX_TEXT_BYTES = 2048

# 微信专用附件类型
LOCATION_CONTENT_TYPE = "application/vnd.wechat.location"
LINK_CONTENT_TYPE = "application/vnd.wechat.link"
NEWS_CONTENT_TYPE = "application/vnd.wechat.news"
MPNEWS_CONTENT_TYPE = "application/vnd.wechat.mpnews"
MUSIC_CONTENT_TYPE = "application/vnd.wechat.music"

# 可映射为图文消息的卡片类型
CARD_CONTENT_TYPES = (
    "application/vnd.microsoft.card.hero",
    "application/vnd.microsoft.card.thumbnail",
)


def split_text(text: str, max_bytes: int = MAX_TEXT_BYTES) -> list[str]:
    """按 UTF-8 字节数切分文本，不会截断多字节字符"""
    chunks: list[str] = []
    current: list[str] = []
    size = 0
    for ch in text:
        n = len(ch.encode("utf-8"))
        if current and size + n > max_bytes:
            chunks.append("".join(current))
            current, size = [], 0
        current.append(ch)
        size += n
    if current:
        chunks.append("".join(current))
    return chunks


def _as_dict(value: Any) -> dict:
    return value if isinstance(value, dict) else {}


class WeChatMessageMapper:
    """微信消息映射器"""

    # -------- 入站 --------

    def to_activity(self, request: RequestMessage) -> Activity:
        """将微信请求映射为 Activity，from_.id 为用户 openid，出站时据此路由"""
        if request.create_time:
            timestamp = datetime.fromtimestamp(request.create_time, tz=timezone.utc)
        else:
            timestamp = datetime.now(timezone.utc)

        activity = Activity(
            type=ActivityTypes.MESSAGE,
            id=request.msg_id or str(uuid.uuid4()),
            timestamp=timestamp,
            from_=ChannelAccount(id=request.from_user_name, name="user"),
            recipient=ChannelAccount(id=request.to_user_name, name="bot"),
            conversation=ConversationAccount(id=request.from_user_name),
            channel_data=request.raw,
        )

        if isinstance(request, TextRequest):
            activity.text = request.content
        elif isinstance(request, ImageRequest):
            activity.attachments.append(Attachment(
                content_type="image/*",
                content_url=request.pic_url,
                content={"media_id": request.media_id},
            ))
        elif isinstance(request, VoiceRequest):
            activity.text = request.recognition
            activity.attachments.append(Attachment(
                content_type=f"audio/{request.format.lower() or '*'}",
                content={"media_id": request.media_id, "format": request.format},
            ))
        elif isinstance(request, VideoRequest):
            activity.attachments.append(Attachment(
                content_type="video/*",
                content={
                    "media_id": request.media_id,
                    "thumb_media_id": request.thumb_media_id,
                    "short": request.short,
                },
            ))
        elif isinstance(request, LocationRequest):
            activity.attachments.append(Attachment(
                content_type=LOCATION_CONTENT_TYPE,
                name=request.label,
                content={
                    "latitude": request.location_x,
                    "longitude": request.location_y,
                    "scale": request.scale,
                    "label": request.label,
                },
            ))
        elif isinstance(request, LinkRequest):
            activity.text = request.title
            activity.attachments.append(Attachment(
                content_type=LINK_CONTENT_TYPE,
                content_url=request.url,
                name=request.title,
                content={"title": request.title, "description": request.description},
            ))
        elif isinstance(request, EventRequest):
            activity.type = ActivityTypes.EVENT
            activity.name = request.event
            activity.value = request.event

        return activity

    # -------- 出站 --------

    def to_wechat_messages(self, activity: Activity) -> list[ResponseMessage]:
        """
        将一条 Activity 映射为若干微信响应消息。

        - suggested_actions → 菜单消息（活动文本作为菜单头）
        - 文本 → 文本消息，超长时切分
        - 附件 → 按 content_type 映射为图片/语音/视频/图文/音乐
        - 均无法映射 → [NoResponse]
        """
        if activity.type != ActivityTypes.MESSAGE:
            return []

        to_user = activity.recipient.id
        from_user = activity.from_.id
        responses: list[ResponseMessage] = []

        actions = activity.suggested_actions.actions if activity.suggested_actions else []
        if actions:
            items = [
                MenuItem(
                    id=str(action.value if action.value is not None else i),
                    content=action.title or str(action.value),
                )
                for i, action in enumerate(actions)
            ]
            responses.append(MessageMenuResponse(
                to_user_name=to_user,
                from_user_name=from_user,
                menu=MessageMenu(head_content=activity.text or "", items=items),
            ))
        elif activity.text:
            for chunk in split_text(activity.text):
                responses.append(TextResponse(
                    to_user_name=to_user, from_user_name=from_user, content=chunk,
                ))

        for attachment in activity.attachments:
            response = self._map_attachment(attachment)
            if response is None:
                logger.debug("附件类型 %s 无法映射为微信消息, 已忽略", attachment.content_type)
                continue
            response.to_user_name = to_user
            response.from_user_name = from_user
            responses.append(response)

        if not responses:
            responses.append(NoResponse(to_user_name=to_user, from_user_name=from_user))
        return responses

    def _map_attachment(self, attachment: Attachment) -> Optional[ResponseMessage]:
        content_type = (attachment.content_type or "").lower()
        content = _as_dict(attachment.content)
        media_id = content.get("media_id")

        if content_type == NEWS_CONTENT_TYPE:
            raw_articles = attachment.content if isinstance(attachment.content, list) \
                else content.get("articles", [])
            articles = [self._article(a) for a in raw_articles]
            return NewsResponse(articles=articles) if articles else None

        if content_type == MPNEWS_CONTENT_TYPE:
            return MPNewsResponse(media_id=media_id) if media_id else None

        if content_type == MUSIC_CONTENT_TYPE:
            return MusicResponse(
                title=content.get("title", attachment.name or ""),
                description=content.get("description", ""),
                music_url=content.get("music_url", attachment.content_url or ""),
                hq_music_url=content.get("hq_music_url", ""),
                thumb_media_id=content.get("thumb_media_id", ""),
            )

        if content_type in CARD_CONTENT_TYPES:
            return NewsResponse(articles=[self._card_article(content)])

        if content_type.startswith("image/"):
            if media_id:
                return ImageResponse(media_id=media_id)
            if attachment.content_url:
                return NewsResponse(articles=[Article(
                    title=attachment.name or "",
                    url=attachment.content_url,
                    pic_url=attachment.content_url,
                )])
            return None

        if content_type.startswith(("audio/", "voice/")):
            return VoiceResponse(media_id=media_id) if media_id else None

        if content_type.startswith("video/"):
            if not media_id:
                return None
            return VideoResponse(
                media_id=media_id,
                title=content.get("title", attachment.name or ""),
                description=content.get("description", ""),
            )

        return None

    @staticmethod
    def _article(data: Any) -> Article:
        data = _as_dict(data)
        return Article(
            title=data.get("title", ""),
            description=data.get("description", ""),
            url=data.get("url", ""),
            pic_url=data.get("pic_url", data.get("picurl", "")),
        )

    @staticmethod
    def _card_article(card: dict) -> Article:
        """hero/thumbnail 卡片 → 图文文章：首图作封面，tap 或首个按钮作链接"""
        images = card.get("images") or []
        buttons = card.get("buttons") or []
        tap = _as_dict(card.get("tap"))
        url = tap.get("value") or (_as_dict(buttons[0]).get("value") if buttons else "") or ""
        return Article(
            title=card.get("title", ""),
            description=card.get("subtitle") or card.get("text") or "",
            url=url,
            pic_url=_as_dict(images[0]).get("url", "") if images else "",
        )
