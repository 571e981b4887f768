"""
Bot 侧活动 (Activity) 数据结构

适配器与 Bot 回调之间交换的统一消息载体。入站时由微信请求映射而来，
出站时由 Bot 通过 TurnContext 追加，再映射回微信响应消息。

所有模型基于标准库 dataclass。
"""

import uuid
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional

CHANNEL_ID = "wechat"


class ActivityTypes(str, Enum):
    """活动类型"""

    MESSAGE = "message"
    EVENT = "event"
    END_OF_CONVERSATION = "endOfConversation"
    DELAY = "delay"           # 模拟延迟，value 为毫秒数
    TYPING = "typing"


@dataclass
class ChannelAccount:
    """会话参与方。微信用户的 id 为其 openid，公众号的 id 为原始 ID"""
    id: str = ""
    name: str = ""


@dataclass
class ConversationAccount:
    id: str = ""
    is_group: bool = False


@dataclass
class Attachment:
    """
    附件

    Attributes:
        content_type: MIME 类型或卡片类型，如 image/jpeg、application/vnd.wechat.news
        content_url:  附件地址
        content:      附件内容，入站时保存微信媒体元数据（media_id 等）
        name:         附件名称，出站时用作视频/图文标题
    """
    content_type: str
    content_url: Optional[str] = None
    content: Any = None
    name: Optional[str] = None


@dataclass
class CardAction:
    type: str = "imBack"
    title: str = ""
    value: Any = None


@dataclass
class SuggestedActions:
    actions: list[CardAction] = field(default_factory=list)


@dataclass
class ConversationReference:
    """
    会话引用，用于 Bot 在 webhook 回合之外主动发消息

    user 为微信用户（主动推送的目标 openid），bot 为公众号自身。
    """
    user: ChannelAccount
    bot: ChannelAccount
    conversation: ConversationAccount
    activity_id: Optional[str] = None
    channel_id: str = CHANNEL_ID

    def get_continuation_activity(self) -> "Activity":
        """构建主动续聊用的 event 活动，from_ 指向用户以便回复路由回该 openid"""
        return Activity(
            type=ActivityTypes.EVENT,
            name="ContinueConversation",
            id=str(uuid.uuid4()),
            channel_id=self.channel_id,
            from_=replace(self.user),
            recipient=replace(self.bot),
            conversation=replace(self.conversation),
            reply_to_id=self.activity_id,
        )


@dataclass
class Activity:
    """
    活动载体

    Attributes:
        type:              活动类型，见 ActivityTypes
        id:                活动 ID，入站时为微信 MsgId
        timestamp:         活动时间
        channel_id:        渠道标识，固定为 wechat
        from_:             发送方，入站时 id 为用户 openid
        recipient:         接收方
        conversation:      会话，微信中以用户 openid 作为会话 ID
        text:              文本内容
        value:             事件值，event 活动中为事件名
        name:              事件名
        attachments:       附件列表
        suggested_actions: 建议操作，出站时映射为微信菜单消息
        channel_data:      渠道原始数据。出站时若设置则不经类型映射直接发送
        reply_to_id:       所回复的活动 ID
    """
    type: str = ActivityTypes.MESSAGE
    id: Optional[str] = None
    timestamp: Optional[datetime] = None
    channel_id: str = CHANNEL_ID
    from_: ChannelAccount = field(default_factory=ChannelAccount)
    recipient: ChannelAccount = field(default_factory=ChannelAccount)
    conversation: ConversationAccount = field(default_factory=ConversationAccount)
    text: Optional[str] = None
    value: Any = None
    name: Optional[str] = None
    attachments: list[Attachment] = field(default_factory=list)
    suggested_actions: Optional[SuggestedActions] = None
    channel_data: Any = None
    reply_to_id: Optional[str] = None

    def create_reply(self, text: Optional[str] = None) -> "Activity":
        """创建一条回复本活动的 message 活动（收发双方互换）"""
        return Activity(
            type=ActivityTypes.MESSAGE,
            timestamp=datetime.now(timezone.utc),
            channel_id=self.channel_id,
            from_=replace(self.recipient),
            recipient=replace(self.from_),
            conversation=replace(self.conversation),
            text=text,
            reply_to_id=self.id,
        )

    def get_conversation_reference(self) -> ConversationReference:
        """保存当前会话引用，供之后主动推送使用"""
        return ConversationReference(
            user=replace(self.from_),
            bot=replace(self.recipient),
            conversation=replace(self.conversation),
            activity_id=self.id,
            channel_id=self.channel_id,
        )
