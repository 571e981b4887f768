"""单个回合的上下文，Bot 回调通过它追加出站活动"""

import asyncio
import logging
import uuid
from dataclasses import replace
from typing import TYPE_CHECKING, Any, Optional, Union

from ..protocol import Activity, ActivityTypes

if TYPE_CHECKING:
    from .adapter import WeChatHttpAdapter

logger = logging.getLogger("wechat-adapter")


class TurnContext:
    """
    回合上下文

    Attributes:
        adapter:    所属适配器
        activity:   本回合的入站活动
        responses:  本回合 Bot 产生的出站活动，由适配器创建并在回调结束后读取
        turn_state: 供 Bot 在回合内暂存数据
    """

    def __init__(self, adapter: "WeChatHttpAdapter", activity: Activity,
                 responses: Optional[list[Activity]] = None):
        self.adapter = adapter
        self.activity = activity
        self.responses: list[Activity] = responses if responses is not None else []
        self.turn_state: dict[str, Any] = {}

    @property
    def responded(self) -> bool:
        return bool(self.responses)

    def _apply_reference(self, activity: Activity) -> Activity:
        """补全出站活动的会话信息：发给入站活动的发送者"""
        activity = replace(activity)
        incoming = self.activity
        if not activity.conversation.id:
            activity.conversation = replace(incoming.conversation)
        if not activity.recipient.id:
            activity.recipient = replace(incoming.from_)
        if not activity.from_.id:
            activity.from_ = replace(incoming.recipient)
        if activity.reply_to_id is None:
            activity.reply_to_id = incoming.id
        activity.channel_id = incoming.channel_id
        return activity

    async def send_activity(self, activity_or_text: Union[Activity, str]) -> str:
        """发送一条活动，返回其资源 ID"""
        ids = await self.send_activities([activity_or_text])
        return ids[0]

    async def send_activities(self, activities: list[Union[Activity, str]]) -> list[str]:
        """
        按顺序处理出站活动:
            - message / endOfConversation: 追加到本回合响应列表
            - delay: 按 value 毫秒数等待
            - 其他类型: 微信不支持，仅记录日志
        """
        ids: list[str] = []
        for item in activities:
            activity = Activity(text=item) if isinstance(item, str) else item
            activity = self._apply_reference(activity)
            logger.info("发送活动 type=%s, reply_to=%s", activity.type, activity.reply_to_id)

            if activity.type == ActivityTypes.DELAY:
                delay_ms = int(activity.value or 0)
                await asyncio.sleep(delay_ms / 1000)
            elif activity.type in (ActivityTypes.MESSAGE, ActivityTypes.END_OF_CONVERSATION):
                if activity.id is None:
                    activity.id = str(uuid.uuid4())
                self.responses.append(activity)
            else:
                logger.info("微信不支持 %s 类型的活动, 已忽略", activity.type)

            ids.append(activity.id or "")
        return ids

    async def update_activity(self, activity: Activity):
        raise NotImplementedError("微信不支持修改已发送的消息")

    async def delete_activity(self, activity_id: str):
        raise NotImplementedError("微信不支持撤回已发送的消息")
