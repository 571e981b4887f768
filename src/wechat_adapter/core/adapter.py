"""
微信公众号适配器

处理流程:
    签名校验 → echostr 回显 → 解密（安全模式）→ 解析 → 映射为 Activity
    → 运行 Bot 回调 → 映射为微信消息 → 被动回复 XML / 后台主动推送

回复方式由 WeChatSettings.passive_response_mode 决定:
    被动模式: 在 HTTP 响应中直接返回一条 XML，一个回合只能回复一条消息，
              多条活动时只保留最后一条（微信平台限制）
    主动模式: 先向微信返回空的 200 防止重试，再通过后台任务队列调用客服消息接口推送
"""

import inspect
import logging
from typing import TYPE_CHECKING, Any, Awaitable, Callable, Optional, Union

from ..protocol import (
    Activity,
    ActivityTypes,
    ConversationReference,
    RequestMessage,
    ResponseMessage,
    SecretInfo,
)
from .crypto import MessageCryptography, verify_signature
from .dispatcher import (
    SUCCESS_BODY,
    MessageClient,
    channel_data_to_xml,
    response_to_xml,
    send_channel_data,
    send_responses,
)
from .errors import AuthenticationError, ConfigurationError
from .mapper import WeChatMessageMapper
from .parser import XML_ERRORS, parse_request, parse_xml_fields
from .task_queue import TaskQueue
from .turn_context import TurnContext

if TYPE_CHECKING:
    from ..models import WeChatSettings

logger = logging.getLogger("wechat-adapter")

# Bot 回调: 接收 TurnContext，通过 send_activity 追加出站活动
BotCallback = Callable[[TurnContext], Union[None, Awaitable[None]]]
TurnErrorHandler = Callable[[TurnContext, Exception], Union[None, Awaitable[None]]]
# 主动模式下由托管层提供，用于在运行 Bot 之前先向微信返回 200
Acknowledge = Callable[[], Awaitable[None]]


class WeChatHttpAdapter:
    """连接 Bot 与微信公众号的适配器"""

    def __init__(
        self,
        client: MessageClient,
        mapper: Optional[WeChatMessageMapper] = None,
        task_queue: Optional[TaskQueue] = None,
        *,
        on_turn_error: Optional[TurnErrorHandler] = None,
    ):
        """
        Args:
            client:        微信接口客户端，用于主动推送和获取 access_token
            mapper:        消息映射器，不传则使用默认实现
            task_queue:    后台任务队列，主动模式下必须提供
            on_turn_error: Bot 回调异常处理函数
        """
        self.client = client
        self.mapper = mapper or WeChatMessageMapper()
        self.task_queue = task_queue
        self._on_turn_error: Optional[TurnErrorHandler] = on_turn_error

    def on_turn_error(self, fn: TurnErrorHandler) -> TurnErrorHandler:
        """注册 Bot 回调异常处理函数（装饰器）。注册后回调异常不再向上抛出"""
        self._on_turn_error = fn
        return fn

    def check_settings(self, settings: "WeChatSettings"):
        """启动时校验配置与适配器是否匹配"""
        if not settings.passive_response_mode and self.task_queue is None:
            logger.error("主动推送模式未配置后台任务队列")
            raise ConfigurationError("主动推送模式需要提供后台任务队列")

    async def get_access_token(self, settings: "WeChatSettings", force_refresh: bool = False) -> str:
        return await self.client.get_access_token(settings, force_refresh)

    # -------- webhook 入口 --------

    async def process(
        self,
        body: Union[str, bytes],
        secret_info: SecretInfo,
        settings: "WeChatSettings",
        bot_callback: BotCallback,
        acknowledge: Optional[Acknowledge] = None,
    ) -> Optional[str]:
        """
        处理一次微信回调。

        Args:
            body:         请求体 XML
            secret_info:  查询参数中的签名信息
            settings:     公众号配置
            bot_callback: Bot 回合逻辑
            acknowledge:  主动模式下在运行 Bot 前调用，用于提前结束 HTTP 响应

        Returns:
            echostr 原文 / 被动回复 XML / 主动模式下为 None

        Raises:
            AuthenticationError: 签名校验失败
            DecryptionError:     安全模式消息解密失败
            ConfigurationError:  主动模式未提供后台任务队列等
        """
        logger.info("收到微信请求")
        if secret_info is None:
            raise ValueError("secret_info 不能为空")

        if not verify_signature(
            settings.token, secret_info.timestamp, secret_info.nonce,
            secret_info.webhook_signature,
        ):
            logger.warning("签名校验失败: timestamp=%s nonce=%s",
                           secret_info.timestamp, secret_info.nonce)
            raise AuthenticationError("签名校验失败")

        # 配置服务器地址时微信只校验 echostr 回显
        if secret_info.echo_string:
            return secret_info.echo_string

        if not settings.passive_response_mode:
            self.check_settings(settings)
            if acknowledge is not None:
                await acknowledge()

        try:
            request, crypto = self._read_request(settings, body, secret_info)
            activity = self.mapper.to_activity(request)
            response = await self._process_activity(settings, activity, bot_callback)
        except Exception:
            logger.exception("处理微信请求失败")
            raise

        if not settings.passive_response_mode:
            return None

        reply = self._serialize(response)
        if crypto is not None and reply != SUCCESS_BODY:
            reply = crypto.encrypt_message(reply, secret_info.nonce, secret_info.timestamp)
        return reply

    def _read_request(self, settings: "WeChatSettings", body: Union[str, bytes],
                      secret_info: SecretInfo) -> tuple[RequestMessage, Optional[MessageCryptography]]:
        """必要时解密请求体并解析为 RequestMessage"""
        try:
            envelope = parse_xml_fields(body)
        except XML_ERRORS:
            return parse_request(body), None

        encrypt = envelope.get("Encrypt")
        if encrypt and settings.token:
            crypto = MessageCryptography.from_settings(settings, secret_info)
            plain = crypto.decrypt_message(encrypt, secret_info)
            return parse_request(plain), crypto
        return parse_request(body), None

    # -------- 主动消息 --------

    async def continue_conversation(
        self,
        settings: "WeChatSettings",
        bot_app_id: str,
        reference: ConversationReference,
        callback: BotCallback,
    ):
        """
        在 webhook 回合之外主动向用户发消息。

        使用保存的会话引用构造续聊活动运行 Bot 回调，产生的消息直接通过客服接口推送。
        """
        if not bot_app_id or not bot_app_id.strip():
            raise ValueError("bot_app_id 不能为空")
        if reference is None:
            raise ValueError("reference 不能为空")
        if callback is None:
            raise ValueError("callback 不能为空")

        logger.info("发送主动消息, bot_app_id=%s", bot_app_id)
        activity = reference.get_continuation_activity()
        context = TurnContext(self, activity, responses=[])
        if not await self._run_pipeline(context, callback):
            return
        await self._deliver(settings, context.responses, activity.from_.id)

    # -------- 回合 --------

    async def _run_pipeline(self, context: TurnContext, callback: BotCallback) -> bool:
        """运行 Bot 回调。异常交由 on_turn_error 处理时返回 False"""
        try:
            result = callback(context)
            if inspect.isawaitable(result):
                await result
        except Exception as e:
            if self._on_turn_error is None:
                logger.exception("Bot 回合处理出错")
                raise
            logger.exception("Bot 回合处理出错, 交由 on_turn_error 处理")
            handled = self._on_turn_error(context, e)
            if inspect.isawaitable(handled):
                await handled
            return False
        return True

    async def _process_activity(self, settings: "WeChatSettings", activity: Activity,
                                callback: BotCallback) -> Any:
        """运行回合。被动模式返回待回复的响应，主动模式提交后台推送并返回 None"""
        context = TurnContext(self, activity, responses=[])
        if not await self._run_pipeline(context, callback):
            return None

        activities = context.responses
        open_id = activity.from_.id

        if settings.passive_response_mode:
            return self._passive_response(activities)

        if self.task_queue is None:
            logger.error("主动推送模式未配置后台任务队列")
            raise ConfigurationError("主动推送模式需要提供后台任务队列")

        async def work():
            await self._deliver(settings, activities, open_id)

        self.task_queue.submit(work)
        logger.info("已提交后台推送任务: 用户 %s, %d 条活动", open_id, len(activities))
        return None

    def _passive_response(self, activities: list[Activity]) -> Any:
        """被动模式只能回复一条消息，取最后一条 message 活动映射结果的最后一条"""
        response: Any = None
        messages = [a for a in activities if a is not None and a.type == ActivityTypes.MESSAGE]
        if len(messages) > 1:
            logger.info("被动回复每回合只能回复一条消息, 丢弃前 %d 条活动", len(messages) - 1)

        for activity in messages:
            if activity.channel_data is not None:
                response = activity.channel_data
            else:
                mapped = self.mapper.to_wechat_messages(activity)
                response = mapped[-1] if mapped else None
        return response

    @staticmethod
    def _serialize(response: Any) -> str:
        if response is None:
            return SUCCESS_BODY
        if isinstance(response, ResponseMessage):
            return response_to_xml(response)
        return channel_data_to_xml(response)

    async def _deliver(self, settings: "WeChatSettings", activities: list[Activity], open_id: str):
        """主动推送本回合全部 message 活动，任一失败即中止"""
        for activity in activities:
            if activity is None or activity.type != ActivityTypes.MESSAGE:
                continue
            if activity.channel_data is not None:
                await send_channel_data(self.client, settings, activity.channel_data, open_id)
            else:
                responses = self.mapper.to_wechat_messages(activity)
                await send_responses(self.client, settings, responses, open_id)
