"""
微信回调 HTTP 服务端

负责:
    - GET  {path}:       服务器地址校验，回显 echostr
    - POST {path}:       接收微信推送的消息与事件
    - GET  /api/health:  健康检查接口
"""

import logging
from typing import TYPE_CHECKING, Optional

from aiohttp import web

from ..protocol import ActivityTypes, SecretInfo
from .adapter import BotCallback, WeChatHttpAdapter
from .errors import AuthenticationError, ConfigurationError, DecryptionError
from .turn_context import TurnContext

if TYPE_CHECKING:
    from ..models import WeChatSettings

logger = logging.getLogger("wechat-adapter")


async def echo_bot(context: TurnContext):
    """默认回调：原样回显文本消息，关注时发送欢迎语"""
    activity = context.activity
    if activity.type == ActivityTypes.MESSAGE and activity.text:
        await context.send_activity(activity.text)
    elif activity.type == ActivityTypes.EVENT and activity.name == "subscribe":
        await context.send_activity("感谢关注")


class HttpServer:
    """微信回调服务端，搭配 WeChatHttpAdapter 使用"""

    def __init__(
        self,
        adapter: WeChatHttpAdapter,
        settings: "WeChatSettings",
        bot_callback: Optional[BotCallback] = None,
        *,
        host: str = "0.0.0.0",
        port: int = 8080,
        path: str = "/api/messages",
    ):
        adapter.check_settings(settings)
        self.adapter = adapter
        self.settings = settings
        self.bot_callback: BotCallback = bot_callback or echo_bot
        self.host = host
        self.port = port
        self.path = path
        self._runner: Optional[web.AppRunner] = None

    # -------- HTTP 路由 --------

    def create_app(self) -> web.Application:
        app = web.Application()
        app.router.add_get(self.path, self._handle_verify)
        app.router.add_post(self.path, self._handle_message)
        app.router.add_get("/api/health", self._handle_health)
        return app

    async def _handle_health(self, request: web.Request) -> web.Response:
        """GET /api/health: 返回服务运行状态"""
        return web.json_response({
            "ok": True,
            "passive_response_mode": self.settings.passive_response_mode,
        })

    async def _handle_verify(self, request: web.Request) -> web.Response:
        """GET: 微信后台配置服务器地址时的校验请求"""
        secret_info = SecretInfo.from_query(request.query)
        if not secret_info.echo_string:
            return web.Response(status=400, text="missing echostr")
        return await self._process(request, b"", secret_info)

    async def _handle_message(self, request: web.Request) -> web.StreamResponse:
        """POST: 微信推送的消息与事件"""
        body = await request.read()
        return await self._process(request, body, SecretInfo.from_query(request.query))

    async def _process(self, request: web.Request, body: bytes,
                       secret_info: SecretInfo) -> web.StreamResponse:
        ack: Optional[web.StreamResponse] = None

        async def acknowledge():
            # 主动模式下先结束响应，防止微信 5 秒超时后重试
            nonlocal ack
            ack = web.StreamResponse(status=200)
            ack.content_type = "text/plain"
            await ack.prepare(request)
            await ack.write_eof()

        try:
            reply = await self.adapter.process(
                body, secret_info, self.settings, self.bot_callback, acknowledge=acknowledge,
            )
        except AuthenticationError:
            return web.Response(status=401, text="signature verification failed")
        except DecryptionError:
            logger.warning("消息解密失败, 来自 %s", request.remote)
            return self._error_response(ack, 400, "decrypt failed")
        except ConfigurationError as e:
            logger.error("适配器配置错误: %s", e)
            return self._error_response(ack, 500, "configuration error")
        except Exception:
            logger.exception("处理回调失败")
            return self._error_response(ack, 500, "internal error")

        if ack is not None:
            return ack
        if not reply:
            return web.Response(status=200, text="")
        content_type = "text/xml" if reply.startswith("<") else "text/plain"
        return web.Response(status=200, text=reply, content_type=content_type)

    @staticmethod
    def _error_response(ack: Optional[web.StreamResponse], status: int,
                        text: str) -> web.StreamResponse:
        """已提前应答时只能返回原响应"""
        if ack is not None:
            return ack
        return web.Response(status=status, text=text)

    # -------- 启停 --------

    async def start(self):
        """启动 HTTP 服务"""
        app = self.create_app()
        self._runner = web.AppRunner(app)
        await self._runner.setup()
        site = web.TCPSite(self._runner, self.host, self.port)
        await site.start()
        mode = "被动回复" if self.settings.passive_response_mode else "主动推送"
        logger.info("HTTP 服务端已启动: http://%s:%d%s (%s)", self.host, self.port, self.path, mode)

    async def stop(self):
        """停止服务"""
        if self._runner:
            await self._runner.cleanup()
            self._runner = None
            logger.info("HTTP 服务端已停止")
