"""
微信公众号接口客户端

负责:
    - 鉴权: 获取并缓存 access_token，过期前自动刷新，并发回合只刷新一次
    - 推送: 调用客服消息接口 /cgi-bin/message/custom/send 发送各类消息

只覆盖适配器需要的接口，不是通用的微信 SDK。
"""

import asyncio
import json
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import TYPE_CHECKING, Any, Optional

import aiohttp

from ..protocol import Article, MessageMenu
from .errors import DeliveryError, WeChatApiError

if TYPE_CHECKING:
    from ..models import WeChatSettings

logger = logging.getLogger("wechat-adapter")

# access_token 失效相关的 errcode，遇到时强制刷新并重试一次
TOKEN_EXPIRED_ERRCODES = frozenset({40001, 40014, 42001})

# 提前刷新的余量
TOKEN_REFRESH_MARGIN = timedelta(seconds=300)


@dataclass
class AccessToken:
    value: str
    expires_at: datetime

    @property
    def expired(self) -> bool:
        return datetime.now(timezone.utc) >= self.expires_at


class WeChatClient:
    """微信公众号接口客户端"""

    API_BASE = "https://api.weixin.qq.com"

    def __init__(
        self,
        *,
        api_base: Optional[str] = None,
        proxy: Optional[str] = None,
        timeout: float = 30,
    ):
        """
        Args:
            api_base: 接口地址，测试时可指向本地假服务
            proxy:    出站 HTTP 代理地址（用于 IP 白名单场景）
            timeout:  单次请求超时秒数
        """
        self.api_base = (api_base or self.API_BASE).rstrip("/")
        self.proxy = proxy
        self.timeout = timeout

        self._session: Optional[aiohttp.ClientSession] = None
        self._tokens: dict[str, AccessToken] = {}
        self._token_locks: dict[str, asyncio.Lock] = {}

    # -------- 生命周期 --------

    async def start(self):
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=self.timeout),
            )

    async def close(self):
        if self._session and not self._session.closed:
            await self._session.close()
        self._session = None

    async def __aenter__(self) -> "WeChatClient":
        await self.start()
        return self

    async def __aexit__(self, *exc):
        await self.close()

    @property
    def _http(self) -> aiohttp.ClientSession:
        """获取 HTTP 会话，未启动时抛出异常"""
        if self._session is None or self._session.closed:
            raise RuntimeError("WeChatClient 尚未启动, 请先调用 start()")
        return self._session

    # -------- access token --------

    async def get_access_token(self, settings: "WeChatSettings", force_refresh: bool = False) -> str:
        """获取 access_token，过期前自动刷新"""
        app_id = settings.app_id
        cached = self._tokens.get(app_id)
        if cached and not cached.expired and not force_refresh:
            return cached.value

        lock = self._token_locks.setdefault(app_id, asyncio.Lock())
        async with lock:
            # 等锁期间可能已被其他回合刷新
            current = self._tokens.get(app_id)
            if current and not current.expired and (not force_refresh or current is not cached):
                return current.value

            now = datetime.now(timezone.utc)
            async with self._http.get(f"{self.api_base}/cgi-bin/token", params={
                "grant_type": "client_credential",
                "appid": app_id,
                "secret": settings.app_secret,
            }, proxy=self.proxy) as resp:
                data = json.loads(await resp.text() or "{}")

            if "access_token" not in data:
                raise WeChatApiError(
                    int(data.get("errcode", -1)), data.get("errmsg", f"鉴权失败: {data}"),
                    "/cgi-bin/token",
                )

            expires_in = int(data.get("expires_in", 7200))
            token = AccessToken(
                value=data["access_token"],
                expires_at=now + timedelta(seconds=expires_in) - TOKEN_REFRESH_MARGIN,
            )
            self._tokens[app_id] = token
            logger.info("获取 access_token 成功 (%s), 有效期至 %s", app_id, token.expires_at)
            return token.value

    # -------- HTTP --------

    async def api_post(self, settings: "WeChatSettings", path: str, body: Any) -> dict:
        """
        调用需要 access_token 的 POST 接口。

        errcode 非 0 时抛出 WeChatApiError；access_token 失效时强制刷新后重试一次。
        """
        if isinstance(body, (str, bytes)):
            payload = body.encode("utf-8") if isinstance(body, str) else body
        else:
            payload = json.dumps(body, ensure_ascii=False).encode("utf-8")

        force_refresh = False
        for attempt in range(2):
            token = await self.get_access_token(settings, force_refresh=force_refresh)
            async with self._http.post(
                f"{self.api_base}{path}",
                params={"access_token": token},
                data=payload,
                headers={"Content-Type": "application/json; charset=utf-8"},
                proxy=self.proxy,
            ) as resp:
                text = await resp.text()
                logger.debug("POST %s → %s %s", path, resp.status, text[:200])
                if resp.status >= 400:
                    raise DeliveryError(f"POST {path} 返回 HTTP {resp.status}")

            data = json.loads(text) if text else {}
            errcode = int(data.get("errcode", 0))
            if errcode == 0:
                return data
            if errcode in TOKEN_EXPIRED_ERRCODES and attempt == 0:
                logger.warning("access_token 已失效 (errcode=%s), 刷新后重试", errcode)
                self._tokens.pop(settings.app_id, None)
                force_refresh = True
                continue
            raise WeChatApiError(errcode, data.get("errmsg", ""), path)

    async def _send(self, settings: "WeChatSettings", open_id: str, msg_type: str, content: dict) -> dict:
        logger.info("推送 %s 消息给 %s", msg_type, open_id)
        return await self.api_post(settings, "/cgi-bin/message/custom/send", {
            "touser": open_id,
            "msgtype": msg_type,
            msg_type: content,
        })

    # -------- 发送消息 --------

    async def send_text(self, settings: "WeChatSettings", open_id: str, content: str) -> dict:
        return await self._send(settings, open_id, "text", {"content": content})

    async def send_image(self, settings: "WeChatSettings", open_id: str, media_id: str) -> dict:
        return await self._send(settings, open_id, "image", {"media_id": media_id})

    async def send_voice(self, settings: "WeChatSettings", open_id: str, media_id: str) -> dict:
        return await self._send(settings, open_id, "voice", {"media_id": media_id})

    async def send_video(self, settings: "WeChatSettings", open_id: str, media_id: str,
                         title: str = "", description: str = "",
                         thumb_media_id: str = "") -> dict:
        return await self._send(settings, open_id, "video", {
            "media_id": media_id,
            "thumb_media_id": thumb_media_id,
            "title": title,
            "description": description,
        })

    async def send_music(self, settings: "WeChatSettings", open_id: str, title: str,
                         description: str, music_url: str, hq_music_url: str,
                         thumb_media_id: str) -> dict:
        return await self._send(settings, open_id, "music", {
            "title": title,
            "description": description,
            "musicurl": music_url,
            "hqmusicurl": hq_music_url,
            "thumb_media_id": thumb_media_id,
        })

    async def send_news(self, settings: "WeChatSettings", open_id: str,
                        articles: list[Article]) -> dict:
        """图文消息，微信只展示第 1 篇"""
        return await self._send(settings, open_id, "news", {
            "articles": [
                {
                    "title": a.title,
                    "description": a.description,
                    "url": a.url,
                    "picurl": a.pic_url,
                }
                for a in articles
            ],
        })

    async def send_mpnews(self, settings: "WeChatSettings", open_id: str, media_id: str) -> dict:
        return await self._send(settings, open_id, "mpnews", {"media_id": media_id})

    async def send_message_menu(self, settings: "WeChatSettings", open_id: str,
                                menu: MessageMenu) -> dict:
        return await self._send(settings, open_id, "msgmenu", {
            "head_content": menu.head_content,
            "list": [{"id": item.id, "content": item.content} for item in menu.items],
            "tail_content": menu.tail_content,
        })

    async def send_raw(self, settings: "WeChatSettings", open_id: str, payload: Any) -> dict:
        """原样发送 Bot 提供的消息体，open_id 仅用于日志"""
        logger.info("推送原始消息给 %s", open_id)
        return await self.api_post(settings, "/cgi-bin/message/custom/send", payload)
