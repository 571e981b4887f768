"""测试公共夹具：公众号配置、签名参数与假的微信客户端"""

from typing import Any, Optional

import pytest

from wechat_adapter.core.crypto import compute_signature
from wechat_adapter.models import WeChatSettings
from wechat_adapter.protocol import SecretInfo

TOKEN = "test-token"
APP_ID = "wx1234567890abcdef"
APP_SECRET = "test-secret"
# 微信文档示例中的 EncodingAESKey
AES_KEY = "abcdefghijklmnopqrstuvwxyz0123456789ABCDEFG"


def make_settings(**overrides) -> WeChatSettings:
    values = {
        "token": TOKEN,
        "app_id": APP_ID,
        "app_secret": APP_SECRET,
        "encoding_aes_key": AES_KEY,
        "passive_response_mode": True,
    }
    values.update(overrides)
    return WeChatSettings(**values)


def signed(timestamp: str = "1700000000", nonce: str = "nonce-1",
           token: str = TOKEN, **kwargs) -> SecretInfo:
    """构造带合法 signature 的 SecretInfo"""
    return SecretInfo(
        webhook_signature=compute_signature(token, timestamp, nonce),
        timestamp=timestamp,
        nonce=nonce,
        **kwargs,
    )


def text_xml(content: str = "hello", open_id: str = "user123",
             bot_id: str = "gh_bot", msg_id: str = "1000001") -> str:
    return (
        "<xml>"
        f"<ToUserName><![CDATA[{bot_id}]]></ToUserName>"
        f"<FromUserName><![CDATA[{open_id}]]></FromUserName>"
        "<CreateTime>1700000000</CreateTime>"
        "<MsgType><![CDATA[text]]></MsgType>"
        f"<Content><![CDATA[{content}]]></Content>"
        f"<MsgId>{msg_id}</MsgId>"
        "</xml>"
    )


class FakeWeChatClient:
    """记录所有推送调用的假客户端"""

    def __init__(self, fail_on: Optional[str] = None):
        self.sent: list[tuple[str, tuple]] = []
        self.fail_on = fail_on

    def _record(self, method: str, *args: Any) -> dict:
        if method == self.fail_on:
            raise RuntimeError(f"{method} failed")
        self.sent.append((method, args))
        return {"errcode": 0, "errmsg": "ok"}

    async def get_access_token(self, settings, force_refresh: bool = False) -> str:
        return "fake-token"

    async def send_text(self, settings, open_id, content):
        return self._record("send_text", open_id, content)

    async def send_image(self, settings, open_id, media_id):
        return self._record("send_image", open_id, media_id)

    async def send_voice(self, settings, open_id, media_id):
        return self._record("send_voice", open_id, media_id)

    async def send_video(self, settings, open_id, media_id, title="", description=""):
        return self._record("send_video", open_id, media_id, title, description)

    async def send_music(self, settings, open_id, title, description, music_url,
                         hq_music_url, thumb_media_id):
        return self._record("send_music", open_id, title, music_url)

    async def send_news(self, settings, open_id, articles):
        return self._record("send_news", open_id, articles)

    async def send_mpnews(self, settings, open_id, media_id):
        return self._record("send_mpnews", open_id, media_id)

    async def send_message_menu(self, settings, open_id, menu):
        return self._record("send_message_menu", open_id, menu)

    async def send_raw(self, settings, open_id, payload):
        return self._record("send_raw", open_id, payload)


class FakeTaskQueue:
    """只收集工作单元，由测试手动执行"""

    def __init__(self):
        self.items = []

    def submit(self, work):
        self.items.append(work)

    async def drain(self):
        while self.items:
            await self.items.pop(0)()


@pytest.fixture
def settings() -> WeChatSettings:
    return make_settings()


@pytest.fixture
def active_settings() -> WeChatSettings:
    return make_settings(passive_response_mode=False)


@pytest.fixture
def fake_client() -> FakeWeChatClient:
    return FakeWeChatClient()
