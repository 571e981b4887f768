"""WeChatHttpAdapter 回合处理"""

import xml.etree.ElementTree as ET

import pytest
from conftest import TOKEN, FakeTaskQueue, FakeWeChatClient, signed, text_xml

from wechat_adapter.core.adapter import WeChatHttpAdapter
from wechat_adapter.core.crypto import MessageCryptography, compute_signature
from wechat_adapter.core.errors import (
    AuthenticationError,
    ConfigurationError,
    DecryptionError,
)
from wechat_adapter.protocol import (
    Activity,
    ActivityTypes,
    ChannelAccount,
    ConversationAccount,
    ConversationReference,
    SecretInfo,
)


class _Recorder:
    """记录被调用次数的 Bot 回调"""

    def __init__(self, *replies):
        self.replies = replies
        self.contexts = []

    async def __call__(self, context):
        self.contexts.append(context)
        for reply in self.replies:
            await context.send_activity(reply)

    @property
    def called(self) -> bool:
        return bool(self.contexts)


def _adapter(client=None, task_queue=None) -> WeChatHttpAdapter:
    return WeChatHttpAdapter(client or FakeWeChatClient(), task_queue=task_queue)


class TestVerification:

    @pytest.mark.asyncio
    async def test_echo_string_returned_verbatim(self, settings):
        bot = _Recorder("x")
        reply = await _adapter().process(b"not xml", signed(echo_string="12345"), settings, bot)
        assert reply == "12345"
        assert not bot.called

    @pytest.mark.asyncio
    async def test_bad_signature_rejected_before_parsing(self, settings):
        bot = _Recorder("x")
        info = SecretInfo(webhook_signature="0" * 40, timestamp="1", nonce="n")
        with pytest.raises(AuthenticationError):
            await _adapter().process(text_xml(), info, settings, bot)
        assert not bot.called

    @pytest.mark.asyncio
    async def test_non_ascii_signature_rejected(self, settings):
        bot = _Recorder("x")
        info = SecretInfo(webhook_signature="签名", timestamp="1", nonce="n")
        with pytest.raises(AuthenticationError):
            await _adapter().process(text_xml(), info, settings, bot)
        assert not bot.called

    @pytest.mark.asyncio
    async def test_missing_secret_info(self, settings):
        with pytest.raises(ValueError):
            await _adapter().process(text_xml(), None, settings, _Recorder())


class TestPassiveMode:

    @pytest.mark.asyncio
    async def test_inbound_activity(self, settings):
        bot = _Recorder()
        await _adapter().process(text_xml("hello", open_id="user123"), signed(), settings, bot)
        activity = bot.contexts[0].activity
        assert activity.type == ActivityTypes.MESSAGE
        assert activity.text == "hello"
        assert activity.from_.id == "user123"

    @pytest.mark.asyncio
    async def test_only_last_activity_is_returned(self, settings):
        bot = _Recorder("one", "two", "three")
        reply = await _adapter().process(text_xml(), signed(), settings, bot)
        root = ET.fromstring(reply)
        assert root.findtext("Content") == "three"
        assert root.findtext("ToUserName") == "user123"
        assert root.findtext("FromUserName") == "gh_bot"

    @pytest.mark.asyncio
    async def test_no_reply_answers_success(self, settings):
        reply = await _adapter().process(text_xml(), signed(), settings, _Recorder())
        assert reply == "success"

    @pytest.mark.asyncio
    async def test_channel_data_used_as_reply(self, settings):
        raw = "<xml><MsgType>text</MsgType><Content>raw</Content></xml>"
        bot = _Recorder(Activity(text="ignored", channel_data=raw))
        reply = await _adapter().process(text_xml(), signed(), settings, bot)
        assert reply == raw

    @pytest.mark.asyncio
    async def test_sync_callback(self, settings):
        seen = []
        reply = await _adapter().process(text_xml(), signed(), settings, seen.append)
        assert len(seen) == 1
        assert reply == "success"

    @pytest.mark.asyncio
    async def test_encrypted_request_gets_encrypted_reply(self, settings):
        crypto = MessageCryptography(TOKEN, settings.encoding_aes_key, settings.app_id)
        encrypted = crypto.encrypt(text_xml("secret"))
        body = (
            "<xml><ToUserName><![CDATA[gh_bot]]></ToUserName>"
            f"<Encrypt><![CDATA[{encrypted}]]></Encrypt></xml>"
        )
        info = signed(msg_signature=compute_signature(TOKEN, "1700000000", "nonce-1", encrypted))
        bot = _Recorder("echo")

        reply = await _adapter().process(body, info, settings, bot)

        assert bot.contexts[0].activity.text == "secret"
        envelope = ET.fromstring(reply)
        assert envelope.findtext("Nonce") == "nonce-1"
        inner = ET.fromstring(crypto.decrypt(envelope.findtext("Encrypt")))
        assert inner.findtext("Content") == "echo"

    @pytest.mark.asyncio
    async def test_tampered_encrypted_request(self, settings):
        body = "<xml><Encrypt><![CDATA[AAAA]]></Encrypt></xml>"
        bot = _Recorder()
        with pytest.raises(DecryptionError):
            await _adapter().process(body, signed(), settings, bot)
        assert not bot.called


class TestActiveMode:

    @pytest.mark.asyncio
    async def test_requires_task_queue(self, active_settings, caplog):
        bot = _Recorder("x")
        with pytest.raises(ConfigurationError):
            await _adapter().process(text_xml(), signed(), active_settings, bot)
        assert not bot.called
        assert "后台任务队列" in caplog.text

    def test_check_settings(self, settings, active_settings):
        adapter = _adapter()
        adapter.check_settings(settings)
        with pytest.raises(ConfigurationError):
            adapter.check_settings(active_settings)

    @pytest.mark.asyncio
    async def test_acknowledges_then_delivers_in_background(self, active_settings):
        client = FakeWeChatClient()
        queue = FakeTaskQueue()
        events = []

        async def acknowledge():
            events.append("ack")

        async def bot(context):
            events.append("bot")
            await context.send_activity("one")
            await context.send_activity("two")

        reply = await _adapter(client, queue).process(
            text_xml(), signed(), active_settings, bot, acknowledge=acknowledge,
        )

        assert reply is None
        assert events == ["ack", "bot"]
        assert client.sent == []
        await queue.drain()
        assert client.sent == [
            ("send_text", ("user123", "one")),
            ("send_text", ("user123", "two")),
        ]

    @pytest.mark.asyncio
    async def test_channel_data_sent_unmodified(self, active_settings):
        client = FakeWeChatClient()
        queue = FakeTaskQueue()
        payload = {"touser": "user123", "msgtype": "text", "text": {"content": "raw"}}
        bot = _Recorder(Activity(text="ignored", channel_data=payload))

        await _adapter(client, queue).process(text_xml(), signed(), active_settings, bot)
        await queue.drain()

        assert client.sent == [("send_raw", ("user123", payload))]


class TestTurnErrors:

    @pytest.mark.asyncio
    async def test_on_turn_error_invoked(self, settings):
        adapter = _adapter()
        seen = []

        @adapter.on_turn_error
        async def handler(context, error):
            seen.append((context.activity.text, error))

        async def bot(context):
            raise RuntimeError("boom")

        reply = await adapter.process(text_xml("hello"), signed(), settings, bot)

        assert reply == "success"
        assert seen[0][0] == "hello"
        assert str(seen[0][1]) == "boom"

    @pytest.mark.asyncio
    async def test_error_propagates_without_handler(self, settings):
        async def bot(context):
            raise RuntimeError("boom")

        with pytest.raises(RuntimeError, match="boom"):
            await _adapter().process(text_xml(), signed(), settings, bot)


class TestContinueConversation:

    def _reference(self) -> ConversationReference:
        return ConversationReference(
            user=ChannelAccount(id="user123", name="user"),
            bot=ChannelAccount(id="gh_bot", name="bot"),
            conversation=ConversationAccount(id="user123"),
        )

    @pytest.mark.asyncio
    async def test_pushes_through_client(self, settings):
        client = FakeWeChatClient()
        seen = []

        async def callback(context):
            seen.append(context.activity)
            await context.send_activity("proactive")

        await _adapter(client).continue_conversation(settings, "bot-app", self._reference(), callback)

        assert seen[0].type == ActivityTypes.EVENT
        assert seen[0].name == "ContinueConversation"
        assert client.sent == [("send_text", ("user123", "proactive"))]

    @pytest.mark.asyncio
    @pytest.mark.parametrize("bot_app_id", ["", "   "])
    async def test_requires_bot_app_id(self, settings, bot_app_id):
        with pytest.raises(ValueError):
            await _adapter().continue_conversation(
                settings, bot_app_id, self._reference(), _Recorder(),
            )

    @pytest.mark.asyncio
    async def test_requires_reference(self, settings):
        with pytest.raises(ValueError):
            await _adapter().continue_conversation(settings, "bot-app", None, _Recorder())
