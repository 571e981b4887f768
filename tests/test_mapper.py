"""RequestMessage ↔ Activity 映射"""

from wechat_adapter.core.mapper import (
    LOCATION_CONTENT_TYPE,
    NEWS_CONTENT_TYPE,
    WeChatMessageMapper,
    split_text,
)
from wechat_adapter.protocol import (
    Activity,
    ActivityTypes,
    Attachment,
    CardAction,
    ChannelAccount,
    EventRequest,
    ImageRequest,
    ImageResponse,
    LocationRequest,
    MessageMenuResponse,
    NewsResponse,
    NoResponse,
    SuggestedActions,
    TextRequest,
    TextResponse,
    UnknownRequest,
    VoiceRequest,
)

mapper = WeChatMessageMapper()


def _outbound(**kwargs) -> Activity:
    return Activity(
        from_=ChannelAccount(id="gh_bot", name="bot"),
        recipient=ChannelAccount(id="user123", name="user"),
        **kwargs,
    )


class TestToActivity:

    def test_text(self):
        req = TextRequest(from_user_name="user123", to_user_name="gh_bot",
                          create_time=1700000000, msg_id="42", content="hello")
        activity = mapper.to_activity(req)
        assert activity.type == ActivityTypes.MESSAGE
        assert activity.text == "hello"
        assert activity.from_.id == "user123"
        assert activity.recipient.id == "gh_bot"
        assert activity.conversation.id == "user123"
        assert activity.id == "42"
        assert activity.channel_id == "wechat"
        assert activity.timestamp.timestamp() == 1700000000

    def test_missing_msg_id_gets_generated_id(self):
        activity = mapper.to_activity(TextRequest(from_user_name="u", content="x"))
        assert activity.id

    def test_image(self):
        activity = mapper.to_activity(ImageRequest(
            from_user_name="u", pic_url="http://x/p.jpg", media_id="m1",
        ))
        [att] = activity.attachments
        assert att.content_type == "image/*"
        assert att.content_url == "http://x/p.jpg"
        assert att.content["media_id"] == "m1"

    def test_voice_recognition_becomes_text(self):
        activity = mapper.to_activity(VoiceRequest(
            from_user_name="u", media_id="m", format="AMR", recognition="你好",
        ))
        assert activity.text == "你好"
        assert activity.attachments[0].content_type == "audio/amr"

    def test_location(self):
        activity = mapper.to_activity(LocationRequest(
            from_user_name="u", location_x=23.1, location_y=113.2, scale=15, label="广州",
        ))
        [att] = activity.attachments
        assert att.content_type == LOCATION_CONTENT_TYPE
        assert att.content["latitude"] == 23.1
        assert att.content["longitude"] == 113.2

    def test_event(self):
        activity = mapper.to_activity(EventRequest(from_user_name="u", event="subscribe"))
        assert activity.type == ActivityTypes.EVENT
        assert activity.name == "subscribe"
        assert activity.value == "subscribe"

    def test_unknown_keeps_raw_channel_data(self):
        raw = {"MsgType": "weird", "FromUserName": "u"}
        activity = mapper.to_activity(UnknownRequest(from_user_name="u", raw=raw, type_name="weird"))
        assert activity.type == ActivityTypes.MESSAGE
        assert activity.text is None
        assert activity.channel_data == raw


class TestToWeChatMessages:

    def test_text(self):
        [resp] = mapper.to_wechat_messages(_outbound(text="hi"))
        assert isinstance(resp, TextResponse)
        assert resp.content == "hi"
        assert resp.to_user_name == "user123"
        assert resp.from_user_name == "gh_bot"

    def test_long_text_is_split(self):
        responses = mapper.to_wechat_messages(_outbound(text="字" * 1000))
        assert len(responses) == 2
        assert all(len(r.content.encode("utf-8")) <= 2048 for r in responses)
        assert "".join(r.content for r in responses) == "字" * 1000

    def test_non_message_activity_maps_to_nothing(self):
        assert mapper.to_wechat_messages(_outbound(type=ActivityTypes.TYPING)) == []

    def test_suggested_actions_become_menu(self):
        activity = _outbound(
            text="请选择",
            suggested_actions=SuggestedActions(actions=[
                CardAction(title="是", value="yes"),
                CardAction(title="否", value="no"),
            ]),
        )
        [resp] = mapper.to_wechat_messages(activity)
        assert isinstance(resp, MessageMenuResponse)
        assert resp.menu.head_content == "请选择"
        assert [(i.id, i.content) for i in resp.menu.items] == [("yes", "是"), ("no", "否")]

    def test_image_with_media_id(self):
        activity = _outbound(attachments=[Attachment("image/png", content={"media_id": "m9"})])
        [resp] = mapper.to_wechat_messages(activity)
        assert isinstance(resp, ImageResponse)
        assert resp.media_id == "m9"
        assert resp.to_user_name == "user123"

    def test_image_url_falls_back_to_news(self):
        activity = _outbound(attachments=[Attachment("image/png", content_url="http://x/a.png")])
        [resp] = mapper.to_wechat_messages(activity)
        assert isinstance(resp, NewsResponse)
        assert resp.articles[0].pic_url == "http://x/a.png"

    def test_hero_card(self):
        card = {
            "title": "标题",
            "subtitle": "副标题",
            "images": [{"url": "http://x/cover.png"}],
            "buttons": [{"type": "openUrl", "value": "http://x/detail"}],
        }
        activity = _outbound(attachments=[
            Attachment("application/vnd.microsoft.card.hero", content=card),
        ])
        [resp] = mapper.to_wechat_messages(activity)
        article = resp.articles[0]
        assert (article.title, article.description) == ("标题", "副标题")
        assert article.url == "http://x/detail"
        assert article.pic_url == "http://x/cover.png"

    def test_news_attachment(self):
        activity = _outbound(attachments=[Attachment(NEWS_CONTENT_TYPE, content={
            "articles": [{"title": "a", "url": "http://x", "picurl": "http://x/p"}],
        })])
        [resp] = mapper.to_wechat_messages(activity)
        assert resp.articles[0].pic_url == "http://x/p"

    def test_text_and_attachment_in_order(self):
        activity = _outbound(
            text="看图",
            attachments=[Attachment("image/jpeg", content={"media_id": "m1"})],
        )
        responses = mapper.to_wechat_messages(activity)
        assert [type(r) for r in responses] == [TextResponse, ImageResponse]

    def test_unmappable_yields_no_response(self):
        activity = _outbound(attachments=[Attachment("application/pdf", content_url="http://x")])
        [resp] = mapper.to_wechat_messages(activity)
        assert isinstance(resp, NoResponse)


def test_split_text_respects_multibyte_boundaries():
    chunks = split_text("ab你好", max_bytes=4)
    assert chunks == ["ab", "你", "好"]
