import io

import pytest
from PIL import Image

from iconbot.conversation import ConversationMachine, validate_app_identifier, validate_icon_name
from iconbot.conversion import ConversionPipeline
from iconbot.errors import (
    AppLookupError,
    ImageFetchError,
    InvalidInputError,
    PartialPublishError,
    PublishError,
    TraceError,
)
from iconbot.publisher import PublishResult
from iconbot.sessions import SessionRegistry
from iconbot.states import (
    APP_NO,
    APP_YES,
    CREATE_NO,
    CREATE_YES,
    AwaitingAppIdentifier,
    AwaitingDescription,
    AwaitingIconImage,
    AwaitingIconName,
    ChoiceReceived,
    CommandReceived,
    ConfirmingAppIdentifier,
    ConfirmingSubmission,
    DocumentReceived,
    Idle,
    ImageRef,
    OtherReceived,
    SendDocument,
    SendText,
    TextReceived,
)

IMAGE = ImageRef(file_id="file-1", file_name="icon.png", mime_type="image/png", file_size=100)


def _icon_png() -> bytes:
    # 2x2, one fully transparent pixel and three opaque ones
    img = Image.new("RGBA", (2, 2))
    img.putdata([(0, 0, 0, 0), (255, 0, 0, 255), (0, 255, 0, 255), (0, 0, 255, 255)])
    buf = io.BytesIO()
    img.save(buf, format="PNG")
    return buf.getvalue()


class FakeStage:
    def __init__(self, stage: str, output: bytes = b"", error: Exception | None = None):
        self.stage = stage
        self.output = output
        self.error = error
        self.calls = 0

    async def run(self, data: bytes) -> bytes:
        self.calls += 1
        if self.error is not None:
            raise self.error
        return self.output


class FakePublisher:
    def __init__(self, error: Exception | None = None, url: str | None = None):
        self.error = error
        self.url = url
        self.calls = []

    async def publish(self, submission):
        self.calls.append(submission)
        if self.error is not None:
            raise self.error
        return PublishResult(branch=submission.branch_name, commit="abc123", merge_request_url=self.url)


async def _preview(svg: bytes) -> tuple[str, bytes]:
    return "icon.svg", svg


def make_machine(
    exists: bool = True,
    lookup_error: bool = False,
    fetch_error: bool = False,
    tracer: FakeStage | None = None,
    publisher: FakePublisher | None = None,
) -> ConversationMachine:
    async def app_exists(app_id: str) -> bool:
        if lookup_error:
            raise AppLookupError("network down")
        return exists

    async def fetch_image(ref: ImageRef) -> bytes:
        if fetch_error:
            raise ImageFetchError("gone")
        return _icon_png()

    pipeline = ConversionPipeline(
        tracer=tracer or FakeStage("trace", b"<svg/>"),
        recoder=FakeStage("recode", b"<vector/>"),
    )
    return ConversationMachine(
        app_exists=app_exists,
        fetch_image=fetch_image,
        pipeline=pipeline,
        publisher=publisher or FakePublisher(),
        render_preview=_preview,
        max_upload_bytes=1000,
    )


def _texts(actions) -> list[str]:
    return [a.text for a in actions if isinstance(a, SendText)]


def test_validate_app_identifier():
    assert validate_app_identifier(" com.discord ") == "com.discord"
    with pytest.raises(InvalidInputError, match="at least a '.'"):
        validate_app_identifier("comdiscord")
    with pytest.raises(InvalidInputError):
        validate_app_identifier('com.evil" foo="bar')
    with pytest.raises(InvalidInputError):
        validate_app_identifier("com.")


def test_validate_icon_name():
    assert validate_icon_name("youtube_music") == "youtube_music"
    for bad in ("YouTube", "my icon", "../etc", "1password", "", "a" * 101):
        with pytest.raises(InvalidInputError):
            validate_icon_name(bad)


@pytest.mark.asyncio
async def test_addicon_starts_conversation():
    tr = await make_machine().handle(Idle(), CommandReceived("addicon"))
    assert tr.state == AwaitingAppIdentifier()
    assert "app path" in _texts(tr.actions)[0]


@pytest.mark.asyncio
async def test_idle_ignores_plain_text():
    tr = await make_machine().handle(Idle(), TextReceived("hello"))
    assert tr.state == Idle()
    assert tr.actions == []


@pytest.mark.asyncio
async def test_app_identifier_without_separator_reprompts():
    tr = await make_machine().handle(AwaitingAppIdentifier(), TextReceived("comdiscord"))
    assert tr.state == AwaitingAppIdentifier()
    assert "should contain at least a '.'" in _texts(tr.actions)[0]


@pytest.mark.asyncio
async def test_known_app_identifier_advances_to_image():
    tr = await make_machine(exists=True).handle(AwaitingAppIdentifier(), TextReceived("com.discord"))
    assert tr.state == AwaitingIconImage(app_identifier="com.discord")


@pytest.mark.asyncio
async def test_unknown_app_identifier_asks_for_confirmation():
    tr = await make_machine(exists=False).handle(AwaitingAppIdentifier(), TextReceived("com.discord"))
    assert tr.state == ConfirmingAppIdentifier(app_identifier="com.discord")
    (prompt,) = tr.actions
    assert [c.token for c in prompt.choices] == [APP_YES, APP_NO]


@pytest.mark.asyncio
async def test_lookup_failure_aborts():
    tr = await make_machine(lookup_error=True).handle(
        AwaitingAppIdentifier(), TextReceived("com.discord")
    )
    assert tr.state == Idle()
    assert "Play Store" in _texts(tr.actions)[0]


@pytest.mark.asyncio
async def test_app_confirmation_yes_and_no():
    m = make_machine()
    state = ConfirmingAppIdentifier(app_identifier="com.discord")
    assert (await m.handle(state, ChoiceReceived(APP_YES))).state == AwaitingIconImage("com.discord")
    tr = await m.handle(state, ChoiceReceived(APP_NO))
    assert tr.state == Idle()
    assert _texts(tr.actions) == ["Aborting."]


@pytest.mark.asyncio
async def test_app_confirmation_ignores_text():
    state = ConfirmingAppIdentifier(app_identifier="com.discord")
    tr = await make_machine().handle(state, TextReceived("yes"))
    assert tr.state == state
    assert tr.actions == []


@pytest.mark.asyncio
async def test_image_state_reprompts_for_anything_but_a_document():
    m = make_machine()
    state = AwaitingIconImage("com.discord")
    for event in (TextReceived("here"), OtherReceived(), ChoiceReceived(APP_YES)):
        tr = await m.handle(state, event)
        assert tr.state == state
        assert _texts(tr.actions) == ["Please attach an image."]


@pytest.mark.asyncio
async def test_document_advances_to_icon_name():
    tr = await make_machine().handle(AwaitingIconImage("com.discord"), DocumentReceived(IMAGE))
    assert tr.state == AwaitingIconName(app_identifier="com.discord", image=IMAGE)


@pytest.mark.asyncio
async def test_oversized_document_is_rejected():
    big = ImageRef(file_id="f", file_size=5000)
    state = AwaitingIconImage("com.discord")
    tr = await make_machine().handle(state, DocumentReceived(big))
    assert tr.state == state
    assert "too large" in _texts(tr.actions)[0]


@pytest.mark.asyncio
async def test_icon_name_validation_keeps_state():
    state = AwaitingIconName("com.discord", IMAGE)
    tr = await make_machine().handle(state, TextReceived("Discord Icon"))
    assert tr.state == state
    assert "lowercase" in _texts(tr.actions)[0]


@pytest.mark.asyncio
async def test_icon_name_accumulates_payload():
    tr = await make_machine().handle(AwaitingIconName("com.discord", IMAGE), TextReceived("discord"))
    assert tr.state == AwaitingDescription(app_identifier="com.discord", image=IMAGE, icon_name="discord")


@pytest.mark.asyncio
async def test_description_runs_conversion_and_asks_to_confirm():
    progress = []

    async def on_progress(text: str) -> None:
        progress.append(text)

    state = AwaitingDescription("com.discord", IMAGE, "discord")
    tr = await make_machine().handle(state, TextReceived("new icon"), progress=on_progress)

    assert tr.state == ConfirmingSubmission(
        vector=b"<vector/>", app_identifier="com.discord", icon_name="discord", description="new icon"
    )
    doc = tr.actions[-1]
    assert isinstance(doc, SendDocument)
    assert doc.data == b"<svg/>"
    assert [c.token for c in doc.choices] == [CREATE_YES, CREATE_NO]
    assert progress[0] == "Downloading image..."
    assert "Tracing PNM to SVG..." in progress


@pytest.mark.asyncio
async def test_conversion_failure_names_stage_and_aborts():
    tracer = FakeStage("trace", error=TraceError("potrace: exit 1"))
    state = AwaitingDescription("com.discord", IMAGE, "discord")
    tr = await make_machine(tracer=tracer).handle(state, TextReceived("d"))
    assert tr.state == Idle()
    assert _texts(tr.actions) == ["Failed to trace PNM to SVG. Aborting."]


@pytest.mark.asyncio
async def test_conversion_timeout_is_reported():
    tracer = FakeStage("trace", error=TraceError("slow", timed_out=True))
    state = AwaitingDescription("com.discord", IMAGE, "discord")
    tr = await make_machine(tracer=tracer).handle(state, TextReceived("d"))
    assert "timed out" in _texts(tr.actions)[0]


@pytest.mark.asyncio
async def test_image_download_failure_aborts():
    state = AwaitingDescription("com.discord", IMAGE, "discord")
    tr = await make_machine(fetch_error=True).handle(state, TextReceived("d"))
    assert tr.state == Idle()
    assert "download" in _texts(tr.actions)[0]


CONFIRMING = ConfirmingSubmission(
    vector=b"<vector/>", app_identifier="com.discord", icon_name="discord", description="d"
)


@pytest.mark.asyncio
async def test_declining_submission_never_publishes():
    publisher = FakePublisher()
    tr = await make_machine(publisher=publisher).handle(CONFIRMING, ChoiceReceived(CREATE_NO))
    assert tr.state == Idle()
    assert publisher.calls == []


@pytest.mark.asyncio
async def test_old_app_confirmation_button_does_not_publish():
    publisher = FakePublisher()
    m = make_machine(publisher=publisher)
    for token in (APP_YES, APP_NO):
        tr = await m.handle(CONFIRMING, ChoiceReceived(token))
        assert tr.state == CONFIRMING
        assert tr.actions == []
    assert publisher.calls == []


@pytest.mark.asyncio
async def test_old_create_button_does_not_confirm_app_identifier():
    state = ConfirmingAppIdentifier(app_identifier="com.discord")
    m = make_machine()
    for token in (CREATE_YES, CREATE_NO):
        tr = await m.handle(state, ChoiceReceived(token))
        assert tr.state == state


@pytest.mark.asyncio
async def test_confirming_submission_publishes():
    publisher = FakePublisher(url="https://gitlab.com/x/-/merge_requests/1")
    tr = await make_machine(publisher=publisher).handle(CONFIRMING, ChoiceReceived(CREATE_YES))
    assert tr.state == Idle()
    assert len(publisher.calls) == 1
    assert _texts(tr.actions)[0].startswith("Created.")
    assert "merge_requests/1" in _texts(tr.actions)[0]


@pytest.mark.asyncio
async def test_publish_failure_names_step():
    publisher = FakePublisher(error=PublishError("push", "permission denied"))
    tr = await make_machine(publisher=publisher).handle(CONFIRMING, ChoiceReceived(CREATE_YES))
    assert tr.state == Idle()
    text = _texts(tr.actions)[0]
    assert "<code>push</code>" in text
    assert "permission denied" in text


@pytest.mark.asyncio
async def test_partial_publish_is_reported_distinctly():
    publisher = FakePublisher(error=PartialPublishError("bot/icon_discord", "GitLab answered 500"))
    tr = await make_machine(publisher=publisher).handle(CONFIRMING, ChoiceReceived(CREATE_YES))
    text = _texts(tr.actions)[0]
    assert "bot/icon_discord" in text
    assert "manually" in text
    assert not text.startswith("Created.")


@pytest.mark.asyncio
async def test_cancel_from_any_state():
    m = make_machine()
    tr = await m.handle(AwaitingIconName("com.discord", IMAGE), CommandReceived("cancel"))
    assert tr.state == Idle()
    tr = await m.handle(Idle(), CommandReceived("cancel"))
    assert tr.state == Idle()


@pytest.mark.asyncio
async def test_addicon_while_busy_keeps_state():
    state = AwaitingIconImage("com.discord")
    tr = await make_machine().handle(state, CommandReceived("addicon"))
    assert tr.state == state


@pytest.mark.asyncio
async def test_full_submission_through_registry():
    publisher = FakePublisher()
    m = make_machine(exists=True, publisher=publisher)
    reg = SessionRegistry()
    chat = 1001

    await m.drive(reg, chat, CommandReceived("addicon"))
    await m.drive(reg, chat, TextReceived("com.example.app"))
    await m.drive(reg, chat, DocumentReceived(IMAGE))
    await m.drive(reg, chat, TextReceived("testicon"))
    actions = await m.drive(reg, chat, TextReceived("desc"))
    assert isinstance(reg.get(chat), ConfirmingSubmission)
    assert any(isinstance(a, SendDocument) for a in actions)

    await m.drive(reg, chat, ChoiceReceived(CREATE_YES))
    assert reg.get(chat) == Idle()

    (submission,) = publisher.calls
    assert submission.branch_name == "bot/icon_testicon"
    assert submission.drawable_file_name == "themed_icon_testicon.xml"
    assert 'package="com.example.app"' in submission.index_entry.line
    assert submission.description == "desc"
    assert submission.vector == b"<vector/>"
