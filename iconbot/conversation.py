from __future__ import annotations

import html
import logging
import re
from collections.abc import Awaitable, Callable, Hashable

from .conversion import ConversionPipeline
from .errors import (
    AppLookupError,
    ImageFetchError,
    InvalidInputError,
    PartialPublishError,
    PublishError,
)
from .preview import render_preview
from .publisher import IconSubmission
from .sessions import SessionRegistry
from .states import (
    APP_NO,
    APP_YES,
    CREATE_NO,
    CREATE_YES,
    Action,
    AwaitingAppIdentifier,
    AwaitingDescription,
    AwaitingIconImage,
    AwaitingIconName,
    Choice,
    ChoiceReceived,
    CommandReceived,
    ConfirmingAppIdentifier,
    ConfirmingSubmission,
    ConversationState,
    DocumentReceived,
    Event,
    Idle,
    ImageRef,
    SendDocument,
    SendText,
    TextReceived,
    Transition,
)
from .utils import human_bytes

Progress = Callable[[str], Awaitable[None]]

ASK_APP = (
    "Let's start! What is the app path of the app you want to add an icon for? "
    "For example com.discord or com.google.files"
)
ASK_APP_NO_DOT = "App path should contain at least a '.', for example: com.discord or com.google.files"
ASK_APP_INVALID = (
    "That does not look like an app path. Use letters, digits and underscores "
    "separated by dots, for example com.google.files"
)
ASK_APP_TEXT = "Please send an app path."
CONFIRM_APP = "Could not find a playstore application with this name. Are you sure it is correct?"
ASK_IMAGE = "Please attach a PNG with transparent background as the icon now."
ASK_IMAGE_AGAIN = "Please attach an image."
ASK_NAME = "Provide a name for this icon, for example youtube_music or whatsapp."
ASK_NAME_TEXT = "Please provide a name."
ASK_NAME_INVALID = (
    "Icon names may only contain lowercase letters, digits and underscores "
    "and must start with a letter, for example youtube_music."
)
ASK_DESCRIPTION = "Finally, provide a short description for this request."
ASK_DESCRIPTION_TEXT = "Please provide the description as text."
ABORTED = "Aborting."
BUSY = "A submission is already in progress. Finish it or send /cancel."

APP_CHOICES = (Choice("Yes, this is correct", APP_YES), Choice("No, this is wrong", APP_NO))
CREATE_CHOICES = (Choice("Yes, create my request", CREATE_YES), Choice("No, abort", CREATE_NO))

STAGE_PROGRESS = {
    "binarize": "Converting PNG to black PNM...",
    "trace": "Tracing PNM to SVG...",
    "recode": "Converting SVG to VD...",
}
STAGE_FAILURE = {
    "binarize": "Failed to read the image, it does not look like a PNG.",
    "trace": "Failed to trace PNM to SVG.",
    "recode": "Failed to convert SVG to VD.",
}

_APP_ID_RE = re.compile(r"^[A-Za-z][A-Za-z0-9_]*(\.[A-Za-z0-9_]+)+$")
_ICON_NAME_RE = re.compile(r"^[a-z][a-z0-9_]{0,99}$")


def validate_app_identifier(text: str) -> str:
    app_id = text.strip()
    if "." not in app_id:
        raise InvalidInputError(ASK_APP_NO_DOT)
    if not _APP_ID_RE.match(app_id):
        raise InvalidInputError(ASK_APP_INVALID)
    return app_id


def validate_icon_name(text: str) -> str:
    name = text.strip()
    if not _ICON_NAME_RE.match(name):
        raise InvalidInputError(ASK_NAME_INVALID)
    return name


async def _report(progress: Progress | None, text: str) -> None:
    if progress is not None:
        await progress(text)


class ConversationMachine:
    """Drives one icon submission conversation.

    ``handle`` is a function of the current state and one event; collaborators
    are injected so each can be replaced in tests.
    """

    def __init__(
        self,
        *,
        app_exists: Callable[[str], Awaitable[bool]],
        fetch_image: Callable[[ImageRef], Awaitable[bytes]],
        pipeline: ConversionPipeline,
        publisher,
        render_preview: Callable[[bytes], Awaitable[tuple[str, bytes]]] = render_preview,
        max_upload_bytes: int = 10 * 1024 * 1024,
    ):
        self.app_exists = app_exists
        self.fetch_image = fetch_image
        self.pipeline = pipeline
        self.publisher = publisher
        self.render_preview = render_preview
        self.max_upload_bytes = max_upload_bytes
        self._handlers = {
            AwaitingAppIdentifier: self._on_app_identifier,
            ConfirmingAppIdentifier: self._on_app_confirmation,
            AwaitingIconImage: self._on_icon_image,
            AwaitingIconName: self._on_icon_name,
            AwaitingDescription: self._on_description,
            ConfirmingSubmission: self._on_submission_confirmation,
        }

    async def drive(
        self,
        registry: SessionRegistry,
        session_id: Hashable,
        event: Event,
        progress: Progress | None = None,
    ) -> list[Action]:
        """Apply ``event`` to the stored state of ``session_id`` under its lock."""
        async with registry.session(session_id) as sess:
            before = sess.state
            transition = await self.handle(sess.state, event, progress)
            sess.state = transition.state
            if type(before) is not type(transition.state):
                logging.info(
                    "Session %s: %s -> %s",
                    session_id,
                    type(before).__name__,
                    type(transition.state).__name__,
                )
            return transition.actions

    async def handle(
        self, state: ConversationState, event: Event, progress: Progress | None = None
    ) -> Transition:
        if isinstance(event, CommandReceived):
            return self._on_command(state, event)
        handler = self._handlers.get(type(state))
        if handler is None:
            return Transition(state)
        return await handler(state, event, progress)

    def _on_command(self, state: ConversationState, event: CommandReceived) -> Transition:
        if event.name == "cancel":
            if isinstance(state, Idle):
                return Transition(state, [SendText("Nothing to cancel.")])
            return Transition(Idle(), [SendText(ABORTED)])
        if event.name == "addicon":
            if isinstance(state, Idle):
                return Transition(AwaitingAppIdentifier(), [SendText(ASK_APP)])
            return Transition(state, [SendText(BUSY)])
        return Transition(state)

    async def _on_app_identifier(
        self, state: AwaitingAppIdentifier, event: Event, progress: Progress | None
    ) -> Transition:
        if isinstance(event, ChoiceReceived):
            return Transition(state)
        if not isinstance(event, TextReceived):
            return Transition(state, [SendText(ASK_APP_TEXT)])

        try:
            app_id = validate_app_identifier(event.text)
        except InvalidInputError as e:
            logging.warning("Rejected app path %r: %s", event.text[:100], e)
            return Transition(state, [SendText(str(e))])

        try:
            exists = await self.app_exists(app_id)
        except AppLookupError as e:
            logging.error("Play Store lookup for %s failed: %s", app_id, e)
            return Transition(
                Idle(), [SendText("Could not reach the Play Store to check this app. Aborting.")]
            )

        if not exists:
            return Transition(
                ConfirmingAppIdentifier(app_identifier=app_id),
                [SendText(CONFIRM_APP, choices=APP_CHOICES)],
            )
        return Transition(AwaitingIconImage(app_identifier=app_id), [SendText(ASK_IMAGE)])

    async def _on_app_confirmation(
        self, state: ConfirmingAppIdentifier, event: Event, progress: Progress | None
    ) -> Transition:
        if not isinstance(event, ChoiceReceived):
            return Transition(state)
        if event.token == APP_YES:
            return Transition(
                AwaitingIconImage(app_identifier=state.app_identifier), [SendText(ASK_IMAGE)]
            )
        if event.token == APP_NO:
            return Transition(Idle(), [SendText(ABORTED)])
        return Transition(state)

    async def _on_icon_image(
        self, state: AwaitingIconImage, event: Event, progress: Progress | None
    ) -> Transition:
        if not isinstance(event, DocumentReceived):
            return Transition(state, [SendText(ASK_IMAGE_AGAIN)])

        size = event.image.file_size or 0
        if size > self.max_upload_bytes:
            return Transition(
                state,
                [
                    SendText(
                        f"File too large: {human_bytes(size)}, the limit is {human_bytes(self.max_upload_bytes)}. "
                        "Please attach a smaller image."
                    )
                ],
            )
        return Transition(
            AwaitingIconName(app_identifier=state.app_identifier, image=event.image),
            [SendText(ASK_NAME)],
        )

    async def _on_icon_name(
        self, state: AwaitingIconName, event: Event, progress: Progress | None
    ) -> Transition:
        if isinstance(event, ChoiceReceived):
            return Transition(state)
        if not isinstance(event, TextReceived):
            return Transition(state, [SendText(ASK_NAME_TEXT)])

        try:
            name = validate_icon_name(event.text)
        except InvalidInputError as e:
            logging.warning("Rejected icon name %r", event.text[:100])
            return Transition(state, [SendText(str(e))])

        return Transition(
            AwaitingDescription(
                app_identifier=state.app_identifier, image=state.image, icon_name=name
            ),
            [SendText(ASK_DESCRIPTION)],
        )

    async def _on_description(
        self, state: AwaitingDescription, event: Event, progress: Progress | None
    ) -> Transition:
        if isinstance(event, ChoiceReceived):
            return Transition(state)
        if not isinstance(event, TextReceived):
            return Transition(state, [SendText(ASK_DESCRIPTION_TEXT)])
        description = event.text.strip()

        await _report(progress, "Downloading image...")
        try:
            image = await self.fetch_image(state.image)
        except ImageFetchError as e:
            logging.error("Downloading %s failed: %s", state.image.file_id, e)
            return Transition(Idle(), [SendText("Failed to download the image. Aborting.")])

        async def on_stage(stage: str) -> None:
            await _report(progress, STAGE_PROGRESS.get(stage, stage))

        report = await self.pipeline.convert(image, progress=on_stage)
        failed = report.failed
        if failed is not None:
            text = STAGE_FAILURE.get(failed.stage, f"Conversion failed at {failed.stage}.")
            if failed.timed_out:
                text += " The converter timed out."
            return Transition(Idle(), [SendText(f"{text} {ABORTED}")])

        filename, preview = await self.render_preview(report.svg)
        return Transition(
            ConfirmingSubmission(
                vector=report.vector,
                app_identifier=state.app_identifier,
                icon_name=state.icon_name,
                description=description,
            ),
            [
                SendText("Done with conversion. Here's a preview of the icon:"),
                SendDocument(
                    filename=filename,
                    data=preview,
                    caption="Please review the icon and if it is good, proceed!",
                    choices=CREATE_CHOICES,
                ),
            ],
        )

    async def _on_submission_confirmation(
        self, state: ConfirmingSubmission, event: Event, progress: Progress | None
    ) -> Transition:
        if not isinstance(event, ChoiceReceived):
            return Transition(state)
        if event.token == CREATE_NO:
            return Transition(Idle(), [SendText(ABORTED)])
        # Answers to an earlier prompt never publish
        if event.token != CREATE_YES:
            return Transition(state)

        submission = IconSubmission(
            app_identifier=state.app_identifier,
            icon_name=state.icon_name,
            description=state.description,
            vector=state.vector,
        )
        await _report(progress, "Creating your request...")
        try:
            result = await self.publisher.publish(submission)
        except PartialPublishError as e:
            text = (
                f"The branch <code>{html.escape(e.branch)}</code> was pushed, but the merge "
                f"request could not be created: {html.escape(e.detail)}\n"
                "A maintainer has to open it manually."
            )
        except PublishError as e:
            text = f"Failed to create the request at step <code>{e.step}</code>"
            if e.timed_out:
                text += " (timed out)"
            text += f": {html.escape(e.detail)}"
        else:
            text = "Created."
            if result.merge_request_url:
                text += f' <a href="{html.escape(result.merge_request_url)}">Merge request</a>'
        return Transition(Idle(), [SendText(text)])
