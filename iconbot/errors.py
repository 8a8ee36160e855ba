from __future__ import annotations


class IconBotError(Exception):
    """Base class for every failure the conversation reports to the user."""


class InvalidInputError(IconBotError):
    """Malformed user input; the user is asked again and the state is kept."""


class AppLookupError(IconBotError):
    """The app store existence check could not be completed."""


class ImageFetchError(IconBotError):
    """The uploaded icon could not be downloaded from the chat transport."""


class ConversionError(IconBotError):
    stage = "convert"

    def __init__(self, detail: str = "", *, timed_out: bool = False):
        super().__init__(detail or f"{self.stage} failed")
        self.detail = detail
        self.timed_out = timed_out


class DecodeError(ConversionError):
    stage = "binarize"


class TraceError(ConversionError):
    stage = "trace"


class RecodeError(ConversionError):
    stage = "recode"


class PublishError(IconBotError):
    """A publish step failed; nothing reached the remote host."""

    def __init__(self, step: str, detail: str = "", *, timed_out: bool = False):
        super().__init__(f"{step}: {detail}" if detail else step)
        self.step = step
        self.detail = detail
        self.timed_out = timed_out


class MergeRequestError(IconBotError):
    def __init__(self, detail: str, status_code: int | None = None):
        super().__init__(detail)
        self.status_code = status_code


class PartialPublishError(IconBotError):
    """The branch was pushed but the merge request could not be created."""

    def __init__(self, branch: str, detail: str = ""):
        super().__init__(f"branch {branch} pushed, merge request failed: {detail}")
        self.branch = branch
        self.detail = detail
