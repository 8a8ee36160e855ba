"""Conversation states, inbound events and outbound actions.

Each state carries exactly the fields collected so far; nothing about a
submission lives outside the active state.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Union

# Callback data of the inline choices; each prompt has its own pair
APP_YES = "app:yes"
APP_NO = "app:no"
CREATE_YES = "create:yes"
CREATE_NO = "create:no"
CHOICE_TOKENS = frozenset({APP_YES, APP_NO, CREATE_YES, CREATE_NO})


@dataclass(frozen=True)
class ImageRef:
    file_id: str
    file_name: str | None = None
    mime_type: str | None = None
    file_size: int | None = None


# States


@dataclass(frozen=True)
class Idle:
    pass


@dataclass(frozen=True)
class AwaitingAppIdentifier:
    pass


@dataclass(frozen=True)
class ConfirmingAppIdentifier:
    app_identifier: str


@dataclass(frozen=True)
class AwaitingIconImage:
    app_identifier: str


@dataclass(frozen=True)
class AwaitingIconName:
    app_identifier: str
    image: ImageRef


@dataclass(frozen=True)
class AwaitingDescription:
    app_identifier: str
    image: ImageRef
    icon_name: str


@dataclass(frozen=True, repr=False)
class ConfirmingSubmission:
    vector: bytes
    app_identifier: str
    icon_name: str
    description: str

    def __repr__(self) -> str:
        return (
            f"ConfirmingSubmission(app_identifier={self.app_identifier!r}, "
            f"icon_name={self.icon_name!r}, vector=<{len(self.vector)} bytes>)"
        )


ConversationState = Union[
    Idle,
    AwaitingAppIdentifier,
    ConfirmingAppIdentifier,
    AwaitingIconImage,
    AwaitingIconName,
    AwaitingDescription,
    ConfirmingSubmission,
]


# Events


@dataclass(frozen=True)
class TextReceived:
    text: str


@dataclass(frozen=True)
class DocumentReceived:
    image: ImageRef


@dataclass(frozen=True)
class ChoiceReceived:
    token: str


@dataclass(frozen=True)
class CommandReceived:
    name: str


@dataclass(frozen=True)
class OtherReceived:
    """A message that is neither text nor a document (photo, sticker, ...)."""


Event = Union[TextReceived, DocumentReceived, ChoiceReceived, CommandReceived, OtherReceived]


# Actions


@dataclass(frozen=True)
class Choice:
    label: str
    token: str


@dataclass(frozen=True)
class SendText:
    text: str
    choices: tuple[Choice, ...] = ()


@dataclass(frozen=True)
class SendDocument:
    filename: str
    data: bytes = field(repr=False)
    caption: str = ""
    choices: tuple[Choice, ...] = ()


Action = Union[SendText, SendDocument]


@dataclass
class Transition:
    state: ConversationState
    actions: list[Action] = field(default_factory=list)
