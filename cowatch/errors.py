"""Exception types shared by the coordinator and the client engines."""

from __future__ import annotations


class CowatchError(Exception):
    pass


class JoinRejected(CowatchError):
    """The coordinator refused a room join; `reason` is its error string."""

    def __init__(self, reason: str):
        super().__init__(reason)
        self.reason = reason


class RoomFull(JoinRejected):
    pass


class NegotiationFailure(CowatchError):
    pass


class CaptureDeviceFailure(CowatchError):
    """Microphone/camera could not be opened (permission or missing device)."""


class ChannelNotReady(CowatchError):
    """A control action was attempted before the control channel opened."""


class MalformedMessage(CowatchError):
    pass


class InvalidVideoReference(CowatchError):
    pass
