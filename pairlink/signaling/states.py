"""
Pure state transitions of a signaling session.

Every callback of the peer-connection capability is turned into one of the
event objects below. :func:`transition` maps ``(snapshot, event)`` to the next
snapshot plus the effects the session has to carry out; it never touches the
peer connection itself.
"""

from collections.abc import Callable
from dataclasses import (
    dataclass,
    replace,
)
from enum import Enum
from typing import Any

from pairlink.config import SessionConfig
from pairlink.exceptions import (
    BasePairlinkError,
    SignalingError,
)

from .codec import encode_description
from .description import (
    IceCandidate,
    SessionDescription,
)


class SessionRole(Enum):
    OFFERER = "offerer"
    ANSWERER = "answerer"


class SessionState(Enum):
    INITIALIZING = "initializing"
    GATHERING_CANDIDATES = "gathering_candidates"
    READY = "ready"
    CHANNEL_OPEN = "channel_open"
    CLOSED = "closed"


@dataclass(frozen=True)
class SessionSnapshot:
    role: SessionRole
    state: SessionState = SessionState.INITIALIZING
    token: str | None = None
    candidates: int = 0
    # Channel that opened while candidates were still being gathered
    pending_channel: Any = None
    channel: Any = None
    error: BasePairlinkError | None = None


# Events


@dataclass(frozen=True)
class NegotiationStarted:
    pass


@dataclass(frozen=True)
class CandidateDiscovered:
    candidate: IceCandidate


@dataclass(frozen=True)
class GatheringComplete:
    description: SessionDescription | None


@dataclass(frozen=True)
class ChannelOpened:
    channel: Any


@dataclass(frozen=True)
class ChannelClosed:
    pass


@dataclass(frozen=True)
class NegotiationFailed:
    error: BasePairlinkError


@dataclass(frozen=True)
class CloseRequested:
    pass


SessionEvent = (
    NegotiationStarted
    | CandidateDiscovered
    | GatheringComplete
    | ChannelOpened
    | ChannelClosed
    | NegotiationFailed
    | CloseRequested
)


# Effects


@dataclass(frozen=True)
class PublishToken:
    token: str


@dataclass(frozen=True)
class OpenBridge:
    channel: Any


@dataclass(frozen=True)
class Fail:
    error: BasePairlinkError


@dataclass(frozen=True)
class ReleaseConnection:
    pass


SessionEffect = PublishToken | OpenBridge | Fail | ReleaseConnection
TransitionResult = tuple[SessionSnapshot, tuple[SessionEffect, ...]]

_GATHERING_STATES = (SessionState.INITIALIZING, SessionState.GATHERING_CANDIDATES)


def _on_negotiation_started(
    snapshot: SessionSnapshot, event: NegotiationStarted, config: SessionConfig
) -> TransitionResult:
    if snapshot.state is not SessionState.INITIALIZING:
        return snapshot, ()
    return replace(snapshot, state=SessionState.GATHERING_CANDIDATES), ()


def _on_candidate(
    snapshot: SessionSnapshot, event: CandidateDiscovered, config: SessionConfig
) -> TransitionResult:
    if snapshot.state not in _GATHERING_STATES:
        return snapshot, ()
    return (
        replace(
            snapshot,
            state=SessionState.GATHERING_CANDIDATES,
            candidates=snapshot.candidates + 1,
        ),
        (),
    )


def _on_gathering_complete(
    snapshot: SessionSnapshot, event: GatheringComplete, config: SessionConfig
) -> TransitionResult:
    # Gathering completes once; repeated terminal signals are ignored
    if snapshot.state not in _GATHERING_STATES:
        return snapshot, ()

    if event.description is None:
        error = SignalingError("Candidate gathering finished without a local description")
        return _fail(snapshot, error)

    token = encode_description(
        event.description,
        line_width=config.line_width,
        compression_level=config.compression_level,
    )
    ready = replace(snapshot, state=SessionState.READY, token=token)
    effects: tuple[SessionEffect, ...] = (PublishToken(token),)

    if snapshot.pending_channel is not None:
        channel = snapshot.pending_channel
        ready = replace(
            ready,
            state=SessionState.CHANNEL_OPEN,
            channel=channel,
            pending_channel=None,
        )
        effects += (OpenBridge(channel),)
    return ready, effects


def _on_channel_opened(
    snapshot: SessionSnapshot, event: ChannelOpened, config: SessionConfig
) -> TransitionResult:
    if snapshot.state in _GATHERING_STATES:
        return replace(snapshot, pending_channel=event.channel), ()
    if snapshot.state is not SessionState.READY:
        return snapshot, ()
    return (
        replace(snapshot, state=SessionState.CHANNEL_OPEN, channel=event.channel),
        (OpenBridge(event.channel),),
    )


def _on_channel_closed(
    snapshot: SessionSnapshot, event: ChannelClosed, config: SessionConfig
) -> TransitionResult:
    return _close(snapshot)


def _on_negotiation_failed(
    snapshot: SessionSnapshot, event: NegotiationFailed, config: SessionConfig
) -> TransitionResult:
    return _fail(snapshot, event.error)


def _on_close_requested(
    snapshot: SessionSnapshot, event: CloseRequested, config: SessionConfig
) -> TransitionResult:
    return _close(snapshot)


def _close(snapshot: SessionSnapshot) -> TransitionResult:
    return (
        replace(snapshot, state=SessionState.CLOSED, pending_channel=None),
        (ReleaseConnection(),),
    )


def _fail(snapshot: SessionSnapshot, error: BasePairlinkError) -> TransitionResult:
    closed, effects = _close(replace(snapshot, error=error))
    return closed, (Fail(error),) + effects


_TRANSITIONS: dict[type, Callable[[SessionSnapshot, Any, SessionConfig], TransitionResult]] = {
    NegotiationStarted: _on_negotiation_started,
    CandidateDiscovered: _on_candidate,
    GatheringComplete: _on_gathering_complete,
    ChannelOpened: _on_channel_opened,
    ChannelClosed: _on_channel_closed,
    NegotiationFailed: _on_negotiation_failed,
    CloseRequested: _on_close_requested,
}


def transition(
    snapshot: SessionSnapshot,
    event: SessionEvent,
    config: SessionConfig | None = None,
) -> TransitionResult:
    """
    Compute the next snapshot and the effects to run for ``event``.

    A closed session ignores every event.
    """
    if snapshot.state is SessionState.CLOSED:
        return snapshot, ()
    try:
        handler = _TRANSITIONS[type(event)]
    except KeyError:
        raise TypeError(f"Unknown session event: {event!r}") from None
    return handler(snapshot, event, config or SessionConfig())
