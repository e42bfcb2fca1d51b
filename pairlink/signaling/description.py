from dataclasses import (
    dataclass,
)
import json
from typing import Any

from pairlink.constants import (
    SDP_TYPE_ANSWER,
    SDP_TYPE_OFFER,
)
from pairlink.exceptions import (
    SignalingError,
)

SDP_TYPES = (SDP_TYPE_OFFER, SDP_TYPE_ANSWER)


@dataclass(frozen=True)
class SessionDescription:
    """
    An offer or answer produced by the peer-connection capability.

    The JSON form is ``{"type": ..., "sdp": ...}``, the same shape browsers
    produce for ``JSON.stringify(pc.localDescription)``.
    """

    type: str
    sdp: str

    def __post_init__(self) -> None:
        if self.type not in SDP_TYPES:
            raise SignalingError(f"Unknown session description type: {self.type!r}")
        if not isinstance(self.sdp, str) or not self.sdp:
            raise SignalingError("Session description body must be a non-empty string")

    def to_dict(self) -> dict[str, str]:
        return {"type": self.type, "sdp": self.sdp}

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), separators=(",", ":"))

    @classmethod
    def from_dict(cls, data: Any) -> "SessionDescription":
        if not isinstance(data, dict):
            raise SignalingError(
                f"Session description must be a JSON object, got {type(data).__name__}"
            )
        missing = [key for key in ("type", "sdp") if key not in data]
        if missing:
            raise SignalingError(
                f"Session description is missing fields: {', '.join(missing)}"
            )
        return cls(type=data["type"], sdp=data["sdp"])

    @classmethod
    def from_json(cls, text: str) -> "SessionDescription":
        try:
            data = json.loads(text)
        except ValueError as error:
            raise SignalingError(f"Malformed session description JSON: {error}") from error
        return cls.from_dict(data)


@dataclass(frozen=True)
class IceCandidate:
    """A single gathered ICE candidate."""

    candidate: str
    sdp_mid: str | None = None
    sdp_mline_index: int | None = None

    @classmethod
    def from_sdp(cls, sdp: str) -> list["IceCandidate"]:
        """
        Extract candidates from the ``a=candidate:`` lines of an SDP body.

        The media line index is counted from the ``m=`` lines seen so far and
        the mid from the latest ``a=mid:`` line.
        """
        candidates: list[IceCandidate] = []
        mline_index = -1
        mid: str | None = None
        for line in sdp.splitlines():
            if line.startswith("m="):
                mline_index += 1
                mid = None
            elif line.startswith("a=mid:"):
                mid = line[len("a=mid:") :]
            elif line.startswith("a=candidate:"):
                candidates.append(
                    cls(
                        candidate=line[len("a=") :],
                        sdp_mid=mid,
                        sdp_mline_index=mline_index if mline_index >= 0 else None,
                    )
                )
        return candidates
