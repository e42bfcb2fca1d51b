import dataclasses
import json

import pytest

from pairlink.exceptions import SignalingError
from pairlink.signaling.description import (
    IceCandidate,
    SessionDescription,
)

SDP_WITH_CANDIDATES = (
    "v=0\r\n"
    "o=- 1 1 IN IP4 0.0.0.0\r\n"
    "m=application 9 UDP/DTLS/SCTP webrtc-datachannel\r\n"
    "a=mid:0\r\n"
    "a=candidate:1 1 udp 2130706431 192.168.1.2 50000 typ host\r\n"
    "a=candidate:2 1 udp 1694498815 203.0.113.7 50001 typ srflx\r\n"
    "a=end-of-candidates\r\n"
)


def test_json_shape(description_factory):
    description = description_factory(type="answer")
    data = json.loads(description.to_json())

    assert data == {"type": "answer", "sdp": description.sdp}


def test_json_round_trip(description_factory):
    description = description_factory()
    assert SessionDescription.from_json(description.to_json()) == description


def test_description_is_immutable(description_factory):
    description = description_factory()
    with pytest.raises(dataclasses.FrozenInstanceError):
        description.sdp = "v=1"


def test_unknown_type_is_rejected():
    with pytest.raises(SignalingError, match="pranswer"):
        SessionDescription(type="pranswer", sdp="v=0\r\n")


@pytest.mark.parametrize(
    "text",
    [
        "[]",
        '"offer"',
        '{"sdp": "v=0"}',
        '{"type": "offer"}',
        '{"type": "offer", "sdp": ""}',
        '{"type": "offer", "sdp": 5}',
        '{"type": 5, "sdp": "v=0"}',
    ],
)
def test_invalid_json_descriptions(text):
    with pytest.raises(SignalingError):
        SessionDescription.from_json(text)


def test_candidates_from_sdp():
    candidates = IceCandidate.from_sdp(SDP_WITH_CANDIDATES)

    assert [c.candidate.split()[4] for c in candidates] == [
        "192.168.1.2",
        "203.0.113.7",
    ]
    assert all(c.sdp_mid == "0" for c in candidates)
    assert all(c.sdp_mline_index == 0 for c in candidates)


def test_no_candidates_in_plain_sdp():
    assert IceCandidate.from_sdp("v=0\r\ns=-\r\n") == []


@pytest.mark.parametrize("sdp", ["", None, 5])
def test_constructor_rejects_empty_or_non_text_sdp(sdp):
    with pytest.raises(SignalingError):
        SessionDescription(type="offer", sdp=sdp)
