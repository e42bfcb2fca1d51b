import factory
import pytest

from pairlink import (
    SessionConfig,
    SessionDescription,
)
from pairlink.tools.loopback import LoopbackNetwork


class SessionDescriptionFactory(factory.Factory):
    class Meta:
        model = SessionDescription

    type = "offer"
    sdp = factory.Sequence(
        lambda n: f"v=0\r\no=- {n} 1 IN IP4 127.0.0.1\r\ns=-\r\nt=0 0\r\n"
    )


class SessionConfigFactory(factory.Factory):
    class Meta:
        model = SessionConfig

    ice_servers = factory.LazyFunction(list)
    drain_timeout = 1.0


@pytest.fixture
def description_factory():
    return SessionDescriptionFactory


@pytest.fixture
def session_config():
    return SessionConfigFactory()


@pytest.fixture
def loopback_network():
    return LoopbackNetwork()


@pytest.fixture
def channel_pair(loopback_network):
    return loopback_network.channel_pair("test")
