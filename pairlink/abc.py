from abc import (
    ABC,
    abstractmethod,
)

from pairlink.custom_types import (
    ConnectionStateHandler,
    DataChannelHandler,
    EventHandler,
    IceCandidateHandler,
    MessageHandler,
    TMessage,
)
from pairlink.signaling.description import (
    SessionDescription,
)

# -------------------------- data channel interface.py --------------------------


class IDataChannel(ABC):
    """
    Interface for an ordered, message-oriented data channel.

    Platform differences (event objects vs. raw channels, text vs. binary
    frames) are adapted once, by the implementation of this interface.
    """

    @property
    @abstractmethod
    def label(self) -> str:
        """
        :return: The label the channel was created with.
        """

    @property
    @abstractmethod
    def ready_state(self) -> str:
        """
        :return: One of ``connecting``, ``open``, ``closing`` or ``closed``.
        """

    @property
    @abstractmethod
    def buffered_amount(self) -> int:
        """
        :return: Number of bytes queued by the channel but not yet transmitted.
        """

    @abstractmethod
    def send(self, message: TMessage) -> None:
        """
        Send a single message.

        :param message: Text or binary message payload.
        :raises ChannelClosedError: If the channel is not open.
        """

    @abstractmethod
    def close(self) -> None:
        """
        Close the channel. Closing an already closed channel is a no-op.
        """

    @abstractmethod
    def on_open(self, handler: EventHandler) -> None: ...

    @abstractmethod
    def on_message(self, handler: MessageHandler) -> None: ...

    @abstractmethod
    def on_close(self, handler: EventHandler) -> None: ...


# -------------------------- peer connection interface.py --------------------------


class IPeerConnection(ABC):
    """
    Interface for the peer-connection negotiation capability.

    Candidate gathering is reported through ``on_ice_candidate`` handlers; a
    ``None`` candidate signals that gathering is complete. Failures of the
    asynchronous operations are raised as ``NegotiationError``.
    """

    @property
    @abstractmethod
    def local_description(self) -> SessionDescription | None:
        """
        :return: The local description, including gathered candidates.
        """

    @abstractmethod
    async def create_offer(self) -> SessionDescription: ...

    @abstractmethod
    async def create_answer(self) -> SessionDescription: ...

    @abstractmethod
    async def set_local_description(self, description: SessionDescription) -> None:
        """
        Apply the local description and start candidate gathering.

        :param description: An offer or answer created by this connection.
        """

    @abstractmethod
    async def set_remote_description(self, description: SessionDescription) -> None:
        """
        Apply the description received from the remote peer.

        :param description: The remote offer or answer.
        """

    @abstractmethod
    def create_data_channel(self, label: str) -> IDataChannel:
        """
        Create an ordered, reliable data channel.

        :param label: Channel label.
        :return: The new channel, in the ``connecting`` state.
        """

    @abstractmethod
    def on_ice_candidate(self, handler: IceCandidateHandler | None) -> None:
        """
        Register the candidate handler. ``None`` unregisters it.
        """

    @abstractmethod
    def on_data_channel(self, handler: DataChannelHandler) -> None:
        """
        Register a handler fired when the remote peer's channel arrives.
        """

    @abstractmethod
    def on_connection_state_change(self, handler: ConnectionStateHandler) -> None:
        """
        Register a handler receiving connection states such as ``failed``.
        """

    @abstractmethod
    async def close(self) -> None: ...


# -------------------------- content service interface.py --------------------------


class IContentService(ABC):
    """
    Interface for the content-distribution collaborator.
    """

    @abstractmethod
    async def publish(self, data: bytes, name: str) -> str:
        """
        Start seeding a payload.

        :param data: Payload to publish.
        :param name: Human readable name carried in the identifier.
        :return: Identifier string other parties can ``fetch``.
        """

    @abstractmethod
    async def fetch(self, identifier: str) -> bytes:
        """
        Retrieve a payload.

        :param identifier: Identifier returned by ``publish``.
        :raises ContentNotFoundError: If nobody seeds the identifier.
        """

    @abstractmethod
    async def unpublish(self, identifier: str) -> None:
        """
        Stop seeding a payload.
        """
