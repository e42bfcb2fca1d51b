from abc import (
    ABC,
    abstractmethod,
)


class Closer(ABC):
    @abstractmethod
    async def close(self) -> None: ...


class Reader(ABC):
    @abstractmethod
    async def read(self, n: int | None = None) -> bytes: ...


class Writer(ABC):
    @abstractmethod
    async def write(self, data: bytes) -> None: ...


class HalfCloser(ABC):
    @abstractmethod
    async def end(self) -> None:
        """
        Close the write side once everything written so far has been sent.
        """


class ReadWriteCloser(Reader, Writer, Closer):
    pass
