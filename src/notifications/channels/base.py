from abc import ABC, abstractmethod

from src.notifications.dtos import Channel, RenderedMessage


class ChannelSender(ABC):
    channel: Channel

    @abstractmethod
    async def send(self, message: RenderedMessage, destination: str) -> str:
        """Deliver ``message`` and return the provider's message id.

        Raises UpstreamFailure when the provider rejects the message or is unreachable.
        """
        raise NotImplementedError
