"""Protocol interfaces for the provider transports."""
from .client import RequestClient
from .stream import StreamTransport

__all__ = ["RequestClient", "StreamTransport"]
