"""Transports: a byte stream per session, or HTTP requests plus an SSE push channel."""

from .base import Transport
from .http import HttpGateway, HttpTransport
from .stream import ByteWriter, StreamTransport

__all__ = ["ByteWriter", "HttpGateway", "HttpTransport", "StreamTransport", "Transport"]
