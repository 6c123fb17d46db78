"""Wire protocol: message model, method routing and request derivation."""

from .messages import ROUTES, CorrelationId, Message, Method, Request, ServerIdentity, list_changed

__all__ = ["ROUTES", "CorrelationId", "Message", "Method", "Request", "ServerIdentity", "list_changed"]
