"""XMPP transport for the relay."""

from parley.xmpp.transport import XMPPTransport

__all__ = ["XMPPTransport"]
