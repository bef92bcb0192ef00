"""Signal integration for Commandinator bots.

Provides SSE streaming for real-time message reception and JSON-RPC for sending.
"""

from .sse_client import SignalTransport, extract_mentions, render_embed, render_mentions

__all__ = [
    "SignalTransport",
    "extract_mentions",
    "render_embed",
    "render_mentions",
]
