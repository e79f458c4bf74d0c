"""
Websocket handling for Avatar Chat
- Chat handler: one session per connection, turns dispatched as tasks
"""

from .websocket_handler import ChatSocketHandler

__all__ = ["ChatSocketHandler"]
