# -*- coding: utf-8 -*-
"""
Chat client runtime
"""

from .channel import RealtimeChannel, backoff_delay, channel_url
from .controller import ChatViewController
from .gateway import ChatGateway
from .models import (
    Attachment,
    ConnectionState,
    ConnectionStatus,
    InboundFrame,
    Message,
    MessageDraft,
    Party,
    Room,
)
from .resolver import RoomResolver
from .runtime import ChatClient
from .session import SessionStore
from .synchronizer import MessageSynchronizer, merge_messages

__all__ = [
    'Attachment',
    'ChatClient',
    'ChatGateway',
    'ChatViewController',
    'ConnectionState',
    'ConnectionStatus',
    'InboundFrame',
    'Message',
    'MessageDraft',
    'MessageSynchronizer',
    'Party',
    'RealtimeChannel',
    'Room',
    'RoomResolver',
    'SessionStore',
    'backoff_delay',
    'channel_url',
    'merge_messages',
]
