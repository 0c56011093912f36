"""
Application Interfaces (Ports)

Abstract interfaces that define contracts between the application
layer and the remote cluster adapters.
"""

from playback_orchestrator.application.interfaces.playback_link import LinkFactory, PlaybackLink
from playback_orchestrator.application.interfaces.remote_node import NodeRegistry, RemoteNode

__all__ = [
    "RemoteNode",
    "NodeRegistry",
    "PlaybackLink",
    "LinkFactory",
]
