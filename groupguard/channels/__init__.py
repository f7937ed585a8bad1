"""Platform adapters."""

from groupguard.channels.whatsapp_bridge import (
    BridgeGroupDirectory,
    BridgeIdentityMapping,
    BridgeKickExecutor,
    BridgeProtocolError,
    WhatsAppBridgeClient,
)

__all__ = [
    "BridgeGroupDirectory",
    "BridgeIdentityMapping",
    "BridgeKickExecutor",
    "BridgeProtocolError",
    "WhatsAppBridgeClient",
]
