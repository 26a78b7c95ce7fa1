"""Game clients module"""

from typing import Dict, Type

from fleetbot.clients.base import ClientConfig, ClientEvent, ClientEventType, GameClient
from fleetbot.clients.bedrock import BedrockClient
from fleetbot.clients.editions import EDITION_BEDROCK, EDITION_JAVA
from fleetbot.clients.java import JavaClient
from fleetbot.exceptions import ValidationError

CLIENT_CLASSES: Dict[str, Type[GameClient]] = {
    EDITION_JAVA: JavaClient,
    EDITION_BEDROCK: BedrockClient,
}


def create_client(edition: str, config: ClientConfig) -> GameClient:
    """Instantiate the client for a game edition"""
    client_class = CLIENT_CLASSES.get(edition)
    if client_class is None:
        raise ValidationError(f"Unknown edition: {edition}")
    return client_class(config)


__all__ = [
    "ClientConfig",
    "ClientEvent",
    "ClientEventType",
    "GameClient",
    "JavaClient",
    "BedrockClient",
    "create_client",
]
