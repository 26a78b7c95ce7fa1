"""Supported game editions and versions"""

from typing import Dict, List

EDITION_JAVA = "java"
EDITION_BEDROCK = "bedrock"

EDITIONS = (EDITION_JAVA, EDITION_BEDROCK)

SUPPORTED_VERSIONS: Dict[str, List[str]] = {
    EDITION_JAVA: ["1.21.1", "1.21.0", "1.20.6", "1.20.4", "1.20.1"],
    EDITION_BEDROCK: ["1.21.93", "1.21.90", "1.21.80", "1.21.70", "1.21.60"],
}

DEFAULT_PORTS = {
    EDITION_JAVA: 25565,
    EDITION_BEDROCK: 19132,
}

# Java Edition protocol numbers
JAVA_PROTOCOLS = {
    "1.20.1": 763,
    "1.20.4": 765,
    "1.20.6": 766,
    "1.21.0": 767,
    "1.21.1": 767,
}

# Bedrock Edition protocol numbers
BEDROCK_PROTOCOLS = {
    "1.21.60": 776,
    "1.21.70": 786,
    "1.21.80": 800,
    "1.21.90": 818,
    "1.21.93": 819,
}

EDITION_LABELS = {
    EDITION_JAVA: "☕ Java",
    EDITION_BEDROCK: "🪨 Bedrock",
}


def get_supported_versions(edition: str) -> List[str]:
    """Versions a bot of this edition can be created with (newest first)"""
    return list(SUPPORTED_VERSIONS.get(edition, []))


def is_supported(edition: str, version: str) -> bool:
    return version in SUPPORTED_VERSIONS.get(edition, [])
