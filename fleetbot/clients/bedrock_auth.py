"""Offline-mode Bedrock login

Builds the Login packet a server accepts without Xbox Live: a one-link
identity chain signed with the client's own P-384 key, plus the client data
token describing the device and a default skin. Also derives the session key
from the server's handshake token.
"""

import base64
import hashlib
import json
import os
import struct
import time
import uuid
from typing import Any, Dict, Tuple

from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ec
from cryptography.hazmat.primitives.asymmetric.utils import decode_dss_signature

from fleetbot.clients.bedrock_packets import encode_varuint
from fleetbot.clients.codec import ProtocolError, offline_uuid

# Login chain wrapped in an authentication envelope from this protocol on
ENVELOPE_PROTOCOL = 818
AUTHENTICATION_SELF_SIGNED = 2

CHAIN_LIFETIME = 24 * 3600
DEVICE_OS_WINDOWS = 7
SKIN_SIZE = 64
SKIN_RGBA = bytes([0x5A, 0x7A, 0xB5, 0xFF])
SKIN_PATCH = {"geometry": {"default": "geometry.humanoid.custom"}}


def generate_key() -> ec.EllipticCurvePrivateKey:
    return ec.generate_private_key(ec.SECP384R1())


def public_key_der(key: ec.EllipticCurvePrivateKey) -> str:
    """Base64 SubjectPublicKeyInfo, the form used in x5u headers"""
    raw = key.public_key().public_bytes(
        serialization.Encoding.DER, serialization.PublicFormat.SubjectPublicKeyInfo
    )
    return base64.b64encode(raw).decode("ascii")


def load_public_key(x5u: str) -> ec.EllipticCurvePublicKey:
    try:
        key = serialization.load_der_public_key(base64.b64decode(x5u))
    except ValueError as e:
        raise ProtocolError(f"Bad public key: {e}") from e
    if not isinstance(key, ec.EllipticCurvePublicKey):
        raise ProtocolError("Public key is not an EC key")
    return key


def _b64url(data: bytes) -> str:
    return base64.urlsafe_b64encode(data).rstrip(b"=").decode("ascii")


def _b64url_decode(text: str) -> bytes:
    return base64.urlsafe_b64decode(text + "=" * (-len(text) % 4))


def sign_jwt(key: ec.EllipticCurvePrivateKey, payload: Dict[str, Any]) -> str:
    """ES384 JWT carrying the signer's public key in x5u"""
    header = {"alg": "ES384", "x5u": public_key_der(key)}
    signing_input = (
        _b64url(json.dumps(header, separators=(",", ":")).encode("utf-8"))
        + "."
        + _b64url(json.dumps(payload, separators=(",", ":")).encode("utf-8"))
    )
    r, s = decode_dss_signature(key.sign(signing_input.encode("ascii"), ec.ECDSA(hashes.SHA384())))
    return signing_input + "." + _b64url(r.to_bytes(48, "big") + s.to_bytes(48, "big"))


def read_jwt(token: str) -> Tuple[Dict[str, Any], Dict[str, Any]]:
    """(header, payload) of a JWT; the signature is not checked"""
    try:
        header, payload, _ = token.split(".")
        return json.loads(_b64url_decode(header)), json.loads(_b64url_decode(payload))
    except ValueError as e:
        raise ProtocolError(f"Bad token: {e}") from e


def identity_chain(key: ec.EllipticCurvePrivateKey, username: str, protocol: int) -> str:
    now = int(time.time())
    identity = sign_jwt(
        key,
        {
            "certificateAuthority": True,
            "extraData": {
                "displayName": username,
                "identity": str(offline_uuid(username)),
                "XUID": "",
            },
            "identityPublicKey": public_key_der(key),
            "nbf": now - 60,
            "iat": now,
            "exp": now + CHAIN_LIFETIME,
        },
    )
    chain = json.dumps({"chain": [identity]})
    if protocol < ENVELOPE_PROTOCOL:
        return chain
    return json.dumps({"AuthenticationType": AUTHENTICATION_SELF_SIGNED, "Certificate": chain, "Token": ""})


def client_data(key: ec.EllipticCurvePrivateKey, username: str, version: str, host: str, port: int) -> str:
    skin = base64.b64encode(SKIN_RGBA * SKIN_SIZE * SKIN_SIZE).decode("ascii")
    patch = base64.b64encode(json.dumps(SKIN_PATCH).encode("utf-8")).decode("ascii")
    return sign_jwt(
        key,
        {
            "AnimatedImageData": [],
            "ArmSize": "wide",
            "CapeData": "",
            "CapeId": "",
            "CapeImageHeight": 0,
            "CapeImageWidth": 0,
            "CapeOnClassicSkin": False,
            "ClientRandomId": struct.unpack(">q", os.urandom(8))[0],
            "CompatibleWithClientSideChunkGen": False,
            "CurrentInputMode": 1,
            "DefaultInputMode": 1,
            "DeviceId": uuid.uuid4().hex,
            "DeviceModel": "",
            "DeviceOS": DEVICE_OS_WINDOWS,
            "GameVersion": version,
            "GraphicsMode": 1,
            "GuiScale": 0,
            "IsEditorMode": False,
            "LanguageCode": "en_US",
            "MaxViewDistance": 0,
            "MemoryTier": 0,
            "OverrideSkin": False,
            "PersonaPieces": [],
            "PersonaSkin": False,
            "PieceTintColors": [],
            "PlatformOfflineId": "",
            "PlatformOnlineId": "",
            "PlatformType": 0,
            "PlayFabId": os.urandom(8).hex(),
            "PremiumSkin": False,
            "SelfSignedId": str(uuid.uuid4()),
            "ServerAddress": f"{host}:{port}",
            "SkinAnimationData": "",
            "SkinColor": "#0",
            "SkinData": skin,
            "SkinGeometryData": "",
            "SkinGeometryDataEngineVersion": "",
            "SkinId": f"{offline_uuid(username)}.Custom",
            "SkinImageHeight": SKIN_SIZE,
            "SkinImageWidth": SKIN_SIZE,
            "SkinResourcePatch": patch,
            "ThirdPartyName": username,
            "ThirdPartyNameOnly": False,
            "TrustedSkin": False,
            "UIProfile": 0,
        },
    )


def build_login(key: ec.EllipticCurvePrivateKey, username: str, protocol: int, version: str, host: str, port: int) -> bytes:
    """Login packet body"""
    chain = identity_chain(key, username, protocol).encode("utf-8")
    data = client_data(key, username, version, host, port).encode("utf-8")
    tokens = struct.pack("<i", len(chain)) + chain + struct.pack("<i", len(data)) + data
    return struct.pack(">i", protocol) + encode_varuint(len(tokens)) + tokens


def derive_session_key(key: ec.EllipticCurvePrivateKey, peer: ec.EllipticCurvePublicKey, salt: bytes) -> bytes:
    shared = key.exchange(ec.ECDH(), peer)
    return hashlib.sha256(salt + shared).digest()


def session_key_from_handshake(key: ec.EllipticCurvePrivateKey, token: str) -> bytes:
    """Key for a ServerToClientHandshake token (server key in x5u, salt in the payload)"""
    header, payload = read_jwt(token)
    if "x5u" not in header or "salt" not in payload:
        raise ProtocolError("Handshake token is missing x5u or salt")
    salt = base64.b64decode(payload["salt"] + "=" * (-len(payload["salt"]) % 4))
    return derive_session_key(key, load_public_key(header["x5u"]), salt)
