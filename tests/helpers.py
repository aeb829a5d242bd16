"""Shared helpers for decoding and checking ACME traffic in tests."""

import base64
import ipaddress
import json
from datetime import datetime

from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ec, rsa
from cryptography.hazmat.primitives.asymmetric.utils import encode_dss_signature
from cryptography.x509.oid import NameOID

from ipcert.crypto import generate_ecdsa_key, private_key_to_pem
from ipcert.models import CertificateRecord

ACME_BASE = "https://acme.test"
DIRECTORY_URL = f"{ACME_BASE}/directory"

def b64url_decode(data: str) -> bytes:
    """Decode base64url without padding."""
    return base64.urlsafe_b64decode(data + "=" * (-len(data) % 4))


def decode_jws(body: bytes) -> tuple[dict, dict | str, dict]:
    """Split a flattened JWS request body into header, payload and raw parts."""
    envelope = json.loads(body)
    header = json.loads(b64url_decode(envelope["protected"]))
    payload = json.loads(b64url_decode(envelope["payload"])) if envelope["payload"] else ""
    return header, payload, envelope


def public_key_from_jwk(jwk: dict) -> ec.EllipticCurvePublicKey | rsa.RSAPublicKey:
    """Rebuild a public key from its JWK."""
    if jwk["kty"] == "RSA":
        n = int.from_bytes(b64url_decode(jwk["n"]), "big")
        e = int.from_bytes(b64url_decode(jwk["e"]), "big")
        return rsa.RSAPublicNumbers(e, n).public_key()
    curve = {"P-256": ec.SECP256R1(), "P-384": ec.SECP384R1()}[jwk["crv"]]
    x = int.from_bytes(b64url_decode(jwk["x"]), "big")
    y = int.from_bytes(b64url_decode(jwk["y"]), "big")
    return ec.EllipticCurvePublicNumbers(x, y, curve).public_key()


def verify_jws(envelope: dict, public_key: ec.EllipticCurvePublicKey) -> None:
    """Verify an ES256 flattened JWS; raises InvalidSignature on mismatch."""
    signing_input = f"{envelope['protected']}.{envelope['payload']}".encode("ascii")
    raw = b64url_decode(envelope["signature"])
    size = len(raw) // 2
    der = encode_dss_signature(
        int.from_bytes(raw[:size], "big"), int.from_bytes(raw[size:], "big")
    )
    public_key.verify(der, signing_input, ec.ECDSA(hashes.SHA256()))


def make_self_signed(
    ip: str,
    not_before: datetime,
    not_after: datetime,
) -> CertificateRecord:
    """Create a self-signed certificate record for an IP address."""
    key = generate_ecdsa_key()
    name = x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, "example.com")])
    cert = (
        x509.CertificateBuilder()
        .subject_name(name)
        .issuer_name(name)
        .public_key(key.public_key())
        .serial_number(x509.random_serial_number())
        .not_valid_before(not_before)
        .not_valid_after(not_after)
        .add_extension(
            x509.SubjectAlternativeName([x509.IPAddress(ipaddress.ip_address(ip))]),
            critical=False,
        )
        .sign(key, hashes.SHA256())
    )
    return CertificateRecord(
        identifier=ip,
        certificate_pem=cert.public_bytes(serialization.Encoding.PEM).decode("ascii"),
        private_key_pem=private_key_to_pem(key),
        not_before=cert.not_valid_before_utc,
        not_after=cert.not_valid_after_utc,
    )
