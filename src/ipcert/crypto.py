"""Key handling, JWS signing and CSR construction for ACME."""

import base64
import hashlib
import ipaddress
import json

from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ec, padding, rsa
from cryptography.hazmat.primitives.asymmetric.utils import decode_dss_signature
from cryptography.x509.oid import NameOID

# Type alias for private keys
PrivateKey = rsa.RSAPrivateKey | ec.EllipticCurvePrivateKey

_CURVES = {
    "secp256r1": ("P-256", "ES256", 32, hashes.SHA256),
    "secp384r1": ("P-384", "ES384", 48, hashes.SHA384),
}

_THUMBPRINT_MEMBERS = {
    "RSA": ("e", "kty", "n"),
    "EC": ("crv", "kty", "x", "y"),
}


def generate_rsa_key(key_size: int = 2048) -> rsa.RSAPrivateKey:
    """Generate an RSA private key.

    Args:
        key_size: Key size in bits (2048 or 4096 recommended).

    Returns:
        RSA private key.
    """
    return rsa.generate_private_key(
        public_exponent=65537,
        key_size=key_size,
    )


def generate_ecdsa_key(curve: str = "P-256") -> ec.EllipticCurvePrivateKey:
    """Generate an ECDSA private key.

    Args:
        curve: Curve name ("P-256" or "P-384").

    Returns:
        ECDSA private key.

    Raises:
        ValueError: If curve is not supported.
    """
    curves = {
        "P-256": ec.SECP256R1(),
        "P-384": ec.SECP384R1(),
    }
    if curve not in curves:
        raise ValueError(f"Unsupported curve: {curve}. Supported: {list(curves.keys())}")

    return ec.generate_private_key(curves[curve])


def private_key_to_pem(key: PrivateKey) -> str:
    """Serialize a private key as unencrypted PKCS#8 PEM."""
    return key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.PKCS8,
        encryption_algorithm=serialization.NoEncryption(),
    ).decode("ascii")


def load_private_key_pem(pem_data: str, password: bytes | None = None) -> PrivateKey:
    """Load a private key from PEM-encoded data.

    Args:
        pem_data: PEM-encoded private key string.
        password: Optional password for encrypted keys.

    Returns:
        RSA or ECDSA private key.

    Raises:
        ValueError: If PEM data is invalid or password is incorrect.
    """
    try:
        key = serialization.load_pem_private_key(
            pem_data.encode("utf-8"),
            password=password,
        )
    except TypeError as e:
        # TypeError is raised when encrypted key is loaded without password
        raise ValueError("Invalid password or encrypted key requires password") from e
    except ValueError as e:
        raise ValueError(f"Invalid PEM data: {e}") from e

    if not isinstance(key, (rsa.RSAPrivateKey, ec.EllipticCurvePrivateKey)):
        raise ValueError(f"Unsupported key type: {type(key).__name__}")

    return key


def create_ip_csr(
    key: PrivateKey,
    ip: str,
    common_name: str = "example.com",
) -> x509.CertificateSigningRequest:
    """Create a CSR for an IP address identifier.

    CAs reject IP literals in the subject common name, so the address is
    carried only in the subjectAltName and the CN is a neutral DNS name.

    Args:
        key: Certificate private key to sign the CSR.
        ip: IPv4 or IPv6 address to certify.
        common_name: Placeholder subject common name.

    Returns:
        Certificate Signing Request.

    Raises:
        ValueError: If ip is not a valid address.
    """
    address = ipaddress.ip_address(ip)

    builder = (
        x509.CertificateSigningRequestBuilder()
        .subject_name(x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, common_name)]))
        .add_extension(x509.BasicConstraints(ca=False, path_length=None), critical=False)
        .add_extension(
            x509.KeyUsage(
                digital_signature=True,
                content_commitment=False,
                key_encipherment=True,
                data_encipherment=False,
                key_agreement=False,
                key_cert_sign=False,
                crl_sign=False,
                encipher_only=False,
                decipher_only=False,
            ),
            critical=False,
        )
        .add_extension(x509.SubjectAlternativeName([x509.IPAddress(address)]), critical=False)
    )
    return builder.sign(key, hashes.SHA256())


def split_pem_chain(pem: str) -> list[str]:
    """Split a PEM bundle into its certificate blocks, leaf first.

    Args:
        pem: One or more concatenated PEM certificates.

    Returns:
        List of PEM blocks, each ending with a newline.

    Raises:
        ValueError: If the data holds no parseable certificate.
    """
    try:
        certificates = x509.load_pem_x509_certificates(pem.encode("ascii"))
    except ValueError as e:
        raise ValueError(f"Invalid certificate PEM: {e}") from e
    return [cert.public_bytes(serialization.Encoding.PEM).decode("ascii") for cert in certificates]


def base64url_encode(data: bytes) -> str:
    """Base64url encode without padding."""
    return base64.urlsafe_b64encode(data).rstrip(b"=").decode("ascii")


def _int_to_base64url(n: int, length: int) -> str:
    """Convert an integer to base64url encoding with fixed length."""
    return base64url_encode(n.to_bytes(length, byteorder="big"))


def _curve_params(key: ec.EllipticCurvePrivateKey) -> tuple:
    curve_name = key.curve.name
    if curve_name not in _CURVES:
        raise ValueError(f"Unsupported curve: {curve_name}")
    return _CURVES[curve_name]


def get_jwk(key: PrivateKey) -> dict[str, str]:
    """Get the JWK (JSON Web Key) representation of a public key.

    Args:
        key: Private key to extract public JWK from.

    Returns:
        JWK dictionary with the public members only.
    """
    if isinstance(key, rsa.RSAPrivateKey):
        public_numbers = key.public_key().public_numbers()
        return {
            "kty": "RSA",
            "n": _int_to_base64url(public_numbers.n, (public_numbers.n.bit_length() + 7) // 8),
            "e": _int_to_base64url(public_numbers.e, (public_numbers.e.bit_length() + 7) // 8),
        }

    crv, _, coord_size, _ = _curve_params(key)
    public_numbers = key.public_key().public_numbers()
    return {
        "kty": "EC",
        "crv": crv,
        "x": _int_to_base64url(public_numbers.x, coord_size),
        "y": _int_to_base64url(public_numbers.y, coord_size),
    }


def jwk_thumbprint(jwk: dict[str, str]) -> str:
    """Compute the RFC 7638 thumbprint of a public JWK.

    Only the required members for the key type take part; any other
    members ("alg", "kid", ...) are ignored.

    Args:
        jwk: JWK dictionary.

    Returns:
        Base64url-encoded SHA-256 thumbprint.

    Raises:
        ValueError: If the key type is not RSA or EC.
    """
    members = _THUMBPRINT_MEMBERS.get(jwk.get("kty", ""))
    if members is None:
        raise ValueError(f"Unsupported key type: {jwk.get('kty')}")

    # Lexicographic member order, no whitespace
    canonical = {name: jwk[name] for name in members}
    json_bytes = json.dumps(canonical, sort_keys=True, separators=(",", ":")).encode("utf-8")
    return base64url_encode(hashlib.sha256(json_bytes).digest())


def key_thumbprint(key: PrivateKey) -> str:
    """Compute the JWK thumbprint of a key (RFC 7638).

    Args:
        key: Private key to compute thumbprint for.

    Returns:
        Base64url-encoded SHA-256 thumbprint.
    """
    return jwk_thumbprint(get_jwk(key))


def _signature_algorithm(key: PrivateKey) -> str:
    if isinstance(key, rsa.RSAPrivateKey):
        return "RS256"
    return _curve_params(key)[1]


def _sign(key: PrivateKey, signing_input: bytes) -> bytes:
    if isinstance(key, rsa.RSAPrivateKey):
        return key.sign(signing_input, padding.PKCS1v15(), hashes.SHA256())

    _, _, coord_size, hash_cls = _curve_params(key)
    r, s = decode_dss_signature(key.sign(signing_input, ec.ECDSA(hash_cls())))
    # JWS wants fixed-size r||s, not DER
    return r.to_bytes(coord_size, byteorder="big") + s.to_bytes(coord_size, byteorder="big")


def sign_jws(
    key: PrivateKey,
    payload: dict | str,
    url: str,
    nonce: str,
    kid: str | None = None,
) -> dict[str, str]:
    """Sign a payload as a flattened JWS for an ACME request.

    Args:
        key: Private key to sign with.
        payload: Payload to sign (dict for JSON, empty string for POST-as-GET).
        url: URL of the ACME endpoint.
        nonce: Replay nonce.
        kid: Account URL (if registered). If None, the JWK is embedded.

    Returns:
        Dict with "protected", "payload" and "signature" members.
    """
    protected: dict[str, str | dict] = {
        "alg": _signature_algorithm(key),
        "url": url,
        "nonce": nonce,
    }
    if kid:
        protected["kid"] = kid
    else:
        protected["jwk"] = get_jwk(key)

    protected_b64 = base64url_encode(json.dumps(protected, separators=(",", ":")).encode("utf-8"))

    if payload == "":
        payload_b64 = ""
    else:
        payload_b64 = base64url_encode(json.dumps(payload, separators=(",", ":")).encode("utf-8"))

    signature = _sign(key, f"{protected_b64}.{payload_b64}".encode("ascii"))

    return {
        "protected": protected_b64,
        "payload": payload_b64,
        "signature": base64url_encode(signature),
    }
