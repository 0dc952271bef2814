"""RSA key helpers built on `cryptography` primitives."""
from __future__ import annotations

from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import padding, rsa

RSA_KEY_SIZE = 2048
RSA_PUBLIC_EXPONENT = 65537

_HASHES: dict[str, type[hashes.HashAlgorithm]] = {
    "sha256": hashes.SHA256,
    "sha512": hashes.SHA512,
}


def generate_rsa_keypair() -> tuple[str, str]:
    """Generate a fresh RSA keypair.

    Returns:
        `(private_pem, public_pem)`; the private key is unencrypted PKCS#8 and
        the public key is SubjectPublicKeyInfo, the form remote servers expect
        in `publicKey.publicKeyPem`.
    """
    private_key = rsa.generate_private_key(
        public_exponent=RSA_PUBLIC_EXPONENT, key_size=RSA_KEY_SIZE
    )
    private_pem = private_key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.PKCS8,
        encryption_algorithm=serialization.NoEncryption(),
    ).decode("ascii")
    public_pem = private_key.public_key().public_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PublicFormat.SubjectPublicKeyInfo,
    ).decode("ascii")
    return private_pem, public_pem


def rsa_sign(private_pem: str, message: bytes, digest: str = "sha256") -> bytes:
    """Sign `message` with PKCS#1 v1.5 under the PEM-encoded private key."""
    key = serialization.load_pem_private_key(private_pem.encode("ascii"), password=None)
    if not isinstance(key, rsa.RSAPrivateKey):
        raise ValueError("not an RSA private key")
    return key.sign(message, padding.PKCS1v15(), _HASHES[digest]())


def rsa_verify(public_pem: str, message: bytes, signature: bytes, digest: str = "sha256") -> bool:
    """Verify a PKCS#1 v1.5 signature.

    Returns:
        True if `signature` is valid for `message` under `public_pem`; False if
        the key cannot be loaded, is not RSA, or the signature does not match.
    """
    try:
        key = serialization.load_pem_public_key(public_pem.encode("ascii"))
    except (ValueError, TypeError):
        return False
    if not isinstance(key, rsa.RSAPublicKey):
        return False
    try:
        key.verify(signature, message, padding.PKCS1v15(), _HASHES[digest]())
    except InvalidSignature:
        return False
    return True
