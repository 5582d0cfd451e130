# Copyright 2025 Jared Hendrickson
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#    http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.
"""PEM encoding of the key material generated for accounts and certificates."""
from cryptography.exceptions import UnsupportedAlgorithm
from cryptography.hazmat.backends import default_backend
from cryptography.hazmat.primitives.asymmetric import rsa, ec
from cryptography.hazmat.primitives.serialization import (
    Encoding,
    NoEncryption,
    PrivateFormat,
    PublicFormat,
)

from .. import errors


# Constants and Variables
KEY_TYPES = ['ec256', 'ec384', 'rsa2048', 'rsa3072', 'rsa4096']
PEM_CERTIFICATE_END = b"-----END CERTIFICATE-----"


def generate_private_key(key_type: str = 'rsa2048'):
    """
    Generates a new RSA or EC private key.

    Args:
        key_type (str): The requested key type. Options are: [`ec256`, `ec384`, `rsa2048`, `rsa3072`, `rsa4096`]

    Returns:
        The generated `cryptography` private key object.

    Raises:
        acme_dns_issuer.errors.InvalidKeyType: When an unknown/unsupported `key_type` is requested.
        acme_dns_issuer.errors.KeyGenerationError: When the platform fails to generate the key.
    """
    try:
        # Generate a EC256 private key
        if key_type == 'ec256':
            return ec.generate_private_key(ec.SECP256R1(), default_backend())
        # Generate a EC384 private key
        if key_type == 'ec384':
            return ec.generate_private_key(ec.SECP384R1(), default_backend())
        # Generate a RSA private key of the requested size
        if key_type in ('rsa2048', 'rsa3072', 'rsa4096'):
            return rsa.generate_private_key(public_exponent=65537, key_size=int(key_type[3:]), backend=default_backend())
    except (ValueError, UnsupportedAlgorithm) as error:
        raise errors.KeyGenerationError(f"Failed to generate '{key_type}' private key: {error}") from error

    # Otherwise, the requested key type is not supported. Throw an error
    raise errors.InvalidKeyType(f"Invalid private key type '{key_type}'. Options {KEY_TYPES}")


def encode_private_key(key) -> bytes:
    """
    PEM encodes a private key in the traditional OpenSSL format for its algorithm.

    Args:
        key: An RSA or EC private key object.

    Returns:
        bytes: A `RSA PRIVATE KEY` or `EC PRIVATE KEY` PEM block.

    Raises:
        acme_dns_issuer.errors.EncodingError: When the key is not an RSA or EC private key.
    """
    if not isinstance(key, (rsa.RSAPrivateKey, ec.EllipticCurvePrivateKey)):
        raise errors.EncodingError(f"Cannot PEM encode private key of type '{type(key).__name__}'.")

    return key.private_bytes(
        encoding=Encoding.PEM,
        format=PrivateFormat.TraditionalOpenSSL,
        encryption_algorithm=NoEncryption()
    )


def encode_public_key(key) -> bytes:
    """
    PEM encodes the SubjectPublicKeyInfo of a key. Private keys are reduced to their public half first.

    Args:
        key: An RSA or EC key object, either private or public.

    Returns:
        bytes: A `PUBLIC KEY` PEM block.

    Raises:
        acme_dns_issuer.errors.EncodingError: When the key is not an RSA or EC key.
    """
    if isinstance(key, (rsa.RSAPrivateKey, ec.EllipticCurvePrivateKey)):
        key = key.public_key()

    if not isinstance(key, (rsa.RSAPublicKey, ec.EllipticCurvePublicKey)):
        raise errors.EncodingError(f"Cannot PEM encode public key of type '{type(key).__name__}'.")

    return key.public_bytes(encoding=Encoding.PEM, format=PublicFormat.SubjectPublicKeyInfo)


def split_pem_chain(chain: bytes) -> list:
    """
    Splits a concatenated PEM certificate chain into its individual certificates.

    Args:
        chain (bytes): One or more concatenated `CERTIFICATE` PEM blocks.

    Returns:
        list: The certificate PEM blocks in chain order, each ending in a newline.
    """
    certificates = []

    for block in chain.split(PEM_CERTIFICATE_END):
        block = block.strip()
        if block:
            certificates.append(block + b"\n" + PEM_CERTIFICATE_END + b"\n")

    return certificates
