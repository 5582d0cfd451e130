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
"""The operator's ACME account: contact email, account key and CA registration."""
import josepy as jose
from cryptography.exceptions import UnsupportedAlgorithm
from cryptography.hazmat.backends import default_backend
from cryptography.hazmat.primitives.asymmetric import rsa

from .. import errors


# Constants and Variables
MIN_KEY_SIZE = 2048
DEFAULT_KEY_SIZE = 2048


class Account:
    """
    An ACME account identity. The key pair is set at creation, the registration exactly once after the ACME server
    accepted the account.
    """

    def __init__(self, email: str, private_key: rsa.RSAPrivateKey) -> None:
        """
        Args:
            email (str): The contact email registered with the ACME server.
            private_key (rsa.RSAPrivateKey): The account key used to sign ACME requests.
        """
        self.email = email
        self.private_key = private_key
        self._registration = None

    def __repr__(self) -> str:
        return f"Account(email={self.email!r}, registered={self.registration is not None})"

    @property
    def jwk(self) -> jose.JWKRSA:
        """The account key as a JSON Web Key for signing ACME requests."""
        return jose.JWKRSA(key=self.private_key)

    @property
    def registration(self):
        """
        Getter for the `registration` property.

        Returns:
            acme.messages.RegistrationResource: The ACME registration, or `None` before registration.
        """
        return self._registration

    @registration.setter
    def registration(self, value) -> None:
        """
        Setter for the `registration` property. The registration can only be set once.

        Raises:
            acme_dns_issuer.errors.InvalidStateError: When the account already holds a registration.
        """
        if self._registration is not None:
            raise errors.InvalidStateError(f"Account '{self.email}' is already registered.")

        self._registration = value


def create_account(email: str, key_size: int = DEFAULT_KEY_SIZE) -> Account:
    """
    Creates a new account with a freshly generated RSA key pair.

    Args:
        email (str): The account contact email.
        key_size (int): The RSA key size in bits. Must be at least 2048.

    Returns:
        acme_dns_issuer.account.Account: The new, unregistered account.

    Raises:
        acme_dns_issuer.errors.KeyGenerationError: When the key size is too small or the key cannot be generated.
    """
    if key_size < MIN_KEY_SIZE:
        raise errors.KeyGenerationError(f"Account key size must be at least {MIN_KEY_SIZE} bits, got {key_size}.")

    try:
        private_key = rsa.generate_private_key(public_exponent=65537, key_size=key_size, backend=default_backend())
    except (ValueError, UnsupportedAlgorithm) as error:
        raise errors.KeyGenerationError(f"Failed to generate {key_size}-bit account key: {error}") from error

    return Account(email, private_key)


def attach_registration(account: Account, registration) -> Account:
    """
    Records the ACME server's registration on the account.

    Raises:
        acme_dns_issuer.errors.InvalidStateError: When the account already holds a registration.
    """
    account.registration = registration
    return account
