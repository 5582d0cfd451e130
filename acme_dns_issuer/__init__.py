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
"""
acme_dns_issuer issues a certificate from an ACME CA in one shot using the DNS-01 challenge. It creates and registers
an account, publishes the challenge records through a DNS provider, obtains a single certificate covering every
requested domain and saves the keys and certificate to a versioned data directory. Although it defaults to the Let's
Encrypt staging environment, it will support any CA utilizing the ACME v2 protocol.
"""
import datetime
import logging
import time
from typing import NamedTuple

import josepy as jose
import requests
from acme import challenges
from acme import client
from acme import crypto_util
from acme import errors as acme_errors
from acme import messages

from . import codec
from . import errors
from . import providers
from . import tools


# Constants and Variables
USER_AGENT = 'acme_dns_issuer/1.0'
DNS01 = challenges.DNS01.typ
CHALLENGE_TYPES = [DNS01, 'http-01', 'tls-sni-01', 'tls-alpn-01']
__pdoc__ = {"tests": False}    # Excludes 'tests' submodule from documentation

logger = logging.getLogger(__name__)


class CertificateBundle(NamedTuple):
    """An issued certificate and its private key."""
    domains: tuple
    private_key: bytes
    certificate_chain: bytes
    issued_at: int


class ACMEClient:
    """
    An ACME client bound to one account that validates domains through DNS-01 challenge providers.
    """
    # pylint: disable=too-many-instance-attributes

    def __init__(
            self,
            directory: str,
            account,
            key_type: str = 'rsa2048',
            acme_client: client.ClientV2 = None,
            nameservers: list = None,
            check_propagation: bool = True,
            authoritative: bool = False,
            finalize_timeout: int = 90
    ):
        """
        Args:
            directory (str): The ACME directory URL to interact with.
            account (acme_dns_issuer.account.Account): The account requests are signed with.
            key_type (str): The certificate private key type. Options are: [`ec256`, `ec384`, `rsa2048`, `rsa3072`,
                `rsa4096`]
            acme_client (acme.client.ClientV2): A ready ACME client. Use `ACMEClient.new_client()` to create one
                from the directory URL.
            nameservers (list): DNS server IP addresses to query when checking DNS propagation.
            check_propagation (bool): Wait for each challenge record to be visible in DNS before answering.
            authoritative (bool): Check propagation against each zone's authoritative nameserver.
            finalize_timeout (int): The amount of time (in seconds) to wait for the ACME server to validate the
                challenges and issue the certificate.
        """
        self.directory = directory
        self.account = account
        self.key_type = key_type
        self.nameservers = nameservers
        self.check_propagation = check_propagation
        self.authoritative = authoritative
        self.finalize_timeout = finalize_timeout
        self.excluded_challenges = set()
        self.providers = {}
        self.terms_of_service = None
        self.order = None
        self.final_order = None
        self._responses = []
        self._acme_client = None

        if acme_client is not None:
            self.acme_client = acme_client

    @classmethod
    def new_client(
            cls,
            directory: str,
            account,
            key_type: str = 'rsa2048',
            verify_ssl: bool = True,
            **kwargs
    ) -> 'ACMEClient':
        """
        Retrieves the ACME directory and creates a client for the account.

        Args:
            directory (str): The ACME directory URL.
            account (acme_dns_issuer.account.Account): The account requests are signed with.
            key_type (str): The certificate private key type.
            verify_ssl (bool): Verify the SSL certificate of the ACME server when making requests.

        Returns:
            acme_dns_issuer.ACMEClient: The new client.

        Raises:
            acme_dns_issuer.errors.DirectoryError: When the directory cannot be retrieved.
        """
        net = client.ClientNetwork(account.jwk, user_agent=USER_AGENT, verify_ssl=verify_ssl)

        try:
            directory_obj = client.ClientV2.get_directory(directory, net)
        except (acme_errors.Error, jose.Error, requests.exceptions.RequestException, ValueError) as error:
            raise errors.DirectoryError(f"Failed to retrieve ACME directory '{directory}': {error}") from error

        return cls(directory, account, key_type=key_type, acme_client=client.ClientV2(directory_obj, net=net), **kwargs)

    def exclude_challenges(self, types: list) -> None:
        """
        Prevents the given challenge types from being used for validation.

        Args:
            types (list): ACME challenge type strings, e.g. `http-01`.
        """
        self.excluded_challenges.update(types)

    def set_challenge_provider(self, challenge_type: str, provider: providers.DNSProvider) -> None:
        """
        Routes challenges of a type to a provider.

        Raises:
            acme_dns_issuer.errors.ChallengeUnavailable: When the challenge type is not DNS-01.
        """
        if challenge_type != DNS01:
            raise errors.ChallengeUnavailable(f"No provider support for challenge type '{challenge_type}'.")

        self.providers[challenge_type] = provider

    def register(self) -> messages.RegistrationResource:
        """
        Registers the account at the ACME server.

        Returns:
            acme.messages.RegistrationResource: The registration handle.

        Raises:
            acme_dns_issuer.errors.RegistrationError: When the ACME server rejects the account.
        """
        registration = messages.NewRegistration.from_data(email=self.account.email, terms_of_service_agreed=True)

        try:
            return self.acme_client.new_account(registration)
        except acme_errors.ConflictError as error:
            raise errors.RegistrationError(f"An account already exists for this key at '{error.location}'.") from error
        except (acme_errors.Error, requests.exceptions.RequestException) as error:
            raise errors.RegistrationError(str(error)) from error

    def agree_to_tos(self) -> str:
        """
        Accepts the ACME server's current terms of service for the registered account.

        Returns:
            str: The terms of service URL published by the ACME server, if any.

        Raises:
            acme_dns_issuer.errors.InvalidStateError: When the account is not registered yet.
            acme_dns_issuer.errors.TOSError: When the ACME server rejects the agreement.
        """
        registration = self.account.registration
        if registration is None:
            raise errors.InvalidStateError("The account must be registered before agreeing to the terms of service.")

        self.terms_of_service = self.acme_client.directory.meta.terms_of_service

        try:
            self.acme_client.update_registration(
                registration, registration.body.update(terms_of_service_agreed=True)
            )
        except (acme_errors.Error, requests.exceptions.RequestException) as error:
            raise errors.TOSError(str(error)) from error

        return self.terms_of_service

    def obtain_certificate(self, domains: list, bundle: bool = True, issued_at: int = None) -> tuple:
        """
        Requests one certificate covering all `domains`. Each domain's challenge record is published through its
        provider, the challenges are answered once every record is in place and the order is finalized. All records
        that were published are removed again whatever the outcome.

        Args:
            domains (list): The domains to include in the certificate.
            bundle (bool): Include the intermediate certificates after the leaf certificate.
            issued_at (int): The Unix timestamp recorded on the bundle. Defaults to the time of issuance.

        Returns:
            tuple: The `CertificateBundle`, or `None` on failure, and a dictionary mapping each failing domain to its
                `acme_dns_issuer.errors.ChallengeValidationError`. Any failure means no certificate.
        """
        domains = list(domains)
        private_key = codec.encode_private_key(codec.generate_private_key(self.key_type))
        csr = crypto_util.make_csr(private_key, domains)

        try:
            self.order = self.acme_client.new_order(csr)
        except (acme_errors.Error, requests.exceptions.RequestException) as error:
            return None, self.fail_all(domains, f"Order rejected: {error}")

        selected, failures = self.select_challenges(self.order)
        if failures:
            return None, failures

        presented = []
        try:
            failures = self.present_challenges(selected, presented)
            if not failures:
                failures = self.finalize(domains)
        finally:
            self.cleanup_challenges(presented)

        if failures:
            return None, failures

        chain = self.final_order.fullchain_pem.encode()
        if not bundle:
            chain = codec.split_pem_chain(chain)[0]

        logger.info("Certificate issued for %s", ", ".join(domains))
        issued_at = int(issued_at) if issued_at is not None else int(time.time())
        return CertificateBundle(tuple(domains), private_key, chain, issued_at), {}

    def select_challenges(self, order) -> tuple:
        """
        Picks, for each authorization in the order, the first offered challenge that is not excluded and has a
        provider. Authorizations the account already holds are skipped.

        Returns:
            tuple: A dictionary mapping each domain to its `(challenge, provider)` pair, and the failures dictionary.
        """
        selected = {}
        failures = {}

        for authz in list(order.authorizations):
            domain = self.authorization_domain(authz)
            if getattr(authz.body, "status", None) == messages.STATUS_VALID:
                logger.info("Authorization for '%s' is already valid", domain)
                continue

            for challenge in authz.body.challenges:
                typ = challenge.chall.typ
                if typ not in self.excluded_challenges and typ in self.providers:
                    selected[domain] = (challenge, self.providers[typ])
                    break
            else:
                offered = [challenge.chall.typ for challenge in authz.body.challenges]
                msg = f"ACME server at '{self.directory}' offers no usable challenge for '{domain}' (offered {offered})."
                failures[domain] = errors.ChallengeValidationError(msg, domain=domain)

        return selected, failures

    def present_challenges(self, selected: dict, presented: list) -> dict:
        """
        Publishes each selected challenge record and waits for it to propagate. Published records are appended to
        `presented` as they are created so the caller can clean them up.

        Returns:
            dict: The failures dictionary.
        """
        failures = {}
        self._responses = []

        for domain, (challenge, provider) in selected.items():
            response, validation = challenge.chall.response_and_validation(self.acme_client.net.key)
            token = jose.b64encode(challenge.chall.token).decode()

            try:
                provider.present(domain, token, validation)
            except errors.ProviderError as error:
                failures[domain] = errors.ChallengeValidationError(error.message, domain=domain)
                continue

            presented.append((domain, token, validation, provider))
            self._responses.append((challenge, response))

        # Do not wait on DNS when the order is going to fail anyway
        if failures or not self.check_propagation:
            return failures

        for domain, _, validation, provider in presented:
            timeout, interval = provider.timeout()
            try:
                tools.wait_for_txt_record(
                    providers.challenge_record_name(domain),
                    validation,
                    timeout=timeout,
                    interval=interval,
                    nameservers=self.nameservers,
                    authoritative=self.authoritative
                )
            except (errors.ACMETimeout, errors.ProviderError) as error:
                failures[domain] = errors.ChallengeValidationError(error.message, domain=domain)

        return failures

    def finalize(self, domains: list) -> dict:
        """
        Answers the presented challenges and polls the order until the certificate is issued.

        Returns:
            dict: The failures dictionary.
        """
        deadline = datetime.datetime.now() + datetime.timedelta(seconds=self.finalize_timeout)

        try:
            for challenge, response in self._responses:
                self.acme_client.answer_challenge(challenge, response)
            self.final_order = self.acme_client.poll_and_finalize(self.order, deadline=deadline)
        except acme_errors.ValidationError as error:
            failures = {}
            for authz in error.failed_authzrs:
                domain = self.authorization_domain(authz)
                details = [str(challenge.error) for challenge in authz.body.challenges if challenge.error]
                msg = "; ".join(details) if details else "Authorization is invalid."
                failures[domain] = errors.ChallengeValidationError(msg, domain=domain)
            return failures
        except acme_errors.TimeoutError:
            return self.fail_all(domains, f"ACME server did not issue the certificate within {self.finalize_timeout}s.")
        except (acme_errors.Error, requests.exceptions.RequestException) as error:
            return self.fail_all(domains, str(error))

        return {}

    @staticmethod
    def cleanup_challenges(presented: list) -> None:
        """Removes each published challenge record. Failures are logged, never raised."""
        for domain, token, validation, provider in presented:
            try:
                provider.cleanup(domain, token, validation)
            except errors.ProviderError as error:
                logger.warning("Failed to clean up challenge record for '%s': %s", domain, error.message)

    @staticmethod
    def authorization_domain(authz) -> str:
        """Returns the domain an authorization is for, wildcard prefix included."""
        domain = authz.body.identifier.value
        return f"*.{domain}" if getattr(authz.body, "wildcard", False) else domain

    @staticmethod
    def fail_all(domains: list, msg: str) -> dict:
        """Creates the same failure for every domain."""
        return {domain: errors.ChallengeValidationError(msg, domain=domain) for domain in domains}

    @property
    def acme_client(self) -> client.ClientV2:
        """
        Getter for the `acme_client` property. This checks that the ACME client is set up whenever it's referenced.

        Returns:
            acme.client.ClientV2: The ClientV2 object needed to interact with the ACME server.

        Raises:
            acme_dns_issuer.errors.InvalidStateError: When no ACME client is configured for this object.
        """
        if not isinstance(self._acme_client, client.ClientV2):
            msg = 'No ACME client found. Use ACMEClient.new_client() to connect to the ACME directory first.'
            raise errors.InvalidStateError(msg)

        return self._acme_client

    @acme_client.setter
    def acme_client(self, value: client.ClientV2):
        """
        Setter for the `acme_client` property. This ensures the acme_client is an acme.client.ClientV2 object

        Raises:
            acme_dns_issuer.errors.InvalidStateError: When the `value` is not an acme.client.ClientV2 object
        """
        if not isinstance(value, client.ClientV2):
            msg = f"Value '{value}' is not an acme.client.ClientV2 object."
            raise errors.InvalidStateError(msg)

        self._acme_client = value
