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
"""DNS challenge providers that publish and remove the `_acme-challenge` TXT records."""
import abc
import logging

import requests

from .. import errors

logger = logging.getLogger(__name__)

# Constants and Variables
DNS_LABEL = '_acme-challenge'
DEFAULT_PROPAGATION_TIMEOUT = 300
DEFAULT_POLLING_INTERVAL = 5
DNSIMPLE_API_URL = "https://api.dnsimple.com/v2"
DNSIMPLE_SANDBOX_API_URL = "https://api.sandbox.dnsimple.com/v2"
DNSIMPLE_TTL = 60


def strip_wildcard(domain: str) -> str:
    """
    Strips the wildcard portion of a domain (*.) if present.

    Args:
        domain (str): The domain string to strip wildcards from.

    Returns:
        str: The domain string without the wildcard portion.
    """
    return domain[2:] if domain.startswith("*.") else domain


def challenge_record_name(domain: str) -> str:
    """Returns the TXT record name the DNS-01 challenge for `domain` is validated against."""
    return f"{DNS_LABEL}.{strip_wildcard(domain)}"


class DNSProvider(abc.ABC):
    """
    Base class for DNS-01 challenge providers. The ACME client calls `present()` for each domain before answering its
    challenge, waits up to `timeout()` for the record to propagate and calls `cleanup()` once validation is over.
    """

    def __init__(
            self,
            propagation_timeout: int = DEFAULT_PROPAGATION_TIMEOUT,
            polling_interval: int = DEFAULT_POLLING_INTERVAL
    ) -> None:
        self.propagation_timeout = propagation_timeout
        self.polling_interval = polling_interval

    @abc.abstractmethod
    def present(self, domain: str, token: str, validation: str) -> None:
        """
        Publishes the challenge TXT record for a domain.

        Args:
            domain (str): The domain being validated.
            token (str): The ACME challenge token.
            validation (str): The TXT record value proving control of the domain.

        Raises:
            acme_dns_issuer.errors.ProviderError: When the record cannot be created.
        """

    @abc.abstractmethod
    def cleanup(self, domain: str, token: str, validation: str) -> None:
        """Removes the challenge TXT record created by `present()`."""

    def timeout(self) -> tuple:
        """
        Returns:
            tuple: The propagation timeout and the polling interval, both in seconds.
        """
        return self.propagation_timeout, self.polling_interval


class DNSimpleProvider(DNSProvider):
    """A DNS-01 challenge provider for DNSimple using its v2 API."""

    def __init__(
            self,
            api_key: str,
            user: str = None,
            sandbox: bool = False,
            session: requests.Session = None,
            **kwargs
    ) -> None:
        """
        Args:
            api_key (str): A DNSimple API access token.
            user (str): The DNSimple account email. When set, the token must belong to this account.
            sandbox (bool): Use the DNSimple sandbox API.
            session (requests.Session): The HTTP session to use.
        """
        super().__init__(**kwargs)
        self.user = user
        self.base_url = DNSIMPLE_SANDBOX_API_URL if sandbox else DNSIMPLE_API_URL
        self.session = session if session else requests.Session()
        self.session.headers.update({
            "Authorization": f"Bearer {api_key}",
            "Accept": "application/json",
            "User-Agent": "acme_dns_issuer/1.0"
        })
        self._account_id = None
        self._records = {}

    def present(self, domain: str, token: str, validation: str) -> None:
        fqdn = challenge_record_name(domain)
        zone = self.find_zone(domain, fqdn)
        name = fqdn[:-len(zone) - 1]

        data = self.request("POST", f"/{self.account_id}/zones/{zone}/records", domain, json={
            "name": name,
            "type": "TXT",
            "content": validation,
            "ttl": DNSIMPLE_TTL
        })
        if not isinstance(data, dict) or "id" not in data:
            raise errors.ProviderError(f"[{domain}] DNSimple API did not return the id of TXT record '{fqdn}'.")
        self._records[(fqdn, validation)] = (zone, data["id"])
        logger.info("Created TXT record '%s' in DNSimple zone '%s'", fqdn, zone)

    def cleanup(self, domain: str, token: str, validation: str) -> None:
        fqdn = challenge_record_name(domain)
        record = self._records.pop((fqdn, validation), None)

        if record is None:
            logger.warning("No TXT record for '%s' was created, nothing to clean up", fqdn)
            return

        zone, record_id = record
        self.request("DELETE", f"/{self.account_id}/zones/{zone}/records/{record_id}", domain)
        logger.info("Removed TXT record '%s' from DNSimple zone '%s'", fqdn, zone)

    @property
    def account_id(self) -> str:
        """
        Getter for the `account_id` property. Looks up the account the API token belongs to on first use.

        Raises:
            acme_dns_issuer.errors.ProviderError: When the token is not an account token or belongs to another user.
        """
        if self._account_id is None:
            whoami = self.request("GET", "/whoami")
            account = whoami.get("account") if isinstance(whoami, dict) else None
            if not isinstance(account, dict) or "id" not in account:
                raise errors.ProviderError("DNSimple API token is not an account access token.")
            if self.user and account.get("email") != self.user:
                raise errors.ProviderError(
                    f"DNSimple API token belongs to '{account.get('email')}', not '{self.user}'."
                )
            self._account_id = str(account["id"])

        return self._account_id

    def find_zone(self, domain: str, fqdn: str) -> str:
        """
        Finds the DNSimple zone hosting a record by checking each parent name of the record, longest first.

        Raises:
            acme_dns_issuer.errors.ProviderError: When no zone in the account hosts the record.
        """
        labels = fqdn.rstrip(".").split(".")

        for index in range(1, len(labels) - 1):
            zone = ".".join(labels[index:])
            try:
                response = self.session.get(f"{self.base_url}/{self.account_id}/zones/{zone}")
            except requests.exceptions.RequestException as error:
                raise errors.ProviderError(f"[{domain}] DNSimple API request failed: {error}") from error
            if response.status_code == 200:
                return zone
            if response.status_code != 404:
                self.raise_for_status(response, domain)

        raise errors.ProviderError(f"No DNSimple zone found for '{fqdn}'.")

    def request(self, method: str, path: str, domain: str = None, **kwargs) -> dict:
        """
        Sends a request to the DNSimple API.

        Returns:
            dict: The `data` member of the JSON response, or an empty dict for responses without a body.

        Raises:
            acme_dns_issuer.errors.ProviderError: When the request fails or the API returns an error.
        """
        try:
            response = self.session.request(method, f"{self.base_url}{path}", **kwargs)
        except requests.exceptions.RequestException as error:
            raise errors.ProviderError(f"DNSimple API request failed: {error}") from error

        self.raise_for_status(response, domain)
        if not response.content:
            return {}

        prefix = f"[{domain}] " if domain else ""
        try:
            body = response.json()
        except ValueError as error:
            raise errors.ProviderError(f"{prefix}DNSimple API returned a non-JSON response: {error}") from error
        if not isinstance(body, dict):
            raise errors.ProviderError(f"{prefix}DNSimple API returned an unexpected response: {body!r}")

        return body.get("data") or {}

    @staticmethod
    def raise_for_status(response: requests.Response, domain: str = None) -> None:
        """Raises a ProviderError carrying the API's message for unsuccessful responses."""
        try:
            response.raise_for_status()
        except requests.exceptions.HTTPError as error:
            try:
                detail = response.json().get("message", response.text)
            except ValueError:
                detail = response.text
            prefix = f"[{domain}] " if domain else ""
            raise errors.ProviderError(f"{prefix}DNSimple API error {response.status_code}: {detail}") from error


def new_provider(credentials, **kwargs) -> DNSProvider:
    """
    Creates the DNS challenge provider for a set of credentials.

    Args:
        credentials (acme_dns_issuer.config.DNSCredentials): The DNS provider credentials.

    Returns:
        acme_dns_issuer.providers.DNSProvider: The configured provider.

    Raises:
        acme_dns_issuer.errors.ConfigurationError: When the credentials are incomplete.
    """
    if not credentials.api_key:
        raise errors.ConfigurationError("A DNSimple API key is required (--api-key or DNSIMPLE_API_KEY).")

    return DNSimpleProvider(credentials.api_key, user=credentials.user, sandbox=credentials.sandbox, **kwargs)
