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
"""Immutable configuration of a single issuance run."""
import dataclasses
import urllib.parse

import dns.inet
import validators

from .. import codec
from .. import errors
from ..account import DEFAULT_KEY_SIZE, MIN_KEY_SIZE
from ..providers import DEFAULT_POLLING_INTERVAL, DEFAULT_PROPAGATION_TIMEOUT, strip_wildcard


# Constants and Variables
STAGING_DIRECTORY = "https://acme-staging-v02.api.letsencrypt.org/directory"
DEFAULT_DATA_ROOT = ".data"
EMAIL_PLACEHOLDER = "%v"


@dataclasses.dataclass(frozen=True)
class DNSCredentials:
    """Credentials of the DNS challenge provider."""
    user: str = None
    api_key: str = None
    sandbox: bool = False

    def __repr__(self) -> str:
        return f"DNSCredentials(user={self.user!r}, api_key={'***' if self.api_key else None}, sandbox={self.sandbox})"


@dataclasses.dataclass(frozen=True)
class Config:
    """
    Everything an issuance run needs. Build it with `Config.from_arguments()` so the values are validated before the
    run touches the disk or the network.
    """
    ca_directory_url: str
    data_root: str
    email: str
    dns_credentials: DNSCredentials
    domains: tuple
    email_template: bool = False
    account_key_size: int = DEFAULT_KEY_SIZE
    certificate_key_type: str = "rsa2048"
    nameservers: tuple = ()
    propagation_timeout: int = DEFAULT_PROPAGATION_TIMEOUT
    polling_interval: int = DEFAULT_POLLING_INTERVAL
    check_propagation: bool = True
    verify_ssl: bool = True

    @classmethod
    def from_arguments(
            cls,
            domains,
            email: str,
            dns_credentials: DNSCredentials,
            ca_directory_url: str = STAGING_DIRECTORY,
            data_root: str = DEFAULT_DATA_ROOT,
            email_template: bool = False,
            **kwargs
    ) -> 'Config':
        """
        Validates and builds a configuration.

        Args:
            domains (str|list): A comma separated domain string or a list of domains.
            email (str): The account email. With `email_template`, each `%v` is replaced by the run's timestamp.
            dns_credentials (DNSCredentials): The DNS provider credentials.
            ca_directory_url (str): The ACME directory URL.
            data_root (str): The directory keys and certificates are saved under.
            email_template (bool): Treat `email` as a template containing a `%v` placeholder.

        Returns:
            acme_dns_issuer.config.Config: The validated configuration.

        Raises:
            acme_dns_issuer.errors.ConfigurationError: When any value is missing or invalid.
        """
        config = cls(
            ca_directory_url=ca_directory_url,
            data_root=data_root,
            email=email,
            dns_credentials=dns_credentials,
            domains=parse_domains(domains),
            email_template=email_template,
            **kwargs
        )
        config.validate()
        return config

    def validate(self) -> None:
        """
        Checks every value that can be checked without touching the disk or the network.

        Raises:
            acme_dns_issuer.errors.ConfigurationError: When any value is missing or invalid.
        """
        # Validating a sample resolves the template and checks the address in one go
        self.account_email(0)

        url = urllib.parse.urlparse(self.ca_directory_url or "")
        if url.scheme not in ("http", "https") or not url.netloc:
            raise errors.ConfigurationError(f"Invalid ACME directory URL '{self.ca_directory_url}'.")
        if not self.data_root:
            raise errors.ConfigurationError("A data directory path is required.")
        if not self.dns_credentials.api_key:
            raise errors.ConfigurationError("A DNSimple API key is required (--api-key or DNSIMPLE_API_KEY).")
        if self.account_key_size < MIN_KEY_SIZE:
            raise errors.ConfigurationError(f"Account key size must be at least {MIN_KEY_SIZE} bits.")
        if self.certificate_key_type not in codec.KEY_TYPES:
            raise errors.ConfigurationError(
                f"Invalid certificate key type '{self.certificate_key_type}'. Options {codec.KEY_TYPES}"
            )
        if self.propagation_timeout < 0 or self.polling_interval <= 0:
            raise errors.ConfigurationError("Propagation timeout and polling interval must be positive.")
        for nameserver in self.nameservers:
            if not dns.inet.is_address(nameserver):
                raise errors.ConfigurationError(f"Nameserver '{nameserver}' is not an IPv4 or IPv6 address.")

    def account_email(self, timestamp: int) -> str:
        """
        Returns the account email for a run. Only with `email_template` set is the `%v` placeholder replaced by the
        run's Unix timestamp, which produces a unique throwaway account per run.

        Raises:
            acme_dns_issuer.errors.InvalidEmail: When the email is missing, invalid or misuses the placeholder.
        """
        if not self.email:
            raise errors.InvalidEmail("--email is required")

        if self.email_template:
            if EMAIL_PLACEHOLDER not in self.email:
                raise errors.InvalidEmail(f"Email template '{self.email}' does not contain '{EMAIL_PLACEHOLDER}'.")
            email = self.email.replace(EMAIL_PLACEHOLDER, str(int(timestamp)))
        elif EMAIL_PLACEHOLDER in self.email:
            raise errors.InvalidEmail(
                f"Email '{self.email}' contains '{EMAIL_PLACEHOLDER}'; enable email templating to substitute it."
            )
        else:
            email = self.email

        if not validators.email(email):
            raise errors.InvalidEmail(f"Value '{email}' is not a valid email address.")

        return email


def parse_domains(value) -> tuple:
    """
    Parses and validates the requested domains.

    Args:
        value (str|list): A comma separated domain string or a list of domains.

    Returns:
        tuple: The domains in the requested order, duplicates removed.

    Raises:
        acme_dns_issuer.errors.InvalidDomain: When no domain was given or a domain is empty or invalid.
    """
    if not value:
        raise errors.InvalidDomain("At least one domain is required.")

    domains = value.split(",") if isinstance(value, str) else list(value)
    parsed = []

    for domain in domains:
        domain = domain.strip().lower()
        if not domain:
            raise errors.InvalidDomain(f"Empty domain name in '{value}'.")
        # Check that value (minus the wildcard if present) is a valid FQDN
        if not validators.domain(strip_wildcard(domain)):
            raise errors.InvalidDomain(f"Invalid domain name '{domain}'. Domain name must adhere to RFC2181.")
        if domain not in parsed:
            parsed.append(domain)

    return tuple(parsed)
