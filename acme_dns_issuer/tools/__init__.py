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
"""DNS tools to check challenge records have propagated before ACME validation."""
import datetime
import logging
import time

import dns.exception
import dns.resolver

from .. import errors

logger = logging.getLogger(__name__)


class DNSQuery:
    """A basic class to make repeated DNS queries"""

    def __init__(
        self,
        domain: str,
        rtype: str = "A",
        nameservers: list = None,
        authoritative: bool = False,
        round_robin: bool = False
    ) -> None:
        """
        Initializes our DNS query. No request is made until `resolve()` is called, except for the nameserver lookup
        when `authoritative` is set.

        Args:
            domain (str): The fully qualified domain name to query.
            rtype (str): The DNS request type (e.g. `A`, `TXT`, `CNAME`, etc.).
            nameservers (list): Nameserver IP addresses to query. Defaults to the system's resolvers.
            authoritative (bool): Query the authoritative nameserver of the domain's zone instead.
            round_robin (bool): Rotate between each nameserver instead of the default fail-over method.
        """
        self.round_robin = round_robin
        self.type = rtype.upper()
        self.domain = domain
        self.nameservers = list(nameservers) if nameservers else dns.resolver.Resolver().nameservers
        self.nameservers = self.get_authoritative_nameservers() if authoritative else self.nameservers
        self.values = []
        self.last_nameserver = ""

    def resolve(self) -> list:
        """
        Queries the nameservers for our domain. Missing records, unreachable nameservers and timeouts all yield an
        empty result since the record may simply not have propagated yet.

        Returns:
            list: The answer values. TXT record strings are joined and returned without quotes.
        """
        self.last_nameserver = self.nameservers[0] if self.nameservers else ""

        try:
            self.values = [self.to_value(rdata) for rdata in self.query(self.domain, self.type, self.nameservers)]
        except (dns.resolver.NoAnswer, dns.resolver.NXDOMAIN):
            self.values = []
        except (dns.resolver.NoNameservers, dns.exception.Timeout) as error:
            logger.debug("%s query for '%s' via %s failed: %s", self.type, self.domain, self.last_nameserver, error)
            self.values = []

        # Rotate the nameservers if round robin mode is enabled
        if self.round_robin and len(self.nameservers) > 1:
            self.nameservers = self.nameservers[1:] + [self.nameservers[0]]

        return self.values

    def get_authoritative_nameservers(self) -> list:
        """
        Walks up the domain's labels until a zone SOA is found and resolves the SOA's primary nameserver.

        Returns:
            list: The IP addresses of the authoritative nameserver.

        Raises:
            acme_dns_issuer.errors.ProviderError: When no zone SOA can be found for the domain.
        """
        domain_sections = self.domain.rstrip(".").split(".")

        try:
            # Loop through each level of the subdomain to find the SOA for this FQDN.
            while domain_sections:
                try:
                    soa = self.query(".".join(domain_sections), "SOA", self.nameservers)[0]
                except (dns.resolver.NoAnswer, dns.resolver.NXDOMAIN):
                    domain_sections.pop(0)
                    continue

                primary = soa.mname.to_text()
                return [rdata.to_text() for rdata in self.query(primary, "A", self.nameservers)]
        except dns.exception.DNSException as error:
            raise errors.ProviderError(f"Authoritative nameserver lookup for '{self.domain}' failed: {error}") from error

        raise errors.ProviderError(f"No authoritative nameserver found for '{self.domain}'.")

    @staticmethod
    def query(domain: str, rtype: str, nameservers: list):
        """
        Internal DNS request method.

        Returns:
             dns.resolver.Answer: The answer's record data.

        Raises:
            acme_dns_issuer.errors.ProviderError: When a nameserver or the query itself is malformed.
        """
        resolver = dns.resolver.Resolver(configure=False)
        try:
            resolver.nameservers = nameservers
            return resolver.resolve(domain, rtype)
        except ValueError as error:
            raise errors.ProviderError(f"Invalid {rtype} query for '{domain}' via {nameservers}: {error}") from error

    @staticmethod
    def to_value(rdata) -> str:
        """
        Converts a single record data item to its value string.

        Args:
            rdata: A dnspython record data object.
        Returns:
            str: The TXT strings joined together, or the record's text form for other types.
        """
        if hasattr(rdata, "strings"):
            return b"".join(rdata.strings).decode()

        return rdata.to_text()


def wait_for_txt_record(
    fqdn: str,
    value: str,
    timeout: int = 300,
    interval: int = 2,
    nameservers: list = None,
    authoritative: bool = False,
    round_robin: bool = True
) -> bool:
    """
    Checks the TXT record at `fqdn` until it contains `value` or until the timeout is reached.

    Args:
        fqdn (str): The TXT record name, e.g. `_acme-challenge.example.com`.
        value (str): The expected TXT value.
        timeout (int): The amount of time (in seconds) to continue trying.
        interval (int): The amount of time (in seconds) between DNS requests.
        nameservers (list): Nameserver IP addresses to query.
        authoritative (bool): Query the zone's authoritative nameserver instead.
        round_robin (bool): Rotate between each nameserver instead of the default failover behavior.

    Returns:
        bool: True once the value was found.

    Raises:
        acme_dns_issuer.errors.ACMETimeout: When the value was not found before the timeout.
    """
    deadline = datetime.datetime.now() + datetime.timedelta(seconds=timeout)
    resolver = DNSQuery(
        fqdn,
        rtype="TXT",
        nameservers=nameservers,
        authoritative=authoritative,
        round_robin=round_robin
    )

    while True:
        values = resolver.resolve()
        found = value in values
        logger.debug(
            "Token '%s' for '%s' %s in %s via %s",
            value, fqdn, "found" if found else "not found", values, resolver.last_nameserver
        )
        if found:
            return True
        if datetime.datetime.now() >= deadline:
            raise errors.ACMETimeout(f"TXT record '{fqdn}' did not propagate within {timeout} seconds.")

        # Avoid flooding the DNS server(s) by briefly pausing between DNS checks
        time.sleep(interval)
