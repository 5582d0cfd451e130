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
"""Tests the DNS tools of the acme_dns_issuer package."""
import unittest
from unittest import mock

import dns.exception
import dns.rdata
import dns.rdataclass
import dns.rdatatype
import dns.resolver

from acme_dns_issuer import errors
from acme_dns_issuer import tools

# Variables and constants
NAMESERVERS = ["192.0.2.1", "192.0.2.2"]
FQDN = "_acme-challenge.example.com"


def rdata(rtype: str, text: str):
    """Creates dnspython record data from its text form."""
    return dns.rdata.from_text(dns.rdataclass.IN, dns.rdatatype.from_text(rtype), text)


class TestDNSQuery(unittest.TestCase):
    """Tests the DNSQuery class."""

    def test_txt_values(self):
        """Checks TXT strings are joined and returned without quotes."""
        answer = [rdata("TXT", '"first"'), rdata("TXT", '"split" "value"')]

        with mock.patch.object(tools.DNSQuery, "query", return_value=answer) as query:
            values = tools.DNSQuery(FQDN, rtype="txt", nameservers=NAMESERVERS).resolve()

        self.assertEqual(values, ["first", "splitvalue"])
        query.assert_called_once_with(FQDN, "TXT", NAMESERVERS)

    def test_missing_record(self):
        """Checks missing records and unreachable nameservers yield no values."""
        for error in [dns.resolver.NXDOMAIN(), dns.resolver.NoAnswer(), dns.exception.Timeout()]:
            with mock.patch.object(tools.DNSQuery, "query", side_effect=error):
                self.assertEqual(tools.DNSQuery(FQDN, "TXT", nameservers=NAMESERVERS).resolve(), [])

    def test_round_robin(self):
        """Checks round robin mode rotates the nameserver queried first."""
        query = tools.DNSQuery(FQDN, "TXT", nameservers=NAMESERVERS, round_robin=True)

        with mock.patch.object(tools.DNSQuery, "query", return_value=[]):
            query.resolve()
            self.assertEqual(query.last_nameserver, "192.0.2.1")
            query.resolve()
            self.assertEqual(query.last_nameserver, "192.0.2.2")
            query.resolve()
            self.assertEqual(query.last_nameserver, "192.0.2.1")

    def test_authoritative_nameservers(self):
        """Checks the zone's primary nameserver is found by walking up to the SOA."""
        answers = {
            (FQDN, "SOA"): dns.resolver.NoAnswer(),
            ("example.com", "SOA"): [rdata("SOA", "ns1.example.com. hostmaster.example.com. 1 7200 3600 1209600 300")],
            ("ns1.example.com.", "A"): [rdata("A", "192.0.2.53")],
        }

        def query(domain, rtype, nameservers):
            answer = answers[(domain, rtype)]
            if isinstance(answer, Exception):
                raise answer
            return answer

        with mock.patch.object(tools.DNSQuery, "query", side_effect=query):
            dns_query = tools.DNSQuery(FQDN, "TXT", nameservers=NAMESERVERS, authoritative=True)

        self.assertEqual(dns_query.nameservers, ["192.0.2.53"])

    def test_no_authoritative_nameserver(self):
        """Checks a domain without any zone SOA fails."""
        with mock.patch.object(tools.DNSQuery, "query", side_effect=dns.resolver.NXDOMAIN()):
            with self.assertRaises(errors.ProviderError):
                tools.DNSQuery(FQDN, "TXT", nameservers=NAMESERVERS, authoritative=True)

    def test_authoritative_lookup_timeout(self):
        """Checks unreachable nameservers during the authoritative lookup raise a provider error."""
        for error in [dns.exception.Timeout(), dns.resolver.NoNameservers()]:
            with mock.patch.object(tools.DNSQuery, "query", side_effect=error):
                with self.assertRaises(errors.ProviderError):
                    tools.DNSQuery(FQDN, "TXT", nameservers=NAMESERVERS, authoritative=True)

    def test_invalid_nameserver(self):
        """Checks a nameserver that is not an IP address raises a provider error before any query is sent."""
        with self.assertRaises(errors.ProviderError):
            tools.DNSQuery(FQDN, "TXT", nameservers=["ns1.example.com"]).resolve()


class TestWaitForTXTRecord(unittest.TestCase):
    """Tests the wait_for_txt_record function."""

    @mock.patch("acme_dns_issuer.tools.time.sleep")
    def test_found(self, sleep):
        """Checks the record is polled until its value shows up."""
        with mock.patch.object(tools.DNSQuery, "resolve", side_effect=[[], ["other"], ["other", "token"]]) as resolve:
            self.assertTrue(tools.wait_for_txt_record(FQDN, "token", timeout=60, interval=5, nameservers=NAMESERVERS))

        self.assertEqual(resolve.call_count, 3)
        sleep.assert_called_with(5)
        self.assertEqual(sleep.call_count, 2)

    @mock.patch("acme_dns_issuer.tools.time.sleep")
    def test_timeout(self, sleep):
        """Checks a record that never propagates raises ACMETimeout."""
        with mock.patch.object(tools.DNSQuery, "resolve", return_value=[]):
            with self.assertRaises(errors.ACMETimeout):
                tools.wait_for_txt_record(FQDN, "token", timeout=0, nameservers=NAMESERVERS)

        sleep.assert_not_called()


if __name__ == "__main__":
    unittest.main()
