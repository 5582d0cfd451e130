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
"""Tests the ACME client of the acme_dns_issuer package against a mocked acme.client.ClientV2."""
import types
import unittest
from unittest import mock

import requests
from acme import challenges
from acme import client
from acme import errors as acme_errors
from acme import messages

import acme_dns_issuer
from acme_dns_issuer import account
from acme_dns_issuer import errors
from acme_dns_issuer.tests import TEST_DIRECTORY, TEST_DOMAINS, TEST_EMAIL
from acme_dns_issuer.tests.tools import RecordingProvider, is_cert, is_private_key, make_certificate

# Variables and constants
TOS_URL = "https://acme.example.org/terms"


def make_authorization(domain: str, challenge_types: tuple = ("dns-01",), status=messages.STATUS_PENDING):
    """Creates a stand-in authorization resource offering the given challenge types."""
    offered = []
    for typ in challenge_types:
        if typ == "dns-01":
            chall = challenges.DNS01(token=b"d" * 32)
        else:
            chall = challenges.HTTP01(token=b"h" * 32)
        offered.append(types.SimpleNamespace(chall=chall, error=None))

    body = types.SimpleNamespace(
        identifier=types.SimpleNamespace(value=domain),
        challenges=offered,
        status=status,
        wildcard=False
    )
    return types.SimpleNamespace(body=body)


class TestACMEClient(unittest.TestCase):
    """Tests the ACMEClient adapter."""

    # Shared attributes
    account = None

    @classmethod
    def setUpClass(cls):
        """Creates the shared account. Generating the RSA key is the slow part."""
        cls.account = account.create_account(TEST_EMAIL)

    def setUp(self):
        """Creates a client around a mocked ClientV2 for each test."""
        self.acme_client = mock.create_autospec(client.ClientV2, instance=True)
        self.acme_client.net = types.SimpleNamespace(key=self.account.jwk)
        self.acme_client.directory = types.SimpleNamespace(meta=types.SimpleNamespace(terms_of_service=TOS_URL))
        self.chain = (make_certificate(TEST_DOMAINS) + make_certificate(["intermediate.example.net"])).decode()
        self.acme_client.new_order.return_value = types.SimpleNamespace(
            authorizations=[make_authorization(domain) for domain in TEST_DOMAINS]
        )
        self.acme_client.poll_and_finalize.return_value = types.SimpleNamespace(fullchain_pem=self.chain)

        self.provider = RecordingProvider()
        self.client = acme_dns_issuer.ACMEClient(
            TEST_DIRECTORY,
            self.account,
            key_type="ec256",
            acme_client=self.acme_client,
            check_propagation=False
        )
        self.client.exclude_challenges(["http-01", "tls-sni-01"])
        self.client.set_challenge_provider("dns-01", self.provider)

    def test_obtain_certificate(self):
        """Checks a certificate covering all domains is obtained and every record is cleaned up."""
        bundle, failures = self.client.obtain_certificate(TEST_DOMAINS)

        self.assertEqual(failures, {})
        self.assertEqual(bundle.domains, tuple(TEST_DOMAINS))
        self.assertTrue(is_private_key(bundle.private_key, "ec256"))
        self.assertTrue(is_cert(bundle.certificate_chain))
        self.assertEqual(bundle.certificate_chain.count(b"BEGIN CERTIFICATE"), 2)
        self.assertIsInstance(bundle.issued_at, int)

        # One order for every domain, one answered challenge per domain
        self.acme_client.new_order.assert_called_once()
        self.assertEqual(self.acme_client.answer_challenge.call_count, len(TEST_DOMAINS))
        self.assertEqual([domain for domain, _, _ in self.provider.presented], TEST_DOMAINS)
        self.assertEqual(self.provider.cleaned, self.provider.presented)

    def test_obtain_certificate_leaf_only(self):
        """Checks the intermediates are dropped when no bundle is requested."""
        bundle, _ = self.client.obtain_certificate(TEST_DOMAINS, bundle=False)

        self.assertEqual(bundle.certificate_chain.count(b"BEGIN CERTIFICATE"), 1)
        self.assertTrue(self.chain.encode().startswith(bundle.certificate_chain.strip()))

    def test_obtain_certificate_issued_at(self):
        """Checks the given timestamp is recorded on the bundle."""
        bundle, _ = self.client.obtain_certificate(TEST_DOMAINS, issued_at=1700000000)

        self.assertEqual(bundle.issued_at, 1700000000)

    def test_invalid_nameserver(self):
        """Checks a nameserver that is not an IP address fails each domain instead of escaping as ValueError."""
        self.client.check_propagation = True
        self.client.nameservers = ["ns1.example.com"]

        bundle, failures = self.client.obtain_certificate(TEST_DOMAINS)

        self.assertIsNone(bundle)
        self.assertEqual(sorted(failures), sorted(TEST_DOMAINS))
        self.acme_client.answer_challenge.assert_not_called()
        self.assertEqual(self.provider.cleaned, self.provider.presented)

    def test_validation_values(self):
        """Checks the provider receives the DNS-01 validation for the account key."""
        self.client.obtain_certificate(TEST_DOMAINS)
        expected = challenges.DNS01(token=b"d" * 32).validation(self.account.jwk)

        for _, token, validation in self.provider.presented:
            self.assertEqual(validation, expected)
            self.assertTrue(token)

    def test_provider_failure(self):
        """Checks a provider failure for one domain fails the order without answering any challenge."""
        self.provider.failing = ["www.example.com"]
        bundle, failures = self.client.obtain_certificate(TEST_DOMAINS)

        self.assertIsNone(bundle)
        self.assertEqual(list(failures), ["www.example.com"])
        self.acme_client.answer_challenge.assert_not_called()
        self.acme_client.poll_and_finalize.assert_not_called()
        self.assertEqual([domain for domain, _, _ in self.provider.cleaned], ["example.com"])

    def test_propagation_timeout(self):
        """Checks a record that never propagates fails its domain."""
        self.client.check_propagation = True
        timeout = errors.ACMETimeout("TXT record '_acme-challenge.example.com' did not propagate within 300 seconds.")

        with mock.patch("acme_dns_issuer.tools.wait_for_txt_record", side_effect=[timeout, True]) as wait:
            bundle, failures = self.client.obtain_certificate(TEST_DOMAINS)

        self.assertIsNone(bundle)
        self.assertEqual(list(failures), ["example.com"])
        self.assertEqual(wait.call_args_list[0][0][0], "_acme-challenge.example.com")
        self.acme_client.answer_challenge.assert_not_called()
        self.assertEqual(len(self.provider.cleaned), 2)

    def test_excluded_challenges(self):
        """Checks excluded challenge types are never selected."""
        self.acme_client.new_order.return_value = types.SimpleNamespace(
            authorizations=[make_authorization("example.com", challenge_types=("http-01",))]
        )
        bundle, failures = self.client.obtain_certificate(["example.com"])

        self.assertIsNone(bundle)
        self.assertIsInstance(failures["example.com"], errors.ChallengeValidationError)
        self.assertEqual(self.provider.presented, [])

    def test_valid_authorizations_skipped(self):
        """Checks authorizations the account already holds are not challenged again."""
        self.acme_client.new_order.return_value = types.SimpleNamespace(authorizations=[
            make_authorization("example.com", status=messages.STATUS_VALID),
            make_authorization("www.example.com"),
        ])
        bundle, failures = self.client.obtain_certificate(TEST_DOMAINS)

        self.assertEqual(failures, {})
        self.assertIsNotNone(bundle)
        self.assertEqual([domain for domain, _, _ in self.provider.presented], ["www.example.com"])

    def test_ca_validation_failure(self):
        """Checks authorizations the CA marks invalid are reported per domain."""
        failed = make_authorization("www.example.com")
        failed.body.challenges[0].error = messages.Error.with_code("dns", detail="No TXT record found")
        self.acme_client.poll_and_finalize.side_effect = acme_errors.ValidationError([failed])

        bundle, failures = self.client.obtain_certificate(TEST_DOMAINS)

        self.assertIsNone(bundle)
        self.assertEqual(list(failures), ["www.example.com"])
        self.assertIn("No TXT record found", failures["www.example.com"].message)
        self.assertEqual(len(self.provider.cleaned), 2)

    def test_ca_timeout(self):
        """Checks a finalization timeout fails every domain."""
        self.acme_client.poll_and_finalize.side_effect = acme_errors.TimeoutError()
        bundle, failures = self.client.obtain_certificate(TEST_DOMAINS)

        self.assertIsNone(bundle)
        self.assertEqual(sorted(failures), sorted(TEST_DOMAINS))

    def test_rejected_order(self):
        """Checks an order the CA rejects fails every domain before any record is created."""
        self.acme_client.new_order.side_effect = messages.Error.with_code(
            "rejectedIdentifier", detail="Policy forbids issuing for name"
        )
        bundle, failures = self.client.obtain_certificate(TEST_DOMAINS)

        self.assertIsNone(bundle)
        self.assertIn("Policy forbids issuing for name", failures["example.com"].message)
        self.assertEqual(self.provider.presented, [])

    def test_register(self):
        """Checks registration sends the account email as contact."""
        self.acme_client.new_account.return_value = "registration"

        self.assertEqual(self.client.register(), "registration")
        registration = self.acme_client.new_account.call_args[0][0]
        self.assertEqual(registration.emails, (TEST_EMAIL,))

    def test_register_rejected(self):
        """Checks the CA's rejection is reported verbatim."""
        self.acme_client.new_account.side_effect = messages.Error.with_code(
            "invalidContact", detail="contact email has invalid domain"
        )

        with self.assertRaises(errors.RegistrationError) as context:
            self.client.register()
        self.assertIn("contact email has invalid domain", context.exception.message)

    def test_agree_to_tos(self):
        """Checks the terms of service agreement is sent for the registered account."""
        registered = account.Account(TEST_EMAIL, self.account.private_key)
        registered.registration = messages.RegistrationResource(
            body=messages.Registration.from_data(email=TEST_EMAIL),
            uri="https://acme.example.org/acct/1"
        )
        self.client.account = registered

        self.assertEqual(self.client.agree_to_tos(), TOS_URL)
        update = self.acme_client.update_registration.call_args[0][1]
        self.assertTrue(update.terms_of_service_agreed)

    def test_agree_to_tos_rejected(self):
        """Checks a rejected agreement raises a TOSError."""
        registered = account.Account(TEST_EMAIL, self.account.private_key)
        registered.registration = messages.RegistrationResource(
            body=messages.Registration.from_data(email=TEST_EMAIL),
            uri="https://acme.example.org/acct/1"
        )
        self.client.account = registered
        self.acme_client.update_registration.side_effect = requests.exceptions.ConnectionError("connection reset")

        with self.assertRaises(errors.TOSError):
            self.client.agree_to_tos()

    def test_agree_to_tos_requires_registration(self):
        """Checks the terms of service cannot be agreed to before registration."""
        self.client.account = account.Account(TEST_EMAIL, self.account.private_key)

        with self.assertRaises(errors.InvalidStateError):
            self.client.agree_to_tos()

    def test_new_client_directory_error(self):
        """Checks an unreachable directory raises a DirectoryError."""
        refused = requests.exceptions.ConnectionError("connection refused")

        with mock.patch.object(client.ClientV2, "get_directory", side_effect=refused):
            with self.assertRaises(errors.DirectoryError):
                acme_dns_issuer.ACMEClient.new_client(TEST_DIRECTORY, self.account)


if __name__ == "__main__":
    unittest.main()
