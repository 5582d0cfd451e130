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
Drives one issuance run from account creation to the saved certificate. Every step runs after the previous one has
completed, and any error ends the run: nothing is retried.
"""
import enum
import logging
import pathlib
import time
from typing import NamedTuple

from .. import ACMEClient, CertificateBundle, CHALLENGE_TYPES, DNS01
from .. import account
from .. import errors
from .. import providers
from .. import storage

logger = logging.getLogger(__name__)


class IssuanceState(enum.Enum):
    """The states of an issuance run, in the order a successful run passes through them."""
    INITIALIZED = "initialized"
    KEY_GENERATED = "key-generated"
    ACCOUNT_PERSISTED = "account-persisted"
    REGISTERED = "registered"
    TOS_AGREED = "tos-agreed"
    VALIDATING = "validating"
    ISSUED = "issued"
    PERSISTED = "persisted"
    FAILED = "failed"


class IssuanceResult(NamedTuple):
    """The outcome of a successful run."""
    account_email: str
    account_directory: pathlib.Path
    certificate_directory: pathlib.Path
    bundle: CertificateBundle
    terms_of_service: str = None


class Issuer:
    """
    Issues a single certificate for the configured domains.
    """

    def __init__(self, config, client_factory=None, provider_factory=None, clock=time.time) -> None:
        """
        Args:
            config (acme_dns_issuer.config.Config): The run configuration.
            client_factory (callable): Creates the ACME client from the directory URL, the account and the certificate
                key type. Defaults to `acme_dns_issuer.ACMEClient.new_client`.
            provider_factory (callable): Creates the DNS challenge provider from the DNS credentials. Defaults to
                `acme_dns_issuer.providers.new_provider`.
            clock (callable): Returns the current Unix time. Read once per run for the email template and the
                certificate directory name.
        """
        self.config = config
        self.client_factory = client_factory if client_factory else ACMEClient.new_client
        self.provider_factory = provider_factory if provider_factory else providers.new_provider
        self.clock = clock
        self.state = IssuanceState.INITIALIZED
        self.failed_stage = None
        self.account = None
        self.client = None
        self.bundle = None

    def run(self) -> IssuanceResult:
        """
        Runs the issuance.

        Returns:
            acme_dns_issuer.issuer.IssuanceResult: Where the account and the certificate were saved.

        Raises:
            acme_dns_issuer.errors.IssuanceError: On any failure. The error's `stage` names the state the run failed
                in, and `failed_stage` is set on this object.
        """
        if self.state is not IssuanceState.INITIALIZED:
            raise errors.InvalidStateError(f"Issuance already ran and ended in state '{self.state.value}'.")

        try:
            return self._run()
        except errors.IssuanceError as error:
            self.failed_stage = self.state
            error.stage = error.stage if error.stage else self.state.value
            self.state = IssuanceState.FAILED
            raise

    def _run(self) -> IssuanceResult:
        config = self.config
        config.validate()

        # One timestamp names both the templated account and the certificate directory
        now = int(self.clock())
        email = config.account_email(now)
        self.account = account.create_account(email, config.account_key_size)
        self.advance(IssuanceState.KEY_GENERATED)

        # The account must be on disk before the CA ever sees it
        account_path = storage.save_account(config.data_root, self.account)
        logger.info("Account keys for '%s' saved to '%s'", email, account_path)
        self.advance(IssuanceState.ACCOUNT_PERSISTED)

        self.client = self.client_factory(
            config.ca_directory_url,
            self.account,
            config.certificate_key_type,
            verify_ssl=config.verify_ssl,
            nameservers=list(config.nameservers) or None,
            check_propagation=config.check_propagation
        )
        account.attach_registration(self.account, self.client.register())
        self.advance(IssuanceState.REGISTERED)

        terms_of_service = self.client.agree_to_tos()
        logger.info("Agreed to terms of service %s", terms_of_service)
        self.advance(IssuanceState.TOS_AGREED)

        provider = self.provider_factory(
            config.dns_credentials,
            propagation_timeout=config.propagation_timeout,
            polling_interval=config.polling_interval
        )
        self.client.exclude_challenges([typ for typ in CHALLENGE_TYPES if typ != DNS01])
        self.client.set_challenge_provider(DNS01, provider)
        self.advance(IssuanceState.VALIDATING)

        bundle, failures = self.client.obtain_certificate(list(config.domains), bundle=True, issued_at=now)
        if failures:
            raise errors.ChallengeValidationError.from_failures(failures)
        if bundle is None:
            raise errors.ChallengeValidationError("The ACME server returned no certificate.")
        self.bundle = bundle
        self.advance(IssuanceState.ISSUED)

        certificate_path = self.persist_certificate(bundle)
        logger.info("Certificate for %s saved to '%s'", ", ".join(bundle.domains), certificate_path)
        self.advance(IssuanceState.PERSISTED)

        return IssuanceResult(email, account_path, certificate_path, bundle, terms_of_service)

    def advance(self, state: IssuanceState) -> None:
        """Moves the run to its next state."""
        logger.info("Issuance state: %s -> %s", self.state.value, state.value)
        self.state = state

    def persist_certificate(self, bundle: CertificateBundle) -> pathlib.Path:
        """
        Saves an issued certificate bundle under the timestamped certificates directory.

        Raises:
            acme_dns_issuer.errors.StorageError: When the bundle cannot be saved. The unsaved bundle is attached to the
                error as `bundle`.
        """
        try:
            return storage.save_certificate(self.config.data_root, bundle)
        except errors.StorageError as error:
            error.bundle = bundle
            raise

    def retry_persistence(self) -> pathlib.Path:
        """
        Retries saving the certificate of a run that failed after the certificate was issued. Nothing is requested from
        the ACME server again.

        Returns:
            pathlib.Path: The certificate directory.

        Raises:
            acme_dns_issuer.errors.InvalidStateError: When the run did not fail while saving its certificate.
            acme_dns_issuer.errors.StorageError: When saving fails again.
        """
        if self.bundle is None or self.failed_stage is not IssuanceState.ISSUED:
            raise errors.InvalidStateError("Only a run that failed to save its issued certificate can be retried.")

        path = self.persist_certificate(self.bundle)
        logger.info("Certificate for %s saved to '%s'", ", ".join(self.bundle.domains), path)
        self.failed_stage = None
        self.advance(IssuanceState.PERSISTED)
        return path


def issue(config, **kwargs) -> IssuanceResult:
    """
    Runs one issuance with the given configuration.

    Args:
        config (acme_dns_issuer.config.Config): The run configuration.
        **kwargs: Passed on to `acme_dns_issuer.issuer.Issuer`.

    Returns:
        acme_dns_issuer.issuer.IssuanceResult: Where the account and the certificate were saved.
    """
    return Issuer(config, **kwargs).run()
