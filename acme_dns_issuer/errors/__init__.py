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
"""Custom exception classes for acme_dns_issuer."""


class IssuanceError(Exception):
    """Base class for every error that aborts an issuance run."""
    stage = None

    def __init__(self, message: str) -> None:
        self.message = message


class ConfigurationError(IssuanceError):
    """Error occurs when the command line input or configuration is missing or invalid"""


class InvalidDomain(ConfigurationError):
    """Error occurs when the domain list is empty or contains an invalid domain name"""


class InvalidEmail(ConfigurationError):
    """Error occurs when no account email was given or the email is not a valid address"""


class KeyGenerationError(IssuanceError):
    """Error occurs when the platform cannot produce a key of the requested type or size"""


class InvalidKeyType(KeyGenerationError):
    """Error occurs when the requested private key type is unsupported"""


class EncodingError(IssuanceError):
    """Error occurs when a key cannot be PEM encoded because its type is unsupported"""


class InvalidStateError(IssuanceError):
    """Error occurs when an operation is attempted in a state that does not allow it"""


class DirectoryError(IssuanceError):
    """Error occurs when the ACME directory cannot be retrieved"""


class RegistrationError(IssuanceError):
    """Error occurs when the ACME server rejects the account registration"""


class TOSError(IssuanceError):
    """Error occurs when the ACME server rejects the terms of service agreement"""


class ProviderError(IssuanceError):
    """Error occurs when the DNS provider fails to create or remove a challenge record"""


class ChallengeUnavailable(IssuanceError):
    """Error occurs when no provider can handle the requested challenge type"""


class ACMETimeout(IssuanceError):
    """Error occurs when the max time has been exceeded waiting for a DNS or ACME server event"""


class ChallengeValidationError(IssuanceError):
    """
    Error occurs when domain validation fails. When raised for a whole run, `failures` maps each failing domain to
    the error that failed it.
    """
    def __init__(self, message: str, domain: str = None, failures: dict = None) -> None:
        super().__init__(message)
        self.domain = domain
        self.failures = failures if failures else {}

    @classmethod
    def from_failures(cls, failures: dict) -> 'ChallengeValidationError':
        """Creates a single run-level error from a dictionary of per-domain failures."""
        details = "; ".join(f"[{domain}] {error.message}" for domain, error in sorted(failures.items()))
        return cls(f"Domain validation failed for {len(failures)} domain(s): {details}", failures=failures)


class StorageError(IssuanceError):
    """
    Error occurs when key material or a certificate cannot be written to disk. The `reason` is `directory` when the
    directory could not be created and `file` when the file itself could not be written.
    """
    DIRECTORY = "directory"
    FILE = "file"

    def __init__(self, message: str, reason: str = FILE, path: str = None) -> None:
        super().__init__(message)
        self.reason = reason
        self.path = path
        self.bundle = None
