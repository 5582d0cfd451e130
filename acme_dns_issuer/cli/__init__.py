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
"""Command line interface. One invocation issues one certificate."""
import argparse
import logging
import os

from .. import codec
from .. import config
from .. import errors
from .. import issuer

logger = logging.getLogger(__name__)

# Constants and Variables
LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"
EXIT_SUCCESS = 0
EXIT_FAILURE = 1


def get_parser() -> argparse.ArgumentParser:
    """Create and return the argparse object."""
    parser = argparse.ArgumentParser(
        prog="acme-dns-issuer",
        usage="%(prog)s [flags] domain\n       %(prog)s [flags] domain1,domainN",
        description="Issue a certificate from an ACME CA using the DNS-01 challenge and DNSimple."
    )
    parser.add_argument("domains", help="A domain, or a comma separated list of domains for a single certificate.")
    parser.add_argument("--email", help="Email used for registration and recovery contact.")
    parser.add_argument(
        "--email-template",
        action="store_true",
        help="Replace '%%v' in --email with the run's Unix timestamp to register a unique throwaway account."
    )
    parser.add_argument("--user", default=os.environ.get("DNSIMPLE_USER"), help="DNSimple account email.")
    parser.add_argument("--api-key", default=os.environ.get("DNSIMPLE_API_KEY"), help="DNSimple API token.")
    parser.add_argument("--sandbox", action="store_true", help="Use the DNSimple sandbox API.")
    parser.add_argument(
        "--url",
        default=os.environ.get("ACME_DIRECTORY", config.STAGING_DIRECTORY),
        help="The ACME directory URL. (default: %(default)s)"
    )
    parser.add_argument(
        "--path",
        default=config.DEFAULT_DATA_ROOT,
        help="Directory to use for storing the data. (default: %(default)s)"
    )
    parser.add_argument(
        "--key-type",
        default="rsa2048",
        choices=codec.KEY_TYPES,
        help="The certificate private key type. (default: %(default)s)"
    )
    parser.add_argument("--key-size", type=int, default=2048, help="The account RSA key size. (default: %(default)s)")
    parser.add_argument(
        "--nameserver",
        action="append",
        default=[],
        help="A nameserver IP to check DNS propagation against. Can be repeated."
    )
    parser.add_argument(
        "--propagation-timeout",
        type=int,
        default=300,
        help="Seconds to wait for the challenge records to propagate. (default: %(default)s)"
    )
    parser.add_argument(
        "--polling-interval",
        type=int,
        default=5,
        help="Seconds between DNS propagation checks. (default: %(default)s)"
    )
    parser.add_argument(
        "--no-propagation-check",
        action="store_true",
        help="Answer the challenges without checking DNS propagation first."
    )
    parser.add_argument("--insecure", action="store_true", help="Do not verify the ACME server's SSL certificate.")
    parser.add_argument("-v", "--verbose", action="store_true", help="Log debug output.")
    return parser


def build_config(args: argparse.Namespace) -> config.Config:
    """
    Builds the run configuration from parsed arguments.

    Raises:
        acme_dns_issuer.errors.ConfigurationError: When any argument is missing or invalid.
    """
    return config.Config.from_arguments(
        args.domains,
        args.email,
        config.DNSCredentials(user=args.user, api_key=args.api_key, sandbox=args.sandbox),
        ca_directory_url=args.url,
        data_root=args.path,
        email_template=args.email_template,
        account_key_size=args.key_size,
        certificate_key_type=args.key_type,
        nameservers=tuple(args.nameserver),
        propagation_timeout=args.propagation_timeout,
        polling_interval=args.polling_interval,
        check_propagation=not args.no_propagation_check,
        verify_ssl=not args.insecure
    )


def main(argv: list = None, **kwargs) -> int:
    """
    Runs the command line interface.

    Args:
        argv (list): The command line arguments. Defaults to `sys.argv[1:]`.
        **kwargs: Passed on to `acme_dns_issuer.issuer.Issuer`.

    Returns:
        int: The process exit code. Invalid invocations exit with code 2 through argparse.
    """
    parser = get_parser()
    args = parser.parse_args(argv)
    logging.basicConfig(level=logging.DEBUG if args.verbose else logging.INFO, format=LOG_FORMAT)

    try:
        run_config = build_config(args)
    except errors.ConfigurationError as error:
        parser.error(error.message)

    run = issuer.Issuer(run_config, **kwargs)
    try:
        result = run.run()
    except errors.ChallengeValidationError as error:
        for domain, failure in sorted(error.failures.items()):
            logger.critical("[%s] validation failed: %s", domain, failure.message)
        logger.critical("Issuance failed while %s: %s", error.stage, error.message)
        return EXIT_FAILURE
    except errors.StorageError as error:
        if error.bundle is not None:
            logger.critical(
                "Certificate for %s was issued but NOT saved, it is lost: %s",
                ", ".join(error.bundle.domains), error.message
            )
        else:
            logger.critical("Issuance failed while %s: %s", error.stage, error.message)
        return EXIT_FAILURE
    except errors.IssuanceError as error:
        logger.critical("Issuance failed while %s: %s", error.stage, error.message)
        return EXIT_FAILURE

    logger.info("Completed! Certificate saved to '%s'", result.certificate_directory)
    return EXIT_SUCCESS
