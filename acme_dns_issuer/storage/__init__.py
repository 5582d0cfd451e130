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
Writes account keys and issued certificates to the data directory. The layout is:

    <data_root>/users/<email>/privkey.pem
    <data_root>/users/<email>/pubkey.pem
    <data_root>/certs/<issued_at>/privkey.pem
    <data_root>/certs/<issued_at>/fullchain.pem
"""
import logging
import os
import pathlib
import tempfile

from .. import codec
from .. import errors

logger = logging.getLogger(__name__)

# Constants and Variables
DIRECTORY_MODE = 0o700
PRIVATE_MODE = 0o600
PUBLIC_MODE = 0o644
USERS_DIR = "users"
CERTS_DIR = "certs"
PRIVATE_KEY_FILE = "privkey.pem"
PUBLIC_KEY_FILE = "pubkey.pem"
FULLCHAIN_FILE = "fullchain.pem"


def make_directory(path) -> pathlib.Path:
    """
    Creates a directory and any missing ancestors, each readable only by the owning user.

    Args:
        path (str): The directory path to create.

    Returns:
        pathlib.Path: The absolute directory path.

    Raises:
        acme_dns_issuer.errors.StorageError: When any part of the path cannot be created.
    """
    path = pathlib.Path(path).absolute()
    missing = [parent for parent in reversed([path] + list(path.parents)) if not parent.is_dir()]

    for directory in missing:
        try:
            directory.mkdir(mode=DIRECTORY_MODE)
        except FileExistsError:
            # A concurrent run created it first, only a non-directory here is a problem
            if not directory.is_dir():
                raise errors.StorageError(
                    f"Cannot create directory '{directory}': a file exists at this path.",
                    reason=errors.StorageError.DIRECTORY,
                    path=str(directory)
                ) from None
        except OSError as error:
            raise errors.StorageError(
                f"Cannot create directory '{directory}': {error.strerror}",
                reason=errors.StorageError.DIRECTORY,
                path=str(directory)
            ) from error

    return path


def write_artifact(directory, filename: str, data: bytes, private: bool = False) -> pathlib.Path:
    """
    Writes bytes to `directory/filename`. The data is written to a temporary file in the same directory, flushed to
    disk and then renamed onto the final name, so a crash never leaves a truncated file under that name.

    Args:
        directory (str): The directory to write to. It is created if it does not exist.
        filename (str): The name of the file to write.
        data (bytes): The file contents.
        private (bool): Restrict the file to the owning user. This must be set for private key material.

    Returns:
        pathlib.Path: The path of the written file.

    Raises:
        acme_dns_issuer.errors.StorageError: When the directory cannot be created or the file cannot be written.
    """
    directory = make_directory(directory)
    path = directory.joinpath(filename)
    temp_path = None

    try:
        file_descriptor, temp_path = tempfile.mkstemp(prefix=f".{filename}.", suffix=".tmp", dir=str(directory))
        os.fchmod(file_descriptor, PRIVATE_MODE if private else PUBLIC_MODE)
        with os.fdopen(file_descriptor, "wb") as artifact_file:
            artifact_file.write(data)
            artifact_file.flush()
            os.fsync(artifact_file.fileno())
        os.replace(temp_path, str(path))
    except OSError as error:
        # Never leave the partially written temporary file behind
        if temp_path and os.path.exists(temp_path):
            os.unlink(temp_path)
        raise errors.StorageError(
            f"Cannot write file '{path}': {error.strerror}",
            reason=errors.StorageError.FILE,
            path=str(path)
        ) from error

    logger.debug("Wrote %d bytes to '%s'", len(data), path)
    return path


def account_directory(data_root, email: str) -> pathlib.Path:
    """Returns the directory account keys for `email` are stored in."""
    return pathlib.Path(data_root).absolute().joinpath(USERS_DIR, email)


def certificate_directory(data_root, issued_at: int) -> pathlib.Path:
    """
    Reserves the directory an issued certificate is stored in. The directory is named for the issuance timestamp. When
    an earlier run already used that timestamp, the first free `<issued_at>.<n>` name is used instead so a previous
    certificate is never overwritten.

    Args:
        data_root (str): The root data directory.
        issued_at (int): The Unix timestamp of the issuance.

    Returns:
        pathlib.Path: The newly created, empty directory.

    Raises:
        acme_dns_issuer.errors.StorageError: When the directory cannot be created.
    """
    certs_path = make_directory(pathlib.Path(data_root).joinpath(CERTS_DIR))
    name = str(int(issued_at))
    suffix = 0

    while True:
        path = certs_path.joinpath(name if not suffix else f"{name}.{suffix}")
        try:
            path.mkdir(mode=DIRECTORY_MODE)
            return path
        except FileExistsError:
            suffix += 1
        except OSError as error:
            raise errors.StorageError(
                f"Cannot create directory '{path}': {error.strerror}",
                reason=errors.StorageError.DIRECTORY,
                path=str(path)
            ) from error


def save_account(data_root, account) -> pathlib.Path:
    """
    Saves the account's private and public keys.

    Args:
        data_root (str): The root data directory.
        account (acme_dns_issuer.account.Account): The account to save.

    Returns:
        pathlib.Path: The account directory.
    """
    path = account_directory(data_root, account.email)
    write_artifact(path, PRIVATE_KEY_FILE, codec.encode_private_key(account.private_key), private=True)
    write_artifact(path, PUBLIC_KEY_FILE, codec.encode_public_key(account.private_key))
    return path


def save_certificate(data_root, bundle) -> pathlib.Path:
    """
    Saves an issued certificate bundle. Either both the private key and the full chain are written or, on failure,
    neither is left behind.

    Args:
        data_root (str): The root data directory.
        bundle (acme_dns_issuer.CertificateBundle): The issued certificate bundle.

    Returns:
        pathlib.Path: The certificate directory.
    """
    path = certificate_directory(data_root, bundle.issued_at)
    written = []

    try:
        written.append(write_artifact(path, PRIVATE_KEY_FILE, bundle.private_key, private=True))
        written.append(write_artifact(path, FULLCHAIN_FILE, bundle.certificate_chain))
    except errors.StorageError:
        _remove_partial(path, written)
        raise

    return path


def _remove_partial(path: pathlib.Path, written: list) -> None:
    """Removes the files of a partially saved certificate and its reserved directory."""
    for artifact in written:
        try:
            artifact.unlink()
        except OSError as error:
            logger.error("Failed to remove partially saved file '%s': %s", artifact, error)
    try:
        path.rmdir()
    except OSError as error:
        logger.error("Failed to remove partially saved directory '%s': %s", path, error)
