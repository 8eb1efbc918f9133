# Copyright 2023 Jared Hendrickson
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
Persistence for the account key, order reference, private key, certificate and issuer chain. The account key is
shared by every certificate; every other value is scoped to the common name set by `init_for_common_name()`.
"""
import abc
import logging
import pathlib

from .. import errors

log = logging.getLogger(__name__)

ACCOUNT_KEY = "account/key.pem"
CERTS_DIR = "certs"
ORDER_REFERENCE = "orderuri"
CERT_PRIVATE_KEY = "key.pem"
CERTIFICATE = "cert.pem"
ISSUER_CHAIN = "issuer.pem"


class CertificateStore(abc.ABC):
    """Abstract string storage keyed by certificate common name. Unset values read as an empty string."""

    def __init__(self) -> None:
        self._common_name = None

    @abc.abstractmethod
    def _read(self, identifier: str) -> str:
        """Returns the value stored under `identifier`, or an empty string."""

    @abc.abstractmethod
    def _write(self, identifier: str, value: str) -> None:
        """Stores `value` under `identifier`."""

    @abc.abstractmethod
    def _scope(self, common_name: str) -> str:
        """Returns the storage scope identifier for a common name."""

    def init_for_common_name(self, common_name: str) -> str:
        """
        Scopes every certificate value of this store to a common name.

        Args:
            common_name (str): The certificate common name, usually the first domain of the order.

        Returns:
            str: The storage scope used for the common name.
        """
        self._common_name = common_name
        return self._scope(common_name)

    @property
    def common_name(self) -> str:
        """The common name this store is currently scoped to, if any."""
        return self._common_name

    def _scoped(self, name: str) -> str:
        if not self._common_name:
            msg = 'No common name set. You must run init_for_common_name() first.'
            raise errors.StoreNotInitialized(msg)
        return f"{self._scope(self._common_name)}/{name}"

    @property
    def account_key(self) -> str:
        """The PEM encoded ACME account key."""
        return self._read(ACCOUNT_KEY)

    @account_key.setter
    def account_key(self, value: str) -> None:
        self._write(ACCOUNT_KEY, value)

    @property
    def order_reference(self) -> str:
        """The URL of the current order, used to resume it later."""
        return self._read(self._scoped(ORDER_REFERENCE))

    @order_reference.setter
    def order_reference(self, value: str) -> None:
        self._write(self._scoped(ORDER_REFERENCE), value)

    @property
    def certificate_private_key(self) -> str:
        """The PEM encoded private key of the certificate."""
        return self._read(self._scoped(CERT_PRIVATE_KEY))

    @certificate_private_key.setter
    def certificate_private_key(self, value: str) -> None:
        self._write(self._scoped(CERT_PRIVATE_KEY), value)

    @property
    def certificate(self) -> str:
        """The PEM encoded certificate for the common name."""
        return self._read(self._scoped(CERTIFICATE))

    @certificate.setter
    def certificate(self, value: str) -> None:
        self._write(self._scoped(CERTIFICATE), value)

    @property
    def issuer_chain(self) -> str:
        """The PEM encoded chain of issuers for the certificate."""
        return self._read(self._scoped(ISSUER_CHAIN))

    @issuer_chain.setter
    def issuer_chain(self, value: str) -> None:
        self._write(self._scoped(ISSUER_CHAIN), value)


class MemoryCertificateStore(CertificateStore):
    """A certificate store kept in a dictionary. Useful for testing or when persistence is handled by the caller."""

    def __init__(self, values: dict = None) -> None:
        super().__init__()
        self.values = dict(values) if values else {}

    def _read(self, identifier: str) -> str:
        return self.values.get(identifier, "")

    def _write(self, identifier: str, value: str) -> None:
        self.values[identifier] = value

    def _scope(self, common_name: str) -> str:
        return f"{CERTS_DIR}/{common_name}"


class FileSystemCertificateStore(CertificateStore):
    """
    A certificate store backed by files below a root directory:

        <root>/account/key.pem
        <root>/certs/<common name>/orderuri
        <root>/certs/<common name>/key.pem
        <root>/certs/<common name>/cert.pem
        <root>/certs/<common name>/issuer.pem
    """

    def __init__(self, path: str) -> None:
        """
        Args:
            path (str): The existing directory to keep account, order and certificate files in.

        Raises:
            simple_acme_order.errors.InvalidPath: When `path` is not an existing directory.

        Examples:
            >>> store = FileSystemCertificateStore("/etc/simple_acme_order")
        """
        super().__init__()
        if not path or not pathlib.Path(path).is_dir():
            raise errors.InvalidPath(f"Directory at '{path}' does not exist.")
        self.root = pathlib.Path(path).absolute()

    def _scope(self, common_name: str) -> str:
        return str(self.root.joinpath(CERTS_DIR, common_name))

    def _path(self, identifier: str) -> pathlib.Path:
        # Joining an absolute scope onto the root yields the scope itself
        return self.root.joinpath(identifier)

    def _read(self, identifier: str) -> str:
        path = self._path(identifier)
        if not path.is_file():
            return ""
        with open(path, 'r', encoding="utf-8") as stored_file:
            return stored_file.read()

    def _write(self, identifier: str, value: str) -> None:
        path = self._path(identifier)
        path.parent.mkdir(parents=True, exist_ok=True)
        try:
            with open(path, 'w', encoding="utf-8") as stored_file:
                stored_file.write(value)
        except OSError as exc:
            log.error("Unable to write file '%s': %s", path, exc)
            raise
