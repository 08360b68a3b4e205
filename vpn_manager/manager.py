"""
OpenVPN server provisioning workflow: setup, create, revoke, list
"""

import os
import re
import logging
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Iterable, List, Mapping, Optional, Set, Tuple

from .config import (CA_NAME, DEFAULT_PORT, ENV_PORT, ENV_SERVER_ADDRESS, SERVER_NAME,
                     Paths, env_address, load_config, parse_port,
                     resolve_server, save_config)
from .errors import (AlreadyInitializedError, AlreadyRevokedError,
                     BundleExistsError, ClientExistsError, ClientNotFoundError,
                     ConfigError, InvalidClientNameError, NotInitializedError)
from .index import IndexRecord, latest_records, parse_index
from .process import CommandRunner
from .provisioning import Provisioner, get_provisioner, step

logger = logging.getLogger(__name__)

CLIENT_NAME_RE = re.compile(r'[A-Za-z0-9][A-Za-z0-9._-]*')
MAX_CLIENT_NAME_LENGTH = 64
RESERVED_NAMES = (SERVER_NAME, CA_NAME)


def validate_client_name(name: str, reserved: Iterable[str] = ()) -> None:
    """
    Reject names that are unsafe as a filename stem or certificate CN, or
    that belong to the server or CA. ``reserved`` adds names beyond the
    built-in ones, such as a server certificate CN recorded at setup.

    Raises:
        InvalidClientNameError: empty, too long, reserved or bad characters
    """
    if not name:
        raise InvalidClientNameError("Client name must not be empty")
    if len(name) > MAX_CLIENT_NAME_LENGTH:
        raise InvalidClientNameError(
            f"Client name too long ({len(name)} > {MAX_CLIENT_NAME_LENGTH} characters)"
        )
    if not CLIENT_NAME_RE.fullmatch(name):
        raise InvalidClientNameError(
            f"Invalid client name {name!r}: use letters, digits, '.', '_' and '-', "
            f"starting with a letter or digit"
        )
    if name in RESERVED_NAMES or name in reserved:
        raise InvalidClientNameError(f"'{name}' is reserved for the server or CA")


def write_private_file(path: Path, content: str) -> None:
    """Create ``path`` readable by the owner only; never overwrites"""
    try:
        fd = os.open(path, os.O_WRONLY | os.O_CREAT | os.O_EXCL, 0o600)
    except FileExistsError:
        raise BundleExistsError(path)

    try:
        with os.fdopen(fd, 'w') as f:
            f.write(content)
    except Exception:
        path.unlink()
        raise

    os.chmod(path, 0o600)


@dataclass
class ClientStatus:
    """One client as reported by list"""
    name: str
    bundle: Optional[Path]
    status: str
    expires: Optional[datetime] = None

    @property
    def revoked(self) -> bool:
        return self.status == 'revoked'

    def to_dict(self) -> Dict[str, Any]:
        return {
            'name': self.name,
            'bundle': str(self.bundle) if self.bundle else None,
            'status': self.status,
            'expires': self.expires.isoformat() if self.expires else None
        }


class VPNManager:
    """Provisioning workflow over a PKI root and a client output directory"""

    def __init__(self, paths: Optional[Paths] = None, runner: Optional[CommandRunner] = None,
                 environ: Optional[Mapping[str, str]] = None):
        self.environ = os.environ if environ is None else environ
        self.paths = paths or Paths.from_env(self.environ)
        self.runner = runner or CommandRunner()
        self.config = load_config(self.paths.config_file)

    def _provisioner(self) -> Provisioner:
        return get_provisioner(self.config, self.paths, self.runner)

    def _server_names(self) -> Set[str]:
        names = {SERVER_NAME}
        common_name = self.config['server'].get('common_name')
        if common_name:
            names.add(common_name)
        return names

    def _check_pki(self) -> None:
        if not self.paths.pki_dir.is_dir():
            raise NotInitializedError()

    def _read_index(self) -> List[IndexRecord]:
        if not self.paths.index_file.exists():
            return []
        return parse_index(self.paths.index_file.read_text())

    def setup(self, templating: Optional[str] = None) -> Tuple[str, int]:
        """
        Initialize the PKI, server certificate, tls-crypt key, CRL and
        server config, then persist the connection parameters.

        Args:
            templating: 'own' or 'delegate'; defaults to the configured mode

        Returns:
            Tuple of (address, port) recorded for client bundles
        """
        address = env_address(self.environ)
        if not address:
            raise ConfigError(f"{ENV_SERVER_ADDRESS} not set. Check .env")

        port = parse_port(self.environ.get(ENV_PORT) or self.config['server'].get('port') or DEFAULT_PORT)

        if self.paths.pki_dir.exists():
            raise AlreadyInitializedError(self.paths.pki_dir)

        if templating:
            self.config['templating'] = templating
        provisioner = self._provisioner()

        self.paths.ovpn_dir.mkdir(parents=True, exist_ok=True)

        logger.info(f"OpenVPN setup: {address}:{port}/{self.config['server']['proto']} "
                    f"({provisioner.name} templating)")

        total_steps = provisioner.setup_steps + 1
        provisioner.initialize(address, port, total_steps)

        step(total_steps, total_steps, "Saving connection parameters")
        self.config['server']['address'] = address
        self.config['server']['port'] = port
        self.config['server']['common_name'] = provisioner.server_common_name(address)
        self.config['templating'] = provisioner.name
        save_config(self.paths.config_file, self.config)

        logger.info("Server initialized")
        return address, port

    def create(self, name: str) -> Path:
        """
        Issue a client certificate and write its bundle.

        Returns:
            Path of the new bundle file
        """
        validate_client_name(name, self._server_names())
        self._check_pki()

        bundle_path = self.paths.bundle(name)
        if bundle_path.exists():
            raise BundleExistsError(bundle_path)

        record = latest_records(self._read_index()).get(name)
        if self.paths.issued_cert(name).exists() and not (record and record.revoked):
            raise ClientExistsError(name)

        address, port = resolve_server(self.config, self.environ)
        provisioner = self._provisioner()

        self.paths.clients_dir.mkdir(parents=True, exist_ok=True)

        logger.info(f"==> Creating client: {name}")
        provisioner.issue_client(name)

        logger.info("==> Exporting .ovpn...")
        bundle = provisioner.export_client(name, address, port)
        write_private_file(bundle_path, bundle)

        logger.info(f"Client bundle written: {bundle_path}")
        return bundle_path

    def revoke(self, name: str) -> bool:
        """
        Revoke a client certificate, refresh the CRL and remove its bundle.

        Returns:
            True if a bundle file was removed
        """
        validate_client_name(name, self._server_names())
        self._check_pki()

        record = latest_records(self._read_index()).get(name)
        if record is not None and record.revoked:
            raise AlreadyRevokedError(name)
        if not self.paths.issued_cert(name).exists():
            raise ClientNotFoundError(name)

        logger.info(f"==> Revoking client: {name}")
        self._provisioner().revoke_client(name)

        bundle_path = self.paths.bundle(name)
        try:
            bundle_path.unlink()
        except FileNotFoundError:
            logger.debug(f"No bundle to remove at {bundle_path}")
            return False
        except OSError as e:
            logger.warning(f"Client revoked but bundle could not be removed: {e}")
            return False

        logger.info(f"Removed {bundle_path}")
        return True

    def list_clients(self) -> List[ClientStatus]:
        """All issued client identities in index order, server excluded"""
        self._check_pki()

        server_names = self._server_names()
        records = latest_records(self._read_index())
        names = [name for name in records if name not in server_names]

        # Issued certificates the index does not know about
        if self.paths.issued_dir.is_dir():
            for entry in self.paths.issued_dir.iterdir():
                if entry.suffix != '.crt':
                    continue
                if entry.stem not in server_names and entry.stem not in records:
                    names.append(entry.stem)

        clients = []
        for name in names:
            bundle_path = self.paths.bundle(name)
            record = records.get(name)
            clients.append(ClientStatus(
                name=name,
                bundle=bundle_path if bundle_path.exists() else None,
                status=record.status_name if record else 'valid',
                expires=record.expires_at if record else None
            ))
        return clients
