"""
Configuration and well-known paths for vpn-manager
"""

import copy
import os
import logging
from pathlib import Path
from typing import Any, Dict, Mapping, Optional, Tuple

import yaml

from .errors import ConfigError

logger = logging.getLogger(__name__)

DEFAULT_OVPN_DIR = '/etc/openvpn'
DEFAULT_CLIENTS_DIR = '/clients'
DEFAULT_PORT = 1194

CONFIG_FILENAME = 'vpn.yaml'
BUNDLE_EXTENSION = '.ovpn'

# Reserved CN of the server certificate, never listed as a client
SERVER_NAME = 'server'
# Easy-RSA keeps the CA key as private/ca.key
CA_NAME = 'ca'

PLACEHOLDER_ADDRESS = 'YOUR_SERVER_IP'
ENV_SERVER_ADDRESS = 'VPN_SERVER_IP'
ENV_PORT = 'VPN_PORT'
ENV_OVPN_DIR = 'VPN_OVPN_DIR'
ENV_CLIENTS_DIR = 'VPN_CLIENTS_DIR'
ENV_LOG_FILE = 'VPN_LOG_FILE'

TEMPLATING_OWN = 'own'
TEMPLATING_DELEGATE = 'delegate'
TEMPLATING_MODES = (TEMPLATING_OWN, TEMPLATING_DELEGATE)

DEFAULT_CONFIG = {
    'server': {
        'address': None,
        'port': DEFAULT_PORT,
        'internal_port': 1194,
        'proto': 'udp',
        'subnet': '192.168.255.0',
        'netmask': '255.255.255.0',
        'dns': ['1.1.1.1', '1.0.0.1'],
        # CN of the server certificate, recorded at setup
        'common_name': None
    },
    'crypto': {
        'algo': 'ec',
        'curve': 'prime256v1',
        'cipher': 'AES-256-GCM',
        'auth': 'SHA256',
        'tls_version_min': '1.2',
        'tls_cipher': 'TLS-ECDHE-ECDSA-WITH-AES-256-GCM-SHA384',
        'ca_common_name': 'OpenVPN CA'
    },
    'templating': TEMPLATING_OWN,
    'tools': {
        'easyrsa': 'easyrsa',
        'openvpn': 'openvpn',
        'genconfig': 'ovpn_genconfig',
        'initpki': 'ovpn_initpki',
        'getclient': 'ovpn_getclient',
        'revokeclient': 'ovpn_revokeclient'
    }
}


class Paths:
    """Fixed layout under the OpenVPN directory and the client output directory"""

    def __init__(self, ovpn_dir=DEFAULT_OVPN_DIR, clients_dir=DEFAULT_CLIENTS_DIR):
        self.ovpn_dir = Path(ovpn_dir)
        self.clients_dir = Path(clients_dir)

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> 'Paths':
        environ = os.environ if environ is None else environ
        return cls(environ.get(ENV_OVPN_DIR) or DEFAULT_OVPN_DIR,
                   environ.get(ENV_CLIENTS_DIR) or DEFAULT_CLIENTS_DIR)

    @property
    def pki_dir(self) -> Path:
        return self.ovpn_dir / 'pki'

    @property
    def ca_cert(self) -> Path:
        return self.pki_dir / 'ca.crt'

    @property
    def ca_key(self) -> Path:
        return self.pki_dir / 'private' / 'ca.key'

    @property
    def issued_dir(self) -> Path:
        return self.pki_dir / 'issued'

    @property
    def private_dir(self) -> Path:
        return self.pki_dir / 'private'

    @property
    def index_file(self) -> Path:
        return self.pki_dir / 'index.txt'

    @property
    def crl_file(self) -> Path:
        return self.pki_dir / 'crl.pem'

    @property
    def tls_key(self) -> Path:
        return self.pki_dir / 'ta.key'

    @property
    def vars_file(self) -> Path:
        return self.pki_dir / 'vars'

    @property
    def server_config(self) -> Path:
        return self.ovpn_dir / 'openvpn.conf'

    @property
    def published_crl(self) -> Path:
        return self.ovpn_dir / 'crl.pem'

    @property
    def config_file(self) -> Path:
        return self.ovpn_dir / CONFIG_FILENAME

    def issued_cert(self, name: str) -> Path:
        return self.issued_dir / f'{name}.crt'

    def private_key(self, name: str) -> Path:
        return self.private_dir / f'{name}.key'

    def bundle(self, name: str) -> Path:
        return self.clients_dir / f'{name}{BUNDLE_EXTENSION}'


def _merge_configs(default: Dict[str, Any], user: Dict[str, Any]) -> Dict[str, Any]:
    """Recursively merge configuration dictionaries"""
    for key, value in user.items():
        if key in default and isinstance(default[key], dict) and isinstance(value, dict):
            default[key] = _merge_configs(default[key], value)
        else:
            default[key] = value
    return default


def load_config(config_file: Path) -> Dict[str, Any]:
    """Load configuration from YAML file, merged over the defaults"""
    config = copy.deepcopy(DEFAULT_CONFIG)

    if not config_file.exists():
        logger.debug(f"No configuration at {config_file}, using defaults")
        return config

    with open(config_file, 'r') as f:
        try:
            user_config = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise ConfigError(f"Malformed configuration file {config_file}: {e}")

    if user_config is None:
        return config
    if not isinstance(user_config, dict):
        raise ConfigError(f"Configuration file {config_file} must contain a mapping")

    return _merge_configs(config, user_config)


def save_config(config_file: Path, config: Dict[str, Any]) -> None:
    """Save configuration to file"""
    config_file.parent.mkdir(parents=True, exist_ok=True)
    with open(config_file, 'w') as f:
        yaml.safe_dump(config, f, default_flow_style=False, indent=2)
    logger.debug(f"Configuration saved to {config_file}")


def parse_port(value: Any) -> int:
    """Validate a port number from the environment or a config file"""
    try:
        port = int(value)
    except (TypeError, ValueError):
        raise ConfigError(f"Invalid port: {value!r}")
    if not 1 <= port <= 65535:
        raise ConfigError(f"Port out of range (1-65535): {port}")
    return port


def env_address(environ: Mapping[str, str]) -> Optional[str]:
    """Server address from the environment; the placeholder counts as unset"""
    address = (environ.get(ENV_SERVER_ADDRESS) or '').strip()
    if not address or address == PLACEHOLDER_ADDRESS:
        return None
    return address


def resolve_server(config: Dict[str, Any], environ: Mapping[str, str]) -> Tuple[str, int]:
    """
    Resolve the public address and port clients connect to.

    Environment variables take precedence over the persisted configuration.

    Raises:
        ConfigError: if no address is available from either source
    """
    address = env_address(environ) or config['server'].get('address')
    if not address:
        raise ConfigError(
            f"{ENV_SERVER_ADDRESS} not set and no address recorded in the "
            f"configuration. Set {ENV_SERVER_ADDRESS} or re-run setup."
        )

    port_value = (environ.get(ENV_PORT) or '').strip() or config['server'].get('port') or DEFAULT_PORT
    return address, parse_port(port_value)
