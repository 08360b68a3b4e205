"""
Server configuration and client bundle templates
"""

import re
from typing import Any, Dict

from .config import SERVER_NAME, Paths
from .errors import ConfigError

PEM_CERTIFICATE_RE = re.compile(
    r'-----BEGIN CERTIFICATE-----\s.*?-----END CERTIFICATE-----',
    re.DOTALL
)

TLS_CIPHER_PREFIX = 'TLS-ECDHE-'


def extract_certificate(text: str) -> str:
    """
    Return the first PEM certificate block in ``text``.

    Issued certificates from the CA tool may carry a human readable dump
    before the PEM block; only the block itself goes into a bundle.
    """
    match = PEM_CERTIFICATE_RE.search(text)
    if not match:
        raise ConfigError("No PEM certificate block found")
    return match.group(0)


def render_server_config(config: Dict[str, Any], paths: Paths) -> str:
    """Build OpenVPN server configuration"""
    server = config['server']
    crypto = config['crypto']

    dns_config = '\n'.join(f'push "dhcp-option DNS {dns}"' for dns in server['dns'])

    return f"""# Generated by vpn-manager, do not edit
port {server['internal_port']}
proto {server['proto']}
dev tun0
server {server['subnet']} {server['netmask']}
topology subnet

ca {paths.ca_cert}
cert {paths.issued_cert(SERVER_NAME)}
key {paths.private_key(SERVER_NAME)}
dh none
tls-crypt {paths.tls_key}
crl-verify {paths.published_crl}

cipher {crypto['cipher']}
data-ciphers {crypto['cipher']}
auth {crypto['auth']}
tls-version-min {crypto['tls_version_min']}
tls-cipher {crypto['tls_cipher']}

push "redirect-gateway def1"
push "block-outside-dns"
{dns_config}

keepalive 10 60
persist-key
persist-tun
user nobody
group nogroup
status /tmp/openvpn-status.log
verb 3
"""


def render_client_bundle(config: Dict[str, Any], address: str, port: int,
                         ca_cert: str, client_cert: str, client_key: str,
                         tls_key: str) -> str:
    """Build a self-contained .ovpn client profile"""
    server = config['server']
    crypto = config['crypto']

    return f"""client
nobind
dev tun
remote-cert-tls server
remote {address} {port} {server['proto']}
resolv-retry infinite
persist-key
persist-tun
cipher {crypto['cipher']}
data-ciphers {crypto['cipher']}
auth {crypto['auth']}
tls-version-min {crypto['tls_version_min']}
verb 3

<ca>
{ca_cert.strip()}
</ca>
<cert>
{client_cert.strip()}
</cert>
<key>
{client_key.strip()}
</key>
<tls-crypt>
{tls_key.strip()}
</tls-crypt>
"""


def validate_server_config(text: str) -> None:
    """Check the TLS hardening directive survived rendering or patching"""
    found = False
    for line in text.splitlines():
        if line.startswith('tls-cipher'):
            found = True
            value = line[len('tls-cipher'):].strip()
            if not value.startswith(TLS_CIPHER_PREFIX):
                raise ConfigError(f"Bad tls-cipher in config: {line}")
    if not found:
        raise ConfigError("tls-cipher directive missing from config")


def patch_generated_config(text: str, config: Dict[str, Any]) -> str:
    """
    Adjust a config produced by the delegate helper script: force the
    internal listen port, disable DH (EC keys) and append TLS hardening.
    """
    crypto = config['crypto']
    text = re.sub(r'(?m)^port .*$', f"port {config['server']['internal_port']}", text)
    text = re.sub(r'(?m)^dh dh\.pem$', 'dh none', text)
    if not text.endswith('\n'):
        text += '\n'
    text += (
        f"\ntls-version-min {crypto['tls_version_min']}\n"
        f"tls-cipher {crypto['tls_cipher']}\n"
    )
    return text


def set_remote(bundle: str, address: str, port: int, proto: str) -> str:
    """Point the remote directive of an exported client config at address:port"""
    text, count = re.subn(r'(?m)^remote\s.*$', f"remote {address} {port} {proto}", bundle)
    if not count:
        raise ConfigError("Exported client config has no remote directive")
    return text
