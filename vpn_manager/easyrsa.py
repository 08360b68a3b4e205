"""
Wrappers around the Easy-RSA certificate authority and the OpenVPN key generator
"""

import logging
from pathlib import Path
from typing import Dict, List, Optional

from .errors import CommandError
from .process import CommandRunner

logger = logging.getLogger(__name__)


class EasyRSA:
    """
    Drives ``easyrsa`` against a single PKI directory.

    All settings reach the tool through an explicit environment map, so no
    global state is touched between invocations.
    """

    def __init__(self, pki_dir: Path, runner: CommandRunner, binary: str = 'easyrsa',
                 algo: str = 'ec', curve: str = 'prime256v1'):
        self.pki_dir = Path(pki_dir)
        self.runner = runner
        self.binary = binary
        self.algo = algo
        self.curve = curve

    def environment(self, extra: Optional[Dict[str, str]] = None) -> Dict[str, str]:
        env = {
            'EASYRSA_PKI': str(self.pki_dir),
            'EASYRSA_BATCH': '1',
            'EASYRSA_ALGO': self.algo,
            'EASYRSA_CURVE': self.curve
        }
        if extra:
            env.update(extra)
        return env

    def _run(self, args: List[str], extra_env: Optional[Dict[str, str]] = None) -> str:
        result = self.runner.run(self.binary, args, env=self.environment(extra_env))
        if not result.ok:
            raise CommandError(result.command, result.returncode, result.stderr)
        return result.stdout

    def init_pki(self) -> None:
        self._run(['init-pki'])

    def build_ca(self, common_name: str) -> None:
        """Self-signed root CA without a passphrase"""
        self._run(['build-ca', 'nopass'], {'EASYRSA_REQ_CN': common_name})

    def build_server_full(self, name: str) -> None:
        self._run(['build-server-full', name, 'nopass'])

    def build_client_full(self, name: str) -> None:
        self._run(['build-client-full', name, 'nopass'])

    def revoke(self, name: str) -> None:
        self._run(['revoke', name])

    def gen_crl(self) -> None:
        self._run(['gen-crl'])

    def write_vars(self, vars_file: Path) -> None:
        """Persist algorithm settings for later direct use of the tool"""
        vars_file.write_text(
            f"set_var EASYRSA_ALGO     {self.algo}\n"
            f"set_var EASYRSA_CURVE    {self.curve}\n"
        )
        logger.debug(f"Wrote {vars_file}")


def generate_tls_key(runner: CommandRunner, key_path: Path, binary: str = 'openvpn') -> None:
    """Generate the tunnel pre-shared key (tls-crypt) with the VPN daemon"""
    result = runner.run(binary, ['--genkey', 'secret', str(key_path)])
    if not result.ok:
        raise CommandError(result.command, result.returncode, result.stderr)
