"""
PKI lifecycle strategies.

``OwnedProvisioner`` drives easyrsa directly and renders the server config
and client bundles itself. ``DelegatedProvisioner`` hands config generation
and bundle export to the ovpn_* helper scripts shipped with common OpenVPN
container images, patching their output where needed.
"""

import os
import shutil
import logging
from typing import Any, Dict

from .config import SERVER_NAME, TEMPLATING_DELEGATE, TEMPLATING_OWN, Paths
from .easyrsa import EasyRSA, generate_tls_key
from .errors import CommandError, ConfigError
from .process import CommandRunner
from .templates import (extract_certificate, patch_generated_config,
                        render_client_bundle, render_server_config,
                        set_remote, validate_server_config)

logger = logging.getLogger(__name__)


def step(number: int, total: int, message: str) -> None:
    logger.info(f"==> [{number}/{total}] {message}")


class Provisioner:
    """Base class holding the shared CA tool wrapper"""

    name = None
    # Steps performed by initialize(); the caller adds its own after these
    setup_steps = 0

    def __init__(self, config: Dict[str, Any], paths: Paths, runner: CommandRunner):
        self.config = config
        self.paths = paths
        self.runner = runner
        self.tools = config['tools']
        crypto = config['crypto']
        self.easyrsa = EasyRSA(paths.pki_dir, runner, binary=self.tools['easyrsa'],
                               algo=crypto['algo'], curve=crypto['curve'])

    def initialize(self, address: str, port: int, total_steps: int) -> None:
        raise NotImplementedError

    def server_common_name(self, address: str) -> str:
        """CN the server certificate is issued under"""
        return SERVER_NAME

    def issue_client(self, name: str) -> None:
        self.easyrsa.build_client_full(name)

    def export_client(self, name: str, address: str, port: int) -> str:
        raise NotImplementedError

    def revoke_client(self, name: str) -> None:
        raise NotImplementedError


class OwnedProvisioner(Provisioner):
    name = TEMPLATING_OWN
    setup_steps = 5

    def initialize(self, address: str, port: int, total_steps: int) -> None:
        crypto = self.config['crypto']

        step(1, total_steps, "Initializing PKI")
        self.easyrsa.init_pki()
        self.easyrsa.write_vars(self.paths.vars_file)

        step(2, total_steps, f"Building CA ({crypto['algo']} {crypto['curve']}, no CA password)")
        self.easyrsa.build_ca(crypto['ca_common_name'])

        step(3, total_steps, "Issuing server certificate")
        self.easyrsa.build_server_full(SERVER_NAME)

        step(4, total_steps, "Generating tls-crypt key and CRL")
        generate_tls_key(self.runner, self.paths.tls_key, binary=self.tools['openvpn'])
        self.easyrsa.gen_crl()
        self.publish_crl()

        step(5, total_steps, "Writing server config")
        server_config = render_server_config(self.config, self.paths)
        validate_server_config(server_config)
        self.paths.server_config.write_text(server_config)
        logger.debug(f"Server config written to {self.paths.server_config}")

    def export_client(self, name: str, address: str, port: int) -> str:
        ca_cert = self.paths.ca_cert.read_text()
        client_cert = extract_certificate(self.paths.issued_cert(name).read_text())
        client_key = self.paths.private_key(name).read_text()
        tls_key = self.paths.tls_key.read_text()

        return render_client_bundle(self.config, address, port,
                                    ca_cert, client_cert, client_key, tls_key)

    def revoke_client(self, name: str) -> None:
        self.easyrsa.revoke(name)
        self.easyrsa.gen_crl()
        self.publish_crl()

    def publish_crl(self) -> None:
        """Copy the CRL where the daemon reads it after dropping privileges"""
        shutil.copyfile(self.paths.crl_file, self.paths.published_crl)
        os.chmod(self.paths.published_crl, 0o644)


class DelegatedProvisioner(Provisioner):
    name = TEMPLATING_DELEGATE
    setup_steps = 4

    def server_common_name(self, address: str) -> str:
        # ovpn_initpki issues the server certificate under OVPN_CN
        return address

    def _environment(self) -> Dict[str, str]:
        return self.easyrsa.environment({'OPENVPN': str(self.paths.ovpn_dir)})

    def _run(self, tool: str, args):
        result = self.runner.run(self.tools[tool], args, env=self._environment())
        if not result.ok:
            raise CommandError(result.command, result.returncode, result.stderr)
        return result

    def initialize(self, address: str, port: int, total_steps: int) -> None:
        server = self.config['server']
        crypto = self.config['crypto']

        step(1, total_steps, "Generating server config")
        args = [
            '-u', f"{server['proto']}://{address}:{port}",
            '-C', crypto['cipher'],
            '-a', crypto['auth'],
            # tls-crypt, carried into ovpn_getclient output
            '-T'
        ]
        for dns in server['dns']:
            args.extend(['-n', dns])
        self._run('genconfig', args)

        step(2, total_steps, "Patching server config")
        generated = self.paths.server_config.read_text()
        patched = patch_generated_config(generated, self.config)
        validate_server_config(patched)
        self.paths.server_config.write_text(patched)

        step(3, total_steps, f"Initializing PKI ({crypto['algo']} {crypto['curve']}, no CA password)")
        self._run('initpki', ['nopass'])

        step(4, total_steps, "Saving Easy-RSA settings")
        self.easyrsa.write_vars(self.paths.vars_file)

    def export_client(self, name: str, address: str, port: int) -> str:
        result = self._run('getclient', [name])
        if not result.stdout.strip():
            raise CommandError(result.command, result.returncode, "no client config produced")
        return set_remote(result.stdout, address, port, self.config['server']['proto'])

    def revoke_client(self, name: str) -> None:
        self._run('revokeclient', [name])


PROVISIONERS = {
    OwnedProvisioner.name: OwnedProvisioner,
    DelegatedProvisioner.name: DelegatedProvisioner
}


def get_provisioner(config: Dict[str, Any], paths: Paths, runner: CommandRunner) -> Provisioner:
    mode = config.get('templating') or TEMPLATING_OWN
    try:
        provisioner_class = PROVISIONERS[mode]
    except KeyError:
        raise ConfigError(
            f"Unknown templating mode: {mode!r} (expected one of: {', '.join(PROVISIONERS)})"
        )
    return provisioner_class(config, paths, runner)
