"""
Shared fixtures. FakeRunner stands in for easyrsa, openvpn and the ovpn_*
helper scripts by producing the files they would leave on disk.
"""

import os
import re
import secrets
import shutil
from pathlib import Path

import pytest

from vpn_manager.config import Paths
from vpn_manager.manager import VPNManager
from vpn_manager.process import CommandResult


def fake_pem(label):
    return f"-----BEGIN {label}-----\n{secrets.token_hex(32)}\n-----END {label}-----\n"


class FakeRunner:
    """Records invocations and simulates the external tools"""

    def __init__(self):
        self.calls = []
        self.failures = set()

    def fail_on(self, command, subcommand=None):
        self.failures.add((command, subcommand))

    def commands(self):
        return [(command, args[0] if args else None) for command, args, _ in self.calls]

    def run(self, command, args=None, env=None):
        args = list(args or [])
        env = dict(env or {})
        self.calls.append((command, args, env))
        cmd = [command] + args

        name = os.path.basename(command)
        subcommand = args[0] if args else None
        if (name, subcommand) in self.failures or (name, None) in self.failures:
            return CommandResult(cmd, 1, '', f'{name}: simulated failure')

        handler = getattr(self, '_' + name, None)
        if handler is None:
            return CommandResult(cmd, 127, '', f'{name}: not found')
        return handler(cmd, args, env)

    # easyrsa

    def _easyrsa(self, cmd, args, env):
        pki = Path(env['EASYRSA_PKI'])
        action = args[0]

        if action == 'init-pki':
            for sub in ('private', 'issued', 'reqs'):
                (pki / sub).mkdir(parents=True, exist_ok=True)
            (pki / 'index.txt').touch()
        elif action == 'build-ca':
            (pki / 'ca.crt').write_text(fake_pem('CERTIFICATE'))
            (pki / 'private' / 'ca.key').write_text(fake_pem('PRIVATE KEY'))
        elif action in ('build-server-full', 'build-client-full'):
            if not self._issue(pki, args[1]):
                return CommandResult(cmd, 1, '', 'Request file already exists')
        elif action == 'revoke':
            if not self._revoke(pki, args[1]):
                return CommandResult(cmd, 1, '', 'Unable to revoke as no certificate was found')
        elif action == 'gen-crl':
            (pki / 'crl.pem').write_text(fake_pem('X509 CRL'))
        else:
            return CommandResult(cmd, 1, '', f'Unknown command {action}')
        return CommandResult(cmd, 0, '', '')

    def _issue(self, pki, name):
        cert = pki / 'issued' / f'{name}.crt'
        if cert.exists():
            return False
        serial = secrets.token_hex(16).upper()
        cert.write_text(
            "Certificate:\n"
            "    Data:\n"
            f"        Serial Number: {serial}\n"
            f"        Subject: CN={name}\n"
            + fake_pem('CERTIFICATE')
        )
        (pki / 'private' / f'{name}.key').write_text(fake_pem('PRIVATE KEY'))
        with open(pki / 'index.txt', 'a') as f:
            f.write(f"V\t341231235959Z\t\t{serial}\tunknown\t/CN={name}\n")
        return True

    def _revoke(self, pki, name):
        cert = pki / 'issued' / f'{name}.crt'
        if not cert.exists():
            return False
        lines = (pki / 'index.txt').read_text().splitlines()
        serial = None
        for i, line in enumerate(lines):
            fields = line.split('\t')
            if fields[0] == 'V' and fields[5] == f'/CN={name}':
                fields[0] = 'R'
                fields[2] = '250101000000Z,unspecified'
                serial = fields[3]
                lines[i] = '\t'.join(fields)
        (pki / 'index.txt').write_text('\n'.join(lines) + '\n')
        revoked = pki / 'revoked' / 'certs_by_serial'
        revoked.mkdir(parents=True, exist_ok=True)
        shutil.move(str(cert), str(revoked / f'{serial}.crt'))
        return True

    # openvpn

    def _openvpn(self, cmd, args, env):
        if args[:2] != ['--genkey', 'secret']:
            return CommandResult(cmd, 1, '', 'unsupported options')
        Path(args[2]).write_text(
            "-----BEGIN OpenVPN Static key V1-----\n"
            f"{secrets.token_hex(64)}\n"
            "-----END OpenVPN Static key V1-----\n"
        )
        return CommandResult(cmd, 0, '', '')

    # ovpn_* helper scripts

    def _ovpn_genconfig(self, cmd, args, env):
        ovpn = Path(env['OPENVPN'])
        url = args[args.index('-u') + 1]
        match = re.match(r'(\w+)://(.+):(\d+)$', url)
        proto, address, port = match.groups()
        ovpn.mkdir(parents=True, exist_ok=True)
        (ovpn / 'openvpn.conf').write_text(
            "server 192.168.255.0 255.255.255.0\n"
            f"proto {proto}\n"
            f"port {port}\n"
            "dh dh.pem\n"
            f"cipher {args[args.index('-C') + 1]}\n"
        )
        (ovpn / 'ovpn_env.sh').write_text(f"declare -x OVPN_CN={address}\ndeclare -x OVPN_PORT={port}\n")
        return CommandResult(cmd, 0, '', '')

    def _ovpn_initpki(self, cmd, args, env):
        # The helper issues the server certificate under the public address
        ovpn_env = (Path(env['OPENVPN']) / 'ovpn_env.sh').read_text()
        server_cn = re.search(r'OVPN_CN=(\S+)', ovpn_env).group(1)
        for action in (['init-pki'], ['build-ca', 'nopass'], ['build-server-full', server_cn, 'nopass']):
            self._easyrsa(cmd, action, env)
        pki = Path(env['EASYRSA_PKI'])
        self._openvpn(cmd, ['--genkey', 'secret', str(pki / 'ta.key')], env)
        self._easyrsa(cmd, ['gen-crl'], env)
        return CommandResult(cmd, 0, '', '')

    def _ovpn_getclient(self, cmd, args, env):
        pki = Path(env['EASYRSA_PKI'])
        ovpn_env = (Path(env['OPENVPN']) / 'ovpn_env.sh').read_text()
        address = re.search(r'OVPN_CN=(\S+)', ovpn_env).group(1)
        port = re.search(r'OVPN_PORT=(\S+)', ovpn_env).group(1)
        name = args[0]
        bundle = (
            "client\n"
            f"remote {address} {port} udp\n"
            f"<key>\n{(pki / 'private' / f'{name}.key').read_text()}</key>\n"
            f"<ca>\n{(pki / 'ca.crt').read_text()}</ca>\n"
        )
        return CommandResult(cmd, 0, bundle, '')

    def _ovpn_revokeclient(self, cmd, args, env):
        pki = Path(env['EASYRSA_PKI'])
        if not self._revoke(pki, args[0]):
            return CommandResult(cmd, 1, '', 'Unable to revoke')
        self._easyrsa(cmd, ['gen-crl'], env)
        shutil.copyfile(pki / 'crl.pem', Path(env['OPENVPN']) / 'crl.pem')
        return CommandResult(cmd, 0, '', '')


@pytest.fixture
def runner():
    return FakeRunner()


@pytest.fixture
def paths(tmp_path):
    return Paths(tmp_path / 'openvpn', tmp_path / 'clients')


@pytest.fixture
def environ():
    return {'VPN_SERVER_IP': '203.0.113.10', 'VPN_PORT': '443'}


@pytest.fixture
def manager(paths, runner, environ):
    return VPNManager(paths=paths, runner=runner, environ=environ)


@pytest.fixture
def initialized(paths, runner, environ):
    """A manager whose server has been set up, reloaded as a later invocation would be"""
    VPNManager(paths=paths, runner=runner, environ=environ).setup()
    return VPNManager(paths=paths, runner=runner, environ={})
