import copy

import pytest

from vpn_manager.config import DEFAULT_CONFIG, Paths
from vpn_manager.errors import ConfigError
from vpn_manager.templates import (extract_certificate, patch_generated_config,
                                   render_client_bundle, render_server_config,
                                   set_remote, validate_server_config)

CERT = "-----BEGIN CERTIFICATE-----\nMIIBszCCAVmgAwIBAgIQ\n-----END CERTIFICATE-----"


@pytest.fixture
def config():
    return copy.deepcopy(DEFAULT_CONFIG)


def test_extract_certificate_strips_text_dump():
    text = (
        "Certificate:\n"
        "    Data:\n"
        "        Version: 3 (0x2)\n"
        + CERT + "\n"
        "trailing notes\n"
    )
    assert extract_certificate(text) == CERT


def test_extract_certificate_missing_block():
    with pytest.raises(ConfigError):
        extract_certificate("Certificate:\n    Data:\n")


def test_server_config_directives(config):
    paths = Paths('/etc/openvpn', '/clients')
    text = render_server_config(config, paths)
    lines = text.splitlines()

    assert 'port 1194' in lines
    assert 'proto udp' in lines
    assert 'server 192.168.255.0 255.255.255.0' in lines
    assert 'cipher AES-256-GCM' in lines
    assert 'auth SHA256' in lines
    assert 'tls-version-min 1.2' in lines
    assert 'tls-cipher TLS-ECDHE-ECDSA-WITH-AES-256-GCM-SHA384' in lines
    assert 'dh none' in lines
    assert 'ca /etc/openvpn/pki/ca.crt' in lines
    assert 'cert /etc/openvpn/pki/issued/server.crt' in lines
    assert 'key /etc/openvpn/pki/private/server.key' in lines
    assert 'tls-crypt /etc/openvpn/pki/ta.key' in lines
    assert 'crl-verify /etc/openvpn/crl.pem' in lines
    assert 'push "dhcp-option DNS 1.1.1.1"' in lines
    assert 'push "dhcp-option DNS 1.0.0.1"' in lines
    validate_server_config(text)


def test_server_config_listen_port_ignores_external_port(config):
    config['server']['port'] = 443
    text = render_server_config(config, Paths('/etc/openvpn', '/clients'))
    assert 'port 1194' in text.splitlines()
    assert 'port 443' not in text.splitlines()


def test_client_bundle_embeds_material(config):
    text = render_client_bundle(config, 'vpn.example.com', 443,
                                'CA-PEM\n', 'CLIENT-CERT', 'CLIENT-KEY\n', 'TLS-KEY')
    lines = text.splitlines()

    assert lines[0] == 'client'
    assert 'remote vpn.example.com 443 udp' in lines
    assert 'remote-cert-tls server' in lines
    assert '<ca>\nCA-PEM\n</ca>' in text
    assert '<cert>\nCLIENT-CERT\n</cert>' in text
    assert '<key>\nCLIENT-KEY\n</key>' in text
    assert '<tls-crypt>\nTLS-KEY\n</tls-crypt>' in text


@pytest.mark.parametrize('text', [
    'port 1194\n',
    'tls-cipher DEFAULT\n',
])
def test_validate_server_config_rejects(text):
    with pytest.raises(ConfigError):
        validate_server_config(text)


def test_patch_generated_config(config):
    generated = "server 192.168.255.0 255.255.255.0\nport 443\ndh dh.pem\nproto udp"
    patched = patch_generated_config(generated, config)
    lines = patched.splitlines()

    assert 'port 1194' in lines
    assert 'port 443' not in lines
    assert 'dh none' in lines
    assert 'dh dh.pem' not in lines
    assert lines[-2:] == ['tls-version-min 1.2',
                          'tls-cipher TLS-ECDHE-ECDSA-WITH-AES-256-GCM-SHA384']
    validate_server_config(patched)


def test_set_remote_rewrites_directive():
    exported = "client\nremote 203.0.113.10 443 udp\nremote-cert-tls server\n"
    text = set_remote(exported, 'vpn.example.com', 1195, 'udp')
    assert text.splitlines() == ['client', 'remote vpn.example.com 1195 udp', 'remote-cert-tls server']


def test_set_remote_requires_directive():
    with pytest.raises(ConfigError):
        set_remote("client\nremote-cert-tls server\n", 'vpn.example.com', 1194, 'udp')
