#!/usr/bin/env python3
"""
vpn - OpenVPN server management

Initializes the PKI, issues and revokes client certificates and writes
self-contained .ovpn client bundles.
"""

import os
import sys
import json
import argparse
import logging
from typing import List, Optional

import yaml
from tabulate import tabulate

from . import __version__
from .config import (DEFAULT_CLIENTS_DIR, DEFAULT_OVPN_DIR, ENV_CLIENTS_DIR,
                     ENV_LOG_FILE, ENV_OVPN_DIR, TEMPLATING_MODES, Paths)
from .errors import VPNManagerError
from .manager import ClientStatus, VPNManager

logger = logging.getLogger(__name__)

NO_CLIENTS_MESSAGE = "No clients yet. Create one with: vpn create <name>"

EPILOG = """
Commands:
  setup           Initialize server (one time)
  create <name>   Create client -> <clients-dir>/<name>.ovpn
  revoke <name>   Revoke client
  list            List clients

Environment variables:
  VPN_SERVER_IP     Public server IP (required for setup)
  VPN_PORT          External port (default 1194)
  VPN_OVPN_DIR      OpenVPN directory (default /etc/openvpn)
  VPN_CLIENTS_DIR   Client bundle directory (default /clients)
  VPN_LOG_FILE      Also write log records to this file
"""


def setup_logging(verbose: bool = False, log_file: Optional[str] = None) -> None:
    """Log records go to stderr (and optionally a file); stdout is for results"""
    handlers = [logging.StreamHandler(sys.stderr)]
    if log_file:
        handlers.append(logging.FileHandler(log_file))

    logging.basicConfig(
        level=logging.INFO,
        format='%(asctime)s - %(levelname)s - %(message)s',
        handlers=handlers
    )

    if verbose:
        logging.getLogger().setLevel(logging.DEBUG)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog='vpn',
        description='OpenVPN server management',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=EPILOG
    )

    parser.add_argument('--version', action='version', version=f'%(prog)s {__version__}')
    parser.add_argument('--verbose', '-v', action='store_true', help='Verbose output')
    parser.add_argument('--ovpn-dir', default=os.environ.get(ENV_OVPN_DIR) or DEFAULT_OVPN_DIR,
                        help='OpenVPN directory holding the PKI and server config')
    parser.add_argument('--clients-dir', default=os.environ.get(ENV_CLIENTS_DIR) or DEFAULT_CLIENTS_DIR,
                        help='Directory for client bundles')
    parser.add_argument('--log-file', default=os.environ.get(ENV_LOG_FILE),
                        help='Also log to this file')

    subparsers = parser.add_subparsers(dest='command', metavar='command')

    setup_parser = subparsers.add_parser('setup', help='Initialize server (one time)')
    setup_parser.add_argument('--templating', choices=TEMPLATING_MODES,
                              help='Render configs ourselves (own) or via ovpn_* helper scripts (delegate)')

    create_parser = subparsers.add_parser('create', help='Create client bundle')
    create_parser.add_argument('name', help='Client name')

    revoke_parser = subparsers.add_parser('revoke', help='Revoke client')
    revoke_parser.add_argument('name', help='Client name')

    list_parser = subparsers.add_parser('list', help='List clients')
    list_parser.add_argument('--format', choices=['table', 'json', 'yaml'], default='table',
                             help='Output format')

    subparsers.add_parser('help', help='Show this help')

    return parser


def print_setup_summary(address: str, port: int) -> None:
    print()
    print(f"Server initialized: {address}:{port}/udp")
    print()
    print("  docker compose up -d                           # start server")
    print("  docker compose exec openvpn vpn create phone   # create client")
    print()


def print_clients(clients: List[ClientStatus], output_format: str) -> None:
    if not clients and output_format != 'table':
        # stdout stays machine readable
        logger.info(NO_CLIENTS_MESSAGE)

    if output_format == 'json':
        print(json.dumps([c.to_dict() for c in clients], indent=2))
        return
    if output_format == 'yaml':
        print(yaml.safe_dump([c.to_dict() for c in clients], default_flow_style=False), end='')
        return

    if not clients:
        print(NO_CLIENTS_MESSAGE)
        return

    table_data = []
    for client in clients:
        table_data.append([
            client.name,
            str(client.bundle) if client.bundle else 'not exported',
            client.status,
            client.expires.strftime('%Y-%m-%d') if client.expires else '-'
        ])
    print(tabulate(table_data, headers=['Name', 'Bundle', 'Status', 'Expires']))


def main(argv: Optional[List[str]] = None) -> int:
    """Main CLI interface"""
    parser = build_parser()
    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        return 1

    if args.command == 'help':
        parser.print_help()
        return 0

    try:
        setup_logging(args.verbose, args.log_file)
    except OSError as e:
        print(f"Cannot open log file: {e}", file=sys.stderr)
        return 1

    try:
        manager = VPNManager(paths=Paths(args.ovpn_dir, args.clients_dir))

        if args.command == 'setup':
            address, port = manager.setup(templating=args.templating)
            print_setup_summary(address, port)

        elif args.command == 'create':
            bundle_path = manager.create(args.name)
            print()
            print(f"Created {bundle_path}")
            print("   Copy to device and import into OpenVPN Connect.")
            print("   File contains all keys, store it like a password!")
            print()

        elif args.command == 'revoke':
            manager.revoke(args.name)
            print(f"Client {args.name} revoked. Its .ovpn no longer works.")

        elif args.command == 'list':
            print_clients(manager.list_clients(), args.format)

        return 0

    except VPNManagerError as e:
        logger.error(str(e))
        return 1
    except OSError as e:
        logger.error(f"I/O error: {e}")
        return 1
    except Exception as e:
        logger.error(f"Unexpected error: {e}")
        if args.verbose:
            import traceback
            traceback.print_exc()
        return 1


if __name__ == '__main__':
    sys.exit(main())
