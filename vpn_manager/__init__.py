"""
vpn-manager: OpenVPN server provisioning around Easy-RSA
"""

__version__ = '1.0.0'
