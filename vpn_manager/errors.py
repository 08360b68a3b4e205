"""
Exceptions raised by vpn-manager operations
"""

from typing import List, Optional


class VPNManagerError(Exception):
    """Base exception for vpn-manager operations"""
    pass


class PreconditionError(VPNManagerError):
    """A required on-disk state is missing or already present"""
    pass


class NotInitializedError(PreconditionError):
    def __init__(self, message: str = "Server not initialized. First run: vpn setup"):
        super().__init__(message)


class AlreadyInitializedError(PreconditionError):
    def __init__(self, pki_dir):
        super().__init__(
            f"PKI already initialized at {pki_dir}. "
            f"To reset: delete it and run setup again."
        )


class BundleExistsError(PreconditionError):
    def __init__(self, path):
        super().__init__(f"File {path} already exists. Delete it or choose another name.")


class ClientExistsError(PreconditionError):
    def __init__(self, name: str):
        super().__init__(
            f"Client '{name}' already has a valid certificate. "
            f"Revoke it first or choose another name."
        )


class ClientNotFoundError(PreconditionError):
    def __init__(self, name: str):
        super().__init__(f"Client '{name}' not found.")


class AlreadyRevokedError(PreconditionError):
    def __init__(self, name: str):
        super().__init__(f"Client '{name}' is already revoked.")


class InvalidClientNameError(VPNManagerError):
    """Client name is empty, reserved or contains disallowed characters"""
    pass


class ConfigError(VPNManagerError):
    """Missing or invalid configuration"""
    pass


class CommandError(VPNManagerError):
    """An external tool exited with a non-zero status"""

    def __init__(self, command: List[str], returncode: int, stderr: Optional[str] = None):
        self.command = command
        self.returncode = returncode
        self.stderr = (stderr or '').strip()
        message = f"Command '{command[0]}' failed (exit {returncode})"
        if self.stderr:
            message += f": {self.stderr}"
        super().__init__(message)
