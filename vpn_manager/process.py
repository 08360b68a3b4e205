"""
Process invocation for external tooling (CA tool, VPN daemon, helper scripts)
"""

import os
import subprocess
import logging
from dataclasses import dataclass
from typing import Dict, List, Optional

logger = logging.getLogger(__name__)


@dataclass
class CommandResult:
    """Outcome of one external command"""
    command: List[str]
    returncode: int
    stdout: str = ''
    stderr: str = ''

    @property
    def ok(self) -> bool:
        return self.returncode == 0


class CommandRunner:
    """
    Runs external commands synchronously and captures their output.

    The ``env`` mapping given to :meth:`run` is merged over a copy of the
    current process environment; ``os.environ`` itself is never modified.
    """

    def run(self, command: str, args: Optional[List[str]] = None,
            env: Optional[Dict[str, str]] = None) -> CommandResult:
        merged_env = os.environ.copy()
        if env:
            merged_env.update(env)

        cmd = [command] + list(args or [])
        logger.debug(f"Executing: {' '.join(cmd)}")

        try:
            result = subprocess.run(
                cmd,
                stdin=subprocess.DEVNULL,
                capture_output=True,
                text=True,
                env=merged_env
            )
        except OSError as e:
            # Binary missing or not executable
            logger.debug(f"Failed to spawn {command}: {e}")
            return CommandResult(cmd, 127, '', str(e))

        if result.stderr:
            logger.debug(f"{command} stderr: {result.stderr.strip()}")

        return CommandResult(cmd, result.returncode, result.stdout, result.stderr)
