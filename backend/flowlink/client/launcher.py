"""
Launch description of the solver process.

``LaunchSpec`` is the whole process boundary: an executable, the entry
script it runs, extra arguments and environment.  ``validate`` checks
both files before anything is spawned so that a missing interpreter or
script surfaces as a :class:`LifecycleError` instead of a process that
dies immediately.
"""

from __future__ import annotations

import os
import shutil
import subprocess
import sys
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional, Tuple

from ..config import ControllerSettings
from ..errors import LifecycleError

BACKEND_DIR = Path(__file__).resolve().parents[2]
SERVER_SCRIPT = BACKEND_DIR / "flowlink" / "server.py"


@dataclass(frozen=True)
class LaunchSpec:
    """How to start the solver process.

    Attributes:
        executable: Interpreter path or a name looked up on ``PATH``.
        script: Entry script passed as the first argument.
        args: Further command-line arguments.
        env: Variables added to the inherited environment.
    """

    executable: str
    script: Path
    args: Tuple[str, ...] = ()
    env: Dict[str, str] = field(default_factory=dict)

    def resolve_executable(self) -> Optional[str]:
        candidate = Path(self.executable)
        if candidate.is_file():
            return str(candidate)
        return shutil.which(self.executable)

    def validate(self) -> str:
        """Check the executable and script exist.

        Returns:
            The resolved executable path.

        Raises:
            LifecycleError: If either is missing.
        """
        executable = self.resolve_executable()
        if executable is None:
            raise LifecycleError(f"Solver executable not found: {self.executable}")
        if not Path(self.script).is_file():
            raise LifecycleError(f"Solver script not found: {self.script}")
        return executable

    def command(self) -> List[str]:
        return [self.validate(), str(self.script), *self.args]

    def environment(self) -> Dict[str, str]:
        env = dict(os.environ)
        env.update(self.env)
        return env

    def spawn(self) -> subprocess.Popen:
        """Validate and start the process without waiting for it."""
        return subprocess.Popen(self.command(), env=self.environment())


def default_launch_spec(settings: ControllerSettings) -> LaunchSpec:
    """Run ``flowlink/server.py`` with the current interpreter."""
    pythonpath = os.pathsep.join(
        p for p in (str(BACKEND_DIR), os.environ.get("PYTHONPATH", "")) if p
    )
    return LaunchSpec(
        executable=sys.executable,
        script=SERVER_SCRIPT,
        args=("--host", settings.host, "--port", str(settings.port)),
        env={"PYTHONPATH": pythonpath},
    )
