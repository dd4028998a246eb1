"""
cd-player - a terminal control panel for Colima instances and Docker containers.

This package keeps a live view of the local Colima profiles and the Docker
containers running on them, and lets you start and stop both without
leaving the terminal.

Features:
  - Colima profile discovery with resource hints (CPU, memory, disk)
  - Start/stop of profiles, including profiles owned by another account
    (via sudo in a terminal)
  - Container list with start/stop/pause/unpause, logs, inspect and shell
  - A pinned shortlist of containers that auto-pins running ones
  - Docker reachability diagnostics

Main Components:
  - main.py: Entry point, logging and wiring
  - colima.py: Colima scanner, sampler and ColimaManager
  - docker_manager.py: Container state engine and pin policy
  - backend.py: Docker CLI wrapper
  - state.py: StateNotifier and Poller
  - textual_app.py: Textual presenter

Usage:
  python -m cdplayer

Dependencies:
  - textual, PyYAML
  - Python 3.10+
  - colima and docker CLIs on the host
"""

import os
from pathlib import Path

__version__ = "0.1.0"


def get_log_path() -> str:
    """
    Get the log file path following XDG Base Directory spec.

    Returns XDG_DATA_HOME/cd-player/logs/cd-player.log with fallback to /tmp.
    Creates directory if it doesn't exist.
    """
    xdg_data_home = os.environ.get('XDG_DATA_HOME')
    if xdg_data_home:
        base = Path(xdg_data_home)
    else:
        base = Path.home() / '.local' / 'share'

    log_dir = base / 'cd-player' / 'logs'

    try:
        log_dir.mkdir(parents=True, exist_ok=True)
        return str(log_dir / 'cd-player.log')
    except OSError:
        return '/tmp/cd-player.log'
