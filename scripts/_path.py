"""Make the repository root importable when scripts are run directly."""

from __future__ import annotations

import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parent.parent


def add_root() -> Path:
    """Prepend the repository root to ``sys.path`` if it is missing and return it."""

    root_str = str(ROOT)
    if root_str not in sys.path:
        sys.path.insert(0, root_str)
    return ROOT
