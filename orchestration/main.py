"""
Tabletop Companion — Entry Point

This file is a thin wrapper that delegates to app/client.py.

Python adds the script's directory to sys.path[0], so the project root is
added explicitly for the top-level packages to resolve.

To run: python orchestration/main.py dm
   or:  python -m app.client player --profile alice
"""

import os
import sys

PROJECT_ROOT = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
if PROJECT_ROOT not in sys.path:
    sys.path.insert(0, PROJECT_ROOT)

from app.client import run  # noqa: E402

if __name__ == "__main__":
    run()
