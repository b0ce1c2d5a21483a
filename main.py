#!/usr/bin/env python3
"""
Pantheon Fleet Update

- Update every site selected with flags (--team, --org, --name, --owner)
- Or every site listed in a YAML configuration file (--config-file)

Runs directly from a source checkout by adding the local `src/` directory to
sys.path. For production use, prefer installing the project and using the
`pantheon-fleet-update` console script.
"""

import os
import sys

# Add src/ to path to import modules directly
REPO_ROOT = os.path.dirname(os.path.abspath(__file__))
SRC_PATH = os.path.join(REPO_ROOT, "src")
if SRC_PATH not in sys.path:
    sys.path.insert(0, SRC_PATH)

from cli import main  # noqa: E402

if __name__ == "__main__":
    sys.exit(main())
