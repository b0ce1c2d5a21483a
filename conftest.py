"""
Pytest configuration for the fleet update tests.

The modules under src/ are imported as top-level modules (``import config``),
so src/ is put on sys.path before collection.
"""

import os
import sys

SRC_DIR = os.path.join(os.path.dirname(os.path.abspath(__file__)), "src")

if SRC_DIR not in sys.path:
    sys.path.insert(0, SRC_DIR)
