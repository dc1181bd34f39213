"""Pytest configuration shared by the test modules."""

from __future__ import annotations

import sys
from pathlib import Path


# Make ``app`` and ``dramatracker`` importable from a plain checkout, where
# both packages sit at the project root.
ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))
