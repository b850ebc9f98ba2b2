#!/usr/bin/env python3
"""
Shadow Maintenance Tool

Thin wrapper around ``shadow_maintenance.cli`` for running from a checkout.

Usage:
    ./scripts/maintain.py run --resource articles --table my-table
    ./scripts/maintain.py generate-config --base64
"""

import sys
from pathlib import Path

# Add the repository root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from shadow_maintenance.cli import main  # noqa: E402

if __name__ == "__main__":
    sys.exit(main())
