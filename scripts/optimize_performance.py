#!/usr/bin/env python3
"""
Performance optimization script.

Runs the maintenance checklist (database, cache, analytics, memory, queries)
once and prints the report.

Usage:
    python scripts/optimize_performance.py [--json]

Environment Variables:
    DATABASE_URL - Database connection string

Exit Codes:
    0 - Report produced (individual step failures are listed in it)
    1 - The run aborted
"""

import sys
from pathlib import Path

# Add project root to path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from portal.maintenance.cli import run  # noqa: E402

if __name__ == "__main__":
    run()
