#!/usr/bin/env python3
"""
Run one MF Compass sync operation (seed, update, rescore, flush, test).
Scheduled daily for `update`; see `python run_sync.py --help`.
"""
import sys
from pathlib import Path

# Run from project root
sys.path.insert(0, str(Path(__file__).resolve().parent / "src"))

from sync import main


if __name__ == "__main__":
    sys.exit(main())
