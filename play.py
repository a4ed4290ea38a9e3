#!/usr/bin/env python3
"""
Quick launcher for the Stamn agent.

Run from project root: python play.py run
Or: ./play.py status (after chmod +x play.py)
"""

import sys
import os

# Add stamn_client to path
sys.path.insert(0, os.path.join(os.path.dirname(__file__), 'stamn_client'))

from stamn.cli import main

if __name__ == "__main__":
    sys.exit(main())
