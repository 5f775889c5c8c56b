#!/usr/bin/env python3
"""
TrackArena Server Launcher
"""

import os
import sys

# Add src to path
sys.path.insert(0, os.path.join(os.path.dirname(__file__), "src"))

from trackarena.server import main

if __name__ == "__main__":
    sys.exit(main())
