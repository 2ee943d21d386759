#!/usr/bin/env python3
"""
DatoCMS Schema Sync - Standalone Runner

Run this script directly without needing to install the package:
    python run_build.py -c config.yaml build

Or with environment variables:
    python run_build.py build

Options:
    python run_build.py --help                     # Show all options
    python run_build.py build --no-cache           # Rebuild everything
    python run_build.py build --skip-deletion      # Never delete item types
"""

import sys
import os

# Add the current directory to the path so imports work
script_dir = os.path.dirname(os.path.abspath(__file__))
sys.path.insert(0, script_dir)

from dato_schema_sync.main import main

if __name__ == '__main__':
    sys.exit(main())
