#!/usr/bin/env python
"""
Launcher script for Bakehouse.

Puts src/ on the Python path so the command line works from a source
checkout without installing the package.
"""

import sys
from pathlib import Path

project_root = Path(__file__).parent
sys.path.insert(0, str(project_root / "src"))

from bakehouse.main import main

if __name__ == "__main__":
    sys.exit(main())
