"""
Entry point for running AI Flow Studio as a module.

Usage:
    python -m ai_flow_studio validate workspace.json
"""

import sys

from ai_flow_studio.main import main

if __name__ == "__main__":
    sys.exit(main())
