#!/usr/bin/env python3
"""
grpc-health-probe - Entry point.

Usage:
    python -m grpc_health_probe --addr HOST:PORT [--service NAME] [--tls ...]
"""

import sys

from .cli import main

if __name__ == "__main__":
    sys.exit(main())
