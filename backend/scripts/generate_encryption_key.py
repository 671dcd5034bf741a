#!/usr/bin/env python3
"""
Prints a fresh base64-encoded 256-bit key for ENCRYPTION_KEY.

Usage:
  cd backend
  PYTHONPATH=. python scripts/generate_encryption_key.py

Rotating the key makes every stored password unreadable; affected accounts
fail with INTERNAL_ERROR until their owners re-enter credentials.
"""

from __future__ import annotations

import os
import sys

# Run from repo root or backend; ensure backend is on path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from billsync.core.vault import generate_key


def main() -> None:
    print(generate_key())


if __name__ == "__main__":
    main()
