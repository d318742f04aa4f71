#!/usr/bin/env python3
"""
Main entry point for the nim_proxy package.
This allows the package to be run as: python -m nim_proxy
"""

from .cli import main

if __name__ == "__main__":
    main()
