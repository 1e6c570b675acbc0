#!/usr/bin/env python3
"""
Main entry point for running the scrapegen CLI as a module.

Usage:
    python3 -m scrapegen compile podmonitors.yaml
    python3 -m scrapegen validate podmonitors.yaml
"""

from .cli import main

if __name__ == "__main__":
    main()
