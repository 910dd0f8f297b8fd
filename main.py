#!/usr/bin/env python3
"""
cachewatch - Prompt caching monitor

Usage:
    python main.py run              # rotate through all models forever
    python main.py once --model X   # single pass, results table
    python main.py report           # summarise stored results
"""

from cachewatch.cli import main

if __name__ == "__main__":
    main()
