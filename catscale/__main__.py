"""
Cat-Scale CLI Entry Point

This module allows running Cat-Scale as:
    python -m catscale [options]
"""

from catscale.cli import main

if __name__ == "__main__":
    main()
