"""CLI entry point for adforge.cli module.

Enables execution via: python -m adforge.cli
"""

from adforge.cli.stuck_jobs import main

if __name__ == "__main__":
    main()
