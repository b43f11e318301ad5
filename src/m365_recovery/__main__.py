"""Entry point for running the recovery client as a module.

Usage:
    python -m m365_recovery validate-config
    python -m m365_recovery --help
"""

from m365_recovery.cli import main

if __name__ == "__main__":
    main()
