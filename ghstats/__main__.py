"""Main entry point when executing ghstats as a package.

This allows running the package using python -m ghstats.
"""

from ghstats.main import cli_entry_point

if __name__ == "__main__":
    cli_entry_point()
