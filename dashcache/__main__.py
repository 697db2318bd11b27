"""Main entry point when executing dashcache as a package.

This allows running the package using python -m dashcache.
"""

from dashcache.main import cli_entry_point

if __name__ == "__main__":
    cli_entry_point()
