"""Pooled-capital vault accounting with leveraged lending strategies."""

from typing import NoReturn

__version__ = "0.1.0"


def _entry_point() -> NoReturn:
    """Entry point for the leveraged-vaults script."""
    import sys

    from leveraged_vaults.cli import main

    raise SystemExit(main(sys.argv[1:]))


def _clear_state_entry_point() -> NoReturn:
    """Entry point for clearing saved snapshots."""
    from leveraged_vaults.persistence import clear_state

    clear_state()
    raise SystemExit(0)
