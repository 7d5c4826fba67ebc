"""Main entry point for the VPS deployer."""

from .cli import main

if __name__ == "__main__":
    main()
