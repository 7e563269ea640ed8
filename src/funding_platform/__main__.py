"""Entry point for 'python -m funding_platform'."""

from funding_platform.cli import main

if __name__ == "__main__":
    main()
