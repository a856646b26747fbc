"""Allow running with `python -m verification_relayer`."""

from .cli import main

if __name__ == "__main__":
    main()
