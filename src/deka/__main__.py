"""Allow ``python -m deka``."""

from deka.cli import main

if __name__ == "__main__":  # pragma: no cover
    main()
