"""Allow ``python -m envseek``."""

from envseek.cli import main

if __name__ == "__main__":
    main()
