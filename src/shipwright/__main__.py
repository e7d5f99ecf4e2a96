"""Allow ``python -m shipwright``."""

from __future__ import annotations

from shipwright.cli.main import main

if __name__ == "__main__":
    main()
