"""Entry point for running Supervision Helper as a module.

Allows running with: python -m supervision_helper
"""

from .cli import main

if __name__ == "__main__":
    main()
