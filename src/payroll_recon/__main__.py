"""Entry point for ``python -m payroll_recon``."""

import sys

from payroll_recon.cli import main

if __name__ == "__main__":
    sys.exit(main())
