"""Entry point for ``python -m bideval``."""

import sys

from bideval.cli import main

sys.exit(main())
