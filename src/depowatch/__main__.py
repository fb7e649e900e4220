"""Allow running as ``python -m depowatch``."""

import sys

from depowatch.cli import main

sys.exit(main())
