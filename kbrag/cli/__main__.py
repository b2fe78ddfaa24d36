"""Allow ``python -m kbrag.cli`` execution."""

import sys

from kbrag.cli.kb import main

sys.exit(main())
