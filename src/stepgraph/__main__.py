"""Entry point for `python -m stepgraph` and the `stepgraph` CLI script."""

import sys

from stepgraph.run import main

sys.exit(main())
