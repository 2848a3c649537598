"""Allow ``python -m mongo_lens`` to start the stdio server."""

import sys

from .mcp_server import main

sys.exit(main())
