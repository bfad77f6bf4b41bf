import sys

from tool_gateway.cli import main

sys.exit(main())
