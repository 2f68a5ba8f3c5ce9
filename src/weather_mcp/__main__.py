import sys

from weather_mcp.cli import main

sys.exit(main())  # type: ignore[call-arg]
