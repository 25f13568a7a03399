"""firebase-mcp: Model Context Protocol server for Firebase Firestore, Storage and Authentication."""

import sys

from .cli import main
from .errors import ConfigurationError


def run():
    """Synchronous wrapper for main() to use as console script entry point."""
    try:
        main()
    except KeyboardInterrupt:
        print("\nfirebase-mcp server stopped.", file=sys.stderr)
        sys.exit(0)
    except ConfigurationError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        sys.exit(1)
    except Exception as e:
        print(f"Fatal error: {e}", file=sys.stderr)
        sys.exit(1)


__version__ = "1.0.0"
__all__ = ["main", "run", "ConfigurationError"]
