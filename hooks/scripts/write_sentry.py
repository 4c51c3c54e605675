#!/usr/bin/env python3
"""Write Sentry Hook.

Protects files from unsafe Write operations by:
1. Blocking zeroAccess paths (secrets, credentials)
2. Blocking readOnly paths (system and tool configuration)
3. Blocking content that matches a contentRules entry for that path

Exit codes:
    0 = Allow write
    1 = Malformed hook input
    2 = Block write (stderr fed back to Claude)

Design Principles:
- Fail-Open: if the sentry system itself fails, allow the write and report
  the error on stderr (see hookBehavior.onError for evaluation errors)
- Thin wrapper: All logic in run_sentry_hook()
"""

import sys
from pathlib import Path

# Add hooks directory to path
sys.path.insert(0, str(Path(__file__).parent))

try:
    from _sentry_gate import TOOL_WRITE, run_sentry_hook
    from _sentry_utils import log_sentry
except ImportError as e:
    print(f"Hook error: sentry system unavailable: {e}", file=sys.stderr)
    sys.exit(0)


def main() -> None:
    """Main hook entry point."""
    sys.exit(run_sentry_hook(TOOL_WRITE))


if __name__ == "__main__":
    try:
        main()
    except Exception as e:
        log_sentry("ERROR", f"Write sentry error: {type(e).__name__}: {e}")
        print(f"Hook error: {e}", file=sys.stderr)
        sys.exit(0)
