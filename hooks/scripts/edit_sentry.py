#!/usr/bin/env python3
"""Edit Sentry Hook.

Protects files from unsafe Edit operations by:
1. Blocking zeroAccess paths (secrets, credentials)
2. Blocking readOnly paths (system and tool configuration)

Edits carry no full file content, so contentRules are not applied.

Exit codes:
    0 = Allow edit
    1 = Malformed hook input
    2 = Block edit (stderr fed back to Claude)
"""

import sys
from pathlib import Path

# Add hooks directory to path
sys.path.insert(0, str(Path(__file__).parent))

try:
    from _sentry_gate import TOOL_EDIT, run_sentry_hook
    from _sentry_utils import log_sentry
except ImportError as e:
    print(f"Hook error: sentry system unavailable: {e}", file=sys.stderr)
    sys.exit(0)


def main() -> None:
    """Main hook entry point."""
    sys.exit(run_sentry_hook(TOOL_EDIT))


if __name__ == "__main__":
    try:
        main()
    except Exception as e:
        log_sentry("ERROR", f"Edit sentry error: {type(e).__name__}: {e}")
        print(f"Hook error: {e}", file=sys.stderr)
        sys.exit(0)
