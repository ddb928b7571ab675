"""Exit codes for the shipgate CLI.

- 0: Pipeline succeeded (possibly with advisory warnings)
- 1: Pipeline failed (halted by a fatal failure)
- 2: Internal error
- 3: Invalid usage (bad arguments, bad config)
- 130: Run cancelled (SIGINT/SIGTERM)
"""

from __future__ import annotations

EXIT_SUCCESS = 0
EXIT_PIPELINE_FAILED = 1
EXIT_INTERNAL_ERROR = 2
EXIT_INVALID_USAGE = 3
EXIT_CANCELLED = 130
