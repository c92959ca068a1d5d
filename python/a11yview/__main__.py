# SPDX-License-Identifier: AGPL-3.0-only
"""Enable `python -m a11yview` invocation."""
from a11yview_cli.cli import main

if __name__ == "__main__":
    raise SystemExit(main())
