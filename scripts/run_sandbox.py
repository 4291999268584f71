#!/usr/bin/env python3
import os
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(ROOT))

print(
    f"[sandbox] fixtures={os.environ.get('SANDBOX_FIXTURE_BASE', 'builtin')} | "
    f"profile={os.environ.get('SANDBOX_TIMEOUT_PROFILE', 'default')} | "
    f"allowlist={os.environ.get('SANDBOX_ALLOW_HOSTS', '*')}",
    file=sys.stderr,
)

from agentic_sandbox.main import main  # noqa: E402

if __name__ == "__main__":
    main()
