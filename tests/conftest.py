from __future__ import annotations

import sys
from pathlib import Path

# Let `import rtmdet_kit` work from a plain checkout (no `pip install -e .`).
_REPO_ROOT = str(Path(__file__).resolve().parents[1])
if _REPO_ROOT not in sys.path:
    sys.path.insert(0, _REPO_ROOT)
