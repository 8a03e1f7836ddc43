"""Initialize a MarketMinder ledger workbook from ``config.ini``.

Run ``python setup_excel.py [--config PATH] [--force]`` from a checkout. The
implementation lives in :mod:`marketminder.setup_excel`.
"""

from __future__ import annotations

import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).resolve().parent / "src"))

from marketminder.setup_excel import main  # noqa: E402


if __name__ == "__main__":  # pragma: no cover - exercised via manual runs
    sys.exit(main())
