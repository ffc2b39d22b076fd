from __future__ import annotations

from keyfeed.ui.cli import run

run()
