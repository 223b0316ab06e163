from __future__ import annotations

from pathlib import Path

from dotenv import load_dotenv


project_root = Path(__file__).resolve().parents[2]
load_dotenv(project_root / ".env", override=False)

__version__ = "0.1.0"
