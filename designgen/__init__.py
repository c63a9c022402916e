import os
from pathlib import Path
from typing import Dict, Optional, Tuple

__version__ = "0.1.0"


def _parse_env_line(line: str) -> Optional[Tuple[str, str]]:
    s = line.strip()
    if not s or s.startswith("#") or "=" not in s:
        return None
    if s.startswith("export "):
        s = s[len("export "):].lstrip()
    key, val = s.split("=", 1)
    key = key.strip()
    val = val.strip()
    if len(val) >= 2 and val[0] == val[-1] and val[0] in {'"', "'"}:
        val = val[1:-1]
    if not key:
        return None
    return key, val


def _read_env_file(path: Path) -> Dict[str, str]:
    values: Dict[str, str] = {}
    for line in path.read_text(encoding="utf-8").splitlines():
        parsed = _parse_env_line(line)
        if parsed:
            values[parsed[0]] = parsed[1]
    return values


def _load_dotenv_if_needed(path: Path = Path(".env")) -> None:
    # Tests must never pick up a developer's real OpenRouter settings
    if os.getenv("PYTEST_CURRENT_TEST"):
        return
    if not path.exists():
        return
    try:
        values = _read_env_file(path)
    except (OSError, UnicodeDecodeError):
        # Best-effort: a broken .env must not stop the service from starting
        return
    for key, val in values.items():
        os.environ.setdefault(key, val)


_load_dotenv_if_needed()
