"""Runtime settings, read from the environment."""

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from database import DEFAULT_DB_PATH


@dataclass
class Settings:
    db_path: Path = DEFAULT_DB_PATH
    oracle_public_key_path: Optional[Path] = None
    registrar_secret: Optional[str] = None
    port: int = 5000
    debug: bool = False
    log_level: str = "INFO"

    def __post_init__(self):
        self.db_path = Path(self.db_path)
        if self.oracle_public_key_path is not None:
            self.oracle_public_key_path = Path(self.oracle_public_key_path)

    @classmethod
    def from_env(cls, environ=None) -> "Settings":
        env = os.environ if environ is None else environ
        return cls(
            db_path=env.get("SECUREVOTE_DB_PATH", DEFAULT_DB_PATH),
            oracle_public_key_path=env.get("SECUREVOTE_ORACLE_PUBLIC_KEY") or None,
            registrar_secret=env.get("SECUREVOTE_REGISTRAR_SECRET") or None,
            port=int(env.get("PORT", 5000)),
            debug=env.get("DEBUG", "false").lower() == "true",
            log_level=env.get("SECUREVOTE_LOG_LEVEL", "INFO").upper(),
        )
