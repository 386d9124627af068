# Work-log configuration
# Override endpoints and paths via config.yaml, environment, or CLI args.

import os
import yaml
from pathlib import Path
from dataclasses import dataclass, field
from typing import Dict, Optional

CONFIG_PATH = Path(__file__).parent / "config.yaml"


@dataclass
class Config:
    """Runtime configuration for the work-log client and server."""

    # Remote service
    base_url: str = "http://127.0.0.1:3000"
    api_key: str = ""
    actor_email: str = ""
    request_timeout: float = 10.0

    # Server storage
    db_path: str = "~/.local/share/worklog/worklog.db"

    # Board loader
    board_stale_after: float = 30.0

    # Server cache TTLs (seconds) per category
    cache_ttls: Dict[str, int] = field(default_factory=lambda: {
        "kanban": 300,
        "user": 1800,
        "project": 600,
        "analytics": 60,
    })

    # Shift schedule
    default_shift_code: str = "G"

    log_level: str = "INFO"

    def resolve_paths(self):
        """Apply environment overrides and expand ~."""
        self.db_path = os.environ.get("WORKLOG_DB", self.db_path)
        self.api_key = os.environ.get("WORKLOG_API_SECRET", self.api_key)
        self.base_url = os.environ.get("WORKLOG_BASE_URL", self.base_url)
        self.db_path = str(Path(self.db_path).expanduser())
        self.default_shift_code = (self.default_shift_code or "G").upper()

    @classmethod
    def load(cls, path: Optional[str] = None) -> "Config":
        """Load config from YAML file, falling back to defaults."""
        path = path or os.environ.get("WORKLOG_CONFIG")
        cfg_path = Path(path) if path else CONFIG_PATH
        if cfg_path.exists():
            try:
                with open(cfg_path, "r") as f:
                    data = yaml.safe_load(f) or {}
                cfg = cls(**{k: v for k, v in data.items() if k in cls.__dataclass_fields__})
            except (OSError, yaml.YAMLError, TypeError):
                cfg = cls()
        else:
            cfg = cls()
        cfg.resolve_paths()
        return cfg
