"""Runtime settings — loaded from config/vesting.json, overridable by env.

Resolution order (later wins):
1. config/vesting.json
2. variables from a .env file (loaded with python-dotenv, never
   overriding variables already set in the process environment)
3. process environment

Recognised environment variables:
    VESTING_DATA_DIR        directory holding store, event log and outbox
    VESTING_GENESIS_TIME    ISO-8601 UTC time of block 0
    VESTING_BLOCK_SECONDS   seconds per block
"""

from __future__ import annotations

import json
import os
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Any, Mapping, Optional

from dotenv import load_dotenv

from vesting.models.obligation import parse_time
from vesting.oracle import ClockBlockOracle

PROJECT_ROOT = Path(__file__).resolve().parents[2]
DEFAULT_CONFIG_PATH = PROJECT_ROOT / "config" / "vesting.json"

_DEFAULTS: dict[str, Any] = {
    "data_dir": "data",
    "store_file": "store.json",
    "event_log_file": "events.jsonl",
    "outbox_file": "outbox.jsonl",
    "chain": {
        "genesis_time": "2026-01-01T00:00:00Z",
        "block_seconds": 6,
    },
}


@dataclass(frozen=True)
class VestingSettings:
    """Resolved runtime settings."""
    data_dir: Path
    store_file: str
    event_log_file: str
    outbox_file: str
    genesis_time: datetime
    block_seconds: int

    def __post_init__(self) -> None:
        if self.block_seconds <= 0:
            raise ValueError(f"block_seconds must be positive, got {self.block_seconds}")

    @property
    def store_path(self) -> Path:
        return self.data_dir / self.store_file

    @property
    def event_log_path(self) -> Path:
        return self.data_dir / self.event_log_file

    @property
    def outbox_path(self) -> Path:
        return self.data_dir / self.outbox_file

    def block_oracle(self) -> ClockBlockOracle:
        return ClockBlockOracle(self.genesis_time, self.block_seconds)

    @classmethod
    def load(
        cls,
        config_path: Optional[Path] = None,
        env_file: Optional[Path] = None,
        environ: Optional[Mapping[str, str]] = None,
    ) -> VestingSettings:
        """Load settings from a JSON file plus environment overrides.

        A missing config file falls back to built-in defaults. A relative
        ``data_dir`` resolves against the directory that holds the config
        file, the built-in default against the project root, and a relative
        VESTING_DATA_DIR against the working directory.
        """
        path = config_path or DEFAULT_CONFIG_PATH
        data = dict(_DEFAULTS)
        data_base = PROJECT_ROOT
        if path.exists():
            loaded = json.loads(path.read_text(encoding="utf-8"))
            if not isinstance(loaded, dict):
                raise ValueError(f"Config file must hold a JSON object: {path}")
            data.update(loaded)
            if "data_dir" in loaded:
                data_base = path.resolve().parent
        chain = {**_DEFAULTS["chain"], **data.get("chain", {})}

        if environ is None:
            load_dotenv(env_file or PROJECT_ROOT / ".env")
            environ = os.environ

        if "VESTING_DATA_DIR" in environ:
            data_dir = Path(environ["VESTING_DATA_DIR"]).resolve()
        else:
            data_dir = Path(data["data_dir"])
            if not data_dir.is_absolute():
                data_dir = (data_base / data_dir).resolve()

        genesis_raw = environ.get("VESTING_GENESIS_TIME", chain["genesis_time"])
        block_raw = environ.get("VESTING_BLOCK_SECONDS", chain["block_seconds"])
        try:
            block_seconds = int(block_raw)
        except (TypeError, ValueError) as e:
            raise ValueError(f"Invalid block_seconds: {block_raw!r}") from e

        return cls(
            data_dir=data_dir,
            store_file=data["store_file"],
            event_log_file=data["event_log_file"],
            outbox_file=data["outbox_file"],
            genesis_time=parse_time(genesis_raw),
            block_seconds=block_seconds,
        )
