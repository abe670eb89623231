import json
import os
from pathlib import Path
from typing import Any, Dict

import pandas as pd


def read_csv(path: Path, **kwargs) -> pd.DataFrame:
    return pd.read_csv(path, **kwargs)


def write_csv(df: pd.DataFrame, path: Path, mode: str = "w", header: bool | None = None):
    path.parent.mkdir(parents=True, exist_ok=True)
    if header is None:
        header = (not path.exists()) or (mode == "w")
    df.to_csv(path, index=False, mode=mode, header=header)


def read_json(path: Path, default: Any = None):
    if not path.exists():
        return default
    with open(path, "r", encoding="utf-8") as f:
        return json.load(f)


def write_json(data, path: Path, mode: int | None = None):
    """Write atomically: dump to a sibling temp file, then replace."""
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp = path.with_suffix(path.suffix + ".tmp")
    with open(tmp, "w", encoding="utf-8") as f:
        json.dump(data, f, indent=2, ensure_ascii=False)
    if mode is not None:
        os.chmod(tmp, mode)
    os.replace(tmp, path)


class JsonKeyValueStore:
    """
    Small key-value store persisted as one JSON object per file.
    Values must be JSON serializable.
    """
    def __init__(self, path: Path, file_mode: int | None = None):
        self.path = Path(path)
        self.file_mode = file_mode

    def _load(self) -> Dict[str, Any]:
        data = read_json(self.path, default={})
        return data if isinstance(data, dict) else {}

    def get(self, key: str, default: Any = None) -> Any:
        return self._load().get(key, default)

    def set(self, key: str, value: Any) -> None:
        data = self._load()
        data[key] = value
        write_json(data, self.path, mode=self.file_mode)

    def remove(self, key: str) -> None:
        data = self._load()
        if key in data:
            del data[key]
            write_json(data, self.path, mode=self.file_mode)
