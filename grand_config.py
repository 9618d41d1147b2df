from __future__ import annotations
import yaml
from dataclasses import dataclass, field
from typing import Optional

from grand_bin import TRAILING_POLICIES


@dataclass
class DecodeCfg:
    # What to do when the declared station count is reached before the end
    # of the event: "ignore", "warn" (report an anomaly) or "error" (drop it).
    trailing_policy: str = "warn"


@dataclass
class PathsCfg:
    # Templates relative to the base directory; {run} and {seq} are filled in.
    binary: str = "AD/ad{run:06d}.f{seq:04d}"
    monitor: str = "MON/MO{run:06d}.f{seq:04d}"
    field: str = "field.txt"


@dataclass
class OutputCfg:
    filename: str = "Run{run}.hdf5"
    compression: Optional[str] = "gzip"
    compression_opts: Optional[int] = 6
    # Rows per chunk of the appendable monitoring tables
    chunk_rows: int = 64


@dataclass
class LoggingCfg:
    level: str = "INFO"
    format: str = "%(asctime)s %(levelname)s %(name)s: %(message)s"


@dataclass
class AppCfg:
    decode: DecodeCfg = field(default_factory=DecodeCfg)
    paths: PathsCfg = field(default_factory=PathsCfg)
    output: OutputCfg = field(default_factory=OutputCfg)
    logging: LoggingCfg = field(default_factory=LoggingCfg)


def _as_int(d, key, default):
    v = d.get(key, default)
    if v is None:
        return None
    try:
        return int(v)
    except (TypeError, ValueError):
        return default


def load_config(path: Optional[str] = None) -> AppCfg:
    """Load the YAML configuration; no path gives the defaults."""
    if path is None:
        return AppCfg()
    with open(path, "r", encoding="utf-8") as f:
        raw = yaml.safe_load(f) or {}

    dec = DecodeCfg(**raw.get("decode", {}))
    dec.trailing_policy = str(dec.trailing_policy).lower()
    if dec.trailing_policy not in TRAILING_POLICIES:
        raise ValueError(f"decode.trailing_policy must be one of {TRAILING_POLICIES}, "
                         f"got {dec.trailing_policy!r}")

    paths = PathsCfg(**raw.get("paths", {}))

    # Coerce numeric fields; YAML/ENV values may come in as strings
    out_raw = dict(raw.get("output", {}))
    out = OutputCfg(
        filename=out_raw.get("filename", OutputCfg.filename),
        compression=out_raw.get("compression", OutputCfg.compression),
        compression_opts=_as_int(out_raw, "compression_opts", OutputCfg.compression_opts),
        chunk_rows=max(1, _as_int(out_raw, "chunk_rows", OutputCfg.chunk_rows) or 1),
    )

    log = LoggingCfg(**raw.get("logging", {}))
    return AppCfg(decode=dec, paths=paths, output=out, logging=log)
