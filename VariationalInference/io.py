"""Input/output helpers for methylation data, labels and run configs.

Methylation data is stored as a long CSV with one row per CpG:

    cell_id,region_id,position,met

position is the CpG coordinate relative to its region, normalised to [-1, 1],
and met is the binary methylation call. An optional slot column ("train" or
"test") stores partitioned datasets in one file.
"""

from __future__ import annotations

import csv
from dataclasses import dataclass
import logging
import os
from pathlib import Path
from typing import Any, Iterable, Mapping

import numpy as np
import yaml

from Simulation.config import SynthConfig
from VariationalInference.basis import Basis, create_basis
from VariationalInference.data import MethylationData, RegionObs
from VariationalInference.infer import MelissaConfig

logger = logging.getLogger(__name__)

REQUIRED_COLUMNS = ("cell_id", "region_id", "position", "met")


# -----------------------------------------------------------------------------
# Methylation tables
# -----------------------------------------------------------------------------

def _assemble(
    rows: dict[tuple[str, str], list[tuple[float, float]]],
    cell_ids: list[str],
    region_ids: list[str],
) -> list[list[RegionObs]]:
    cell_map = {cid: n for n, cid in enumerate(cell_ids)}
    region_map = {rid: m for m, rid in enumerate(region_ids)}
    met: list[list[RegionObs]] = [[None] * len(region_ids) for _ in cell_ids]
    for (cid, rid), values in rows.items():
        arr = np.asarray(values, dtype=np.float64)
        arr = arr[np.argsort(arr[:, 0], kind="stable")]
        met[cell_map[cid]][region_map[rid]] = arr
    return met


def load_methylation_csv(
    path: str | Path,
    region_ids: Iterable[str] | None = None,
) -> MethylationData:
    """Load a long-format methylation CSV.

    Cells and regions keep their order of first appearance unless region_ids
    fixes the region order.
    """
    path = Path(path)
    cell_ids: list[str] = []
    seen_regions: list[str] = []
    seen_cells: set[str] = set()
    seen_region_set: set[str] = set()
    slots: dict[str, dict[tuple[str, str], list[tuple[float, float]]]] = {"train": {}, "test": {}}

    with path.open("r", newline="", encoding="utf-8") as f:
        reader = csv.DictReader(f)
        fieldnames = reader.fieldnames or []
        missing = [col for col in REQUIRED_COLUMNS if col not in fieldnames]
        if missing:
            raise ValueError(f"methylation CSV missing columns: {', '.join(missing)}")
        has_slot = "slot" in fieldnames
        for line_no, row in enumerate(reader, start=2):
            cid = row["cell_id"].strip()
            rid = row["region_id"].strip()
            if not cid or not rid:
                continue
            try:
                pos = float(row["position"])
                call = float(row["met"])
            except ValueError as exc:
                raise ValueError(f"{path}:{line_no}: invalid position or met value") from exc
            slot = row["slot"].strip() if has_slot and row.get("slot") else "train"
            if slot not in slots:
                raise ValueError(f"{path}:{line_no}: slot must be 'train' or 'test'; got {slot!r}")
            if cid not in seen_cells:
                seen_cells.add(cid)
                cell_ids.append(cid)
            if rid not in seen_region_set:
                seen_region_set.add(rid)
                seen_regions.append(rid)
            slots[slot].setdefault((cid, rid), []).append((pos, call))

    if not cell_ids:
        raise ValueError(f"No methylation rows found in {path}")
    if region_ids is not None:
        region_ids = list(region_ids)
        unknown = seen_region_set - set(region_ids)
        if unknown:
            raise ValueError(f"region_id(s) not in region list: {sorted(unknown)[:5]}")
    else:
        region_ids = seen_regions

    met = _assemble(slots["train"], cell_ids, region_ids)
    test = _assemble(slots["test"], cell_ids, region_ids) if slots["test"] else None
    logger.info("Loaded %d cells x %d regions from %s", len(cell_ids), len(region_ids), path)
    return MethylationData(met=met, cell_ids=cell_ids, region_ids=region_ids, test=test)


def save_methylation_csv(data: MethylationData, path: str | Path) -> Path:
    """Write met (and test, if present) as a long-format CSV."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    layouts = [("train", data.met)]
    if data.test is not None:
        layouts.append(("test", data.test))
    with path.open("w", newline="", encoding="utf-8") as f:
        writer = csv.writer(f)
        header = list(REQUIRED_COLUMNS)
        if data.test is not None:
            header.append("slot")
        writer.writerow(header)
        for slot, met in layouts:
            for n, cell in enumerate(met):
                for m, obs in enumerate(cell):
                    if obs is None:
                        continue
                    for pos, call in obs:
                        row = [data.cell_ids[n], data.region_ids[m], repr(float(pos)), int(call)]
                        if data.test is not None:
                            row.append(slot)
                        writer.writerow(row)
    return path


# -----------------------------------------------------------------------------
# Labels and identifiers
# -----------------------------------------------------------------------------

def load_ids(path: str | Path) -> list[str]:
    path = Path(path)
    with path.open("r", encoding="utf-8") as f:
        return [line.strip() for line in f if line.strip()]


def save_ids(path: str | Path, values: Iterable[Any]) -> Path:
    path = Path(path)
    with path.open("w", encoding="utf-8") as f:
        for val in values:
            f.write(f"{val}\n")
    return path


def load_labels(
    path: str | Path,
    cell_ids: list[str] | None = None,
) -> np.ndarray:
    """Load true cluster labels.

    Accepts a CSV with cell_id,label columns (reordered to cell_ids) or a
    plain file with one label per line in cell order.
    """
    path = Path(path)
    if path.suffix == ".csv":
        with path.open("r", newline="", encoding="utf-8") as f:
            reader = csv.DictReader(f)
            if not {"cell_id", "label"}.issubset(reader.fieldnames or []):
                raise ValueError("labels CSV must include cell_id and label columns")
            label_map = {row["cell_id"].strip(): row["label"].strip() for row in reader}
        if cell_ids is None:
            values = list(label_map.values())
        else:
            missing = [cid for cid in cell_ids if cid not in label_map]
            if missing:
                raise ValueError(f"cell_id {missing[0]} missing from labels file")
            values = [label_map[cid] for cid in cell_ids]
    else:
        values = load_ids(path)
    _, codes = np.unique(np.asarray(values), return_inverse=True)
    return codes.astype(np.int64)


# -----------------------------------------------------------------------------
# Run configuration
# -----------------------------------------------------------------------------

@dataclass(frozen=True)
class PartitionSettings:
    data_train_prcg: float = 0.5
    region_train_prcg: float = 0.95
    cpg_train_prcg: float = 0.5
    is_synth: bool = False
    seed: int = 0


@dataclass(frozen=True)
class RunConfig:
    """Settings of one end-to-end run loaded from YAML."""
    out_dir: str
    basis: Basis
    inference: MelissaConfig
    data_path: str | None = None
    labels_path: str | None = None
    synth: SynthConfig | None = None
    partition: PartitionSettings | None = None
    use_mixture: bool = False
    threshold: float = 0.5


def _resolve_path(value: str, base_dir: Path) -> Path:
    path = Path(value)
    if not path.is_absolute():
        path = base_dir / path
    return path.resolve()


def _check_readable(path: Path, label: str) -> None:
    if not path.exists():
        raise ValueError(f"{label} not found: {path}")
    if not path.is_file():
        raise ValueError(f"{label} is not a file: {path}")
    if not os.access(path, os.R_OK):
        raise ValueError(f"{label} is not readable: {path}")


def _require(raw: Mapping[str, Any], key: str) -> Any:
    if key not in raw:
        raise ValueError(f"Missing required config field: {key}")
    return raw[key]


def _section(raw: Mapping[str, Any], key: str) -> dict[str, Any]:
    value = raw.get(key) or {}
    if not isinstance(value, dict):
        raise ValueError(f"Config field {key} must be a mapping")
    return dict(value)


def load_run_config(path: str | Path) -> RunConfig:
    """Load and validate a run configuration from YAML."""
    path = Path(path)
    with open(path, "r", encoding="utf-8") as f:
        raw = yaml.safe_load(f)
    if not isinstance(raw, dict):
        raise ValueError(f"Config file must contain a YAML mapping: {path}")

    base_dir = path.resolve().parent
    out_dir = _resolve_path(str(_require(raw, "out_dir")), base_dir)

    data_path = raw.get("data_path")
    synth_raw = raw.get("synth")
    if (data_path is None) == (synth_raw is None):
        raise ValueError("Provide exactly one of data_path or synth")
    synth = None
    if data_path is not None:
        data_path = _resolve_path(str(data_path), base_dir)
        _check_readable(data_path, "data_path")
    else:
        synth = SynthConfig(**_section(raw, "synth"))

    labels_path = raw.get("labels_path")
    if labels_path is not None:
        labels_path = _resolve_path(str(labels_path), base_dir)
        _check_readable(labels_path, "labels_path")

    partition = None
    if raw.get("partition") is not None:
        partition = PartitionSettings(**_section(raw, "partition"))

    impute = _section(raw, "impute")
    use_mixture = impute.get("use_mixture", False)
    if not isinstance(use_mixture, bool):
        raise ValueError("impute.use_mixture must be a boolean")

    return RunConfig(
        out_dir=str(out_dir),
        basis=create_basis(**_section(raw, "basis")),
        inference=MelissaConfig(**_section(raw, "inference")),
        data_path=str(data_path) if data_path is not None else None,
        labels_path=str(labels_path) if labels_path is not None else None,
        synth=synth,
        partition=partition,
        use_mixture=use_mixture,
        threshold=float(impute.get("threshold", 0.5)),
    )


__all__ = [
    "PartitionSettings",
    "RunConfig",
    "load_ids",
    "load_labels",
    "load_methylation_csv",
    "load_run_config",
    "save_ids",
    "save_methylation_csv",
]
