"""CSV table loading for the command-line run.

The table is a comma separated file with one header line and numeric cells;
its last column is the 0/1 label.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path

import numpy as np
import pandas as pd

from .exceptions import ConfigurationError, LabelError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Dimensions:
    rows: int
    cols: int


def _read(path, nrows=None) -> pd.DataFrame:
    path = Path(path)
    if not path.is_file():
        raise ConfigurationError(f"can't open file: {path}")
    try:
        header = pd.read_csv(path, nrows=0).columns
        # header=None: the first data row fixes the width, so no column is
        # silently promoted to an index
        df = pd.read_csv(path, header=None, skiprows=1, nrows=nrows)
    except pd.errors.ParserError as e:
        raise ConfigurationError(f"every row must have the same number of columns: {e}") from e
    except pd.errors.EmptyDataError as e:
        raise ConfigurationError(f"{path} holds no data") from e
    if df.shape[1] != len(header):
        raise ConfigurationError(
            f"{path}: header has {len(header)} columns but rows have {df.shape[1]}")
    df.columns = header
    return df


def _to_table(df: pd.DataFrame, path) -> np.ndarray:
    try:
        table = df.to_numpy(dtype=np.float64)
    except (TypeError, ValueError) as e:
        raise ConfigurationError(f"{path}: non-numeric cell: {e}") from e
    missing = np.argwhere(np.isnan(table))
    if missing.size:
        row, col = missing[0]
        # +2: one for the header line, one for 1-based numbering
        raise ConfigurationError(
            f"{path}: line {row + 2} has a missing value in column {col + 1}")
    return table


def parse_csv_dims(path) -> Dimensions:
    """Infer ``(rows, cols)`` of the CSV file, header excluded."""
    df = _read(path)
    _to_table(df, path)
    if df.shape[0] == 0 or df.shape[1] == 0:
        raise ConfigurationError(f"{path}: # of rows and cols must be > 0")
    return Dimensions(rows=int(df.shape[0]), cols=int(df.shape[1]))


def load_csv(path, dims: Dimensions | None = None) -> np.ndarray:
    """
    Read the table as a row-major float64 array.

    With ``dims`` only the first ``dims.rows`` data rows are read and the
    column count must equal ``dims.cols``.
    """
    df = _read(path, nrows=None if dims is None else dims.rows)
    table = _to_table(df, path)
    if dims is not None and table.shape != (dims.rows, dims.cols):
        raise ConfigurationError(
            f"{path}: expected {dims.rows} rows x {dims.cols} cols, "
            f"found {table.shape[0]} x {table.shape[1]}")
    if table.shape[1] < 2:
        raise ConfigurationError(f"{path}: need at least one feature and the label column")
    logger.debug("read %d rows from file %s", table.shape[0], path)
    return np.ascontiguousarray(table)


def validate_labels(data: np.ndarray) -> None:
    """Raise ``LabelError`` unless the last column holds only 0 and 1."""
    labels = data[:, -1]
    bad = ~np.isin(labels, (0.0, 1.0))
    if bad.any():
        row = int(np.flatnonzero(bad)[0])
        raise LabelError(
            "only binary classification is supported (labels 0/1), "
            f"row {row} has label {labels[row]!r}")


def checksum(data: np.ndarray) -> float:
    """Sum of every cell, used to check that all ranks hold the same table."""
    return float(np.sum(data))
