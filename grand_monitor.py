"""
GRAND Monitoring Log Parser
===========================
The DAQ writes one ASCII line per station and monitoring period to
``MON/MORRRRRR.fSSSS``:

    electronics_id electronics_serial firmware second total_rate rate_ch0 rate_ch1 rate_ch2 rate_ch3 temperature voltage current status

Rates are trigger rates (Hz), temperature in deg C, voltage in V, current in A.
"""

import logging

import numpy as np


logger = logging.getLogger(__name__)

# Column layout of a parsed monitoring line.  electronics_id and
# electronics_serial are used for routing and are not stored in the tables.
MONITOR_DTYPE = np.dtype([
    ('electronics_id',     np.uint16),
    ('electronics_serial', np.uint16),
    ('firmware',           np.uint16),
    ('second',             np.uint32),
    ('total_rate',         np.uint16),
    ('rate_ch_0',          np.uint16),
    ('rate_ch_1',          np.uint16),
    ('rate_ch_2',          np.uint16),
    ('rate_ch_3',          np.uint16),
    ('temperature',        np.float32),
    ('voltage',            np.float32),
    ('current',            np.float32),
    ('status',             np.uint16),
])

N_COLUMNS = len(MONITOR_DTYPE.names)


def parse_monitor_line(line):
    parts = line.split()
    if len(parts) < N_COLUMNS:
        raise ValueError(f'expected {N_COLUMNS} columns, got {len(parts)}')
    vals = []
    for name, tok in zip(MONITOR_DTYPE.names, parts):
        if MONITOR_DTYPE[name].kind == 'f':
            vals.append(float(tok))
            continue
        v = int(tok)
        info = np.iinfo(MONITOR_DTYPE[name])
        if not info.min <= v <= info.max:
            raise ValueError(f'{name} {v} does not fit in {MONITOR_DTYPE[name]}')
        vals.append(v)
    return tuple(vals)


def parse_monitor(filepath):
    """Parse a monitoring log into a structured array (MONITOR_DTYPE).

    Rows keep the order of the file.  Lines that cannot be parsed are
    skipped and counted in the log.
    """
    rows = []
    bad = 0
    with open(filepath, 'r') as f:
        for lineno, line in enumerate(f, 1):
            if not line.strip():
                continue
            try:
                rows.append(parse_monitor_line(line))
            except ValueError as exc:
                bad += 1
                logger.debug('%s:%d: %s', filepath, lineno, exc)
    if bad:
        logger.warning('%s: skipped %d malformed monitoring lines', filepath, bad)
    return np.array(rows, dtype=MONITOR_DTYPE)


def split_by_station(rows, directory):
    """Group monitoring rows by configured station id.

    Returns ``{station_id: structured array}`` in file order; rows whose
    electronics id is not configured are dropped.
    """
    out = {}
    for s in directory:
        if directory.lookup(s.elec_id) is not s:
            continue
        out[s.id] = rows[rows['electronics_id'] == s.elec_id]
    n_unknown = len(rows) - sum(len(v) for v in out.values())
    if n_unknown:
        logger.info('%d monitoring rows from unconfigured electronics', n_unknown)
    return out
