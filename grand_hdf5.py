"""
GRAND HDF5 Output
=================
Writes decoded runs into the GRAND HDF5 layout:

    /Run_<runnr>
        DetectorInfo            one row per configured antenna
        ElectronicsSettings     last electronics settings seen per antenna
        CenterField             field center (1 row)
        Monitor/
            MonDetector_<id>    appendable monitoring table per station
        Event_<eventnr>/raw/
            EventHeader         1 row
            AntennaInfo         one row per decoded LS record
            Traces_<idx>/                first record of antenna <idx>
            Traces_Antenna_<idx>_<n>/    n-th record of the same antenna
                ADC_X, ADC_Y, ADC_Z      int16 traces

All tables are compound datasets built from the numpy dtypes below.
"""

import logging

import h5py
import numpy as np

from grand_bin import AXES, N_CHANNELS, FILTER_COLS, FILTER_ROWS


logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Row types
# ---------------------------------------------------------------------------

RUN_HEADER_DTYPE = np.dtype([
    ('antenna_id',          np.uint16),
    ('latitude',            np.float64),
    ('longitude',           np.float64),
    ('altitude',            np.float32),
    ('x',                   np.float32),
    ('y',                   np.float32),
    ('antenna_model',       'S20'),
    ('electronics_id',      np.uint16),
    ('electronics_model',   'S20'),
    ('channel_connections', 'S1', (N_CHANNELS,)),
])

FIELD_CENTER_DTYPE = np.dtype([
    ('latitude',  np.float64),
    ('longitude', np.float64),
    ('altitude',  np.float32),
    ('x',         np.float32),
    ('y',         np.float32),
])

CHANNEL_PROPERTY_DTYPE = np.dtype([
    ('gain',        np.int16),
    ('offset',      np.int8),
    ('integration', np.uint8),
    ('base_max',    np.uint16),
    ('base_min',    np.uint16),
    ('pm_volt',     np.int8),
    ('filter',      np.int8),
])

CHANNEL_TRIGGER_DTYPE = np.dtype([
    ('signal_threshold', np.uint16),
    ('noise_threshold',  np.uint16),
    ('time_previous',    np.uint8),
    ('time_period',      np.uint8),
    ('time_max',         np.uint8),
    ('n_max',            np.uint8),
    ('c_min',            np.uint8),
    ('charge_max',       np.uint8),
    ('charge_min',       np.uint8),
    ('options',          np.uint8),
])

ELEC_SETTING_DTYPE = np.dtype([
    ('electronics_id',      np.uint16),
    ('trigger_mask',        np.uint16),
    ('trace_lengths',       np.uint16, (N_CHANNELS,)),
    ('thresholds',          np.uint16, (N_CHANNELS, 2)),
    ('serial_version',      np.uint32),
    ('firmware_version',    np.uint16),
    ('firmware_subversion', np.uint8),
    ('serial_number',       np.uint16),
    ('longitude',           np.float64),
    ('latitude',            np.float64),
    ('altitude',            np.float64),
    ('control',             np.uint16),
    ('trigger_enable',      np.uint16),
    ('channel_mask',        np.uint8),
    ('trigger_divider',     np.uint8),
    ('coincidence_readout', np.uint16),
    ('ctrl',                np.uint32),
    ('pre_post_length',     np.uint16, (N_CHANNELS, 2)),
    ('channel_properties',  CHANNEL_PROPERTY_DTYPE, (N_CHANNELS,)),
    ('channel_trigger',     CHANNEL_TRIGGER_DTYPE, (N_CHANNELS,)),
    ('filter_setting',      np.uint8, (FILTER_ROWS, FILTER_COLS)),
])

EVENT_HEADER_DTYPE = np.dtype([
    ('run_nr',     np.uint32),
    ('event_nr',   np.uint32),
    ('t3_nr',      np.uint32),
    ('second',     np.uint32),
    ('nanosec',    np.uint32),
    ('n_detector', np.uint32),
])

ANTENNA_HEADER_DTYPE = np.dtype([
    ('antenna_id',      np.int16),
    ('gps_sec',         np.uint32),
    ('nanosec',         np.uint32),
    ('trigger_flag',    np.uint32),
    ('year',            np.int16),
    ('month',           np.uint8),
    ('day',             np.uint8),
    ('hour',            np.uint8),
    ('minute',          np.uint8),
    ('second',          np.uint8),
    ('elec_status',     np.uint8),
    ('ctd',             np.uint32),
    ('gps_quant',       np.float32, (2,)),
    ('ctp',             np.uint32),
    ('synchronization', np.uint16),
    ('temperature',     np.float32),
])

MONITOR_INFO_DTYPE = np.dtype([
    ('second',      np.uint32),
    ('total_rate',  np.uint16),
    ('rate_ch_0',   np.uint16),
    ('rate_ch_1',   np.uint16),
    ('rate_ch_2',   np.uint16),
    ('rate_ch_3',   np.uint16),
    ('temperature', np.float32),
    ('voltage',     np.float32),
    ('current',     np.float32),
    ('status',      np.uint16),
])


# ---------------------------------------------------------------------------
# Row builders
# ---------------------------------------------------------------------------

def event_header_row(header):
    row = np.zeros(1, dtype=EVENT_HEADER_DTYPE)
    for name in EVENT_HEADER_DTYPE.names:
        row[name] = header[name]
    return row


def antenna_rows(stations):
    """AntennaInfo rows for the records yielded by grand_bin.iter_stations."""
    rows = np.zeros(len(stations), dtype=ANTENNA_HEADER_DTYPE)
    for i, st in enumerate(stations):
        ls, el = st['ls'], st['electronics']
        r = rows[i]
        r['antenna_id'] = st['antenna']
        r['gps_sec'] = ls['gps_sec']
        r['nanosec'] = ls['nanosec']
        r['trigger_flag'] = ls['trigger_flag']
        r['year'] = el['year']
        r['month'] = el['month']
        r['day'] = el['day']
        r['hour'] = el['hour']
        r['minute'] = el['minute']
        r['second'] = el['second']
        r['elec_status'] = el['status']
        r['ctd'] = el['ctd']
        r['gps_quant'] = el['gps_quant']
        r['ctp'] = el['ctp']
        r['synchronization'] = el['sync']
        r['temperature'] = el['temperature']
    return rows


def run_header_rows(directory):
    rows = np.zeros(len(directory), dtype=RUN_HEADER_DTYPE)
    for i, s in enumerate(directory):
        rows[i]['antenna_id'] = s.antenna
        rows[i]['latitude'] = s.latitude
        rows[i]['longitude'] = s.longitude
        rows[i]['altitude'] = s.altitude
        rows[i]['x'] = s.x
        rows[i]['y'] = s.y
        rows[i]['antenna_model'] = s.ant_model.encode('ascii', errors='replace')
        rows[i]['electronics_id'] = s.elec_id
        rows[i]['electronics_model'] = s.elec_model.encode('ascii', errors='replace')
        rows[i]['channel_connections'] = [(c or '-').encode('ascii') for c in s.channels]
    return rows


def settings_rows(directory, settings):
    """ElectronicsSettings rows; antennas never seen keep zeros."""
    rows = np.zeros(len(directory), dtype=ELEC_SETTING_DTYPE)
    scalar = [n for n in ELEC_SETTING_DTYPE.names
              if n not in ('electronics_id', 'channel_properties', 'channel_trigger')]
    for i, s in enumerate(directory):
        r = rows[i]
        r['electronics_id'] = s.elec_id
        es = settings.get(s.antenna)
        if es is None:
            continue
        for name in scalar:
            r[name] = es[name]
        for ch in range(N_CHANNELS):
            for name in CHANNEL_PROPERTY_DTYPE.names:
                r['channel_properties'][ch][name] = es['channel_properties'][ch][name]
            for name in CHANNEL_TRIGGER_DTYPE.names:
                r['channel_trigger'][ch][name] = es['channel_trigger'][ch][name]
    return rows


def center_row(center):
    row = np.zeros(1, dtype=FIELD_CENTER_DTYPE)
    for name in FIELD_CENTER_DTYPE.names:
        row[name] = getattr(center, name)
    return row


def monitor_rows(rows):
    """Drop the routing columns of grand_monitor rows."""
    out = np.zeros(len(rows), dtype=MONITOR_INFO_DTYPE)
    for name in MONITOR_INFO_DTYPE.names:
        out[name] = rows[name]
    return out


# ---------------------------------------------------------------------------
# File level
# ---------------------------------------------------------------------------

def create_file(filepath, run_nr):
    """Create (truncate) an HDF5 file and its /Run_<runnr> group.

    Returns (h5py.File, run group).  Raises OSError when the file cannot be
    created.
    """
    f = h5py.File(filepath, 'w')
    try:
        run = f.create_group(f'Run_{run_nr}')
    except Exception:
        f.close()
        raise
    logger.info('created %s with group %s', filepath, run.name)
    return f, run


def write_event(run, event):
    """Write one decoded event (grand_bin.decode_event output).

    Returns False, without writing anything, when the event number already
    exists in the run.
    """
    hdr = event['header']
    name = f'Event_{hdr["event_nr"]}'
    if name in run:
        logger.warning('%s already exists in %s, skipping duplicate event', name, run.name)
        return False
    raw = run.create_group(name).create_group('raw')
    raw.create_dataset('EventHeader', data=event_header_row(hdr))
    raw.create_dataset('AntennaInfo', data=antenna_rows(event['stations']))
    for st in event['stations']:
        grp = raw.create_group(st['group'])
        for trname, trace in st['traces'].items():
            grp.create_dataset(trname, data=np.asarray(trace, dtype=np.int16))
    return True


def create_monitor_tables(run, directory, compression='gzip', compression_opts=6, chunk_rows=64):
    """Create the empty, resizable Monitor/MonDetector_<id> tables."""
    mon = run.require_group('Monitor')
    # lzf takes no options
    if compression != 'gzip':
        compression_opts = None
    for s in directory:
        name = f'MonDetector_{s.id}'
        if name in mon:
            continue
        mon.create_dataset(name, shape=(0,), maxshape=(None,), dtype=MONITOR_INFO_DTYPE,
                           chunks=(chunk_rows,), compression=compression,
                           compression_opts=compression_opts)
    return mon


def append_monitor(run, station_id, rows):
    """Append grand_monitor rows to the table of ``station_id``, in order."""
    ds = run[f'Monitor/MonDetector_{station_id}']
    n = len(rows)
    if n == 0:
        return 0
    start = ds.shape[0]
    ds.resize((start + n,))
    ds[start:start + n] = monitor_rows(rows)
    return n


def write_run_header(run, directory, settings):
    """Write DetectorInfo, ElectronicsSettings and CenterField.

    ``settings`` maps antenna index to grand_bin.decode_settings output.
    """
    run.create_dataset('DetectorInfo', data=run_header_rows(directory))
    run.create_dataset('ElectronicsSettings', data=settings_rows(directory, settings))
    run.create_dataset('CenterField', data=center_row(directory.center))


def read_traces(run, event_nr):
    """Read back the traces of one event as ``{group: {'ADC_X': array, ...}}``."""
    raw = run[f'Event_{event_nr}/raw']
    out = {}
    for name, grp in raw.items():
        if isinstance(grp, h5py.Group):
            out[name] = {k: grp[k][()] for k in grp if k in ['ADC_' + a for a in AXES]}
    return out
