"""
GRAND Binary Data File Parser
=============================
Binary format description and decoder for the raw data files written by the
GRAND prototype DAQ (``AD/adRRRRRR.fSSSS``).

FILE STRUCTURE
--------------
A sequence of length-prefixed blocks:

    Offset  Size   Type        Description
    ------  ----   ----        -----------
    0       4      uint32 LE   Payload length n (bytes)
    4       n      bytes       Payload

The first block is the file header, every following block is one event.
Throughout this module a *frame* is the 4-byte size marker followed by the
payload, which is how the DAQ lays the block out in memory.

FILE HEADER (4-byte words, word 0 is the size marker)
-----------------------------------------------------
    Word  Description
    ----  -----------
    0     Payload length
    1     Run number
    2     Run mode
    3     Serial
    4     First event number
    5     First event GPS second
    6     Last event number
    7     Last event GPS second
    8+    Additional words (optional)

EVENT HEADER (byte offsets in the frame)
----------------------------------------
    off  0: uint32  Payload length
    off  4: uint32  Run number
    off  8: uint32  Event number
    off 12: uint32  T3 event number
    off 16: uint32  First local station
    off 20: uint32  GPS second
    off 24: uint32  GPS nanosecond
    off 28: uint16  Event type
    off 30: uint16  Event version
    off 32: uint32  Additional word 1
    off 36: uint32  Additional word 2
    off 40: uint32  Number of local stations (LS) in the event
    off 44: ...     First LS sub-record (word 22)

The LS sub-records follow back to back.  There is no index: the only way to
find the next sub-record is the length word (2-byte units) at the start of
the current one.  The sequence ends at ``ev_end``, the payload length divided
by two, counted in words from the start of the payload.

LS SUB-RECORD
-------------
    off  0: uint16  Length of the sub-record (2-byte words)
    off  2: uint16  Event number
    off  4: uint16  LS id (low byte is the electronics id)
    off  6: uint16  Header length
    off  8: uint32  GPS seconds
    off 12: uint32  GPS nanoseconds
    off 16: uint16  Trigger flag
    off 18: uint16  Trigger position
    off 20: uint16  Sampling frequency
    off 22: uint16  Channel mask
    off 24: uint16  ADC resolution
    off 26: uint16  Trace length
    off 28: uint16  Version
    off 30: ...     Electronics blob

The electronics blob has a fixed layout (see ``BLOB_FIELDS`` and
``SETTINGS_FIELDS``).  The ADC traces of the four physical channels follow at
blob offset 344, contiguous, each ``trace_lengths[i]`` signed 16-bit samples.
"""

import io
import logging
import struct
from collections import Counter

import numpy as np


logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

INTSIZE = 4
SHORTSIZE = 2

# File header words
FILE_HDR_LENGTH          = 0
FILE_HDR_RUNNR           = 1
FILE_HDR_RUN_MODE        = 2
FILE_HDR_SERIAL          = 3
FILE_HDR_FIRST_EVENT     = 4
FILE_HDR_FIRST_EVENT_SEC = 5
FILE_HDR_LAST_EVENT      = 6
FILE_HDR_LAST_EVENT_SEC  = 7
FILE_HDR_ADDITIONAL      = 8

# Event header, in 2-byte words from the start of the frame
EVENT_HDR_LENGTH    = 0
EVENT_HDR_RUNNR     = 2
EVENT_HDR_EVENTNR   = 4
EVENT_HDR_T3EVENTNR = 6
EVENT_HDR_FIRST_LS  = 8
EVENT_HDR_EVENT_SEC = 10
EVENT_HDR_EVENT_NSEC = 12
EVENT_HDR_EVENT_TYPE = 14
EVENT_HDR_EVENT_VERS = 15
EVENT_HDR_AD1       = 16
EVENT_HDR_AD2       = 18
EVENT_HDR_LSCNT     = 20
EVENT_LS            = 22

# Words taken by the size marker in front of the payload
SIZE_MARKER_WORDS = INTSIZE // SHORTSIZE

# LS sub-record header size and offset of the electronics blob (bytes)
LS_HEADER_SIZE = 30

# Electronics blob offsets (bytes)
EVENT_TRIGMASK = 0
EVENT_GPS      = 2
EVENT_STATUS   = 9
EVENT_CTD      = 10
EVENT_LENCH1   = 14
EVENT_THRES1CH1 = 22
EVENT_QUANT1   = 38
EVENT_QUANT2   = 42
EVENT_CTP      = 46
EVENT_SYNC     = 50
PPS_GPS        = 52
PPS_CTRL       = 92
PPS_WINDOWS    = 104
PPS_CH1        = 120
PPS_TRIG1      = 168
PPS_FILT11     = 216
EVENT_ADC      = 344

N_CHANNELS = 4
AXES = ('X', 'Y', 'Z')
TRACE_NAMES = tuple('ADC_' + a for a in AXES)

TRAILING_POLICIES = ('ignore', 'warn', 'error')


# ---------------------------------------------------------------------------
# Errors
# ---------------------------------------------------------------------------

class DecodeError(ValueError):
    """Structural problem in the byte layout."""


class TruncatedBlock(DecodeError):
    """A block or sub-record ends before its declared length."""

    def __init__(self, expected, got, what='block'):
        super().__init__(f'truncated {what}: expected {expected} bytes, got {got}')
        self.expected = expected
        self.got = got


class HeaderTooShort(DecodeError):
    """The file header holds fewer than FILE_HDR_ADDITIONAL words."""


class ShortBlob(DecodeError):
    """A blob field lies past the end of the blob."""


class TraceOverrun(DecodeError):
    """A trace extends past the end of its sub-record."""


# ---------------------------------------------------------------------------
# Field tables
# ---------------------------------------------------------------------------
# Each entry is (name, offset, struct format).  Formats with a repeat count
# return a tuple, the others a scalar.

FILE_HEADER_FIELDS = (
    ('run_nr',          4 * FILE_HDR_RUNNR,           '<I'),
    ('run_mode',        4 * FILE_HDR_RUN_MODE,        '<I'),
    ('serial',          4 * FILE_HDR_SERIAL,          '<I'),
    ('first_event',     4 * FILE_HDR_FIRST_EVENT,     '<I'),
    ('first_event_sec', 4 * FILE_HDR_FIRST_EVENT_SEC, '<I'),
    ('last_event',      4 * FILE_HDR_LAST_EVENT,      '<I'),
    ('last_event_sec',  4 * FILE_HDR_LAST_EVENT_SEC,  '<I'),
)

EVENT_HEADER_FIELDS = (
    ('length',     SHORTSIZE * EVENT_HDR_LENGTH,     '<I'),
    ('run_nr',     SHORTSIZE * EVENT_HDR_RUNNR,      '<I'),
    ('event_nr',   SHORTSIZE * EVENT_HDR_EVENTNR,    '<I'),
    ('t3_nr',      SHORTSIZE * EVENT_HDR_T3EVENTNR,  '<I'),
    ('first_ls',   SHORTSIZE * EVENT_HDR_FIRST_LS,   '<I'),
    ('second',     SHORTSIZE * EVENT_HDR_EVENT_SEC,  '<I'),
    ('nanosec',    SHORTSIZE * EVENT_HDR_EVENT_NSEC, '<I'),
    ('event_type', SHORTSIZE * EVENT_HDR_EVENT_TYPE, '<H'),
    ('version',    SHORTSIZE * EVENT_HDR_EVENT_VERS, '<H'),
    ('ad1',        SHORTSIZE * EVENT_HDR_AD1,        '<I'),
    ('ad2',        SHORTSIZE * EVENT_HDR_AD2,        '<I'),
    ('n_detector', SHORTSIZE * EVENT_HDR_LSCNT,      '<I'),
)

LS_HEADER_FIELDS = (
    ('length',         0,  '<H'),
    ('event_nr',       2,  '<H'),
    ('ls_id',          4,  '<H'),
    ('header_length',  6,  '<H'),
    ('gps_sec',        8,  '<I'),
    ('nanosec',        12, '<I'),
    ('trigger_flag',   16, '<H'),
    ('trigger_pos',    18, '<H'),
    ('sampling_freq',  20, '<H'),
    ('channel_mask',   22, '<H'),
    ('adc_resolution', 24, '<H'),
    ('trace_length',   26, '<H'),
    ('version',        28, '<H'),
)

# Per-event status part of the electronics blob
BLOB_FIELDS = (
    ('trigger_mask',    EVENT_TRIGMASK, '<H'),
    ('year',            EVENT_GPS,      '<h'),
    ('month',           EVENT_GPS + 2,  '<B'),
    ('day',             EVENT_GPS + 3,  '<B'),
    ('hour',            EVENT_GPS + 4,  '<B'),
    ('minute',          EVENT_GPS + 5,  '<B'),
    ('second',          EVENT_GPS + 6,  '<B'),
    ('status',          EVENT_STATUS,   '<B'),
    ('ctd',             EVENT_CTD,      '<I'),
    ('trace_lengths',   EVENT_LENCH1,   '<4H'),
    ('gps_quant',       EVENT_QUANT1,   '<2f'),
    ('ctp',             EVENT_CTP,      '<I'),
    ('sync',            EVENT_SYNC,     '<H'),
    ('temperature',     PPS_GPS + 36,   '<f'),
)

# Station configuration part of the electronics blob
SETTINGS_FIELDS = (
    ('trigger_mask',        EVENT_TRIGMASK,  '<H'),
    ('trace_lengths',       EVENT_LENCH1,    '<4H'),
    ('thresholds',          EVENT_THRES1CH1, '<8H'),
    ('serial_version',      PPS_GPS,         '<I'),
    ('pps_year',            PPS_GPS + 4,     '<h'),
    ('pps_month',           PPS_GPS + 6,     '<B'),
    ('pps_day',             PPS_GPS + 7,     '<B'),
    ('pps_hour',            PPS_GPS + 8,     '<B'),
    ('pps_minute',          PPS_GPS + 9,     '<B'),
    ('pps_second',          PPS_GPS + 10,    '<B'),
    ('pps_status',          PPS_GPS + 11,    '<B'),
    ('longitude',           PPS_GPS + 12,    '<d'),
    ('latitude',            PPS_GPS + 20,    '<d'),
    ('altitude',            PPS_GPS + 28,    '<d'),
    ('temperature',         PPS_GPS + 36,    '<f'),
    ('control',             PPS_CTRL,        '<H'),
    ('trigger_enable',      PPS_CTRL + 2,    '<H'),
    ('channel_mask',        PPS_CTRL + 4,    '<B'),
    ('trigger_divider',     PPS_CTRL + 5,    '<B'),
    ('coincidence_readout', PPS_CTRL + 6,    '<H'),
    ('ctrl',                PPS_CTRL + 8,    '<I'),
    ('pre_post_length',     PPS_WINDOWS,     '<8H'),
)

# One 12-byte record per channel at PPS_CH1
CHANNEL_PROPERTY_FIELDS = (
    ('gain',        0,  '<h'),
    ('offset',      2,  '<b'),
    ('integration', 3,  '<B'),
    ('base_max',    4,  '<H'),
    ('base_min',    6,  '<H'),
    ('pm_volt',     8,  '<b'),
    ('filter',      9,  '<b'),
)
CHANNEL_PROPERTY_SIZE = 12

# One 12-byte record per channel at PPS_TRIG1
CHANNEL_TRIGGER_FIELDS = (
    ('signal_threshold', 0,  '<H'),
    ('noise_threshold',  2,  '<H'),
    ('time_previous',    4,  '<B'),
    ('time_period',      5,  '<B'),
    ('time_max',         6,  '<B'),
    ('n_max',            7,  '<B'),
    ('c_min',            8,  '<B'),
    ('charge_max',       9,  '<B'),
    ('charge_min',       10, '<B'),
    ('options',          11, '<B'),
)
CHANNEL_TRIGGER_SIZE = 12

FILTER_ROWS = 8
FILTER_COLS = 16


def _read_fields(buf, fields, base=0, error=DecodeError, what='record'):
    """Read a field table from ``buf`` starting at ``base``.

    Raises ``error`` for the first field that does not fit in ``buf``.
    """
    out = {}
    for name, off, fmt in fields:
        size = struct.calcsize(fmt)
        if base + off + size > len(buf):
            raise error(f'{what} field {name!r} at offset {off} needs '
                        f'{off + size} bytes, {what} has {len(buf) - base}')
        vals = struct.unpack_from(fmt, buf, base + off)
        out[name] = vals[0] if len(vals) == 1 else vals
    return out


# ---------------------------------------------------------------------------
# Length-prefixed reader
# ---------------------------------------------------------------------------

class BlockReader:
    """Read length-prefixed blocks from a binary stream.

    The reader keeps one ``bytearray`` and reuses it for every block of the
    same size; it is reallocated only when the declared size changes.  The
    ``memoryview`` returned by :meth:`read_block` aliases that buffer and is
    valid only until the next call.  Copy anything that has to outlive it.

    Parameters
    ----------
    stream : binary file object
        Anything with ``read`` and ``readinto``.
    """

    def __init__(self, stream):
        self.stream = stream
        self._buf = bytearray()
        self.blocks = 0

    def _fill(self, view):
        got = 0
        while got < len(view):
            n = self.stream.readinto(view[got:])
            if not n:
                break
            got += n
        return got

    def _remaining(self):
        """Bytes left in the stream, or None when it cannot seek."""
        try:
            if not self.stream.seekable():
                return None
            pos = self.stream.tell()
            end = self.stream.seek(0, io.SEEK_END)
            self.stream.seek(pos)
        except (AttributeError, OSError):
            return None
        return end - pos

    def read_block(self):
        """Read one block.

        Returns
        -------
        memoryview or None
            The frame (size marker followed by payload), or None when the
            stream ends before a complete size marker.

        Raises
        ------
        TruncatedBlock
            When the stream ends inside the payload.
        """
        marker = self.stream.read(INTSIZE)
        if len(marker) < INTSIZE:
            if marker:
                logger.warning('ignoring %d trailing bytes after block %d',
                               len(marker), self.blocks)
            return None
        n = struct.unpack('<I', marker)[0]
        # seekable streams: check the size before allocating for it
        left = self._remaining()
        if left is not None and left < n:
            self.stream.seek(0, io.SEEK_END)
            raise TruncatedBlock(n, left)
        if len(self._buf) != n + INTSIZE:
            self._buf = bytearray(n + INTSIZE)
        view = memoryview(self._buf)
        view[:INTSIZE] = marker
        got = self._fill(view[INTSIZE:])
        if got != n:
            raise TruncatedBlock(n, got)
        self.blocks += 1
        return view

    def read_file_header(self):
        """Read and decode the file header block (see decode_file_header)."""
        frame = self.read_block()
        if frame is None:
            raise HeaderTooShort('stream ends before the file header')
        return decode_file_header(frame)

    def iter_frames(self):
        """Yield event frames until the end of the stream."""
        while True:
            frame = self.read_block()
            if frame is None:
                return
            yield frame


def decode_file_header(frame):
    """Decode a file header frame.

    Returns a dict with the header words and ``'additional'``, a tuple of the
    optional trailing words.  Raises ``HeaderTooShort`` when the payload holds
    fewer than FILE_HDR_ADDITIONAL words.
    """
    n = struct.unpack_from('<I', frame, 0)[0]
    if n // INTSIZE < FILE_HDR_ADDITIONAL:
        raise HeaderTooShort(f'file header is too short, only {n // INTSIZE} '
                             f'words (need {FILE_HDR_ADDITIONAL})')
    hdr = _read_fields(frame, FILE_HEADER_FIELDS, what='file header')
    hdr['length'] = n
    n_words = (n + INTSIZE) // INTSIZE
    hdr['additional'] = struct.unpack_from(
        f'<{n_words - FILE_HDR_ADDITIONAL}I', frame, INTSIZE * FILE_HDR_ADDITIONAL)
    return hdr


# ---------------------------------------------------------------------------
# Electronics blob and traces
# ---------------------------------------------------------------------------

def decode_blob(blob):
    """Decode the per-event status fields of an electronics blob.

    Fields
    ------
    off  0: uint16      Trigger mask
    off  2: int16       Year
    off  4: uint8 x 5   Month, day, hour, minute, second
    off  9: uint8       Status
    off 10: uint32      CTD (clock ticks since the last PPS)
    off 14: uint16 x 4  Trace lengths of channels 1-4 (samples)
    off 38: float32 x 2 GPS quantisation errors
    off 46: uint32      CTP (clock ticks per PPS)
    off 50: uint16      Synchronisation word
    off 88: float32     Temperature (deg C)

    Raises ``ShortBlob`` if the blob ends before any of these.
    """
    return _read_fields(blob, BLOB_FIELDS, error=ShortBlob, what='blob')


def firmware_version(serial_version):
    return (100 * ((serial_version >> 20) & 0xf)
            + 10 * ((serial_version >> 16) & 0xf)
            + ((serial_version >> 12) & 0xf))


def firmware_subversion(serial_version):
    return (serial_version >> 9) & 0x7


def serial_number(serial_version):
    return (100 * ((serial_version >> 8) & 0x1)
            + 10 * ((serial_version >> 4) & 0xf)
            + (serial_version & 0xf))


def decode_settings(blob):
    """Decode the station configuration held in an electronics blob.

    Besides the scalar settings this returns ``'channel_properties'`` and
    ``'channel_trigger'`` (lists of four dicts), ``'filter_setting'`` (an 8x16
    uint8 array) and the firmware version, sub-version and serial number
    unpacked from the serial/version word.  Thresholds and pre/post lengths
    are returned as (4, 2) arrays.
    """
    out = _read_fields(blob, SETTINGS_FIELDS, error=ShortBlob, what='blob')
    out['thresholds'] = np.array(out['thresholds'], dtype=np.uint16).reshape(N_CHANNELS, 2)
    out['pre_post_length'] = np.array(out['pre_post_length'], dtype=np.uint16).reshape(N_CHANNELS, 2)
    out['channel_properties'] = [
        _read_fields(blob, CHANNEL_PROPERTY_FIELDS, PPS_CH1 + i * CHANNEL_PROPERTY_SIZE,
                     error=ShortBlob, what='blob')
        for i in range(N_CHANNELS)
    ]
    out['channel_trigger'] = [
        _read_fields(blob, CHANNEL_TRIGGER_FIELDS, PPS_TRIG1 + i * CHANNEL_TRIGGER_SIZE,
                     error=ShortBlob, what='blob')
        for i in range(N_CHANNELS)
    ]
    end = PPS_FILT11 + FILTER_ROWS * FILTER_COLS
    if end > len(blob):
        raise ShortBlob(f'blob filter constants need {end} bytes, blob has {len(blob)}')
    out['filter_setting'] = np.frombuffer(
        blob, dtype=np.uint8, count=FILTER_ROWS * FILTER_COLS,
        offset=PPS_FILT11).reshape(FILTER_ROWS, FILTER_COLS).copy()
    sv = out['serial_version']
    out['firmware_version'] = firmware_version(sv)
    out['firmware_subversion'] = firmware_subversion(sv)
    out['serial_number'] = serial_number(sv)
    return out


def extract_traces(blob, channel_lengths, axis_map, limit=None):
    """Slice the ADC traces out of an electronics blob.

    Parameters
    ----------
    blob : bytes-like
        Electronics blob, starting at its trigger mask.
    channel_lengths : sequence of 4 int
        Samples per physical channel.
    axis_map : sequence of 4 str or None
        Axis ('X', 'Y', 'Z') per physical channel; None leaves the channel
        out of the result, but its samples are still skipped.
    limit : int, optional
        Number of blob bytes that belong to the sub-record.  Defaults to the
        length of the blob.

    Returns
    -------
    dict
        ``{'ADC_<axis>': np.ndarray(int16)}`` in channel order.  A length of 0
        gives an empty array.

    Raises
    ------
    TraceOverrun
        When a trace reaches past ``limit``.
    """
    if limit is None:
        limit = len(blob)
    limit = min(limit, len(blob))
    traces = {}
    off = EVENT_ADC
    for ch in range(N_CHANNELS):
        n = channel_lengths[ch]
        end = off + SHORTSIZE * n
        if end > limit:
            raise TraceOverrun(f'channel {ch} needs blob bytes {off}..{end}, '
                               f'sub-record ends at {limit}')
        axis = axis_map[ch]
        if axis is not None:
            traces['ADC_' + axis] = np.frombuffer(blob, dtype='<i2', count=n,
                                                  offset=off).astype(np.int16)
        off = end
    return traces


# ---------------------------------------------------------------------------
# Event frame walker
# ---------------------------------------------------------------------------

def decode_event_header(frame):
    """Decode the EventHeader at the start of an event frame."""
    if len(frame) < SHORTSIZE * EVENT_LS:
        raise TruncatedBlock(SHORTSIZE * EVENT_LS, len(frame), 'event header')
    return _read_fields(frame, EVENT_HEADER_FIELDS, what='event header')


def event_end(header):
    """Word index in the frame where the LS sub-records end."""
    return SIZE_MARKER_WORDS + header['length'] // SHORTSIZE


def traces_group_name(antenna, use_count):
    if use_count == 1:
        return f'Traces_{antenna}'
    return f'Traces_Antenna_{antenna}_{use_count}'


def new_report():
    """Counters and anomaly list filled in by iter_stations."""
    return {
        'stations': 0,
        'unknown': 0,
        'unknown_ids': Counter(),
        'skipped': 0,
        'consumed': 0,
        'expected': 0,
        'end_word': None,
        'stopped_at_count': False,
        'anomalies': [],
    }


def _anomaly(report, event_nr, kind, message):
    report['anomalies'].append({'event_nr': event_nr, 'kind': kind, 'message': message})
    logger.warning('event %s: %s', event_nr, message)


def iter_stations(frame, directory, report=None):
    """Walk the LS sub-records of one event frame.

    Parameters
    ----------
    frame : bytes-like
        Event frame as returned by BlockReader.read_block.
    directory : grand_field.StationDirectory
        Known stations; never modified.
    report : dict, optional
        Filled with counters and anomalies (see new_report).

    Yields
    ------
    dict with keys:
        'antenna'     : int   1-based antenna index from the directory
        'use_count'   : int   occurrence of this antenna in the event (1, 2, ...)
        'group'       : str   Traces_<idx> or Traces_Antenna_<idx>_<n>
        'station'     : grand_field.Station
        'ls'          : dict  LS sub-record header fields
        'electronics' : dict  decode_blob output
        'traces'      : dict  extract_traces output
        'blob'        : bytes copy of the electronics blob (scalars + settings)
    """
    if report is None:
        report = new_report()
    header = decode_event_header(frame)
    event_nr = header['event_nr']
    ev_end = event_end(header)
    n_words = len(frame) // SHORTSIZE
    if ev_end > n_words:
        _anomaly(report, event_nr, 'length',
                 f'declared end word {ev_end} is beyond the frame ({n_words} words)')
        ev_end = n_words
    report['expected'] = ev_end - EVENT_LS

    used = Counter()
    ils = EVENT_LS
    ic = 0
    while ils < ev_end:
        if ic >= header['n_detector']:
            report['stopped_at_count'] = True
            break
        base = SHORTSIZE * ils
        if base + LS_HEADER_SIZE > SHORTSIZE * ev_end:
            _anomaly(report, event_nr, 'truncated',
                     f'LS header at word {ils} runs past word {ev_end}')
            break
        length = struct.unpack_from('<H', frame, base)[0]
        if SHORTSIZE * length < LS_HEADER_SIZE or ils + length > ev_end:
            _anomaly(report, event_nr, 'truncated',
                     f'LS at word {ils} has bad length {length} (event ends at word {ev_end})')
            break
        ls_id = struct.unpack_from('<H', frame, base + 4)[0]
        station = directory.lookup(ls_id & 0xff)
        if station is None:
            report['unknown'] += 1
            report['unknown_ids'][ls_id & 0xff] += 1
            ils += length
            continue

        used[station.antenna] += 1
        ic += 1
        record_end = base + SHORTSIZE * length
        blob = frame[base + LS_HEADER_SIZE:record_end]
        try:
            ls = _read_fields(frame, LS_HEADER_FIELDS, base, what='LS header')
            electronics = decode_blob(blob)
            traces = extract_traces(blob, electronics['trace_lengths'], station.channels)
        except (ShortBlob, TraceOverrun) as exc:
            report['skipped'] += 1
            _anomaly(report, event_nr, type(exc).__name__, f'LS {ls_id & 0xff}: {exc}')
        else:
            report['stations'] += 1
            yield {
                'antenna': station.antenna,
                'use_count': used[station.antenna],
                'group': traces_group_name(station.antenna, used[station.antenna]),
                'station': station,
                'ls': ls,
                'electronics': electronics,
                'traces': traces,
                'blob': bytes(blob),
            }
        ils += length

    report['consumed'] = ils - EVENT_LS
    report['end_word'] = ils


def decode_event(frame, directory, trailing_policy='warn'):
    """Decode one event frame.

    Parameters
    ----------
    frame : bytes-like
        Event frame as returned by BlockReader.read_block.
    directory : grand_field.StationDirectory
    trailing_policy : {'ignore', 'warn', 'error'}
        What to do when the declared number of stations is reached before
        the end of the event: ignore the remaining words, report them as an
        anomaly, or raise TruncatedBlock.

    Returns
    -------
    dict with keys 'header', 'stations' (list of iter_stations records) and
    'report' (see new_report).
    """
    if trailing_policy not in TRAILING_POLICIES:
        raise ValueError(f'trailing_policy must be one of {TRAILING_POLICIES}')
    report = new_report()
    header = decode_event_header(frame)
    stations = list(iter_stations(frame, directory, report))
    if report['stopped_at_count']:
        left = report['expected'] - report['consumed']
        message = (f'{header["n_detector"]} stations decoded with {left} words '
                   f'left before the end of the event')
        if trailing_policy == 'error':
            raise TruncatedBlock(SHORTSIZE * report['expected'],
                                 SHORTSIZE * report['consumed'], 'event')
        if trailing_policy == 'warn':
            _anomaly(report, header['event_nr'], 'trailing', message)
    return {'header': header, 'stations': stations, 'report': report}


# ---------------------------------------------------------------------------
# File level
# ---------------------------------------------------------------------------

def iter_events(stream, directory, trailing_policy='warn', totals=None):
    """Decode every event of an open binary stream.

    Reads the file header first (``HeaderTooShort`` propagates) and then
    yields ``(file_header, event)`` pairs in stream order.  Events that fail
    with ``DecodeError`` are logged, counted in ``totals`` and skipped;
    a truncated outer block ends the stream.
    """
    if totals is None:
        totals = new_totals()
    reader = BlockReader(stream)
    file_header = reader.read_file_header()
    totals['file_header'] = file_header
    logger.info('run %d: file header of %d bytes', file_header['run_nr'], file_header['length'])
    while True:
        try:
            frame = reader.read_block()
        except TruncatedBlock as exc:
            totals['anomalies'].append({'event_nr': None, 'kind': 'TruncatedBlock',
                                        'message': str(exc)})
            logger.error('stream ends inside a block after %d events: %s',
                         totals['events'], exc)
            return
        if frame is None:
            return
        try:
            event = decode_event(frame, directory, trailing_policy)
        except DecodeError as exc:
            totals['bad_events'] += 1
            totals['anomalies'].append({'event_nr': None, 'kind': type(exc).__name__,
                                        'message': str(exc)})
            logger.error('dropping block %d: %s', reader.blocks, exc)
            continue
        _accumulate(totals, event)
        yield file_header, event


def new_totals():
    return {
        'file_header': None,
        'events': 0,
        'bad_events': 0,
        'stations': 0,
        'unknown': 0,
        'skipped': 0,
        'per_antenna': Counter(),
        'unknown_ids': Counter(),
        'anomalies': [],
    }


def _accumulate(totals, event):
    rep = event['report']
    totals['events'] += 1
    totals['stations'] += rep['stations']
    totals['unknown'] += rep['unknown']
    totals['skipped'] += rep['skipped']
    totals['unknown_ids'].update(rep['unknown_ids'])
    totals['anomalies'].extend(rep['anomalies'])
    for st in event['stations']:
        totals['per_antenna'][st['antenna']] += 1


def parse_bin(filepath, directory, trailing_policy='warn'):
    """Decode a whole GRAND binary file into memory.

    Returns
    -------
    dict with keys:
        'file_header' : dict
        'events'      : list of decode_event results
        'totals'      : dict of counters and anomalies
    """
    totals = new_totals()
    with open(filepath, 'rb') as f:
        events = [ev for _, ev in iter_events(f, directory, trailing_policy, totals)]
    return {'file_header': totals['file_header'], 'events': events, 'totals': totals}


def print_summary(totals):
    """Print the decode counters collected by iter_events."""
    hdr = totals.get('file_header') or {}
    print(f"Run {hdr.get('run_nr', '?')}: {totals['events']} events, "
          f"{totals['bad_events']} dropped")
    print(f"  stations decoded   {totals['stations']:>10}")
    print(f"  unrecognised       {totals['unknown']:>10}")
    print(f"  skipped (damaged)  {totals['skipped']:>10}")
    if totals['per_antenna']:
        print(f"\n{'Antenna':<10} {'Records':>10}")
        print('-' * 21)
        for ant in sorted(totals['per_antenna']):
            print(f"  {ant:<8} {totals['per_antenna'][ant]:>10}")
    if totals['unknown_ids']:
        ids = ', '.join(f'{k} ({v})' for k, v in sorted(totals['unknown_ids'].items()))
        print(f'\nUnrecognised electronics ids: {ids}')
    if totals['anomalies']:
        kinds = Counter(a['kind'] for a in totals['anomalies'])
        print('\nAnomalies: ' + ', '.join(f'{k} {v}' for k, v in sorted(kinds.items())))
