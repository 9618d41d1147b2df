"""Builders for synthetic GRAND binary data used by the tests."""

import struct

import numpy as np

import grand_bin as gb
from grand_field import Station, build_directory


def make_file_header(run_nr=7, additional=(0,), run_mode=1, serial=42,
                     first_event=1, first_event_sec=1700000000,
                     last_event=2, last_event_sec=1700000010):
    words = (run_nr, run_mode, serial, first_event, first_event_sec,
             last_event, last_event_sec) + tuple(additional)
    n = 4 * len(words)
    return struct.pack(f'<I{len(words)}I', n, *words)


def make_blob(traces=((), (), (), ()), lengths=None, trigger_mask=0x0f,
              year=2024, month=5, day=17, hour=12, minute=30, second=45,
              status=3, ctd=123456, gps_quant=(1.5, -2.25), ctp=200000000,
              sync=0x5a, temperature=21.5, serial_version=0, pad=0):
    traces = [np.asarray(t, dtype='<i2') for t in traces]
    if lengths is None:
        lengths = [len(t) for t in traces]
    buf = bytearray(gb.EVENT_ADC)
    struct.pack_into('<H', buf, gb.EVENT_TRIGMASK, trigger_mask)
    struct.pack_into('<h6B', buf, gb.EVENT_GPS, year, month, day, hour, minute, second, status)
    struct.pack_into('<I', buf, gb.EVENT_CTD, ctd)
    struct.pack_into('<4H', buf, gb.EVENT_LENCH1, *lengths)
    struct.pack_into('<2f', buf, gb.EVENT_QUANT1, *gps_quant)
    struct.pack_into('<I', buf, gb.EVENT_CTP, ctp)
    struct.pack_into('<H', buf, gb.EVENT_SYNC, sync)
    struct.pack_into('<I', buf, gb.PPS_GPS, serial_version)
    struct.pack_into('<f', buf, gb.PPS_GPS + 36, temperature)
    return bytes(buf) + b''.join(t.tobytes() for t in traces) + b'\x00' * pad


def make_ls(ls_id, blob, event_nr=1, gps_sec=1700000001, nanosec=500,
            trigger_flag=1, length=None):
    total = gb.LS_HEADER_SIZE + len(blob)
    assert total % 2 == 0
    if length is None:
        length = total // 2
    hdr = struct.pack('<4H2I7H', length, event_nr, ls_id, 15, gps_sec, nanosec,
                      trigger_flag, 100, 500, 0x0f, 14, 1024, 2)
    return hdr + blob


def make_event(records, event_nr=1, run_nr=7, n_detector=None, trailer=b'',
               length=None, second=1700000005, nanosec=250):
    body = b''.join(records) + trailer
    if n_detector is None:
        n_detector = len(records)
    if length is None:
        length = 40 + len(body)
    hdr = struct.pack('<7I2H3I', length, run_nr, event_nr, event_nr, 0,
                      second, nanosec, 1, 3, 0, 0, n_detector)
    return hdr + body


def make_station(antenna, elec_id, channels='XYZ-',
                 longitude=86.7, latitude=42.9, altitude=1200.0):
    channels = tuple(c if c in ('X', 'Y', 'Z') else None for c in channels)
    return Station(antenna=antenna, id=100 + antenna, elec_id=elec_id,
                   longitude=longitude, latitude=latitude, altitude=altitude,
                   ant_model='butterfly', elec_model='GP35', channels=channels,
                   x=0.0, y=0.0)


def make_directory(*specs):
    """``specs`` are (elec_id, channels) pairs, antennas numbered from 1.

    ``channels`` is a 4-letter string such as 'XYZ-'; anything but X, Y or Z
    leaves the channel unconnected.
    """
    return build_directory(make_station(i + 1, elec, ch) for i, (elec, ch) in enumerate(specs))


def three_axis(n, base=0):
    """Distinct X, Y, Z samples of length ``n`` and an empty fourth channel."""
    return (np.arange(n) + base, -np.arange(n) - base, np.arange(n) * 3 + base, [])
