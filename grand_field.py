"""
GRAND Field Configuration
=========================
Reads the station ("field") configuration and projects the station
positions onto a local plane around the field center.

FIELD FILE
----------
One ASCII line per station, whitespace separated:

    id  electronics_id  longitude  latitude  altitude  antenna_model  electronics_model  ch0 ch1 ch2 ch3

    id                 station id (used to name the monitoring tables)
    electronics_id     id of the electronics board; the low byte of the LS
                       id in the binary data refers to this number
    longitude,latitude degrees
    altitude           m
    antenna_model      free text, no spaces (max. 20 chars are stored)
    electronics_model  free text, no spaces (max. 20 chars are stored)
    ch0..ch3           axis connected to each ADC channel: X, Y or Z
                       (any case); any other letter, or a missing column,
                       leaves the channel unconnected

Lines starting with '#' are comments.  Antenna indices are 1-based and follow
the order of the lines in the file.
"""

import logging
import math
from collections import namedtuple


logger = logging.getLogger(__name__)

RADTODEG = 57.295779513082325
RPOLE = 6357000.   # radius of the Earth at the poles (m)
REQ = 6378000.     # radius of the Earth at the equator (m)

N_CHANNELS = 4
MODEL_LEN = 20

Station = namedtuple('Station', [
    'antenna', 'id', 'elec_id', 'longitude', 'latitude', 'altitude',
    'ant_model', 'elec_model', 'channels', 'x', 'y',
])
Station.__doc__ = """One configured station.

``channels`` holds the axis ('X', 'Y', 'Z') or None for each of the four
ADC channels.  ``x``/``y`` are the projected coordinates in m.
"""

Center = namedtuple('Center', ['latitude', 'longitude', 'altitude', 'x', 'y'])


def rad_earth(latitude):
    """Radius of the Earth (m) at ``latitude`` (degrees) for a flattened sphere."""
    phi = latitude / RADTODEG
    radius = (REQ * REQ * math.cos(phi)) ** 2 + (RPOLE * RPOLE * math.sin(phi)) ** 2
    radius /= (REQ * math.cos(phi)) ** 2 + (RPOLE * math.sin(phi)) ** 2
    return math.sqrt(radius)


def field_center(stations):
    """Mean position of the stations; the center is the origin of x/y."""
    n = len(stations)
    if n == 0:
        return Center(0.0, 0.0, 0.0, 0.0, 0.0)
    return Center(
        latitude=sum(s.latitude for s in stations) / n,
        longitude=sum(s.longitude for s in stations) / n,
        altitude=sum(s.altitude for s in stations) / n,
        x=0.0,
        y=0.0,
    )


def project(stations, center):
    """Return the stations with x (north) and y (west) relative to ``center``."""
    r_earth = rad_earth(center.latitude)
    out = []
    for s in stations:
        x = (s.latitude - center.latitude) * r_earth / RADTODEG
        y = math.cos(center.latitude / RADTODEG) * (center.longitude - s.longitude) * r_earth / RADTODEG
        out.append(s._replace(x=x, y=y))
    return out


def _axis(token):
    a = token.upper()
    return a if a in ('X', 'Y', 'Z') else None


def parse_field_line(line, antenna):
    """Parse one configuration line into a Station (x/y not yet projected)."""
    parts = line.split()
    if len(parts) < 7:
        raise ValueError(f'expected at least 7 columns, got {len(parts)}')
    channels = tuple(_axis(parts[7 + i]) if 7 + i < len(parts) else None
                     for i in range(N_CHANNELS))
    return Station(
        antenna=antenna,
        id=int(parts[0]),
        elec_id=int(parts[1]),
        longitude=float(parts[2]),
        latitude=float(parts[3]),
        altitude=float(parts[4]),
        ant_model=parts[5][:MODEL_LEN],
        elec_model=parts[6][:MODEL_LEN],
        channels=channels,
        x=0.0,
        y=0.0,
    )


class StationDirectory:
    """Read-only lookup from electronics id to configured Station.

    Built once from the field configuration; decoding never changes it.
    When two lines share an electronics id the first one wins.
    """

    def __init__(self, stations, center=None):
        self._stations = tuple(stations)
        self.center = center if center is not None else field_center(self._stations)
        by_elec = {}
        for s in self._stations:
            if s.elec_id in by_elec:
                logger.warning('electronics id %d configured for stations %d and %d; '
                               'using station %d', s.elec_id, by_elec[s.elec_id].id,
                               s.id, by_elec[s.elec_id].id)
                continue
            by_elec[s.elec_id] = s
        self._by_elec = by_elec

    def lookup(self, elec_id):
        """Station for ``elec_id``, or None when it is not configured."""
        return self._by_elec.get(elec_id)

    def __len__(self):
        return len(self._stations)

    def __iter__(self):
        return iter(self._stations)

    def __getitem__(self, i):
        return self._stations[i]

    def __repr__(self):
        return f'StationDirectory({len(self._stations)} stations)'


def build_directory(stations):
    """Project ``stations`` around their mean position and wrap them."""
    stations = list(stations)
    center = field_center(stations)
    return StationDirectory(project(stations, center), center)


def load_field(filepath):
    """Load a field configuration file into a StationDirectory.

    Raises ValueError naming the offending line for malformed input.
    """
    stations = []
    with open(filepath, 'r') as f:
        for lineno, line in enumerate(f, 1):
            stripped = line.strip()
            if not stripped or stripped.startswith('#'):
                continue
            try:
                stations.append(parse_field_line(stripped, len(stations) + 1))
            except ValueError as exc:
                raise ValueError(f'{filepath}:{lineno}: {exc}') from exc
    logger.info('loaded %d stations from %s', len(stations), filepath)
    return build_directory(stations)
