import math

import pytest

import grand_field as gf


FIELD = """\
# id elec lon lat alt antenna electronics ch0 ch1 ch2 ch3
101 1 86.70 42.90 1200.0 butterfly GP35 x y Z -

102 2 86.72 42.92 1210.0 butterfly GP35 Y X Z
"""


def test_parse_field_line():
    s = gf.parse_field_line('12 3 86.7 42.9 1200 HorizonAntenna GP300-board x Y z -', 1)
    assert s.antenna == 1
    assert s.id == 12
    assert s.elec_id == 3
    assert s.longitude == 86.7
    assert s.latitude == 42.9
    assert s.altitude == 1200.0
    assert s.ant_model == 'HorizonAntenna'
    assert s.channels == ('X', 'Y', 'Z', None)


def test_missing_channels_are_unconnected():
    s = gf.parse_field_line('12 3 86.7 42.9 1200 a b', 4)
    assert s.channels == (None, None, None, None)


def test_model_names_are_clipped():
    s = gf.parse_field_line('1 1 0 0 0 ' + 'a' * 30 + ' b', 1)
    assert len(s.ant_model) == gf.MODEL_LEN


def test_short_line_rejected():
    with pytest.raises(ValueError):
        gf.parse_field_line('12 3 86.7 42.9', 1)


def test_load_field(tmp_path):
    path = tmp_path / 'field.txt'
    path.write_text(FIELD)
    directory = gf.load_field(str(path))
    assert len(directory) == 2
    assert [s.antenna for s in directory] == [1, 2]
    assert directory.lookup(2).id == 102
    assert directory.lookup(2).channels == ('Y', 'X', 'Z', None)
    assert directory.lookup(9) is None
    assert directory.center.latitude == pytest.approx(42.91)
    assert directory.center.longitude == pytest.approx(86.71)
    assert directory.center.altitude == pytest.approx(1205.0)
    # symmetric around the center
    assert directory[0].x == pytest.approx(-directory[1].x)
    assert directory[0].y == pytest.approx(-directory[1].y)


def test_load_field_names_bad_line(tmp_path):
    path = tmp_path / 'field.txt'
    path.write_text(FIELD + '103 three 86 42 1200 a b\n')
    with pytest.raises(ValueError, match=r'field\.txt:5'):
        gf.load_field(str(path))


def test_rad_earth():
    assert gf.rad_earth(0.0) == pytest.approx(gf.REQ)
    assert gf.rad_earth(90.0) == pytest.approx(gf.RPOLE)
    assert gf.RPOLE < gf.rad_earth(45.0) < gf.REQ


def test_project_north_and_west():
    center = gf.Center(latitude=42.9, longitude=86.7, altitude=0.0, x=0.0, y=0.0)
    north = gf.Station(1, 1, 1, 86.7, 42.91, 0.0, 'a', 'b', (None,) * 4, 0.0, 0.0)
    east = gf.Station(2, 2, 2, 86.71, 42.9, 0.0, 'a', 'b', (None,) * 4, 0.0, 0.0)
    pn, pe = gf.project([north, east], center)
    r = gf.rad_earth(42.9)
    assert pn.x == pytest.approx(0.01 * r / gf.RADTODEG)
    assert pn.y == pytest.approx(0.0)
    assert pe.x == pytest.approx(0.0)
    assert pe.y == pytest.approx(-math.cos(42.9 / gf.RADTODEG) * 0.01 * r / gf.RADTODEG)
    assert pe.y < 0


def test_empty_field_center():
    assert gf.field_center([]) == gf.Center(0.0, 0.0, 0.0, 0.0, 0.0)
    assert len(gf.build_directory([])) == 0


def test_duplicate_electronics_id_first_wins():
    a = gf.parse_field_line('101 5 0 0 0 a b X Y Z -', 1)
    b = gf.parse_field_line('102 5 0 0 0 a b Z Y X -', 2)
    directory = gf.build_directory([a, b])
    assert len(directory) == 2
    assert directory.lookup(5).id == 101
