import h5py

import grand_tool
from synth import make_blob, make_event, make_file_header, make_ls, three_axis


FIELD = """\
101 1 86.70 42.90 1200.0 butterfly GP35 X Y Z -
102 2 86.72 42.92 1210.0 butterfly GP35 X Y Z -
"""

MONITOR = """\
1 1201 12 1700000000 150 10 20 30 40 35.5 12.25 0.5 0
2 1202 12 1700000000 90 1 2 3 4 30.0 12.0 0.25 1
1 1201 12 1700000010 160 11 21 31 41 36.0 12.5 0.75 0
"""


def make_run(base, header=None, monitor=True):
    (base / 'AD').mkdir(parents=True)
    events = [
        make_event([make_ls(1, make_blob(traces=three_axis(16))),
                    make_ls(2, make_blob(traces=three_axis(16, base=5)))], event_nr=1),
        make_event([make_ls(2, make_blob(traces=three_axis(16))),
                    make_ls(2, make_blob(traces=three_axis(16, base=9)))], event_nr=2),
    ]
    if header is None:
        header = make_file_header(run_nr=7)
    (base / 'AD' / 'ad000007.f0001').write_bytes(header + b''.join(events))
    (base / 'field.txt').write_text(FIELD)
    if monitor:
        (base / 'MON').mkdir()
        (base / 'MON' / 'MO000007.f0001').write_text(MONITOR)


def test_convert(tmp_path, capsys):
    make_run(tmp_path / 'data')
    out = tmp_path / 'Run7.hdf5'
    rc = grand_tool.main(['convert', str(tmp_path / 'data'), '7', '1', '--output', str(out)])
    assert rc == 0
    assert 'Written:' in capsys.readouterr().out

    with h5py.File(out, 'r') as f:
        run = f['Run_7']
        assert set(run['Event_1/raw']) >= {'Traces_1', 'Traces_2'}
        assert set(run['Event_2/raw']) >= {'Traces_2', 'Traces_Antenna_2_2'}
        assert run['Event_2/raw/Traces_Antenna_2_2/ADC_X'][0] == 9
        assert run['Monitor/MonDetector_101'].shape == (2,)
        assert run['Monitor/MonDetector_102'].shape == (1,)
        assert run['DetectorInfo'].shape == (2,)
        assert run['ElectronicsSettings'].shape == (2,)


def test_convert_without_monitor_file(tmp_path):
    make_run(tmp_path / 'data', monitor=False)
    out = tmp_path / 'Run7.hdf5'
    rc = grand_tool.main(['convert', str(tmp_path / 'data'), '7', '1', '--output', str(out)])
    assert rc == 0
    with h5py.File(out, 'r') as f:
        assert f['Run_7/Monitor/MonDetector_101'].shape == (0,)


def test_convert_missing_binary(tmp_path):
    (tmp_path / 'field.txt').write_text(FIELD)
    rc = grand_tool.main(['convert', str(tmp_path), '7', '1',
                          '--output', str(tmp_path / 'out.hdf5')])
    assert rc != 0


def test_convert_missing_field(tmp_path):
    make_run(tmp_path / 'data')
    rc = grand_tool.main(['convert', str(tmp_path / 'data'), '7', '1',
                          '--field', str(tmp_path / 'nope.txt'),
                          '--output', str(tmp_path / 'out.hdf5')])
    assert rc != 0


def test_convert_rejects_short_header(tmp_path):
    make_run(tmp_path / 'data', header=make_file_header(additional=()))
    rc = grand_tool.main(['convert', str(tmp_path / 'data'), '7', '1',
                          '--output', str(tmp_path / 'out.hdf5')])
    assert rc != 0


def test_convert_unwritable_output(tmp_path):
    make_run(tmp_path / 'data')
    rc = grand_tool.main(['convert', str(tmp_path / 'data'), '7', '1',
                          '--output', str(tmp_path / 'no' / 'such' / 'dir.hdf5')])
    assert rc != 0


def test_convert_with_config_and_plot(tmp_path):
    make_run(tmp_path / 'data')
    cfg = tmp_path / 'grand.yaml'
    cfg.write_text('decode:\n  trailing_policy: ignore\noutput:\n  compression: lzf\n')
    out = tmp_path / 'Run7.hdf5'
    rc = grand_tool.main(['convert', str(tmp_path / 'data'), '7', '1', '--output', str(out),
                          '--config', str(cfg), '--plot'])
    assert rc == 0
    assert (tmp_path / 'Run7_traces.png').exists()


def test_bad_config(tmp_path):
    cfg = tmp_path / 'grand.yaml'
    cfg.write_text('decode:\n  trailing_policy: sometimes\n')
    assert grand_tool.main(['summary', 'whatever', '--config', str(cfg)]) == 2


def test_summary(tmp_path, capsys):
    make_run(tmp_path / 'data')
    rc = grand_tool.main(['summary', str(tmp_path / 'data' / 'AD' / 'ad000007.f0001'),
                          '--field', str(tmp_path / 'data' / 'field.txt')])
    assert rc == 0
    out = capsys.readouterr().out
    assert 'Run 7: 2 events, 0 dropped' in out
    assert 'stations decoded' in out


def test_convert_survives_bad_monitor_values(tmp_path):
    make_run(tmp_path / 'data')
    with open(tmp_path / 'data' / 'MON' / 'MO000007.f0001', 'a') as f:
        f.write('1 1201 12 1700000020 70000 10 20 30 40 35.5 12.25 0.5 0\n')
    out = tmp_path / 'Run7.hdf5'
    rc = grand_tool.main(['convert', str(tmp_path / 'data'), '7', '1', '--output', str(out)])
    assert rc == 0
    with h5py.File(out, 'r') as f:
        assert f['Run_7/Monitor/MonDetector_101'].shape == (2,)
        assert f['Run_7/DetectorInfo'].shape == (2,)
        assert f['Run_7/CenterField'].shape == (1,)


def test_duplicate_event_does_not_update_settings(tmp_path):
    make_run(tmp_path / 'data')
    first = (1 << 20) | (2 << 16) | (3 << 12)
    second = (4 << 20) | (5 << 16) | (6 << 12)
    events = [make_event([make_ls(1, make_blob(traces=three_axis(4), serial_version=sv))],
                         event_nr=1)
              for sv in (first, second)]
    (tmp_path / 'data' / 'AD' / 'ad000007.f0001').write_bytes(
        make_file_header(run_nr=7) + b''.join(events))
    out = tmp_path / 'Run7.hdf5'
    rc = grand_tool.main(['convert', str(tmp_path / 'data'), '7', '1', '--output', str(out)])
    assert rc == 0
    with h5py.File(out, 'r') as f:
        es = f['Run_7/ElectronicsSettings'][()]
        assert es['firmware_version'].tolist() == [123, 0]
