"""
GRAND command line tool
=======================

    grand convert <basedir> <runnr> <fileseq> [--field F] [--output O] [--config C] [--plot]
    grand summary <binary file> [--field F] [--config C]

``convert`` turns ``<basedir>/AD/ad<runnr>.f<fileseq>`` plus the monitoring
log ``<basedir>/MON/MO<runnr>.f<fileseq>`` into ``Run<runnr>.hdf5``.
``summary`` decodes a binary file without writing and prints what it found.
"""

import argparse
import logging
import os
import sys

import numpy as np

import grand_bin
import grand_config
import grand_field
import grand_hdf5
import grand_monitor


logger = logging.getLogger('grand')


def setup_logging(cfg, verbose=0):
    level = logging.DEBUG if verbose else getattr(logging, cfg.logging.level.upper(), logging.INFO)
    logging.basicConfig(level=level, format=cfg.logging.format)


def _input_paths(args, cfg):
    fmt = {'run': args.runnr, 'seq': args.fileseq}
    binary = os.path.join(args.basedir, cfg.paths.binary.format(**fmt))
    monitor = os.path.join(args.basedir, cfg.paths.monitor.format(**fmt))
    field = args.field or os.path.join(args.basedir, cfg.paths.field.format(**fmt))
    output = args.output or cfg.output.filename.format(**fmt)
    return binary, monitor, field, output


def plot_event(event, outpath):
    """Save the traces of one decoded event as a PNG (one panel per record)."""
    import matplotlib
    matplotlib.use('Agg')
    import matplotlib.pyplot as plt

    stations = event['stations']
    n = max(1, len(stations))
    fig, axes = plt.subplots(n, 1, figsize=(10, 2.4 * n), squeeze=False,
                             constrained_layout=True)
    hdr = event['header']
    fig.suptitle(f"Run {hdr['run_nr']} Event {hdr['event_nr']}", fontsize=12, fontweight='bold')
    colors = {'ADC_X': '#c0392b', 'ADC_Y': '#2471a3', 'ADC_Z': '#1e8449'}
    for ax, st in zip(axes[:, 0], stations):
        for name, trace in st['traces'].items():
            ax.plot(np.arange(len(trace)), trace, lw=0.7, color=colors.get(name), label=name)
        ax.set_title(st['group'], fontsize=10)
        ax.set_ylabel('ADC counts', fontsize=9)
        ax.tick_params(labelsize=8)
        if st['traces']:
            ax.legend(fontsize=8, framealpha=0.7)
    if not stations:
        axes[0, 0].text(0.5, 0.5, 'No decoded stations', ha='center', va='center',
                        transform=axes[0, 0].transAxes)
    axes[-1, 0].set_xlabel('Sample', fontsize=9)
    fig.savefig(outpath, dpi=120)
    plt.close(fig)
    return outpath


def convert(args, cfg):
    binary, monitor, field, output = _input_paths(args, cfg)
    for path, what in ((binary, 'binary data'), (field, 'field configuration')):
        if not os.path.exists(path):
            logger.error('cannot find the %s file %s', what, path)
            return 1
    try:
        directory = grand_field.load_field(field)
    except ValueError as exc:
        logger.error('bad field configuration: %s', exc)
        return 1

    try:
        h5, run = grand_hdf5.create_file(output, args.runnr)
    except OSError as exc:
        logger.error('cannot create %s: %s', output, exc)
        return 1

    totals = grand_bin.new_totals()
    settings = {}
    first_event = None
    try:
        with open(binary, 'rb') as f:
            for file_header, event in grand_bin.iter_events(
                    f, directory, cfg.decode.trailing_policy, totals):
                if file_header['run_nr'] != args.runnr and totals['events'] == 1:
                    logger.warning('file header says run %d, converting as run %d',
                                   file_header['run_nr'], args.runnr)
                if not grand_hdf5.write_event(run, event):
                    continue
                for st in event['stations']:
                    settings[st['antenna']] = grand_bin.decode_settings(st['blob'])
                if first_event is None and event['stations']:
                    first_event = event

        grand_hdf5.create_monitor_tables(run, directory,
                                         compression=cfg.output.compression,
                                         compression_opts=cfg.output.compression_opts,
                                         chunk_rows=cfg.output.chunk_rows)
        if os.path.exists(monitor):
            rows = grand_monitor.parse_monitor(monitor)
            for station_id, srows in grand_monitor.split_by_station(rows, directory).items():
                grand_hdf5.append_monitor(run, station_id, srows)
        else:
            logger.warning('no monitoring file %s', monitor)
        grand_hdf5.write_run_header(run, directory, settings)
    except grand_bin.DecodeError as exc:
        logger.error('%s: %s', binary, exc)
        return 1
    finally:
        h5.close()

    grand_bin.print_summary(totals)
    print(f'\nWritten: {output}')

    if args.plot:
        if first_event is None:
            logger.warning('nothing to plot, no event with decoded stations')
        else:
            outpath = output.rsplit('.', 1)[0] + '_traces.png'
            plot_event(first_event, outpath)
            print(f'Plot saved: {outpath}')
    return 0


def summary(args, cfg):
    if args.field:
        directory = grand_field.load_field(args.field)
    else:
        directory = grand_field.build_directory([])
        logger.warning('no field configuration, every station will be unrecognised')
    print(f'Parsing: {args.file}')
    print(f'Size: {os.path.getsize(args.file) / 1e6:.1f} MB')
    print()
    try:
        parsed = grand_bin.parse_bin(args.file, directory, cfg.decode.trailing_policy)
    except grand_bin.DecodeError as exc:
        logger.error('%s: %s', args.file, exc)
        return 1
    grand_bin.print_summary(parsed['totals'])
    return 0


def build_parser():
    common = argparse.ArgumentParser(add_help=False)
    common.add_argument('--config', help='YAML configuration file')
    common.add_argument('-v', '--verbose', action='count', default=0)

    ap = argparse.ArgumentParser(prog='grand', description='GRAND binary data tools')
    sub = ap.add_subparsers(dest='command', required=True)

    cv = sub.add_parser('convert', parents=[common], help='convert a binary run file to HDF5')
    cv.add_argument('basedir')
    cv.add_argument('runnr', type=int)
    cv.add_argument('fileseq', type=int)
    cv.add_argument('--field', help='field configuration (default <basedir>/field.txt)')
    cv.add_argument('--output', help='HDF5 file (default Run<runnr>.hdf5)')
    cv.add_argument('--plot', action='store_true', help='save a trace plot of the first event')
    cv.set_defaults(func=convert)

    sm = sub.add_parser('summary', parents=[common], help='decode a binary file and print a summary')
    sm.add_argument('file')
    sm.add_argument('--field', help='field configuration')
    sm.set_defaults(func=summary)
    return ap


def main(argv=None):
    args = build_parser().parse_args(argv)
    try:
        cfg = grand_config.load_config(args.config)
    except (OSError, ValueError) as exc:
        print(f'grand: bad configuration: {exc}', file=sys.stderr)
        return 2
    setup_logging(cfg, args.verbose)
    return args.func(args, cfg)


if __name__ == '__main__':
    sys.exit(main())
