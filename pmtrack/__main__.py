"""
pmtrack Command Line Interface

Usage:
    pmtrack <command> [options]

Commands:
    track       Track a point through a video
    config      Create an example configuration file
    version     Show version information

Examples:
    pmtrack track input.mp4 -c 640,360 -fs 1 -fe 200 -o track01.crv
    pmtrack track input.mp4 -td track01.crv -fs 200 -fe 1 --score zncc
    pmtrack config --create tracker_config.json
"""

import argparse
import logging
import signal
import sys

from pmtrack import __version__


def _floats(text: str, count: int) -> tuple[float, ...]:
    values = tuple(float(v) for v in text.split(","))
    if len(values) != count:
        raise argparse.ArgumentTypeError(f"expected {count} comma-separated numbers, got '{text}'")
    return values


def _point(text: str) -> tuple[float, float]:
    return _floats(text, 2)


def _box(text: str) -> tuple[float, float, float, float]:
    return _floats(text, 4)


def main(argv: list[str] | None = None) -> int:
    """Main CLI entry point."""
    parser = argparse.ArgumentParser(
        prog='pmtrack',
        description='Pattern-matching point tracker',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )

    parser.add_argument(
        '-V', '--version',
        action='version',
        version=f'pmtrack {__version__}',
    )

    subparsers = parser.add_subparsers(dest='command', help='Command to run')

    # Track command
    track_parser = subparsers.add_parser(
        'track',
        help='Track a point through a video',
    )
    track_parser.add_argument('input', help='Input video file')
    track_parser.add_argument(
        '-c', '--center',
        type=_point,
        metavar='X,Y',
        help='Starting center at the first frame',
    )
    track_parser.add_argument(
        '-td', '--track-data',
        metavar='CRV',
        help='Existing .crv track to start from and update',
    )
    track_parser.add_argument(
        '-fs', '--first-frame',
        type=int,
        default=1,
        help='Frame to start tracking from (default: 1)',
    )
    track_parser.add_argument(
        '-fe', '--frame-end',
        type=int,
        default=None,
        help='Last frame to track to (default: end of video); '
             'tracks backward when before the first frame',
    )
    track_parser.add_argument(
        '--config',
        metavar='JSON',
        help='Tracker configuration file',
    )
    track_parser.add_argument(
        '-s', '--score',
        choices=['ssd', 'sad', 'ncc', 'zncc'],
        help='Similarity metric (default: from config, else ssd)',
    )
    track_parser.add_argument(
        '--pattern',
        type=_box,
        metavar='X1,Y1,X2,Y2',
        help='Pattern box relative to the center',
    )
    track_parser.add_argument(
        '--search',
        type=_box,
        metavar='X1,Y1,X2,Y2',
        help='Search box relative to the center',
    )
    track_parser.add_argument(
        '-rf', '--reference-frame',
        type=int,
        default=None,
        help='Always extract the pattern from this frame',
    )
    track_parser.add_argument(
        '--offset',
        type=_point,
        metavar='DX,DY',
        help='Offset of the pattern from the tracked center',
    )
    track_parser.add_argument(
        '--mask',
        metavar='IMAGE',
        help='Mask image weighting the pattern pixels',
    )
    track_parser.add_argument(
        '--lab',
        action='store_true',
        help='Compare colors in CIE L*a*b*',
    )
    track_parser.add_argument(
        '-j', '--workers',
        type=int,
        default=None,
        help='Number of search threads (default: from config, else CPU count)',
    )
    track_parser.add_argument(
        '-o', '--output',
        metavar='CRV',
        help='Output .crv file (default: --track-data, else INPUT.crv)',
    )
    track_parser.add_argument(
        '--csv',
        metavar='CSV',
        help='Also write frame,x,y,score rows to this CSV file',
    )
    track_parser.add_argument(
        '-q', '--quiet',
        action='store_true',
        help='Suppress progress output',
    )
    track_parser.add_argument(
        '-v', '--verbose',
        action='store_true',
        help='Debug logging',
    )

    # Config command
    config_parser = subparsers.add_parser(
        'config',
        help='Create an example configuration file',
    )
    config_parser.add_argument(
        '--create',
        metavar='JSON',
        default='tracker_config.json',
        help='Output path (default: tracker_config.json)',
    )

    subparsers.add_parser('version', help='Show version information')

    args = parser.parse_args(argv)

    if args.command is None:
        parser.print_help()
        return 0

    if args.command == 'track':
        return run_track(args)
    elif args.command == 'config':
        return run_config(args)
    elif args.command == 'version':
        print(f"pmtrack {__version__}")
        return 0
    else:
        parser.print_help()
        return 1


def build_config(args):
    """Merge the config file, environment and command line options."""
    from pmtrack.core.config import TrackerConfig, config_from_dict

    base = TrackerConfig.load(args.config) if args.config else None
    data = TrackerConfig.from_env(base).to_dict()

    if args.score:
        data['score'] = args.score
    if args.pattern:
        data['pattern_box'] = args.pattern
    if args.search:
        data['search_box'] = args.search
    if args.reference_frame is not None:
        data['reference_frame'] = args.reference_frame
        data['use_reference_frame'] = True
    if args.offset:
        data['offset'] = args.offset
    if args.lab:
        data['colorspace'] = 'lab'
    if args.workers is not None:
        data['num_workers'] = args.workers
    return config_from_dict(data)


def run_track(args):
    """Run the point tracking command."""
    from pathlib import Path

    from pmtrack.core.errors import FormatMismatchError
    from pmtrack.core.geometry import Point
    from pmtrack.core.image import load_image
    from pmtrack.core.video import VideoFrameProvider
    from pmtrack.tracking import CancelFlag, TrackSession, Trajectory

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format='%(levelname)s %(name)s: %(message)s',
    )

    if args.center is None and args.track_data is None:
        print("Error: either --center or --track-data is required")
        return 1

    try:
        config = build_config(args)
    except (FileNotFoundError, ValueError) as e:
        print(f"Error: {e}")
        return 1

    trajectory = Trajectory.from_crv(args.track_data) if args.track_data else Trajectory()
    if args.center is not None:
        trajectory.set_at(args.first_frame, Point(*args.center))

    output = Path(args.output or args.track_data or Path(args.input).with_suffix('.crv'))
    mask = load_image(args.mask) if args.mask else None
    cancel = CancelFlag()

    def report(fraction):
        if not args.quiet:
            print(f"\rTracking: {fraction * 100:5.1f}%", end='', flush=True)
        return True

    with VideoFrameProvider(args.input) as frames:
        last = args.frame_end if args.frame_end is not None else frames.frame_count
        print(f"Tracking {args.input} frames {args.first_frame} -> {last} ({config.score.name})")

        session = TrackSession.from_config(
            frames, trajectory, config, mask=mask, cancel=cancel, progress=report,
        )
        # Ctrl-C cancels the session, keeping the frames already tracked
        previous_handler = signal.signal(signal.SIGINT, lambda signum, frame: cancel.request())
        try:
            result = session.run(args.first_frame, last)
        except FormatMismatchError as e:
            print(f"\nError: {e}")
            return 2
        except ValueError as e:
            print(f"\nError: {e}")
            return 1
        finally:
            signal.signal(signal.SIGINT, previous_handler)

    trajectory.to_crv(output)
    if args.csv:
        trajectory.to_csv(args.csv)

    print(f"\n{result.state.value.capitalize()}: {len(result.tracked)} tracked, {len(result.lost)} lost")
    if result.lost and not args.quiet:
        print(f"Lost frames: {', '.join(str(t) for t in result.lost)}")
    print(f"Wrote {output}")
    return 0


def run_config(args):
    """Create an example configuration file."""
    from pmtrack.core.config import create_example_config

    create_example_config(args.create)
    print(f"Created example configuration: {args.create}")
    return 0


if __name__ == '__main__':
    sys.exit(main())
