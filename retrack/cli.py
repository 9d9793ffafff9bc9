"""Command-line interface for retrack.

Usage:
    retrack run <config.toml> [options]          # Reconstruct synchronized output
    retrack auto-config <directory> [options]    # Write a config for a directory
    retrack info <archive.braidz>                # Summarize a braidz archive
"""

import argparse
import sys
from pathlib import Path

from .auto_config import auto_config
from .braidz import BraidzError, build_data2d_index, open_braidz
from .config import ConfigError, format_config, load_config
from .pipeline import run_config


def create_parser() -> argparse.ArgumentParser:
    """Create the argument parser with subcommands."""
    parser = argparse.ArgumentParser(
        prog='retrack',
        description='Reconstruct synchronized multi-camera video and 2D tracking output.',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
    # Generate a config for a recording directory, then run it
    retrack auto-config ./20211108_084523 -o retrack.toml
    retrack run retrack.toml

    # Only render the first 100 moments
    retrack run retrack.toml --max-num-frames 100
        """
    )
    subparsers = parser.add_subparsers(dest='command', help='Commands')

    run_parser = subparsers.add_parser(
        'run',
        help='Synchronize inputs and write the configured outputs',
    )
    run_parser.add_argument('config', help='TOML configuration file')
    run_parser.add_argument(
        '--max-num-frames', type=int,
        help='Stop after this many output moments'
    )
    run_parser.add_argument(
        '--skip', type=int, metavar='N',
        help='Do not write the first N output moments'
    )
    run_parser.add_argument(
        '--log-interval', type=int, metavar='N',
        help='Report progress every N moments (default: 100)'
    )

    auto_parser = subparsers.add_parser(
        'auto-config',
        help='Write a configuration for a directory of movies and/or a braidz archive',
    )
    auto_parser.add_argument('directory', help='Directory holding the recording')
    auto_parser.add_argument('-o', '--output', help='Config file to write (default: stdout)')
    auto_parser.add_argument('--output-dir', help='Directory for rendered outputs')

    info_parser = subparsers.add_parser(
        'info',
        help='Summarize the cameras and detections of a braidz archive',
    )
    info_parser.add_argument('braidz', help='Path to .braidz archive')

    return parser


def run_run_mode(args: argparse.Namespace) -> list:
    """Load the configuration, apply overrides, and run the reconstruction."""
    print("=" * 60, file=sys.stderr)
    print("RETRACK", file=sys.stderr)
    print("=" * 60, file=sys.stderr)

    cfg = load_config(args.config)
    if args.max_num_frames is not None:
        cfg.max_num_frames = args.max_num_frames
    if args.skip is not None:
        cfg.skip_n_first_output_frames = args.skip
    if args.log_interval is not None:
        cfg.log_interval_frames = args.log_interval
    cfg.validate(check_files=False)

    paths = run_config(cfg)

    print("\n" + "=" * 60, file=sys.stderr)
    if paths:
        print("Wrote:", file=sys.stderr)
        for path in paths:
            print(f"  {path}", file=sys.stderr)
    else:
        print("Nothing to do.", file=sys.stderr)
    print("=" * 60, file=sys.stderr)
    return paths


def run_auto_config_mode(args: argparse.Namespace) -> str:
    cfg = auto_config(args.directory, args.output_dir)
    if args.output:
        base_dir = Path(args.output).resolve().parent
        content = format_config(cfg, base_dir=base_dir)
        with open(args.output, "w") as f:
            f.write(content)
        print(f"Config saved to: {args.output}", file=sys.stderr)
    else:
        content = format_config(cfg)
        print(content, end="")
    return content


def run_info_mode(args: argparse.Namespace) -> None:
    with open_braidz(args.braidz) as archive:
        data2d = build_data2d_index(archive)
        print(f"{args.braidz}")
        if archive.expected_fps is not None:
            print(f"  expected fps: {archive.expected_fps:.2f}")
        for cam_id, camn in archive.braidz_cameras():
            rows = data2d.get(camn, [])
            size = archive.image_sizes.get(cam_id)
            size_str = f"{size[0]}x{size[1]}" if size else "unknown size"
            print(f"  camn {camn}: {cam_id} ({size_str}), {len(rows)} rows")


def main(argv: list = None) -> None:
    """Main entry point."""
    argv = argv if argv is not None else sys.argv[1:]
    parser = create_parser()
    args = parser.parse_args(argv)

    if args.command is None:
        parser.print_help()
        sys.exit(1)

    try:
        if args.command == 'run':
            run_run_mode(args)
        elif args.command == 'auto-config':
            run_auto_config_mode(args)
        elif args.command == 'info':
            run_info_mode(args)
    except (ConfigError, BraidzError, ValueError) as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)


if __name__ == "__main__":
    main()
