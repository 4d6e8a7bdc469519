"""Command-line interface for mail folder to PDF conversion."""

import argparse
import locale
import logging
import sys
import time
from typing import Dict, List, Optional

from . import __version__
from .config import ATTACHMENTS_AFTER_BODY, ATTACHMENTS_BEFORE_BODY, ConversionConfig, PAPER_SIZES
from .converter import convert_batch
from .format import FormatError
from .pdf_document import LayoutError, SequenceError
from .utils import configure_logging

logger = logging.getLogger(__name__)

# Exit status for errors that abort the whole run
EXIT_FATAL = 2


def create_parser() -> argparse.ArgumentParser:
    """Create the argument parser for the CLI."""
    parser = argparse.ArgumentParser(
        prog='mbox-to-pdf',
        description='Print every message of mail folders to its own PDF file',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  %(prog)s ~/Mail/archive                      One PDF per message, next to the folder
  %(prog)s -o ~/pdfs -A2 ~/Mail/archive        Output folder, attachments after body
  %(prog)s -F '%%Y%%m%%d-@o-@j' inbox.mbox        Own filename template
  %(prog)s -S after=2015-03-01 -S from=jane inbox.mbox

The exit status is the number of messages or folders that could not be
converted, or 2 for errors that stop the run.
        """
    )

    parser.add_argument(
        'folders',
        nargs='+',
        metavar='FOLDER',
        help='Mail folder: mbox file, Maildir, or directory of .eml files'
    )

    parser.add_argument(
        '-a', '--alias',
        type=str,
        metavar='FILE',
        help='Alias file for --bcc and --select addresses'
    )

    parser.add_argument(
        '-A', '--attachments',
        type=int,
        nargs='?',
        const=ATTACHMENTS_BEFORE_BODY,
        metavar='N',
        help='List attachment names: 1 (default) before the body, 2 after it'
    )

    parser.add_argument(
        '-B', '--bcc',
        action='append',
        nargs='?',
        const='',
        metavar='SPEC',
        help='Print Bcc addresses: ALL, NONE, ADDRESS or ~ADDRESS (comma separated, repeatable)'
    )

    parser.add_argument(
        '-f', '--force',
        action='store_true',
        default=None,
        help='Overwrite existing files, accept a non-unique filename format'
    )

    parser.add_argument(
        '-F', '--format',
        type=str,
        metavar='TEMPLATE',
        help='Filename template (default: %%Y-%%m-%%d_@3n_@F_mail)'
    )

    parser.add_argument(
        '-H', '--header',
        action='append',
        metavar='NAME',
        help='Also print this mail header (repeatable; ALL for all known headers)'
    )

    parser.add_argument(
        '-i', '--interactive',
        action='store_true',
        default=None,
        help='Ask before overwriting existing files'
    )

    parser.add_argument(
        '-l', '--locale',
        type=str,
        help='Locale for month and day names'
    )

    parser.add_argument(
        '-M', '--message-id',
        action='store_true',
        default=None,
        help='Print the Message-ID header'
    )

    parser.add_argument(
        '-o', '--output-dir',
        type=str,
        metavar='FOLDER',
        help='Output folder (default: the folder of each mail folder)'
    )

    parser.add_argument(
        '-p', '--paper-size',
        type=str,
        metavar='SIZE',
        help=f'Paper size, e.g. {", ".join(PAPER_SIZES)} or 210mmx297mm (default: A4)'
    )

    parser.add_argument(
        '-q', '--quiet',
        action='count',
        help='Suppress warnings; twice to suppress errors too'
    )

    parser.add_argument(
        '-S', '--select',
        action='append',
        metavar='KEY=VALUE',
        help='Only convert matching messages; keys: date, before, after, from, to, cc, bcc, dest, bdest'
    )

    parser.add_argument(
        '-t', '--text',
        action='store_true',
        default=None,
        help='Also save each message as text'
    )

    parser.add_argument(
        '-T', '--text-only',
        action='store_true',
        default=None,
        help='Only save each message as text'
    )

    parser.add_argument(
        '-v', '--verbose',
        action='count',
        help='Enable verbose output'
    )

    parser.add_argument(
        '-z', '--timezone',
        type=str,
        metavar='ZONE',
        help='Timezone for dates and day serial numbers (default: local)'
    )

    parser.add_argument(
        '--repeat-quotes',
        action='store_true',
        default=None,
        help='Repeat quote markers on wrapped lines'
    )

    parser.add_argument(
        '--config',
        type=str,
        metavar='FILE',
        help='Read default settings from a JSON config file'
    )

    parser.add_argument(
        '--save-config',
        type=str,
        metavar='FILE',
        help='Save the resulting settings to a JSON config file before converting'
    )

    parser.add_argument(
        '--version',
        action='version',
        version=f'%(prog)s {__version__}'
    )

    return parser


def parse_select(items: List[str]) -> Dict[str, str]:
    """Turn KEY=VALUE strings into a dict."""
    select = {}
    for item in items:
        key, sep, value = item.partition('=')
        if not sep:
            raise ValueError(f"--select needs KEY=VALUE, got {item}")
        select[key.strip().lower()] = value.strip()
    return select


def build_config(args: argparse.Namespace) -> ConversionConfig:
    """Merge command line options over the defaults or the --config file."""
    config = ConversionConfig.load(args.config) if args.config else ConversionConfig()

    simple = {
        'alias': 'alias_file',
        'force': 'force',
        'format': 'filename_format',
        'interactive': 'interactive',
        'locale': 'locale',
        'message_id': 'message_id',
        'output_dir': 'output_dir',
        'paper_size': 'paper_size',
        'quiet': 'quiet',
        'text': 'text',
        'text_only': 'text_only',
        'verbose': 'verbose',
        'timezone': 'timezone',
        'repeat_quotes': 'repeat_quotes',
    }
    for option, attr in simple.items():
        value = getattr(args, option)
        if value is not None:
            setattr(config, attr, value)

    if args.attachments is not None:
        # -A0 means the same as -A
        config.attachments = (ATTACHMENTS_BEFORE_BODY if args.attachments <= 1
                              else ATTACHMENTS_AFTER_BODY)
    if args.bcc is not None:
        config.bcc = args.bcc
    if args.header is not None:
        config.headers = args.header
    if args.select is not None:
        config.select = parse_select(args.select)
    return config


def print_progress(current: int, total: int, filename: str, start_time: float, width: int = 40) -> None:
    """Print a terminal progress bar."""
    if total == 0:
        return

    percent = current / total
    filled = int(width * percent)
    bar = '=' * filled + '-' * (width - filled)

    elapsed = time.time() - start_time
    if current > 0:
        eta = (elapsed / current) * (total - current)
        eta_str = f"ETA: {int(eta)}s"
    else:
        eta_str = "ETA: --"

    # Truncate name for display
    display_name = filename[:30] + '...' if len(filename) > 30 else filename.ljust(33)

    print(f'\r[{bar}] {current}/{total} {display_name} {eta_str}', end='', flush=True)


def run_cli(args: argparse.Namespace) -> int:
    """
    Run the CLI conversion.

    Args:
        args: Parsed command line arguments

    Returns:
        Exit code: number of recoverable failures, or EXIT_FATAL
    """
    try:
        config = build_config(args)
    except ValueError as e:
        print(f"Error: {e}", file=sys.stderr)
        return EXIT_FATAL
    configure_logging(config.verbose, config.quiet)

    if args.save_config:
        try:
            config.save(args.save_config)
        except OSError as e:
            print(f"Error: Cannot save settings: {e}", file=sys.stderr)
            return EXIT_FATAL
        logger.info(f"Settings saved to {args.save_config}")

    if config.locale:
        try:
            locale.setlocale(locale.LC_TIME, config.locale)
        except locale.Error:
            print(f"Error: Unknown locale: {config.locale}", file=sys.stderr)
            return EXIT_FATAL

    show_progress = not config.quiet and not config.interactive
    start_time = time.time()

    def progress_callback(current: int, total: int, name: str) -> bool:
        if show_progress:
            print_progress(current, total, name, start_time)
            if name == "Complete":
                print()
        return True  # Continue processing

    try:
        result = convert_batch(args.folders, config, progress_callback=progress_callback)
    except KeyboardInterrupt:
        print("\n\nConversion cancelled by user.")
        return EXIT_FATAL
    except (FormatError, LayoutError, SequenceError, OSError, ValueError) as e:
        print(f"\nError: {e}", file=sys.stderr)
        return EXIT_FATAL

    # Print summary
    if not config.quiet:
        elapsed = time.time() - start_time
        print()
        print("=" * 50)
        print("Conversion Complete!")
        print("=" * 50)
        print(f"Messages:       {result.total_files}")
        print(f"Successful:     {result.successful}")
        print(f"Failed:         {result.failed}")
        print(f"Time elapsed:   {elapsed:.1f}s")
        if result.output_folder:
            print(f"Output folder:  {result.output_folder}")

    if config.verbose:
        # Print details of failed conversions
        failed = [r for r in result.results if not r.success]
        if failed:
            print("\nFailed:")
            for r in failed:
                print(f"  - {r.source_file} {r.message_id or ''}: {r.error_message}")

    return result.failed


def main(args: Optional[list] = None) -> int:
    """
    Main entry point for the CLI.

    Args:
        args: Optional list of arguments (uses sys.argv if not provided)

    Returns:
        Exit code
    """
    parser = create_parser()
    parsed_args = parser.parse_args(args)
    return run_cli(parsed_args)


if __name__ == '__main__':
    sys.exit(main())
