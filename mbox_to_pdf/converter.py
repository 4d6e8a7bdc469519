"""Core mail folder to PDF conversion logic."""

import os
import logging
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional, Set

from .config import ATTACHMENTS_AFTER_BODY, ATTACHMENTS_BEFORE_BODY, ConversionConfig
from .folder_index import FolderIndex, FolderIndexRegistry
from .format import FormatError, FormatProgram, compile_format
from .message import FolderOpenError, MailFolder, MailMessage, find_main_and_attachments
from .pdf_document import HEADER_FOOTER_SLOTS, LayoutError, PdfDocument, check_paper_size
from .selection import build_bcc_filter, build_selector, read_alias_file
from .utils import ask_confirmation, output_path_status, resolve_timezone, sanitize_filename

logger = logging.getLogger(__name__)


@dataclass
class ConversionResult:
    """Result of a single message conversion."""
    success: bool
    source_file: str
    message_id: Optional[str] = None
    output_path: Optional[str] = None
    error_message: Optional[str] = None


@dataclass
class BatchConversionResult:
    """Result of a batch conversion operation."""
    total_files: int
    successful: int
    failed: int
    results: List[ConversionResult]
    output_folder: Optional[str]
    cancelled: bool = False


@dataclass
class ConversionRun:
    """State shared by all folders of one conversion run."""
    config: ConversionConfig
    filename_program: FormatProgram
    headfoot_programs: Dict[str, FormatProgram] = field(default_factory=dict)
    registry: FolderIndexRegistry = field(default_factory=FolderIndexRegistry)
    selector: Optional[Callable] = None
    bcc_filter: Optional[Callable[[str], bool]] = None
    confirm: Callable[[str], bool] = ask_confirmation
    generated: Dict[str, str] = field(default_factory=dict)
    message_ids: Set[str] = field(default_factory=set)
    failures: int = 0
    results: List[ConversionResult] = field(default_factory=list)

    def fail(self, source: str, message: str, msg: Optional[MailMessage] = None,
             output_path: Optional[str] = None) -> ConversionResult:
        """Record a recoverable failure."""
        self.failures += 1
        result = ConversionResult(
            success=False,
            source_file=source,
            message_id=msg.message_id if msg is not None else None,
            output_path=output_path,
            error_message=message,
        )
        self.results.append(result)
        return result


def prepare_run(config: ConversionConfig,
                confirm: Callable[[str], bool] = ask_confirmation) -> ConversionRun:
    """
    Validate the configuration and set up a conversion run.

    Raises:
        FormatError: if a template is malformed, or the filename template
                     contains page numbers or %n/%t
        LayoutError: if the paper size is not recognized
        NotADirectoryError: if the output directory does not exist
        OSError: if the alias file cannot be read
        ValueError: if the timezone or a --select date is invalid
    """
    try:
        filename_program = compile_format(config.filename_format)
    except FormatError as e:
        raise FormatError(f"Filename format {config.filename_format} is not correct: {e}") from e
    if filename_program.has_page_number:
        raise FormatError(f"Filename format {config.filename_format} contains page numbers")
    if filename_program.has_control_char:
        raise FormatError(f"Filename format {config.filename_format} contains %n or %t")
    headfoot_programs = {}
    for slot in HEADER_FOOTER_SLOTS:
        template = getattr(config, slot)
        if template is not None:
            headfoot_programs[slot] = compile_format(template)

    if not check_paper_size(config.paper_size):
        raise LayoutError(f"Unrecognized paper size: {config.paper_size}")
    if config.output_dir and not os.path.isdir(config.output_dir):
        raise NotADirectoryError(f"No valid directory: {config.output_dir}")
    resolve_timezone(config.timezone)

    aliases = read_alias_file(config.alias_file) if config.alias_file else None
    bcc_filter = None
    if config.bcc:
        bcc_filter = build_bcc_filter(config.bcc, aliases)
    elif config.print_bcc:
        bcc_filter = build_bcc_filter(['ALL'])

    return ConversionRun(
        config=config,
        filename_program=filename_program,
        headfoot_programs=headfoot_programs,
        selector=build_selector(config.select, aliases),
        bcc_filter=bcc_filter,
        confirm=confirm,
    )


def _may_write(run: ConversionRun, source: str, msg: MailMessage, path: str) -> bool:
    """Check an output path, asking or counting a failure when it is taken."""
    status = output_path_status(path)
    if status == 'free':
        return True
    if status == 'other':
        logger.error(f"Another non-file object {path} exists, skipping")
        run.fail(source, "non-file object in the way", msg, path)
        return False
    if run.config.force:
        logger.warning(f"Output file {path} already exists, overwriting")
        return True
    if run.config.interactive and run.confirm(f"Do you want to overwrite the existing file {path}? "):
        return True
    logger.error(f"Output file {path} already exists, skipping")
    run.fail(source, "output file exists", msg, path)
    return False


def render_message(run: ConversionRun, index: FolderIndex, msg: MailMessage,
                   pdf_path: str) -> bool:
    """
    Write one message as a PDF document.

    Returns:
        False when the message has no plain text body (the document is
        still written, with headers only)
    """
    config = run.config
    context = index.context(msg)
    doc = PdfDocument(
        pdf_path,
        context,
        paper_size=config.paper_size,
        **{slot: run.headfoot_programs.get(slot) for slot in HEADER_FOOTER_SLOTS},
        repeat_quotes=config.repeat_quotes,
    )

    doc.print_header("From", *(a.format() for a in msg.addresses('from')))
    doc.print_header("To", *(a.format() for a in msg.addresses('to')))
    doc.print_header("Cc", *(a.format() for a in msg.addresses('cc')))
    if run.bcc_filter is not None:
        doc.print_header("Bcc", *(a.format() for a in msg.addresses('bcc')
                                  if run.bcc_filter(a.address)))
    for _key, display in config.get_header_names():
        for value in msg.get_header(display):
            doc.print_header(display, value)

    main, attachments = find_main_and_attachments(msg)
    if main is None:
        logger.error(f"Main message not found, message-id: {msg.message_id}")
        doc.close()
        return False

    names = [part.filename or '(unnamed)' for part in attachments]
    if config.attachments == ATTACHMENTS_BEFORE_BODY:
        doc.print_attachments(*names)
    doc.print_lines(*main.lines())
    if config.attachments == ATTACHMENTS_AFTER_BODY:
        doc.print_attachments(*names)
    doc.close()
    return True


def convert_message(run: ConversionRun, index: FolderIndex, msg: MailMessage,
                    output_folder: str) -> Optional[ConversionResult]:
    """
    Convert one message of an indexed folder.

    Args:
        run: The conversion run
        index: Index of the folder holding the message
        msg: The message
        output_folder: Directory for the generated files

    Returns:
        ConversionResult, or None when the message was skipped without error
    """
    config = run.config
    source = index.folder.path
    outfile = sanitize_filename(index.context(msg).format(run.filename_program))
    outpath = os.path.join(output_folder, outfile)
    logger.debug(f"Output file: {outpath}")

    msgid = msg.message_id
    if msgid and msgid in run.message_ids:
        logger.warning(f"Duplicate message-ID: {msgid}")
    run.message_ids.add(msgid)

    if outpath in run.generated:
        logger.error(f"File {outpath} has already been generated, skipping")
        if run.generated[outpath] != msgid:
            logger.error("   was for a different message")
        return run.fail(source, "duplicate output filename", msg, outpath)
    run.generated[outpath] = msgid

    if config.text or config.text_only:
        txt_path = outpath + ".txt"
        written = _may_write(run, source, msg, txt_path)
        if written:
            with open(txt_path, 'wb') as f:
                f.write(msg.raw)
        if config.text_only:
            if not written:
                return None
            result = ConversionResult(True, source, msgid, txt_path)
            run.results.append(result)
            return result

    pdf_path = outpath + ".pdf"
    if not _may_write(run, source, msg, pdf_path):
        return None

    if not render_message(run, index, msg, pdf_path):
        return run.fail(source, "no plain text body", msg, pdf_path)

    result = ConversionResult(True, source, msgid, pdf_path)
    run.results.append(result)
    return result


def convert_folder(
    run: ConversionRun,
    path: str,
    progress_callback: Optional[Callable[[int, int, str], bool]] = None
) -> bool:
    """
    Convert all selected messages of one mail folder.

    Args:
        run: The conversion run
        path: Path of the mail folder
        progress_callback: Optional callback(current, total, name) -> continue

    Returns:
        False if the callback asked to stop
    """
    config = run.config
    try:
        folder = MailFolder.open(path)
    except FolderOpenError as e:
        logger.error(f"{e}, skipping")
        run.fail(path, str(e))
        return True

    index = run.registry.get(folder, config.locale, config.timezone)
    logger.info(f"Processing folder {path} ({index.get_box_count()} messages)")

    if config.output_dir:
        output_folder = config.output_dir
    else:
        output_folder = os.path.dirname(os.path.abspath(path))
    logger.debug(f"Output dir: {output_folder}")

    # TODO: check uniqueness over the selected messages only, and over all folders of the run
    if not index.is_unique(run.filename_program):
        duplicates = ', '.join(sorted(index.duplicates(run.filename_program)))
        if config.force:
            logger.warning(f"Filename format {config.filename_format} is not unique "
                           f"in folder {path}: {duplicates}")
        else:
            logger.error(f"Filename format {config.filename_format} is not unique "
                         f"in folder {path}: {duplicates}")
            run.fail(path, "filename format not unique")
            return True

    messages = index.get_messages(run.selector)
    for i, msg in enumerate(messages):
        if progress_callback:
            if not progress_callback(i, len(messages), msg.message_id or str(msg.key)):
                return False
        convert_message(run, index, msg, output_folder)

    if progress_callback:
        progress_callback(len(messages), len(messages), "Complete")
    return True


def convert_batch(
    folders: List[str],
    config: Optional[ConversionConfig] = None,
    progress_callback: Optional[Callable[[int, int, str], bool]] = None,
    confirm: Callable[[str], bool] = ask_confirmation
) -> BatchConversionResult:
    """
    Convert every message of the given mail folders to PDF.

    Args:
        folders: Paths of mbox files, Maildirs or directories of .eml files
        config: Optional configuration
        progress_callback: Optional callback(current, total, name) -> continue
                          Return False to cancel
        confirm: Asks whether an existing file may be overwritten

    Returns:
        BatchConversionResult; its failed count is the number of
        recoverable failures

    Raises:
        See prepare_run; OSError when an output file cannot be written
    """
    config = config or ConversionConfig()
    run = prepare_run(config, confirm)

    cancelled = False
    for path in folders:
        if not convert_folder(run, path, progress_callback):
            cancelled = True
            break

    successful = sum(1 for r in run.results if r.success)
    return BatchConversionResult(
        total_files=len(run.results),
        successful=successful,
        failed=run.failures,
        results=run.results,
        output_folder=config.output_dir,
        cancelled=cancelled,
    )
