"""
Mail folder to PDF Converter

Prints every message of a mail folder (mbox, Maildir or a directory of
.eml files) to its own PDF file, with selectable mail headers, attachment
listings, word-wrapped body text and templated page headers and footers.
Output filenames come from templates like '%Y-%m-%d_@3n_@F_mail'.

Usage:
    # As a module
    python -m mbox_to_pdf -o ./pdfs ~/Mail/archive

    # Installed script
    mbox-to-pdf -A -H X-Mailer inbox.mbox
"""

__version__ = "1.1.2"

from .config import ConversionConfig
from .converter import (
    convert_batch,
    convert_folder,
    convert_message,
    ConversionResult,
    BatchConversionResult,
)
from .folder_index import FolderIndex, FolderIndexRegistry
from .format import FormatError, FormatProgram, PageContext, compile_format
from .message import MailFolder, MailMessage, MessageContext
from .pdf_document import PdfDocument
from .cli import main

__all__ = [
    "ConversionConfig",
    "convert_batch",
    "convert_folder",
    "convert_message",
    "ConversionResult",
    "BatchConversionResult",
    "FolderIndex",
    "FolderIndexRegistry",
    "FormatError",
    "FormatProgram",
    "PageContext",
    "compile_format",
    "MailFolder",
    "MailMessage",
    "MessageContext",
    "PdfDocument",
    "main",
    "__version__",
]
