"""Configuration management for mail folder to PDF conversion."""

import json
import logging
from dataclasses import dataclass, field, asdict
from typing import Dict, List, Optional, Tuple
from pathlib import Path

logger = logging.getLogger(__name__)

# Default config file location
CONFIG_PATH = Path.home() / ".mbox_to_pdf_config.json"

DEFAULT_FILENAME_FORMAT = '%Y-%m-%d_@3n_@F_mail'
DEFAULT_HEAD_LEFT = '%d %B %Y, %H:%M:%S'
DEFAULT_HEAD_RIGHT = '(@p/@P)'

# Attachment listing position
ATTACHMENTS_NONE = 0
ATTACHMENTS_BEFORE_BODY = 1
ATTACHMENTS_AFTER_BODY = 2


@dataclass
class ConversionConfig:
    """Configuration options for mail folder to PDF conversion."""

    # Output naming and page decoration (templates)
    filename_format: str = DEFAULT_FILENAME_FORMAT
    head_left: Optional[str] = DEFAULT_HEAD_LEFT
    head_center: Optional[str] = None
    head_right: Optional[str] = DEFAULT_HEAD_RIGHT
    foot_left: Optional[str] = None
    foot_center: Optional[str] = None
    foot_right: Optional[str] = None

    # Page settings
    paper_size: str = "A4"
    repeat_quotes: bool = False

    # Mail headers to print
    attachments: int = ATTACHMENTS_NONE
    bcc: List[str] = field(default_factory=list)
    headers: List[str] = field(default_factory=list)
    message_id: bool = False

    # Output settings
    output_dir: Optional[str] = None
    force: bool = False
    interactive: bool = False
    text: bool = False
    text_only: bool = False

    # Localization
    locale: Optional[str] = None
    timezone: Optional[str] = None

    # Selection
    select: Dict[str, str] = field(default_factory=dict)
    alias_file: Optional[str] = None

    # Verbosity
    quiet: int = 0
    verbose: int = 0

    @classmethod
    def load(cls, path: Optional[Path] = None) -> "ConversionConfig":
        """
        Load configuration from file.

        Args:
            path: Optional path to config file. Uses default if not specified.

        Returns:
            ConversionConfig instance
        """
        config_path = Path(path) if path else CONFIG_PATH

        if config_path.exists():
            try:
                with open(config_path, 'r') as f:
                    data = json.load(f)
                return cls(**{k: v for k, v in data.items() if k in cls.__dataclass_fields__})
            except (json.JSONDecodeError, TypeError) as e:
                # Return defaults if config is corrupted
                logger.warning(f"Ignoring corrupt config file {config_path}: {e}")
                return cls()

        return cls()

    def save(self, path: Optional[Path] = None) -> None:
        """
        Save configuration to file.

        Args:
            path: Optional path to config file. Uses default if not specified.
        """
        config_path = Path(path) if path else CONFIG_PATH

        with open(config_path, 'w') as f:
            json.dump(asdict(self), f, indent=2)

    @property
    def print_bcc(self) -> bool:
        """Whether a Bcc header line is printed at all."""
        requested = {h.lower() for h in self.headers}
        return bool(self.bcc) or 'bcc' in requested or 'all' in requested

    def get_header_names(self) -> List[Tuple[str, str]]:
        """
        Get the headers printed after From, To, Cc and Bcc.

        Returns:
            Ordered list of (lower case name, display spelling)
        """
        requested = {h.lower() for h in self.headers}
        names = [('subject', 'Subject'), ('date', 'Date')]
        if self.message_id or 'message-id' in requested or 'all' in requested:
            names.append(('message-id', 'Message-ID'))
        included = {'from', 'to', 'cc', 'bcc'} | {key for key, _ in names}

        for header in self.headers:
            key = header.lower()
            if key in ('bcc', 'message-id'):
                continue
            if key in included:
                logger.warning(f"Header {key} already included, ignored")
                continue
            if key == 'all':
                for known in sorted(KNOWN_HEADERS):
                    if known not in included:
                        names.append((known, KNOWN_HEADERS[known]))
                        included.add(known)
                continue
            if key in KNOWN_HEADERS:
                # A header given in lower case gets the standard spelling
                if header == key:
                    display = KNOWN_HEADERS[key]
                else:
                    if header != KNOWN_HEADERS[key]:
                        logger.warning(f"Header {header} overrides standard spelling {KNOWN_HEADERS[key]}")
                    display = header
            else:
                logger.warning(f"Unknown header: {key}")
                display = header
            names.append((key, display))
            included.add(key)
        return names


# Headers with their standard spelling, keyed by lower case name
KNOWN_HEADERS = {
    'archived-at': 'Archived-At',
    'authentication-results': 'Authentication-Results',
    'auto-submitted': 'Auto-Submitted',
    'bcc': 'Bcc',
    'cc': 'Cc',
    'content-disposition': 'Content-Disposition',
    'content-language': 'Content-Language',
    'content-length': 'Content-Length',
    'content-transfer-encoding': 'Content-Transfer-Encoding',
    'content-type': 'Content-Type',
    'date': 'Date',
    'dkim-signature': 'DKIM-Signature',
    'domainkey-signature': 'DomainKey-Signature',
    'from': 'From',
    'importance': 'Importance',
    'in-reply-to': 'In-Reply-To',
    'lines': 'Lines',
    'message-id': 'Message-ID',
    'mime-version': 'MIME-Version',
    'organization': 'Organization',
    'precedence': 'Precedence',
    'received': 'Received',
    'received-spf': 'Received-SPF',
    'references': 'References',
    'reply-to': 'Reply-To',
    'return-path': 'Return-Path',
    'sender': 'Sender',
    'status': 'Status',
    'subject': 'Subject',
    'thread-index': 'Thread-Index',
    'to': 'To',
    'user-agent': 'User-Agent',
    'x-mailer': 'X-Mailer',
    'x-mimeole': 'X-MimeOLE',
    'x-ms-tnef-correlator': 'X-MS-TNEF-Correlator',
    'x-originalarrivaltime': 'X-OriginalArrivalTime',
    'x-original-to': 'X-Original-To',
    'x-originating-ip': 'X-Originating-IP',
    'x-priority': 'X-Priority',
    'x-sourceip': 'X-SourceIP',
    'x-spam-level': 'X-Spam-Level',
    'x-spam-score': 'X-Spam-Score',
    'x-spam-status': 'X-Spam-Status',
    'x-status': 'X-Status',
}

# Common paper sizes (any reportlab page size name is accepted)
PAPER_SIZES = ["A4", "A4L", "A3", "A5", "letter", "legal"]
