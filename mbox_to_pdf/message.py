"""Mail folder reading and the message data exposed to templates and documents."""

import logging
import mailbox
import os
from dataclasses import dataclass, field
from datetime import datetime, timezone, tzinfo
from email import policy
from email.message import EmailMessage
from email.parser import BytesParser
from email.utils import formataddr, getaddresses, parsedate_to_datetime
from typing import Iterator, List, Optional, Tuple

from .format import FormatProgram, compile_format

logger = logging.getLogger(__name__)


class FolderOpenError(OSError):
    """Raised when a path cannot be read as a mail folder."""


class ContextError(LookupError):
    """Raised when a context cannot supply a requested value."""


@dataclass(frozen=True)
class Address:
    """One entry of an address header: display name and address."""
    phrase: str
    address: str

    @property
    def user(self) -> str:
        return self.address.rpartition('@')[0] if '@' in self.address else self.address

    @property
    def host(self) -> str:
        return self.address.rpartition('@')[2] if '@' in self.address else ''

    @property
    def phrase_or_address(self) -> str:
        return self.phrase or self.address

    def format(self) -> str:
        """Return the address as it would appear in a header."""
        return formataddr((self.phrase, self.address)) if self.phrase else self.address


def parse_address_header(values: List[str]) -> List[Address]:
    """
    Parse the values of an address header into Address entries.

    Handles formats like:
    - "john@example.com"
    - "John Doe <john@example.com>"
    - "John Doe <john@example.com>, Jane <jane@example.com>"

    Args:
        values: Raw header values (a header may occur more than once)

    Returns:
        List of Address objects, in header order
    """
    result = []
    for name, email in getaddresses(values):
        if email or name:
            result.append(Address(name.strip(), email.strip()))
    return result


@dataclass
class MessagePart:
    """Node of the MIME body tree."""
    content_type: str
    is_multipart: bool = False
    disposition: Optional[str] = None
    filename: Optional[str] = None
    parts: List['MessagePart'] = field(default_factory=list)
    source: Optional[EmailMessage] = field(default=None, repr=False, compare=False)

    @classmethod
    def from_email(cls, msg: EmailMessage) -> 'MessagePart':
        disposition = msg.get_content_disposition()
        part = cls(
            content_type=msg.get_content_type(),
            is_multipart=msg.is_multipart(),
            disposition=disposition,
            filename=msg.get_filename(),
            source=msg,
        )
        if part.is_multipart:
            part.parts = [cls.from_email(sub) for sub in msg.iter_parts()]
        return part

    def lines(self) -> List[str]:
        """Decoded text content, split into lines without line ends."""
        if self.source is None or self.is_multipart:
            return []
        try:
            content = self.source.get_content()
        except (LookupError, UnicodeDecodeError) as e:
            logger.warning(f"Cannot decode {self.content_type} part ({e}), using latin-1")
            content = (self.source.get_payload(decode=True) or b'').decode('latin-1')
        if isinstance(content, bytes):
            content = content.decode('latin-1')
        return content.splitlines()


def _as_epoch(value: str) -> Optional[float]:
    try:
        dt = parsedate_to_datetime(value)
    except (TypeError, ValueError, IndexError):
        return None
    if dt is None:
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.timestamp()


def message_timestamp(msg: EmailMessage) -> float:
    """
    Epoch seconds of a message.

    The Date header is used when it parses; otherwise the newest date among
    the Received headers; otherwise 0.
    """
    date = msg.get('Date')
    if date:
        stamp = _as_epoch(str(date))
        if stamp is not None:
            return stamp
    received = []
    for value in msg.get_all('Received', []):
        stamp = _as_epoch(str(value).rpartition(';')[2].strip())
        if stamp is not None:
            received.append(stamp)
    return max(received) if received else 0.0


class MailMessage:
    """
    Read-only view of one message of a folder.

    Exposes the timestamp, headers, address lists, the MIME body tree and
    the raw bytes; nothing else of the parsed message is reachable.
    """

    def __init__(self, raw: bytes, key=None):
        self._raw = raw
        self.key = key
        self._msg = BytesParser(policy=policy.default).parsebytes(raw)
        self._timestamp = message_timestamp(self._msg)
        self._body: Optional[MessagePart] = None

    @property
    def timestamp(self) -> float:
        return self._timestamp

    @property
    def raw(self) -> bytes:
        return self._raw

    def get_header(self, name: str) -> List[str]:
        """All values of a header, in message order."""
        return [str(value) for value in self._msg.get_all(name, [])]

    def addresses(self, name: str) -> List[Address]:
        return parse_address_header(self.get_header(name))

    @property
    def subject(self) -> str:
        values = self.get_header('Subject')
        return values[0] if values else ''

    @property
    def message_id(self) -> str:
        values = self.get_header('Message-ID')
        return values[0].strip().strip('<>') if values else ''

    @property
    def body(self) -> MessagePart:
        if self._body is None:
            self._body = MessagePart.from_email(self._msg)
        return self._body

    def __repr__(self):
        return f"<MailMessage {self.message_id or self.key!r}>"


def find_main_and_attachments(message: MailMessage) -> Tuple[Optional[MessagePart], List[MessagePart]]:
    """
    Split the body tree into the main text part and the attachments.

    Walks the tree depth first. Leaves with an attachment disposition are
    attachments; the first text/plain leaf that is not an attachment is the
    main part. Other leaves seen before the main part are reported.

    Args:
        message: The message to inspect

    Returns:
        Tuple (main part or None, list of attachment parts)
    """
    main = None
    attachments = []

    def walk(part: MessagePart) -> None:
        nonlocal main
        if part.is_multipart:
            for sub in part.parts:
                walk(sub)
            return
        if part.disposition == 'attachment':
            if main is None:
                logger.warning(f"Attachment found before main message, message-id: {message.message_id}")
            attachments.append(part)
        elif main is None:
            if part.content_type == 'text/plain':
                main = part
            elif part.content_type == 'text/html':
                logger.warning(f"HTML part found before plain text, message-id: {message.message_id}")
            elif part.content_type.startswith('text/'):
                logger.warning(f"Unknown text type: {part.content_type} found before plain text, "
                               f"message-id: {message.message_id}")
            else:
                logger.warning(f"Strange mime type: {part.content_type} found before plain text, "
                               f"message-id: {message.message_id}")

    walk(message.body)
    return main, attachments


class MailFolder:
    """
    A mail folder read into memory.

    Supported are mbox files, Maildir directories, directories of .eml
    files and single .eml files.
    """

    def __init__(self, path: str, messages: List[MailMessage]):
        self.path = path
        self.messages = messages

    def __iter__(self) -> Iterator[MailMessage]:
        return iter(self.messages)

    def __len__(self) -> int:
        return len(self.messages)

    def __repr__(self):
        return f"<MailFolder {self.path!r} ({len(self.messages)} messages)>"

    @classmethod
    def open(cls, path: str) -> 'MailFolder':
        """
        Read all messages of a folder.

        Raises:
            FolderOpenError: if the path is not a readable mail folder
        """
        try:
            if os.path.isdir(path):
                if all(os.path.isdir(os.path.join(path, sub)) for sub in ('cur', 'new', 'tmp')):
                    messages = cls._read_mailbox(mailbox.Maildir(path, factory=None, create=False))
                else:
                    messages = cls._read_eml_directory(path)
            elif os.path.isfile(path):
                if path.lower().endswith('.eml'):
                    with open(path, 'rb') as f:
                        messages = [MailMessage(f.read(), key=os.path.basename(path))]
                else:
                    cls._check_mbox(path)
                    messages = cls._read_mailbox(mailbox.mbox(path, factory=None, create=False))
            else:
                raise FolderOpenError(f"No such file or directory: {path}")
        except FolderOpenError:
            raise
        except (OSError, mailbox.Error) as e:
            raise FolderOpenError(f"Could not open mail folder {path}: {e}") from e
        logger.debug(f"Read {len(messages)} messages from {path}")
        return cls(path, messages)

    @staticmethod
    def _check_mbox(path: str) -> None:
        with open(path, 'rb') as f:
            start = f.read(5)
        if start and start != b'From ':
            raise FolderOpenError(f"Not an mbox file: {path}")

    @staticmethod
    def _read_mailbox(box: mailbox.Mailbox) -> List[MailMessage]:
        try:
            return [MailMessage(box.get_bytes(key), key=key) for key in box.iterkeys()]
        finally:
            box.close()

    @staticmethod
    def _read_eml_directory(path: str) -> List[MailMessage]:
        messages = []
        for name in sorted(os.listdir(path)):
            if not name.lower().endswith('.eml'):
                continue
            with open(os.path.join(path, name), 'rb') as f:
                messages.append(MailMessage(f.read(), key=name))
        return messages


class MessageContext:
    """
    A message seen in a given locale and timezone.

    This is what templates are rendered against. Values relative to a
    folder (serial numbers) are not available and raise ContextError.
    """

    def __init__(self, message: MailMessage, locale: Optional[str] = None,
                 tz: Optional[tzinfo] = None):
        self.message = message
        self.locale = locale
        self.tz = tz or timezone.utc

    def get_timestamp(self) -> datetime:
        return datetime.fromtimestamp(self.message.timestamp, self.tz)

    def get_addresses(self, name: str) -> List[Address]:
        return self.message.addresses(name)

    def get_header(self, name: str) -> List[str]:
        return self.message.get_header(name)

    def get_subject(self) -> str:
        return self.message.subject

    def get_message_id(self) -> str:
        return self.message.message_id

    def get_day_serial(self) -> int:
        raise ContextError("day serial needs a folder index")

    def get_day_count(self) -> int:
        raise ContextError("day count needs a folder index")

    def get_max_day_count(self) -> int:
        raise ContextError("day count needs a folder index")

    def get_box_serial(self) -> int:
        raise ContextError("folder serial needs a folder index")

    def get_box_count(self) -> int:
        raise ContextError("folder count needs a folder index")

    def format(self, program) -> str:
        """Render a FormatProgram (or a template string) for this message."""
        if not isinstance(program, FormatProgram):
            program = compile_format(program)
        return program.render(self)


class FolderMessageContext(MessageContext):
    """A message context that also knows the message's place in its folder."""

    def __init__(self, index, message: MailMessage):
        super().__init__(message, index.locale, index.tz)
        self.index = index

    def get_timestamp(self) -> datetime:
        return self.index.get_timestamp(self.message)

    def get_day_serial(self) -> int:
        return self.index.get_day_serial(self.message)

    def get_day_count(self) -> int:
        return self.index.get_day_count(self.message)

    def get_max_day_count(self) -> int:
        return self.index.get_max_day_count()

    def get_box_serial(self) -> int:
        return self.index.get_box_serial(self.message)

    def get_box_count(self) -> int:
        return self.index.get_box_count()

    def format(self, program) -> str:
        if not isinstance(program, FormatProgram):
            program = compile_format(program)
        cached = self.index.format_in_cache(program, self.message)
        if cached is not None:
            return cached
        return program.render(self)
