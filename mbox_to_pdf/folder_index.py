"""
Per-folder ordering, serial numbers and memoized template evaluations.

A FolderIndex represents one mail folder seen in one locale and timezone.
It sorts the messages by timestamp, numbers them within the folder and
within each calendar day, and can evaluate a FormatProgram for every
message at once, which is how filename templates are checked for
uniqueness before any file is written.

Indexes are handed out by a FolderIndexRegistry, which keeps one index per
(folder, locale, timezone). Neither class is thread-safe: a driver that
converts folders concurrently must hold a lock around
FolderIndexRegistry.get and FolderIndex.cache_format.

Index contents are fixed once built; later changes to the folder are not
picked up.
"""

import logging
from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, Dict, List, Optional, Tuple

from .format import FormatProgram
from .message import FolderMessageContext, MailFolder, MailMessage
from .utils import resolve_timezone

logger = logging.getLogger(__name__)

Predicate = Callable[[MailMessage, 'FolderIndex'], bool]


@dataclass
class FormatCache:
    """Evaluation of one FormatProgram for all messages of a folder."""
    strings: Dict[MailMessage, str] = field(default_factory=dict)
    messages: Dict[str, List[MailMessage]] = field(default_factory=dict)
    duplicates: Dict[str, int] = field(default_factory=dict)
    # False when the program has page codes: strings then hold sentinels
    exact: bool = True


class FolderIndex:
    """Ordering and serial numbers of the messages of one folder."""

    def __init__(self, folder: MailFolder, locale: Optional[str] = None,
                 timezone: Optional[str] = None):
        self.folder = folder
        self.locale = locale
        self.tz_name, self.tz = resolve_timezone(timezone)
        self._messages: List[MailMessage] = []
        self._timestamps: Dict[MailMessage, datetime] = {}
        self._box_serials: Dict[MailMessage, int] = {}
        self._day_serials: Dict[MailMessage, int] = {}
        self._day_counts: Dict[MailMessage, int] = {}
        self._max_day_count = 0
        self._caches: Dict[FormatProgram, FormatCache] = {}
        self._build()

    @property
    def key(self) -> Tuple[int, Optional[str], str]:
        return (id(self.folder), self.locale, self.tz_name)

    def _build(self) -> None:
        # sorted() is stable, so equal timestamps keep folder order
        self._messages = sorted(self.folder, key=lambda msg: msg.timestamp)
        days: Dict[MailMessage, str] = {}
        running: Counter = Counter()
        for serial, msg in enumerate(self._messages, start=1):
            stamp = datetime.fromtimestamp(msg.timestamp, self.tz)
            day = stamp.strftime('%Y%m%d')
            running[day] += 1
            self._timestamps[msg] = stamp
            self._box_serials[msg] = serial
            self._day_serials[msg] = running[day]
            days[msg] = day
        for msg in self._messages:
            self._day_counts[msg] = running[days[msg]]
        self._max_day_count = max(running.values(), default=0)
        logger.debug(f"Indexed {len(self._messages)} messages of {self.folder.path} "
                     f"in {len(running)} days ({self.tz_name})")

    def get_messages(self, predicate: Optional[Predicate] = None) -> List[MailMessage]:
        """Messages in timestamp order, optionally filtered by predicate(msg, index)."""
        if predicate is None:
            return list(self._messages)
        return [msg for msg in self._messages if predicate(msg, self)]

    def has_message(self, msg: MailMessage, predicate: Optional[Predicate] = None) -> bool:
        if msg not in self._box_serials:
            return False
        return predicate is None or bool(predicate(msg, self))

    def get_timestamp(self, msg: MailMessage) -> datetime:
        return self._timestamps[msg]

    def get_day_serial(self, msg: MailMessage) -> int:
        return self._day_serials[msg]

    def get_day_count(self, msg: MailMessage) -> int:
        return self._day_counts[msg]

    def get_max_day_count(self) -> int:
        return self._max_day_count

    def get_box_serial(self, msg: MailMessage) -> int:
        return self._box_serials[msg]

    def get_box_count(self) -> int:
        return len(self._messages)

    def context(self, msg: MailMessage) -> FolderMessageContext:
        return FolderMessageContext(self, msg)

    def cache_format(self, program: FormatProgram) -> FormatCache:
        """Evaluate a program for every message, unless already done."""
        if program in self._caches:
            return self._caches[program]
        cache = FormatCache(exact=not program.has_page_number)
        for msg in self._messages:
            text = program.render(self.context(msg))
            cache.strings[msg] = text
            cache.messages.setdefault(text, []).append(msg)
        cache.duplicates = {
            text: len(msgs) - 1 for text, msgs in cache.messages.items() if len(msgs) > 1
        }
        self._caches[program] = cache
        return cache

    def is_unique(self, program: FormatProgram) -> bool:
        """True when the program renders a different string for every message."""
        return not self.cache_format(program).duplicates

    def duplicates(self, program: FormatProgram) -> Dict[str, int]:
        """Rendered strings that occur more than once, with their extra count."""
        return dict(self.cache_format(program).duplicates)

    def format_in_cache(self, program: FormatProgram, msg: MailMessage) -> Optional[str]:
        """The cached string for msg, or None when not cached or not exact."""
        cache = self._caches.get(program)
        if cache is None or not cache.exact:
            return None
        return cache.strings.get(msg)

    def __repr__(self):
        return f"<FolderIndex {self.folder.path!r} locale={self.locale} tz={self.tz_name}>"


class FolderIndexRegistry:
    """Hands out one FolderIndex per (folder, locale, timezone)."""

    def __init__(self):
        self._indexes: Dict[Tuple[int, Optional[str], str], FolderIndex] = {}

    def _key(self, folder: MailFolder, locale: Optional[str],
             timezone: Optional[str]) -> Tuple[int, Optional[str], str]:
        tz_name, _tz = resolve_timezone(timezone)
        return (id(folder), locale, tz_name)

    def get(self, folder: MailFolder, locale: Optional[str] = None,
            timezone: Optional[str] = None) -> FolderIndex:
        """Return the index for the key, building it on first request."""
        key = self._key(folder, locale, timezone)
        index = self._indexes.get(key)
        if index is None:
            index = FolderIndex(folder, locale, timezone)
            self._indexes[key] = index
        return index

    def __len__(self) -> int:
        return len(self._indexes)
