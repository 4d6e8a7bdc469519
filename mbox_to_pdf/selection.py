"""Alias files, message selection and Bcc filtering."""

import logging
import operator
from datetime import date
from typing import Callable, Dict, Iterable, List, Optional

from dateutil.parser import isoparse

from .message import MailMessage

logger = logging.getLogger(__name__)

DATE_KEYS = {'date': operator.eq, 'before': operator.le, 'after': operator.ge}
ADDRESS_KEYS = {
    'from': ('from',),
    'to': ('to',),
    'cc': ('cc',),
    'bcc': ('bcc',),
    'dest': ('to', 'cc'),
    'bdest': ('to', 'cc', 'bcc'),
}

Aliases = Dict[str, List[str]]


def read_alias_file(path: str) -> Aliases:
    """
    Read a mail alias file.

    Lines have the form 'alias KEY addr1, addr2'; a backslash at the end
    of a line continues it on the next. Other lines are ignored, and a
    later definition of a key replaces an earlier one.

    Args:
        path: Path of the alias file

    Returns:
        Dict mapping alias names to address lists

    Raises:
        OSError: if the file cannot be read
    """
    with open(path, 'r', encoding='utf-8') as f:
        content = f.read()
    aliases: Aliases = {}
    for line in content.replace('\\\n', '').split('\n'):
        words = line.split(None, 2)
        if len(words) < 2 or words[0] != 'alias':
            continue
        key = words[1]
        addresses = words[2] if len(words) > 2 else ''
        aliases[key] = [addr.strip() for addr in addresses.split(',') if addr.strip()]
    logger.debug(f"Read {len(aliases)} aliases from {path}")
    return aliases


def expand_alias(name: str, aliases: Optional[Aliases] = None) -> List[str]:
    """The addresses of an alias, or the name itself when it is no alias."""
    if aliases and name in aliases:
        return list(aliases[name])
    return [name]


def _message_addresses(msg: MailMessage, fields: Iterable[str]) -> List[str]:
    return [addr.address.lower() for name in fields for addr in msg.addresses(name)]


def _date_criterion(key: str, value: str) -> Callable:
    wanted = isoparse(value)
    compare = DATE_KEYS[key]

    def criterion(msg: MailMessage, index) -> bool:
        day: date = (wanted.astimezone(index.tz) if wanted.tzinfo else wanted).date()
        return compare(index.get_timestamp(msg).date(), day)

    return criterion


def _address_criterion(key: str, value: str, aliases: Optional[Aliases]) -> Callable:
    wanted = {addr.lower() for addr in expand_alias(value, aliases)}
    fields = ADDRESS_KEYS[key]

    def criterion(msg: MailMessage, index) -> bool:
        return any(addr in wanted for addr in _message_addresses(msg, fields))

    return criterion


def build_selector(select: Dict[str, str], aliases: Optional[Aliases] = None) -> Optional[Callable]:
    """
    Build a predicate(message, index) from --select criteria.

    Keys 'date', 'before' and 'after' compare the day of the message, in the
    timezone of the index, with an ISO 8601 date. Keys 'from', 'to', 'cc',
    'bcc', 'dest' (to and cc) and 'bdest' (to, cc and bcc) match when one of
    the addresses of the alias (or the address itself) occurs in the header.
    All criteria must hold.

    Args:
        select: Criteria, key -> value
        aliases: Alias table for address values

    Returns:
        The predicate, or None when there are no usable criteria

    Raises:
        ValueError: if a date value is not an ISO 8601 date
    """
    criteria = []
    for key, value in select.items():
        if key in DATE_KEYS:
            criteria.append(_date_criterion(key, value))
        elif key in ADDRESS_KEYS:
            criteria.append(_address_criterion(key, value, aliases))
        else:
            logger.warning(f"Option --select: key {key} not recognized, ignored")
    if not criteria:
        return None

    def selector(msg: MailMessage, index) -> bool:
        return all(criterion(msg, index) for criterion in criteria)

    return selector


def build_bcc_filter(specs: List[str], aliases: Optional[Aliases] = None) -> Callable[[str], bool]:
    """
    Build the filter deciding which Bcc addresses are printed.

    Each spec is a comma separated list processed left to right: an empty
    item or 'ALL' prints every address, 'NONE' prints none, an address or
    alias adds it, '~address' removes it. 'ALL' and 'NONE' reset earlier
    items.

    Returns:
        Function address -> bool
    """
    default = False
    explicit: Dict[str, bool] = {}
    for spec in specs:
        for item in spec.split(','):
            item = item.strip()
            if item in ('', 'ALL'):
                explicit.clear()
                default = True
            elif item == 'NONE':
                explicit.clear()
                default = False
            else:
                include = not item.startswith('~')
                for addr in expand_alias(item.lstrip('~'), aliases):
                    explicit[addr.lower()] = include

    def bcc_filter(address: str) -> bool:
        return explicit.get(address.lower(), default)

    return bcc_filter
