"""Shared fixtures: messages and folders built from raw RFC 5322 text."""

import mailbox
import os
import tempfile

import pytest

from mbox_to_pdf.message import MailFolder, MailMessage


def make_raw(subject="Hello", sender="Jane Doe <jane@example.com>",
             to="John Smith <john@example.org>", cc=None, bcc=None,
             date="Mon, 02 Mar 2015 10:00:00 +0000", message_id="<hello@example.com>",
             body="Hello world\n", headers=None, content_type='text/plain; charset="utf-8"'):
    lines = []
    if sender:
        lines.append(f"From: {sender}")
    if to:
        lines.append(f"To: {to}")
    if cc:
        lines.append(f"Cc: {cc}")
    if bcc:
        lines.append(f"Bcc: {bcc}")
    if subject is not None:
        lines.append(f"Subject: {subject}")
    if date:
        lines.append(f"Date: {date}")
    if message_id:
        lines.append(f"Message-ID: {message_id}")
    for name, value in (headers or []):
        lines.append(f"{name}: {value}")
    lines.append("MIME-Version: 1.0")
    if content_type:
        lines.append(f"Content-Type: {content_type}")
    return ("\n".join(lines) + "\n\n" + body).encode("utf-8")


# (date, sender, message-id) in folder order; sorted by time they are m1..m7
DAY_FOLDER = [
    ("Mon, 02 Mar 2015 12:00:00 +0000", "Bob <bob@example.com>", "m4"),
    ("Mon, 02 Mar 2015 09:00:00 +0000", "Alice <alice@example.com>", "m1"),
    ("Tue, 03 Mar 2015 08:00:00 +0000", "Carol <carol@example.com>", "m6"),
    ("Mon, 02 Mar 2015 11:00:00 +0000", "Jane Doe <jane@example.com>", "m3"),
    ("Mon, 02 Mar 2015 10:00:00 +0000", "Dave <dave@example.com>", "m2"),
    ("Mon, 02 Mar 2015 13:00:00 +0000", "Erin <erin@example.com>", "m5"),
    ("Tue, 03 Mar 2015 09:30:00 +0000", "Frank <frank@example.com>", "m7"),
]


@pytest.fixture
def raw_message():
    """Factory for raw message bytes."""
    return make_raw


@pytest.fixture
def make_message():
    """Factory for MailMessage objects."""
    def factory(**kwargs):
        return MailMessage(make_raw(**kwargs), key=kwargs.get("message_id"))
    return factory


@pytest.fixture
def day_folder(make_message):
    """Seven messages: five on 2 March 2015, two on 3 March 2015 (UTC)."""
    messages = [
        make_message(date=date, sender=sender, message_id=f"<{msgid}@example.com>",
                     subject=f"Message {msgid}")
        for date, sender, msgid in DAY_FOLDER
    ]
    return MailFolder("day.mbox", messages)


@pytest.fixture
def write_mbox():
    """Write raw messages to an mbox file."""
    def writer(path, raws):
        box = mailbox.mbox(str(path))
        try:
            for raw in raws:
                box.add(raw)
            box.flush()
        finally:
            box.close()
        return str(path)
    return writer


@pytest.fixture
def day_mbox(write_mbox):
    """The day folder written to an mbox file in its own temporary directory."""
    with tempfile.TemporaryDirectory() as tmpdir:
        raws = [
            make_raw(date=date, sender=sender, message_id=f"<{msgid}@example.com>",
                     subject=f"Message {msgid}")
            for date, sender, msgid in DAY_FOLDER
        ]
        yield write_mbox(os.path.join(tmpdir, "day.mbox"), raws)
