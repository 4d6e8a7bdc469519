"""Tests for PDF document pagination and page headers/footers."""

import logging
import os
import tempfile
from datetime import timezone

import pytest
from reportlab.lib.pagesizes import A4, landscape

from mbox_to_pdf.format import FormatError, compile_format
from mbox_to_pdf.message import MessageContext
from mbox_to_pdf.pdf_document import (
    LayoutError,
    PdfDocument,
    SequenceError,
    Stage,
    parse_paper_size,
)


def all_texts(doc):
    return [text for page in range(doc.page_count) for text in doc.surface.page_texts(page)]


def lines_until_second_page(path):
    """Number of body lines that starts a second page."""
    doc = PdfDocument(path)
    doc.print_header("Subject", "Filling")
    count = 0
    while doc.page_count < 2:
        doc.print_line(f"line {count}")
        count += 1
    return count


class TestPaperSize:
    """Tests for parse_paper_size."""

    def test_names(self):
        """Test reportlab names in any case and landscape A4."""
        assert parse_paper_size("A4") == pytest.approx(A4)
        assert parse_paper_size("a4") == pytest.approx(A4)
        assert parse_paper_size("A4L") == pytest.approx(landscape(A4))
        assert parse_paper_size("letter") == pytest.approx((612, 792))

    def test_dimensions(self):
        """Test explicit sizes with and without units."""
        assert parse_paper_size("595,842") == (595.0, 842.0)
        assert parse_paper_size("210mmx297mm") == pytest.approx(A4, abs=0.01)
        assert parse_paper_size("8.5inx11in") == pytest.approx((612, 792))
        assert parse_paper_size((300, 400)) == (300.0, 400.0)

    def test_invalid(self):
        """Test unrecognized sizes."""
        assert parse_paper_size("bogus") is None
        assert parse_paper_size("10x") is None
        assert parse_paper_size((0, 100)) is None


class TestConstruction:
    """Tests for file name handling and layout validation."""

    def test_pdf_extension_appended(self, caplog):
        """Test that .pdf is appended with a warning."""
        with tempfile.TemporaryDirectory() as tmpdir:
            with caplog.at_level(logging.WARNING):
                doc = PdfDocument(os.path.join(tmpdir, "message"))
            assert doc.filename.endswith("message.pdf")
            assert "Appending .pdf" in caplog.text
            assert os.path.exists(doc.filename)

    def test_filename_template(self, make_message):
        """Test a filename given as a template."""
        context = MessageContext(make_message(subject="Minutes"), tz=timezone.utc)
        with tempfile.TemporaryDirectory() as tmpdir:
            program = compile_format(os.path.join(tmpdir, "%Y-@j"))
            doc = PdfDocument(program, context)
            assert os.path.basename(doc.filename) == "2015-Minutes.pdf"

    def test_filename_template_with_page_codes(self):
        """Test that page codes are not allowed in file names."""
        with pytest.raises(FormatError):
            PdfDocument(compile_format("page-@p"))

    def test_unwritable_file(self):
        """Test that an output file that cannot be created fails early."""
        with tempfile.TemporaryDirectory() as tmpdir:
            with pytest.raises(OSError):
                PdfDocument(os.path.join(tmpdir, "missing", "out.pdf"))

    def test_unknown_paper_size(self):
        """Test that an unknown paper size is rejected."""
        with tempfile.TemporaryDirectory() as tmpdir:
            with pytest.raises(LayoutError):
                PdfDocument(os.path.join(tmpdir, "out.pdf"), paper_size="bogus")

    def test_no_room_for_body(self):
        """Test a page too small for header box and one body line."""
        with tempfile.TemporaryDirectory() as tmpdir:
            with pytest.raises(LayoutError, match="no room"):
                PdfDocument(os.path.join(tmpdir, "out.pdf"), paper_size="300x60",
                            head_right=None)

    def test_colliding_boxes(self):
        """Test that too wide header boxes are rejected."""
        with tempfile.TemporaryDirectory() as tmpdir:
            with pytest.raises(LayoutError, match="collide"):
                PdfDocument(os.path.join(tmpdir, "out.pdf"), head_left="x" * 40)

    def test_layout(self):
        """Test the body band on A4 with only a page header."""
        with tempfile.TemporaryDirectory() as tmpdir:
            doc = PdfDocument(os.path.join(tmpdir, "out.pdf"))
            layout = doc.layout
            assert layout.has_head and not layout.has_foot
            assert layout.art_left == 36
            assert layout.body_bottom_y == 30
            assert layout.body_top_y == pytest.approx(A4[1] - 30 - 23 - 16 - 10)


class TestSequence:
    """Tests for the order of document operations."""

    def test_stages(self):
        """Test the normal order of operations."""
        with tempfile.TemporaryDirectory() as tmpdir:
            doc = PdfDocument(os.path.join(tmpdir, "out.pdf"))
            assert doc.stage == Stage.START
            doc.print_header("From", "jane@example.com")
            assert doc.stage == Stage.HEADERS
            doc.print_attachments("report.pdf")
            assert doc.stage == Stage.ATTACHMENTS_PRE
            doc.print_lines("Hello", "world")
            assert doc.stage == Stage.BODY
            doc.close()
            assert doc.stage == Stage.CLOSED

    def test_header_after_body(self):
        """Test that headers cannot follow the body."""
        with tempfile.TemporaryDirectory() as tmpdir:
            doc = PdfDocument(os.path.join(tmpdir, "out.pdf"))
            doc.print_line("body")
            with pytest.raises(SequenceError):
                doc.print_header("From", "x")

    def test_attachments_before_headers(self):
        """Test that the attachment listing needs the headers first."""
        with tempfile.TemporaryDirectory() as tmpdir:
            doc = PdfDocument(os.path.join(tmpdir, "out.pdf"))
            with pytest.raises(SequenceError):
                doc.print_attachments("a.txt")

    def test_line_after_post_attachments(self):
        """Test that the body cannot continue after the attachment listing."""
        with tempfile.TemporaryDirectory() as tmpdir:
            doc = PdfDocument(os.path.join(tmpdir, "out.pdf"))
            doc.print_header("From", "x")
            doc.print_line("body")
            doc.print_attachments("a.txt")
            with pytest.raises(SequenceError):
                doc.print_line("more")

    def test_attachments_once(self, caplog):
        """Test that a second attachment listing is ignored with a warning."""
        with tempfile.TemporaryDirectory() as tmpdir:
            doc = PdfDocument(os.path.join(tmpdir, "out.pdf"))
            doc.print_header("From", "x")
            doc.print_attachments("first.pdf")
            doc.print_line("body")
            with caplog.at_level(logging.WARNING):
                doc.print_attachments("second.pdf")
            assert "only print them once" in caplog.text
            doc.print_line("still body")
            doc.close()
            texts = all_texts(doc)
            assert texts.count("Attachments: ") == 1
            assert "first.pdf" in texts
            assert "second.pdf" not in texts

    def test_close_twice(self):
        """Test that a document can only be closed once."""
        with tempfile.TemporaryDirectory() as tmpdir:
            doc = PdfDocument(os.path.join(tmpdir, "out.pdf"))
            doc.print_line("body")
            doc.close()
            with pytest.raises(SequenceError):
                doc.close()

    def test_close_without_body(self, caplog):
        """Test that closing before the body warns but writes the file."""
        with tempfile.TemporaryDirectory() as tmpdir:
            doc = PdfDocument(os.path.join(tmpdir, "out.pdf"))
            doc.print_header("From", "x")
            with caplog.at_level(logging.WARNING):
                doc.close()
            assert "closed before writing body" in caplog.text
            with open(doc.filename, "rb") as f:
                assert f.read(5) == b"%PDF-"


class TestContent:
    """Tests for what ends up on the pages."""

    def test_header_values(self):
        """Test that all values but the last get a trailing comma."""
        with tempfile.TemporaryDirectory() as tmpdir:
            doc = PdfDocument(os.path.join(tmpdir, "out.pdf"))
            doc.print_header("To", "a@example.com", "b@example.com", "c@example.com")
            doc.print_header("Cc")
            texts = doc.surface.page_texts(0)
            assert texts[:4] == ["To: ", "a@example.com,", "b@example.com,", "c@example.com"]
            assert "Cc: " not in texts

    def test_body_prefixes(self):
        """Test that quote prefixes are drawn and From escapes undone."""
        with tempfile.TemporaryDirectory() as tmpdir:
            doc = PdfDocument(os.path.join(tmpdir, "out.pdf"))
            doc.print_lines("> quoted", ">From the mailbox", "\tindented\n")
            texts = doc.surface.page_texts(0)
            assert "> quoted" in texts
            assert "From the mailbox" in texts
            assert "\tindented" in texts

    def test_page_numbers(self):
        """Test that page numbers are resolved after all pages exist."""
        with tempfile.TemporaryDirectory() as tmpdir:
            per_page = lines_until_second_page(os.path.join(tmpdir, "probe.pdf"))
            doc = PdfDocument(os.path.join(tmpdir, "out.pdf"), head_right="(@p/@P)")
            doc.print_header("Subject", "Filling")
            doc.print_lines(*[f"line {i}" for i in range(per_page * 2 + 5)])
            doc.close()
            assert doc.page_count == 3
            for page in range(3):
                assert f"({page + 1}/3)" in doc.surface.page_texts(page)
            assert "(998/999)" not in all_texts(doc)

    def test_no_trailing_empty_page(self):
        """Test that a full last page does not add an empty one."""
        with tempfile.TemporaryDirectory() as tmpdir:
            per_page = lines_until_second_page(os.path.join(tmpdir, "probe.pdf"))
            doc = PdfDocument(os.path.join(tmpdir, "out.pdf"))
            doc.print_header("Subject", "Filling")
            doc.print_lines(*[f"line {i}" for i in range(per_page - 1)])
            doc.close()
            assert doc.page_count == 1

    def test_footer(self, make_message):
        """Test message dependent footer texts and boxes."""
        context = MessageContext(make_message(subject="Minutes"), tz=timezone.utc)
        with tempfile.TemporaryDirectory() as tmpdir:
            doc = PdfDocument(os.path.join(tmpdir, "out.pdf"), context,
                              head_right=None, foot_center="@j", foot_right="@p")
            doc.print_line("body")
            doc.close()
            texts = doc.surface.page_texts(0)
            assert "Minutes" in texts
            assert "1" in texts
            assert len(doc.surface.page_rectangles(0)) == 2
            assert doc.layout.has_foot and not doc.layout.has_head

    def test_saved_file(self):
        """Test that the saved file is a PDF."""
        with tempfile.TemporaryDirectory() as tmpdir:
            doc = PdfDocument(os.path.join(tmpdir, "out.pdf"))
            doc.print_header("Subject", "Café ☃")
            doc.print_line("body")
            doc.close()
            with open(doc.filename, "rb") as f:
                assert f.read(5) == b"%PDF-"
