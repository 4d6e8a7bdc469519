"""Tests for folder conversion runs."""

import logging
import os
import tempfile

import pytest

from mbox_to_pdf.config import ATTACHMENTS_AFTER_BODY, ConversionConfig
from mbox_to_pdf import converter
from mbox_to_pdf.converter import convert_batch, prepare_run, render_message
from mbox_to_pdf.format import FormatError
from mbox_to_pdf.message import MailFolder
from mbox_to_pdf.pdf_document import LayoutError, PdfDocument


EXPECTED_PDFS = sorted([
    "2015-03-02_1_Alice_mail.pdf",
    "2015-03-02_2_Dave_mail.pdf",
    "2015-03-02_3_Jane_Doe_mail.pdf",
    "2015-03-02_4_Bob_mail.pdf",
    "2015-03-02_5_Erin_mail.pdf",
    "2015-03-03_1_Carol_mail.pdf",
    "2015-03-03_2_Frank_mail.pdf",
])


def output_files(folder, suffix):
    return sorted(name for name in os.listdir(folder) if name.endswith(suffix))


def never_asked(question):
    raise AssertionError(f"unexpected question: {question}")


class TestConvertBatch:
    """Tests for convert_batch on a single folder."""

    def test_default_names(self, day_mbox):
        """Test that every message gets its own PDF next to the folder."""
        result = convert_batch([day_mbox], ConversionConfig(timezone="UTC"), confirm=never_asked)
        assert (result.total_files, result.successful, result.failed) == (7, 7, 0)
        folder = os.path.dirname(day_mbox)
        assert output_files(folder, ".pdf") == EXPECTED_PDFS
        with open(os.path.join(folder, "2015-03-02_3_Jane_Doe_mail.pdf"), "rb") as f:
            assert f.read(5) == b"%PDF-"

    def test_output_dir(self, day_mbox):
        """Test writing into a given output folder."""
        with tempfile.TemporaryDirectory() as outdir:
            config = ConversionConfig(timezone="UTC", output_dir=outdir)
            result = convert_batch([day_mbox], config)
            assert result.output_folder == outdir
            assert output_files(outdir, ".pdf") == EXPECTED_PDFS

    def test_result_details(self, day_mbox):
        """Test the per-message results."""
        result = convert_batch([day_mbox], ConversionConfig(timezone="UTC"))
        jane = [r for r in result.results if r.message_id == "m3@example.com"][0]
        assert jane.success
        assert jane.source_file == day_mbox
        assert os.path.basename(jane.output_path) == "2015-03-02_3_Jane_Doe_mail.pdf"

    def test_selection(self, day_mbox):
        """Test that only selected messages are converted, with folder wide serials."""
        config = ConversionConfig(timezone="UTC", select={"date": "2015-03-03"})
        result = convert_batch([day_mbox], config)
        assert result.successful == 2
        assert output_files(os.path.dirname(day_mbox), ".pdf") == [
            "2015-03-03_1_Carol_mail.pdf",
            "2015-03-03_2_Frank_mail.pdf",
        ]

    def test_headers_and_attachments_options(self, day_mbox):
        """Test a run with extra headers, Bcc and attachment listing."""
        config = ConversionConfig(timezone="UTC", headers=["X-Mailer", "ALL"],
                                  bcc=["ALL"], message_id=True,
                                  attachments=ATTACHMENTS_AFTER_BODY,
                                  foot_center="@j", foot_right="@*o/@o")
        result = convert_batch([day_mbox], config)
        assert result.successful == 7

    def test_missing_folder(self, day_mbox, caplog):
        """Test that an unreadable folder is counted and the run goes on."""
        missing = os.path.join(os.path.dirname(day_mbox), "missing.mbox")
        with caplog.at_level(logging.ERROR):
            result = convert_batch([missing, day_mbox], ConversionConfig(timezone="UTC"))
        assert result.failed == 1
        assert result.successful == 7
        assert "missing.mbox" in caplog.text

    def test_cancel(self, day_mbox):
        """Test that the progress callback can stop the run."""
        calls = []

        def progress(current, total, name):
            calls.append(current)
            return current < 2

        result = convert_batch([day_mbox], ConversionConfig(timezone="UTC"), progress)
        assert result.cancelled
        assert result.successful == 2
        assert calls == [0, 1, 2]


class TestUniqueness:
    """Tests for filename templates that do not tell messages apart."""

    def test_not_unique_skips_folder(self, day_mbox, caplog):
        """Test that a non-unique template skips the folder."""
        config = ConversionConfig(timezone="UTC", filename_format="%Y-%m-%d")
        with caplog.at_level(logging.ERROR):
            result = convert_batch([day_mbox], config)
        assert (result.successful, result.failed) == (0, 1)
        assert output_files(os.path.dirname(day_mbox), ".pdf") == []
        assert "not unique" in caplog.text

    def test_not_unique_forced(self, day_mbox):
        """Test that with force the first message of each name is written."""
        config = ConversionConfig(timezone="UTC", filename_format="%Y-%m-%d", force=True)
        result = convert_batch([day_mbox], config)
        assert (result.successful, result.failed) == (2, 5)
        assert output_files(os.path.dirname(day_mbox), ".pdf") == [
            "2015-03-02.pdf", "2015-03-03.pdf"]


class TestExistingFiles:
    """Tests for output files that already exist."""

    def test_skipped(self, day_mbox):
        """Test that existing files are kept and counted."""
        convert_batch([day_mbox], ConversionConfig(timezone="UTC"))
        result = convert_batch([day_mbox], ConversionConfig(timezone="UTC"), confirm=never_asked)
        assert (result.successful, result.failed) == (0, 7)

    def test_forced(self, day_mbox):
        """Test that force overwrites."""
        convert_batch([day_mbox], ConversionConfig(timezone="UTC"))
        result = convert_batch([day_mbox], ConversionConfig(timezone="UTC", force=True),
                               confirm=never_asked)
        assert (result.successful, result.failed) == (7, 0)

    def test_interactive(self, day_mbox):
        """Test that the answer decides in interactive mode."""
        convert_batch([day_mbox], ConversionConfig(timezone="UTC"))
        config = ConversionConfig(timezone="UTC", interactive=True)
        questions = []

        def answer(question):
            questions.append(question)
            return "Jane_Doe" in question

        result = convert_batch([day_mbox], config, confirm=answer)
        assert len(questions) == 7
        assert (result.successful, result.failed) == (1, 6)

    def test_directory_in_the_way(self, day_mbox):
        """Test that a directory with the output name is counted."""
        folder = os.path.dirname(day_mbox)
        os.mkdir(os.path.join(folder, "2015-03-02_3_Jane_Doe_mail.pdf"))
        result = convert_batch([day_mbox], ConversionConfig(timezone="UTC", force=True))
        assert (result.successful, result.failed) == (6, 1)


class TestTextOutput:
    """Tests for the text copies of messages."""

    def test_text_only(self, day_mbox):
        """Test that only text files are written."""
        result = convert_batch([day_mbox], ConversionConfig(timezone="UTC", text_only=True))
        folder = os.path.dirname(day_mbox)
        assert result.successful == 7
        assert output_files(folder, ".pdf") == []
        texts = output_files(folder, ".txt")
        assert texts == [name[:-len(".pdf")] + ".txt" for name in EXPECTED_PDFS]
        with open(os.path.join(folder, "2015-03-02_3_Jane_Doe_mail.txt"), "rb") as f:
            assert b"Subject: Message m3" in f.read()

    def test_text_and_pdf(self, day_mbox):
        """Test that --text writes both files."""
        result = convert_batch([day_mbox], ConversionConfig(timezone="UTC", text=True))
        folder = os.path.dirname(day_mbox)
        assert result.successful == 7
        assert len(output_files(folder, ".pdf")) == 7
        assert len(output_files(folder, ".txt")) == 7


class TestMissingBody:
    """Tests for messages without a plain text part."""

    def test_counted(self, write_mbox, raw_message):
        """Test that a message without text/plain part is counted but still written."""
        with tempfile.TemporaryDirectory() as tmpdir:
            path = write_mbox(os.path.join(tmpdir, "html.mbox"), [
                raw_message(content_type='text/html; charset="utf-8"', body="<p>hi</p>\n"),
            ])
            result = convert_batch([path], ConversionConfig(timezone="UTC"))
            assert (result.successful, result.failed) == (0, 1)
            assert output_files(tmpdir, ".pdf") == ["2015-03-02_1_Jane_Doe_mail.pdf"]


class TestFatalErrors:
    """Tests for configuration errors that stop the run."""

    def test_bad_template(self):
        """Test a malformed filename template."""
        with pytest.raises(FormatError):
            prepare_run(ConversionConfig(filename_format="%Q"))

    def test_page_codes_in_filename(self):
        """Test that page numbers cannot be part of a filename."""
        with pytest.raises(FormatError, match="page numbers"):
            prepare_run(ConversionConfig(filename_format="@o-@p"))

    def test_control_chars_in_filename(self):
        """Test that a filename cannot contain a newline or a tab."""
        with pytest.raises(FormatError, match="%n or %t"):
            prepare_run(ConversionConfig(filename_format="%Y%n@o"))
        with pytest.raises(FormatError, match="%n or %t"):
            prepare_run(ConversionConfig(filename_format="%Y%t@o"))

    def test_control_chars_in_header(self):
        """Test that header and footer templates may still use %t."""
        run = prepare_run(ConversionConfig(timezone="UTC", head_left="%d%t%m"))
        assert run.headfoot_programs["head_left"].has_control_char

    def test_bad_header_template(self):
        """Test a malformed header template."""
        with pytest.raises(FormatError):
            prepare_run(ConversionConfig(foot_left="@x"))

    def test_bad_paper_size(self):
        """Test an unknown paper size."""
        with pytest.raises(LayoutError):
            prepare_run(ConversionConfig(paper_size="bogus"))

    def test_bad_output_dir(self, day_mbox):
        """Test an output folder that does not exist."""
        with pytest.raises(NotADirectoryError):
            convert_batch([day_mbox], ConversionConfig(output_dir="/nonexistent/out"))

    def test_bad_timezone(self):
        """Test an unknown timezone."""
        with pytest.raises(ValueError):
            prepare_run(ConversionConfig(timezone="Nowhere/Special"))

    def test_missing_alias_file(self):
        """Test an alias file that cannot be read."""
        with pytest.raises(OSError):
            prepare_run(ConversionConfig(alias_file="/nonexistent/aliases"))


class TestHeaderFooterPrograms:
    """Tests for the header and footer templates of a run."""

    def test_compiled_once(self):
        """Test that the run keeps one program per configured slot."""
        run = prepare_run(ConversionConfig(timezone="UTC", head_right=None,
                                           foot_center="@j", foot_right="(@p/@P)"))
        assert sorted(run.headfoot_programs) == ["foot_center", "foot_right", "head_left"]
        assert run.headfoot_programs["foot_center"].template == "@j"

    def test_documents_use_run_programs(self, day_mbox, monkeypatch):
        """Test that every document gets the run's program objects."""
        documents = []

        class RecordingDocument(PdfDocument):
            def __init__(self, *args, **kwargs):
                super().__init__(*args, **kwargs)
                documents.append(self)

        monkeypatch.setattr(converter, "PdfDocument", RecordingDocument)
        run = prepare_run(ConversionConfig(timezone="UTC", foot_center="@j"))
        folder = MailFolder.open(day_mbox)
        index = run.registry.get(folder, None, "UTC")
        with tempfile.TemporaryDirectory() as outdir:
            for number, msg in enumerate(index.get_messages()[:2]):
                assert render_message(run, index, msg, os.path.join(outdir, f"{number}.pdf"))
        assert len(documents) == 2
        for doc in documents:
            assert doc.programs.keys() == run.headfoot_programs.keys()
            for slot, program in run.headfoot_programs.items():
                assert doc.programs[slot] is program
