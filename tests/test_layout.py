import os

import pytest

import md2pdf
from md2pdf import (
    BULLET,
    Cell,
    PdfWriter,
    classify_line,
    heading_font_size,
    layout_lines,
    load_config,
)


def test_classify_blank_line():
    assert classify_line("   ") == ("blank", 0, "")


def test_classify_heading_levels():
    assert classify_line("# Title") == ("heading", 1, "Title")
    assert classify_line("  ### Deep  ") == ("heading", 3, "Deep")
    assert classify_line("###### Six") == ("heading", 6, "Six")


def test_classify_bullets():
    assert classify_line("- item") == ("bullet", 0, "item")
    assert classify_line("* item") == ("bullet", 0, "item")


def test_dash_without_space_is_paragraph():
    assert classify_line("-item") == ("paragraph", 0, "-item")


def test_heading_font_sizes():
    assert heading_font_size(12, 1) == 20
    assert heading_font_size(12, 4) == 14
    assert heading_font_size(12, 5) == 12
    assert heading_font_size(12, 9) == 12


def test_layout_heading_then_body():
    cells = layout_lines(["# Title", "body"], 12)
    assert cells[0] == Cell("heading", "Title", 20, True, 6)
    assert cells[1] == Cell("paragraph", "body", 12, False, 0)


def test_layout_bullets_share_prefix():
    dash, star = layout_lines(["- item", "* item"], 12)
    assert dash == star
    assert dash.text == BULLET + "item"
    assert dash.text.startswith("•  ")


def test_layout_blank_line_spacing():
    cells = layout_lines(["", "x"], 10, {"blank_line": 8, "heading_after": 4})
    assert cells[0] == Cell("blank", "", 10, False, 8)


def test_pdf_writer_story(plain_config):
    writer = PdfWriter("Letter", 12, load_config(plain_config))
    writer.add_cells(layout_lines(["# T", "", "- a"], 12))
    story = writer.story
    assert len(story) == 4
    assert isinstance(story[0], md2pdf.Paragraph)
    assert story[0].style.fontSize == 20
    assert story[0].style.fontName == "Helvetica-Bold"
    assert isinstance(story[1], md2pdf.Spacer)
    assert isinstance(story[2], md2pdf.Spacer)
    assert story[3].style.fontName == "Helvetica"


def test_pdf_writer_saves_escaped_text(tmp_path, plain_config):
    writer = PdfWriter("A4", 12, load_config(plain_config))
    writer.add_cells(layout_lines(["a < b & c", "<not a tag>"], 12))
    out = tmp_path / "out.pdf"
    writer.save(str(out))
    assert out.read_bytes().startswith(b"%PDF")


def test_pdf_writer_requires_reportlab(monkeypatch):
    monkeypatch.setattr(md2pdf, "HAS_REPORTLAB", False)
    with pytest.raises(md2pdf.ConversionError, match="reportlab"):
        PdfWriter()


DEJAVU = "/usr/share/fonts/truetype/dejavu/DejaVuSans.ttf"
DEJAVU_BOLD = "/usr/share/fonts/truetype/dejavu/DejaVuSans-Bold.ttf"


def face_name(font_name):
    return md2pdf.pdfmetrics.getFont(font_name).face.name


def test_default_config_headings_use_bold_face():
    writer = PdfWriter("A4", 12, load_config())
    if writer.font_files is None or writer.font_files[0] == writer.font_files[1]:
        pytest.skip("no TTF font with a separate bold file on this system")
    writer.add_cells(layout_lines(["# T", "body"], 12))
    heading, body = writer.story[0], writer.story[2]
    assert heading.style.fontName == writer.bold_font_name
    assert body.style.fontName == writer.font_name
    assert face_name(heading.style.fontName) != face_name(body.style.fontName)


@pytest.mark.skipif(not (os.path.exists(DEJAVU) and os.path.exists(DEJAVU_BOLD)),
                    reason="DejaVu fonts not installed")
def test_font_pair_registers_bold_file():
    config = load_config()
    config["pdf_font_paths"] = [[DEJAVU, DEJAVU_BOLD]]
    writer = PdfWriter("A4", 12, config)
    assert writer.font_files == (DEJAVU, DEJAVU_BOLD)
    assert face_name("BodyFont") == b"DejaVuSans"
    assert face_name("BodyFont-Bold") == b"DejaVuSans-Bold"


@pytest.mark.skipif(not os.path.exists(DEJAVU), reason="DejaVu fonts not installed")
def test_font_without_bold_file_reuses_regular(tmp_path):
    config = load_config()
    config["pdf_font_paths"] = [[DEJAVU, str(tmp_path / "missing-Bold.ttf")]]
    writer = PdfWriter("A4", 12, config)
    assert writer.font_files == (DEJAVU, DEJAVU)
