# ==============================================================================
#  Markdown to PDF Converter v1.0.0
# ==============================================================================
#  [Developed by]
#    JINDE (NIK Co., Ltd.) / 株式会社ニッキ 神出
#
#  [License]
#    MIT License
#
#  [Terms of Use]
#    Free to use for any purpose, provided that the copyright notice is retained.
#    (著作権表示さえあれば、何に使ってもOKです)
#
#  [Usage Examples]
#    # Convert to PDF with ReportLab (Requires: pip install reportlab)
#    python3 md2pdf.py -i input.md
#    python3 md2pdf.py -i input.md -o output.pdf --page Letter --font-size 14
#
#    # Convert through wkhtmltopdf / headless Chrome
#    python3 md2pdf.py -i input.md --engine browser
# ==============================================================================

import os
import sys
import html
import json
import math
import shutil
import logging
import argparse
import subprocess
from collections import namedtuple

import markdown

VERSION = "1.0.0"
CREDITS = "Developed by JINDE (NIK Co., Ltd.) / 株式会社ニッキ 神出"

# Try to import ReportLab for PDF support
try:
    from reportlab.platypus import SimpleDocTemplate, Paragraph, Spacer
    from reportlab.platypus.doctemplate import LayoutError
    from reportlab.lib.styles import getSampleStyleSheet, ParagraphStyle
    from reportlab.lib.pagesizes import A4, LETTER, LEGAL
    from reportlab.pdfbase import pdfmetrics
    from reportlab.pdfbase.ttfonts import TTFont
    HAS_REPORTLAB = True

except ImportError:
    HAS_REPORTLAB = False

log = logging.getLogger("md2pdf")

PAGE_SIZES = ("A4", "Letter", "Legal")
ENGINES = ("direct", "browser")
BULLET = "•  "

DEFAULT_CONFIG = {
    "fonts": {
        "normal": {"pdf_name": "Helvetica"},
        "bold": {"pdf_name": "Helvetica-Bold"},
    },
    "pdf_font_paths": [],
    # [本文, 太字] の組。文字列だけの場合は太字にも同じフォントを使う
    "fallback_font_paths": [
        ["/usr/share/fonts/truetype/dejavu/DejaVuSans.ttf",
         "/usr/share/fonts/truetype/dejavu/DejaVuSans-Bold.ttf"],
        ["/usr/share/fonts/truetype/freefont/FreeSans.ttf",
         "/usr/share/fonts/truetype/freefont/FreeSansBold.ttf"],
    ],
    "margins": {"left": 72, "right": 72, "top": 72, "bottom": 72},
    "spacing": {"blank_line": 5, "heading_after": 6, "line_height": 1.4},
    "renderers": [
        {
            "name": "wkhtmltopdf",
            "command": ["wkhtmltopdf", "--page-size", "{page}", "--encoding", "UTF-8", "{html}", "{pdf}"],
        },
        {
            "name": "chrome",
            "command": ["/Applications/Google Chrome.app/Contents/MacOS/Google Chrome",
                        "--headless", "--disable-gpu", "--print-to-pdf={pdf}", "{html}"],
        },
        {
            "name": "chromium",
            "command": ["/Applications/Chromium.app/Contents/MacOS/Chromium",
                        "--headless", "--disable-gpu", "--print-to-pdf={pdf}", "{html}"],
        },
        {
            "name": "chromium",
            "command": ["chromium", "--headless", "--disable-gpu", "--print-to-pdf={pdf}", "{html}"],
        },
        {
            "name": "google-chrome",
            "command": ["google-chrome", "--headless", "--disable-gpu", "--print-to-pdf={pdf}", "{html}"],
        },
    ],
}

RENDERER_HINT = ("Please install wkhtmltopdf or Chrome:\n"
                 "  brew install wkhtmltopdf\n"
                 "  sudo apt install -y wkhtmltopdf")

REPORTLAB_HINT = ("ReportLab is not installed. Cannot generate PDF.\n"
                  " For Ubuntu 24.04+ (Managed Environment), run:\n"
                  "     sudo apt update && sudo apt install -y python3-reportlab\n"
                  " OR (using pip):\n"
                  "     pip install reportlab")


class ConversionError(Exception):
    pass


class ConfigError(ConversionError):
    pass


class InputReadError(ConversionError):
    pass


class OutputWriteError(ConversionError):
    pass


class RendererNotFoundError(ConversionError):
    pass


class RendererFailedError(ConversionError):
    pass


ConversionRequest = namedtuple(
    "ConversionRequest",
    "input_file output_file page_size font_size engine config_path verbose",
)

Cell = namedtuple("Cell", "kind text font_size bold space_after")


def load_config(path=None):
    """config.json を読み込み、デフォルト設定に1段階マージして返す"""
    explicit = path is not None
    if path is None:
        path = os.path.join(os.path.dirname(os.path.abspath(__file__)), 'config.json')

    config = {key: (dict(value) if isinstance(value, dict) else list(value))
              for key, value in DEFAULT_CONFIG.items()}

    if not os.path.exists(path):
        if explicit:
            raise ConfigError(f"Configuration file not found at: {path}")
        log.debug("No config.json at %s, using defaults", path)
        return config

    try:
        with open(path, 'r', encoding='utf-8') as f:
            loaded = json.load(f)
    except (OSError, ValueError) as e:
        raise ConfigError(f"Error loading {path}: {e}") from e
    if not isinstance(loaded, dict):
        raise ConfigError(f"Error loading {path}: top level must be a JSON object")

    for key, value in loaded.items():
        if isinstance(value, dict) and isinstance(config.get(key), dict):
            config[key].update(value)
        else:
            config[key] = value
    log.debug("Loaded configuration from %s", path)
    return config


def derive_output_path(input_file):
    # 最後の拡張子だけを .pdf に置き換える (a.b.md -> a.b.pdf)
    base, _ = os.path.splitext(input_file)
    return base + ".pdf"


def render_markdown(text):
    return markdown.markdown(text, extensions=['extra', 'toc'])


def add_structure_cues(html_text):
    """見出しとリスト項目をテキスト上の目印 (#, -) に変換する"""
    out = []
    i = 0
    n = len(html_text)
    while i < n:
        if html_text[i] != '<':
            out.append(html_text[i])
            i += 1
            continue

        end = html_text.find('>', i)
        if end == -1:
            out.append(html_text[i:])
            break
        tag = html_text[i + 1:end].split(None, 1)
        name = tag[0].lower() if tag else ''

        if len(name) == 2 and name[0] == 'h' and name[1] in '123456':
            out.append('#' * int(name[1]) + ' ')
        elif name == 'li':
            out.append('- ')
            # <li><p>...</p></li> (loose list) の場合は段落タグごと読み飛ばす
            rest = end + 1
            while rest < n and html_text[rest] in ' \t\r\n':
                rest += 1
            if html_text.startswith('<p>', rest):
                end = rest + 2
        else:
            out.append(html_text[i:end + 1])
        i = end + 1
    return ''.join(out)


def strip_html(html_text):
    # Simple HTML tag removal
    in_tag = False
    result = []
    for char in html_text:
        if char == '<':
            in_tag = True
            continue
        if char == '>':
            in_tag = False
            continue
        if not in_tag:
            result.append(char)

    text = ''.join(result)
    text = text.replace('&lt;', '<')
    text = text.replace('&gt;', '>')
    text = text.replace('&amp;', '&')
    text = text.replace('&quot;', '"')
    text = text.replace('&#39;', "'")
    return text


def reduce_html(html_text):
    return strip_html(add_structure_cues(html_text))


def classify_line(line):
    stripped_line = line.strip()

    if not stripped_line:
        return 'blank', 0, ''

    # 見出し: 先頭の # の数がレベル
    if stripped_line.startswith('#'):
        level = len(stripped_line) - len(stripped_line.lstrip('#'))
        return 'heading', level, stripped_line[level:].strip()

    # リスト
    if stripped_line.startswith('- ') or stripped_line.startswith('* '):
        return 'bullet', 0, stripped_line[2:]

    # 通常の段落
    return 'paragraph', 0, stripped_line


def heading_font_size(base_size, level):
    # H5 以降は本文サイズより小さくしない
    return max(base_size, base_size + (5 - level) * 2)


def layout_lines(lines, base_size, spacing=None):
    if spacing is None:
        spacing = DEFAULT_CONFIG['spacing']

    cells = []
    for line in lines:
        kind, level, text = classify_line(line)
        if kind == 'blank':
            cells.append(Cell('blank', '', base_size, False, spacing['blank_line']))
        elif kind == 'heading':
            cells.append(Cell('heading', text, heading_font_size(base_size, level), True,
                              spacing['heading_after']))
        elif kind == 'bullet':
            cells.append(Cell('bullet', BULLET + text, base_size, False, 0))
        else:
            cells.append(Cell('paragraph', text, base_size, False, 0))
    return cells


class PdfWriter:
    def __init__(self, page_size="A4", font_size=12, config=None):
        if not HAS_REPORTLAB:
            raise ConversionError(REPORTLAB_HINT)
        self.config = config if config is not None else load_config()
        self.page_size = page_size
        self.font_size = font_size
        self.story = []
        self.styles = getSampleStyleSheet()

        fonts = self.config['fonts']
        self.font_name = fonts['normal']['pdf_name']
        self.bold_font_name = fonts['bold']['pdf_name']
        self.font_files = None
        self.setup_fonts()

        self.line_height = self.config['spacing'].get('line_height', 1.4)
        self.normal_style = ParagraphStyle(
            'Body',
            parent=self.styles['Normal'],
            fontName=self.font_name,
            fontSize=font_size,
            leading=font_size * self.line_height,
        )

    def setup_fonts(self):
        # 設定されたTTFフォントを順に試し、最初に読めたものを本文/太字に割り当てる
        candidates = list(self.config.get('pdf_font_paths', []))
        candidates += self.config.get('fallback_font_paths', [])

        from reportlab.lib.fonts import addMapping

        for entry in candidates:
            if isinstance(entry, str):
                p, bold_p = entry, None
            else:
                p, bold_p = entry[0], (entry[1] if len(entry) > 1 else None)
            if not os.path.exists(p):
                continue
            if bold_p is None or not os.path.exists(bold_p):
                # 太字ファイルが無い場合のみ本文と同じフォントで "Can't map" エラーを回避する
                log.warning("No bold face for %s, headings will use the regular face", p)
                bold_p = p

            try:
                pdfmetrics.registerFont(self._load_ttf('BodyFont', p))
                pdfmetrics.registerFont(self._load_ttf('BodyFont-Bold', bold_p))
            except Exception as e:
                log.warning("Font loading error (%s): %s", p, e)
                # 失敗したら次の候補へ
                continue

            # スタイルマッピング (<b> タグでも太字フォントが選ばれるようにする)
            addMapping('BodyFont', 0, 0, 'BodyFont')
            addMapping('BodyFont', 0, 1, 'BodyFont')
            addMapping('BodyFont', 1, 0, 'BodyFont-Bold')
            addMapping('BodyFont', 1, 1, 'BodyFont-Bold')

            self.font_name = 'BodyFont'
            self.bold_font_name = 'BodyFont-Bold'
            self.font_files = (p, bold_p)
            log.info("Loaded font: %s (bold: %s)", p, bold_p)
            return

        log.debug("No TTF font found, using %s", self.font_name)

    @staticmethod
    def _load_ttf(name, path):
        if path.endswith('.ttc'):
            return TTFont(name, path, subfontIndex=0)
        return TTFont(name, path)

    def _format_text(self, text):
        # Paragraph はミニXMLとして解釈されるのでエスケープしておく
        return html.escape(text, quote=False)

    def add_cell(self, cell):
        if cell.kind == 'blank':
            self.story.append(Spacer(1, cell.space_after))
            return

        style = self.normal_style
        if cell.bold or cell.font_size != self.font_size:
            style = ParagraphStyle(
                f'{cell.kind.title()}{cell.font_size:g}',
                parent=self.normal_style,
                fontName=self.bold_font_name if cell.bold else self.font_name,
                fontSize=cell.font_size,
                leading=cell.font_size * self.line_height,
            )
        self.story.append(Paragraph(self._format_text(cell.text), style))
        if cell.space_after:
            self.story.append(Spacer(1, cell.space_after))

    def add_cells(self, cells):
        for cell in cells:
            self.add_cell(cell)

    def save(self, path):
        sizes = {"A4": A4, "Letter": LETTER, "Legal": LEGAL}
        margins = self.config['margins']
        doc = SimpleDocTemplate(path, pagesize=sizes[self.page_size],
                                rightMargin=margins['right'], leftMargin=margins['left'],
                                topMargin=margins['top'], bottomMargin=margins['bottom'])
        # 空の文書でも1ページは出力する
        doc.build(self.story or [Spacer(1, 0)])
        log.info("PDF file created: %s", path)


HTML_TEMPLATE = """<!DOCTYPE html>
<html>
<head>
    <meta charset="UTF-8">
    <style>
        @page {{ size: {page_size}; }}
        body {{
            font-family: "Hiragino Sans", "Hiragino Kaku Gothic ProN", "Noto Sans JP", sans-serif;
            font-size: {body:g}pt;
            line-height: 1.6;
            max-width: 800px;
            margin: 40px auto;
            padding: 0 20px;
        }}
        h1 {{ font-size: {h1:g}pt; margin-top: 20px; }}
        h2 {{ font-size: {h2:g}pt; margin-top: 18px; }}
        h3 {{ font-size: {h3:g}pt; margin-top: 16px; }}
        h4 {{ font-size: {h4:g}pt; margin-top: 14px; font-weight: bold; }}
        ul, ol {{
            margin-left: 20px;
            padding-left: 20px;
        }}
        li {{ margin-bottom: 4px; }}
        p {{
            margin: 8px 0;
            white-space: pre-wrap;
            word-wrap: break-word;
        }}
        code {{
            background-color: #f4f4f4;
            padding: 2px 4px;
        }}
        pre {{
            background-color: #f4f4f4;
            padding: 10px;
            overflow-x: auto;
            white-space: pre-wrap;
        }}
        table {{ border-collapse: collapse; }}
        th, td {{ border: 1px solid #999; padding: 4px 8px; }}
    </style>
</head>
<body>
{content}
</body>
</html>
"""


def build_html_document(fragment, font_size, page_size="A4"):
    return HTML_TEMPLATE.format(
        page_size=page_size,
        body=font_size,
        h1=heading_font_size(font_size, 1),
        h2=heading_font_size(font_size, 2),
        h3=heading_font_size(font_size, 3),
        h4=heading_font_size(font_size, 4),
        content=fragment,
    )


def find_renderer(candidates):
    """PATH 上で最初に見つかったレンダラを返す (見つからなければ None)"""
    for candidate in candidates:
        command = candidate['command']
        if shutil.which(command[0]):
            log.debug("Using renderer %s (%s)", candidate['name'], command[0])
            return candidate
        log.debug("Renderer not available: %s", command[0])
    return None


def read_markdown(path):
    try:
        with open(path, 'r', encoding='utf-8') as f:
            return f.read()
    except (OSError, UnicodeDecodeError) as e:
        raise InputReadError(f"failed to read input file: {e}") from e


def convert_direct(request, config):
    md_text = read_markdown(request.input_file)
    lines = reduce_html(render_markdown(md_text)).split('\n')
    cells = layout_lines(lines, request.font_size, config['spacing'])

    writer = PdfWriter(request.page_size, request.font_size, config)
    writer.add_cells(cells)
    try:
        writer.save(request.output_file)
    except OSError as e:
        raise OutputWriteError(f"failed to write PDF file: {e}") from e
    except LayoutError as e:
        # 1行がページ枠に収まらない (フォントサイズが大きすぎる) 場合
        raise ConversionError(f"failed to lay out PDF (font size {request.font_size:g} too large?): {e}") from e


def convert_with_browser(request, config):
    md_text = read_markdown(request.input_file)
    document = build_html_document(render_markdown(md_text), request.font_size, request.page_size)

    # 一時HTMLは出力ファイルと同じ場所に作る
    tmp_html = os.path.splitext(request.output_file)[0] + "_tmp.html"
    try:
        try:
            with open(tmp_html, 'w', encoding='utf-8') as f:
                f.write(document)
        except (OSError, UnicodeEncodeError) as e:
            raise OutputWriteError(f"failed to write HTML file: {e}") from e

        renderer = find_renderer(config['renderers'])
        if renderer is None:
            raise RendererNotFoundError(f"no PDF renderer found. {RENDERER_HINT}")

        args = [part.format(page=request.page_size, html=tmp_html, pdf=request.output_file)
                for part in renderer['command']]
        log.debug("Running: %s", ' '.join(args))
        try:
            subprocess.run(args, check=True)
        except (OSError, subprocess.CalledProcessError) as e:
            raise RendererFailedError(f"{renderer['name']} failed: {e}") from e
    finally:
        try:
            os.remove(tmp_html)
        except FileNotFoundError:
            pass


def convert_markdown(request, config=None):
    if config is None:
        config = load_config(request.config_path)
    if request.engine == 'browser':
        convert_with_browser(request, config)
    else:
        convert_direct(request, config)


def page_size_arg(value):
    for name in PAGE_SIZES:
        if value.lower() == name.lower():
            return name
    raise argparse.ArgumentTypeError(
        f"invalid page size: {value!r} (choose from {', '.join(PAGE_SIZES)})")


def font_size_arg(value):
    try:
        size = float(value)
    except ValueError:
        raise argparse.ArgumentTypeError(f"invalid font size: {value!r}")
    if not math.isfinite(size):
        raise argparse.ArgumentTypeError(f"font size must be a finite number: {value!r}")
    if size <= 0:
        raise argparse.ArgumentTypeError(f"font size must be positive: {value!r}")
    return size


def build_parser():
    parser = argparse.ArgumentParser(
        prog='md2pdf',
        description=f'Convert Markdown files to PDF. v{VERSION}\n{CREDITS}',
        epilog=("Example:\n"
                "  md2pdf -i README.md -o output.pdf\n"
                "  md2pdf -i document.md --font-size 14 --page Letter"),
        formatter_class=argparse.RawTextHelpFormatter,
    )
    parser.add_argument('-v', '--version', action='version', version=f'%(prog)s version {VERSION}')
    parser.add_argument('-i', '--input', dest='input_file', required=True,
                        help='Input Markdown file (required)')
    parser.add_argument('-o', '--output', dest='output_file',
                        help='Output PDF file (default: input filename with .pdf extension)')
    parser.add_argument('--page', dest='page_size', type=page_size_arg, default='A4',
                        help='Page size (A4, Letter, Legal)')
    parser.add_argument('--font-size', type=font_size_arg, default=12.0,
                        help='Base font size (default: 12)')
    parser.add_argument('--engine', choices=ENGINES, default='direct',
                        help='direct: ReportLab layout / browser: wkhtmltopdf or headless Chrome')
    parser.add_argument('--config', dest='config_path',
                        help='Path to config.json (default: next to md2pdf.py)')
    parser.add_argument('--verbose', action='store_true', help='Show debug output')
    return parser


def parse_args(argv=None):
    parser = build_parser()
    args = parser.parse_args(argv)
    if not args.input_file.strip():
        parser.error("input file is required. Use -i flag to specify input file.")
    output_file = args.output_file or derive_output_path(args.input_file)
    return ConversionRequest(
        input_file=args.input_file,
        output_file=output_file,
        page_size=args.page_size,
        font_size=args.font_size,
        engine=args.engine,
        config_path=args.config_path,
        verbose=args.verbose,
    )


USAGE_BANNER = f"""
Markdown to PDF Converter v{VERSION}
{CREDITS}

[Usage Examples]
  md2pdf -i input.md
  md2pdf -i input.md -o output.pdf --page Letter --font-size 14
  md2pdf -i input.md --engine browser
"""


def main(argv=None):
    if argv is None:
        argv = sys.argv[1:]

    if not argv:
        print(USAGE_BANNER, file=sys.stderr)
        return 1

    request = parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if request.verbose else logging.WARNING,
        format='%(levelname)s: %(message)s',
    )

    try:
        convert_markdown(request)
    except ConversionError as e:
        print(f"Conversion failed: {e}", file=sys.stderr)
        return 1

    print(f"Successfully converted {request.input_file} to {request.output_file}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
