import json

import pytest


@pytest.fixture
def plain_config(tmp_path):
    # システムフォントに依存しないよう Helvetica 固定の設定を使う
    path = tmp_path / "config.json"
    path.write_text(json.dumps({"pdf_font_paths": [], "fallback_font_paths": []}))
    return str(path)
