from __future__ import annotations

from casedocs_api.common.downloads import build_content_disposition


def test_ascii_names_are_quoted() -> None:
    assert build_content_disposition("care plan.pdf") == 'attachment; filename="care plan.pdf"'


def test_non_ascii_names_get_encoded_variant() -> None:
    header = build_content_disposition("résumé.pdf")

    assert header.startswith('attachment; filename="r_sum_.pdf"')
    assert "filename*=UTF-8''r%C3%A9sum%C3%A9.pdf" in header


def test_unsafe_characters_and_blank_names() -> None:
    assert 'filename="a_b.pdf"' in build_content_disposition('a"b.pdf')
    assert build_content_disposition("") == 'attachment; filename="download"'
    assert build_content_disposition(None, default="file") == 'attachment; filename="file"'
