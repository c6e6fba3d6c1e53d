# tests/test_images.py
import json

from app.domain.catalog.images import (
    ImageShape,
    corrected_image_json,
    needs_correction,
    parse_image_data,
)

URL_A = "https://cdn.construpro.com.br/a.jpg"
URL_B = "https://cdn.construpro.com.br/b.jpg"


def test_none_is_empty_with_error():
    parsed = parse_image_data(None)
    assert parsed.original_format is ImageShape.empty
    assert parsed.urls == []
    assert not parsed.is_valid
    assert parsed.errors


def test_single_url_string():
    parsed = parse_image_data(URL_A)
    assert parsed.original_format is ImageShape.url
    assert parsed.urls == [URL_A]


def test_json_array_string_keeps_errors_for_bad_entries():
    parsed = parse_image_data(json.dumps([URL_A, "foto.jpg", URL_B]))
    assert parsed.original_format is ImageShape.json_array
    assert parsed.urls == [URL_A, URL_B]
    assert len(parsed.errors) == 1
    assert "posição 1" in parsed.errors[0]


def test_escaped_json_string_is_unwrapped():
    parsed = parse_image_data(json.dumps(json.dumps([URL_A])))
    assert parsed.original_format is ImageShape.escaped_json
    assert parsed.urls == [URL_A]
    assert "Convertido de JSON com escape duplo" in parsed.errors


def test_malformed_bracket_list_extracts_urls():
    parsed = parse_image_data(f"[{URL_A}, {URL_B}]")
    assert parsed.original_format is ImageShape.malformed_list
    assert parsed.urls == [URL_A, URL_B]
    assert "URLs extraídas de lista malformada" in parsed.errors


def test_nested_lists_and_objects():
    parsed = parse_image_data([[URL_A], {"imageUrl": URL_B}, {"nome": "sem url"}])
    assert parsed.original_format is ImageShape.list
    assert parsed.urls == [URL_A, URL_B]
    assert "Objeto sem propriedade de URL válida" in parsed.errors


def test_unsupported_type_is_reported():
    parsed = parse_image_data(42)
    assert parsed.original_format is ImageShape.unsupported
    assert parsed.urls == []
    assert parsed.errors == ["Tipo não suportado: int"]


def test_correction_helpers():
    assert needs_correction(URL_A)
    assert corrected_image_json(URL_A) == json.dumps([URL_A])
    assert not needs_correction(json.dumps([URL_A]))
    assert corrected_image_json(None) is None
