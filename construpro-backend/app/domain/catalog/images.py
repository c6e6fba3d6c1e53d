"""Normalization of the product ``images`` field.

Rows written by different importers and admin screens store images in
several shapes. ``parse_image_data`` classifies the raw value into one
``ImageShape`` and produces a canonical list of URLs; every problem found
along the way is kept in ``errors`` instead of being dropped.
"""
from __future__ import annotations

import enum
import json
import re
from dataclasses import dataclass, field
from typing import Any

URL_KEYS = ("url", "path", "src", "imageUrl", "imagemUrl")

_URL_PREFIX = re.compile(r"^(https?://|blob:|data:image/|/)", re.IGNORECASE)
_URL_IN_TEXT = re.compile(r"(https?://[^\s,\]]+|blob:[^\s,\]]+|data:image/[^\s,\]]+)")


class ImageShape(enum.Enum):
    empty = "empty"
    url = "url"
    json_array = "json_array"
    escaped_json = "escaped_json"
    malformed_list = "malformed_list"
    list = "list"
    object = "object"
    unsupported = "unsupported"


@dataclass(slots=True)
class ImageParseResult:
    urls: list[str] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)
    original_format: ImageShape = ImageShape.empty

    @property
    def is_valid(self) -> bool:
        return bool(self.urls)


def is_valid_url(value: Any) -> bool:
    if not isinstance(value, str):
        return False
    trimmed = value.strip()
    if trimmed in ("", "null", "undefined"):
        return False
    return bool(_URL_PREFIX.match(trimmed))


def classify(raw: Any) -> ImageShape:
    if raw is None or raw == "" or raw == [] or raw == {}:
        return ImageShape.empty
    if isinstance(raw, list):
        return ImageShape.list
    if isinstance(raw, dict):
        return ImageShape.object
    if not isinstance(raw, str):
        return ImageShape.unsupported
    text = raw.strip()
    if is_valid_url(text) and not text.startswith("["):
        return ImageShape.url
    try:
        decoded = json.loads(text)
    except ValueError:
        return ImageShape.malformed_list
    if isinstance(decoded, list):
        return ImageShape.json_array
    if isinstance(decoded, str):
        return ImageShape.escaped_json
    if isinstance(decoded, dict):
        return ImageShape.object
    return ImageShape.unsupported


def _from_list(values: list, result: ImageParseResult) -> None:
    for index, item in enumerate(values):
        if isinstance(item, str):
            trimmed = item.strip()
            if not trimmed:
                continue
            if is_valid_url(trimmed):
                result.urls.append(trimmed)
            else:
                result.errors.append(f"URL inválida na posição {index}: {trimmed[:50]}")
        elif isinstance(item, list):
            _from_list(item, result)
        elif isinstance(item, dict):
            _from_object(item, result)
        elif item is not None:
            result.errors.append(f"Tipo não suportado na posição {index}: {type(item).__name__}")


def _from_object(value: dict, result: ImageParseResult) -> None:
    found = [value[key].strip() for key in URL_KEYS if is_valid_url(value.get(key))]
    if not found:
        result.errors.append("Objeto sem propriedade de URL válida")
    result.urls.extend(found)


def _from_malformed(text: str, result: ImageParseResult) -> None:
    stripped = re.sub(r"^\[|\]$", "", text)
    urls = [match.strip().strip('",]') for match in _URL_IN_TEXT.findall(stripped)]
    urls = [url for url in urls if is_valid_url(url)]
    if urls:
        result.urls.extend(urls)
        result.errors.append("URLs extraídas de lista malformada")
    else:
        result.errors.append("Não foi possível interpretar o campo de imagens")


def parse_image_data(raw: Any) -> ImageParseResult:
    shape = classify(raw)
    result = ImageParseResult(original_format=shape)

    if shape is ImageShape.empty:
        result.errors.append("Nenhuma imagem informada")
    elif shape is ImageShape.url:
        result.urls.append(raw.strip())
    elif shape is ImageShape.list:
        _from_list(raw, result)
    elif shape is ImageShape.object:
        _from_object(raw if isinstance(raw, dict) else json.loads(raw), result)
    elif shape is ImageShape.json_array:
        _from_list(json.loads(raw), result)
    elif shape is ImageShape.escaped_json:
        inner = parse_image_data(json.loads(raw))
        result.urls.extend(inner.urls)
        result.errors.extend(inner.errors)
        result.errors.append("Convertido de JSON com escape duplo")
    elif shape is ImageShape.malformed_list:
        _from_malformed(raw.strip(), result)
    else:
        result.errors.append(f"Tipo não suportado: {type(raw).__name__}")

    return result


def needs_correction(raw: Any) -> bool:
    shape = classify(raw)
    if shape in (ImageShape.escaped_json, ImageShape.malformed_list):
        return bool(parse_image_data(raw).urls)
    if shape in (ImageShape.url, ImageShape.list, ImageShape.object):
        return True
    if shape is ImageShape.json_array:
        parsed = parse_image_data(raw)
        return bool(parsed.urls) and bool(parsed.errors)
    return False


def corrected_image_json(raw: Any) -> str | None:
    """Canonical JSON array for ``raw``, or ``None`` when no URL survives parsing."""
    parsed = parse_image_data(raw)
    if not parsed.urls:
        return None
    return json.dumps(parsed.urls, ensure_ascii=False)
