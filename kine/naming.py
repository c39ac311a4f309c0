"""Naming conventions shared with data written by earlier clients.

Folder and file names encode metadata (patient identity, assessment date,
title and photo index), so the exact token layout must never change:

* patient folders: ``LASTNAME_firstname[_phone]``
* assessment photos: ``DD_MM_YYYY_<slug>_<index>.<ext>``
* session photos: ``DD_MM_YYYY.<ext>``
"""
from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import date, datetime
from typing import List, Optional, Tuple, Union

TOKEN_SEPARATOR = "_"
# Early clients never filled the phone field and wrote this literal instead.
LEGACY_EMPTY_PHONE = "undefined"

_DIGITS = re.compile(r"(\d+)")
_WHITESPACE = re.compile(r"\s+")
_UNSAFE_SLUG_CHARS = re.compile(r"[^a-z0-9_-]")

DateLike = Union[date, datetime]


@dataclass(frozen=True)
class PatientFolderName:
    last_name: str
    first_name: str
    phone: str = ""


def clean_name_component(value: str) -> str:
    """Trim ``value`` and keep the token separator out of it."""

    return (value or "").strip().replace(TOKEN_SEPARATOR, "-")


def patient_folder_name(last_name: str, first_name: str, phone: str = "") -> str:
    parts = [clean_name_component(last_name).upper(), clean_name_component(first_name)]
    phone = clean_name_component(phone)
    if phone:
        parts.append(phone)
    return TOKEN_SEPARATOR.join(parts)


def parse_patient_folder_name(name: str) -> Optional[PatientFolderName]:
    """Return the identity encoded in a patient folder name.

    ``None`` is returned for names with fewer than two tokens, which are not
    patient folders.
    """

    tokens = (name or "").strip().split(TOKEN_SEPARATOR)
    if len(tokens) < 2 or not tokens[0] or not tokens[1]:
        return None
    phone = TOKEN_SEPARATOR.join(tokens[2:]).strip()
    if phone == LEGACY_EMPTY_PHONE:
        phone = ""
    return PatientFolderName(last_name=tokens[0], first_name=tokens[1], phone=phone)


def format_date_for_name(value: DateLike) -> str:
    return value.strftime("%d_%m_%Y")


def date_filename(value: DateLike, extension: str = "jpg") -> str:
    """Session photo name, ``DD_MM_YYYY.<ext>``."""

    return f"{format_date_for_name(value)}.{extension.lstrip('.')}"


def sanitize_title_for_filename(title: str) -> str:
    slug = _WHITESPACE.sub("-", (title or "").strip().lower())
    return _UNSAFE_SLUG_CHARS.sub("", slug)


def bilan_file_name(value: DateLike, title: str, index: int, extension: str = "jpg") -> str:
    slug = sanitize_title_for_filename(title) or "bilan"
    return f"{format_date_for_name(value)}_{slug}_{index}.{extension.lstrip('.')}"


def split_extension(file_name: str) -> Tuple[str, str]:
    """Split ``file_name`` into stem and extension (without the dot)."""

    stem, dot, extension = (file_name or "").rpartition(".")
    if not dot or not stem:
        return file_name or "", ""
    return stem, extension


def strip_extension(file_name: str) -> str:
    return split_extension(file_name)[0]


def natural_sort_key(text: str) -> List[Union[str, int]]:
    """Key ordering embedded numbers numerically (``x_2`` before ``x_10``)."""

    parts = _DIGITS.split((text or "").casefold())
    return [int(part) if position % 2 else part for position, part in enumerate(parts)]


__all__ = [
    "LEGACY_EMPTY_PHONE",
    "PatientFolderName",
    "bilan_file_name",
    "clean_name_component",
    "date_filename",
    "format_date_for_name",
    "natural_sort_key",
    "parse_patient_folder_name",
    "patient_folder_name",
    "sanitize_title_for_filename",
    "split_extension",
    "strip_extension",
]
