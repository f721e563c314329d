"""
Section-level edits to a portfolio's ``section_content``.

Every section has one of three payload shapes, fixed by its name:

- ``items``: ``{"items": [...], ...}`` (projects, experience, gallery, ...)
- ``categories``: ``{"categories": [{"name": ..., "skills": [...]}, ...]}`` (skills)
- ``object``: a flat key/value payload (about, contact, header, ...)

Sections whose name is not in the tables below are custom sections. They
are accepted once the portfolio already stores them or lists them in its
layout, and their shape is read from the stored payload.

Both operations return a ``SectionUpdate`` whose ``value`` is the full new
section payload. Its ``changes`` are what to ``$set``: only
``section_content.<name>.items`` (or ``.categories``) when an array was
replaced or trimmed, the whole section otherwise. The portfolio passed in
is never modified.
"""
import copy
import re
from dataclasses import dataclass
from typing import Any, Dict, Optional, Union

from errors import ForbiddenError, NotFoundError, ValidationError

ITEMS = "items"
CATEGORIES = "categories"
OBJECT = "object"

ITEM_SECTIONS = frozenset({
    "projects", "experience", "education", "gallery", "work", "galleries",
    "services", "pricing", "testimonials", "clients",
})
CATEGORY_SECTIONS = frozenset({"skills"})
OBJECT_SECTIONS = frozenset({
    "about", "contact", "header", "footer", "navbar", "seo", "sidebar",
    "social_links", "custom_css", "categories", "carousel",
})

SECTION_NAME = re.compile(r"^[A-Za-z][A-Za-z0-9_-]*$")

Selector = Union[int, str]


@dataclass
class SectionUpdate:
    name: str
    value: Dict[str, Any]
    key: Optional[str] = None

    @property
    def path(self) -> str:
        if self.key:
            return f"section_content.{self.name}.{self.key}"
        return f"section_content.{self.name}"

    @property
    def changes(self) -> Dict[str, Any]:
        """The ``$set`` document for this edit."""
        return {self.path: self.value[self.key] if self.key else self.value}

    def to_dict(self) -> dict:
        return {"section": self.name, "content": self.value}


def is_known_section(name: str) -> bool:
    return name in ITEM_SECTIONS or name in CATEGORY_SECTIONS or name in OBJECT_SECTIONS


def section_kind(name: str, payload: Optional[Dict[str, Any]] = None) -> str:
    if name in ITEM_SECTIONS:
        return ITEMS
    if name in CATEGORY_SECTIONS:
        return CATEGORIES
    if name in OBJECT_SECTIONS:
        return OBJECT
    payload = payload or {}
    if isinstance(payload.get("items"), list):
        return ITEMS
    if isinstance(payload.get("categories"), list):
        return CATEGORIES
    return OBJECT


def _require_authorized(authorized: bool) -> None:
    if not authorized:
        raise ForbiddenError("You do not have permission to update this portfolio")


def _check_name(name: str) -> None:
    if not isinstance(name, str) or not SECTION_NAME.match(name):
        raise ValidationError(f"Invalid section name '{name}'")


def _stored_sections(portfolio: Dict[str, Any]) -> Dict[str, Any]:
    return portfolio.get("section_content") or {}


def _layout_sections(portfolio: Dict[str, Any]) -> list:
    settings = portfolio.get("settings") or {}
    return (settings.get("layout") or {}).get("sections") or []


def _parse_index(value: Selector, length: int, label: str) -> int:
    if isinstance(value, bool):
        raise ValidationError(f"Invalid {label} index")
    if isinstance(value, int):
        index = value
    else:
        try:
            index = int(str(value).strip())
        except ValueError:
            raise ValidationError(f"Invalid {label} index '{value}'")
    if index < 0 or index >= length:
        raise ValidationError(
            f"{label.capitalize()} index {index} is out of range",
            details={"index": index, "length": length},
        )
    return index


def _matches_id(item: Any, item_id: str) -> bool:
    if not isinstance(item, dict):
        return False
    return any(item.get(key) is not None and str(item[key]) == str(item_id) for key in ("id", "_id"))


def update_section(portfolio: Dict[str, Any], section_name: str, patch: Dict[str, Any], *,
                   authorized: bool) -> SectionUpdate:
    """Apply ``patch`` to one section.

    A list under ``items`` replaces the stored items, a list under
    ``categories`` replaces the stored categories, and any other patch is
    shallow-merged into the section. Sibling keys and other sections are
    left untouched.
    """
    _require_authorized(authorized)
    _check_name(section_name)
    if not isinstance(patch, dict):
        raise ValidationError("Section content must be an object")

    stored = _stored_sections(portfolio)
    current = stored.get(section_name)
    created = current is None
    if created:
        if not is_known_section(section_name) and section_name not in _layout_sections(portfolio):
            raise NotFoundError(f"Section '{section_name}' not found")
        current = {}
    elif not isinstance(current, dict):
        raise ValidationError(f"Stored section '{section_name}' is not an object")

    kind = section_kind(section_name, current or patch)
    for array_key in (ITEMS, CATEGORIES):
        if array_key in patch and not isinstance(patch[array_key], list):
            raise ValidationError(f"'{array_key}' must be a list")

    value = copy.deepcopy(current)
    key = None
    if isinstance(patch.get(ITEMS), list):
        if kind != ITEMS:
            raise ValidationError(f"Section '{section_name}' does not hold items")
        value[ITEMS] = copy.deepcopy(patch[ITEMS])
        key = ITEMS
    elif isinstance(patch.get(CATEGORIES), list):
        if kind != CATEGORIES:
            raise ValidationError(f"Section '{section_name}' does not hold categories")
        for category in patch[CATEGORIES]:
            if not isinstance(category, dict):
                raise ValidationError("Each category must be an object")
            if "skills" in category and not isinstance(category["skills"], list):
                raise ValidationError("'skills' must be a list")
        value[CATEGORIES] = copy.deepcopy(patch[CATEGORIES])
        key = CATEGORIES
    else:
        value.update(copy.deepcopy(patch))

    # A section that is not stored yet is written whole.
    return SectionUpdate(name=section_name, value=value, key=None if created else key)


def delete_item(portfolio: Dict[str, Any], section_name: str, *, item_id: Optional[Selector] = None,
                item_index: Optional[Selector] = None, authorized: bool) -> SectionUpdate:
    """Remove one entry from an array-bearing section.

    For ``items`` sections, ``item_id`` matches ``item.id`` or ``item._id``
    and ``item_index`` is positional. For ``categories`` sections,
    ``item_id`` is the category index: on its own it removes the whole
    category, together with ``item_index`` it removes that skill from the
    category. Out-of-range indexes are validation errors.
    """
    _require_authorized(authorized)
    _check_name(section_name)
    if item_id is None and item_index is None:
        raise ValidationError("Either item_id or item_index is required")

    current = _stored_sections(portfolio).get(section_name)
    if not isinstance(current, dict):
        raise NotFoundError(f"Section '{section_name}' not found")

    value = copy.deepcopy(current)
    if isinstance(current.get(ITEMS), list):
        items = value[ITEMS]
        if item_id is not None:
            kept = [item for item in items if not _matches_id(item, item_id)]
            if len(kept) == len(items):
                raise NotFoundError(f"Item '{item_id}' not found in section '{section_name}'")
            value[ITEMS] = kept
        else:
            del items[_parse_index(item_index, len(items), "item")]
        key = ITEMS
    elif isinstance(current.get(CATEGORIES), list):
        categories = value[CATEGORIES]
        if item_id is not None and item_index is not None:
            category = categories[_parse_index(item_id, len(categories), "category")]
            skills = category.get("skills") if isinstance(category, dict) else None
            if not isinstance(skills, list):
                raise ValidationError("Category has no skills")
            del skills[_parse_index(item_index, len(skills), "skill")]
        else:
            selector = item_id if item_id is not None else item_index
            del categories[_parse_index(selector, len(categories), "category")]
        key = CATEGORIES
    else:
        raise ValidationError(f"Section '{section_name}' has no items to delete")

    return SectionUpdate(name=section_name, value=value, key=key)
