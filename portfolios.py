"""
Portfolio service: create/update/delete, subdomain and custom domain rules,
section edits and the public lookup.

Subdomains are stored lowercased, so the unique index on ``subdomain``
behaves case-insensitively. Uniqueness is pre-checked for a friendly error;
a concurrent insert that slips past the check is caught by the index.
"""
import logging
import re
from typing import Any, Dict, List, Optional

from pymongo import ReturnDocument
from pymongo.database import Database
from pymongo.errors import DuplicateKeyError

from auth import Identity
from composition import compose_portfolio, resolve_selection
from content import SECTION_NAME, delete_item, update_section
from database import PORTFOLIOS, TEMPLATES, VIEWS, create_document, to_oid, to_public, utcnow
from errors import ConflictError, ForbiddenError, NotFoundError, ValidationError
from schemas import Portfolio, PortfolioCreate, PortfolioUpdate
from templates import get_template, increment_usage
from uploads import Uploader, release_blobs

logger = logging.getLogger(__name__)

SUBDOMAIN_PATTERN = re.compile(r"^[a-z0-9-]+$")
SUBDOMAIN_MIN_LENGTH = 3
SUBDOMAIN_MAX_LENGTH = 30
DOMAIN_PATTERN = re.compile(r"^([a-z0-9]([a-z0-9-]*[a-z0-9])?\.)+[a-z]{2,}$")

SELECTION_FIELDS = ("active_layout", "active_color_scheme", "active_font_pairing", "style_preset",
                    "section_variants")
PUBLIC_TEMPLATE_FIELDS = {"name": 1, "category": 1, "layouts": 1, "theme_options": 1, "animations": 1,
                          "section_variants": 1, "style_presets": 1, "component_mapping": 1}


def normalize_subdomain(value: Optional[str]) -> str:
    subdomain = (value or "").strip().lower()
    if not (SUBDOMAIN_MIN_LENGTH <= len(subdomain) <= SUBDOMAIN_MAX_LENGTH) or not SUBDOMAIN_PATTERN.match(subdomain):
        raise ValidationError(
            f"Subdomain must be {SUBDOMAIN_MIN_LENGTH}-{SUBDOMAIN_MAX_LENGTH} characters of "
            "lowercase letters, numbers and hyphens",
            details={"subdomain": value},
        )
    return subdomain


def normalize_custom_domain(value: Optional[str]) -> Optional[str]:
    domain = (value or "").strip().lower()
    if not domain:
        return None
    if not DOMAIN_PATTERN.match(domain):
        raise ValidationError("Please provide a valid domain name (e.g., example.com)",
                              details={"custom_domain": value})
    return domain


def _ensure_available(db: Database, field: str, value: str, exclude_id=None) -> None:
    filt: Dict[str, Any] = {field: value}
    if exclude_id is not None:
        filt["_id"] = {"$ne": exclude_id}
    if db[PORTFOLIOS].find_one(filt, {"_id": 1}):
        if field == "subdomain":
            raise ConflictError("Subdomain is already taken")
        raise ConflictError("Custom domain is already in use by another portfolio")


def _duplicate_error(e: DuplicateKeyError) -> ConflictError:
    if "custom_domain" in str(e):
        return ConflictError("Custom domain is already in use by another portfolio")
    return ConflictError("Subdomain is already taken")


def _load(db: Database, portfolio_id: str) -> dict:
    portfolio = db[PORTFOLIOS].find_one({"_id": to_oid(portfolio_id, "Portfolio")})
    if not portfolio:
        raise NotFoundError("Portfolio not found")
    return portfolio


def _is_owner(portfolio: dict, identity: Identity) -> bool:
    return portfolio.get("user_id") == identity.user_id


def _check_keys(data: Dict[str, Any]) -> None:
    """Reject map keys that would not survive as one dotted $set path segment."""
    groups = {"section_variants": data.get("section_variants")}
    for group, values in (data.get("settings") or {}).items():
        groups[f"settings.{group}"] = values
    for label, values in groups.items():
        for key in values or {}:
            if not isinstance(key, str) or not SECTION_NAME.match(key):
                raise ValidationError(f"Invalid key '{key}' in {label}", details={"field": label, "key": key})


def create_portfolio(db: Database, identity: Identity, payload: PortfolioCreate) -> dict:
    template = get_template(db, payload.template_id)
    subdomain = normalize_subdomain(payload.subdomain)
    custom_domain = normalize_custom_domain(payload.custom_domain)

    _ensure_available(db, "subdomain", subdomain)
    if custom_domain:
        _ensure_available(db, "custom_domain", custom_domain)

    overrides = payload.model_dump(exclude_none=True, include={
        "settings", "content", "animations_enabled", *SELECTION_FIELDS,
    })
    _check_keys(overrides)
    composed = compose_portfolio(template, overrides)
    portfolio = Portfolio(
        user_id=identity.user_id,
        template_id=str(template["_id"]),
        title=payload.title,
        subtitle=payload.subtitle,
        subdomain=subdomain,
        custom_domain=custom_domain,
        is_published=payload.is_published,
        **composed,
    )

    try:
        portfolio_id = create_document(db, PORTFOLIOS, portfolio)
    except DuplicateKeyError as e:
        raise _duplicate_error(e)

    increment_usage(db, template["_id"])
    logger.info("Created portfolio %s (%s) for user %s", portfolio_id, subdomain, identity.user_id)
    return to_public(_load(db, portfolio_id))


def list_user_portfolios(db: Database, identity: Identity) -> List[dict]:
    cursor = db[PORTFOLIOS].find({"user_id": identity.user_id}).sort("created_at", -1)
    return [to_public(p) for p in cursor]


def get_portfolio(db: Database, identity: Identity, portfolio_id: str) -> dict:
    portfolio = _load(db, portfolio_id)
    if not _is_owner(portfolio, identity) and not identity.is_admin:
        raise ForbiddenError("Not authorized to access this portfolio")
    return to_public(portfolio)


def get_public_portfolio(db: Database, subdomain: str, custom_domain: Optional[str] = None) -> dict:
    portfolio = None
    if custom_domain:
        portfolio = db[PORTFOLIOS].find_one({"custom_domain": custom_domain.strip().lower(), "is_published": True})
    if portfolio is None:
        portfolio = db[PORTFOLIOS].find_one({"subdomain": subdomain.strip().lower(), "is_published": True})
    if portfolio is None:
        raise NotFoundError("Portfolio not found")

    result = to_public(portfolio)
    template_id = portfolio.get("template_id")
    template = None
    if template_id:
        template = db[TEMPLATES].find_one({"_id": to_oid(template_id, "Template")}, PUBLIC_TEMPLATE_FIELDS)
    result["template"] = to_public(template)
    return result


def update_portfolio(db: Database, identity: Identity, portfolio_id: str, payload: PortfolioUpdate,
                     uploader: Optional[Uploader] = None) -> dict:
    portfolio = _load(db, portfolio_id)
    if not _is_owner(portfolio, identity):
        raise ForbiddenError("Not authorized to update this portfolio")

    data = payload.model_dump(exclude_unset=True)
    _check_keys(data)
    changes: Dict[str, Any] = {}
    removals: Dict[str, str] = {}
    stale_blobs: List[str] = []

    for key in ("title", "is_published", "animations_enabled"):
        if data.get(key) is not None:
            changes[key] = data[key]
    if "subtitle" in data:
        if data["subtitle"]:
            changes["subtitle"] = data["subtitle"]
        else:
            removals["subtitle"] = ""

    if data.get("subdomain"):
        subdomain = normalize_subdomain(data["subdomain"])
        if subdomain != portfolio.get("subdomain"):
            _ensure_available(db, "subdomain", subdomain, exclude_id=portfolio["_id"])
            changes["subdomain"] = subdomain

    if "custom_domain" in data:
        domain = normalize_custom_domain(data["custom_domain"])
        if domain:
            if domain != portfolio.get("custom_domain"):
                _ensure_available(db, "custom_domain", domain, exclude_id=portfolio["_id"])
            changes["custom_domain"] = domain
        elif portfolio.get("custom_domain"):
            # Unset rather than null so the sparse unique index ignores it.
            removals["custom_domain"] = ""

    selection = {k: data[k] for k in SELECTION_FIELDS if data.get(k) is not None}
    if selection:
        template = get_template(db, portfolio["template_id"])
        resolve_selection(template, selection)
        for key, value in selection.items():
            if key == "section_variants":
                for section, variant_id in value.items():
                    changes[f"section_variants.{section}"] = variant_id
            else:
                changes[key] = value

    for group, values in (data.get("settings") or {}).items():
        for key, value in (values or {}).items():
            if value is not None:
                changes[f"settings.{group}.{key}"] = value

    working = portfolio
    for section, patch in (data.get("content") or {}).items():
        result = update_section(working, section, patch, authorized=True)
        working = {**working, "section_content": {**(working.get("section_content") or {}), section: result.value}}
        changes.update(result.changes)

    if "header_image" in data:
        new_image = data["header_image"]
        old_image = portfolio.get("header_image")
        if new_image is None:
            if old_image:
                removals["header_image"] = ""
                stale_blobs.append(old_image.get("public_id"))
        elif not old_image or old_image.get("url") != new_image["url"]:
            changes["header_image"] = new_image
            if old_image:
                stale_blobs.append(old_image.get("public_id"))

    if data.get("gallery_images") is not None:
        new_ids = {img["public_id"] for img in data["gallery_images"]}
        stale_blobs += [img.get("public_id") for img in portfolio.get("gallery_images") or []
                        if img.get("public_id") not in new_ids]
        changes["gallery_images"] = data["gallery_images"]

    changes["updated_at"] = utcnow()
    update: Dict[str, Any] = {"$set": changes}
    if removals:
        update["$unset"] = removals
    try:
        updated = db[PORTFOLIOS].find_one_and_update(
            {"_id": portfolio["_id"]}, update, return_document=ReturnDocument.AFTER,
        )
    except DuplicateKeyError as e:
        raise _duplicate_error(e)
    if updated is None:
        raise NotFoundError("Portfolio not found")

    release_blobs(uploader, stale_blobs)
    return to_public(updated)


def delete_portfolio(db: Database, identity: Identity, portfolio_id: str,
                     uploader: Optional[Uploader] = None) -> None:
    portfolio = _load(db, portfolio_id)
    if not _is_owner(portfolio, identity) and not identity.is_admin:
        raise ForbiddenError("Not authorized to delete this portfolio")

    db[PORTFOLIOS].delete_one({"_id": portfolio["_id"]})
    db[VIEWS].delete_many({"portfolio_id": str(portfolio["_id"])})

    blobs = [img.get("public_id") for img in portfolio.get("gallery_images") or []]
    if portfolio.get("header_image"):
        blobs.append(portfolio["header_image"].get("public_id"))
    release_blobs(uploader, blobs)
    logger.info("Deleted portfolio %s", portfolio_id)


def update_portfolio_section(db: Database, identity: Identity, portfolio_id: str, section: str,
                             patch: Dict[str, Any]) -> dict:
    portfolio = _load(db, portfolio_id)
    result = update_section(portfolio, section, patch, authorized=_is_owner(portfolio, identity))
    db[PORTFOLIOS].update_one(
        {"_id": portfolio["_id"]},
        {"$set": {**result.changes, "updated_at": utcnow()}},
    )
    return result.to_dict()


def delete_portfolio_item(db: Database, identity: Identity, portfolio_id: str, section: str,
                          item_id: Optional[str] = None, item_index: Optional[str] = None) -> dict:
    portfolio = _load(db, portfolio_id)
    result = delete_item(portfolio, section, item_id=item_id, item_index=item_index,
                         authorized=_is_owner(portfolio, identity))
    db[PORTFOLIOS].update_one(
        {"_id": portfolio["_id"]},
        {"$set": {**result.changes, "updated_at": utcnow()}},
    )
    return result.to_dict()
