"""Template catalogue: admin CRUD, category defaults, enhancement, reviews."""
import logging
from typing import List, Optional

from bson import ObjectId
from pymongo import ReturnDocument
from pymongo.database import Database

from auth import Identity
from composition import derive_defaults
from database import TEMPLATES, create_document, get_documents, to_oid, to_public, utcnow
from errors import ConflictError, ForbiddenError, NotFoundError
from migrations import migrate_template, upgrade
from schemas import ReviewCreate, Template, TemplateCreate, TemplateUpdate

logger = logging.getLogger(__name__)


def _require_admin(identity: Identity, action: str) -> None:
    if not identity.is_admin:
        raise ForbiddenError(f"Not authorized to {action} templates")


def list_templates(db: Database, category: Optional[str] = None, published_only: bool = True) -> List[dict]:
    filt = {}
    if category:
        filt["category"] = category.lower()
    if published_only:
        filt["is_published"] = True
    return [to_public(t) for t in get_documents(db, TEMPLATES, filt, sort=[("created_at", -1)])]


def get_template(db: Database, template_id: str) -> dict:
    template = db[TEMPLATES].find_one({"_id": to_oid(template_id, "Template")})
    if not template:
        raise NotFoundError("Template not found")
    return template


def get_template_defaults(category: str) -> dict:
    return derive_defaults(category)


def create_template(db: Database, identity: Identity, payload: TemplateCreate) -> dict:
    """Store a new template with every migration step already applied."""
    _require_admin(identity, "create")
    template = Template(**payload.model_dump(exclude_none=True), created_by=identity.user_id)
    doc, _, _ = upgrade(template.model_dump(exclude_none=True))
    template_id = create_document(db, TEMPLATES, doc)
    logger.info("Created template %s (%s)", template_id, payload.name)
    return to_public(get_template(db, template_id))


def update_template(db: Database, identity: Identity, template_id: str, payload: TemplateUpdate) -> dict:
    _require_admin(identity, "update")
    changes = payload.model_dump(exclude_none=True)
    changes["updated_at"] = utcnow()
    # Bumping the revision makes a concurrent migration re-read this template.
    template = db[TEMPLATES].find_one_and_update(
        {"_id": to_oid(template_id, "Template")},
        {"$set": changes, "$inc": {"revision": 1}},
        return_document=ReturnDocument.AFTER,
    )
    if not template:
        raise NotFoundError("Template not found")
    return to_public(template)


def delete_template(db: Database, identity: Identity, template_id: str) -> None:
    _require_admin(identity, "delete")
    result = db[TEMPLATES].delete_one({"_id": to_oid(template_id, "Template")})
    if result.deleted_count == 0:
        raise NotFoundError("Template not found")
    logger.info("Deleted template %s", template_id)


def enhance_template(db: Database, identity: Identity, template_id: str) -> dict:
    _require_admin(identity, "enhance")
    outcome = migrate_template(db, get_template(db, template_id))
    return {
        "template": to_public(get_template(db, template_id)),
        "updated": outcome.changed,
        "steps": outcome.steps,
        "added": outcome.delta.added,
    }


def add_review(db: Database, identity: Identity, template_id: str, payload: ReviewCreate) -> dict:
    template = get_template(db, template_id)
    reviews = template.get("reviews") or []
    if any(r.get("user_id") == identity.user_id for r in reviews):
        raise ConflictError("You have already reviewed this template")

    review = {"user_id": identity.user_id, "rating": payload.rating, "created_at": utcnow()}
    if payload.comment:
        review["comment"] = payload.comment
    ratings = [r["rating"] for r in reviews] + [payload.rating]
    rating = {"average": round(sum(ratings) / len(ratings), 2), "count": len(ratings)}

    # The reviews filter keeps a concurrent second review by the same user out.
    updated = db[TEMPLATES].find_one_and_update(
        {"_id": template["_id"], "reviews.user_id": {"$ne": identity.user_id}},
        {"$push": {"reviews": review}, "$set": {"rating": rating, "updated_at": utcnow()}},
        return_document=ReturnDocument.AFTER,
    )
    if not updated:
        raise ConflictError("You have already reviewed this template")
    return {"rating": updated["rating"], "review": review}


def category_stats(db: Database) -> List[dict]:
    rows = db[TEMPLATES].aggregate([
        {"$group": {"_id": "$category", "count": {"$sum": 1}}},
        {"$sort": {"_id": 1}},
    ])
    return [{"category": row["_id"], "count": row["count"]} for row in rows]


def increment_usage(db: Database, template_id: ObjectId) -> None:
    db[TEMPLATES].update_one({"_id": template_id}, {"$inc": {"usage_count": 1}})
