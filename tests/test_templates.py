"""Tests for the template catalogue."""

import pytest
from bson import ObjectId

from database import TEMPLATES
from errors import ConflictError, ForbiddenError, NotFoundError, ValidationError
from migrations import LATEST_SCHEMA_VERSION
from schemas import ReviewCreate, TemplateCreate, TemplateUpdate
from templates import (add_review, category_stats, create_template, delete_template, enhance_template,
                       get_template, get_template_defaults, list_templates, update_template)


def new_template(**fields) -> TemplateCreate:
    data = {"name": "Starter", "description": "A template", "category": "designer", **fields}
    return TemplateCreate(**data)


class TestCreateTemplate:
    """Admins create templates; defaults are filled in on the way in."""

    def test_fills_category_defaults(self, developer_template):
        assert developer_template["schema_version"] == LATEST_SCHEMA_VERSION
        assert developer_template["revision"] == 0
        assert [l["id"] for l in developer_template["layouts"]] == ["default", "sidebar", "sidebar-right", "tabbed"]
        assert set(developer_template["section_definitions"]) == {
            "header", "about", "projects", "skills", "experience", "education", "contact",
        }
        assert "code" in developer_template["style_presets"]
        assert set(developer_template["animations"]) == {
            "fadeIn", "slideUp", "slideRight", "zoomIn", "reveal", "typewriter",
        }
        assert developer_template["usage_count"] == 0

    def test_supplied_layouts_win(self, db, admin):
        template = create_template(db, admin, new_template(layouts=[{
            "id": "default", "name": "Bespoke",
            "structure": {"sections": ["header", "gallery"], "grid_system": "bespoke"},
        }]))
        assert template["layouts"][0]["name"] == "Bespoke"
        assert template["layouts"][0]["structure"]["grid_system"] == "bespoke"
        assert "minimal" in {l["id"] for l in template["layouts"]}

    def test_non_admin_is_forbidden(self, db, user):
        with pytest.raises(ForbiddenError):
            create_template(db, user, new_template())
        assert db[TEMPLATES].count_documents({}) == 0

    def test_duplicate_layout_ids_rejected(self):
        layout = {"id": "default", "name": "A", "structure": {"grid_system": "12-column"}}
        with pytest.raises(ValueError):
            new_template(layouts=[layout, dict(layout, name="B")])


class TestQueries:

    def test_published_filter(self, db, admin, developer_template):
        create_template(db, admin, new_template(name="Draft"))
        assert [t["name"] for t in list_templates(db)] == ["Dev Starter"]
        assert {t["name"] for t in list_templates(db, published_only=False)} == {"Dev Starter", "Draft"}

    def test_category_filter(self, db, admin, developer_template):
        create_template(db, admin, new_template(is_published=True))
        assert [t["name"] for t in list_templates(db, category="Designer")] == ["Starter"]

    def test_get_missing_and_malformed(self, db):
        with pytest.raises(NotFoundError):
            get_template(db, str(ObjectId()))
        with pytest.raises(ValidationError, match="Invalid template ID"):
            get_template(db, "nope")

    def test_defaults_for_unknown_category(self):
        defaults = get_template_defaults("underwater-basket-weaving")
        assert defaults["layouts"][0]["id"] == "default"
        assert defaults["theme_options"]["color_schemes"][0]["id"] == "default"

    def test_category_stats(self, db, admin, developer_template):
        create_template(db, admin, new_template())
        create_template(db, admin, new_template(name="Other"))
        assert category_stats(db) == [
            {"category": "designer", "count": 2},
            {"category": "developer", "count": 1},
        ]


class TestUpdateAndDelete:

    def test_update_bumps_revision(self, db, admin, developer_template):
        updated = update_template(db, admin, developer_template["id"], TemplateUpdate(name="Renamed"))
        assert updated["name"] == "Renamed"
        assert updated["revision"] == 1
        assert updated["layouts"] == developer_template["layouts"]

    def test_update_requires_admin(self, db, user, developer_template):
        with pytest.raises(ForbiddenError):
            update_template(db, user, developer_template["id"], TemplateUpdate(name="Mine"))

    def test_delete(self, db, admin, developer_template):
        delete_template(db, admin, developer_template["id"])
        with pytest.raises(NotFoundError):
            delete_template(db, admin, developer_template["id"])


class TestEnhanceTemplate:
    """Enhancing a stored template through the admin operation."""

    def test_enhances_legacy_document(self, db, admin):
        template_id = db[TEMPLATES].insert_one({
            "name": "Legacy", "description": "Old", "category": "photographer",
            "layouts": [{"id": "default", "name": "Mine", "structure": {"sections": [], "grid_system": "x"}}],
        }).inserted_id

        result = enhance_template(db, admin, str(template_id))

        assert result["updated"]
        assert result["steps"] == ["structural", "enhancement"]
        assert result["added"]["layouts"] == 3
        assert result["template"]["layouts"][0]["name"] == "Mine"
        assert result["template"]["schema_version"] == LATEST_SCHEMA_VERSION

    def test_second_enhance_is_a_no_op(self, db, admin, developer_template):
        result = enhance_template(db, admin, developer_template["id"])
        assert not result["updated"]
        assert result["added"] == {}
        assert result["template"]["revision"] == 0

    def test_requires_admin(self, db, user, developer_template):
        with pytest.raises(ForbiddenError):
            enhance_template(db, user, developer_template["id"])


class TestReviews:

    def test_average_and_count(self, db, user, other_user, developer_template):
        add_review(db, user, developer_template["id"], ReviewCreate(rating=5, comment="Great"))
        result = add_review(db, other_user, developer_template["id"], ReviewCreate(rating=2))
        assert result["rating"] == {"average": 3.5, "count": 2}
        assert "comment" not in result["review"]

    def test_average_is_rounded(self, db, user, other_user, admin, developer_template):
        for identity, rating in ((user, 5), (other_user, 4), (admin, 4)):
            result = add_review(db, identity, developer_template["id"], ReviewCreate(rating=rating))
        assert result["rating"] == {"average": 4.33, "count": 3}

    def test_one_review_per_user(self, db, user, developer_template):
        add_review(db, user, developer_template["id"], ReviewCreate(rating=4))
        with pytest.raises(ConflictError, match="already reviewed"):
            add_review(db, user, developer_template["id"], ReviewCreate(rating=1))
        stored = db[TEMPLATES].find_one({"name": "Dev Starter"})
        assert len(stored["reviews"]) == 1

    def test_rating_bounds(self):
        with pytest.raises(ValueError):
            ReviewCreate(rating=6)
