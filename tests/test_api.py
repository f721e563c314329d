"""End-to-end tests for the HTTP API."""

from conftest import bearer, make_admin, signup
from database import USERS, to_oid
from main import get_uploader
from uploads import Uploader


def admin_token(client, db) -> str:
    body = signup(client, "admin")
    make_admin(db, body["user"]["id"])
    return body["token"]


def create_published_template(client, token, category="developer") -> dict:
    response = client.post("/templates", headers=bearer(token), json={
        "name": "Dev Starter", "description": "Clean", "category": category, "is_published": True,
    })
    assert response.status_code == 201, response.text
    return response.json()


def create_portfolio(client, token, template_id, subdomain="jane", **fields) -> dict:
    response = client.post("/portfolios", headers=bearer(token), json={
        "template_id": template_id, "title": "Jane Doe", "subdomain": subdomain, **fields,
    })
    assert response.status_code == 201, response.text
    return response.json()


class TestHealth:

    def test_root(self, client):
        response = client.get("/")
        assert response.status_code == 200
        assert response.json() == {"message": "Portfolio Hub API running"}

    def test_database_status(self, client):
        body = client.get("/test").json()
        assert body["database"] == "✅ Connected"
        assert isinstance(body["collections"], list)

    def test_request_id_header(self, client):
        response = client.get("/templates")
        assert len(response.headers["X-Request-ID"]) == 8


class TestAuthRoutes:

    def test_signup_and_me(self, client):
        body = signup(client, "Jane")
        assert body["user"]["username"] == "jane"
        assert body["verification_email_sent"] is True
        me = client.get("/auth/me", headers=bearer(body["token"]))
        assert me.status_code == 200
        assert me.json()["email"] == "jane@example.com"

    def test_duplicate_signup(self, client):
        signup(client, "jane")
        response = client.post("/auth/signup", json={
            "username": "jane2", "email": "JANE@example.com", "password": "Secret123!", "full_name": "J",
        })
        assert response.status_code == 409
        assert response.json()["detail"] == "Email is already in use"

    def test_login_and_logout(self, client):
        signup(client, "jane")
        response = client.post("/auth/login", json={"login": "jane", "password": "Secret123!"})
        assert response.status_code == 200
        token = response.json()["token"]
        assert client.post("/auth/logout", headers=bearer(token)).json() == {"ok": True}
        assert client.get("/auth/me", headers=bearer(token)).status_code == 401

    def test_bad_credentials(self, client):
        signup(client, "jane")
        response = client.post("/auth/login", json={"login": "jane", "password": "wrong-password"})
        assert response.status_code == 401
        assert response.headers["WWW-Authenticate"] == "Bearer"

    def test_me_requires_token(self, client):
        response = client.get("/auth/me")
        assert response.status_code == 401
        assert response.json() == {"detail": "Not authenticated"}

    def test_forgot_password_is_uniform(self, client):
        signup(client, "jane")
        known = client.post("/auth/forgot-password", json={"email": "jane@example.com"})
        unknown = client.post("/auth/forgot-password", json={"email": "nobody@example.com"})
        assert known.status_code == unknown.status_code == 200
        assert known.json() == unknown.json()

    def test_change_password(self, client):
        token = signup(client, "jane")["token"]
        response = client.post("/auth/change-password", headers=bearer(token), json={
            "current_password": "Secret123!", "new_password": "BrandNew456!",
        })
        assert response.status_code == 200
        assert client.post("/auth/login", json={"login": "jane", "password": "BrandNew456!"}).status_code == 200

    def test_resend_verification(self, client):
        signup(client, "jane")
        known = client.post("/auth/resend-verification", json={"email": "jane@example.com"})
        unknown = client.post("/auth/resend-verification", json={"email": "nobody@example.com"})
        assert known.status_code == unknown.status_code == 200
        assert known.json() == unknown.json()

    def test_resend_verification_for_verified_account(self, client, db):
        body = signup(client, "jane")
        db[USERS].update_one({"_id": to_oid(body["user"]["id"])}, {"$set": {"verified": True}})
        response = client.post("/auth/resend-verification", json={"email": "jane@example.com"})
        assert response.status_code == 400

    def test_update_profile(self, client):
        token = signup(client, "jane")["token"]
        response = client.put("/auth/profile", headers=bearer(token), json={
            "bio": "Builds things", "social_accounts": {"github": "https://github.com/jane"},
        })
        assert response.status_code == 200
        me = client.get("/auth/me", headers=bearer(token)).json()
        assert me["bio"] == "Builds things"
        assert me["social_accounts"] == {"github": "https://github.com/jane"}

    def test_profile_picture_upload_and_delete(self, client):
        body = signup(client, "jane")
        token = body["token"]
        response = client.post("/auth/profile/picture", headers=bearer(token),
                               files={"file": ("me.png", b"\x89PNG fake", "image/png")})
        assert response.status_code == 200
        picture = response.json()["profile_picture"]
        assert picture["public_id"].startswith(f"placeholder/portfoliohub/{body['user']['id']}/profile/")

        response = client.delete("/auth/profile/picture", headers=bearer(token))
        assert response.status_code == 200
        assert "profile_picture" not in client.get("/auth/me", headers=bearer(token)).json()


class TestTemplateRoutes:

    def test_admin_creates_template(self, client, db):
        template = create_published_template(client, admin_token(client, db))
        assert template["schema_version"] == 2
        listed = client.get("/templates").json()
        assert [t["id"] for t in listed] == [template["id"]]
        assert client.get(f"/templates/{template['id']}").json()["name"] == "Dev Starter"

    def test_non_admin_cannot_create(self, client):
        token = signup(client, "jane")["token"]
        response = client.post("/templates", headers=bearer(token), json={
            "name": "Mine", "description": "Nope", "category": "developer",
        })
        assert response.status_code == 403

    def test_unpublished_listing_needs_admin(self, client, db):
        token = signup(client, "jane")["token"]
        assert client.get("/templates?include_unpublished=true", headers=bearer(token)).status_code == 403
        assert client.get("/templates?include_unpublished=true",
                          headers=bearer(admin_token(client, db))).status_code == 200

    def test_defaults_for_unknown_category(self, client):
        response = client.get("/templates/defaults/basket-weaving")
        assert response.status_code == 200
        assert response.json()["layouts"][0]["id"] == "default"

    def test_stats(self, client, db):
        create_published_template(client, admin_token(client, db))
        assert client.get("/templates/stats").json() == [{"category": "developer", "count": 1}]

    def test_enhance_is_a_no_op_after_create(self, client, db):
        token = admin_token(client, db)
        template = create_published_template(client, token)
        body = client.post(f"/templates/{template['id']}/enhance", headers=bearer(token)).json()
        assert body["updated"] is False

    def test_second_review_conflicts(self, client, db):
        template = create_published_template(client, admin_token(client, db))
        token = signup(client, "jane")["token"]
        url = f"/templates/{template['id']}/reviews"
        first = client.post(url, headers=bearer(token), json={"rating": 4})
        assert first.status_code == 201
        assert first.json()["rating"] == {"average": 4.0, "count": 1}
        second = client.post(url, headers=bearer(token), json={"rating": 5})
        assert second.status_code == 409


class TestPortfolioRoutes:
    """Portfolio CRUD and section edits over HTTP."""

    def test_create_and_duplicate_subdomain(self, client, db):
        template = create_published_template(client, admin_token(client, db))
        jane = signup(client, "jane")["token"]
        bob = signup(client, "bob")["token"]

        portfolio = create_portfolio(client, jane, template["id"], subdomain="Jane")
        assert portfolio["subdomain"] == "jane"

        response = client.post("/portfolios", headers=bearer(bob), json={
            "template_id": template["id"], "title": "Bob", "subdomain": "JANE",
        })
        assert response.status_code == 409
        assert response.json()["detail"] == "Subdomain is already taken"

    def test_dollar_key_in_settings_is_a_validation_error(self, client, db):
        template = create_published_template(client, admin_token(client, db))
        token = signup(client, "jane")["token"]
        portfolio = create_portfolio(client, token, template["id"])
        response = client.put(f"/portfolios/{portfolio['id']}", headers=bearer(token), json={
            "settings": {"colors": {"$x": "#000000"}},
        })
        assert response.status_code == 400

    def test_malformed_id(self, client):
        token = signup(client, "jane")["token"]
        response = client.get("/portfolios/not-an-id", headers=bearer(token))
        assert response.status_code == 400
        assert response.json()["detail"] == "Invalid portfolio ID"

    def test_other_user_gets_403(self, client, db):
        template = create_published_template(client, admin_token(client, db))
        portfolio = create_portfolio(client, signup(client, "jane")["token"], template["id"])
        bob = signup(client, "bob")["token"]
        assert client.get(f"/portfolios/{portfolio['id']}", headers=bearer(bob)).status_code == 403

    def test_section_edit_and_item_delete(self, client, db):
        template = create_published_template(client, admin_token(client, db))
        token = signup(client, "jane")["token"]
        portfolio = create_portfolio(client, token, template["id"])
        base = f"/portfolios/{portfolio['id']}/sections"

        response = client.put(f"{base}/projects", headers=bearer(token), json={"items": [{"id": "a"}, {"id": "b"}]})
        assert response.status_code == 200
        assert response.json() == {"section": "projects", "content": {"title": "Projects", "items": [{"id": "a"}, {"id": "b"}]}}

        response = client.delete(f"{base}/projects/items?item_id=a", headers=bearer(token))
        assert response.json()["content"]["items"] == [{"id": "b"}]

        response = client.delete(f"{base}/projects/items?item_index=7", headers=bearer(token))
        assert response.status_code == 400
        assert response.json()["errors"] == {"index": 7, "length": 1}

        response = client.put(f"{base}/mystery", headers=bearer(token), json={"text": "x"})
        assert response.status_code == 404

    def test_update_and_public_view(self, client, db):
        template = create_published_template(client, admin_token(client, db))
        token = signup(client, "jane")["token"]
        portfolio = create_portfolio(client, token, template["id"])

        assert client.get("/public/jane").status_code == 404
        response = client.put(f"/portfolios/{portfolio['id']}", headers=bearer(token), json={
            "is_published": True, "settings": {"colors": {"primary": "#000000"}},
        })
        assert response.status_code == 200

        public = client.get("/public/JANE").json()
        assert public["settings"]["colors"]["primary"] == "#000000"
        assert public["template"]["name"] == "Dev Starter"

    def test_delete(self, client, db):
        template = create_published_template(client, admin_token(client, db))
        token = signup(client, "jane")["token"]
        portfolio = create_portfolio(client, token, template["id"])
        assert client.delete(f"/portfolios/{portfolio['id']}", headers=bearer(token)).json() == {"ok": True}
        assert client.get("/portfolios", headers=bearer(token)).json() == []


class TestUploadRoutes:

    def test_placeholder_upload_and_delete(self, client):
        body = signup(client, "jane")
        token = body["token"]
        response = client.post("/uploads", headers=bearer(token),
                               files={"file": ("me.png", b"\x89PNG fake", "image/png")})
        assert response.status_code == 201
        image = response.json()
        assert image["public_id"].startswith(f"placeholder/portfoliohub/{body['user']['id']}/")

        response = client.delete(f"/uploads/{image['public_id']}", headers=bearer(token))
        assert response.json() == {"deleted": False}

    def test_cannot_delete_someone_elses_image(self, client):
        jane = signup(client, "jane")
        bob = signup(client, "bob")["token"]
        public_id = f"portfoliohub/{jane['user']['id']}/photo"
        assert client.delete(f"/uploads/{public_id}", headers=bearer(bob)).status_code == 403

    def test_rejects_non_images(self, client):
        token = signup(client, "jane")["token"]
        response = client.post("/uploads", headers=bearer(token),
                               files={"file": ("notes.txt", b"hello", "text/plain")})
        assert response.status_code == 400

    def test_oversized_upload_is_read_only_past_the_limit(self, client, settings):
        settings.max_upload_bytes = 10
        seen = []

        class SizeRecordingUploader(Uploader):
            def validate(self, data, content_type):
                seen.append(len(data))
                super().validate(data, content_type)

        client.app.dependency_overrides[get_uploader] = lambda: SizeRecordingUploader(settings)
        token = signup(client, "jane")["token"]
        response = client.post("/uploads", headers=bearer(token),
                               files={"file": ("big.png", b"x" * 1000, "image/png")})
        assert response.status_code == 400
        assert "too large" in response.json()["detail"]
        assert seen == [11]


class TestAnalyticsRoutes:

    def test_views_are_deduplicated(self, client, db):
        template = create_published_template(client, admin_token(client, db))
        token = signup(client, "jane")["token"]
        portfolio = create_portfolio(client, token, template["id"])

        payload = {"portfolio_id": portfolio["id"], "referrer": "https://google.com"}
        assert client.post("/analytics/views", json=payload).json() == {"is_new_view": True}
        assert client.post("/analytics/views", json=payload).json() == {"is_new_view": False}

        stats = client.get(f"/analytics/views/{portfolio['id']}", headers=bearer(token)).json()
        assert stats["total_views"] == 1
        assert stats["top_referrers"] == [{"referrer": "https://google.com", "count": 1}]

    def test_bad_period(self, client, db):
        template = create_published_template(client, admin_token(client, db))
        token = signup(client, "jane")["token"]
        portfolio = create_portfolio(client, token, template["id"])
        response = client.get(f"/analytics/views/{portfolio['id']}?period=decade", headers=bearer(token))
        assert response.status_code == 400
