import io
import uuid

import pytest
from fastapi import UploadFile, status
from fastapi.testclient import TestClient

from auth import create_access_token
from conftest import make_image_bytes, make_pdf_bytes
from errors import ValidationError, ValidationFailure
from main import _to_file_upload, app
from settings import Settings, get_settings


# --- Helpers ---
def register(client: TestClient, role: str = "employee", email: str = None) -> dict:
    email = email or f"{role}-{uuid.uuid4().hex[:10]}@example.com"
    response = client.post("/users/", json={"email": email, "name": "Api", "lastname": "Tester", "role": role})
    assert response.status_code == status.HTTP_200_OK, response.text
    return response.json()


def as_user(user: dict) -> dict:
    return {"X-User-Id": str(user["id"])}


def create_company(client: TestClient, employer: dict) -> dict:
    response = client.post(
        "/companies",
        data={
            "name": "Acme",
            "description": "Makes everything",
            "address": "1 Road Runner Way",
            "phone": "555-0199",
            "website": "https://acme.example.com",
            "email": "jobs@acme.example.com",
        },
        files={"image": ("logo.png", make_image_bytes(), "image/png")},
        headers=as_user(employer),
    )
    assert response.status_code == status.HTTP_200_OK, response.text
    return response.json()


def create_post(client: TestClient, employer: dict, nr_workers: int = 1) -> dict:
    response = client.post(
        "/posts",
        json={"title": "Forklift Driver", "description": "Drive forklifts", "nr_workers": nr_workers},
        headers=as_user(employer),
    )
    assert response.status_code == status.HTTP_200_OK, response.text
    return response.json()


def upload_cv(client: TestClient, user: dict):
    return client.post(
        "/cv",
        files={"file": ("resume.pdf", make_pdf_bytes(), "application/pdf")},
        headers=as_user(user),
    )


# --- Tests ---
def test_register_and_me(test_client: TestClient):
    user = register(test_client)

    response = test_client.get("/users/me", headers=as_user(user))

    assert response.status_code == status.HTTP_200_OK
    assert response.json()["email"] == user["email"]
    assert response.headers["X-Request-ID"]


def test_duplicate_registration(test_client: TestClient):
    user = register(test_client)
    response = test_client.post("/users/", json={"email": user["email"], "name": "Again"})

    assert response.status_code == status.HTTP_409_CONFLICT
    assert response.json()["error"] == "already_registered"


def test_missing_identity_is_unauthorized(test_client: TestClient):
    assert test_client.get("/users/me").status_code == status.HTTP_401_UNAUTHORIZED
    assert test_client.get("/users/me", headers={"X-User-Id": "999999"}).status_code == status.HTTP_401_UNAUTHORIZED


def test_full_application_flow(test_client: TestClient, mailer):
    employer = register(test_client, role="employer")
    create_company(test_client, employer)
    post = create_post(test_client, employer, nr_workers=1)
    seeker = register(test_client)
    assert upload_cv(test_client, seeker).status_code == status.HTTP_200_OK

    response = test_client.post("/applications", json={"post_id": post["id"]}, headers=as_user(seeker))
    assert response.status_code == status.HTTP_200_OK, response.text
    application = response.json()
    assert application["status"] == "pending"
    # both emails were delivered by the background task
    assert mailer.send.await_count == 2
    assert test_client.get(f"/posts/{post['id']}").json()["nr_workers"] == 0

    received = test_client.get("/applications/received", headers=as_user(employer)).json()
    assert [a["id"] for a in received] == [application["id"]]

    cv_download = test_client.get(f"/applications/{application['id']}/cv", headers=as_user(employer))
    assert cv_download.status_code == status.HTTP_200_OK
    assert cv_download.headers["content-type"] == "application/pdf"

    accepted = test_client.post(f"/applications/{application['id']}/accept", headers=as_user(employer))
    assert accepted.json()["status"] == "accepted"
    assert mailer.send.await_count == 3

    mine = test_client.get("/applications/mine", headers=as_user(seeker)).json()
    assert mine[0]["status"] == "accepted"

    withdrawn = test_client.delete(f"/applications/{application['id']}", headers=as_user(seeker))
    assert withdrawn.status_code == status.HTTP_200_OK
    assert test_client.get(f"/posts/{post['id']}").json()["nr_workers"] == 1


def test_domain_errors_are_reported_with_codes(test_client: TestClient):
    employer = register(test_client, role="employer")
    create_company(test_client, employer)
    full_post = create_post(test_client, employer, nr_workers=0)
    open_post = create_post(test_client, employer, nr_workers=2)
    seeker = register(test_client)

    no_cv = test_client.post("/applications", json={"post_id": open_post["id"]}, headers=as_user(seeker))
    assert no_cv.status_code == status.HTTP_409_CONFLICT
    assert no_cv.json()["error"] == "missing_cv"

    upload_cv(test_client, seeker)
    full = test_client.post("/applications", json={"post_id": full_post["id"]}, headers=as_user(seeker))
    assert full.json()["error"] == "no_capacity"

    wrong_role = test_client.post("/applications", json={"post_id": open_post["id"]}, headers=as_user(employer))
    assert wrong_role.status_code == status.HTTP_403_FORBIDDEN
    assert wrong_role.json()["error"] == "wrong_role"

    test_client.post("/applications", json={"post_id": open_post["id"]}, headers=as_user(seeker))
    again = test_client.post("/applications", json={"post_id": open_post["id"]}, headers=as_user(seeker))
    assert again.json()["error"] == "duplicate_application"

    missing = test_client.post("/applications/777777/accept", headers=as_user(employer))
    assert missing.status_code == status.HTTP_404_NOT_FOUND


def test_withdraw_by_other_user_is_forbidden(test_client: TestClient):
    employer = register(test_client, role="employer")
    create_company(test_client, employer)
    post = create_post(test_client, employer, nr_workers=1)
    seeker = register(test_client)
    upload_cv(test_client, seeker)
    application = test_client.post("/applications", json={"post_id": post["id"]}, headers=as_user(seeker)).json()
    intruder = register(test_client)

    response = test_client.delete(f"/applications/{application['id']}", headers=as_user(intruder))

    assert response.status_code == status.HTTP_403_FORBIDDEN
    assert response.json()["error"] == "not_owner"
    assert test_client.get(f"/posts/{post['id']}").json()["nr_workers"] == 0


def test_cv_replace_requires_existing_cv(test_client: TestClient, file_store):
    seeker = register(test_client)

    response = test_client.put(
        "/cv",
        files={"file": ("resume.pdf", make_pdf_bytes(), "application/pdf")},
        headers=as_user(seeker),
    )

    assert response.status_code == status.HTTP_409_CONFLICT
    assert response.json()["error"] == "no_existing_cv"
    assert not list(file_store.root.rglob("*.pdf"))


def test_cv_upload_rejects_non_pdf(test_client: TestClient):
    seeker = register(test_client)
    response = test_client.post(
        "/cv",
        files={"file": ("resume.txt", b"plain text", "text/plain")},
        headers=as_user(seeker),
    )
    assert response.status_code == 422
    assert response.json()["error"] == "validation_error"


def test_employee_cannot_create_company_or_post(test_client: TestClient):
    seeker = register(test_client)
    response = test_client.post(
        "/posts", json={"title": "Nope", "nr_workers": 1}, headers=as_user(seeker)
    )
    assert response.json()["error"] == "wrong_role"

    employer = register(test_client, role="employer")
    no_company = test_client.post("/posts", json={"title": "Nope", "nr_workers": 1}, headers=as_user(employer))
    assert no_company.json()["error"] == "missing_company"


def test_negative_capacity_is_rejected_at_input(test_client: TestClient):
    employer = register(test_client, role="employer")
    create_company(test_client, employer)
    response = test_client.post(
        "/posts", json={"title": "Bad", "nr_workers": -1}, headers=as_user(employer)
    )
    assert response.status_code == 422


def test_saved_posts(test_client: TestClient):
    employer = register(test_client, role="employer")
    create_company(test_client, employer)
    post = create_post(test_client, employer)
    seeker = register(test_client)

    assert test_client.post(f"/posts/{post['id']}/save", headers=as_user(seeker)).status_code == 200
    saved = test_client.get("/saved-posts", headers=as_user(seeker)).json()
    assert [p["id"] for p in saved] == [post["id"]]

    assert test_client.delete(f"/posts/{post['id']}/save", headers=as_user(seeker)).status_code == 200
    assert test_client.get("/saved-posts", headers=as_user(seeker)).json() == []


def test_admin_endpoints_require_admin(test_client: TestClient):
    user = register(test_client)
    response = test_client.get("/admin/stats", headers=as_user(user))
    assert response.status_code == status.HTTP_403_FORBIDDEN
    assert response.json()["error"] == "admin_required"


def test_admin_stats_and_deletions(test_client: TestClient):
    admin_email = f"admin-{uuid.uuid4().hex[:8]}@example.com"
    admin = register(test_client, email=admin_email)
    app.dependency_overrides[get_settings] = lambda: Settings(admin_emails=[admin_email])
    try:
        employer = register(test_client, role="employer")
        create_company(test_client, employer)
        post = create_post(test_client, employer)

        stats = test_client.get("/admin/stats", headers=as_user(admin))
        assert stats.status_code == status.HTTP_200_OK
        assert stats.json()["employers"] >= 1

        assert test_client.delete(f"/admin/posts/{post['id']}", headers=as_user(admin)).status_code == 200
        assert test_client.get(f"/posts/{post['id']}").status_code == status.HTTP_404_NOT_FOUND

        assert test_client.delete(f"/admin/users/{employer['id']}", headers=as_user(admin)).status_code == 200
        assert test_client.get("/users/me", headers=as_user(employer)).status_code == status.HTTP_401_UNAUTHORIZED
    finally:
        del app.dependency_overrides[get_settings]


def test_bearer_tokens_when_auth_enabled(test_client: TestClient):
    user = register(test_client)
    settings = Settings(auth_enabled=True, jwt_secret="test-secret")
    app.dependency_overrides[get_settings] = lambda: settings
    try:
        token = create_access_token(user["id"], settings)
        ok = test_client.get("/users/me", headers={"Authorization": f"Bearer {token}"})
        assert ok.status_code == status.HTTP_200_OK
        assert ok.json()["id"] == user["id"]

        header_only = test_client.get("/users/me", headers=as_user(user))
        assert header_only.status_code == status.HTTP_401_UNAUTHORIZED

        forged = create_access_token(user["id"], Settings(auth_enabled=True, jwt_secret="other-secret"))
        bad = test_client.get("/users/me", headers={"Authorization": f"Bearer {forged}"})
        assert bad.status_code == status.HTTP_401_UNAUTHORIZED
    finally:
        del app.dependency_overrides[get_settings]


def test_admin_cannot_delete_themselves(test_client: TestClient):
    admin_email = f"admin-{uuid.uuid4().hex[:8]}@example.com"
    admin = register(test_client, email=admin_email)
    app.dependency_overrides[get_settings] = lambda: Settings(admin_emails=[admin_email])
    try:
        response = test_client.delete(f"/admin/users/{admin['id']}", headers=as_user(admin))
    finally:
        del app.dependency_overrides[get_settings]

    assert response.status_code == status.HTTP_400_BAD_REQUEST
    assert response.json()["error"] == "self_deletion"
    assert test_client.get("/users/me", headers=as_user(admin)).status_code == status.HTTP_200_OK


def test_oversized_upload_is_refused_without_reading_it_all():
    body = io.BytesIO(b"0" * 5000)
    upload = UploadFile(file=body, filename="resume.pdf")

    with pytest.raises(ValidationError) as excinfo:
        _to_file_upload(upload, max_bytes=1000)

    assert excinfo.value.failure == ValidationFailure.FILE_TOO_LARGE
    assert body.tell() == 1001


def test_declared_oversized_upload_is_not_read():
    body = io.BytesIO(b"0" * 5000)
    upload = UploadFile(file=body, filename="logo.png", size=5000)

    with pytest.raises(ValidationError):
        _to_file_upload(upload, max_bytes=1000)

    assert body.tell() == 0


def test_oversized_cv_upload_is_rejected(test_client: TestClient):
    seeker = register(test_client)
    response = test_client.post(
        "/cv",
        files={"file": ("resume.pdf", b"0" * (2 * 1024 * 1024 + 1), "application/pdf")},
        headers=as_user(seeker),
    )

    assert response.status_code == 422
    assert response.json()["error"] == "validation_error"
    assert test_client.get("/cv", headers=as_user(seeker)).status_code == status.HTTP_404_NOT_FOUND
