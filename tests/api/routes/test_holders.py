from typing import Any

from fastapi.testclient import TestClient

from app.core.config import settings
from app.services.vision import FaceMatch
from tests.utils.fakes import FakeVisionService

HOLDERS = f"{settings.API_V1_STR}/holders"


def issue_credential(
    client: TestClient,
    citizen_headers: dict[str, str],
    officer_headers: dict[str, str],
    **image_keys: str,
) -> str:
    payload = {
        "document_type": "nid",
        "full_name": "John Doe",
        "document_number": "NID123",
        **image_keys,
    }
    application = client.post(
        f"{settings.API_V1_STR}/applications/", headers=citizen_headers, json=payload
    ).json()
    approved = client.post(
        f"{settings.API_V1_STR}/applications/{application['application_id']}/approve",
        headers=officer_headers,
    ).json()
    return approved["uin"]


def upload(client: TestClient, citizen_headers: dict[str, str], kind: str) -> str:
    response = client.post(
        f"{settings.API_V1_STR}/files/",
        headers=citizen_headers,
        data={"kind": kind},
        files={"file": (f"{kind}.png", b"\x89PNG " + kind.encode(), "image/png")},
    )
    return response.json()["key"]


def check_face(client: TestClient, uin: str, content_type: str = "image/png") -> Any:
    return client.post(
        f"{HOLDERS}/verify-face",
        data={"uin": uin},
        files={"file": ("live.png", b"\x89PNG live selfie", content_type)},
    )


def test_read_own_credential(
    client: TestClient,
    citizen_token_headers: dict[str, str],
    officer_token_headers: dict[str, str],
) -> None:
    response = client.get(f"{HOLDERS}/me", headers=citizen_token_headers)
    assert response.status_code == 404
    assert response.json() == {
        "status": "error",
        "code": "NOT_FOUND",
        "message": "No credential issued yet",
        "details": {"subject_id": "citizen-u1"},
    }

    uin = issue_credential(client, citizen_token_headers, officer_token_headers)

    response = client.get(f"{HOLDERS}/me", headers=citizen_token_headers)
    assert response.status_code == 200
    content = response.json()
    assert content["uin"] == uin
    assert content["status"] == "active"
    assert content["full_name"] == "John Doe"
    assert content["photo_url"] is None


def test_photo_url_is_a_working_signed_link(
    client: TestClient,
    citizen_token_headers: dict[str, str],
    officer_token_headers: dict[str, str],
) -> None:
    issue_credential(
        client,
        citizen_token_headers,
        officer_token_headers,
        selfie_image_key=upload(client, citizen_token_headers, "selfie"),
    )

    photo_url = client.get(f"{HOLDERS}/me", headers=citizen_token_headers).json()["photo_url"]
    assert photo_url.startswith(f"{settings.API_V1_STR}/files/download?token=")

    response = client.get(photo_url)
    assert response.status_code == 200
    assert response.content == b"\x89PNG selfie"
    assert response.headers["content-type"] == "image/png"


def test_verify_credential_is_public(
    client: TestClient,
    citizen_token_headers: dict[str, str],
    officer_token_headers: dict[str, str],
) -> None:
    uin = issue_credential(client, citizen_token_headers, officer_token_headers)

    response = client.post(f"{HOLDERS}/verify", json={"uin": uin})
    assert response.status_code == 200
    content = response.json()
    assert content["valid"] is True
    assert content["reason"] is None
    assert content["credential"]["uin"] == uin
    assert content["credential"]["full_name"] == "John Doe"


def test_verify_unknown_credential(client: TestClient) -> None:
    response = client.post(f"{HOLDERS}/verify", json={"uin": "PNG9999999999"})
    assert response.status_code == 200
    assert response.json() == {"valid": False, "reason": "not_found", "credential": None}


def test_verify_malformed_uin(client: TestClient) -> None:
    response = client.post(f"{HOLDERS}/verify", json={"uin": "ABC-123"})
    assert response.status_code == 422
    assert response.json()["code"] == "VALIDATION_ERROR"
    assert response.json()["details"]["field"] == "uin"


def test_read_credential_by_uin(
    client: TestClient,
    citizen_token_headers: dict[str, str],
    officer_token_headers: dict[str, str],
) -> None:
    uin = issue_credential(client, citizen_token_headers, officer_token_headers)

    response = client.get(f"{HOLDERS}/{uin}", headers=officer_token_headers)
    assert response.status_code == 200
    assert response.json()["subject_id"] == "citizen-u1"

    response = client.get(f"{HOLDERS}/{uin}", headers=citizen_token_headers)
    assert response.status_code == 403

    response = client.get(f"{HOLDERS}/PNG9999999999", headers=officer_token_headers)
    assert response.status_code == 404


def test_change_credential_status(
    client: TestClient,
    citizen_token_headers: dict[str, str],
    officer_token_headers: dict[str, str],
    admin_token_headers: dict[str, str],
) -> None:
    uin = issue_credential(client, citizen_token_headers, officer_token_headers)

    response = client.patch(
        f"{HOLDERS}/{uin}/status",
        headers=officer_token_headers,
        json={"status": "suspended"},
    )
    assert response.status_code == 403

    response = client.patch(
        f"{HOLDERS}/{uin}/status",
        headers=admin_token_headers,
        json={"status": "suspended", "reason": "lost card"},
    )
    assert response.status_code == 200
    assert response.json()["status"] == "suspended"
    assert response.json()["status_reason"] == "lost card"

    verify = client.post(f"{HOLDERS}/verify", json={"uin": uin}).json()
    assert verify["valid"] is False
    assert verify["reason"] == "suspended"

    response = client.patch(
        f"{HOLDERS}/{uin}/status", headers=admin_token_headers, json={"status": "revoked"}
    )
    assert response.status_code == 200

    response = client.patch(
        f"{HOLDERS}/{uin}/status", headers=admin_token_headers, json={"status": "active"}
    )
    assert response.status_code == 409
    assert response.json()["details"]["current_status"] == "revoked"


def test_verify_face_against_enrolled_credential(
    client: TestClient,
    citizen_token_headers: dict[str, str],
    officer_token_headers: dict[str, str],
    vision: FakeVisionService,
) -> None:
    uin = issue_credential(
        client,
        citizen_token_headers,
        officer_token_headers,
        document_image_key=upload(client, citizen_token_headers, "document"),
        selfie_image_key=upload(client, citizen_token_headers, "selfie"),
    )

    response = check_face(client, uin)
    assert response.status_code == 200
    assert response.json() == {
        "uin": uin,
        "matched": True,
        "reason": None,
        "confidence": 95.0,
    }

    vision.matches = [FaceMatch(face_id="face-0042", similarity=99.0)]
    response = check_face(client, uin)
    assert response.status_code == 200
    assert response.json()["matched"] is False
    assert response.json()["reason"] == "face_mismatch"


def test_verify_face_without_enrolled_face(
    client: TestClient,
    citizen_token_headers: dict[str, str],
    officer_token_headers: dict[str, str],
) -> None:
    uin = issue_credential(client, citizen_token_headers, officer_token_headers)

    response = check_face(client, uin)
    assert response.status_code == 200
    assert response.json()["reason"] == "no_face_enrolled"


def test_verify_face_only_accepts_images(client: TestClient) -> None:
    response = check_face(client, "PNG9999999999", content_type="application/pdf")
    assert response.status_code == 422
    assert response.json()["details"]["field"] == "file"

    response = client.post(f"{HOLDERS}/verify-face", data={"uin": "PNG9999999999"})
    assert response.status_code == 422
    assert response.json()["details"]["field"] == "file"


def test_revoking_removes_the_enrolled_face(
    client: TestClient,
    citizen_token_headers: dict[str, str],
    officer_token_headers: dict[str, str],
    admin_token_headers: dict[str, str],
    vision: FakeVisionService,
) -> None:
    uin = issue_credential(
        client,
        citizen_token_headers,
        officer_token_headers,
        document_image_key=upload(client, citizen_token_headers, "document"),
        selfie_image_key=upload(client, citizen_token_headers, "selfie"),
    )

    response = client.patch(
        f"{HOLDERS}/{uin}/status", headers=admin_token_headers, json={"status": "revoked"}
    )
    assert response.status_code == 200
    assert vision.removed == ["face-0001"]

    response = check_face(client, uin)
    assert response.json()["matched"] is False
    assert response.json()["reason"] == "revoked"
