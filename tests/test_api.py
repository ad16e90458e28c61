from datetime import date, timedelta


def register(client, username, role="parent", **extra):
    payload = {
        "username": username,
        "email": f"{username}@example.com",
        "password": "secret123",
        "role": role,
        **extra
    }
    if role == "parent":
        payload.setdefault("phone", "9876543210")
    if role == "doctor":
        payload.update(
            medical_license="MCI-999",
            hospital_affiliation="Rainbow Children's Hospital",
            specialization="Pediatrics",
            years_of_experience=5
        )
    return client.post("/api/auth/register", json=payload)


def login(client, username):
    response = client.post("/api/auth/login", json={"username": username, "password": "secret123"})
    return response


def auth(token):
    return {"Authorization": f"Bearer {token}"}


def parent_token(client, username="meera"):
    return register(client, username).json()["token"]


def approved_doctor_token(client, username="dr_rao"):
    doctor_id = register(client, username, role="doctor").json()["user"]["id"]
    admin = register(client, "admin_" + username, role="admin").json()["token"]
    response = client.put(f"/api/admin/doctors/{doctor_id}/approve", json={}, headers=auth(admin))
    assert response.status_code == 200
    return login(client, username).json()["token"]


def add_child(client, token, days_old=90, name="Aarav"):
    return client.post("/api/children", headers=auth(token), json={
        "name": name,
        "date_of_birth": (date.today() - timedelta(days=days_old)).isoformat(),
        "gender": "male",
    })


def test_health(client):
    assert client.get("/health").json() == {"status": "healthy"}


def test_register_and_me(client):
    response = register(client, "meera")

    assert response.status_code == 201
    body = response.json()
    assert body["requires_approval"] is False
    me = client.get("/api/auth/me", headers=auth(body["token"]))
    assert me.status_code == 200
    assert me.json()["user"]["email"] == "meera@example.com"


def test_missing_token_is_401(client):
    response = client.get("/api/children")

    assert response.status_code == 401
    assert response.json()["error"]["kind"] == "unauthenticated"


def test_garbage_token_is_401(client):
    response = client.get("/api/children", headers=auth("not-a-jwt"))
    assert response.status_code == 401


def test_wrong_password_is_401(client):
    register(client, "meera")
    response = client.post("/api/auth/login", json={"email": "meera@example.com", "password": "nope123"})

    assert response.status_code == 401
    assert response.json()["error"]["code"] == "INVALID_CREDENTIALS"


def test_unapproved_doctor_login_is_403(client):
    body = register(client, "dr_new", role="doctor").json()
    assert body["token"] is None
    assert body["requires_approval"] is True

    response = login(client, "dr_new")

    assert response.status_code == 403
    assert response.json()["error"]["code"] == "PENDING_APPROVAL"


def test_doctor_registration_without_license_is_400(client):
    response = client.post("/api/auth/register", json={
        "username": "dr_half",
        "email": "dr_half@example.com",
        "password": "secret123",
        "role": "doctor",
    })

    assert response.status_code == 400
    assert response.json()["error"]["details"]["field"] == "medical_license"


def test_create_child_returns_schedule(client):
    token = parent_token(client)

    response = add_child(client, token)

    assert response.status_code == 201
    child = response.json()["data"]
    assert len(child["vaccination_schedule"]) == 23
    assert child["vaccination_summary"]["total"] == 23


def test_future_birth_date_is_400(client):
    token = parent_token(client)
    response = add_child(client, token, days_old=-1)

    assert response.status_code == 400
    assert response.json()["error"]["details"]["field"] == "date_of_birth"


def test_other_parents_child_is_403(client):
    child = add_child(client, parent_token(client, "meera")).json()["data"]
    stranger = parent_token(client, "kiran")

    response = client.get(f"/api/children/{child['id']}", headers=auth(stranger))

    assert response.status_code == 403
    assert response.json()["error"]["kind"] == "access_denied"


def test_unknown_child_is_404(client):
    response = client.get("/api/children/999", headers=auth(parent_token(client)))
    assert response.status_code == 404


def test_completion_request_flow(client):
    parent = parent_token(client)
    doctor = approved_doctor_token(client)
    child = add_child(client, parent).json()["data"]
    entry = child["vaccination_schedule"][0]
    body = {
        "child_id": child["id"],
        "schedule_entry_id": entry["id"],
        "administered_date": child["date_of_birth"],
        "parent_notes": "Given at birth",
    }

    created = client.post("/api/vaccinations/request-completion", headers=auth(parent), json=body)
    assert created.status_code == 201
    request_id = created.json()["data"]["id"]

    duplicate = client.post("/api/vaccinations/request-completion", headers=auth(parent), json=body)
    assert duplicate.status_code == 409
    assert duplicate.json()["error"]["code"] == "DUPLICATE_REQUEST"

    queue = client.get("/api/vaccinations/pending-requests", headers=auth(doctor)).json()
    assert [r["id"] for r in queue["data"]] == [request_id]

    approved = client.put(f"/api/vaccinations/approve/{request_id}", headers=auth(doctor), json={
        "doctor_notes": "Verified card",
        "hospital_name": "PHC Indiranagar",
    })
    assert approved.status_code == 200
    assert approved.json()["data"]["status"] == "approved"

    again = client.put(
        f"/api/vaccinations/reject/{request_id}", headers=auth(doctor),
        json={"rejection_reason": "too late"}
    )
    assert again.status_code == 409
    assert again.json()["error"]["code"] == "ALREADY_REVIEWED"

    refreshed = client.get(f"/api/children/{child['id']}", headers=auth(parent)).json()["data"]
    assert refreshed["vaccination_schedule"][0]["status"] == "completed"
    assert refreshed["vaccination_summary"]["completed"] == 1

    mine = client.get("/api/vaccinations/my-requests", headers=auth(parent)).json()
    assert mine["count"] == 1


def test_parent_cannot_review(client):
    parent = parent_token(client)
    child = add_child(client, parent).json()["data"]
    created = client.post("/api/vaccinations/request-completion", headers=auth(parent), json={
        "child_id": child["id"],
        "schedule_entry_id": child["vaccination_schedule"][0]["id"],
        "administered_date": child["date_of_birth"],
    }).json()["data"]

    response = client.put(f"/api/vaccinations/approve/{created['id']}", headers=auth(parent))

    assert response.status_code == 403


def test_requests_listing_paginates(client):
    parent = parent_token(client)
    doctor = approved_doctor_token(client)
    child = add_child(client, parent, days_old=200).json()["data"]
    for entry in child["vaccination_schedule"][:3]:
        client.post("/api/vaccinations/request-completion", headers=auth(parent), json={
            "child_id": child["id"],
            "schedule_entry_id": entry["id"],
            "administered_date": child["date_of_birth"],
        })

    response = client.get("/api/vaccinations/requests?status=pending&page=1&limit=2", headers=auth(doctor))

    assert response.status_code == 200
    assert len(response.json()["data"]) == 2
    assert response.json()["pagination"] == {"current": 1, "pages": 2, "total": 3}


def test_search_requires_reviewer(client):
    parent = parent_token(client)
    doctor = approved_doctor_token(client)
    add_child(client, parent, name="Ishaan")

    assert client.get("/api/vaccinations/search?query=ish", headers=auth(parent)).status_code == 403
    found = client.get("/api/vaccinations/search?query=ish", headers=auth(doctor))
    assert [c["name"] for c in found.json()["data"]] == ["Ishaan"]
    assert client.get("/api/vaccinations/search?query=i", headers=auth(doctor)).status_code == 400


def test_statistics_endpoint(client):
    parent = parent_token(client)
    add_child(client, parent)

    response = client.get("/api/vaccinations/statistics", headers=auth(parent))

    assert response.status_code == 200
    assert response.json()["data"]["total_vaccines"] == 23


def test_deactivated_user_token_stops_working(client):
    token = parent_token(client, "meera")
    me = client.get("/api/auth/me", headers=auth(token)).json()["user"]
    admin = register(client, "root", role="admin").json()["token"]

    response = client.put(
        f"/api/admin/users/{me['id']}/deactivate", headers=auth(admin), json={"reason": "duplicate account"}
    )
    assert response.status_code == 200

    blocked = client.get("/api/auth/me", headers=auth(token))
    assert blocked.status_code == 401
    assert blocked.json()["error"]["code"] == "ACCOUNT_DEACTIVATED"


def test_registration_form_strips_whitespace(client):
    response = client.post("/api/auth/register", json={
        "username": "  asha  ",
        "email": "asha@example.com",
        "password": "secret123",
        "role": "parent",
        "phone": " 9876543210 ",
    })

    assert response.status_code == 201
    assert response.json()["user"]["username"] == "asha"
    assert login(client, "asha").status_code == 200
