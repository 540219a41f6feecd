from decimal import Decimal

from sqlalchemy.exc import SQLAlchemyError

from oneflow.services import accounting


def bearer(token: str) -> dict:
    return {"Authorization": f"Bearer {token}"}


def money(value) -> Decimal:
    return Decimal(str(value))


def test_ping(client) -> None:
    response = client.get("/api/ping")
    assert response.status_code == 200
    assert response.json() == {"success": True, "ok": True}


def test_smiths_signup_join_approve_and_payday(client, household) -> None:
    pending = client.get("/api/group/pending", headers=household.admin)
    assert pending.json()["pending"] == []

    settings = client.put(
        f"/api/users/{household.kid_id}/settings",
        json={"allowanceAmount": 10, "interestRate": 5},
        headers=household.admin,
    )
    assert settings.status_code == 200, settings.text

    payday = client.post("/api/payday", json={"groupId": household.group_id}, headers=household.admin)
    assert payday.status_code == 200, payday.text
    body = payday.json()
    assert money(body["total"]) == Decimal("10")
    [line] = body["report"]
    assert line["user_id"] == household.kid_id
    assert money(line["allowance"]) == Decimal("10")
    assert money(line["interest"]) == Decimal("0")
    assert line["note"] is None

    me = client.get(f"/api/users/{household.kid_id}", headers=household.kid).json()["user"]
    assert me["status"] == "ACTIVE"
    assert money(me["balance"]) == Decimal("10")


def test_new_members_wait_for_approval(client, household) -> None:
    joined = client.post("/api/join", json={"groupEmail": "A@X.com", "nickname": "Tom", "password": "pw3"})
    assert joined.status_code == 200
    assert joined.json()["user"]["status"] == "PENDING"

    login = client.post("/api/login", json={"groupEmail": "a@x.com", "nickname": "Tom", "password": "pw3"})
    assert login.status_code == 403
    assert login.json() == {"error": "Account pending"}

    pending = client.get("/api/group/pending", headers=household.admin).json()["pending"]
    assert [user["nickname"] for user in pending] == ["Tom"]


def test_error_envelope_and_status_codes(client, household) -> None:
    duplicate = client.post("/api/groups", json={
        "groupName": "Other", "adminEmail": "a@x.com", "adminNickname": "Mum", "password": "pw",
    })
    assert duplicate.status_code == 400
    assert duplicate.json() == {"error": "Email exists"}

    taken = client.post("/api/join", json={"groupEmail": "a@x.com", "nickname": "kid", "password": "pw"})
    assert taken.status_code == 400
    assert taken.json() == {"error": "Nickname taken"}

    no_group = client.post("/api/join", json={"groupEmail": "nobody@x.com", "nickname": "Zed", "password": "pw"})
    assert no_group.status_code == 404

    bad_password = client.post("/api/login", json={"groupEmail": "a@x.com", "nickname": "Dad", "password": "nope"})
    assert bad_password.status_code == 401
    assert "error" in bad_password.json()

    anonymous = client.get("/api/tasks")
    assert anonymous.status_code == 401
    assert anonymous.json() == {"error": "Missing Authorization header"}

    garbage = client.get("/api/tasks", headers=bearer("not-a-token"))
    assert garbage.status_code == 401

    member_only = client.post("/api/payday", json={"groupId": household.group_id}, headers=household.kid)
    assert member_only.status_code == 403
    assert member_only.json() == {"error": "Forbidden"}

    unknown_category = client.post(
        "/api/transactions",
        json={"amount": 5, "description": "?", "category": "yachts", "type": "expense"},
        headers=household.kid,
    )
    assert unknown_category.status_code == 400
    assert "category" in unknown_category.json()["error"]

    broke = client.post(
        "/api/transactions",
        json={"amount": 5, "description": "Comic", "category": "fun", "type": "expense"},
        headers=household.kid,
    )
    assert broke.status_code == 400
    assert broke.json() == {"error": "Not enough money on balance"}

    missing = client.get("/api/users/999", headers=household.admin)
    assert missing.status_code == 404
    assert missing.json() == {"error": "User not found"}


def test_members_do_not_see_each_others_money(client, household) -> None:
    members = client.get("/api/group/members", headers=household.kid).json()["members"]
    by_name = {member["nickname"]: member for member in members}

    assert by_name["Dad"]["balance"] is None
    assert by_name["Dad"]["interest_rate"] is None
    assert money(by_name["Kid"]["balance"]) == Decimal("0")

    admin_view = client.get("/api/group/members", headers=household.admin).json()["members"]
    assert all(member["balance"] is not None for member in admin_view)

    assert client.get(f"/api/users/{household.admin_id}", headers=household.kid).status_code == 403


def test_task_approval_is_paid_once(client, household) -> None:
    created = client.post(
        "/api/tasks",
        json={"title": "Walk the dog", "reward": "2.50", "assignedTo": household.kid_id},
        headers=household.admin,
    )
    assert created.status_code == 200, created.text
    task_id = created.json()["task"]["id"]

    done = client.put(f"/api/tasks/{task_id}", json={"status": "done"}, headers=household.kid)
    assert done.json()["task"]["status"] == "done"

    first = client.put(f"/api/tasks/{task_id}", json={"status": "approved"}, headers=household.admin)
    second = client.put(f"/api/tasks/{task_id}", json={"status": "approved"}, headers=household.admin)
    assert money(first.json()["credited"]) == Decimal("2.5")
    assert money(second.json()["credited"]) == Decimal("0")

    history = client.get("/api/transactions", headers=household.kid).json()["transactions"]
    assert [(entry["category"], money(entry["amount"])) for entry in history] == [("salary", Decimal("2.5"))]

    bogus = client.put(f"/api/tasks/{task_id}", json={"status": "finished"}, headers=household.admin)
    assert bogus.status_code == 400


def test_loan_flow(client, household) -> None:
    requested = client.post("/api/loans", json={"amount": 12, "reason": "Headphones"}, headers=household.kid)
    assert requested.status_code == 200, requested.text
    loan_id = requested.json()["loan"]["id"]

    approved = client.post(f"/api/loans/{loan_id}/handle", json={"action": "approve"}, headers=household.admin)
    assert approved.json()["loan"]["status"] == "active"
    assert money(approved.json()["credited"]) == Decimal("12")

    repaid = client.post(f"/api/loans/{loan_id}/repay", json={"amount": 12}, headers=household.kid)
    assert repaid.status_code == 200, repaid.text
    assert repaid.json()["loan"]["status"] == "paid"
    assert money(repaid.json()["balance"]) == Decimal("0")

    invalid = client.post(f"/api/loans/{loan_id}/handle", json={"action": "forgive"}, headers=household.admin)
    assert invalid.status_code == 400


def test_shopping_checkout_over_http(client, household) -> None:
    client.post(
        "/api/transactions",
        json={"amount": 30, "description": "Birthday money", "category": "other", "type": "income"},
        headers=household.kid,
    )
    milk = client.post("/api/shopping/add", json={"itemName": "Milk", "estPrice": 1.2}, headers=household.kid)
    item_id = milk.json()["item"]["id"]
    client.post("/api/shopping/update", json={"itemId": item_id, "status": "in_cart"}, headers=household.kid)

    checkout = client.post("/api/shopping/checkout", json={"totalAmount": 4.5}, headers=household.kid)
    assert checkout.status_code == 200, checkout.text
    trip = checkout.json()["trip"]
    assert trip["store_name"] == "Supermarket"
    assert [item["item_name"] for item in trip["items"]] == ["Milk"]
    assert money(checkout.json()["balance"]) == Decimal("25.5")

    history = client.get("/api/shopping/history", headers=household.admin).json()["trips"]
    assert [len(past["items"]) for past in history] == [1]
    assert client.get("/api/shopping/list", headers=household.admin).json()["items"] == []

    copied = client.post("/api/shopping/copy", json={"tripId": trip["id"]}, headers=household.admin)
    assert copied.json()["added"] == 1


def test_goal_and_budget_endpoints(client, household) -> None:
    goal = client.post(
        "/api/goals",
        json={"title": "Bike", "targetAmount": 100, "userId": household.kid_id},
        headers=household.admin,
    )
    assert goal.status_code == 200, goal.text
    goal_id = goal.json()["goal"]["id"]

    funded = client.post(f"/api/goals/{goal_id}/deposit", json={"amount": 15}, headers=household.admin)
    assert money(funded.json()["goal"]["current_amount"]) == Decimal("15")

    broke = client.post(f"/api/goals/{goal_id}/deposit", json={"amount": 16}, headers=household.kid)
    assert broke.status_code == 400

    updated = client.put("/api/budgets", json={"category": "food", "limit": 40, "target": "all"},
                         headers=household.admin)
    assert updated.status_code == 200, updated.text

    budgets = client.get("/api/budgets", headers=household.admin).json()["budgets"]
    food = next(line for line in budgets if line["category"] == "food")
    assert money(food["limit"]) == Decimal("40")
    allocations = next(line for line in budgets if line["category"] == "allocations")
    assert money(allocations["spent"]) == Decimal("15")

    dashboard = client.get(f"/api/data/{household.kid_id}", headers=household.kid).json()
    assert dashboard["success"] is True
    assert [g["title"] for g in dashboard["goals"]] == ["Bike"]


def test_academy_submission_over_http(client, household, add_bundle) -> None:
    bundle_id = add_bundle(reward="3.00")

    listed = client.get("/api/academy/bundles", params={"ageGroup": "8-10"}, headers=household.kid)
    [bundle] = listed.json()["bundles"]
    assert all("correct" not in question for question in bundle["questions"])

    admin_view = client.get(f"/api/academy/bundles/{bundle_id}", headers=household.admin).json()["bundle"]
    assert admin_view["questions"][0]["correct"] == 1

    assigned = client.post(
        "/api/academy/assign",
        json={"userId": household.kid_id, "bundleId": bundle_id, "customReward": 5},
        headers=household.admin,
    )
    assert assigned.status_code == 200, assigned.text

    submitted = client.post("/api/academy/submit", json={"bundleId": bundle_id, "answers": [1, 0]},
                            headers=household.kid)
    assert submitted.status_code == 200, submitted.text
    body = submitted.json()
    assert body["status"] == "completed"
    assert body["score"] == 100
    assert money(body["reward"]) == Decimal("5")
    assert money(body["newBalance"]) == Decimal("5")

    empty = client.post("/api/academy/submit", json={"bundleId": bundle_id}, headers=household.kid)
    assert empty.status_code == 400


def test_refresh_cookie_issues_a_new_access_token(client, household) -> None:
    refreshed = client.post("/api/auth/refresh")
    assert refreshed.status_code == 200
    token = refreshed.json()["accessToken"]
    assert client.get("/api/tasks", headers=bearer(token)).status_code == 200

    client.post("/api/auth/logout")
    assert client.post("/api/auth/refresh").status_code == 401


def test_login_is_rate_limited(client) -> None:
    attempt = {"groupEmail": "nobody@x.com", "nickname": "Zed", "password": "pw"}
    for _ in range(6):
        assert client.post("/api/login", json=attempt).status_code != 429

    blocked = client.post("/api/login", json=attempt)
    assert blocked.status_code == 429
    assert blocked.json() == {"error": "Too many login attempts, try later"}


def test_budget_read_degrades_to_empty_on_store_failure(client, household, monkeypatch) -> None:
    async def broken(*args, **kwargs):
        raise SQLAlchemyError("connection lost")

    monkeypatch.setattr(accounting, "budget_status", broken)

    response = client.get("/api/budgets", headers=household.admin)
    assert response.status_code == 200
    assert response.json() == {"success": True, "target": "all", "budgets": []}


def test_store_failure_on_strict_endpoint_is_internal_error(client, household, monkeypatch) -> None:
    async def broken(*args, **kwargs):
        raise SQLAlchemyError("connection lost")

    monkeypatch.setattr(accounting, "list_goals", broken)

    response = client.get("/api/goals", headers=household.kid)
    assert response.status_code == 500
    assert response.json() == {"error": "Database error"}
