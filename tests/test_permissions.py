def test_protected_routes_require_auth(helpers):
    client = helpers["client"]
    assert client.get("/me").status_code == 401
    assert client.get("/api/match-requests/events").status_code == 401
    assert client.post("/api/moderation/check", json={"message": "hi", "senderId": 1}).status_code == 401
    assert client.get("/api/messages/1").status_code == 401


def test_garbage_token_is_rejected(helpers):
    client = helpers["client"]
    resp = client.get("/me", headers=helpers["auth_header"]("not-a-jwt"))
    assert resp.status_code == 401
    assert resp.headers["WWW-Authenticate"] == "Bearer"


def test_moderator_can_review_but_not_run_maintenance(helpers):
    client = helpers["client"]
    helpers["make_moderator"]()
    headers = helpers["auth_header"](helpers["login"]("mod@test.ro", "moderator123"))

    assert client.get("/api/admin/moderation/stats", headers=headers).status_code == 200
    assert client.get("/api/admin/moderation/bans", headers=headers).status_code == 200
    assert client.post("/api/admin/match-requests/expire", headers=headers).status_code == 403


def test_admin_can_review_moderation(helpers):
    client = helpers["client"]
    helpers["make_admin"]()
    headers = helpers["auth_header"](helpers["login"]("admin@test.ro", "admin123"))

    assert client.get("/api/admin/moderation/logs", headers=headers).status_code == 200
    assert client.get("/api/admin/moderation/violations", headers=headers).status_code == 200


def test_users_only_see_their_own_feed(helpers):
    client = helpers["client"]
    token_a = helpers["register_user"]("a@test.ro")
    token_b = helpers["register_user"]("b@test.ro")

    client.post("/api/match-requests", json={"sport": "volleyball", "level": "beginner"}, headers=helpers["auth_header"](token_a))

    feed_b = client.get("/api/match-requests/events", headers=helpers["auth_header"](token_b)).json()
    assert feed_b["items"] == []
