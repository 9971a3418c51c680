from sportmatch import models, moderation


def _send(helpers, token, receiver_id, content):
    return helpers["client"].post(
        "/api/messages",
        json={"receiver_id": receiver_id, "content": content},
        headers=helpers["auth_header"](token),
    )


def test_approved_message_is_stored_and_listed(helpers):
    token_a = helpers["register_user"]("a@test.ro")
    token_b = helpers["register_user"]("b@test.ro")
    a_id = helpers["user_id"](token_a)
    b_id = helpers["user_id"](token_b)

    resp = _send(helpers, token_a, b_id, "  Tennis at 6 tomorrow?  ")

    assert resp.status_code == 201
    body = resp.json()
    assert body["sent"] is True
    assert body["moderation"]["approved"] is True
    assert body["message"]["content"] == "Tennis at 6 tomorrow?"
    assert body["message"]["read"] is False

    reply = _send(helpers, token_b, a_id, "Sure, see you there")
    assert reply.status_code == 201

    conversation = helpers["client"].get(f"/api/messages/{a_id}", headers=helpers["auth_header"](token_b)).json()
    assert [m["content"] for m in conversation] == ["Tennis at 6 tomorrow?", "Sure, see you there"]


def test_rejected_message_is_not_stored(helpers):
    token_a = helpers["register_user"]("a@test.ro")
    b = helpers["make_user"]("b@test.ro")

    resp = _send(helpers, token_a, b.id, "My number is +40 721 123 456")

    assert resp.status_code == 200
    body = resp.json()
    assert body["sent"] is False
    assert body["message"] is None
    assert body["moderation"]["approved"] is False
    assert body["moderation"]["violation_type"] == "PERSONAL_INFO"
    assert body["moderation"]["warningsLeft"] == 2
    assert helpers["db"].query(models.Message).count() == 0


def test_banned_sender_cannot_send(helpers):
    token = helpers["register_user"]("banned@test.ro")
    user_id = helpers["user_id"](token)
    other = helpers["make_user"]("other@test.ro")
    moderation.ban_user(helpers["db"], user_id=user_id, reason="Manual")

    body = _send(helpers, token, other.id, "hello").json()

    assert body["sent"] is False
    assert body["moderation"]["banned"] is True
    assert helpers["classifier"].calls == 0


def test_invalid_sends_are_rejected_before_moderation(helpers):
    token = helpers["register_user"]("me@test.ro")
    me = helpers["user_id"](token)
    other = helpers["make_user"]("other@test.ro")

    assert _send(helpers, token, me, "talking to myself").status_code == 400
    assert _send(helpers, token, 999999, "anyone there?").status_code == 400
    assert _send(helpers, token, other.id, "   ").status_code == 422
    assert _send(helpers, token, other.id, "a" * 1001).status_code == 422
    assert _send(helpers, token, other.id, "a" * 1000).status_code == 201
    assert helpers["classifier"].calls == 1


def test_conversation_excludes_other_threads(helpers):
    token_a = helpers["register_user"]("a@test.ro")
    b = helpers["make_user"]("b@test.ro")
    c = helpers["make_user"]("c@test.ro")

    _send(helpers, token_a, b.id, "hi b")
    _send(helpers, token_a, c.id, "hi c")

    conversation = helpers["client"].get(f"/api/messages/{b.id}", headers=helpers["auth_header"](token_a)).json()
    assert [m["content"] for m in conversation] == ["hi b"]


def test_messages_require_auth(helpers):
    client = helpers["client"]
    assert client.post("/api/messages", json={"receiver_id": 1, "content": "hi"}).status_code == 401
