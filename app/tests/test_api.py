"""
Integration tests for the Property Sell REST API.
Tests authentication, users, posts, conversations, messages and notifications.
"""
import pytest
from fastapi.testclient import TestClient
from db.models import User
from db.repository import Repository


def _post_payload(**overrides) -> dict:
    payload = {
        "title": "Lake view apartment",
        "description": "Two bedrooms, close to the park",
        "address": "12 Lake Road, Dhaka",
        "area": 1200,
        "bed": 2,
        "bath": 2,
        "price": 950,
        "offer": False,
        "parking": True,
        "furnished": False,
        "type": "rent",
        "images": ["https://cdn.example.com/listing/1.jpg"]
    }
    payload.update(overrides)
    return payload


class TestAuthentication:
    """Tests for Clerk session authentication."""

    def test_me_with_bearer_token(self, test_client: TestClient, seed_test_users: list[User], auth_headers):
        """Test GET /api/auth/me resolves the Clerk subject to the local user."""
        response = test_client.get("/api/auth/me", headers=auth_headers(seed_test_users[0]))

        assert response.status_code == 200
        data = response.json()
        assert data["id"] == seed_test_users[0].id
        assert data["username"] == "user1"
        assert data["email"] == "user1@example.com"

    def test_me_with_session_cookie(self, test_client: TestClient, seed_test_users: list[User], session_token):
        """Test the __session cookie is accepted when no header is sent."""
        cookie = f"__session={session_token('user_clerk2')}"

        response = test_client.get("/api/auth/me", headers={"Cookie": cookie})

        assert response.status_code == 200
        assert response.json()["id"] == seed_test_users[1].id

    def test_me_without_token(self, test_client: TestClient):
        """Test missing credentials return 401 in the error envelope."""
        response = test_client.get("/api/auth/me")

        assert response.status_code == 401
        data = response.json()
        assert data["success"] is False
        assert data["statusCode"] == 401
        assert data["message"] == "Authentication required"

    def test_me_with_garbage_token(self, test_client: TestClient, seed_test_users: list[User]):
        response = test_client.get("/api/auth/me", headers={"Authorization": "Bearer not-a-jwt"})

        assert response.status_code == 401
        assert response.json()["message"] == "Invalid or expired token"

    def test_me_with_expired_token(self, test_client: TestClient, seed_test_users: list[User], session_token):
        token = session_token("user_clerk1", expires_in=-60)

        response = test_client.get("/api/auth/me", headers={"Authorization": f"Bearer {token}"})

        assert response.status_code == 401
        assert response.json()["message"] == "Invalid or expired token"

    def test_me_with_unsynced_clerk_user(self, test_client: TestClient, seed_test_users: list[User], session_token):
        """Test a valid token for a Clerk user without a local row returns 401."""
        token = session_token("user_never_synced")

        response = test_client.get("/api/auth/me", headers={"Authorization": f"Bearer {token}"})

        assert response.status_code == 401
        assert response.json()["message"] == "User not found"

    def test_signout_clears_cookie(self, test_client: TestClient):
        response = test_client.post("/api/auth/signout")

        assert response.status_code == 200
        assert response.json() == {"success": True, "message": "User has been logged out"}
        assert "__session=" in response.headers.get("set-cookie", "")


class TestUsers:
    """Tests for user profile endpoints."""

    def test_get_user(self, test_client: TestClient, seed_test_users: list[User]):
        response = test_client.get(f"/api/users/{seed_test_users[2].id}")

        assert response.status_code == 200
        assert response.json()["username"] == "user3"

    def test_get_missing_user(self, test_client: TestClient):
        response = test_client.get("/api/users/9999")

        assert response.status_code == 404
        assert response.json()["message"] == "User not found"

    def test_update_own_profile(self, test_client: TestClient, seed_test_users: list[User], auth_headers):
        user = seed_test_users[0]

        response = test_client.patch(
            f"/api/users/{user.id}",
            json={"username": "emon", "avatar": "https://img.example.com/emon.png"},
            headers=auth_headers(user)
        )

        assert response.status_code == 200
        data = response.json()
        assert data["username"] == "emon"
        assert data["avatar"] == "https://img.example.com/emon.png"
        assert data["first_name"] == "Test1"

    def test_update_someone_else(self, test_client: TestClient, seed_test_users: list[User], auth_headers):
        response = test_client.patch(
            f"/api/users/{seed_test_users[1].id}",
            json={"first_name": "Mallory"},
            headers=auth_headers(seed_test_users[0])
        )

        assert response.status_code == 403
        assert response.json()["message"] == "You can only modify your own account"

    def test_update_to_taken_username(self, test_client: TestClient, seed_test_users: list[User], auth_headers):
        response = test_client.patch(
            f"/api/users/{seed_test_users[0].id}",
            json={"username": "user2"},
            headers=auth_headers(seed_test_users[0])
        )

        assert response.status_code == 409

    def test_null_username_rejected(self, test_client: TestClient, seed_test_users: list[User], auth_headers):
        user = seed_test_users[0]

        response = test_client.patch(f"/api/users/{user.id}", json={"username": None}, headers=auth_headers(user))

        assert response.status_code == 422
        assert response.json()["message"] == "Validation failed"

    def test_null_clears_optional_profile_field(self, test_client: TestClient, seed_test_users: list[User], auth_headers):
        user = seed_test_users[0]

        response = test_client.patch(f"/api/users/{user.id}", json={"first_name": None}, headers=auth_headers(user))

        assert response.status_code == 200
        assert response.json()["first_name"] is None

    def test_delete_own_account_removes_posts(
        self,
        test_client: TestClient,
        seed_test_users: list[User],
        auth_headers,
        test_db
    ):
        user = seed_test_users[0]
        user_id = user.id
        headers = auth_headers(user)
        test_client.post("/api/posts", json=_post_payload(), headers=headers)

        response = test_client.delete(f"/api/users/{user_id}", headers=headers)

        assert response.status_code == 200
        repository = Repository(test_db)
        assert repository.get_user_by_id(user_id) is None
        assert repository.get_user_posts(user_id) == []

    def test_list_user_posts(self, test_client: TestClient, seed_test_users: list[User], auth_headers):
        headers = auth_headers(seed_test_users[1])
        test_client.post("/api/posts", json=_post_payload(title="First"), headers=headers)
        test_client.post("/api/posts", json=_post_payload(title="Second"), headers=headers)

        response = test_client.get(f"/api/users/{seed_test_users[1].id}/posts")

        assert response.status_code == 200
        assert [post["title"] for post in response.json()] == ["Second", "First"]


class TestPosts:
    """Tests for listing CRUD and search."""

    def test_create_post(self, test_client: TestClient, seed_test_users: list[User], auth_headers):
        response = test_client.post(
            "/api/posts",
            json=_post_payload(offer=True, discount_price=900),
            headers=auth_headers(seed_test_users[0])
        )

        assert response.status_code == 201
        data = response.json()
        assert data["owner_id"] == seed_test_users[0].id
        assert data["type"] == "rent"
        assert data["discount_price"] == 900
        assert data["images"] == ["https://cdn.example.com/listing/1.jpg"]

    def test_create_post_requires_auth(self, test_client: TestClient):
        response = test_client.post("/api/posts", json=_post_payload())

        assert response.status_code == 401

    def test_offer_without_discount_price(self, test_client: TestClient, seed_test_users: list[User], auth_headers):
        response = test_client.post(
            "/api/posts",
            json=_post_payload(offer=True),
            headers=auth_headers(seed_test_users[0])
        )

        assert response.status_code == 400
        assert "discount price" in response.json()["message"].lower()

    def test_discount_not_below_price(self, test_client: TestClient, seed_test_users: list[User], auth_headers):
        response = test_client.post(
            "/api/posts",
            json=_post_payload(offer=True, discount_price=950),
            headers=auth_headers(seed_test_users[0])
        )

        assert response.status_code == 400
        assert response.json()["message"] == "Discount price must be lower than regular price"

    def test_discount_dropped_without_offer(self, test_client: TestClient, seed_test_users: list[User], auth_headers):
        response = test_client.post(
            "/api/posts",
            json=_post_payload(offer=False, discount_price=500),
            headers=auth_headers(seed_test_users[0])
        )

        assert response.status_code == 201
        assert response.json()["discount_price"] is None

    def test_too_many_images(self, test_client: TestClient, seed_test_users: list[User], auth_headers):
        images = [f"https://cdn.example.com/listing/{i}.jpg" for i in range(7)]

        response = test_client.post(
            "/api/posts",
            json=_post_payload(images=images),
            headers=auth_headers(seed_test_users[0])
        )

        assert response.status_code == 422
        data = response.json()
        assert data["success"] is False
        assert data["message"] == "Validation failed"
        assert data["errors"]

    def test_search_filters_and_sorting(self, test_client: TestClient, seed_test_users: list[User], auth_headers):
        headers = auth_headers(seed_test_users[0])
        test_client.post("/api/posts", json=_post_payload(title="Lake loft", price=1500), headers=headers)
        test_client.post("/api/posts", json=_post_payload(title="Lake studio", price=700), headers=headers)
        test_client.post(
            "/api/posts",
            json=_post_payload(title="Hill villa", address="3 Hill Street", type="sale", price=90000),
            headers=headers
        )

        response = test_client.get("/api/posts", params={"type": "rent", "sort": "price", "order": "asc"})

        assert response.status_code == 200
        assert [post["title"] for post in response.json()] == ["Lake studio", "Lake loft"]

        response = test_client.get("/api/posts", params={"search": "hill"})
        assert [post["title"] for post in response.json()] == ["Hill villa"]

        response = test_client.get("/api/posts", params={"limit": 1})
        assert len(response.json()) == 1

    def test_update_post_checks_merged_offer(self, test_client: TestClient, seed_test_users: list[User], auth_headers):
        headers = auth_headers(seed_test_users[0])
        post_id = test_client.post("/api/posts", json=_post_payload(), headers=headers).json()["id"]

        response = test_client.patch(f"/api/posts/{post_id}", json={"offer": True}, headers=headers)
        assert response.status_code == 400

        response = test_client.patch(
            f"/api/posts/{post_id}",
            json={"offer": True, "discount_price": 800, "title": "Renovated"},
            headers=headers
        )
        assert response.status_code == 200
        assert response.json()["title"] == "Renovated"
        assert response.json()["discount_price"] == 800

    @pytest.mark.parametrize("field", ["price", "title", "offer", "type"])
    def test_update_rejects_null_for_required_field(
        self,
        test_client: TestClient,
        seed_test_users: list[User],
        auth_headers,
        field: str
    ):
        headers = auth_headers(seed_test_users[0])
        post_id = test_client.post(
            "/api/posts", json=_post_payload(offer=True, discount_price=900), headers=headers
        ).json()["id"]

        response = test_client.patch(f"/api/posts/{post_id}", json={field: None}, headers=headers)

        assert response.status_code == 422
        assert test_client.get(f"/api/posts/{post_id}").json()["price"] == 950

    def test_update_allows_clearing_discount(self, test_client: TestClient, seed_test_users: list[User], auth_headers):
        headers = auth_headers(seed_test_users[0])
        post_id = test_client.post(
            "/api/posts", json=_post_payload(offer=True, discount_price=900), headers=headers
        ).json()["id"]

        response = test_client.patch(
            f"/api/posts/{post_id}", json={"offer": False, "discount_price": None}, headers=headers
        )

        assert response.status_code == 200
        assert response.json()["discount_price"] is None

    def test_search_treats_wildcards_literally(self, test_client: TestClient, seed_test_users: list[User], auth_headers):
        headers = auth_headers(seed_test_users[0])
        test_client.post("/api/posts", json=_post_payload(title="100% furnished flat"), headers=headers)
        test_client.post("/api/posts", json=_post_payload(title="Corner_unit"), headers=headers)
        test_client.post("/api/posts", json=_post_payload(title="Plain house"), headers=headers)

        assert [post["title"] for post in test_client.get("/api/posts", params={"search": "%"}).json()] == [
            "100% furnished flat"
        ]
        assert [post["title"] for post in test_client.get("/api/posts", params={"search": "_"}).json()] == [
            "Corner_unit"
        ]

    def test_only_owner_can_modify(self, test_client: TestClient, seed_test_users: list[User], auth_headers):
        post_id = test_client.post(
            "/api/posts", json=_post_payload(), headers=auth_headers(seed_test_users[0])
        ).json()["id"]
        intruder = auth_headers(seed_test_users[1])

        assert test_client.patch(f"/api/posts/{post_id}", json={"title": "Mine"}, headers=intruder).status_code == 403
        assert test_client.delete(f"/api/posts/{post_id}", headers=intruder).status_code == 403

    def test_delete_post(self, test_client: TestClient, seed_test_users: list[User], auth_headers):
        headers = auth_headers(seed_test_users[0])
        post_id = test_client.post("/api/posts", json=_post_payload(), headers=headers).json()["id"]

        response = test_client.delete(f"/api/posts/{post_id}", headers=headers)

        assert response.status_code == 200
        assert test_client.get(f"/api/posts/{post_id}").status_code == 404


class TestConversations:
    """Tests for conversation creation and access."""

    def test_create_conversation(self, test_client: TestClient, seed_test_users: list[User], auth_headers):
        response = test_client.post(
            "/api/conversation",
            json={"participant_id": seed_test_users[1].id},
            headers=auth_headers(seed_test_users[0])
        )

        assert response.status_code == 201
        data = response.json()
        assert sorted(data["participant_ids"]) == sorted([seed_test_users[0].id, seed_test_users[1].id])
        assert data["creator_id"] == seed_test_users[0].id
        assert data["partner"]["username"] == "user2"
        assert data["last_message"] is None

    def test_existing_conversation_is_reused(
        self,
        test_client: TestClient,
        seed_test_users: list[User],
        auth_headers,
        conversation_id: int
    ):
        """Test the other participant opening the same chat gets the existing one back."""
        response = test_client.post(
            "/api/conversation",
            json={"participant_id": seed_test_users[0].id},
            headers=auth_headers(seed_test_users[1])
        )

        assert response.status_code == 200
        assert response.json()["id"] == conversation_id

    def test_conversation_with_yourself(self, test_client: TestClient, seed_test_users: list[User], auth_headers):
        response = test_client.post(
            "/api/conversation",
            json={"participant_id": seed_test_users[0].id},
            headers=auth_headers(seed_test_users[0])
        )

        assert response.status_code == 400

    def test_conversation_with_unknown_user(self, test_client: TestClient, seed_test_users: list[User], auth_headers):
        response = test_client.post(
            "/api/conversation",
            json={"participant_id": 9999},
            headers=auth_headers(seed_test_users[0])
        )

        assert response.status_code == 404
        assert response.json()["message"] == "Participant not found"

    def test_non_member_cannot_read(
        self,
        test_client: TestClient,
        seed_test_users: list[User],
        auth_headers,
        conversation_id: int
    ):
        response = test_client.get(f"/api/conversation/{conversation_id}", headers=auth_headers(seed_test_users[2]))

        assert response.status_code == 403

    def test_list_orders_by_latest_activity(
        self,
        test_client: TestClient,
        seed_test_users: list[User],
        auth_headers,
        conversation_id: int
    ):
        headers = auth_headers(seed_test_users[0])
        other_id = test_client.post(
            "/api/conversation",
            json={"participant_id": seed_test_users[2].id},
            headers=headers
        ).json()["id"]
        test_client.post(
            "/api/message",
            json={"conversation_id": conversation_id, "content": "Is it still available?"},
            headers=headers
        )

        response = test_client.get("/api/conversation", headers=headers)

        assert response.status_code == 200
        data = response.json()
        assert [conversation["id"] for conversation in data] == [conversation_id, other_id]
        assert data[0]["last_message"]["content"] == "Is it still available?"

    def test_delete_conversation(
        self,
        test_client: TestClient,
        seed_test_users: list[User],
        auth_headers,
        conversation_id: int
    ):
        headers = auth_headers(seed_test_users[1])

        response = test_client.delete(f"/api/conversation/{conversation_id}", headers=headers)

        assert response.status_code == 200
        assert test_client.get(f"/api/conversation/{conversation_id}", headers=headers).status_code == 404


class TestMessages:
    """Tests for message persistence."""

    def test_send_and_list_messages(
        self,
        test_client: TestClient,
        seed_test_users: list[User],
        auth_headers,
        conversation_id: int
    ):
        sender, receiver = seed_test_users[0], seed_test_users[1]

        first = test_client.post(
            "/api/message",
            json={"conversation_id": conversation_id, "content": "Hello"},
            headers=auth_headers(sender)
        )
        test_client.post(
            "/api/message",
            json={"conversation_id": conversation_id, "content": "Hi there"},
            headers=auth_headers(receiver)
        )

        assert first.status_code == 201
        assert first.json()["sender_id"] == sender.id
        assert first.json()["receiver_id"] == receiver.id

        response = test_client.get(f"/api/message/{conversation_id}", headers=auth_headers(receiver))
        assert response.status_code == 200
        data = response.json()
        assert data["total"] == 2
        assert [message["content"] for message in data["messages"]] == ["Hello", "Hi there"]

    def test_non_member_cannot_send(
        self,
        test_client: TestClient,
        seed_test_users: list[User],
        auth_headers,
        conversation_id: int
    ):
        response = test_client.post(
            "/api/message",
            json={"conversation_id": conversation_id, "content": "Let me in"},
            headers=auth_headers(seed_test_users[2])
        )

        assert response.status_code == 403

    def test_send_to_missing_conversation(self, test_client: TestClient, seed_test_users: list[User], auth_headers):
        response = test_client.post(
            "/api/message",
            json={"conversation_id": 9999, "content": "Anyone?"},
            headers=auth_headers(seed_test_users[0])
        )

        assert response.status_code == 404

    def test_send_after_partner_deleted(
        self,
        test_client: TestClient,
        seed_test_users: list[User],
        auth_headers,
        conversation_id: int
    ):
        partner_id = seed_test_users[1].id
        partner_headers = auth_headers(seed_test_users[1])
        test_client.delete(f"/api/users/{partner_id}", headers=partner_headers)

        response = test_client.post(
            "/api/message",
            json={"conversation_id": conversation_id, "content": "Hello?"},
            headers=auth_headers(seed_test_users[0])
        )

        assert response.status_code == 409

    def test_total_counts_whole_conversation(
        self,
        test_client: TestClient,
        seed_test_users: list[User],
        auth_headers,
        conversation_id: int
    ):
        headers = auth_headers(seed_test_users[0])
        for text in ("one", "two", "three"):
            test_client.post("/api/message", json={"conversation_id": conversation_id, "content": text}, headers=headers)

        response = test_client.get(f"/api/message/{conversation_id}", params={"limit": 1, "offset": 1}, headers=headers)

        data = response.json()
        assert data["total"] == 3
        assert [message["content"] for message in data["messages"]] == ["two"]

    def test_only_sender_can_delete(
        self,
        test_client: TestClient,
        seed_test_users: list[User],
        auth_headers,
        conversation_id: int
    ):
        message_id = test_client.post(
            "/api/message",
            json={"conversation_id": conversation_id, "content": "Oops"},
            headers=auth_headers(seed_test_users[0])
        ).json()["id"]

        assert test_client.delete(f"/api/message/{message_id}", headers=auth_headers(seed_test_users[1])).status_code == 403
        assert test_client.delete(f"/api/message/{message_id}", headers=auth_headers(seed_test_users[0])).status_code == 200


class TestNotifications:
    """Tests for notifications."""

    def test_notification_lifecycle(
        self,
        test_client: TestClient,
        seed_test_users: list[User],
        auth_headers,
        conversation_id: int
    ):
        sender, recipient = seed_test_users[0], seed_test_users[1]

        created = test_client.post(
            "/api/notification",
            json={"user_id": recipient.id, "message": "New message from user1", "conversation_id": conversation_id},
            headers=auth_headers(sender)
        )
        assert created.status_code == 201
        notification = created.json()
        assert notification["from_user_id"] == sender.id
        assert notification["is_read"] is False

        listed = test_client.get("/api/notification", headers=auth_headers(recipient))
        assert [item["id"] for item in listed.json()] == [notification["id"]]

        read = test_client.patch(f"/api/notification/{notification['id']}/read", headers=auth_headers(recipient))
        assert read.status_code == 200
        assert read.json()["is_read"] is True

        forbidden = test_client.delete(f"/api/notification/{notification['id']}", headers=auth_headers(sender))
        assert forbidden.status_code == 403

        deleted = test_client.delete(f"/api/notification/{notification['id']}", headers=auth_headers(recipient))
        assert deleted.status_code == 200

    def test_unread_listed_first(self, test_client: TestClient, seed_test_users: list[User], auth_headers):
        sender, recipient = auth_headers(seed_test_users[0]), auth_headers(seed_test_users[1])
        first = test_client.post(
            "/api/notification", json={"user_id": seed_test_users[1].id, "message": "first"}, headers=sender
        ).json()
        test_client.post("/api/notification", json={"user_id": seed_test_users[1].id, "message": "second"}, headers=sender)
        test_client.patch(f"/api/notification/{first['id']}/read", headers=recipient)
        test_client.post("/api/notification", json={"user_id": seed_test_users[1].id, "message": "third"}, headers=sender)

        response = test_client.get("/api/notification", headers=recipient)

        assert [item["message"] for item in response.json()] == ["third", "second", "first"]

    def test_clear_conversation_notifications(
        self,
        test_client: TestClient,
        seed_test_users: list[User],
        auth_headers,
        conversation_id: int
    ):
        for text in ("one", "two"):
            test_client.post(
                "/api/notification",
                json={"user_id": seed_test_users[1].id, "message": text, "conversation_id": conversation_id},
                headers=auth_headers(seed_test_users[0])
            )

        response = test_client.delete(
            f"/api/notification/conversation/{conversation_id}",
            headers=auth_headers(seed_test_users[1])
        )

        assert response.status_code == 200
        assert response.json() == {"deleted": 2}

    def test_notify_unknown_recipient(self, test_client: TestClient, seed_test_users: list[User], auth_headers):
        response = test_client.post(
            "/api/notification",
            json={"user_id": 9999, "message": "hello"},
            headers=auth_headers(seed_test_users[0])
        )

        assert response.status_code == 404
        assert response.json()["message"] == "Recipient not found"


class TestErrorHandling:
    """Tests for the global error envelope."""

    def test_unhandled_error_returns_500_with_stack(
        self,
        test_client: TestClient,
        monkeypatch: pytest.MonkeyPatch
    ):
        def boom(self, **kwargs):
            raise RuntimeError("database exploded")

        monkeypatch.setattr(Repository, "search_posts", boom)
        client = TestClient(test_client.app, raise_server_exceptions=False)

        response = client.get("/api/posts")

        assert response.status_code == 500
        data = response.json()
        assert data["success"] is False
        assert data["statusCode"] == 500
        assert data["message"] == "Internal Server Error"
        assert "database exploded" in data["stack"]

    def test_unknown_route_uses_envelope(self, test_client: TestClient):
        response = test_client.get("/api/does-not-exist")

        assert response.status_code == 404
        assert response.json()["success"] is False

    def test_request_id_is_echoed(self, test_client: TestClient):
        response = test_client.get("/health", headers={"X-Request-ID": "req-123"})

        assert response.headers["X-Request-ID"] == "req-123"
