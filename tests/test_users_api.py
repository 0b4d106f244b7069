from unittest.mock import patch

import main
from auth import hash_password
from support import API, ApiTestCase, bearer


def racing_hash(db, **taken):
    """A hash_password stand-in that lets another account claim ``taken`` first."""
    def hash_after_claim(password: str) -> str:
        db["user"].insert_one({"username": "mallory", "email": "m@x.com", "password_hash": "x", **taken})
        return hash_password(password)
    return hash_after_claim


class RegistrationTests(ApiTestCase):
    def test_register_returns_token_and_profile(self) -> None:
        response = self.client.post(
            f"{API}/users",
            json={"username": "alice", "email": "a@x.com", "password": "pw1"},
        )

        self.assertEqual(response.status_code, 201)
        user = response.json()["user"]
        self.assertEqual(user["username"], "alice")
        self.assertEqual(user["email"], "a@x.com")
        self.assertTrue(user["token"])
        stored = self.db["user"].find_one({"username": "alice"})
        self.assertNotEqual(stored["password_hash"], "pw1")
        self.assertEqual(stored["subscribers_count"], 0)

    def test_duplicate_email_conflicts(self) -> None:
        self.register("alice", "a@x.com")
        response = self.client.post(
            f"{API}/users",
            json={"username": "alice2", "email": "a@x.com", "password": "pw2"},
        )

        self.assertEqual(response.status_code, 422)
        self.assertEqual(response.json()["detail"], "Email already in use")

    def test_duplicate_username_conflicts(self) -> None:
        self.register("alice", "a@x.com")
        response = self.client.post(
            f"{API}/users",
            json={"username": "alice", "email": "other@x.com", "password": "pw2"},
        )

        self.assertEqual(response.status_code, 422)
        self.assertEqual(response.json()["detail"], "Username already in use")

    def test_email_claimed_during_registration_conflicts(self) -> None:
        with patch.object(main, "hash_password", side_effect=racing_hash(self.db, email="a@x.com")):
            response = self.client.post(
                f"{API}/users",
                json={"username": "alice", "email": "a@x.com", "password": "pw1"},
            )

        self.assertEqual(response.status_code, 422)
        self.assertEqual(response.json()["detail"], "Username or email already in use")
        self.assertIsNone(self.db["user"].find_one({"username": "alice"}))

    def test_invalid_email_rejected(self) -> None:
        response = self.client.post(
            f"{API}/users",
            json={"username": "alice", "email": "not-an-email", "password": "pw1"},
        )
        self.assertEqual(response.status_code, 422)


class LoginTests(ApiTestCase):
    def setUp(self) -> None:
        super().setUp()
        self.user_id, _ = self.register("alice", "a@x.com", "pw1")

    def test_login_with_email(self) -> None:
        response = self.client.post(f"{API}/users/login", json={"email": "a@x.com", "password": "pw1"})

        self.assertEqual(response.status_code, 200)
        token = response.json()["user"]["token"]
        me = self.client.get(f"{API}/user", headers=bearer(token))
        self.assertEqual(me.json()["user"]["id"], self.user_id)

    def test_login_with_username(self) -> None:
        response = self.client.post(f"{API}/users/login", json={"username": "alice", "password": "pw1"})
        self.assertEqual(response.status_code, 200)

    def test_login_wrong_password(self) -> None:
        response = self.client.post(f"{API}/users/login", json={"email": "a@x.com", "password": "nope"})
        self.assertEqual(response.status_code, 401)

    def test_login_unknown_account(self) -> None:
        response = self.client.post(f"{API}/users/login", json={"email": "b@x.com", "password": "pw1"})
        self.assertEqual(response.status_code, 404)

    def test_login_requires_identifier(self) -> None:
        response = self.client.post(f"{API}/users/login", json={"password": "pw1"})
        self.assertEqual(response.status_code, 422)


class ProfileUpdateTests(ApiTestCase):
    def setUp(self) -> None:
        super().setUp()
        self.user_id, self.token = self.register("alice", "a@x.com", "pw1")
        self.register("bob", "b@x.com")

    def test_update_profile_fields(self) -> None:
        response = self.client.patch(
            f"{API}/user",
            json={"channelDescription": "cooking", "avatar": "a.png", "cover": "c.png"},
            headers=bearer(self.token),
        )

        self.assertEqual(response.status_code, 200)
        user = response.json()["user"]
        self.assertEqual(user["channelDescription"], "cooking")
        self.assertEqual(user["avatar"], "a.png")
        self.assertEqual(user["cover"], "c.png")

    def test_update_to_taken_email_conflicts(self) -> None:
        response = self.client.patch(f"{API}/user", json={"email": "b@x.com"}, headers=bearer(self.token))
        self.assertEqual(response.status_code, 422)

    def test_update_to_taken_username_conflicts(self) -> None:
        response = self.client.patch(f"{API}/user", json={"username": "bob"}, headers=bearer(self.token))
        self.assertEqual(response.status_code, 422)

    def test_email_claimed_during_update_conflicts(self) -> None:
        with patch.object(main, "hash_password", side_effect=racing_hash(self.db, email="new@x.com")):
            response = self.client.patch(
                f"{API}/user", json={"email": "new@x.com", "password": "pw9"}, headers=bearer(self.token)
            )

        self.assertEqual(response.status_code, 422)
        self.assertEqual(response.json()["detail"], "Username or email already in use")
        self.assertEqual(self.db["user"].find_one({"username": "alice"})["email"], "a@x.com")

    def test_update_to_own_values_allowed(self) -> None:
        response = self.client.patch(
            f"{API}/user",
            json={"username": "alice", "email": "a@x.com"},
            headers=bearer(self.token),
        )
        self.assertEqual(response.status_code, 200)

    def test_password_change_applies_to_login(self) -> None:
        self.client.patch(f"{API}/user", json={"password": "new-pw"}, headers=bearer(self.token))

        old = self.client.post(f"{API}/users/login", json={"email": "a@x.com", "password": "pw1"})
        new = self.client.post(f"{API}/users/login", json={"email": "a@x.com", "password": "new-pw"})
        self.assertEqual(old.status_code, 401)
        self.assertEqual(new.status_code, 200)

    def test_empty_update_rejected(self) -> None:
        response = self.client.patch(f"{API}/user", json={}, headers=bearer(self.token))
        self.assertEqual(response.status_code, 422)


class SubscriptionApiTests(ApiTestCase):
    def setUp(self) -> None:
        super().setUp()
        self.alice_id, self.alice_token = self.register("alice", "a@x.com")
        self.bob_id, self.bob_token = self.register("bob", "b@x.com")

    def test_subscribe_shows_in_profile_until_unsubscribed(self) -> None:
        response = self.client.post(f"{API}/users/{self.bob_id}/subscribe", headers=bearer(self.alice_token))
        self.assertEqual(response.status_code, 200)
        self.assertTrue(response.json()["user"]["isSubscribed"])
        self.assertEqual(response.json()["user"]["subscribersCount"], 1)

        profile = self.client.get(f"{API}/users/{self.bob_id}", headers=bearer(self.alice_token))
        self.assertTrue(profile.json()["user"]["isSubscribed"])

        response = self.client.delete(f"{API}/users/{self.bob_id}/subscribe", headers=bearer(self.alice_token))
        self.assertFalse(response.json()["user"]["isSubscribed"])
        self.assertEqual(response.json()["user"]["subscribersCount"], 0)

        profile = self.client.get(f"{API}/users/{self.bob_id}", headers=bearer(self.alice_token))
        self.assertFalse(profile.json()["user"]["isSubscribed"])

    def test_profile_is_viewer_relative(self) -> None:
        self.client.post(f"{API}/users/{self.bob_id}/subscribe", headers=bearer(self.alice_token))
        carol_id, carol_token = self.register("carol", "c@x.com")

        profile = self.client.get(f"{API}/users/{self.bob_id}", headers=bearer(carol_token))
        self.assertFalse(profile.json()["user"]["isSubscribed"])
        self.assertEqual(profile.json()["user"]["subscribersCount"], 1)

    def test_self_subscription_rejected(self) -> None:
        response = self.client.post(f"{API}/users/{self.alice_id}/subscribe", headers=bearer(self.alice_token))
        self.assertEqual(response.status_code, 422)
        self.assertEqual(self.db["subscription"].count_documents({}), 0)

    def test_subscribe_requires_auth(self) -> None:
        response = self.client.post(f"{API}/users/{self.bob_id}/subscribe")
        self.assertEqual(response.status_code, 401)

    def test_subscribe_to_missing_channel(self) -> None:
        response = self.client.post(
            f"{API}/users/64b7f0c2a1b2c3d4e5f60718/subscribe", headers=bearer(self.alice_token)
        )
        self.assertEqual(response.status_code, 404)

    def test_malformed_user_id(self) -> None:
        response = self.client.get(f"{API}/users/not-an-id")
        self.assertEqual(response.status_code, 422)

    def test_subscribe_twice_is_idempotent(self) -> None:
        for _ in range(2):
            response = self.client.post(f"{API}/users/{self.bob_id}/subscribe", headers=bearer(self.alice_token))
            self.assertEqual(response.json()["user"]["subscribersCount"], 1)
        self.assertEqual(self.db["subscription"].count_documents({}), 1)

    def test_list_subscriptions(self) -> None:
        carol_id, _ = self.register("carol", "c@x.com")
        self.client.post(f"{API}/users/{self.bob_id}/subscribe", headers=bearer(self.alice_token))
        self.client.post(f"{API}/users/{carol_id}/subscribe", headers=bearer(self.alice_token))

        response = self.client.get(f"{API}/users/{self.alice_id}/subscriptions")

        self.assertEqual(response.status_code, 200)
        subscriptions = response.json()["subscriptions"]
        self.assertEqual([s["id"] for s in subscriptions], [self.bob_id, carol_id])
        self.assertEqual([s["username"] for s in subscriptions], ["bob", "carol"])
        self.assertEqual(set(subscriptions[0]), {"id", "username", "avatar"})
