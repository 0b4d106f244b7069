import unittest
from typing import Dict, Optional, Tuple

import mongomock
from fastapi.testclient import TestClient

import main
from database import ensure_indexes, get_db

API = "/api/v1"


def bearer(token: str) -> Dict[str, str]:
    return {"Authorization": f"Bearer {token}"}


class ApiTestCase(unittest.TestCase):
    """Runs the app against a fresh in-memory database per test."""

    def setUp(self) -> None:
        self.db = mongomock.MongoClient().db
        ensure_indexes(self.db)
        main.app.dependency_overrides[get_db] = lambda: self.db
        self.client = TestClient(main.app)

    def tearDown(self) -> None:
        self.client.close()
        main.app.dependency_overrides.clear()

    def register(self, username: str, email: Optional[str] = None, password: str = "pw1") -> Tuple[str, str]:
        response = self.client.post(
            f"{API}/users",
            json={"username": username, "email": email or f"{username}@example.com", "password": password},
        )
        self.assertEqual(response.status_code, 201, response.text)
        user = response.json()["user"]
        return user["id"], user["token"]

    def create_video(self, token: str, title: str = "Clip") -> str:
        response = self.client.post(
            f"{API}/videos",
            json={"title": title, "description": "desc", "vodVideoId": f"vod-{title}", "cover": "cover.png"},
            headers=bearer(token),
        )
        self.assertEqual(response.status_code, 201, response.text)
        return response.json()["video"]["id"]
