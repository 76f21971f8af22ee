"""HTTP and WebSocket surface tests."""

from __future__ import annotations

import shutil
import tempfile
import unittest
from pathlib import Path
from typing import Any

from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from matchchat.main import create_app
from matchchat.models.base import Base
from matchchat.services.change_feed import LocalChangeFeed

MATCH = "match-api"


class ApiTests(unittest.TestCase):
    def setUp(self) -> None:
        self._tmpdir = tempfile.mkdtemp(prefix="matchchat-api-")
        self.engine = create_engine(
            f"sqlite+pysqlite:///{Path(self._tmpdir) / 'api.db'}",
            future=True,
            connect_args={"check_same_thread": False},
        )
        Base.metadata.create_all(self.engine)
        session_factory = sessionmaker(bind=self.engine, autoflush=False, autocommit=False, future=True)
        self.app = create_app(session_factory=session_factory, feed=LocalChangeFeed())
        self.client = TestClient(self.app)
        self.client.__enter__()

    def tearDown(self) -> None:
        self.client.__exit__(None, None, None)
        self.engine.dispose()
        shutil.rmtree(self._tmpdir, ignore_errors=True)

    def _post_message(self, sender_id: str, content: str, role: str | None = None) -> dict[str, Any]:
        response = self.client.post(
            f"/conversations/{MATCH}/messages",
            json={"sender_id": sender_id, "sender_role": role, "content": content},
        )
        self.assertEqual(response.status_code, 201, response.text)
        return response.json()["data"]

    def test_health(self) -> None:
        response = self.client.get("/health")

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json(), {"status": "ok"})

    def test_post_and_list_messages(self) -> None:
        first = self._post_message("org-1", "  Interested in the role? ", "organization")
        second = self._post_message("eng-1", "Yes", "engineer")

        response = self.client.get(f"/conversations/{MATCH}/messages", params={"viewer_id": "eng-1"})

        self.assertEqual(response.status_code, 200)
        data = response.json()["data"]
        self.assertEqual((response.json()["limit"], response.json()["offset"]), (50, 0))
        self.assertEqual([m["id"] for m in data], [first["id"], second["id"]])
        self.assertEqual(data[0]["content"], "Interested in the role?")
        self.assertEqual(data[0]["sender_role"], "organization")

    def test_blank_message_is_rejected(self) -> None:
        response = self.client.post(
            f"/conversations/{MATCH}/messages",
            json={"sender_id": "eng-1", "content": "   "},
        )

        self.assertEqual(response.status_code, 422)
        listed = self.client.get(f"/conversations/{MATCH}/messages", params={"viewer_id": "eng-1"})
        self.assertEqual(listed.json()["data"], [])

    def test_mark_read_returns_stamped_ids(self) -> None:
        incoming = self._post_message("org-1", "Offer attached")
        self._post_message("eng-1", "Reading now")

        response = self.client.post(f"/conversations/{MATCH}/read", json={"viewer_id": "eng-1"})
        again = self.client.post(f"/conversations/{MATCH}/read", json={"viewer_id": "eng-1"})

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()["data"], {"match_id": MATCH, "message_ids": [incoming["id"]]})
        self.assertEqual(again.json()["data"]["message_ids"], [])

    def test_delete_for_me_is_per_viewer(self) -> None:
        message = self._post_message("org-1", "Remove me")

        response = self.client.post(f"/messages/{message['id']}/delete-for-me", json={"viewer_id": "eng-1"})

        self.assertEqual(response.status_code, 200)
        self.assertTrue(response.json()["data"]["deleted"])
        engineer_view = self.client.get(f"/conversations/{MATCH}/messages", params={"viewer_id": "eng-1"})
        org_view = self.client.get(f"/conversations/{MATCH}/messages", params={"viewer_id": "org-1"})
        self.assertEqual(engineer_view.json()["data"], [])
        self.assertEqual([m["id"] for m in org_view.json()["data"]], [message["id"]])

    def test_delete_unknown_message_is_not_found(self) -> None:
        response = self.client.post("/messages/9999/delete-for-me", json={"viewer_id": "eng-1"})

        self.assertEqual(response.status_code, 404)

    def test_websocket_snapshot_send_and_validation(self) -> None:
        self._post_message("org-1", "Welcome aboard", "organization")

        with self.client.websocket_connect(f"/ws/conversations/{MATCH}?viewer_id=eng-1&role=engineer") as ws:
            snapshot = ws.receive_json()
            self.assertEqual(snapshot["type"], "snapshot")
            self.assertEqual([m["content"] for m in snapshot["data"]["messages"]], ["Welcome aboard"])

            ws.send_json({"type": "send", "content": "Thanks!"})
            frames = _receive_until(ws, {"sent", "message"})
            self.assertEqual(frames["sent"]["data"]["content"], "Thanks!")
            self.assertEqual(frames["message"]["data"]["id"], frames["sent"]["data"]["id"])
            self.assertEqual(frames["message"]["data"]["sender_role"], "engineer")

            ws.send_json({"type": "send", "content": "   "})
            error = _receive_until(ws, {"error"})["error"]
            self.assertEqual(error["code"], "validation")

            ws.send_json({"type": "bogus"})
            error = _receive_until(ws, {"error"})["error"]
            self.assertEqual(error["code"], "bad_frame")

            ws.send_json({"type": "send", "content": 5})
            error = _receive_until(ws, {"error"})["error"]
            self.assertEqual(error["code"], "bad_frame")

            ws.send_json({"type": "send", "content": "Still connected"})
            self.assertEqual(_receive_until(ws, {"sent"})["sent"]["data"]["content"], "Still connected")

        listed = self.client.get(f"/conversations/{MATCH}/messages", params={"viewer_id": "org-1"})
        self.assertEqual([m["content"] for m in listed.json()["data"]], ["Welcome aboard", "Thanks!", "Still connected"])

    def test_websocket_receives_messages_posted_over_http(self) -> None:
        with self.client.websocket_connect(f"/ws/conversations/{MATCH}?viewer_id=eng-1&role=engineer") as ws:
            self.assertEqual(ws.receive_json()["type"], "snapshot")
            _receive_until(ws, {"status"})

            posted = self._post_message("org-1", "Are you free Tuesday?", "organization")

            message = _receive_until(ws, {"message"})["message"]
            self.assertEqual(message["data"]["id"], posted["id"])


def _receive_until(ws, wanted: set[str], limit: int = 10) -> dict[str, dict[str, Any]]:
    """Read frames until one of each wanted type has arrived."""

    found: dict[str, dict[str, Any]] = {}
    for _ in range(limit):
        frame = ws.receive_json()
        if frame["type"] in wanted and frame["type"] not in found:
            found[frame["type"]] = frame
        if wanted <= found.keys():
            return found
    raise AssertionError(f"Did not receive frames {sorted(wanted - found.keys())}")


if __name__ == "__main__":
    unittest.main()
