import importlib
import os
import sys
import unittest
from pathlib import Path
from unittest import mock

from fastapi.testclient import TestClient

FORM_SERVICE_ROOT = Path(__file__).resolve().parents[1]
if str(FORM_SERVICE_ROOT) not in sys.path:
    sys.path.insert(0, str(FORM_SERVICE_ROOT))

_MODULES_TO_CLEAR = ("stepform.main", "stepform.submission")

STEPS = [
    {
        "firstName": "Ada",
        "lastName": "Lovelace",
        "email": "ada@example.com",
        "contact.countryCode": "+966",
        "contact.phone": "5123456",
    },
    {
        "propertyType": "Villa",
        "category": "Townhouse",
        "subCategory": "Corner Unit",
        "price": "950000",
        "date": "2026-12-01",
    },
    {"listingType": "Sale", "agreeTerms": True},
]


def _reload_app():
    for module_name in _MODULES_TO_CLEAR:
        if module_name in sys.modules:
            del sys.modules[module_name]
    module = importlib.import_module("stepform.main")
    return module.app


class SessionEndpointTests(unittest.TestCase):
    def setUp(self):
        self._env_backup = {
            "FORM_SCHEMA_PATH": os.environ.get("FORM_SCHEMA_PATH"),
            "SUBMISSION_WEBHOOK_URL": os.environ.get("SUBMISSION_WEBHOOK_URL"),
            "FORM_SESSION_IDLE_SECONDS": os.environ.get("FORM_SESSION_IDLE_SECONDS"),
        }
        for key in self._env_backup:
            os.environ.pop(key, None)
        for module_name in _MODULES_TO_CLEAR:
            sys.modules.pop(module_name, None)

    def tearDown(self):
        for module_name in _MODULES_TO_CLEAR:
            sys.modules.pop(module_name, None)
        for key, value in self._env_backup.items():
            if value is None:
                os.environ.pop(key, None)
            else:
                os.environ[key] = value

    def _start(self):
        client = TestClient(_reload_app())
        response = client.post("/sessions")
        self.assertEqual(response.status_code, 201)
        return client, response.json()["session_id"]

    def _complete(self, client, session_id):
        for values in STEPS:
            for path, value in values.items():
                response = client.put(f"/sessions/{session_id}/fields", json={"path": path, "value": value})
                self.assertEqual(response.status_code, 200)
            response = client.post(f"/sessions/{session_id}/advance")
            self.assertTrue(response.json()["outcome"]["advanced"], response.json())
        return response.json()["session"]

    def test_new_session_view(self):
        client, session_id = self._start()
        view = client.get(f"/sessions/{session_id}").json()
        self.assertEqual(view["phase"], "editing")
        self.assertEqual(view["step_index"], 0)
        self.assertEqual(view["step_title"], "Personal Information")
        self.assertEqual(view["step_count"], 4)
        self.assertEqual(view["fields"][3]["path"], "contact.countryCode")
        self.assertEqual(view["fields"][3]["options"], ["+966", "+1", "+44", "+971"])

    def test_unknown_session(self):
        client = TestClient(_reload_app())
        response = client.get("/sessions/does-not-exist")
        self.assertEqual(response.status_code, 404)
        self.assertEqual(response.json().get("detail"), "session_not_found")

    def test_failed_advance_is_not_an_http_error(self):
        client, session_id = self._start()
        response = client.post(f"/sessions/{session_id}/advance")
        self.assertEqual(response.status_code, 200)
        outcome = response.json()["outcome"]
        self.assertFalse(outcome["advanced"])
        self.assertIn("Email", outcome["missing_required"])
        self.assertEqual(response.json()["session"]["errors"]["email"], "Please enter your email address")

    def test_field_update_reports_cleared_paths(self):
        client, session_id = self._start()
        for values in STEPS[:1]:
            for path, value in values.items():
                client.put(f"/sessions/{session_id}/fields", json={"path": path, "value": value})
        client.post(f"/sessions/{session_id}/advance")
        client.put(f"/sessions/{session_id}/fields", json={"path": "propertyType", "value": "Apartment"})
        client.put(f"/sessions/{session_id}/fields", json={"path": "category", "value": "Penthouse"})
        response = client.put(f"/sessions/{session_id}/fields", json={"path": "propertyType", "value": "Office"})
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()["cleared"], ["category", "subCategory"])
        paths = [field["path"] for field in response.json()["session"]["fields"]]
        self.assertIn("category", paths)
        self.assertNotIn("subCategory", paths)

    def test_unknown_field(self):
        client, session_id = self._start()
        response = client.put(f"/sessions/{session_id}/fields", json={"path": "nickname", "value": "x"})
        self.assertEqual(response.status_code, 404)
        self.assertEqual(response.json().get("detail"), "unknown_field")

    def test_navigation_errors(self):
        client, session_id = self._start()
        self.assertEqual(client.post(f"/sessions/{session_id}/retreat").status_code, 409)
        self.assertEqual(client.post(f"/sessions/{session_id}/jump", json={"step_index": 0}).status_code, 409)
        self.assertEqual(client.get(f"/sessions/{session_id}/review").status_code, 409)
        self.assertEqual(client.post(f"/sessions/{session_id}/submit").status_code, 409)

    def test_review_jump_and_return(self):
        client, session_id = self._start()
        view = self._complete(client, session_id)
        self.assertEqual(view["phase"], "reviewing")

        review = client.get(f"/sessions/{session_id}/review").json()
        self.assertEqual(len(review["sections"]), 3)
        property_entries = {entry["path"]: entry["value"] for entry in review["sections"][1]["entries"]}
        self.assertEqual(property_entries["subCategory"], "Corner Unit")
        self.assertEqual(property_entries["hasParking"], "No")
        self.assertEqual(property_entries["parkingSpaces"], "Not provided")

        self.assertEqual(client.post(f"/sessions/{session_id}/jump", json={"step_index": 3}).status_code, 422)
        response = client.post(f"/sessions/{session_id}/jump", json={"step_index": 1})
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()["phase"], "editing")
        self.assertEqual(response.json()["step_index"], 1)

    def test_submit_downloads_json_and_ends_session(self):
        client, session_id = self._start()
        self._complete(client, session_id)
        response = client.post(f"/sessions/{session_id}/submit")
        self.assertEqual(response.status_code, 200)
        self.assertIn('filename="formData.json"', response.headers["content-disposition"])
        data = response.json()
        self.assertEqual(data["contact.phone"], "5123456")
        self.assertIs(data["agreeTerms"], True)
        self.assertEqual(client.get(f"/sessions/{session_id}").status_code, 404)

    def test_submit_forwards_to_webhook(self):
        os.environ["SUBMISSION_WEBHOOK_URL"] = "https://hooks.example.test/forms"
        client, session_id = self._start()
        self._complete(client, session_id)
        upstream = mock.Mock(status_code=200, text="ok")
        with mock.patch("stepform.submission.requests.post", return_value=upstream) as post:
            response = client.post(f"/sessions/{session_id}/submit")
        self.assertEqual(response.status_code, 200)
        post.assert_called_once()
        self.assertEqual(post.call_args.args[0], "https://hooks.example.test/forms")
        self.assertEqual(post.call_args.kwargs["json"]["email"], "ada@example.com")

    def test_webhook_failure_keeps_session_for_retry(self):
        os.environ["SUBMISSION_WEBHOOK_URL"] = "https://hooks.example.test/forms"
        client, session_id = self._start()
        self._complete(client, session_id)
        upstream = mock.Mock(status_code=503, text="unavailable")
        with mock.patch("stepform.submission.requests.post", return_value=upstream) as post:
            response = client.post(f"/sessions/{session_id}/submit")
        self.assertEqual(response.status_code, 502)
        self.assertEqual(response.json().get("detail"), "submission_failed")
        post.assert_called_once()
        self.assertEqual(client.get(f"/sessions/{session_id}").json()["phase"], "reviewing")

    def test_discard_session(self):
        client, session_id = self._start()
        self.assertEqual(client.delete(f"/sessions/{session_id}").status_code, 204)
        self.assertEqual(client.get(f"/sessions/{session_id}").status_code, 404)

    def test_idle_sessions_expire(self):
        os.environ["FORM_SESSION_IDLE_SECONDS"] = "60"
        client, idle_id = self._start()
        main = sys.modules["stepform.main"]
        started = main.SESSION_LAST_SEEN[idle_id]

        with mock.patch("stepform.main._clock", return_value=started + 45):
            active_id = client.post("/sessions").json()["session_id"]

        with mock.patch("stepform.main._clock", return_value=started + 90):
            self.assertEqual(client.get(f"/sessions/{active_id}").status_code, 200)
            response = client.get(f"/sessions/{idle_id}")
        self.assertEqual(response.status_code, 404)
        self.assertEqual(response.json().get("detail"), "session_not_found")
        self.assertNotIn(idle_id, main.SESSIONS)
        self.assertIn(active_id, main.SESSIONS)
