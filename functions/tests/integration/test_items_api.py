"""
Integration Tests for the Items API Function

Runs whole requests through ``fn_items_api.main`` against the mock document
store:
- View with filters, sorting and stats
- Admin-only import and save
- Advance with the shop prompt round trip
- Manual status override and delete
- Remote changes parked behind unsaved edits
- Request validation and unexpected errors
"""

import pytest
import json
from unittest.mock import patch

import sys
import os
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.dirname(os.path.abspath(__file__)))))

from chromaflow.config import reset_config
from chromaflow.document_store import reset_document_store
from chromaflow.query import STATS_BUCKETS
from tests.conftest import ADMIN_UID, MockDocumentStore, MockHttpRequest

from fn_items_api import main, reset_controller

CSV_HEADER = "NO.,ITEM,ASSEMBLY,DESCRIPTION,MATERIAL,LENGTH,Q'TY,WEIGHT,Area,FP"


@pytest.fixture
def api_store(setup_test_environment, no_dotenv):
    """Mock store wired into a fresh controller for each test."""
    store = MockDocumentStore()
    reset_config()
    reset_document_store()
    reset_controller()
    with patch("fn_items_api.get_document_store", return_value=store):
        yield store
    reset_controller()
    reset_document_store()
    reset_config()


@pytest.fixture
def call(mock_http_request):
    def _call(body=None, user_id=None, raw=None):
        response = main(mock_http_request(body, user_id=user_id, raw=raw))
        return response.status_code, json.loads(response.get_body())
    return _call


def items_by_id(call):
    _, body = call({"command": "view", "criteria": {"show_shipped": False}})
    return {record["id"]: record for record in body["data"]["items"]}


@pytest.mark.integration
class TestView:

    def test_empty_store_is_seeded_with_sample_data(self, api_store, call):
        status_code, body = call({"command": "view"})

        assert status_code == 200
        assert body["status"] == "OK"
        assert body["command"] == "view"
        assert body["trace_id"].startswith("trace-")
        data = body["data"]
        assert len(data["items"]) == 8
        assert data["stats"]["total"] == 8
        assert data["percentages"]["received"] == 0
        assert set(data["percentages"]) == set(STATS_BUCKETS.values())
        assert data["has_unsaved_changes"] is True
        assert "BEAM" in data["item_type_options"]

    def test_loads_existing_documents(self, factory, setup_test_environment, no_dotenv, call):
        store = MockDocumentStore({"7": factory.create_record("7")})
        reset_config()
        reset_controller()
        try:
            with patch("fn_items_api.get_document_store", return_value=store):
                _, body = call({"command": "view"})
        finally:
            reset_controller()
            reset_config()

        assert [r["id"] for r in body["data"]["items"]] == ["7"]
        assert body["data"]["has_unsaved_changes"] is False

    def test_filter_and_sort(self, api_store, call):
        _, body = call({
            "command": "VIEW",
            "criteria": {"item_type": "BEAM"},
            "sort_key": "length",
            "sort_direction": "DESC",
        })

        assert [r["id"] for r in body["data"]["items"]] == ["1001", "1003"]
        assert body["data"]["stats"]["total"] == 2

    def test_search(self, api_store, call):
        _, body = call({"command": "view", "criteria": {"search": "rail"}})
        assert [r["id"] for r in body["data"]["items"]] == ["1007"]

    def test_trace_id_header_is_used(self, api_store):
        request = MockHttpRequest({"command": "view"}, headers={"x-trace-id": "trace-fixed"})
        body = json.loads(main(request).get_body())
        assert body["trace_id"] == "trace-fixed"


@pytest.mark.integration
class TestImport:

    def test_requires_admin(self, api_store, call):
        status_code, body = call({"command": "import", "text": CSV_HEADER + "\n1,X"})
        assert status_code == 403
        assert body["status"] == "FORBIDDEN"

        status_code, _ = call({"command": "import", "text": CSV_HEADER + "\n1,X"}, user_id="someone-else")
        assert status_code == 403

    def test_overwrite(self, api_store, call):
        status_code, body = call(
            {"command": "import", "text": CSV_HEADER + "\n1,BEAM\n2,PLATE"},
            user_id=ADMIN_UID,
        )

        assert status_code == 200
        assert body["data"]["item_count"] == 2
        assert set(items_by_id(call)) == {"1", "2"}

    def test_append_reports_duplicates(self, api_store, call):
        status_code, body = call(
            {"command": "import", "mode": "append", "text": CSV_HEADER + "\n1001,BEAM\n2001,PLATE"},
            user_id=ADMIN_UID,
        )

        assert status_code == 200
        assert body["data"]["item_count"] == 9
        assert "1 duplicate(s) skipped" in body["message"]

    def test_no_rows_is_unprocessable(self, api_store, call):
        status_code, body = call({"command": "import", "text": CSV_HEADER}, user_id=ADMIN_UID)

        assert status_code == 422
        assert body["status"] == "ERROR"
        assert len(items_by_id(call)) == 8

    def test_missing_text(self, api_store, call):
        status_code, body = call({"command": "import"}, user_id=ADMIN_UID)
        assert status_code == 400
        assert "text" in body["message"]


@pytest.mark.integration
class TestExport:

    def test_export_csv(self, api_store, call):
        status_code, body = call({"command": "export"})

        lines = body["data"]["csv"].split("\n")
        assert status_code == 200
        assert lines[0] == "NO,ITEM,ASSEMBLY,STATUS,SHOP"
        assert lines[1] == "1001,BEAM,BM-01,Unreceived,None"
        assert len(lines) == 9


@pytest.mark.integration
class TestAdvance:

    def test_simple_advance(self, api_store, call):
        status_code, body = call({"command": "advance", "ids": ["1001", "missing"]})

        assert status_code == 200
        assert body["data"]["advanced"] == 1
        assert items_by_id(call)["1001"]["status"] == "Received (Inbound)"

    def test_shop_prompt_round_trip(self, api_store, call):
        call({"command": "set_status", "ids": "1002", "status": "Blasting"})

        status_code, body = call({"command": "advance", "ids": ["1001", "1002"]})

        assert status_code == 200
        assert body["status"] == "NEEDS_SHOP"
        assert body["data"]["needs_shop_ids"] == ["1002"]
        items = items_by_id(call)
        assert items["1001"]["status"] == "Unreceived"
        assert items["1002"]["status"] == "Blasting"

        status_code, body = call({"command": "advance", "ids": ["1001", "1002"], "forced_shop": "Shop B"})

        assert body["status"] == "OK"
        items = items_by_id(call)
        assert items["1001"]["status"] == "Received (Inbound)"
        assert items["1002"]["status"] == "Painting"
        assert items["1002"]["shop"] == "Shop B"

    def test_unknown_shop_rejected(self, api_store, call):
        status_code, _ = call({"command": "advance", "ids": ["1001"], "forced_shop": "Shop Z"})
        assert status_code == 400


@pytest.mark.integration
class TestSetStatusAndDelete:

    def test_set_status_with_shop(self, api_store, call):
        status_code, body = call({
            "command": "set_status",
            "ids": ["1003", "1004"],
            "status": "Packing",
            "shop": "Shop C",
        })

        assert status_code == 200
        assert body["data"]["updated"] == 2
        items = items_by_id(call)
        assert items["1003"]["status"] == "Packing"
        assert items["1004"]["shop"] == "Shop C"

    def test_shipped_items_move_to_archive(self, api_store, call):
        call({"command": "set_status", "ids": ["1005"], "status": "Shipped"})

        _, active = call({"command": "view"})
        _, archived = call({"command": "view", "criteria": {"show_shipped": True}})

        assert "1005" not in [r["id"] for r in active["data"]["items"]]
        assert [r["id"] for r in archived["data"]["items"]] == ["1005"]

    def test_missing_status(self, api_store, call):
        status_code, body = call({"command": "set_status", "ids": ["1001"]})
        assert status_code == 400
        assert body["status"] == "ERROR"

    def test_delete(self, api_store, call):
        status_code, body = call({"command": "delete", "ids": ["1001", "1002"]})

        assert status_code == 200
        assert body["data"]["deleted"] == 2
        assert set(items_by_id(call)) == {"1003", "1004", "1005", "1006", "1007", "1008"}


@pytest.mark.integration
class TestSave:

    def test_requires_admin(self, api_store, call):
        status_code, _ = call({"command": "save"})
        assert status_code == 403
        assert api_store.batch_calls == []

    def test_save_persists(self, api_store, call):
        call({"command": "delete", "ids": ["1008"]})

        status_code, body = call({"command": "save"}, user_id=ADMIN_UID)

        assert status_code == 200
        assert body["data"]["upserted"] == 7
        assert len(api_store.documents) == 7
        _, view = call({"command": "view"})
        assert view["data"]["has_unsaved_changes"] is False

        status_code, body = call({"command": "save"}, user_id=ADMIN_UID)
        assert body["message"] == "Nothing to save"

    def test_save_failure(self, api_store, call):
        api_store.fail_write = True

        status_code, body = call({"command": "save"}, user_id=ADMIN_UID)

        assert status_code == 502
        assert body["status"] == "ERROR"
        assert body["data"]["cached"] is True
        assert api_store.documents == {}

    def test_remote_change_applied_when_clean(self, factory, api_store, call):
        call({"command": "save"}, user_id=ADMIN_UID)

        api_store.push_external_change({"42": factory.create_record("42")})

        assert set(items_by_id(call)) == {"42"}


@pytest.mark.integration
class TestRemoteChanges:

    def test_fresh_start_has_no_pending_remote_changes(self, api_store, call):
        _, body = call({"command": "view"})

        assert body["data"]["has_unsaved_changes"] is True
        assert body["data"]["remote_changes_pending"] is False

    def test_accept_remote_takes_parked_snapshot(self, factory, api_store, call):
        call({"command": "advance", "ids": ["1001"]})
        api_store.push_external_change({"42": factory.create_record("42")})

        _, body = call({"command": "view"})
        assert body["data"]["remote_changes_pending"] is True
        assert "1001" in [r["id"] for r in body["data"]["items"]]

        status_code, body = call({"command": "accept_remote"})

        assert status_code == 200
        assert body["data"]["accepted"] is True
        _, view = call({"command": "view"})
        assert [r["id"] for r in view["data"]["items"]] == ["42"]
        assert view["data"]["has_unsaved_changes"] is False
        assert view["data"]["remote_changes_pending"] is False

    def test_accept_remote_with_nothing_pending(self, api_store, call):
        status_code, body = call({"command": "accept_remote"})

        assert status_code == 200
        assert body["data"]["accepted"] is False
        assert len(items_by_id(call)) == 8


@pytest.mark.integration
class TestErrors:

    def test_invalid_json(self, api_store, call):
        status_code, body = call(raw=b"{not json")
        assert status_code == 400
        assert body["status"] == "ERROR"

    def test_unknown_command(self, api_store, call):
        status_code, _ = call({"command": "launch"})
        assert status_code == 400

    def test_unexpected_error(self, api_store, call):
        with patch("fn_items_api.build_view", side_effect=RuntimeError("kaboom")):
            status_code, body = call({"command": "view"})

        assert status_code == 500
        assert "kaboom" in body["message"]
