"""
HTTP API tests — blueprints, auth, error bodies and one end-to-end flow.

Tests cover:
  - Health check (no token needed)
  - 401 without token, 403 without admin role on unlock
  - Cross-tenant access reported as 404
  - Error body shape {"error", "code", "details"}
  - Full flow: create → edit → verify → approve → ratings lock → restore
  - Revision paging, value set endpoints, compare, notifications
"""

from conftest import build_document, set_field_value


def _create(client, headers, **kwargs):
    res = client.post("/api/v1/sheets", json={"document": build_document(**kwargs)}, headers=headers)
    assert res.status_code == 201, res.get_json()
    return res.get_json()


def _edit(client, headers, sheet_id, value, comment=None):
    doc = client.get(f"/api/v1/sheets/{sheet_id}", headers=headers).get_json()["document"]
    res = client.put(
        f"/api/v1/sheets/{sheet_id}",
        json={"document": set_field_value(doc, "Design flow", value), "comment": comment},
        headers=headers,
    )
    return res


class TestHealthAndAuth:
    def test_health(self, client):
        res = client.get("/api/v1/health")
        assert res.status_code == 200
        assert res.get_json()["database"] == "ok"

    def test_request_id_header(self, client):
        res = client.get("/api/v1/health", headers={"X-Request-ID": "abc-123"})
        assert res.headers["X-Request-ID"] == "abc-123"

    def test_missing_token(self, client):
        res = client.post("/api/v1/sheets", json={"document": build_document()})
        assert res.status_code == 401
        assert res.get_json()["code"] == "ERR_UNAUTHORIZED"

    def test_garbage_token(self, client):
        res = client.get("/api/v1/sheets/1", headers={"Authorization": "Bearer not-a-jwt"})
        assert res.status_code == 401

    def test_unknown_route(self, client):
        res = client.get("/api/v1/nope")
        assert res.status_code == 404
        assert res.get_json()["code"] == "ERR_NOT_FOUND"


class TestErrors:
    def test_validation_body(self, client, auth_headers):
        res = client.post("/api/v1/sheets", json={"document": build_document(sheetName="")},
                          headers=auth_headers)
        assert res.status_code == 400
        body = res.get_json()
        assert body["code"] == "ERR_VALIDATION_INVALID"
        assert "sheetName" in body["details"]

    def test_document_required(self, client, auth_headers):
        res = client.post("/api/v1/sheets", json={}, headers=auth_headers)
        assert res.status_code == 400
        assert res.get_json()["details"] == {"document": "required"}

    def test_non_string_fields_are_rejected(self, client, auth_headers):
        sid = _create(client, auth_headers)["id"]
        url = f"/api/v1/sheets/{sid}/value-sets"
        vs_id = client.get(url, headers=auth_headers).get_json()["items"][0]["value_set_id"]
        rev_id = _edit(client, auth_headers, sid, "121").get_json()["revision_id"]

        cases = [
            (url, {"context": 5}, "context"),
            (f"{url}/{vs_id}/status", {"status": ["Locked"]}, "status"),
            (f"/api/v1/sheets/{sid}/revisions/{rev_id}/restore", {"comment": 5}, "comment"),
        ]
        for path, body, key in cases:
            res = client.post(path, json=body, headers=auth_headers)
            assert res.status_code == 400, path
            assert res.get_json()["details"] == {key: "must be a string"}

    def test_conflict_body(self, client, auth_headers):
        sheet = _create(client, auth_headers)
        res = client.post(f"/api/v1/sheets/{sheet['id']}/approve", headers=auth_headers)
        assert res.status_code == 409
        body = res.get_json()
        assert body["code"] == "ERR_CONFLICT_STATE"
        assert body["details"] == {"current": "Draft", "required": ["Verified"]}

    def test_cross_tenant_is_not_found(self, client, auth_headers, other_tenant_headers):
        sheet = _create(client, auth_headers)
        for method, path in [
            ("get", f"/api/v1/sheets/{sheet['id']}"),
            ("get", f"/api/v1/sheets/{sheet['id']}/revisions"),
            ("get", f"/api/v1/sheets/{sheet['id']}/value-sets"),
            ("get", f"/api/v1/sheets/{sheet['id']}/ratings"),
            ("post", f"/api/v1/sheets/{sheet['id']}/verify"),
        ]:
            res = getattr(client, method)(path, headers=other_tenant_headers)
            assert res.status_code == 404, path
            assert res.get_json()["error"] == "Sheet not found"


class TestFlow:
    def test_full_lifecycle(self, client, auth_headers, reviewer_headers, admin_headers):
        sheet = _create(client, auth_headers)
        sid = sheet["id"]
        assert sheet["status"] == "Draft"

        res = _edit(client, auth_headers, sid, "130", comment="first pass")
        assert res.status_code == 200
        assert res.get_json()["revision_num"] == 1
        assert _edit(client, auth_headers, sid, "135").get_json()["revision_num"] == 2

        assert client.post(f"/api/v1/sheets/{sid}/verify", headers=reviewer_headers).status_code == 200
        assert _edit(client, auth_headers, sid, "140").status_code == 409
        assert client.post(f"/api/v1/sheets/{sid}/approve", headers=reviewer_headers).status_code == 200

        block = client.post(f"/api/v1/sheets/{sid}/ratings",
                            json={"entries": [{"key": "Rated power", "value": "55", "uom": "kW"}]},
                            headers=auth_headers).get_json()
        bid = block["ratings_block_id"]
        res = client.post(f"/api/v1/sheets/{sid}/ratings/{bid}/lock", headers=auth_headers)
        assert res.get_json()["is_locked"] is True
        assert client.put(f"/api/v1/sheets/{sid}/ratings/{bid}", json={"notes": "x"},
                          headers=auth_headers).status_code == 409
        assert client.post(f"/api/v1/sheets/{sid}/ratings/{bid}/unlock",
                           headers=auth_headers).status_code == 403
        assert client.post(f"/api/v1/sheets/{sid}/ratings/{bid}/unlock",
                           headers=admin_headers).status_code == 200

        revs = client.get(f"/api/v1/sheets/{sid}/revisions", headers=auth_headers).get_json()
        assert revs["total"] == 2
        first = next(r for r in revs["items"] if r["revision_num"] == 1)
        res = client.post(f"/api/v1/sheets/{sid}/revisions/{first['revision_id']}/restore",
                          json={}, headers=auth_headers)
        assert res.status_code == 200
        assert res.get_json()["revision_num"] == 3

        current = client.get(f"/api/v1/sheets/{sid}", headers=auth_headers).get_json()
        assert current["status"] == "Modified Draft"
        flow = current["document"]["subsheets"][0]["fields"][0]
        assert flow["value"] == "130"

        notes = client.get("/api/v1/notifications", headers=auth_headers).get_json()
        assert notes["total"] >= 2

    def test_reject_requires_comment(self, client, auth_headers, reviewer_headers):
        sheet = _create(client, auth_headers)
        res = client.post(f"/api/v1/sheets/{sheet['id']}/reject", json={}, headers=reviewer_headers)
        assert res.status_code == 400
        res = client.post(f"/api/v1/sheets/{sheet['id']}/reject", json={"comment": "wrong seal"},
                          headers=reviewer_headers)
        assert res.get_json()["new_status"] == "Rejected"

    def test_transitions(self, client, auth_headers):
        sheet = _create(client, auth_headers)
        res = client.get(f"/api/v1/sheets/{sheet['id']}/transitions", headers=auth_headers)
        assert {a["action"] for a in res.get_json()["available"]} == {"edit", "verify", "reject"}


class TestRevisionsApi:
    def test_paging(self, client, auth_headers):
        sid = _create(client, auth_headers)["id"]
        for v in ("121", "122", "123"):
            _edit(client, auth_headers, sid, v)
        body = client.get(f"/api/v1/sheets/{sid}/revisions?page=1&page_size=2",
                          headers=auth_headers).get_json()
        assert body["total"] == 3
        assert body["page_size"] == 2
        assert [r["revision_num"] for r in body["items"]] == [3, 2]

        body = client.get(f"/api/v1/sheets/{sid}/revisions?page_size=100000",
                          headers=auth_headers).get_json()
        assert body["page_size"] == 100

    def test_get_revision(self, client, auth_headers):
        sid = _create(client, auth_headers)["id"]
        rev_id = _edit(client, auth_headers, sid, "121").get_json()["revision_id"]
        body = client.get(f"/api/v1/sheets/{sid}/revisions/{rev_id}", headers=auth_headers).get_json()
        assert body["revision_num"] == 1
        assert body["snapshot"]["sheetName"] == "Pump P-101"

        res = client.get(f"/api/v1/sheets/{sid}/revisions/987654", headers=auth_headers)
        assert res.status_code == 404


class TestValueSetsApi:
    def test_create_and_compare(self, client, auth_headers):
        sid = _create(client, auth_headers)["id"]
        url = f"/api/v1/sheets/{sid}/value-sets"

        res = client.post(url, json={"context": "Offered", "party_id": 501}, headers=auth_headers)
        assert res.status_code == 201
        vs_id = res.get_json()["value_set_id"]
        res = client.post(url, json={"context": "Offered", "party_id": 501}, headers=auth_headers)
        assert res.status_code == 200

        assert client.post(url, json={"context": "Offered"}, headers=auth_headers).status_code == 400

        items = client.get(url, headers=auth_headers).get_json()["items"]
        assert [i["context"] for i in items] == ["Requirement", "Offered"]

        field_id = client.get(f"/api/v1/sheets/{sid}", headers=auth_headers) \
            .get_json()["document"]["subsheets"][0]["fields"][0]["fieldId"]
        res = client.patch(f"{url}/{vs_id}/variances",
                           json={"field_id": field_id, "status": "DeviatesRejected"}, headers=auth_headers)
        assert res.get_json()["override"]["status"] == "DeviatesRejected"

        res = client.post(f"{url}/{vs_id}/status", json={"status": "Locked"}, headers=auth_headers)
        assert res.get_json()["status"] == "Locked"
        res = client.put(f"{url}/{vs_id}/values",
                         json={"values": [{"field_id": field_id, "value": "1"}]}, headers=auth_headers)
        assert res.status_code == 409

        compare = client.get(f"/api/v1/sheets/{sid}/compare?party_id=501", headers=auth_headers).get_json()
        cell = compare["subsheets"][0]["fields"][0]["offered"][0]
        assert cell["variance_status"] == "DeviatesRejected"
