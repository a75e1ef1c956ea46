"""
Unit tests for the CRUD handlers, exercised over HTTP.
"""

import pytest

from service_resources.app.store import Collection, MemoryBackend, StoreError
from shared.errors import ConfigurationError


class FailingBackend(MemoryBackend):
    """Backend whose writes always fail."""

    async def create(self, url, attributes, id_attribute):
        raise StoreError("disk full")

    async def update(self, url, record_id, attributes):
        raise StoreError("disk full")

    async def delete(self, url, record_id):
        raise StoreError("disk full")


def denials(service, resource, operation):
    return service.metrics.registry.get_sample_value(
        "permission_denials_total", {"resource": resource, "operation": operation}
    ) or 0


class TestOpenResource:
    """Test cases for a resource without a permission policy."""

    @pytest.fixture(autouse=True)
    def register(self, service, numbered_collection):
        service.register(numbered_collection)

    def test_read_collection(self, client):
        """Test reading every record."""
        response = client.get("/numbered")

        assert response.status_code == 200
        data = response.json()
        assert len(data) == 10
        assert data[0] == {"id": 101, "key": "value 1"}

    def test_read_record(self, client):
        """Test reading one record."""
        response = client.get("/numbered/104")

        assert response.status_code == 200
        assert response.json() == {"id": 104, "key": "value 4"}

    def test_read_missing_record(self, client):
        """Test reading a record that does not exist."""
        response = client.get("/numbered/999")

        assert response.status_code == 404
        data = response.json()
        assert data["code"] == 404
        assert data["error"] == "NOT_FOUND"
        assert data["message"] == "Model 999 does not exist."

    def test_pick_and_omit(self, client):
        """Test narrowing responses with pick/omit query parameters."""
        assert client.get("/numbered/101?pick=id").json() == {"id": 101}
        assert client.get("/numbered/101?omit=key").json() == {"id": 101}
        assert client.get("/numbered?pick=key").json()[1] == {"key": "value 2"}

    def test_where_filter(self, client):
        """Test filtering a list by attribute equality."""
        response = client.get("/numbered?whereKey=id&whereValue=105")

        assert response.json() == [{"id": 105, "key": "value 5"}]

    def test_where_filter_applies_before_projection(self, client):
        """Test whereKey may name an attribute the projection drops."""
        response = client.get("/numbered?whereKey=key&whereValue=value 3&pick=id")

        assert response.json() == [{"id": 103}]

    def test_create_returns_reserved_attributes(self, client, numbered_collection):
        """Test create answers 206 with only identity and underscored attributes."""
        response = client.post("/numbered", json={"key": "new", "_owner": "user-1"})

        assert response.status_code == 206
        created = response.json()
        assert set(created) == {"id", "_owner"}
        assert created["_owner"] == "user-1"

        record = client.get(f"/numbered/{created['id']}").json()
        assert record["key"] == "new"
        assert len(numbered_collection) == 11

    def test_update_round_trip(self, client, backend):
        """Test update persists and answers reserved attributes."""
        response = client.put("/numbered/102", json={"key": "changed"})

        assert response.status_code == 206
        assert response.json() == {"id": 102}
        assert client.get("/numbered/102").json() == {"id": 102, "key": "changed"}
        assert backend.records["/numbered/102"]["key"] == "changed"

    def test_update_missing_record(self, client):
        """Test updating a record that does not exist."""
        assert client.put("/numbered/999", json={"key": "x"}).status_code == 404

    def test_delete(self, client, numbered_collection):
        """Test delete answers 204 and removes the record."""
        response = client.delete("/numbered/103")

        assert response.status_code == 204
        assert response.content == b""
        assert numbered_collection.get(103) is None
        assert client.get("/numbered/103").status_code == 404

    def test_delete_missing_record(self, client):
        """Test deleting a record that does not exist."""
        assert client.delete("/numbered/999").status_code == 404

    def test_invalid_json_body(self, client):
        """Test a malformed body is a validation failure."""
        response = client.put(
            "/numbered/101", content=b"{not json", headers={"Content-Type": "application/json"}
        )

        assert response.status_code == 422
        assert response.json()["error"] == "VALIDATION_FAILED"

    def test_non_object_body(self, client):
        """Test a JSON body must be an object."""
        assert client.post("/numbered", json=[1, 2]).status_code == 422


class TestAllowlistPolicy:
    """Test cases for allow-list permissions."""

    def test_read_only(self, service, client, numbered_collection):
        """Test every write is refused and nothing changes."""
        service.register(numbered_collection, permissions=["read"])

        assert client.get("/numbered").status_code == 200
        assert client.post("/numbered", json={"key": "new"}).status_code == 403
        assert client.put("/numbered/101", json={"key": "changed"}).status_code == 403
        assert client.delete("/numbered/101").status_code == 403

        assert len(numbered_collection) == 10
        assert numbered_collection.get(101).get("key") == "value 1"
        assert denials(service, "numbered", "create") == 1
        assert denials(service, "numbered", "update") == 1
        assert denials(service, "numbered", "del") == 1

    def test_missing_operation(self, service, client, numbered_collection):
        """Test each operation left out of the list is refused."""
        service.register(numbered_collection, permissions=["create", "update", "del"])

        response = client.get("/numbered")

        assert response.status_code == 403
        assert response.json() == {
            "code": 403,
            "error": "PERMISSION_DENIED",
            "message": "No permission for numbered",
            "details": {}
        }
        assert client.get("/numbered/101").status_code == 403
        assert client.post("/numbered", json={"key": "new"}).status_code == 206

    def test_empty_list_denies_everything(self, service, client, numbered_collection):
        """Test an empty list refuses all operations."""
        service.register(numbered_collection, permissions=[])

        assert client.get("/numbered").status_code == 403
        assert client.post("/numbered", json={}).status_code == 403
        assert client.put("/numbered/101", json={}).status_code == 403
        assert client.delete("/numbered/101").status_code == 403

    def test_permission_checked_before_existence(self, service, client, numbered_collection):
        """Test a denied client cannot tell which records exist."""
        service.register(numbered_collection, permissions=["read"])

        assert client.delete("/numbered/999").status_code == 403
        assert client.put("/numbered/999", json={}).status_code == 403


class TestPredicatePolicy:
    """Test cases for predicate permissions."""

    def test_read_narrowed_to_odd_ids(self, service, client, numbered_collection, odd_ids):
        """Test a read predicate returning a list narrows the collection."""
        service.register(numbered_collection, permissions={"read": odd_ids})

        response = client.get("/numbered")

        assert response.status_code == 200
        assert [record["id"] for record in response.json()] == [101, 103, 105, 107, 109]

        assert client.get("/numbered/103").status_code == 200
        response = client.get("/numbered/102")
        assert response.status_code == 403
        assert response.json()["message"] == "No permission for 102"

    def test_narrowed_read_still_filters_and_projects(self, service, client, numbered_collection, odd_ids):
        """Test where/pick apply inside the permitted set."""
        service.register(numbered_collection, permissions={"read": odd_ids})

        assert client.get("/numbered?whereKey=id&whereValue=102").json() == []
        assert client.get("/numbered?whereKey=id&whereValue=107&pick=id").json() == [{"id": 107}]

    def test_boolean_read_predicate(self, service, client, numbered_collection):
        """Test a boolean read predicate is all-or-nothing."""
        service.register(numbered_collection, permissions={"read": lambda records, body: len(records) > 20})

        assert client.get("/numbered").status_code == 403
        assert client.get("/numbered/101").status_code == 403

    def test_create_predicate_sees_body(self, service, client, numbered_collection):
        """Test a create predicate may reject by body content."""
        service.register(numbered_collection, permissions={
            "create": lambda records, body: body.get("key") != "reject me!",
        })

        assert client.post("/numbered", json={"key": "reject me!"}).status_code == 403
        assert len(numbered_collection) == 10
        assert client.post("/numbered", json={"key": "accept me"}).status_code == 206
        assert len(numbered_collection) == 11

    def test_update_predicate_sees_record_and_body(self, service, client, numbered_collection):
        """Test an update predicate receives the stored record and the body."""
        service.register(numbered_collection, permissions={
            "update": lambda record, body: record["id"] != 101 and body.get("key") != "reject me!",
        })

        assert client.put("/numbered/101", json={"key": "fine"}).status_code == 403
        assert client.put("/numbered/102", json={"key": "reject me!"}).status_code == 403
        assert client.put("/numbered/102", json={"key": "fine"}).status_code == 206
        assert numbered_collection.get(101).get("key") == "value 1"
        assert numbered_collection.get(102).get("key") == "fine"

    def test_delete_predicate(self, service, client, numbered_collection):
        """Test a del predicate protecting one record."""
        service.register(numbered_collection, permissions={
            "del": lambda record, body: record["id"] != 101,
        })

        assert client.delete("/numbered/101").status_code == 403
        assert numbered_collection.get(101) is not None
        assert client.delete("/numbered/102").status_code == 204
        assert numbered_collection.get(102) is None

    def test_missing_predicate_denies(self, service, client, numbered_collection, odd_ids):
        """Test operations without a predicate are refused."""
        service.register(numbered_collection, permissions={"read": odd_ids})

        assert client.delete("/numbered/101").status_code == 403

    def test_raising_predicate_denies(self, service, client, numbered_collection):
        """Test a predicate error is a denial, not a server error."""
        service.register(numbered_collection, permissions={"read": lambda records, body: records["x"]})

        assert client.get("/numbered").status_code == 403


class TestDynamicPolicy:
    """Test cases for policies computed per request."""

    def test_policy_depends_on_user(self, service, client, numbered_collection):
        """Test a callable policy receives the requesting user."""
        def permissions(context, target, body):
            if context.user_id == "admin":
                return ["create", "read", "update", "del"]
            return ["read"]

        service.register(numbered_collection, permissions=permissions)

        assert client.delete("/numbered/101").status_code == 403
        assert client.delete("/numbered/101", headers={"X-User-Id": "reader"}).status_code == 403
        assert client.delete("/numbered/101", headers={"X-User-Id": "admin"}).status_code == 204

    def test_policy_returning_predicates(self, service, client, numbered_collection):
        """Test a callable may return a predicate mapping per user."""
        def permissions(context, target, body):
            return {"read": lambda records, body: [r for r in records if r["id"] <= 100 + len(context.user_id or "")]}

        service.register(numbered_collection, permissions=permissions)

        response = client.get("/numbered", headers={"X-User-Id": "abc"})
        assert [record["id"] for record in response.json()] == [101, 102, 103]

    def test_policy_returning_false_denies(self, service, client, numbered_collection):
        """Test a callable returning a non-object denies."""
        service.register(numbered_collection, permissions=lambda context, target, body: False)

        assert client.get("/numbered").status_code == 403


class TestResourceOptions:
    """Test cases for per-resource options."""

    def test_filter_option_transforms_list(self, service, client, numbered_collection):
        """Test the filter option shapes collection reads only."""
        service.register(numbered_collection, filter=lambda records: records[:2])

        assert len(client.get("/numbered").json()) == 2
        assert client.get("/numbered/110").status_code == 200

    def test_pick_option_projects_single_record(self, service, client, numbered_collection):
        """Test the pick option shapes single-record reads."""
        service.register(numbered_collection, pick=lambda record: {"id": record["id"]})

        assert client.get("/numbered/101").json() == {"id": 101}
        assert client.get("/numbered").json()[0] == {"id": 101, "key": "value 1"}

    def test_name_regex(self, service, client, backend):
        """Test a resource named by a path capture group."""
        resource = service.register("/api/v1/gadgets", name_regex=r"/api/v1/(\w+)")

        assert resource.name == "gadgets"
        assert client.post("/api/v1/gadgets", json={"key": "g"}).status_code == 206
        assert client.get("/api/v1/gadgets").json() == [{"key": "g", "id": 1}]

    def test_name_regex_mismatch(self, service):
        """Test a regex that does not match the path is a configuration error."""
        with pytest.raises(ConfigurationError):
            service.register("/gadgets", name_regex=r"/api/v1/(\w+)")

    def test_duplicate_registration(self, service, numbered_collection):
        """Test registering the same path twice fails."""
        service.register(numbered_collection)

        with pytest.raises(ConfigurationError):
            service.register("/numbered")

    def test_validator_message(self, service, client):
        """Test a store validation message reaches the client verbatim."""
        def validator(attributes):
            return None if attributes.get("key") else "key is required"

        service.register(Collection("/checked", [{"id": 1, "key": "a"}], validator=validator))

        response = client.post("/checked", json={})
        assert response.status_code == 422
        assert response.json()["message"] == "key is required"

        assert client.put("/checked/1", json={"key": ""}).status_code == 422

    def test_store_failure(self, service, client):
        """Test store errors surface as persistence failures."""
        service.register(Collection("/broken", [{"id": 1}], backend=FailingBackend()))

        response = client.post("/broken", json={"key": "x"})
        assert response.status_code == 500
        assert response.json()["error"] == "PERSISTENCE_FAILURE"
        assert client.put("/broken/1", json={"key": "x"}).status_code == 500
        assert client.delete("/broken/1").status_code == 500


class TestEncodedIdentifiers:
    """Test cases for record ids that need percent-encoding."""

    @pytest.fixture(autouse=True)
    def register(self, service):
        service.register(Collection("/docs", [{"id": "a b", "v": 2}, {"id": "a/b", "v": 3}]))

    def test_read_decoded_ids(self, client):
        """Test encoded spaces and slashes reach the lookup decoded."""
        assert client.get("/docs/a%20b").json() == {"id": "a b", "v": 2}
        assert client.get("/docs/a%2Fb").json() == {"id": "a/b", "v": 3}

    def test_write_id_with_slash(self, client, service):
        """Test update and delete address an id containing a slash."""
        response = client.put("/docs/a%2Fb", json={"v": 4})
        assert response.status_code == 206
        assert response.json() == {"id": "a/b"}

        assert client.delete("/docs/a%2Fb").status_code == 204
        assert service.registry.get("docs").collection.get("a/b") is None

    def test_subscribe_unknown_id_with_slash(self, client):
        """Test the record subscribe route accepts an id containing a slash."""
        response = client.get("/docs/x%2Fy/subscribe")

        assert response.status_code == 404
        assert response.json()["message"] == "Model x/y does not exist."

    def test_trailing_slash_reads_collection(self, client):
        """Test the collection url with a trailing slash lists records."""
        assert len(client.get("/docs/").json()) == 2

    def test_unrouted_path_has_error_body(self, client):
        """Test routing failures use the standard error body."""
        response = client.get("/nowhere")

        assert response.status_code == 404
        assert response.json() == {"code": 404, "error": "NOT_FOUND", "message": "Not Found", "details": {}}
