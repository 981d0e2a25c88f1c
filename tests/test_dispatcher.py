"""
typedapi — Handler Dispatcher Tests
====================================

What:  Tests for the handler table, route resolution and the per-request
       pipeline (decode → handler → encode) served through FastAPI.
Why:   Each failure kind must map to exactly one HTTP outcome, and a
       misconfigured table must never start serving.
How:   Build-time checks are plain unit tests; request-time behavior uses a
       small "Items" API served in-process over httpx's ASGITransport.

Test Strategy:
    ✅ Registration errors: unknown, duplicate, after build
    ✅ build() lists exactly the missing endpoints
    ✅ First structural match wins; method mismatch is NoRouteFound
    ✅ Declared errors, undeclared errors, crashes, timeouts, bad output
    ✅ Sync handlers run off the event loop
"""

import asyncio
import threading
from unittest.mock import AsyncMock

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from typedapi.config import Settings
from typedapi.dispatcher import HandlerRequest, HandlerTable, collect_fields, render
from typedapi.endpoint import HttpApiEndpoint, ResponseSpec
from typedapi.exceptions import (
    DuplicateHandlerError,
    HandlerError,
    HandlerTableSealedError,
    IncompleteApiError,
    NoRouteFound,
    UnknownEndpointError,
)
from typedapi.greetings.api import MyApi
from typedapi.registry import HttpApi, HttpApiGroup
from typedapi.schema import (
    TEXT,
    URL_PARAMS,
    Array,
    Integer,
    NonEmptyTrimmedString,
    NumberFromString,
    String,
    Struct,
    UndefinedOr,
)
from typedapi.server import create_app

Item = Struct({"name": NonEmptyTrimmedString, "count": Integer}, title="Item")
Conflict = Struct({"reason": String}, title="Conflict")

Items = (
    HttpApiGroup.make("Items")
    .add(HttpApiEndpoint.get("special", "/items/special").add_success(String))
    .add(
        HttpApiEndpoint.get("get", "/items/:id")
        .with_path(Struct({"id": NumberFromString}))
        .add_success(Item)
        .add_error(Conflict, status=409)
    )
    .add(HttpApiEndpoint.post("create", "/items").with_payload(Item).add_success(Item, status=201))
    .add(HttpApiEndpoint.get("slow", "/slow").add_success(String))
    .add(HttpApiEndpoint.get("sync", "/sync").add_success(String))
    .add(HttpApiEndpoint.get("broken", "/broken").add_success(String))
)
ItemsApi = HttpApi.make("ItemsApi").add(Items)


def build_items_table(**overrides):
    """Handler table for ItemsApi; `overrides` maps endpoint id → handler."""

    async def special(request):
        return "special"

    async def get(request):
        if request.path.id == 409:
            raise HandlerError({"reason": "archived"})
        if request.path.id == 418:
            raise HandlerError({"reason": "teapot"}, status=418)
        if request.path.id == 500:
            raise RuntimeError("database exploded at /var/lib/secret")
        return {"name": "widget", "count": request.path.id}

    async def create(request):
        return request.payload

    async def slow(request):
        await asyncio.sleep(1)
        return "late"

    def sync(request):
        return threading.current_thread().name

    async def broken(request):
        return 42

    handlers = {
        "special": special,
        "get": get,
        "create": create,
        "slow": slow,
        "sync": sync,
        "broken": broken,
    }
    handlers.update(overrides)
    table = HandlerTable(ItemsApi)
    for endpoint_id, handler in handlers.items():
        table.register("Items", endpoint_id, handler)
    return table.build()


@pytest_asyncio.fixture
async def items_client(upload_store):
    app = create_app(
        ItemsApi,
        build_items_table(),
        config=Settings(handler_timeout_seconds=0.05),
        upload_store=upload_store,
    )
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client


class TestHandlerTable:
    """Build-time checks on handler registration."""

    def test_unknown_endpoint(self):
        table = HandlerTable(MyApi)
        with pytest.raises(UnknownEndpointError):
            table.register("Greetings", "goodbye", AsyncMock())
        with pytest.raises(UnknownEndpointError):
            table.register("Farewells", "hello-world", AsyncMock())

    def test_duplicate_handler(self):
        table = HandlerTable(MyApi)
        table.register("Greetings", "hello-world", AsyncMock())
        with pytest.raises(DuplicateHandlerError):
            table.register("Greetings", "hello-world", AsyncMock())

    def test_build_lists_exactly_the_missing_endpoints(self):
        table = HandlerTable(MyApi)
        table.register("Greetings", "hello-world", AsyncMock())
        table.register("Greetings", "upload", AsyncMock())
        with pytest.raises(IncompleteApiError) as exc_info:
            table.build()
        assert exc_info.value.missing == [
            ("Greetings", "users"),
            ("Greetings", "pass-param-option-one"),
            ("Greetings", "pass-param-option-two"),
            ("Greetings", "post"),
            ("Greetings", "delete"),
            ("Greetings", "patch/update"),
            ("Greetings", "catchAll"),
        ]
        assert "Greetings.users" in exc_info.value.message

    def test_register_after_build(self):
        table = HandlerTable(ItemsApi)
        for endpoint in Items:
            table.register("Items", endpoint.id, AsyncMock())
        table.build()
        with pytest.raises(HandlerTableSealedError):
            table.register("Items", "special", AsyncMock())

    def test_handles_decorator_returns_function(self):
        table = HandlerTable(MyApi)

        @table.handles("Greetings", "hello-world")
        async def hello_world(request):
            return "Hello World"

        assert hello_world.__name__ == "hello_world"
        assert ("Greetings", "hello-world") not in table.missing()


class TestDispatchTable:
    """Route resolution over the sealed table."""

    def test_first_structural_match_wins(self):
        table = build_items_table()
        route, values = table.resolve("GET", "/items/special")
        assert route.endpoint.id == "special"
        route, values = table.resolve("GET", "/items/7")
        assert route.endpoint.id == "get"
        assert values == {"id": "7"}

    def test_method_mismatch_is_no_route(self):
        table = build_items_table()
        with pytest.raises(NoRouteFound) as exc_info:
            table.resolve("DELETE", "/items/7")
        assert exc_info.value.method == "DELETE"

    def test_unmatched_path(self):
        with pytest.raises(NoRouteFound):
            build_items_table().resolve("GET", "/nonexistent")

    def test_route_lookup(self):
        table = build_items_table()
        assert table.route("Items", "create").name == "Items.create"
        assert len(table) == 6


class TestWireHelpers:
    def test_collect_fields(self):
        schema = Struct({"page": NumberFromString, "friend": UndefinedOr(Array(String))})
        raw = collect_fields(
            [("page", "1"), ("friend", "tom"), ("page", "2"), ("friend", "jensen"), ("other", "x")],
            schema,
        )
        assert raw == {"page": "2", "friend": ["tom", "jensen"]}

    def test_render_empty(self):
        response = render(ResponseSpec(204, None), "ignored")
        assert response.status_code == 204
        assert response.body == b""

    def test_render_text(self):
        response = render(ResponseSpec(200, String.with_encoding(TEXT, "text/csv")), "a,b")
        assert response.body == b"a,b"
        assert response.headers["content-type"].startswith("text/csv")

    def test_render_url_params(self):
        schema = Struct({"name": String, "tag": Array(String)}).with_encoding(URL_PARAMS)
        response = render(ResponseSpec(200, schema), {"name": "x y", "tag": ["a", "b"]})
        assert response.body == b"name=x+y&tag=a&tag=b"


class TestDispatch:
    """Per-request pipeline over HTTP."""

    @pytest.mark.asyncio
    async def test_success(self, items_client):
        response = await items_client.get("/items/3")
        assert response.status_code == 200
        assert response.json() == {"name": "widget", "count": 3}

    @pytest.mark.asyncio
    async def test_path_decode_failure(self, items_client):
        response = await items_client.get("/items/abc")
        assert response.status_code == 400
        body = response.json()
        assert body["error"] == "validation_error"
        assert body["details"]["location"] == "path"
        assert body["details"]["issues"][0]["path"] == "id"

    @pytest.mark.asyncio
    async def test_json_payload(self, items_client):
        response = await items_client.post("/items", json={"name": "bolt", "count": 2, "extra": True})
        assert response.status_code == 201
        assert response.json() == {"name": "bolt", "count": 2}

    @pytest.mark.asyncio
    async def test_json_payload_missing_field(self, items_client):
        response = await items_client.post("/items", json={"name": "bolt"})
        assert response.status_code == 400
        body = response.json()
        assert body["details"]["location"] == "payload"
        assert body["details"]["issues"][0]["path"] == "count"
        assert body["details"]["issues"][0]["type"] == "missing"

    @pytest.mark.asyncio
    async def test_invalid_json(self, items_client):
        response = await items_client.post(
            "/items", content=b"{not json", headers={"Content-Type": "application/json"}
        )
        assert response.status_code == 400
        assert response.json()["details"]["issues"][0]["type"] == "json_invalid"

    @pytest.mark.asyncio
    async def test_declared_error(self, items_client):
        response = await items_client.get("/items/409")
        assert response.status_code == 409
        assert response.json() == {"reason": "archived"}

    @pytest.mark.asyncio
    async def test_undeclared_error_status(self, items_client):
        response = await items_client.get("/items/418")
        assert response.status_code == 500
        assert response.json()["error"] == "internal_server_error"

    @pytest.mark.asyncio
    async def test_crash_is_generic_fault(self, items_client):
        """Exception text never reaches the client."""
        response = await items_client.get("/items/500")
        assert response.status_code == 500
        body = response.json()
        assert body["error"] == "internal_server_error"
        assert "secret" not in response.text
        assert body["request_id"] == response.headers["X-Request-ID"]

    @pytest.mark.asyncio
    async def test_timeout(self, items_client):
        response = await items_client.get("/slow")
        assert response.status_code == 504
        assert response.json()["error"] == "handler_timeout"

    @pytest.mark.asyncio
    @pytest.mark.parametrize("timeout", [5, 0])
    async def test_timeout_raised_by_handler_is_a_fault(self, upload_store, timeout):
        """A TimeoutError from inside the handler is not the dispatcher's timeout."""

        async def read_upstream(request):
            raise TimeoutError("socket read timed out")

        app = create_app(
            ItemsApi,
            build_items_table(special=read_upstream),
            config=Settings(handler_timeout_seconds=timeout),
            upload_store=upload_store,
        )
        async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
            response = await client.get("/items/special")

        assert response.status_code == 500
        assert response.json()["error"] == "internal_server_error"
        assert "socket" not in response.text

    @pytest.mark.asyncio
    async def test_timed_out_handler_is_cancelled(self, upload_store):
        events = []

        async def slow(request):
            try:
                await asyncio.sleep(1)
            except asyncio.CancelledError:
                events.append("cancelled")
                raise
            return "late"

        app = create_app(
            ItemsApi,
            build_items_table(slow=slow),
            config=Settings(handler_timeout_seconds=0.05),
            upload_store=upload_store,
        )
        async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
            response = await client.get("/slow")

        assert response.status_code == 504
        assert events == ["cancelled"]

    @pytest.mark.asyncio
    async def test_sync_handler_runs_in_threadpool(self, items_client):
        response = await items_client.get("/sync")
        assert response.status_code == 200
        assert response.json() != threading.main_thread().name

    @pytest.mark.asyncio
    async def test_undeclared_output_is_encoding_fault(self, items_client):
        response = await items_client.get("/broken")
        assert response.status_code == 500
        assert response.json()["error"] == "internal_server_error"

    @pytest.mark.asyncio
    async def test_no_route(self, items_client):
        response = await items_client.put("/items/3")
        assert response.status_code == 404
        assert response.json()["error"] == "route_not_found"

    @pytest.mark.asyncio
    async def test_handler_receives_raw_request(self, upload_store):
        seen = {}

        async def special(request: HandlerRequest):
            seen["user_agent"] = request.request.headers.get("user-agent")
            seen["path"] = request.path
            return "special"

        app = create_app(ItemsApi, build_items_table(special=special), upload_store=upload_store)
        async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
            response = await client.get("/items/special", headers={"User-Agent": "pytest"})

        assert response.status_code == 200
        assert seen == {"user_agent": "pytest", "path": None}


class TestCreateApp:
    def test_table_must_match_api(self, upload_store):
        with pytest.raises(ValueError, match="built for"):
            create_app(MyApi, build_items_table(), upload_store=upload_store)
