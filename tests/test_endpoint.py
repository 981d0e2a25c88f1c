"""
typedapi — Endpoint Descriptor Unit Tests
==========================================

What:  Tests for path templates and the immutable endpoint builders.
Why:   Path matching decides which handler runs; builder checks decide
       whether a malformed declaration can ever reach a server.

Test Strategy:
    ✅ Literal, parameter and catch-all matching (segment-count aware)
    ✅ Trailing slash and case sensitivity
    ✅ Builders return new descriptors and reject contradictions
    ✅ checked() fills in implied path schemas
"""

import pytest

from typedapi.endpoint import HttpApiEndpoint, PathTemplate, param
from typedapi.exceptions import InvalidEndpointError
from typedapi.schema import URL_PARAMS, NumberFromString, String, Struct


class TestPathTemplate:
    """Parsing and matching of path templates."""

    def test_literal_match(self):
        template = PathTemplate.parse("/users")
        assert template.match("/users") == {}
        assert template.match("/users/42") is None
        assert template.match("/") is None

    def test_parameter_binds_one_segment(self):
        template = PathTemplate.parse("/param/optionOne/:id")
        assert template.match("/param/optionOne/42") == {"id": "42"}
        assert template.match("/param/optionOne") is None
        assert template.match("/param/optionOne/42/extra") is None

    def test_trailing_slash_ignored(self):
        template = PathTemplate.parse("/param/optionOne/:id")
        assert template.match("/param/optionOne/42/") == {"id": "42"}

    def test_case_sensitive(self):
        assert PathTemplate.parse("/users").match("/Users") is None

    def test_root(self):
        template = PathTemplate.parse("/")
        assert template.match("/") == {}
        assert template.match("/users") is None

    def test_catch_all_binds_suffix(self):
        template = PathTemplate.parse("/*")
        assert template.match("/") == {"*": ""}
        assert template.match("/nonexistent") == {"*": "nonexistent"}
        assert template.match("/a/b/c") == {"*": "a/b/c"}

    def test_catch_all_after_prefix(self):
        template = PathTemplate.parse("/files/*")
        assert template.match("/files/2024/report.csv") == {"*": "2024/report.csv"}
        assert template.match("/other/x") is None

    def test_params(self):
        template = PathTemplate.parse("/orgs/:org/users/:id")
        assert template.params == ("org", "id")
        assert not template.has_catch_all

    @pytest.mark.parametrize("bad", ["users", "/*/users", "/:id/:id", "/users/:"])
    def test_invalid_templates(self, bad):
        with pytest.raises(ValueError):
            PathTemplate.parse(bad)

    def test_resolve_quotes_values(self):
        template = PathTemplate.parse("/delete/:id")
        assert template.resolve({"id": 7}) == "/delete/7"
        assert template.resolve({"id": "a b/c"}) == "/delete/a%20b%2Fc"

    def test_resolve_catch_all_keeps_slashes(self):
        assert PathTemplate.parse("/*").resolve({"*": "a/b"}) == "/a/b"

    def test_resolve_missing_value(self):
        with pytest.raises(KeyError):
            PathTemplate.parse("/delete/:id").resolve({})

    def test_with_prefix(self):
        assert str(PathTemplate.parse("/users").with_prefix("api")) == "/api/users"
        assert str(PathTemplate.parse("/").with_prefix("/api/")) == "/api"
        assert str(PathTemplate.parse("/users").with_prefix("")) == "/users"

    def test_to_openapi(self):
        assert PathTemplate.parse("/params/optionTwo/:id").to_openapi() == "/params/optionTwo/{id}"
        assert PathTemplate.parse("/*").to_openapi() == "/{*}"


class TestEndpointConstruction:
    """Method constructors and inline parameters."""

    def test_method_constructors(self):
        assert HttpApiEndpoint.get("a", "/").method == "GET"
        assert HttpApiEndpoint.post("a", "/").method == "POST"
        assert HttpApiEndpoint.put("a", "/").method == "PUT"
        assert HttpApiEndpoint.patch("a", "/").method == "PATCH"
        assert HttpApiEndpoint.delete("a", "/").method == "DELETE"
        assert HttpApiEndpoint.head("a", "/").method == "HEAD"
        assert HttpApiEndpoint.options("a", "/").method == "OPTIONS"

    def test_unsupported_method(self):
        with pytest.raises(ValueError):
            HttpApiEndpoint.make("TRACE", "a", "/")

    def test_empty_id(self):
        with pytest.raises(ValueError):
            HttpApiEndpoint.get("", "/")

    def test_inline_param_builds_path_schema(self):
        endpoint = HttpApiEndpoint.get("pass-param-option-two", "/params/optionTwo/", param("id", NumberFromString))
        assert str(endpoint.path) == "/params/optionTwo/:id"
        assert endpoint.path_schema.field("id") is NumberFromString
        assert endpoint.path_schema.decode({"id": "42"}).id == 42


class TestBuilders:
    """Every builder returns a new descriptor."""

    def test_builders_do_not_mutate(self):
        base = HttpApiEndpoint.get("users", "/users")
        with_success = base.add_success(String)
        assert base.successes == ()
        assert len(with_success.successes) == 1
        assert base is not with_success

    def test_default_success_is_no_content(self):
        endpoint = HttpApiEndpoint.patch("patch/update", "/patch/:id")
        assert endpoint.success.status == 204
        assert endpoint.success.schema is None
        assert endpoint.success_for(204).status == 204
        assert endpoint.success_for(200) is None

    def test_custom_success_status(self):
        endpoint = HttpApiEndpoint.get("users", "/users").add_success(String, status=206)
        assert endpoint.success.status == 206
        assert endpoint.success_for(200) is None

    def test_duplicate_success_status(self):
        endpoint = HttpApiEndpoint.get("a", "/").add_success(String)
        with pytest.raises(InvalidEndpointError, match="declared twice"):
            endpoint.add_success(String)

    def test_second_success_with_distinct_status(self):
        endpoint = HttpApiEndpoint.get("a", "/").add_success(String).add_success(None, status=202)
        assert [spec.status for spec in endpoint.successes] == [200, 202]

    def test_success_status_must_be_2xx(self):
        with pytest.raises(InvalidEndpointError):
            HttpApiEndpoint.get("a", "/").add_success(String, status=404)

    def test_error_status_must_be_4xx_or_5xx(self):
        with pytest.raises(InvalidEndpointError):
            HttpApiEndpoint.get("a", "/").add_error(String, status=200)

    def test_errors_may_share_a_status(self):
        endpoint = (
            HttpApiEndpoint.get("a", "/")
            .add_error(Struct({"reason": String}), status=409)
            .add_error(String, status=409)
        )
        assert len(endpoint.errors_for(409)) == 2
        assert endpoint.errors_for(404) == ()

    def test_get_cannot_have_payload(self):
        with pytest.raises(InvalidEndpointError, match="cannot declare a payload"):
            HttpApiEndpoint.get("a", "/").with_payload(Struct({"name": String}))

    def test_url_params_payload(self):
        endpoint = HttpApiEndpoint.post("post", "/post").with_payload(
            Struct({"name": String}).with_encoding(URL_PARAMS)
        )
        assert endpoint.payload_encoding == URL_PARAMS

    def test_query_and_headers_require_struct(self):
        with pytest.raises(InvalidEndpointError):
            HttpApiEndpoint.get("a", "/").with_query(String)
        with pytest.raises(InvalidEndpointError):
            HttpApiEndpoint.get("a", "/").with_headers(String)

    def test_annotate(self):
        endpoint = HttpApiEndpoint.get("a", "/").annotate(summary="Say hello")
        assert endpoint.summary == "Say hello"
        assert endpoint.annotate(description="More").summary == "Say hello"


class TestChecked:
    """checked() runs when an endpoint joins a group."""

    def test_implicit_string_params(self):
        endpoint = HttpApiEndpoint.get("a", "/users/:id").checked()
        assert endpoint.path_schema.decode({"id": "abc"}).id == "abc"

    def test_explicit_schema_missing_param(self):
        endpoint = HttpApiEndpoint.get("a", "/users/:id").with_path(Struct({"name": String}))
        with pytest.raises(InvalidEndpointError, match="have no field"):
            endpoint.checked()

    def test_catch_all_field_added(self):
        endpoint = HttpApiEndpoint.get("catchAll", "/*").checked()
        path = endpoint.path_schema.decode({"*": "a/b"})
        assert path.wildcard == "a/b"
        assert path["*"] == "a/b"

    def test_catch_all_added_to_explicit_schema(self):
        endpoint = (
            HttpApiEndpoint.get("files", "/files/:owner/*")
            .with_path(Struct({"owner": NumberFromString}))
            .checked()
        )
        assert endpoint.path_schema.field_names == ("owner", "*")

    def test_no_params_unchanged(self):
        endpoint = HttpApiEndpoint.get("a", "/users")
        assert endpoint.checked() is endpoint
