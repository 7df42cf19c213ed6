"""
End-to-end tests for the ResourceGateway pipeline against mocked upstreams.

Covers the ordering guarantees (validation, admission and cost checks all
happen before any network traffic), error mapping, caching, generation
usage tracking, GitHub export and connection tests.
"""

import json

import httpx
import pytest

from design_gateway.errors import (
    CostLimitExceededError,
    ForbiddenError,
    InvalidInputError,
    NetworkError,
    NotFoundError,
    RateLimitedError,
    UnauthorizedError,
    UpstreamError,
)
from design_gateway.gateway import ResourceGateway, create_gateway
from design_gateway.services.cache_service import credential_fingerprint
from design_gateway.utils.storage import MemoryStorage, StorageError
from design_gateway.utils.types import GenerationOptions, Provider

FIGMA_API = "https://api.figma.com/v1"
OPENAI_API = "https://api.openai.com/v1"
GROQ_API = "https://api.groq.com/openai/v1"
GITHUB_API = "https://api.github.com"

DESIGN_URL = "https://www.figma.com/file/abc123/Landing-Page"


def completion_body(content="Generated copy", prompt_tokens=100, completion_tokens=50):
    return {
        "model": "gpt-4o-2024-08-06",
        "choices": [{"message": {"role": "assistant", "content": content}}],
        "usage": {
            "prompt_tokens": prompt_tokens,
            "completion_tokens": completion_tokens,
            "total_tokens": prompt_tokens + completion_tokens,
        },
    }


class TestFigmaReads:
    async def test_get_design_file(self, gateway, upstream, figma_token):
        upstream.add("GET", f"{FIGMA_API}/files/abc123", json={"name": "Landing Page"})

        data = await gateway.get_design_file(DESIGN_URL, figma_token)

        assert data == {"name": "Landing Page"}
        request = upstream.requests[0]
        assert request.headers["X-Figma-Token"] == figma_token

    async def test_bare_key_accepted(self, gateway, upstream, figma_token):
        upstream.add("GET", f"{FIGMA_API}/files/abc123", json={"name": "x"})

        assert await gateway.get_design_file("abc123", figma_token) == {"name": "x"}

    async def test_invalid_identifier_rejected_before_network(self, gateway, upstream, figma_token):
        with pytest.raises(InvalidInputError) as exc_info:
            await gateway.get_design_file("https://example.com/not-figma", figma_token)

        assert exc_info.value.message == "Invalid Figma URL or file key"
        assert upstream.requests == []

    async def test_malformed_token_rejected_before_network(self, gateway, upstream):
        with pytest.raises(InvalidInputError):
            await gateway.get_design_file(DESIGN_URL, "not-a-token")

        assert upstream.requests == []

    async def test_version_and_ids_forwarded(self, gateway, upstream, figma_token):
        upstream.add("GET", f"{FIGMA_API}/files/abc123", json={})

        await gateway.get_design_file(DESIGN_URL, figma_token, version="42", ids=["1:2", "3:4"])

        params = upstream.requests[0].url.params
        assert params["version"] == "42"
        assert params["ids"] == "1:2,3:4"

    async def test_rendered_images(self, gateway, upstream, figma_token):
        upstream.add(
            "GET",
            f"{FIGMA_API}/images/abc123",
            json={"err": None, "images": {"1:2": "https://cdn/img.png"}},
        )

        data = await gateway.get_rendered_images(
            DESIGN_URL, ["1:2"], figma_token, image_format="svg", scale=2
        )

        assert data["images"] == {"1:2": "https://cdn/img.png"}
        params = upstream.requests[0].url.params
        assert params["ids"] == "1:2"
        assert params["format"] == "svg"

    @pytest.mark.parametrize("node_ids", [[], ["", "  "], None])
    async def test_empty_node_ids_rejected_before_network(
        self, gateway, upstream, figma_token, node_ids
    ):
        with pytest.raises(InvalidInputError) as exc_info:
            await gateway.get_rendered_images(DESIGN_URL, node_ids, figma_token)

        assert exc_info.value.message == "Node IDs are required"
        assert upstream.requests == []

    async def test_empty_node_ids_checked_before_token(self, gateway, upstream):
        with pytest.raises(InvalidInputError) as exc_info:
            await gateway.get_rendered_images(DESIGN_URL, [], "bad-token")

        assert exc_info.value.message == "Node IDs are required"

    @pytest.mark.parametrize("kwargs", [{"image_format": "gif"}, {"scale": 0}, {"scale": 5}])
    async def test_invalid_render_options(self, gateway, upstream, figma_token, kwargs):
        with pytest.raises(InvalidInputError):
            await gateway.get_rendered_images(DESIGN_URL, ["1:2"], figma_token, **kwargs)

        assert upstream.requests == []

    async def test_team_components(self, gateway, upstream, figma_token):
        upstream.add("GET", f"{FIGMA_API}/teams/123456/components", json={"meta": {}})

        assert await gateway.get_team_components("123456", figma_token) == {"meta": {}}

    async def test_file_comments(self, gateway, upstream, figma_token):
        upstream.add("GET", f"{FIGMA_API}/files/abc123/comments", json={"comments": []})

        assert await gateway.get_file_comments(DESIGN_URL, figma_token) == {"comments": []}


class TestUpstreamErrorMapping:
    @pytest.mark.parametrize(
        "status,error_type",
        [
            (401, UnauthorizedError),
            (403, ForbiddenError),
            (404, NotFoundError),
            (500, UpstreamError),
        ],
    )
    async def test_status_mapped(self, gateway, upstream, figma_token, status, error_type):
        upstream.add("GET", f"{FIGMA_API}/files/abc123", status=status, json={"err": "nope"})

        with pytest.raises(error_type) as exc_info:
            await gateway.get_design_file(DESIGN_URL, figma_token)

        assert exc_info.value.message == "nope"
        assert exc_info.value.provider == "figma"

    async def test_upstream_429_carries_retry_after(self, gateway, upstream, figma_token):
        upstream.add(
            "GET",
            f"{FIGMA_API}/files/abc123",
            status=429,
            json={},
            headers={"Retry-After": "7"},
        )

        with pytest.raises(RateLimitedError) as exc_info:
            await gateway.get_design_file(DESIGN_URL, figma_token)

        assert exc_info.value.retry_after == 7.0

    async def test_timeout_mapped(self, gateway, upstream, figma_token):
        upstream.fail("GET", f"{FIGMA_API}/files/abc123", httpx.ReadTimeout("slow"))

        with pytest.raises(NetworkError):
            await gateway.get_design_file(DESIGN_URL, figma_token)

    async def test_errors_are_not_retried(self, gateway, upstream, figma_token):
        upstream.add("GET", f"{FIGMA_API}/files/abc123", status=500, json={})

        with pytest.raises(UpstreamError):
            await gateway.get_design_file(DESIGN_URL, figma_token)

        assert len(upstream.requests) == 1

    async def test_failures_are_not_cached(self, gateway, upstream, figma_token):
        upstream.add("GET", f"{FIGMA_API}/files/abc123", status=500, json={})
        with pytest.raises(UpstreamError):
            await gateway.get_design_file(DESIGN_URL, figma_token)

        upstream.add("GET", f"{FIGMA_API}/files/abc123", json={"name": "ok"})

        assert await gateway.get_design_file(DESIGN_URL, figma_token) == {"name": "ok"}


class TestRateLimiting:
    async def test_denial_happens_before_network(self, gateway, upstream, figma_token):
        upstream.add("GET", f"{FIGMA_API}/teams/123456/components", json={})

        for _ in range(3):
            await gateway.get_team_components("123456", figma_token)

        with pytest.raises(RateLimitedError) as exc_info:
            await gateway.get_team_components("123456", figma_token)

        assert len(upstream.requests) == 3
        assert exc_info.value.retry_after > 0
        assert exc_info.value.message.startswith("Rate limit exceeded. Try again in")

    async def test_window_slides(self, gateway, upstream, figma_token, clock):
        upstream.add("GET", f"{FIGMA_API}/teams/123456/components", json={})
        for _ in range(3):
            await gateway.get_team_components("123456", figma_token)

        clock.advance(1.5)

        await gateway.get_team_components("123456", figma_token)
        assert len(upstream.requests) == 4

    async def test_identity_override_separates_windows(self, gateway, upstream, figma_token):
        upstream.add("GET", f"{FIGMA_API}/teams/123456/components", json={})
        for _ in range(3):
            await gateway.get_team_components("123456", figma_token, identity="session-a")

        await gateway.get_team_components("123456", figma_token, identity="session-b")

        assert len(upstream.requests) == 4

    async def test_cache_hits_skip_admission(self, gateway, upstream, figma_token):
        upstream.add("GET", f"{FIGMA_API}/files/abc123", json={"name": "Cached"})

        for _ in range(10):
            assert await gateway.get_design_file(DESIGN_URL, figma_token) == {"name": "Cached"}

        assert len(upstream.requests) == 1
        stats = gateway.get_rate_limit_stats(credential_fingerprint(figma_token))
        assert stats["api"]["requestsInWindow"] == 1
        assert stats["api"]["remaining"] == 2

    async def test_cache_expires(self, gateway, upstream, figma_token, clock, settings):
        upstream.add("GET", f"{FIGMA_API}/files/abc123", json={"name": "v1"})
        await gateway.get_design_file(DESIGN_URL, figma_token)

        clock.advance(settings.cache_ttl_file + 1)
        await gateway.get_design_file(DESIGN_URL, figma_token)

        assert len(upstream.requests) == 2

    async def test_generation_and_reads_use_separate_limiters(
        self, gateway, upstream, figma_token, openai_key
    ):
        upstream.add("GET", f"{FIGMA_API}/teams/123456/components", json={})
        upstream.add("POST", f"{OPENAI_API}/chat/completions", json=completion_body())
        for _ in range(3):
            await gateway.get_team_components("123456", figma_token)

        result = await gateway.generate_text("Write a headline", None, openai_key)

        assert result.content == "Generated copy"

    def test_limiters_must_be_distinct(self, sync_gateway):
        with pytest.raises(ValueError):
            ResourceGateway(
                figma=sync_gateway.figma,
                ai_clients=sync_gateway.ai_clients,
                github=sync_gateway.github,
                api_limiter=sync_gateway.api_limiter,
                export_limiter=sync_gateway.api_limiter,
                cost_governor=sync_gateway.cost_governor,
                credential_store=sync_gateway.credential_store,
            )


class TestGeneration:
    async def test_generate_tracks_usage(self, gateway, upstream, openai_key):
        upstream.add("POST", f"{OPENAI_API}/chat/completions", json=completion_body())

        result = await gateway.generate_text("Write a headline", None, openai_key)

        assert result.provider == "openai"
        assert result.model == "gpt-4o-2024-08-06"
        assert result.usage.prompt_tokens == 100
        assert result.usage.completion_tokens == 50
        assert result.usage.cost == pytest.approx(100 / 1000 * 0.005 + 50 / 1000 * 0.015)

        report = gateway.get_usage_report()
        assert report["total"]["requests"] == 1
        assert report["daily"]["tokens"] == 150

        request = upstream.requests[0]
        assert request.headers["Authorization"] == f"Bearer {openai_key}"

    async def test_options_forwarded(self, gateway, upstream, groq_key):
        upstream.add("POST", f"{GROQ_API}/chat/completions", json=completion_body())

        options = GenerationOptions(
            provider=Provider.GROQ,
            model="llama-3.3-70b-versatile",
            max_tokens=64,
            temperature=0.2,
            system_prompt="Be brief",
        )
        result = await gateway.generate_text("Summarize", options, groq_key)

        assert result.provider == "groq"
        body = upstream.requests[0].read()
        assert b'"max_tokens": 64' in body
        assert b'"temperature": 0.2' in body
        assert b"Be brief" in body
        assert gateway.get_usage_stats()["requestsByProvider"] == {"groq": 1}

    async def test_cost_block_happens_before_network(self, gateway, upstream, openai_key):
        gateway.update_cost_limits(daily=0)

        with pytest.raises(CostLimitExceededError) as exc_info:
            await gateway.generate_text("Write a headline", None, openai_key)

        assert exc_info.value.reason == "Daily limit reached: $0.00/$0"
        assert upstream.requests == []
        assert gateway.get_usage_report()["total"]["requests"] == 0

    async def test_per_request_ceiling(self, gateway, upstream, openai_key):
        gateway.update_cost_limits(per_request=0.0001)

        with pytest.raises(CostLimitExceededError) as exc_info:
            await gateway.generate_text("x" * 40_000, None, openai_key)

        assert exc_info.value.reason.startswith("Per-request limit exceeded")
        assert upstream.requests == []

    async def test_export_limiter_checked_before_cost(self, gateway, upstream, openai_key):
        gateway.update_cost_limits(daily=0)
        for _ in range(2):
            with pytest.raises(CostLimitExceededError):
                await gateway.generate_text("hi", None, openai_key)

        with pytest.raises(RateLimitedError):
            await gateway.generate_text("hi", None, openai_key)

    @pytest.mark.parametrize("prompt", ["", "   "])
    async def test_empty_prompt(self, gateway, upstream, openai_key, prompt):
        with pytest.raises(InvalidInputError):
            await gateway.generate_text(prompt, None, openai_key)

        assert upstream.requests == []

    async def test_non_ai_provider_rejected(self, gateway, figma_token):
        with pytest.raises(InvalidInputError):
            await gateway.generate_text("hi", GenerationOptions(provider=Provider.FIGMA), figma_token)

    async def test_key_format_checked_per_provider(self, gateway, upstream, openai_key):
        with pytest.raises(InvalidInputError):
            await gateway.generate_text("hi", GenerationOptions(provider=Provider.GROQ), openai_key)

        assert upstream.requests == []

    async def test_upstream_failure_records_no_usage(self, gateway, upstream, openai_key):
        upstream.add(
            "POST",
            f"{OPENAI_API}/chat/completions",
            status=401,
            json={"error": {"message": "Incorrect API key provided"}},
        )

        with pytest.raises(UnauthorizedError) as exc_info:
            await gateway.generate_text("hi", None, openai_key)

        assert exc_info.value.message == "Incorrect API key provided"
        assert gateway.get_usage_report()["total"]["requests"] == 0

    async def test_missing_usage_is_estimated(self, gateway, upstream, openai_key):
        body = completion_body(content="abcdefgh")
        del body["usage"]
        upstream.add("POST", f"{OPENAI_API}/chat/completions", json=body)

        result = await gateway.generate_text("a" * 40, None, openai_key)

        assert result.usage.prompt_tokens == 10
        assert result.usage.completion_tokens == 2

    @pytest.mark.parametrize(
        "usage",
        [
            {"prompt_tokens": None, "completion_tokens": 5},
            {"prompt_tokens": "n/a", "completion_tokens": 5},
            {"prompt_tokens": -3, "completion_tokens": 5},
            {"prompt_tokens": 10, "completion_tokens": True},
            {"prompt_tokens": 10.5, "completion_tokens": 5},
            "not-an-object",
        ],
    )
    async def test_malformed_usage_is_estimated_and_recorded(
        self, gateway, upstream, openai_key, usage
    ):
        body = completion_body(content="abcdefgh")
        body["usage"] = usage
        upstream.add("POST", f"{OPENAI_API}/chat/completions", json=body)

        result = await gateway.generate_text("a" * 40, None, openai_key)

        assert result.content == "abcdefgh"
        assert result.usage.prompt_tokens == 10
        assert result.usage.completion_tokens == 2
        assert gateway.get_usage_report()["total"]["requests"] == 1

    async def test_usage_write_failure_does_not_lose_result(
        self, settings, upstream, clock, wall_clock, openai_key
    ):
        class ReadOnlyStorage(MemoryStorage):
            def set(self, key, value):
                raise StorageError("read-only filesystem")

        gw = create_gateway(
            settings,
            storage=ReadOnlyStorage(),
            transport=upstream.transport,
            monotonic_clock=clock,
            wall_clock=wall_clock,
        )
        upstream.add("POST", f"{OPENAI_API}/chat/completions", json=completion_body())
        try:
            result = await gw.generate_text("Write a headline", None, openai_key)
        finally:
            await gw.close()

        assert result.content == "Generated copy"
        assert gw.get_usage_report()["total"]["requests"] == 1

    async def test_malformed_completion(self, gateway, upstream, openai_key):
        upstream.add("POST", f"{OPENAI_API}/chat/completions", json={"choices": []})

        with pytest.raises(UpstreamError):
            await gateway.generate_text("hi", None, openai_key)


class TestExport:
    async def test_creates_repo_then_uploads_files(self, gateway, upstream, github_token):
        upstream.add(
            "POST",
            f"{GITHUB_API}/user/repos",
            status=201,
            json={"full_name": "octo/design-system", "html_url": "https://github.com/octo/design-system"},
        )
        upstream.add("PUT", f"{GITHUB_API}/repos/octo/design-system/contents/README.md", status=201, json={})
        upstream.add("PUT", f"{GITHUB_API}/repos/octo/design-system/contents/src/tokens.css", status=201, json={})

        result = await gateway.export_to_repository(
            "design-system",
            {"README.md": "# Design", "src/tokens.css": ":root {}"},
            github_token,
            private=True,
        )

        assert result == {
            "repository": "octo/design-system",
            "url": "https://github.com/octo/design-system",
            "files": ["README.md", "src/tokens.css"],
        }
        assert [r.method for r in upstream.requests] == ["POST", "PUT", "PUT"]
        assert b'"private": true' in upstream.requests[0].read()

    async def test_stops_at_first_failed_upload(self, gateway, upstream, github_token):
        upstream.add("POST", f"{GITHUB_API}/user/repos", status=201, json={"full_name": "octo/r"})
        upstream.add("PUT", f"{GITHUB_API}/repos/octo/r/contents/a.txt", status=422, json={"message": "sha missing"})

        with pytest.raises(UpstreamError):
            await gateway.export_to_repository("r", {"a.txt": "1", "b.txt": "2"}, github_token)

        assert len(upstream.calls_to("/contents/")) == 1

    @pytest.mark.parametrize(
        "repo_name,files",
        [
            ("bad name", {"a.txt": "1"}),
            ("repo", {}),
            ("repo", {"../escape.txt": "1"}),
            ("repo", {"/": "1"}),
        ],
    )
    async def test_invalid_input_before_network(self, gateway, upstream, github_token, repo_name, files):
        with pytest.raises(InvalidInputError):
            await gateway.export_to_repository(repo_name, files, github_token)

        assert upstream.requests == []

    async def test_export_limited(self, gateway, upstream, github_token):
        upstream.add("POST", f"{GITHUB_API}/user/repos", status=201, json={"full_name": "octo/r"})
        upstream.add("PUT", f"{GITHUB_API}/repos/octo/r/contents/a.txt", status=201, json={})

        for _ in range(2):
            await gateway.export_to_repository("r", {"a.txt": "1"}, github_token)

        with pytest.raises(RateLimitedError):
            await gateway.export_to_repository("r", {"a.txt": "1"}, github_token)

        assert len(upstream.requests) == 4

    async def test_description_stripped_of_markup(self, gateway, upstream, github_token):
        upstream.add("POST", f"{GITHUB_API}/user/repos", status=201, json={"full_name": "octo/r"})
        upstream.add("PUT", f"{GITHUB_API}/repos/octo/r/contents/a.txt", status=201, json={})

        await gateway.export_to_repository(
            "r",
            {"a.txt": "1"},
            github_token,
            description=" <b onclick=x>javascript:Design</b> ",
        )

        body = json.loads(upstream.requests[0].read())
        assert body["description"] == "b xDesign/b"


class TestCredentials:
    def test_validate_credential(self, sync_gateway, figma_token):
        assert sync_gateway.validate_credential("figma", figma_token) is True
        assert sync_gateway.validate_credential("figma", "nope") is False
        assert sync_gateway.validate_credential("dropbox", figma_token) is False

    def test_store_and_retrieve(self, sync_gateway, figma_token):
        sync_gateway.store_credential("figma", figma_token, provider="figma")

        assert sync_gateway.retrieve_credential("figma") == figma_token

        sync_gateway.clear_credential("figma")
        assert sync_gateway.retrieve_credential("figma") is None

    def test_invalid_token_never_persisted(self, sync_gateway, storage):
        with pytest.raises(InvalidInputError):
            sync_gateway.store_credential("figma", "figd_short", provider="figma")

        assert sync_gateway.retrieve_credential("figma") is None
        assert storage.keys() == []

    def test_never_stored_returns_none(self, sync_gateway):
        assert sync_gateway.retrieve_credential("github") is None


class TestConnectionTest:
    async def test_figma_success(self, gateway, upstream, figma_token):
        upstream.add("GET", f"{FIGMA_API}/me", json={"handle": "designer"})

        status = await gateway.test_connection("figma", figma_token)

        assert status.success is True
        assert status.user == {"handle": "designer"}

    async def test_github_success(self, gateway, upstream, github_token):
        upstream.add("GET", f"{GITHUB_API}/user", json={"login": "octo"})

        status = await gateway.test_connection(Provider.GITHUB, github_token)

        assert status.success is True
        assert status.user["login"] == "octo"

    async def test_ai_success(self, gateway, upstream, groq_key):
        upstream.add("GET", f"{GROQ_API}/models", json={"data": []})

        status = await gateway.test_connection("groq", groq_key)

        assert status.success is True
        assert status.provider == "groq"

    async def test_bad_format_reported_without_network(self, gateway, upstream):
        status = await gateway.test_connection("figma", "not-a-token")

        assert status.success is False
        assert "format" in status.error
        assert upstream.requests == []

    async def test_upstream_rejection_reported(self, gateway, upstream, figma_token):
        upstream.add("GET", f"{FIGMA_API}/me", status=403, json={"err": "Invalid token"})

        status = await gateway.test_connection("figma", figma_token)

        assert status.success is False
        assert status.error == "Invalid token"

    async def test_unknown_provider_reported(self, gateway, upstream):
        status = await gateway.test_connection("dropbox", "anything")

        assert status.success is False
        assert status.provider == "dropbox"
        assert "Unknown provider" in status.error
        assert upstream.requests == []
