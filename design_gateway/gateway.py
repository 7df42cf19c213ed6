"""
ResourceGateway: the single call path for every upstream operation.

Each remote method runs the same pipeline, in order:

1. Validate and parse user-supplied identifiers, tokens and inputs
   (InvalidInputError)
2. Admission through the matching rate limiter: API reads use the api
   limiter, generation and export use the export limiter (RateLimitedError)
3. For generation only, the cost governor's daily, monthly and per-request
   ceilings (CostLimitExceededError)
4. The HTTP call, bounded by a timeout
5. Mapping of upstream failures to the typed error taxonomy

Steps 1-3 raise before any network traffic. Nothing is retried.

All shared state (limiters, governor, credential store, cache) is injected,
so tests build isolated instances with fake clocks and in-memory storage.
"""

import math
import time
from typing import Any, Callable, Dict, List, Mapping, Optional, Union

import httpx

from design_gateway.clients import (
    ChatCompletionClient,
    FigmaClient,
    GitHubClient,
    create_figma_client,
    create_github_client,
    create_groq_client,
    create_openai_client,
)
from design_gateway.clients.figma_client import IMAGE_FORMATS
from design_gateway.config import Settings, get_settings
from design_gateway.errors import (
    CostLimitExceededError,
    GatewayError,
    InvalidInputError,
    RateLimitedError,
)
from design_gateway.services.cache_service import (
    ResponseCache,
    create_response_cache,
    credential_fingerprint,
    make_cache_key,
)
from design_gateway.services.cost_governor import CostGovernor, PricingTable
from design_gateway.services.credential_store import CredentialStore
from design_gateway.services.rate_limiter import (
    SlidingWindowRateLimiter,
    create_api_rate_limiter,
    create_export_rate_limiter,
    safe_identity,
)
from design_gateway.utils import url_parser
from design_gateway.utils.crypto import build_codec
from design_gateway.utils.logging import get_logger
from design_gateway.utils.storage import JsonFileStorage, KeyValueStorage, MemoryStorage
from design_gateway.utils.types import (
    ConnectionStatus,
    CostLimits,
    GenerationOptions,
    GenerationResult,
    Provider,
    ResourceIdentifier,
)
from design_gateway.utils.validation import (
    coerce_provider,
    is_valid_token,
    require_repo_name,
    require_team_id,
    require_valid_token,
    sanitize_input,
)

logger = get_logger(__name__)

MIN_IMAGE_SCALE = 0.01
MAX_IMAGE_SCALE = 4.0

AI_PROVIDERS = (Provider.OPENAI, Provider.GROQ)

IdentifierInput = Union[str, ResourceIdentifier]


class ResourceGateway:
    """
    Governed access to Figma, OpenAI/Groq and GitHub on behalf of a caller.

    Every remote method takes the caller's credential explicitly; the gateway
    never falls back to a default one. Limiter identity defaults to a
    fingerprint of that credential and can be overridden per call (for
    example with a session id or client IP).
    """

    def __init__(
        self,
        *,
        figma: FigmaClient,
        ai_clients: Mapping[Provider, ChatCompletionClient],
        github: GitHubClient,
        api_limiter: SlidingWindowRateLimiter,
        export_limiter: SlidingWindowRateLimiter,
        cost_governor: CostGovernor,
        credential_store: CredentialStore,
        cache: Optional[ResponseCache] = None,
        default_max_tokens: int = 1000,
        default_temperature: float = 0.7,
    ):
        if api_limiter is export_limiter:
            raise ValueError("API and export limiters must be separate instances")

        self.figma = figma
        self.ai_clients: Dict[Provider, ChatCompletionClient] = dict(ai_clients)
        self.github = github
        self.api_limiter = api_limiter
        self.export_limiter = export_limiter
        self.cost_governor = cost_governor
        self.credential_store = credential_store
        self.cache = cache
        self.default_max_tokens = default_max_tokens
        self.default_temperature = default_temperature

    # ----- shared pipeline steps -----

    @staticmethod
    def parse_identifier(raw: str) -> ResourceIdentifier:
        """Parse a Figma URL or bare key; never raises."""
        return url_parser.parse(raw)

    def _require_identifier(self, identifier: IdentifierInput) -> ResourceIdentifier:
        parsed = (
            identifier
            if isinstance(identifier, ResourceIdentifier)
            else self.parse_identifier(identifier)
        )
        if not parsed.is_valid or not parsed.file_key:
            raise InvalidInputError(
                "Invalid Figma URL or file key", provider=Provider.FIGMA.value
            )
        return parsed

    @staticmethod
    def _admit(
        limiter: SlidingWindowRateLimiter, identity: str, provider: Provider
    ) -> None:
        if not limiter.is_allowed(identity):
            retry_after = limiter.retry_after(identity)
            raise RateLimitedError(
                f"Rate limit exceeded. Try again in {math.ceil(retry_after)} seconds",
                retry_after=retry_after,
                provider=provider.value,
            )

    @staticmethod
    def _identity(credential: str, identity: Optional[str]) -> str:
        return identity or credential_fingerprint(credential)

    async def _cached(
        self,
        kind: str,
        credential: str,
        identity: str,
        fetch: Callable[[], Any],
        **params: Any,
    ) -> Dict[str, Any]:
        """Serve from cache when fresh; otherwise admit, fetch and store."""
        key = make_cache_key(kind, credential, **params) if self.cache else None
        if key is not None:
            cached = await self.cache.get(key)
            if cached is not None:
                return cached

        self._admit(self.api_limiter, identity, Provider.FIGMA)
        data = await fetch()

        if key is not None:
            await self.cache.set(key, data, kind=kind)
        return data

    # ----- Figma reads -----

    async def get_design_file(
        self,
        identifier: IdentifierInput,
        credential: str,
        *,
        version: Optional[str] = None,
        ids: Optional[List[str]] = None,
        identity: Optional[str] = None,
    ) -> Dict[str, Any]:
        """
        Fetch a design file document.

        Raises:
            InvalidInputError: Unrecognized identifier or malformed token
            RateLimitedError: API limiter denied the call
            GatewayError: Mapped upstream or network failure
        """
        parsed = self._require_identifier(identifier)
        token = require_valid_token(Provider.FIGMA, credential)
        who = self._identity(token, identity)

        return await self._cached(
            "file",
            token,
            who,
            lambda: self.figma.get_file(parsed.file_key, token, version=version, ids=ids),
            file_key=parsed.file_key,
            version=version,
            ids=ids,
        )

    async def get_rendered_images(
        self,
        identifier: IdentifierInput,
        node_ids: List[str],
        credential: str,
        *,
        image_format: str = "png",
        scale: float = 1.0,
        identity: Optional[str] = None,
    ) -> Dict[str, Any]:
        """Render nodes to image URLs; returns ``{"images": {node_id: url}}``."""
        parsed = self._require_identifier(identifier)
        cleaned = [n.strip() for n in (node_ids or []) if isinstance(n, str) and n.strip()]
        if not cleaned:
            raise InvalidInputError("Node IDs are required", provider=Provider.FIGMA.value)
        if image_format not in IMAGE_FORMATS:
            raise InvalidInputError(
                f"Invalid image format '{image_format}'. Must be one of: {list(IMAGE_FORMATS)}"
            )
        if not MIN_IMAGE_SCALE <= scale <= MAX_IMAGE_SCALE:
            raise InvalidInputError(
                f"Image scale must be between {MIN_IMAGE_SCALE} and {MAX_IMAGE_SCALE}"
            )
        token = require_valid_token(Provider.FIGMA, credential)
        who = self._identity(token, identity)

        return await self._cached(
            "images",
            token,
            who,
            lambda: self.figma.get_images(
                parsed.file_key, cleaned, token, image_format=image_format, scale=scale
            ),
            file_key=parsed.file_key,
            node_ids=cleaned,
            image_format=image_format,
            scale=scale,
        )

    async def get_team_components(
        self, team_id: str, credential: str, *, identity: Optional[str] = None
    ) -> Dict[str, Any]:
        team = require_team_id(team_id)
        token = require_valid_token(Provider.FIGMA, credential)
        self._admit(self.api_limiter, self._identity(token, identity), Provider.FIGMA)
        return await self.figma.get_team_components(team, token)

    async def get_file_comments(
        self,
        identifier: IdentifierInput,
        credential: str,
        *,
        identity: Optional[str] = None,
    ) -> Dict[str, Any]:
        parsed = self._require_identifier(identifier)
        token = require_valid_token(Provider.FIGMA, credential)
        who = self._identity(token, identity)

        return await self._cached(
            "comments",
            token,
            who,
            lambda: self.figma.get_comments(parsed.file_key, token),
            file_key=parsed.file_key,
        )

    # ----- AI generation -----

    async def generate_text(
        self,
        prompt: str,
        options: Optional[GenerationOptions],
        credential: str,
        *,
        identity: Optional[str] = None,
    ) -> GenerationResult:
        """
        Run a chat completion under rate and cost governance, then record its usage.

        Raises:
            InvalidInputError: Empty prompt, non-AI provider or malformed key
            RateLimitedError: Export limiter denied the call
            CostLimitExceededError: A spending ceiling blocks the call
            GatewayError: Mapped upstream or network failure
        """
        options = options or GenerationOptions()
        provider = coerce_provider(options.provider)
        if provider not in AI_PROVIDERS or provider not in self.ai_clients:
            raise InvalidInputError(
                f"Provider '{provider.value}' does not support text generation"
            )
        if not isinstance(prompt, str) or not prompt.strip():
            raise InvalidInputError("Prompt is required")
        token = require_valid_token(provider, credential)

        self._admit(self.export_limiter, self._identity(token, identity), provider)

        check = self.cost_governor.check_request(len(prompt), provider)
        if not check.can_proceed:
            logger.warning("Generation blocked by cost ceiling", provider=provider.value, reason=check.reason)
            raise CostLimitExceededError(check.reason)

        completion = await self.ai_clients[provider].complete(
            prompt,
            token,
            max_tokens=options.max_tokens or self.default_max_tokens,
            temperature=(
                self.default_temperature
                if options.temperature is None
                else options.temperature
            ),
            model=options.model,
            system_prompt=options.system_prompt,
        )

        usage = self.cost_governor.track_usage(
            completion.prompt_tokens, completion.completion_tokens, provider
        )
        return GenerationResult(
            content=completion.content,
            usage=usage,
            model=completion.model,
            provider=provider.value,
        )

    # ----- GitHub export -----

    async def export_to_repository(
        self,
        repo_name: str,
        files: Mapping[str, str],
        credential: str,
        *,
        description: str = "",
        private: bool = False,
        identity: Optional[str] = None,
    ) -> Dict[str, Any]:
        """
        Create a GitHub repository and commit ``files`` (path -> text) into it.

        Files are uploaded one at a time; the first failure stops the export
        and propagates, leaving the repository with the files written so far.
        The description is stripped of markup and script vectors before it
        reaches GitHub.
        """
        name = require_repo_name(repo_name)
        if not files:
            raise InvalidInputError("At least one file is required for export")
        for path in files:
            parts = path.strip("/").split("/")
            if not path.strip("/") or ".." in parts:
                raise InvalidInputError(f"Invalid export path: '{path}'")
        summary = sanitize_input(description or "")
        token = require_valid_token(Provider.GITHUB, credential)

        self._admit(self.export_limiter, self._identity(token, identity), Provider.GITHUB)

        repo = await self.github.create_repository(
            name, token, description=summary, private=private
        )
        full_name = repo.get("full_name") or name

        uploaded: List[str] = []
        for path, content in files.items():
            await self.github.put_file(full_name, path, content, token)
            uploaded.append(path)

        logger.info("Export completed", repo=full_name, file_count=len(uploaded))
        return {
            "repository": full_name,
            "url": repo.get("html_url"),
            "files": uploaded,
        }

    # ----- credentials -----

    @staticmethod
    def validate_credential(provider: Union[Provider, str], raw: str) -> bool:
        """Pure format check; unknown providers are simply invalid."""
        try:
            return is_valid_token(provider, raw)
        except InvalidInputError:
            return False

    def store_credential(
        self, name: str, raw: str, provider: Optional[Union[Provider, str]] = None
    ) -> None:
        """Persist a credential, validating its format first when the provider is known."""
        secret = require_valid_token(provider, raw) if provider is not None else raw
        self.credential_store.store(name, secret)

    def retrieve_credential(self, name: str) -> Optional[str]:
        return self.credential_store.retrieve(name)

    def clear_credential(self, name: str) -> None:
        self.credential_store.remove(name)

    async def test_connection(
        self, provider: Union[Provider, str], credential: str
    ) -> ConnectionStatus:
        """
        Check a credential against its provider with one cheap read.

        Failures, including an unknown provider name, are reported in the
        returned status rather than raised.
        """
        try:
            resolved = coerce_provider(provider)
        except InvalidInputError as e:
            logger.warning("Connection test for unknown provider", provider=str(provider))
            return ConnectionStatus(success=False, provider=str(provider), error=e.message)
        if not self.validate_credential(resolved, credential):
            return ConnectionStatus(
                success=False,
                provider=resolved.value,
                error=f"Invalid {resolved.value} token format",
            )
        token = credential.strip()

        try:
            self._admit(
                self.api_limiter, credential_fingerprint(token), resolved
            )
            if resolved is Provider.FIGMA:
                user = await self.figma.get_me(token)
            elif resolved is Provider.GITHUB:
                user = await self.github.get_user(token)
            else:
                await self.ai_clients[resolved].list_models(token)
                user = {}
        except GatewayError as e:
            logger.warning(
                "Connection test failed",
                provider=resolved.value,
                error_kind=e.kind,
                error=e.message,
            )
            return ConnectionStatus(success=False, provider=resolved.value, error=e.message)

        logger.info("Connection test succeeded", provider=resolved.value)
        return ConnectionStatus(success=True, provider=resolved.value, user=user)

    # ----- usage and limits -----

    def get_usage_report(self) -> Dict[str, Any]:
        return self.cost_governor.get_usage_report()

    def get_usage_stats(self) -> Dict[str, Any]:
        return self.cost_governor.get_usage_stats()

    def update_cost_limits(self, **partial: float) -> CostLimits:
        return self.cost_governor.update_limits(**partial)

    def get_rate_limit_stats(self, identity: str) -> Dict[str, Any]:
        """Window snapshots for one identity under both limiters."""
        stats = {}
        for label, limiter in (("api", self.api_limiter), ("export", self.export_limiter)):
            snapshot = limiter.get_stats(identity)
            stats[label] = {
                "requestsInWindow": snapshot.requests_in_window,
                "maxRequests": snapshot.max_requests,
                "windowMs": snapshot.window_ms,
                "resetInSeconds": round(snapshot.reset_in_seconds, 3),
                "remaining": limiter.get_remaining_requests(identity),
            }
        logger.debug("Rate limit stats requested", identity=safe_identity(identity))
        return stats

    async def close(self) -> None:
        await self.figma.close()
        await self.github.close()
        for client in self.ai_clients.values():
            await client.close()


def create_gateway(
    settings: Optional[Settings] = None,
    *,
    storage: Optional[KeyValueStorage] = None,
    transport: Optional[httpx.AsyncBaseTransport] = None,
    monotonic_clock: Callable[[], float] = time.monotonic,
    wall_clock: Callable[[], float] = time.time,
) -> ResourceGateway:
    """
    Build a fully wired gateway from settings.

    Args:
        settings: Application settings (defaults to the global instance)
        storage: Storage override; otherwise a JSON file when STORAGE_PATH is
            set, else in-memory
        transport: httpx transport shared by every upstream client (tests)
        monotonic_clock: Clock for rate limiters and the response cache
        wall_clock: Clock for usage timestamps
    """
    settings = settings or get_settings()
    if storage is None:
        storage = (
            JsonFileStorage(settings.storage_path)
            if settings.storage_path
            else MemoryStorage()
        )

    codec = build_codec(
        settings.credential_encryption_key, settings.credential_obfuscation_salt
    )
    governor = CostGovernor(
        storage,
        pricing=PricingTable.from_json(settings.ai_pricing_json),
        limits=CostLimits(
            daily=settings.cost_limit_daily,
            monthly=settings.cost_limit_monthly,
            per_request=settings.cost_limit_per_request,
        ),
        clock=wall_clock,
    )

    gateway = ResourceGateway(
        figma=create_figma_client(settings, transport),
        ai_clients={
            Provider.OPENAI: create_openai_client(settings, transport),
            Provider.GROQ: create_groq_client(settings, transport),
        },
        github=create_github_client(settings, transport),
        api_limiter=create_api_rate_limiter(settings, monotonic_clock),
        export_limiter=create_export_rate_limiter(settings, monotonic_clock),
        cost_governor=governor,
        credential_store=CredentialStore(storage, codec),
        cache=create_response_cache(settings, monotonic_clock),
        default_max_tokens=settings.ai_max_tokens,
        default_temperature=settings.ai_temperature,
    )

    logger.info(
        "Gateway initialized",
        storage=type(storage).__name__,
        codec=type(codec).__name__,
        cache_enabled=settings.cache_enabled,
    )
    return gateway
