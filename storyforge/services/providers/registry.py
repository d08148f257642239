import logging
import time
from collections import deque
from typing import Awaitable, Callable, Deque, Dict, List, Optional

from pydantic import BaseModel

from storyforge.services.providers.base import GenerationOptions, GenerationProvider, ModerationResult
from storyforge.services.providers.mock import DeterministicMockProvider

logger = logging.getLogger(__name__)

MIN_PROMPT_LENGTH = 10
MAX_PROMPT_LENGTH = 5000
RATE_LIMIT_WINDOW_SECONDS = 60.0


class ProviderConfig(BaseModel):
    provider: str
    model: str
    max_tokens: int = 4000
    temperature: float = 0.7
    is_enabled: bool = True
    rate_limit_per_minute: int = 0  # 0 means unlimited
    cost_per_token: float = 0.001


class ProviderStatus(BaseModel):
    provider: str
    is_enabled: bool
    is_available: bool
    models: List[str]


class GenerationResult(BaseModel):
    success: bool
    provider: str
    model: Optional[str] = None
    content: Optional[str] = None
    image_url: Optional[str] = None
    audio_url: Optional[str] = None
    error: Optional[str] = None
    tokens_used: int = 0
    generation_time: float = 0.0  # Seconds


class ProviderRegistry:
    """
    Routes generation requests to the provider named in a story's settings.

    Every generate_* call returns a GenerationResult. Unknown, disabled,
    unavailable or rate-limited providers, invalid prompts and provider
    exceptions all come back as success=False with an error message.
    """

    def __init__(self, default_provider: str = "mocked"):
        self.default_provider = default_provider
        self._providers: Dict[str, GenerationProvider] = {}
        self._configs: Dict[str, ProviderConfig] = {}
        self._calls: Dict[str, Deque[float]] = {}

    @classmethod
    def from_settings(cls, settings) -> "ProviderRegistry":
        registry = cls(default_provider=settings.DEFAULT_AI_PROVIDER)
        registry.register(
            DeterministicMockProvider(cost_per_token=settings.MOCKED_PROVIDER_COST_PER_TOKEN),
            ProviderConfig(
                provider="mocked",
                model=settings.MOCKED_PROVIDER_MODEL,
                max_tokens=settings.MOCKED_PROVIDER_MAX_TOKENS,
                temperature=settings.MOCKED_PROVIDER_TEMPERATURE,
                is_enabled=settings.MOCKED_PROVIDER_ENABLED,
                rate_limit_per_minute=settings.MOCKED_PROVIDER_RATE_LIMIT_PER_MINUTE,
                cost_per_token=settings.MOCKED_PROVIDER_COST_PER_TOKEN,
            ),
        )
        return registry

    def register(self, provider: GenerationProvider, config: ProviderConfig) -> None:
        self._providers[config.provider] = provider
        self._configs[config.provider] = config
        self._calls.pop(config.provider, None)

    def get(self, provider_id: str) -> Optional[GenerationProvider]:
        return self._providers.get(provider_id)

    def list_providers(self) -> List[ProviderConfig]:
        return list(self._configs.values())

    def resolve(self, selector: Optional[str]) -> str:
        """
        Maps a settings selector onto a provider id.

        The selector may be a provider id ("mocked") or a model name
        ("test-model-v1"); model names containing "test" or "mock" belong to
        the mocked provider. Unrecognized selectors are returned unchanged and
        fail later as unknown providers.
        """
        if not selector:
            return self.default_provider
        key = selector.strip().lower()
        if key in self._providers:
            return key
        for provider_id, config in self._configs.items():
            if config.model.lower() == key:
                return provider_id
        if ("test" in key or "mock" in key) and "mocked" in self._providers:
            return "mocked"
        return key

    async def provider_status(self, selector: Optional[str]) -> Optional[ProviderStatus]:
        provider_id = self.resolve(selector)
        provider = self._providers.get(provider_id)
        if provider is None:
            return None
        return ProviderStatus(
            provider=provider_id,
            is_enabled=self._configs[provider_id].is_enabled,
            is_available=await provider.is_available(),
            models=await provider.list_models(),
        )

    async def generate_text(self, selector: Optional[str], prompt: str, options: GenerationOptions) -> GenerationResult:
        async def call(provider: GenerationProvider, opts: GenerationOptions) -> dict:
            content = await provider.generate_text(prompt, opts)
            return {"content": content, "tokens_used": len(content) // 4}  # Rough token estimate
        return await self._dispatch("text", selector, prompt, options, call)

    async def generate_image(self, selector: Optional[str], prompt: str, options: GenerationOptions) -> GenerationResult:
        async def call(provider: GenerationProvider, opts: GenerationOptions) -> dict:
            return {"image_url": await provider.generate_image(prompt, opts)}
        return await self._dispatch("image", selector, prompt, options, call)

    async def generate_audio(self, selector: Optional[str], prompt: str, options: GenerationOptions) -> GenerationResult:
        async def call(provider: GenerationProvider, opts: GenerationOptions) -> dict:
            return {"audio_url": await provider.generate_audio(prompt, opts)}
        return await self._dispatch("audio", selector, prompt, options, call)

    async def estimate_cost(self, selector: Optional[str], input_units: int, output_units: int) -> float:
        provider = self._providers.get(self.resolve(selector))
        if provider is None:
            return 0.0
        return await provider.estimate_cost(input_units, output_units)

    async def moderate_content(self, selector: Optional[str], text: str) -> Optional[ModerationResult]:
        provider = self._providers.get(self.resolve(selector))
        if provider is None:
            return None
        return await provider.moderate_content(text)

    def _validate_prompt(self, prompt: str) -> List[str]:
        errors = []
        if not prompt or len(prompt) < MIN_PROMPT_LENGTH:
            errors.append(f"Prompt must be at least {MIN_PROMPT_LENGTH} characters long")
        if prompt and len(prompt) > MAX_PROMPT_LENGTH:
            errors.append(f"Prompt must be less than {MAX_PROMPT_LENGTH} characters")
        return errors

    def _take_rate_slot(self, provider_id: str, config: ProviderConfig) -> bool:
        if config.rate_limit_per_minute <= 0:
            return True
        now = time.monotonic()
        calls = self._calls.setdefault(provider_id, deque())
        while calls and now - calls[0] >= RATE_LIMIT_WINDOW_SECONDS:
            calls.popleft()
        if len(calls) >= config.rate_limit_per_minute:
            return False
        calls.append(now)
        return True

    async def _dispatch(
        self,
        kind: str,
        selector: Optional[str],
        prompt: str,
        options: GenerationOptions,
        call: Callable[[GenerationProvider, GenerationOptions], Awaitable[dict]],
    ) -> GenerationResult:
        start = time.monotonic()
        provider_id = self.resolve(selector)

        def failure(error: str, model: Optional[str] = None) -> GenerationResult:
            logger.warning(f"{kind} generation via '{provider_id}' failed: {error}")
            return GenerationResult(
                success=False,
                provider=provider_id,
                model=model,
                error=error,
                generation_time=time.monotonic() - start,
            )

        errors = self._validate_prompt(prompt)
        if errors:
            return failure(f"Invalid request: {', '.join(errors)}")

        provider = self._providers.get(provider_id)
        config = self._configs.get(provider_id)
        if provider is None or config is None:
            return failure(f"Provider {provider_id} not implemented")
        if not config.is_enabled:
            return failure("Provider is not configured or enabled", config.model)

        try:
            if not await provider.is_available():
                return failure("Provider is not available", config.model)
            if not self._take_rate_slot(provider_id, config):
                return failure(f"Rate limit of {config.rate_limit_per_minute} requests per minute exceeded", config.model)

            opts = options.model_copy(update={
                "model": options.model or config.model,
                "max_tokens": options.max_tokens or config.max_tokens,
                "temperature": options.temperature if options.temperature is not None else config.temperature,
            })
            output = await call(provider, opts)
        except Exception as e:
            logger.error(f"Provider '{provider_id}' raised during {kind} generation: {e}")
            return failure(str(e) or e.__class__.__name__, config.model)

        return GenerationResult(
            success=True,
            provider=provider_id,
            model=config.model,
            generation_time=time.monotonic() - start,
            **output,
        )
