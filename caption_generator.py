"""Caption generation orchestrator: prepare -> cache -> provider -> parse"""

import asyncio
import hashlib
import logging
import uuid
from dataclasses import dataclass
from io import BytesIO
from typing import Any, Callable, Dict, List, Optional, Sequence, Union

from asset_processor import MediaPreparer, MediaSource, describe_payload
from managers.prompt_builder import PromptBuilder
from managers.response_cache import ResponseCache, cache_key
from models.caption import STATUS_DEGRADED, STATUS_OK, GenerationResult
from models.errors import NoImages, StaleGeneration
from models.generation import GenerationOptions, GenerationRequest
from provider_client import RetryingProviderClient, RetryPolicy
from response_parser import ParseContext, ResponseParser

logger = logging.getLogger("CaptionGenerator")

DEFAULT_MAX_IMAGES = 5
UNPARSEABLE_REASON = "unparseable_response"

OptionsInput = Union[GenerationOptions, Dict[str, Any], None]
DegradedCallback = Callable[[GenerationResult], Any]


@dataclass
class GenerationChannel:
    """Stale-call bookkeeping for calls that compete for the same result"""
    latest: int = 0
    inflight: Optional[asyncio.Task] = None
    active: int = 0


def channel_for(images: Optional[Sequence[MediaSource]]) -> str:
    """Default channel: the identity of the image set, so only calls for the same images compete"""
    digest = hashlib.sha256()
    for source in images or ():
        if isinstance(source, BytesIO):
            data = source.getvalue()
        elif isinstance(source, bytes):
            data = source
        else:
            data = str(source).encode("utf-8")
        digest.update(hashlib.sha256(data).digest())
    return digest.hexdigest()


class CaptionGenerator:
    """Runs one caption generation end to end.

    Every call walks ``idle -> preparing -> cache_check`` and then either
    ``cache_hit -> done`` or ``calling -> parsing -> done``; the states a
    call passed through are recorded on the returned ``GenerationResult``.

    Calls are numbered and grouped into channels: an explicit ``channel``
    key, or by default the identity of the image set. When a newer call
    starts on a channel, the previous in-flight call on that channel is
    cancelled (``cancel_stale``) and raises ``StaleGeneration`` instead of
    resolving, so late results never overwrite fresh ones. Calls on
    different channels never affect each other.
    """

    def __init__(
        self,
        preparer: Optional[MediaPreparer] = None,
        client: Optional[RetryingProviderClient] = None,
        cache: Optional[ResponseCache] = None,
        parser: Optional[ResponseParser] = None,
        prompt_builder: Optional[PromptBuilder] = None,
        model: str = "gpt-4o",
        max_tokens: int = 1000,
        temperature: float = 0.8,
        max_images: int = DEFAULT_MAX_IMAGES,
        default_options: Optional[GenerationOptions] = None,
        cancel_stale: bool = True,
        on_degraded: Optional[DegradedCallback] = None,
    ):
        self.preparer = preparer or MediaPreparer()
        self.client = client or RetryingProviderClient()
        self.cache = cache if cache is not None else ResponseCache()
        self.parser = parser or ResponseParser()
        self.prompt_builder = prompt_builder or PromptBuilder()
        self.model = model
        self.max_tokens = max_tokens
        self.temperature = temperature
        self.max_images = max_images
        self.default_options = default_options or GenerationOptions()
        self.cancel_stale = cancel_stale
        self.on_degraded = on_degraded

        self._sequence = 0
        self._channels: Dict[str, GenerationChannel] = {}

    @classmethod
    def from_defaults(cls, defaults, **kwargs) -> "CaptionGenerator":
        """Build a generator from a ``DefaultsManager``'s effective settings"""
        generator = cls(**kwargs)
        generator.apply_settings(defaults.get_all_defaults()["provider"])
        return generator

    def apply_settings(self, provider: Dict[str, Any]):
        """Apply ``provider`` namespace settings to the generator and its components"""
        self.model = provider.get("model", self.model)
        self.max_tokens = provider.get("max_tokens", self.max_tokens)
        self.temperature = provider.get("temperature", self.temperature)
        self.max_images = provider.get("max_images", self.max_images)
        if "timeout_seconds" in provider:
            self.client.timeout = float(provider["timeout_seconds"])
        if "max_retries" in provider:
            self.client.policy = RetryPolicy(
                max_retries=int(provider["max_retries"]),
                base_delay=self.client.policy.base_delay,
                retryable_statuses=self.client.policy.retryable_statuses,
            )
        if "payload_budget_bytes" in provider:
            self.preparer.budget_bytes = int(provider["payload_budget_bytes"])
        if "cache_ttl_hours" in provider:
            self.cache.ttl_seconds = float(provider["cache_ttl_hours"]) * 3600
        logger.info(
            f"Generator settings: model={self.model} max_tokens={self.max_tokens} "
            f"timeout={self.client.timeout}s retries={self.client.policy.max_retries} "
            f"budget={self.preparer.budget_bytes}B"
        )

    def _resolve_options(self, options: OptionsInput) -> GenerationOptions:
        if options is None:
            return self.default_options
        if isinstance(options, GenerationOptions):
            return options
        return GenerationOptions.from_dict({**self.default_options.to_dict(), **options})

    async def generate(
        self, images: Sequence[MediaSource], options: OptionsInput = None, channel: Optional[str] = None
    ) -> GenerationResult:
        """Generate captions for one image or a collection of images.

        Raises:
            NoImages: ``images`` is empty.
            MediaTooLarge: an image could not be compressed under the budget.
            UnreadableFile: an image could not be loaded or decoded.
            GenerationFailed: the provider rejected the request, or a newer
                call on the same channel superseded this one
                (``StaleGeneration``).
        """
        return await self._guarded(images, self._resolve_options(options), channel=channel)

    async def regenerate(
        self,
        images: Sequence[MediaSource],
        category: str,
        options: OptionsInput = None,
        channel: Optional[str] = None,
    ) -> GenerationResult:
        """Generate one fresh caption focused on ``category``.

        The cache is not read, so the provider is always called; a usable
        response is still written back for later identical requests.
        """
        category = (category or "").strip()
        if not category:
            raise ValueError("category is required for regeneration")
        return await self._guarded(
            images,
            self._resolve_options(options),
            categories=(category,),
            nonce=uuid.uuid4().hex,
            channel=channel,
        )

    async def _guarded(self, images, options, categories=(), nonce=None, channel=None) -> GenerationResult:
        key = channel or channel_for(images)
        state = self._channels.setdefault(key, GenerationChannel())

        self._sequence += 1
        generation_id = self._sequence
        state.latest = generation_id
        state.active += 1

        previous = state.inflight
        if self.cancel_stale and previous is not None and not previous.done():
            logger.info(f"Cancelling superseded generation before starting #{generation_id}")
            previous.cancel()

        task = asyncio.current_task()
        state.inflight = task
        try:
            result = await self._run(generation_id, images, options, categories, nonce)
        except asyncio.CancelledError:
            if generation_id != state.latest:
                if task is not None and hasattr(task, "uncancel"):
                    task.uncancel()
                logger.info(f"Generation #{generation_id} cancelled; superseded by #{state.latest}")
                raise StaleGeneration(generation_id, state.latest)
            raise
        finally:
            if state.inflight is task:
                state.inflight = None
            state.active -= 1
            if state.active == 0:
                self._channels.pop(key, None)

        if generation_id != state.latest:
            logger.info(f"Discarding result of generation #{generation_id}; #{state.latest} is newer")
            raise StaleGeneration(generation_id, state.latest)
        return result

    async def _run(self, generation_id, images, options, categories, nonce) -> GenerationResult:
        states: List[str] = ["idle"]
        images = list(images or [])
        if not images:
            raise NoImages("No images supplied for caption generation")
        if len(images) > self.max_images:
            logger.warning(f"Received {len(images)} images; only the first {self.max_images} are used")
            images = images[: self.max_images]

        states.append("preparing")
        payloads = await self.preparer.prepare_all(images)
        logger.debug("Prepared payloads: %s", [describe_payload(p) for p in payloads])

        request = GenerationRequest(
            media_payloads=tuple(p.data_uri for p in payloads),
            options=options,
            categories=categories,
        )
        provider_request = self.prompt_builder.build_request(
            request,
            model=self.model,
            max_tokens=self.max_tokens,
            temperature=self.temperature,
            nonce=nonce,
        )
        context = ParseContext.from_options(options, is_collection=request.is_collection)
        key = cache_key(provider_request)

        states.append("cache_check")
        cached = None if nonce else self.cache.get(key)
        if cached is not None:
            states.append("cache_hit")
            outcome = self.parser.parse_outcome(cached.content, context)
            states.append("done")
            logger.info(f"Generation #{generation_id}: served {len(outcome.captions)} caption(s) from cache")
            return GenerationResult(
                status=STATUS_OK,
                captions=self._finalize(outcome.captions, categories),
                generation_id=generation_id,
                from_cache=True,
                states=tuple(states),
            )

        logger.debug(f"Generation #{generation_id}: cache {'bypassed' if nonce else 'miss'}")
        states.append("calling")
        response = await self.client.call(provider_request)

        states.append("parsing")
        outcome = self.parser.parse_outcome(response.content, context)

        if response.degraded:
            status, reason = STATUS_DEGRADED, response.reason
        elif outcome.fell_back:
            status, reason = STATUS_DEGRADED, UNPARSEABLE_REASON
        else:
            status, reason = STATUS_OK, None
            self.cache.put(key, response)

        states.append("done")
        result = GenerationResult(
            status=status,
            captions=self._finalize(outcome.captions, categories),
            generation_id=generation_id,
            reason=reason,
            states=tuple(states),
        )
        if status == STATUS_DEGRADED:
            logger.warning(f"Generation #{generation_id} degraded: {reason}")
            if self.on_degraded is not None:
                self.on_degraded(result)
        else:
            logger.info(
                f"Generation #{generation_id}: {len(result.captions)} caption(s) "
                f"after {response.attempts} attempt(s)"
            )
        return result

    @staticmethod
    def _finalize(captions, categories):
        if not categories:
            return captions
        # Regeneration yields exactly one caption in the requested category
        caption = captions[0]
        if not caption.is_error:
            caption.category = categories[0]
        return [caption]
