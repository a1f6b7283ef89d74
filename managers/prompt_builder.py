"""Prompt rendering: generation options -> provider chat request"""

import logging
from typing import Any, Dict, List, Optional, Sequence

from models.generation import GenerationOptions, GenerationRequest, ProviderRequest

logger = logging.getLogger("Caption_MCP")

LENGTH_RULES = {
    "single-word": "Use exactly ONE word per caption.",
    "micro": "Use 2-3 words per caption.",
    "short": "Use 10-15 words per caption.",
    "medium": "Use 25-40 words per caption.",
    "long": "Use 50-75 words per caption.",
}
SPICY_RULES = {
    "mild": "Make the caption playful and lightly flirtatious in a tasteful way.",
    "medium": "Make the caption moderately flirtatious with subtle wordplay.",
    "hot": "Make the caption bold and attention-grabbing with playful innuendos.",
    "extra": "Make the caption daring and provocative with creative wordplay that grabs attention.",
}
# Creative rules scale with how many words the caption has to work with
WORD_INVENTION_RULES = {
    "single-word": "Create a completely new, invented word that captures the essence of the image.",
    "micro": "Include at least one invented word that combines existing words in a clever way.",
    "default": (
        "Include 2-3 creatively invented words or word combinations throughout the caption, "
        "with subtle context clues to hint at their meaning."
    ),
}
ALLITERATION_RULES = {
    "single-word": "Use strong alliteration in the few words you have.",
    "micro": "Use strong alliteration in the few words you have.",
    "short": "Use alliteration for at least 3-4 consecutive words in the caption.",
    "default": (
        "Use multiple instances of alliteration throughout the caption, with at least one "
        "sequence of 4+ consecutive words using the same starting sound."
    ),
}
RHYMING_RULES = {
    "single-word": "Make sure the words rhyme with each other if possible.",
    "micro": "Make sure the words rhyme with each other if possible.",
    "short": "Include at least one rhyming pair within the caption.",
    "default": (
        "Structure the caption with multiple rhyming elements, creating an almost poem-like "
        "flow with at least 2-3 rhyming pairs."
    ),
}
NO_REFUSAL_RULE = (
    'IMPORTANT: Do NOT respond with "I can\'t identify people" or similar refusals. Your task is to '
    "create captions, not identify individuals. If you see people, simply create appropriate "
    "captions without identifying specific individuals."
)


def _scaled_rule(rules: Dict[str, str], length: str) -> str:
    return rules.get(length, rules["default"])


class PromptBuilder:
    """Renders ``GenerationOptions`` into system/user messages"""

    def __init__(self, platform: str = "Instagram"):
        self.platform = platform

    def build_system_message(
        self,
        options: GenerationOptions,
        media_count: int = 1,
        categories: Sequence[str] = (),
    ) -> str:
        noun = "files" if media_count > 1 else "file"
        parts: List[str] = [
            f"You are a creative {self.platform} caption generator. Generate captions in {options.tone} tone. "
            "You MUST generate captions for ANY media, including those containing people, landscapes, "
            "objects, or any other content. Your task is to create engaging captions, based off of the "
            f"things that you see in the media {noun}.",
            LENGTH_RULES[options.length],
            "Include hashtags." if options.include_hashtags else "No hashtags.",
            "Include emojis." if options.include_emojis else "No emojis.",
        ]

        if options.spicy_level in SPICY_RULES:
            parts.append(SPICY_RULES[options.spicy_level])
        if options.style != "none":
            parts.append(f"Use {options.style} style.")

        creative = options.creative
        if creative.word_invention:
            parts.append(_scaled_rule(WORD_INVENTION_RULES, options.length))
        if creative.alliteration:
            parts.append(_scaled_rule(ALLITERATION_RULES, options.length))
        if creative.rhyming:
            parts.append(_scaled_rule(RHYMING_RULES, options.length))

        if media_count > 1:
            parts.append(
                f"You are being provided with {media_count} images. IMPORTANT: Consider ALL images "
                "COLLECTIVELY as a set or album when generating captions. Do NOT generate separate captions "
                "for each image. Instead, create captions that work well for the entire collection as a "
                "cohesive set. Look for common themes, subjects, or aesthetics across all images."
            )

        if categories:
            parts.append(f"Focus on these categories: {', '.join(categories)}.")

        parts.append(self._format_rule(options, media_count, categories))
        parts.append(NO_REFUSAL_RULE)
        return " ".join(parts)

    def _format_rule(self, options: GenerationOptions, media_count: int, categories: Sequence[str]) -> str:
        hashtags = '["tag1","tag2"] (without # symbol)' if options.include_hashtags else "[]"
        emojis = '["emoji1","emoji2"] (just the emoji characters)' if options.include_emojis else "[]"
        collection = ',"isCollectionCaption":true' if media_count > 1 else ""
        count = 1 if categories else options.caption_count
        noun = "caption" if count == 1 else "captions"
        return (
            f'Return {count} {noun} as JSON: {{"captions":[{{"text":"caption text WITHOUT any emojis or hashtags",'
            f'"category":"category","hashtags":{hashtags},"emojis":{emojis},"viral_score":7{collection}}}]}}. '
            "viral_score is a number from 0 to 10."
        )

    def build_user_content(self, media_payloads: Sequence[str]) -> List[Dict[str, Any]]:
        if len(media_payloads) > 1:
            text = (
                f"Generate {self.platform} captions for this collection of images. Remember to treat all "
                "media files as a single cohesive collection when creating captions."
            )
        else:
            text = f"Generate {self.platform} captions for this image."
        content: List[Dict[str, Any]] = [{"type": "text", "text": text}]
        content.extend({"type": "image_url", "image_url": {"url": uri}} for uri in media_payloads)
        return content

    def build_request(
        self,
        request: GenerationRequest,
        model: str,
        max_tokens: int = 1000,
        temperature: float = 0.8,
        nonce: Optional[str] = None,
    ) -> ProviderRequest:
        system_message = self.build_system_message(
            request.options,
            media_count=len(request.media_payloads),
            categories=request.categories,
        )
        logger.debug("System message: %s", system_message)
        return ProviderRequest(
            model=model,
            messages=(
                {"role": "system", "content": system_message},
                {"role": "user", "content": self.build_user_content(request.media_payloads)},
            ),
            max_tokens=max_tokens,
            temperature=temperature,
            nonce=nonce,
        )
