"""Read admin-editable tool configuration from the config document."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Mapping

from ..protocols import ConfigSource

BROWSERLESS_PROMPT = (
    "Web browsing tools are available (Browserless). Use them when helpful to "
    "fetch up-to-date information. Prefer: navigate -> listAnchors/listSelectors "
    "-> click/type/keyPress as needed. Summarize findings with URLs. Keep actions "
    "minimal, avoid unnecessary clicks, and stop when you have enough info. If "
    "you finish, call sessionEnd. Use navigate with thoughtfully crafted URLs "
    "(including query params) to reach targets efficiently. If a CAPTCHA "
    "appears, use captchaWait and report status; do not attempt to solve it "
    "yourself."
)
GOOGLEPSE_PROMPT = (
    "Web search is available via Google Programmable Search Engine. Use it to "
    "retrieve sources and summarize findings. Favor precise queries and cite "
    "result titles and URLs. Avoid unnecessary requests."
)
IMAGE_PROMPT = (
    "Image generation tools are available. When the user requests an image, "
    "call the generateImage tool with the intended prompt text only. Once it's "
    'been generated say The image of "description of image" is done Do not '
    "include the link or location of the image."
)


def _section(data: Mapping[str, Any], key: str) -> Mapping[str, Any]:
    value = data.get(key)
    return value if isinstance(value, Mapping) else {}


def _text(value: Any) -> str | None:
    if isinstance(value, str) and value.strip():
        return value
    return None


@dataclass(frozen=True)
class BrowserlessSettings:
    token: str | None = None
    stealth: bool = True
    stealth_route: bool = False
    block_ads: bool = False
    headless: bool = True
    locale: str = "en-US"
    timezone: str = "America/Los_Angeles"
    user_agent: str | None = None
    route: str | None = None
    system_prompt: str | None = None

    @classmethod
    def from_mapping(cls, raw: Mapping[str, Any]) -> "BrowserlessSettings":
        token = raw.get("apiKey")
        return cls(
            token=token if isinstance(token, str) else None,
            stealth=raw.get("stealth") is not False,
            stealth_route=raw.get("stealthRoute") is True,
            block_ads=raw.get("blockAds") is True,
            headless=raw.get("headless") is not False,
            locale=_text(raw.get("locale")) or "en-US",
            timezone=_text(raw.get("timezone")) or "America/Los_Angeles",
            user_agent=_text(raw.get("userAgent")),
            route=_text(raw.get("route")),
            system_prompt=_text(raw.get("systemPrompt")),
        )


@dataclass(frozen=True)
class GooglePseSettings:
    api_key: str | None = None
    engine_id: str | None = None
    result_count: int | None = None
    domain_filters: tuple[str, ...] = ()
    system_prompt: str | None = None

    @classmethod
    def from_mapping(cls, raw: Mapping[str, Any]) -> "GooglePseSettings":
        count = raw.get("resultCount")
        if isinstance(count, (int, float)) and not isinstance(count, bool):
            count = max(1, min(50, int(count)))
        else:
            count = None
        filters = raw.get("domainFilters")
        return cls(
            api_key=_text(raw.get("apiKey")),
            engine_id=_text(raw.get("engineId")) or _text(raw.get("searchEngineId")),
            result_count=count,
            domain_filters=tuple(
                item for item in filters if isinstance(item, str) and item.strip()
            )
            if isinstance(filters, list)
            else (),
            system_prompt=_text(raw.get("systemPrompt")),
        )


@dataclass(frozen=True)
class WebSearchConfig:
    enabled: bool = False
    provider: str = "browserless"
    browserless: BrowserlessSettings = field(default_factory=BrowserlessSettings)
    googlepse: GooglePseSettings = field(default_factory=GooglePseSettings)
    system_prompt: str | None = None


@dataclass(frozen=True)
class ImageConfig:
    model: str | None = None
    size: str | None = None
    system_prompt: str | None = None


class ToolConfigService:
    """Fetch tool configuration fresh from the store on every call."""

    def __init__(
        self,
        source: ConfigSource,
        *,
        web_search_prompt: str | None = None,
        googlepse_prompt: str | None = None,
        image_prompt: str | None = None,
    ) -> None:
        self._source = source
        self._web_search_prompt = web_search_prompt
        self._googlepse_prompt = googlepse_prompt
        self._image_prompt = image_prompt

    async def get_web_search_config(self) -> WebSearchConfig:
        data = await self._source.get_config()
        websearch = _section(data, "websearch")
        provider = websearch.get("PROVIDER")
        return WebSearchConfig(
            enabled=bool(websearch.get("ENABLED")),
            provider="googlepse"
            if isinstance(provider, str) and provider.lower() == "googlepse"
            else "browserless",
            browserless=BrowserlessSettings.from_mapping(
                _section(websearch, "browserless")
            ),
            googlepse=GooglePseSettings.from_mapping(_section(websearch, "googlepse")),
            system_prompt=_text(websearch.get("SYSTEM_PROMPT")),
        )

    async def get_image_config(self) -> ImageConfig:
        data = await self._source.get_config()
        image = _section(data, "image")
        return ImageConfig(
            model=_text(image.get("model")),
            size=_text(image.get("size")),
            system_prompt=_text(image.get("SYSTEM_PROMPT")),
        )

    def web_search_prompt(self, config: WebSearchConfig) -> str | None:
        """Provider prompt, then top-level prompt, then override, then built-in."""

        if not config.enabled:
            return None
        if config.provider == "googlepse":
            return (
                config.googlepse.system_prompt
                or config.system_prompt
                or self._googlepse_prompt
                or GOOGLEPSE_PROMPT
            )
        return (
            config.browserless.system_prompt
            or config.system_prompt
            or self._web_search_prompt
            or BROWSERLESS_PROMPT
        )

    def image_prompt(self, config: ImageConfig) -> str:
        return config.system_prompt or self._image_prompt or IMAGE_PROMPT


__all__ = [
    "BROWSERLESS_PROMPT",
    "BrowserlessSettings",
    "GOOGLEPSE_PROMPT",
    "GooglePseSettings",
    "IMAGE_PROMPT",
    "ImageConfig",
    "ToolConfigService",
    "WebSearchConfig",
]
