"""Build the tool set offered to the model for a single turn."""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass
from types import MappingProxyType
from typing import Any, Mapping
from urllib.parse import urlencode

from ..providers.types import ToolDefinition
from ..services.tool_config import (
    BrowserlessSettings,
    GooglePseSettings,
    ImageConfig,
    ToolConfigService,
)

logger = logging.getLogger(__name__)

BROWSERLESS_ENDPOINT = "wss://production-sfo.browserless.io"

_NO_ARGS: dict[str, Any] = {"type": "object", "properties": {}, "additionalProperties": False}


def _object(properties: dict[str, Any], required: list[str]) -> dict[str, Any]:
    return {
        "type": "object",
        "properties": properties,
        "required": required,
        "additionalProperties": False,
    }


_SELECTOR = {"type": "string", "description": "CSS selector of the target element"}

# name -> (description, JSON schema)
_BROWSERLESS_TOOLS: dict[str, tuple[str, dict[str, Any]]] = {
    "navigate": (
        "Navigate the browser to a specific URL and wait for network to be idle",
        _object({"url": {"type": "string", "description": "Absolute URL to open"}}, ["url"]),
    ),
    "click": (
        "Click an element matching a CSS selector",
        _object({"selector": _SELECTOR}, ["selector"]),
    ),
    "type": (
        "Type text into an input or editable element specified by a CSS selector",
        _object(
            {"selector": _SELECTOR, "text": {"type": "string"}},
            ["selector", "text"],
        ),
    ),
    "keyPress": (
        "Press a keyboard key (e.g., Enter, ArrowDown, Control+A)",
        _object({"key": {"type": "string"}}, ["key"]),
    ),
    "listSelectors": (
        "Return a compact catalog of actionable DOM elements (selectors and labels)",
        _object({"limit": {"type": "integer", "minimum": 1}}, []),
    ),
    "listAnchors": (
        "Return anchor links (<a> tags) from the current page with href, text and metadata",
        _object({"limit": {"type": "integer", "minimum": 1}}, []),
    ),
    "getText": (
        "Extract plain visible text from the current page (no HTML; whitespace normalized)",
        _object({"maxChars": {"type": "integer", "minimum": 1}}, []),
    ),
    "captchaWait": (
        "Wait for a CAPTCHA to be detected using Browserless.captchaFound CDP event",
        _object({"timeoutMs": {"type": "integer", "minimum": 0}}, []),
    ),
    "sessionEnd": (
        "ALWAYS USE AT THE END OF A SESSION. Close the current Browserless browser "
        "session and clear cached references",
        _NO_ARGS,
    ),
}


def browserless_endpoint(settings: BrowserlessSettings) -> str:
    """Return the CDP websocket URL for the configured browserless session."""

    params: dict[str, str] = {"token": settings.token or ""}
    if settings.stealth:
        params["stealth"] = "true"
    if settings.block_ads:
        params["blockAds"] = "true"
    if not settings.headless:
        params["headless"] = "false"
    route = settings.route or ("chromium/stealth" if settings.stealth_route else "chromium")
    return f"{BROWSERLESS_ENDPOINT}/{route}?{urlencode(params)}"


def build_browserless_tools(settings: BrowserlessSettings) -> dict[str, ToolDefinition]:
    snapshot = MappingProxyType(
        {
            "endpoint": browserless_endpoint(settings),
            "locale": settings.locale,
            "timezone": settings.timezone,
            "userAgent": settings.user_agent,
        }
    )
    return {
        name: ToolDefinition(
            name=name,
            description=description,
            parameters=schema,
            category="web-browsing",
            config=snapshot,
        )
        for name, (description, schema) in _BROWSERLESS_TOOLS.items()
    }


def build_googlepse_tools(settings: GooglePseSettings) -> dict[str, ToolDefinition]:
    snapshot = MappingProxyType(
        {
            "engineId": settings.engine_id,
            "resultCount": settings.result_count,
            "domainFilters": list(settings.domain_filters),
        }
    )
    return {
        "webSearch": ToolDefinition(
            name="webSearch",
            description="Search the web with Google Programmable Search Engine",
            parameters=_object(
                {
                    "query": {"type": "string", "description": "Search query"},
                    "count": {"type": "integer", "minimum": 1, "maximum": 50},
                },
                ["query"],
            ),
            category="web-search",
            config=snapshot,
        )
    }


def build_image_tools(config: ImageConfig) -> dict[str, ToolDefinition]:
    snapshot = MappingProxyType(
        {key: value for key, value in asdict(config).items() if key != "system_prompt"}
    )
    return {
        "generateImage": ToolDefinition(
            name="generateImage",
            description="Generate an image from a text prompt",
            parameters=_object(
                {"prompt": {"type": "string", "description": "What the image should show"}},
                ["prompt"],
            ),
            category="image-generation",
            config=snapshot,
        )
    }


@dataclass(frozen=True)
class ToolSet:
    """Tools for a turn (``None`` when no tools apply) plus system guidance."""

    tools: Mapping[str, ToolDefinition] | None
    guidance: tuple[str, ...] = ()


class ToolAssembler:
    """Combine web-search and image tools according to the turn's flags."""

    def __init__(self, config: ToolConfigService) -> None:
        self._config = config

    async def assemble(
        self, *, enable_web_search: bool = False, enable_image: bool = False
    ) -> ToolSet:
        if not enable_web_search and not enable_image:
            return ToolSet(tools=None)

        tools: dict[str, ToolDefinition] = {}
        guidance: list[str] = []

        if enable_web_search:
            web = await self._config.get_web_search_config()
            if web.provider == "googlepse":
                tools.update(build_googlepse_tools(web.googlepse))
            else:
                tools.update(build_browserless_tools(web.browserless))
            prompt = self._config.web_search_prompt(web)
            if prompt:
                guidance.append(prompt)

        if enable_image:
            image = await self._config.get_image_config()
            tools.update(build_image_tools(image))
            guidance.append(self._config.image_prompt(image))

        logger.debug("Assembled tools for turn: %s", sorted(tools))
        return ToolSet(tools=tools or None, guidance=tuple(guidance))


__all__ = [
    "ToolAssembler",
    "ToolSet",
    "browserless_endpoint",
    "build_browserless_tools",
    "build_googlepse_tools",
    "build_image_tools",
]
