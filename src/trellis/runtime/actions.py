"""
Action protocol router.

Dispatches ``scheme://path`` action strings from navigation items and menus
to host surfaces:

- ``navigate://<destination>`` -> :class:`Navigator`
- ``modal://<name>`` / ``bottomsheet://<name>`` -> :class:`OverlayPresenter`
- ``share://<content-type>`` -> :class:`ShareSheet` with a rendered payload
- ``api://<operation>`` -> the query transport
- ``confirm://<name>`` -> :class:`ConfirmationPrompt`, then the underlying action
- ``none`` -> no-op

Action strings come from the backend, so the router never raises over one:
unknown schemes, unknown confirmations and handler failures are logged,
passed to the optional ``on_error`` hook and swallowed.

Usage::

    router = ActionRouter(transport=api, navigator=nav, prompt=dialogs)
    await router.execute("confirm://delete-activity", {"id": "a1"})
    count = await router.get_badge_count("api://notifications/unread-count")
"""

from __future__ import annotations

import asyncio
import inspect
import logging
import math
from collections.abc import Callable, Mapping
from typing import Any, Literal, Protocol

from pydantic import BaseModel, ConfigDict

from trellis.core.config import TrellisConfig
from trellis.core.errors import ActionDispatchError, BadgeFetchError
from trellis.core.expression_lang import ExpressionEvalError, ExpressionParseError, render_template
from trellis.runtime.logging import log_with_context
from trellis.runtime.query_client import QueryTransport
from trellis.specs.actions import ActionScheme, ParsedAction, parse_action

logger = logging.getLogger(__name__)

OverlayKind = Literal["modal", "bottomsheet"]
ErrorHook = Callable[[ActionDispatchError], None]


# =============================================================================
# Host surfaces
# =============================================================================


class Navigator(Protocol):
    def navigate(self, destination: str, params: Mapping[str, Any]) -> Any: ...


class OverlayPresenter(Protocol):
    def open(self, kind: OverlayKind, name: str, params: Mapping[str, Any]) -> Any: ...


class ShareSheet(Protocol):
    def share(self, payload: SharePayload) -> Any: ...


class ConfirmationPrompt(Protocol):
    def confirm(self, descriptor: ConfirmationDescriptor) -> Any:
        """Ask the user; return (or resolve to) True when acknowledged."""
        ...


# =============================================================================
# Payloads and descriptors
# =============================================================================


class SharePayload(BaseModel):
    model_config = ConfigDict(frozen=True)

    message: str
    title: str | None = None
    url: str | None = None


class ShareTemplate(BaseModel):
    """
    Per-content-type share template.

    Fields are template bodies with ``{expr}`` placeholders evaluated against
    the action params plus ``base_url``.
    """

    model_config = ConfigDict(frozen=True)

    message: str
    title: str | None = None
    url: str | None = None

    def render(self, data: Mapping[str, Any]) -> SharePayload:
        return SharePayload(
            message=render_template(self.message, data),
            title=render_template(self.title, data) if self.title is not None else None,
            url=render_template(self.url, data) if self.url is not None else None,
        )


GENERIC_SHARE = "generic"

DEFAULT_SHARE_TEMPLATES: dict[str, ShareTemplate] = {
    "activity": ShareTemplate(
        title="Check out this activity!",
        message="Join me for: {title or 'an activity'}",
        url="{base_url}/activity/{id}",
    ),
    "profile": ShareTemplate(
        title="Check out this profile!",
        message="Connect with {name or 'this user'}",
        url="{base_url}/profile/{id}",
    ),
    GENERIC_SHARE: ShareTemplate(message="Check this out!"),
}


class ConfirmationDescriptor(BaseModel):
    """A named confirmation dialog and the action it guards."""

    model_config = ConfigDict(frozen=True)

    name: str
    title: str
    message: str
    destructive: bool = False
    action: str


def confirmations_from_config(settings: TrellisConfig) -> dict[str, ConfirmationDescriptor]:
    return {
        name: ConfirmationDescriptor(
            name=name,
            title=conf.title,
            message=conf.message,
            destructive=conf.destructive,
            action=conf.action,
        )
        for name, conf in settings.confirmations.items()
    }


async def _maybe_await(value: Any) -> Any:
    if inspect.isawaitable(value):
        return await value
    return value


# =============================================================================
# Router
# =============================================================================


class ActionRouter:
    """
    Routes action strings to host surfaces.

    Every collaborator is optional; a missing one turns its scheme into a
    reported dispatch error rather than a crash.
    """

    def __init__(
        self,
        *,
        transport: QueryTransport | None = None,
        navigator: Navigator | None = None,
        overlays: OverlayPresenter | None = None,
        share_sheet: ShareSheet | None = None,
        prompt: ConfirmationPrompt | None = None,
        confirmations: Mapping[str, ConfirmationDescriptor] | None = None,
        share_templates: Mapping[str, ShareTemplate] | None = None,
        settings: TrellisConfig | None = None,
        on_error: ErrorHook | None = None,
    ) -> None:
        self.settings = settings or TrellisConfig()
        self.transport = transport
        self.navigator = navigator
        self.overlays = overlays
        self.share_sheet = share_sheet
        self.prompt = prompt
        self.on_error = on_error
        self.confirmations = dict(
            confirmations
            if confirmations is not None
            else confirmations_from_config(self.settings)
        )
        self.share_templates = {**DEFAULT_SHARE_TEMPLATES, **(share_templates or {})}
        self._tasks: set[asyncio.Task[bool]] = set()

    # =========================================================================
    # Dispatch
    # =========================================================================

    async def execute(self, action: str, context: Mapping[str, Any] | None = None) -> bool:
        """
        Execute an action string.

        Returns:
            True if the action was carried out, False if it was a no-op,
            declined, or failed (failures are reported, never raised).
        """
        params = dict(context or {})
        try:
            parsed = parse_action(action)
            if parsed.is_noop:
                return False
            logger.debug("Executing action %s", action)
            return await self._run(parsed, params)
        except ActionDispatchError as e:
            self._report(e)
        except Exception as e:
            self._report(ActionDispatchError(f"Action {action!r} failed: {e}", action))
        return False

    def dispatch(
        self, action: str, context: Mapping[str, Any] | None = None
    ) -> asyncio.Task[bool] | None:
        """Fire-and-forget: schedule :meth:`execute` on the running loop."""
        try:
            task = asyncio.get_running_loop().create_task(self.execute(action, context))
        except RuntimeError:
            self._report(ActionDispatchError("No running event loop for dispatch", action))
            return None
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def drain(self) -> None:
        """Wait for every dispatched action to finish."""
        if self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def _run(self, parsed: ParsedAction, params: dict[str, Any]) -> bool:
        handlers = {
            ActionScheme.NAVIGATE: self._navigate,
            ActionScheme.MODAL: self._open_overlay,
            ActionScheme.BOTTOMSHEET: self._open_overlay,
            ActionScheme.SHARE: self._share,
            ActionScheme.API: self._call_api,
            ActionScheme.CONFIRM: self._confirm,
        }
        handler = handlers.get(parsed.scheme)
        if handler is None:
            raise ActionDispatchError(f"No handler for scheme {parsed.scheme!r}", str(parsed))
        return await handler(parsed, params)

    async def _navigate(self, parsed: ParsedAction, params: dict[str, Any]) -> bool:
        if self.navigator is None:
            raise ActionDispatchError("No navigator attached", str(parsed))
        await _maybe_await(self.navigator.navigate(parsed.path, params))
        return True

    async def _open_overlay(self, parsed: ParsedAction, params: dict[str, Any]) -> bool:
        if self.overlays is None:
            raise ActionDispatchError("No overlay presenter attached", str(parsed))
        kind: OverlayKind = "modal" if parsed.scheme == ActionScheme.MODAL else "bottomsheet"
        await _maybe_await(self.overlays.open(kind, parsed.path, params))
        return True

    async def _share(self, parsed: ParsedAction, params: dict[str, Any]) -> bool:
        if self.share_sheet is None:
            raise ActionDispatchError("No share sheet attached", str(parsed))
        payload = self.build_share_payload(parsed.path, params)
        await _maybe_await(self.share_sheet.share(payload))
        return True

    async def _call_api(self, parsed: ParsedAction, params: dict[str, Any]) -> bool:
        if self.transport is None:
            raise ActionDispatchError("No transport attached", str(parsed))
        await self.transport.query(parsed.path, params)
        return True

    async def _confirm(self, parsed: ParsedAction, params: dict[str, Any]) -> bool:
        descriptor = self.confirmations.get(parsed.path)
        if descriptor is None:
            raise ActionDispatchError(f"Unknown confirmation {parsed.path!r}", str(parsed))
        if self.prompt is None:
            raise ActionDispatchError("No confirmation prompt attached", str(parsed))

        underlying = parse_action(descriptor.action)
        if underlying.scheme == ActionScheme.CONFIRM:
            raise ActionDispatchError(
                f"Confirmation {descriptor.name!r} cannot guard another confirmation",
                str(parsed),
            )

        acknowledged = await _maybe_await(self.prompt.confirm(descriptor))
        if not acknowledged:
            logger.debug("Confirmation %s declined", descriptor.name)
            return False
        if underlying.is_noop:
            return True
        return await self._run(underlying, params)

    def build_share_payload(self, content_type: str, params: Mapping[str, Any]) -> SharePayload:
        """Render the share template for a content type (generic fallback)."""
        template = self.share_templates.get(content_type) or self.share_templates[GENERIC_SHARE]
        data = {**params, "base_url": self.settings.share_base_url.rstrip("/")}
        try:
            return template.render(data)
        except (ExpressionParseError, ExpressionEvalError) as e:
            raise ActionDispatchError(
                f"Share template for {content_type!r} failed: {e}", f"share://{content_type}"
            ) from e

    def _report(self, error: ActionDispatchError) -> None:
        log_with_context(
            logger,
            logging.WARNING,
            f"Action dispatch failed: {error.message}",
            action=error.action,
        )
        if self.on_error is not None:
            try:
                self.on_error(error)
            except Exception:
                logger.exception("on_error hook failed")

    # =========================================================================
    # Badge counts
    # =========================================================================

    async def get_badge_count(self, source: str, timeout_s: float | None = None) -> int:
        """
        Fetch a live badge count from an ``api://`` source.

        Expects a response like ``{"count": 3}``. Any non-api source,
        exception, timeout or missing/non-numeric count yields 0.
        """
        try:
            return await self.fetch_badge_count(source, timeout_s)
        except BadgeFetchError as e:
            log_with_context(
                logger, logging.WARNING, f"Badge count unavailable: {e.message}", source=e.source
            )
            return 0

    async def fetch_badge_count(self, source: str, timeout_s: float | None = None) -> int:
        """
        Like :meth:`get_badge_count`, but raises instead of degrading.

        Raises:
            BadgeFetchError: On any failure.
        """
        try:
            parsed = parse_action(source)
        except ActionDispatchError as e:
            raise BadgeFetchError(e.message, source) from e
        if parsed.scheme != ActionScheme.API:
            raise BadgeFetchError(f"Badge source {source!r} is not an api:// action", source)
        if self.transport is None:
            raise BadgeFetchError("No transport attached", source)

        timeout = timeout_s if timeout_s is not None else self.settings.badge_timeout_s
        try:
            data = await asyncio.wait_for(self.transport.query(parsed.path, {}), timeout)
        except TimeoutError as e:
            raise BadgeFetchError(f"Timed out after {timeout:g}s", source) from e
        except Exception as e:
            raise BadgeFetchError(f"Fetch failed: {e}", source) from e

        count = data.get("count") if isinstance(data, Mapping) else None
        if (
            isinstance(count, bool)
            or not isinstance(count, (int, float))
            or not math.isfinite(count)
        ):
            raise BadgeFetchError(f"Response has no numeric 'count': {data!r}", source)
        return max(int(count), 0)
