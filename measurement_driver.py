"""Measurement driver: page loads, request capture and paint metrics using Playwright."""

from __future__ import annotations

import base64
import json
import logging
import os
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Iterable, Optional, Protocol
from urllib.parse import urlparse

from playwright.async_api import Error as PlaywrightError
from playwright.async_api import TimeoutError as PlaywrightTimeout
from playwright.async_api import async_playwright

import config
from errors import DriverError
from execution import new_id
from web_vitals import measure_vitals

logger = logging.getLogger(__name__)

PAINT_OK = "ok"
PAINT_ERROR = "error"

DEVICE_SETTINGS = {
    "mobile": {
        "viewport": {"width": 390, "height": 844},
        "device_scale_factor": 3,
        "is_mobile": True,
        "has_touch": True,
        "user_agent": "Mozilla/5.0 (iPhone; CPU iPhone OS 16_6 like Mac OS X) AppleWebKit/605.1.15 (KHTML, like Gecko) Version/16.6 Mobile/15E148 Safari/604.1",
        "cpu_slowdown": 4,
    },
    "desktop": {
        "viewport": {"width": 1280, "height": 720},
        "device_scale_factor": 1,
        "is_mobile": False,
        "has_touch": False,
        "user_agent": "Mozilla/5.0 (X11; Linux x86_64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36",
        "cpu_slowdown": 1,
    },
}

# Chrome DevTools Network.emulateNetworkConditions parameters (bytes/s, ms)
NETWORK_SETTINGS = {
    "none": None,
    "4g": {
        "offline": False,
        "latency": 150,
        "downloadThroughput": int(1.6 * 1024 * 1024 / 8),
        "uploadThroughput": int(750 * 1024 / 8),
    },
    "slow-3g": {
        "offline": False,
        "latency": 400,
        "downloadThroughput": int(400 * 1024 / 8),
        "uploadThroughput": int(400 * 1024 / 8),
    },
}

BROWSER_ARGS = [
    "--no-sandbox",
    "--disable-setuid-sandbox",
    "--disable-dev-shm-usage",
    "--disable-gpu",
    "--font-render-hinting=none",
]


@dataclass
class NetworkRequest:
    url: str
    headers: dict[str, str] = field(default_factory=dict)

    @property
    def content_type(self) -> str:
        for key, value in self.headers.items():
            if key.lower() == "content-type":
                return value or ""
        return ""


@dataclass
class RawSample:
    """A single measurement. lcp/fcp are seconds, tbt milliseconds."""

    lcp: float = 0.0
    fcp: float = 0.0
    cls: float = 0.0
    tbt: float = 0.0
    console_errors: int = 0
    paint_status: str = PAINT_OK
    screenshot: Optional[str] = None
    report_url: Optional[str] = None


class Session(Protocol):
    async def load_and_capture_requests(self, url: str) -> list[NetworkRequest]: ...

    async def measure(
        self,
        url: str,
        block_set: Iterable[str],
        device_profile: str,
        network_profile: str,
    ) -> RawSample: ...

    async def close(self) -> None: ...


class MeasurementDriver(Protocol):
    async def new_session(
        self,
        user_agent: str,
        cookies: dict[str, str],
        local_storage: dict[str, str],
    ) -> Session: ...


def is_blocked(request_url: str, block_set: Iterable[str]) -> bool:
    """A request is blocked when any block entry occurs in its URL (``*entry*``)."""
    return any(entry and entry in request_url for entry in block_set)


def local_storage_script(url: str, values: dict[str, str]) -> str:
    """Init script seeding localStorage for the target origin before any page script runs."""
    parsed = urlparse(url)
    origin = f"{parsed.scheme}://{parsed.netloc}"
    return (
        "(() => {"
        f" if (window.location.origin !== {json.dumps(origin)}) return;"
        f" const entries = {json.dumps(values)};"
        " for (const [k, v] of Object.entries(entries)) {"
        "  try { window.localStorage.setItem(k, v); } catch (e) {}"
        " }"
        "})();"
    )


class PlaywrightSession:
    def __init__(
        self,
        user_agent: str,
        cookies: dict[str, str],
        local_storage: dict[str, str],
        headless: bool = config.HEADLESS,
        reports_dir: str = config.REPORTS_DIR,
        navigation_timeout_ms: int = config.NAVIGATION_TIMEOUT_MS,
    ):
        self.user_agent = user_agent
        self.cookies = dict(cookies or {})
        self.local_storage = dict(local_storage or {})
        self.headless = headless
        self.reports_dir = reports_dir
        self.navigation_timeout_ms = navigation_timeout_ms
        self._playwright = None
        self._browser = None

    async def start(self) -> "PlaywrightSession":
        try:
            self._playwright = await async_playwright().start()
            self._browser = await self._playwright.chromium.launch(
                headless=self.headless,
                args=BROWSER_ARGS,
            )
        except PlaywrightError as e:
            await self.close()
            raise DriverError(f"Could not launch browser: {e}") from e
        return self

    async def _new_context(self, url: str, device_profile: str):
        if not self._browser:
            raise DriverError("Browser session is closed")
        device = DEVICE_SETTINGS[device_profile]
        context = await self._browser.new_context(
            viewport=device["viewport"],
            device_scale_factor=device["device_scale_factor"],
            is_mobile=device["is_mobile"],
            has_touch=device["has_touch"],
            user_agent=self.user_agent or device["user_agent"],
            locale="en-US",
            timezone_id="UTC",
        )
        if self.cookies:
            await context.add_cookies(
                [{"name": name, "value": value, "url": url} for name, value in self.cookies.items()]
            )
        if self.local_storage:
            await context.add_init_script(local_storage_script(url, self.local_storage))
        return context

    async def _goto(self, page, url: str, wait_until: str) -> None:
        try:
            await page.goto(url, wait_until=wait_until, timeout=self.navigation_timeout_ms)
        except PlaywrightTimeout:
            logger.warning(f"Timeout loading {url}, measuring partial state.")

    async def load_and_capture_requests(self, url: str) -> list[NetworkRequest]:
        finished = []
        try:
            context = await self._new_context(url, config.DEFAULT_DEVICE)
            try:
                page = await context.new_page()
                page.on("requestfinished", finished.append)
                await self._goto(page, url, "networkidle")

                captured: list[NetworkRequest] = []
                for request in finished:
                    response = await request.response()
                    headers = await response.all_headers() if response else {}
                    captured.append(NetworkRequest(url=request.url, headers=headers))
                return captured
            finally:
                await context.close()
        except PlaywrightError as e:
            raise DriverError(f"Failed to load {url}: {e}") from e

    async def measure(
        self,
        url: str,
        block_set: Iterable[str],
        device_profile: str,
        network_profile: str,
    ) -> RawSample:
        blocked = [entry for entry in block_set if entry]
        aborted: list[str] = []
        console_errors: list[str] = []

        async def _route(route):
            if is_blocked(route.request.url, blocked):
                aborted.append(route.request.url)
                await route.abort()
            else:
                await route.continue_()

        def _on_console(message):
            if message.type == "error":
                console_errors.append(message.text)

        try:
            context = await self._new_context(url, device_profile)
            try:
                page = await context.new_page()
                page.on("console", _on_console)
                if blocked:
                    await page.route("**/*", _route)
                await self._throttle(context, page, device_profile, network_profile)
                await self._goto(page, url, "load")

                vitals = await measure_vitals(page)
                if vitals.get("error"):
                    raise DriverError(f"Could not read paint metrics for {url}: {vitals['error']}")

                image = await page.screenshot(full_page=False)
            finally:
                await context.close()
        except PlaywrightError as e:
            raise DriverError(f"Measurement of {url} failed: {e}") from e

        fcp_ms = vitals.get("fcp")
        sample = RawSample(
            lcp=(vitals.get("lcp") or 0) / 1000,
            fcp=(fcp_ms or 0) / 1000,
            cls=vitals.get("cls") or 0,
            tbt=vitals.get("tbt") or 0,
            console_errors=len(console_errors),
            paint_status=PAINT_OK if fcp_ms is not None else PAINT_ERROR,
            screenshot=base64.b64encode(image).decode("ascii"),
        )
        sample.report_url = self._write_report(
            url,
            blocked,
            device_profile,
            network_profile,
            vitals,
            console_errors,
            aborted,
        )
        return sample

    async def _throttle(self, context, page, device_profile: str, network_profile: str) -> None:
        conditions = NETWORK_SETTINGS[network_profile]
        slowdown = DEVICE_SETTINGS[device_profile]["cpu_slowdown"]
        if conditions is None and slowdown <= 1:
            return
        cdp = await context.new_cdp_session(page)
        if conditions is not None:
            await cdp.send("Network.enable")
            await cdp.send("Network.emulateNetworkConditions", conditions)
        if slowdown > 1:
            await cdp.send("Emulation.setCPUThrottlingRate", {"rate": slowdown})

    def _write_report(
        self,
        url: str,
        blocked: list[str],
        device_profile: str,
        network_profile: str,
        vitals: dict,
        console_errors: list[str],
        aborted: list[str],
    ) -> Optional[str]:
        report_id = new_id()
        relative = f"reports/{report_id}.json"
        out_path = os.path.join(self.reports_dir, relative)
        payload = {
            "generated_at": datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ"),
            "url": url,
            "blocked": blocked,
            "aborted_requests": aborted,
            "device": device_profile,
            "network": network_profile,
            "vitals_ms": vitals,
            "console_errors": console_errors,
        }
        try:
            os.makedirs(os.path.dirname(out_path), exist_ok=True)
            with open(out_path, "w", encoding="utf-8") as f:
                json.dump(payload, f, ensure_ascii=False, indent=2)
        except OSError as e:
            logger.error(f"Detail report write failed for {url}: {e}")
            return None
        logger.debug(f"Wrote to disk: {out_path}")
        return relative

    async def close(self) -> None:
        browser, playwright = self._browser, self._playwright
        self._browser = None
        self._playwright = None
        if browser:
            await browser.close()
        if playwright:
            await playwright.stop()


class PlaywrightDriver:
    """Opens one Chromium instance per session; sessions are never shared."""

    def __init__(
        self,
        headless: bool = config.HEADLESS,
        reports_dir: str = config.REPORTS_DIR,
        navigation_timeout_ms: int = config.NAVIGATION_TIMEOUT_MS,
    ):
        self.headless = headless
        self.reports_dir = reports_dir
        self.navigation_timeout_ms = navigation_timeout_ms

    async def new_session(
        self,
        user_agent: str,
        cookies: dict[str, str],
        local_storage: dict[str, str],
    ) -> PlaywrightSession:
        session = PlaywrightSession(
            user_agent,
            cookies,
            local_storage,
            headless=self.headless,
            reports_dir=self.reports_dir,
            navigation_timeout_ms=self.navigation_timeout_ms,
        )
        return await session.start()
