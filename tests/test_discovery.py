import asyncio

from discovery import discover, identify_third_parties, is_image, third_party_urls
from execution import AuditConfiguration, ExecutionRecord
from measurement_driver import NetworkRequest
from third_party import EntityClassifier

GTM = "https://www.googletagmanager.com/gtm.js?id=GTM-1"
GA = "https://www.google-analytics.com/analytics.js"

REQUESTS = [
    NetworkRequest("https://example.com/", {"content-type": "text/html"}),
    NetworkRequest(GTM, {"content-type": "application/javascript"}),
    NetworkRequest(GTM, {"content-type": "application/javascript"}),
    NetworkRequest(GA, {"Content-Type": "text/javascript; charset=utf-8"}),
    NetworkRequest("https://www.google-analytics.com/collect?v=1", {"content-type": "image/gif"}),
    NetworkRequest("https://fonts.gstatic.com/s/roboto.woff2", {}),
]


class _Session:
    def __init__(self, requests):
        self.requests = requests
        self.loaded = []
        self.closed = False

    async def load_and_capture_requests(self, url):
        self.loaded.append(url)
        return self.requests

    async def close(self):
        self.closed = True


class _Driver:
    def __init__(self, requests=REQUESTS):
        self.session = _Session(requests)
        self.calls = []

    async def new_session(self, user_agent, cookies, local_storage):
        self.calls.append((user_agent, cookies, local_storage))
        return self.session


def test_is_image():
    assert is_image(NetworkRequest("https://x/a.png", {"content-type": "image/png"}))
    assert is_image(NetworkRequest("https://x/a.svg", {"Content-Type": "IMAGE/SVG+XML"}))
    assert not is_image(NetworkRequest("https://x/a.js", {"content-type": "application/javascript"}))
    assert not is_image(NetworkRequest("https://x/a", {}))


def test_third_party_urls_keeps_full_url_and_dedupes():
    found = third_party_urls(REQUESTS, EntityClassifier())
    assert found == {GTM, GA, "https://fonts.gstatic.com/s/roboto.woff2"}


def test_discover_opens_and_closes_its_own_session():
    driver = _Driver()
    found = asyncio.run(
        discover(driver, EntityClassifier(), "https://example.com/", "Bot/2", 'a="1;2"', "k=v")
    )
    assert GTM in found and GA in found
    assert driver.calls == [("Bot/2", {"a": "1;2"}, {"k": "v"})]
    assert driver.session.loaded == ["https://example.com/"]
    assert driver.session.closed


def test_discover_reuses_given_session():
    driver = _Driver()
    session = _Session(REQUESTS[:2])
    found = asyncio.run(discover(driver, EntityClassifier(), "https://example.com/", session=session))
    assert found == {GTM}
    assert driver.calls == []
    assert not session.closed


def test_identify_third_parties_is_sorted():
    driver = _Driver()
    record = ExecutionRecord("https://example.com/", AuditConfiguration(cookies="c=1"))
    urls = asyncio.run(identify_third_parties(driver, EntityClassifier(), record))
    assert urls == sorted(urls)
    assert len(urls) == 3
    assert driver.calls[0][1] == {"c": "1"}
