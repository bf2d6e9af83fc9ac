import asyncio
import unittest

from errors import DriverError
from execution import (
    STATUS_CANCELED,
    STATUS_COMPLETE,
    STATUS_ERROR,
    STATUS_RUNNING,
    AuditConfiguration,
    ExecutionRecord,
)
from execution_store import ExecutionStore
from measurement_driver import PAINT_ERROR, NetworkRequest, RawSample
from scheduler import AuditScheduler, plan_scenarios, url_limit
from third_party import EntityClassifier

PAGE = "https://shop.example.com/"
GTM = "https://www.googletagmanager.com/gtm.js?id=GTM-TEST"
FB = "https://connect.facebook.net/en_US/fbevents.js"
HOTJAR = "https://static.hotjar.com/c/hotjar-1.js"

PAGE_REQUESTS = [
    NetworkRequest(PAGE, {"content-type": "text/html"}),
    NetworkRequest("https://shop.example.com/app.js", {"content-type": "application/javascript"}),
    NetworkRequest(GTM, {"content-type": "application/javascript"}),
    NetworkRequest(FB, {"content-type": "application/javascript"}),
    NetworkRequest(HOTJAR, {"content-type": "application/javascript"}),
    NetworkRequest("https://www.facebook.com/tr?id=1", {"content-type": "image/gif"}),
]


class FakeSession:
    def __init__(self, driver):
        self.driver = driver
        self.closed = False

    async def load_and_capture_requests(self, url):
        self.driver.loads += 1
        return list(self.driver.requests)

    async def measure(self, url, block_set, device_profile, network_profile):
        block = list(block_set)
        self.driver.measured.append(block)
        hook = self.driver.hooks.get(tuple(block))
        if hook:
            await hook()
        await asyncio.sleep(0)
        return self.driver.samples.get(tuple(block), RawSample(lcp=2.0, fcp=1.0, cls=0.1, tbt=100))

    async def close(self):
        self.closed = True


class FakeDriver:
    def __init__(self, requests=PAGE_REQUESTS):
        self.requests = requests
        self.loads = 0
        self.measured = []
        self.samples = {}
        self.hooks = {}
        self.sessions = []

    async def new_session(self, user_agent, cookies, local_storage):
        self.last_session_args = (user_agent, cookies, local_storage)
        session = FakeSession(self)
        self.sessions.append(session)
        return session


class TestPlanning(unittest.TestCase):
    def test_url_limit(self):
        self.assertEqual(url_limit(-1, 5), 5)
        self.assertEqual(url_limit(2, 5), 2)
        self.assertEqual(url_limit(10, 5), 5)
        self.assertEqual(url_limit(0, 5), 0)

    def test_one_singleton_scenario_per_candidate(self):
        scenarios, expected = plan_scenarios(["a", "b", "c"], -1, block_all=False)
        self.assertEqual(expected, 4)
        self.assertEqual(scenarios, [(["a"], "a"), (["b"], "b"), (["c"], "c")])

    def test_block_all_is_a_single_scenario(self):
        scenarios, expected = plan_scenarios(["a", "b", "c"], 1, block_all=True)
        self.assertEqual(expected, 2)
        self.assertEqual(scenarios, [(["a", "b", "c"], "a,b,c")])


class TestAuditScheduler(unittest.IsolatedAsyncioTestCase):
    def setUp(self):
        self.driver = FakeDriver()
        self.store = ExecutionStore()
        self.scheduler = AuditScheduler(self.driver, EntityClassifier(), self.store, scenario_timeout_s=0)

    async def asyncTearDown(self):
        await self.scheduler.shutdown()

    def _record(self, **kwargs):
        return ExecutionRecord(PAGE, AuditConfiguration(**kwargs))

    async def test_expected_results_counts_every_discovered_third_party(self):
        record = self._record(max_urls_to_try=-1)
        ack = await self.scheduler.start(record)

        self.assertTrue(ack.ok)
        self.assertEqual(ack.execution_id, record.id)
        self.assertEqual(ack.expected_results, 4)

        final = await self.scheduler.wait(record.id)
        self.assertEqual(final.status, STATUS_COMPLETE)
        self.assertEqual([r.blocked_url for r in final.results], ["", FB, HOTJAR, GTM])
        self.assertEqual(final.expected_results, 4)
        self.assertEqual(self.driver.loads, 1)
        self.assertTrue(self.driver.sessions[0].closed)

    async def test_start_returns_before_scenarios_run(self):
        record = self._record()
        ack = await self.scheduler.start(record)

        self.assertEqual(ack.to_dict(), {"executionId": record.id, "expectedResults": 4})
        snapshot = self.store.status(record.id)
        self.assertEqual(snapshot.status, STATUS_RUNNING)
        self.assertEqual(len(snapshot.results), 1)
        self.assertEqual(snapshot.results[0].blocked_url, "")
        await self.scheduler.wait(record.id)

    async def test_max_urls_limits_scenarios(self):
        record = self._record(max_urls_to_try=2)
        ack = await self.scheduler.start(record)
        self.assertEqual(ack.expected_results, 3)

        final = await self.scheduler.wait(record.id)
        self.assertEqual(len(final.results), 3)
        self.assertEqual(self.driver.measured, [[], [FB], [HOTJAR]])

    async def test_block_all_runs_one_scenario_with_every_candidate(self):
        record = self._record(block_all=True, max_urls_to_try=1)
        ack = await self.scheduler.start(record)
        self.assertEqual(ack.expected_results, 2)

        final = await self.scheduler.wait(record.id)
        self.assertEqual(final.status, STATUS_COMPLETE)
        self.assertEqual(len(final.results), 2)
        self.assertEqual(final.results[1].blocked_url, ",".join([FB, HOTJAR, GTM]))
        self.assertEqual(self.driver.measured[-1], [FB, HOTJAR, GTM])

    async def test_explicit_block_list_skips_discovery(self):
        record = self._record(block_specific_urls=(GTM, GTM, "https://cdn.example.net/x.js"))
        ack = await self.scheduler.start(record)
        self.assertEqual(ack.expected_results, 3)

        final = await self.scheduler.wait(record.id)
        self.assertEqual(self.driver.loads, 0)
        self.assertEqual([r.blocked_url for r in final.results[1:]], [GTM, "https://cdn.example.net/x.js"])

    async def test_page_without_third_parties_completes_with_baseline_only(self):
        self.driver.requests = [NetworkRequest(PAGE, {"content-type": "text/html"})]
        record = self._record()
        ack = await self.scheduler.start(record)
        self.assertEqual(ack.expected_results, 1)

        final = await self.scheduler.wait(record.id)
        self.assertEqual(final.status, STATUS_COMPLETE)
        self.assertEqual(len(final.results), 1)

    async def test_samples_are_averaged_per_scenario(self):
        self.driver.samples[()] = RawSample(lcp=3.0, fcp=1.0, cls=0.0, tbt=200, console_errors=1)
        record = self._record(number_of_reports=3, block_specific_urls=(GTM,))
        await self.scheduler.start(record)
        final = await self.scheduler.wait(record.id)

        self.assertEqual(self.driver.measured, [[], [], [], [GTM], [GTM], [GTM]])
        baseline, blocked = final.results
        self.assertEqual(baseline.scores.LCP, 3.0)
        self.assertEqual(baseline.scores.consoleErrors, 1)
        self.assertIsNone(baseline.delta_baseline)
        self.assertEqual(blocked.scores.LCP, 2.0)
        self.assertEqual(blocked.delta_baseline["LCP"], 33.33)
        self.assertEqual(blocked.delta_baseline["TBT"], 50.0)
        self.assertNotIn("CLS", blocked.delta_baseline)

    async def test_cookies_and_local_storage_are_parsed_for_the_session(self):
        record = self._record(user_agent="Bot/1", cookies='a=1;b="x;y"', local_storage="k=%7B%7D")
        await self.scheduler.start(record)
        await self.scheduler.wait(record.id)
        self.assertEqual(self.driver.last_session_args, ("Bot/1", {"a": "1", "b": "x;y"}, {"k": "{}"}))

    async def test_cancel_stops_before_next_scenario(self):
        record = self._record()

        async def _cancel_during_second():
            self.store.cancel(record.id)

        self.driver.hooks[(HOTJAR,)] = _cancel_during_second
        await self.scheduler.start(record)
        final = await self.scheduler.wait(record.id)

        self.assertEqual(final.status, STATUS_CANCELED)
        self.assertIsNone(final.error)
        # the in-flight scenario finishes but its result is dropped
        self.assertEqual([r.blocked_url for r in final.results], ["", FB])
        self.assertNotIn([GTM], self.driver.measured)
        self.assertTrue(self.driver.sessions[0].closed)

    async def test_blocked_baseline_paint_fails_start(self):
        self.driver.samples[()] = RawSample(paint_status=PAINT_ERROR)
        record = self._record()
        ack = await self.scheduler.start(record)

        self.assertFalse(ack.ok)
        self.assertIn("may be blocked", ack.to_dict()["error"])
        snapshot = self.store.status(record.id)
        self.assertEqual(snapshot.status, STATUS_ERROR)
        self.assertEqual(snapshot.error, ack.error)
        self.assertEqual(snapshot.results, [])
        self.assertEqual(self.driver.measured, [[]])
        self.assertEqual(self.driver.loads, 0)
        self.assertTrue(self.driver.sessions[0].closed)

    async def test_background_failure_is_recorded_on_the_execution(self):
        async def _boom():
            raise DriverError("Navigation failed")

        self.driver.hooks[(HOTJAR,)] = _boom
        record = self._record()
        ack = await self.scheduler.start(record)
        self.assertTrue(ack.ok)

        final = await self.scheduler.wait(record.id)
        self.assertEqual(final.status, STATUS_ERROR)
        self.assertEqual(final.error, "Navigation failed")
        self.assertEqual(len(final.results), 2)
        self.assertNotIn([GTM], self.driver.measured)
        self.assertTrue(self.driver.sessions[0].closed)

    async def test_scenario_timeout_fails_execution(self):
        async def _hang():
            await asyncio.sleep(5)

        self.driver.hooks[(FB,)] = _hang
        scheduler = AuditScheduler(self.driver, EntityClassifier(), self.store, scenario_timeout_s=0.05)
        record = self._record()
        ack = await scheduler.start(record)
        self.assertTrue(ack.ok)

        final = await scheduler.wait(record.id)
        self.assertEqual(final.status, STATUS_ERROR)
        self.assertIn("timed out", final.error)
        self.assertEqual(len(final.results), 1)

    async def test_runs_for_separate_executions_use_separate_sessions(self):
        first = self._record(block_specific_urls=(GTM,))
        second = self._record(block_specific_urls=(FB,))
        await self.scheduler.start(first)
        await self.scheduler.start(second)
        await self.scheduler.wait(first.id)
        await self.scheduler.wait(second.id)

        self.assertEqual(len(self.driver.sessions), 2)
        self.assertEqual(self.store.status(first.id).results[1].blocked_url, GTM)
        self.assertEqual(self.store.status(second.id).results[1].blocked_url, FB)


if __name__ == "__main__":
    unittest.main()
