"""
web_vitals.py - Web Vitals Extraction (FCP, LCP, CLS, TBT).

Usage:
    # Inside a Playwright page session, after navigation
    metrics = await measure_vitals(page)
"""

import config

# Simplified version of the observers in Google's 'web-vitals' library.
# All values are milliseconds except cls. fcp is null when no paint happened.
VITALS_SNIPPET = r"""
(windowMs) => {
    return new Promise((resolve) => {
        const metrics = {
            fcp: null,
            lcp: 0,
            cls: 0,
            tbt: 0
        };

        // FCP
        for (const entry of performance.getEntriesByType('paint')) {
            if (entry.name === 'first-contentful-paint') {
                metrics.fcp = entry.startTime;
            }
        }

        // LCP
        const lcpObserver = new PerformanceObserver((entryList) => {
            const entries = entryList.getEntries();
            const lastEntry = entries[entries.length - 1];
            metrics.lcp = lastEntry.startTime;
        });
        try { lcpObserver.observe({type: 'largest-contentful-paint', buffered: true}); } catch(e){}

        // CLS
        let clsValue = 0;
        const clsObserver = new PerformanceObserver((entryList) => {
            for (const entry of entryList.getEntries()) {
                if (!entry.hadRecentInput) {
                    clsValue += entry.value;
                }
            }
            metrics.cls = clsValue;
        });
        try { clsObserver.observe({type: 'layout-shift', buffered: true}); } catch(e){}

        // TBT: blocking part of every long task
        const tbtObserver = new PerformanceObserver((entryList) => {
            for (const entry of entryList.getEntries()) {
                metrics.tbt += Math.max(0, entry.duration - 50);
            }
        });
        try { tbtObserver.observe({type: 'longtask', buffered: true}); } catch(e){}

        setTimeout(() => {
            if (metrics.fcp === null) {
                for (const entry of performance.getEntriesByType('paint')) {
                    if (entry.name === 'first-contentful-paint') {
                        metrics.fcp = entry.startTime;
                    }
                }
            }
            resolve(metrics);
        }, windowMs);
    });
}
"""


async def measure_vitals(page, window_ms: int = config.VITALS_WINDOW_MS) -> dict:
    """
    Injects the observers and returns paint / layout metrics.
    Requires an active Playwright (async API) page object.
    Blocks for ``window_ms`` milliseconds.
    """
    try:
        return await page.evaluate(VITALS_SNIPPET, window_ms)
    except Exception as e:
        return {"error": str(e), "fcp": None, "lcp": None, "cls": None, "tbt": None}
