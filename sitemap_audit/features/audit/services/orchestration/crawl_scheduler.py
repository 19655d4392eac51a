import logging
import queue
import threading
import time
from concurrent.futures import Future, ThreadPoolExecutor, wait
from typing import Callable, Dict, List, Optional

from sitemap_audit.features.audit.exceptions import AnalysisFailed, FetchError, FetchTimeout
from sitemap_audit.features.audit.schemas.audit import (
    DEADLINE_EXCEEDED,
    PageOutcome,
    PageResult,
    PageTask,
)
from sitemap_audit.features.audit.services.analysis.page_analyzer import PageAnalyzer
from sitemap_audit.features.audit.services.scraping.page_fetcher import PageFetcher

logger = logging.getLogger(__name__)

# Reason code for failures that escaped the fetcher and analyzer error types
WORKER_ERROR = "worker_error"

# Seconds a worker waits for an aborted attempt to release its browser
ABANDON_WAIT = 5.0


class CrawlScheduler:
    """
    Crawls a batch of PageTasks with a fixed pool of worker threads.

    Workers pull from a shared queue; results land in a dict keyed by
    discovery index, so completion order never leaks into the output.
    Every task comes back as exactly one PageResult, including tasks that
    never started or were still running when the overall deadline hit.

    Each attempt is bounded by the per-page timeout here, not only by the
    fetcher: an overrunning page is aborted, recorded as timed_out, and
    its worker takes no new page until the aborted attempt has unwound
    (or `abandon_wait` seconds pass), so open browsers stay within the
    concurrency limit.
    """

    def __init__(
        self,
        fetcher: PageFetcher,
        analyzer: PageAnalyzer,
        max_attempts: int = 2,
        clock: Callable[[], float] = time.monotonic,
        abandon_wait: float = ABANDON_WAIT,
    ):
        self.fetcher = fetcher
        self.analyzer = analyzer
        self.max_attempts = max_attempts
        self.clock = clock
        self.abandon_wait = abandon_wait

    def run(
        self,
        tasks: List[PageTask],
        concurrency_limit: int,
        per_page_timeout: float,
        overall_deadline: float,
        job_id: Optional[str] = None,
    ) -> List[PageResult]:
        """
        Crawl and analyze every task.

        Args:
            tasks: pages to crawl, each with a unique discovery index
            concurrency_limit: number of worker threads (and open browsers)
            per_page_timeout: seconds allowed per attempt
            overall_deadline: seconds from now after which nothing new starts

        Returns:
            One PageResult per task, ordered by discovery index
        """
        if not tasks:
            return []

        prefix = f"[{job_id}] " if job_id else ""
        deadline_at = self.clock() + overall_deadline

        work: "queue.Queue[PageTask]" = queue.Queue()
        for task in tasks:
            work.put(task)

        results: Dict[int, PageResult] = {}
        in_flight: Dict[int, PageTask] = {}
        lock = threading.Lock()
        stop = threading.Event()

        def worker():
            while True:
                # Dequeue and registration happen together so the deadline
                # sweep never sees a task that is in neither place
                with lock:
                    if stop.is_set() or self.clock() >= deadline_at:
                        stop.set()
                        return
                    try:
                        task = work.get_nowait()
                    except queue.Empty:
                        return
                    in_flight[task.index] = task

                result = self._process(task, per_page_timeout, deadline_at)

                with lock:
                    in_flight.pop(task.index, None)
                    if task.index in results:
                        logger.info(f"{prefix}Discarding late result for {task.url}")
                        continue
                    results[task.index] = result

        pool_size = min(concurrency_limit, len(tasks))
        logger.info(
            f"{prefix}Crawling {len(tasks)} pages with {pool_size} workers "
            f"(page timeout {per_page_timeout:g}s, deadline {overall_deadline:g}s)"
        )
        threads = [
            threading.Thread(target=worker, name=f"crawl-worker-{i}", daemon=True)
            for i in range(pool_size)
        ]
        for thread in threads:
            thread.start()

        for thread in threads:
            thread.join(timeout=max(0.0, deadline_at - self.clock()))

        if any(thread.is_alive() for thread in threads):
            stop.set()
            logger.warning(f"{prefix}Overall deadline reached, waiting for in-flight pages")
            grace_end = self.clock() + per_page_timeout
            for thread in threads:
                thread.join(timeout=max(0.0, grace_end - self.clock()))

        with lock:
            stop.set()
            self._record_deadline_failures(work, in_flight, results, prefix)
            ordered = [results[task.index] for task in sorted(tasks, key=lambda t: t.index)]

        succeeded = sum(1 for result in ordered if result.succeeded)
        logger.info(f"{prefix}Crawl finished: {succeeded}/{len(ordered)} pages succeeded")
        return ordered

    @staticmethod
    def _record_deadline_failures(
        work: "queue.Queue[PageTask]",
        in_flight: Dict[int, PageTask],
        results: Dict[int, PageResult],
        prefix: str,
    ) -> None:
        unstarted = 0
        while True:
            try:
                task = work.get_nowait()
            except queue.Empty:
                break
            unstarted += 1
            results[task.index] = PageResult.failure(
                task.model_copy(update={"attempts": 0}),
                PageOutcome.fetch_failed,
                "Audit deadline exceeded before the page was fetched",
                reason=DEADLINE_EXCEEDED,
            )

        for index, task in list(in_flight.items()):
            logger.warning(f"{prefix}Abandoning {task.url}: still running after grace period")
            results[index] = PageResult.failure(
                task.model_copy(update={"attempts": max(task.attempts, 1)}),
                PageOutcome.timed_out,
                "Page was still running when the audit deadline expired",
                reason=DEADLINE_EXCEEDED,
            )
        in_flight.clear()

        if unstarted:
            logger.warning(f"{prefix}{unstarted} pages never started before the deadline")

    def _process(self, task: PageTask, per_page_timeout: float, deadline_at: float) -> PageResult:
        attempts = task.attempts
        while True:
            attempts += 1
            current = task.model_copy(update={"attempts": attempts})
            try:
                return self._attempt(current, per_page_timeout)
            except FetchTimeout as e:
                logger.info(f"Timed out fetching {task.url}: {e.message}")
                return PageResult.failure(current, PageOutcome.timed_out, e.message)
            except FetchError as e:
                if e.transient and attempts < self.max_attempts and self.clock() < deadline_at:
                    logger.info(f"Retrying {task.url} after transient failure: {e.message}")
                    continue
                logger.info(f"Failed to fetch {task.url}: {e.message}")
                return PageResult.failure(current, PageOutcome.fetch_failed, e.message)
            except AnalysisFailed as e:
                logger.info(f"Analysis failed for {task.url}: {e}")
                return PageResult.failure(current, PageOutcome.analysis_failed, str(e))
            except Exception as e:
                # Any escape here would leave the task without a result
                logger.error(f"Unexpected error processing {task.url}: {e}", exc_info=True)
                return PageResult.failure(
                    current,
                    PageOutcome.fetch_failed,
                    f"Unexpected error: {e}",
                    reason=WORKER_ERROR,
                )

    def _attempt(self, task: PageTask, per_page_timeout: float) -> PageResult:
        """
        One fetch + analyze, bounded by `per_page_timeout`.

        Runs on a helper thread; an attempt still running when the time is
        up is aborted through the fetcher and reported as FetchTimeout.
        """
        executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="page-attempt")
        try:
            future = executor.submit(self._render_and_analyze, task, per_page_timeout)
            done, _ = wait([future], timeout=per_page_timeout)
            if not done:
                self._abandon(task, future)
                raise FetchTimeout(task.url, f"Page exceeded {per_page_timeout:g}s")
            return future.result()
        finally:
            executor.shutdown(wait=False)

    def _render_and_analyze(self, task: PageTask, per_page_timeout: float) -> PageResult:
        started = self.clock()
        page = self.fetcher.fetch(task.url, per_page_timeout)
        analysis = self.analyzer.analyze(page, deadline=started + per_page_timeout)
        return PageResult.success(task, analysis)

    def _abandon(self, task: PageTask, future: Future) -> None:
        logger.warning(f"Abandoning {task.url}: exceeded the per-page timeout")
        self.fetcher.abort(task.url)
        # The worker's slot stays taken until the aborted attempt unwinds
        wait([future], timeout=self.abandon_wait)
        if not future.done():
            logger.warning(f"{task.url} still running {self.abandon_wait:g}s after abort")
