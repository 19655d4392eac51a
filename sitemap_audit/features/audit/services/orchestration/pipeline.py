import logging
from typing import Optional

from sitemap_audit.features.audit.exceptions import (
    AuditJobNotFound,
    InvalidTransition,
    SitemapError,
)
from sitemap_audit.features.audit.models.audit_job import AuditStatus
from sitemap_audit.features.audit.schemas.audit import AuditSummary, PageTask
from sitemap_audit.features.audit.services.analysis.content_gap import ContentGapService
from sitemap_audit.features.audit.services.analysis.link_checker import LinkChecker
from sitemap_audit.features.audit.services.analysis.page_analyzer import PageAnalyzer
from sitemap_audit.features.audit.services.discovery.sitemap_resolver import SitemapResolver
from sitemap_audit.features.audit.services.orchestration.aggregator import Aggregator
from sitemap_audit.features.audit.services.orchestration.crawl_scheduler import CrawlScheduler
from sitemap_audit.features.audit.services.orchestration.state_machine import AuditStateMachine
from sitemap_audit.features.audit.services.scraping.page_fetcher import PageFetcher
from sitemap_audit.platform.config import AuditPipelineConfig

logger = logging.getLogger(__name__)


class AuditPipeline:
    """
    Sitemap URL in, terminal audit record out.

    Resolve -> crawl -> aggregate -> terminal transition. Sitemap errors
    propagate only after the job has been marked FAILED. A job that is no
    longer PENDING is never run again, so a redelivered task cannot
    reopen a finished audit. Any collaborator left out is built from the
    config.
    """

    def __init__(
        self,
        store,
        config: Optional[AuditPipelineConfig] = None,
        resolver: Optional[SitemapResolver] = None,
        scheduler: Optional[CrawlScheduler] = None,
        aggregator: Optional[Aggregator] = None,
    ):
        self.store = store
        self.config = config or AuditPipelineConfig.from_settings()
        self.resolver = resolver or SitemapResolver(
            max_pages=self.config.max_pages_per_sitemap,
            max_raw_entries=self.config.sitemap_max_raw_entries,
            timeout=self.config.sitemap_fetch_timeout,
        )
        self.scheduler = scheduler or CrawlScheduler(
            fetcher=PageFetcher(),
            analyzer=PageAnalyzer(
                link_checker=LinkChecker(
                    max_links=self.config.max_link_checks,
                    timeout=self.config.link_check_timeout,
                ),
            ),
        )
        self.aggregator = aggregator or Aggregator(
            content_gap_service=ContentGapService(timeout=self.config.content_gap_timeout),
            content_gap_timeout=self.config.content_gap_timeout,
        )

    def run(self, job_id: str, sitemap_url: str) -> AuditSummary:
        """
        Run a full audit for a job that is still PENDING.

        Raises:
            AuditJobNotFound: no job with this id
            InvalidTransition: the job already started or finished (e.g. a
                redelivered task); nothing is resolved or written
            SitemapError: the sitemap could not be resolved (job is FAILED)
        """
        job = self.store.get_audit_job(job_id)
        if job is None:
            raise AuditJobNotFound(f"Audit job {job_id} not found")
        if job.status != AuditStatus.PENDING:
            logger.warning(f"[{job_id}] Refusing to run audit: job is already {job.status.value}")
            raise InvalidTransition(job.status, AuditStatus.IN_PROGRESS)

        machine = AuditStateMachine(
            self.store,
            job_id,
            partial_threshold_ratio=self.config.partial_threshold_ratio,
            status=job.status,
        )

        logger.info(f"[{job_id}] Starting audit for {sitemap_url}")
        try:
            urls = self.resolver.resolve(sitemap_url)
        except SitemapError as e:
            logger.error(f"[{job_id}] Sitemap rejected: {e.message}")
            machine.fail(AuditSummary(
                sitemap_url=sitemap_url,
                status=AuditStatus.FAILED,
                error=e.message,
            ))
            raise

        machine.start()
        try:
            tasks = [PageTask(url=url, index=index) for index, url in enumerate(urls)]
            results = self.scheduler.run(
                tasks,
                concurrency_limit=self.config.concurrency_limit,
                per_page_timeout=self.config.per_page_timeout,
                overall_deadline=self.config.overall_deadline,
                job_id=job_id,
            )
            report = self.aggregator.aggregate(results, sitemap_url, job_id=job_id)
        except Exception as e:
            logger.error(f"[{job_id}] Audit crashed: {e}", exc_info=True)
            machine.fail(AuditSummary(
                sitemap_url=sitemap_url,
                status=AuditStatus.FAILED,
                pages_attempted=len(urls),
                error=f"Audit crashed: {e}",
            ))
            raise

        summary = machine.complete(report, sitemap_url)
        logger.info(
            f"[{job_id}] Audit finished with {summary.status.value}: "
            f"score={summary.overall_score}, "
            f"{summary.pages_succeeded}/{summary.pages_attempted} pages succeeded"
        )
        return summary
