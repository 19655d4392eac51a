"""
Audit Services

Organized by responsibility; data flows top to bottom:

1. discovery/ - Sitemap resolution
   - sitemap_resolver.py: urlset and one-level sitemap index expansion

2. scraping/ - Browser automation
   - page_fetcher.py: headless Chrome render, one driver per fetch

3. analysis/ - Per-page and site-level checks
   - page_analyzer.py: runs the rule catalogs and scores a page
   - seo_rules.py / accessibility_rules.py: the rule catalogs
   - link_checker.py: HEAD checks for same-origin links
   - url_structure.py: depth, naming and pattern analysis of the URL set
   - content_gap.py: LLM call for missing content (once per audit)

4. orchestration/ - Job coordination
   - crawl_scheduler.py: worker pool, retries, overall deadline
   - aggregator.py: job-level score, counts, top issues, content gaps
   - state_machine.py: PENDING -> IN_PROGRESS -> COMPLETED | PARTIAL | FAILED
   - pipeline.py: wires the above for one job
   - dispatch.py: validates a sitemap URL and queues the Celery task

5. persistence/ - Audit job storage
   - audit_store.py: SQLAlchemy implementation of the store
"""
