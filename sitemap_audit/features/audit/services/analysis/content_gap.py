import json
import logging
import os
import re
from typing import Any, Dict, List, Optional
from urllib.parse import urlparse

from openai import OpenAI
from pydantic import ValidationError

from sitemap_audit.features.audit.exceptions import ContentGapError
from sitemap_audit.features.audit.schemas.audit import ContentGap, ContentGapReport
from sitemap_audit.features.audit.services.analysis.url_structure import is_homepage
from sitemap_audit.platform.config import settings

logger = logging.getLogger(__name__)

PROMPT_PATH = os.path.join(
    os.path.dirname(__file__), "../../utils/CONTENT_GAP_PROMPT.md"
)

# Pages listed verbatim in the prompt; the rest are only counted
MAX_PROMPT_PAGES = 50
MAX_PROMPT_HEADINGS = 5

_JSON_OBJECT_RE = re.compile(r"\{[\s\S]*\}")


def load_prompt_template() -> str:
    with open(PROMPT_PATH, "r") as f:
        return f.read()


class ContentGapService:
    """
    Asks an LLM (through OpenRouter) which pages the audited site is missing.

    One call per audit. Errors are raised to the caller, which decides
    how much a failure matters.
    """

    def __init__(
        self,
        client: Optional[OpenAI] = None,
        model: Optional[str] = None,
        timeout: float = 90,
    ):
        self.model = model or settings.CONTENT_GAP_MODEL
        self.timeout = timeout
        self.client = client or OpenAI(
            base_url=settings.OPENROUTER_BASE_URL,
            api_key=settings.OPENROUTER_API_KEY,
            timeout=timeout,
            max_retries=0,
        )

    def analyze_content_gaps(self, pages: List[Dict[str, Any]]) -> ContentGapReport:
        """
        Identify content gaps for a set of audited pages.

        Args:
            pages: dicts with url, title and headings for each successful page

        Returns:
            ContentGapReport with the gaps in the order the model listed them

        Raises:
            ContentGapError: the response had no usable JSON
        """
        if not pages:
            return ContentGapReport()

        prompt = self._build_prompt(pages)
        logger.info(f"Requesting content gap analysis for {len(pages)} pages")

        completion = self.client.chat.completions.create(
            model=self.model,
            messages=[{"role": "user", "content": prompt}],
            timeout=self.timeout,
        )
        text = completion.choices[0].message.content or ""

        report = self.parse_response(text)
        logger.info(f"Identified {len(report.gaps)} content gaps")
        return report

    @staticmethod
    def _build_prompt(pages: List[Dict[str, Any]]) -> str:
        lines = []
        for page in pages[:MAX_PROMPT_PAGES]:
            line = page["url"]
            if is_homepage(page["url"]):
                line += " (homepage)"
            if page.get("title"):
                line += f" | {page['title']}"
            headings = page.get("headings") or []
            if headings:
                line += " | " + "; ".join(headings[:MAX_PROMPT_HEADINGS])
            lines.append(f"- {line}")
        if len(pages) > MAX_PROMPT_PAGES:
            lines.append(f"... and {len(pages) - MAX_PROMPT_PAGES} more pages")

        return load_prompt_template().format(
            domain=urlparse(pages[0]["url"]).netloc,
            total_pages=len(pages),
            pages="\n".join(lines),
        )

    @staticmethod
    def parse_response(text: str) -> ContentGapReport:
        cleaned_text = text.strip()
        if cleaned_text.startswith("```"):
            cleaned_text = "\n".join(cleaned_text.split("\n")[1:-1])

        match = _JSON_OBJECT_RE.search(cleaned_text)
        if not match:
            raise ContentGapError("Content gap response contained no JSON object")

        try:
            payload = json.loads(match.group(0))
        except json.JSONDecodeError as e:
            raise ContentGapError(f"Content gap response is not valid JSON: {e}") from e

        if not isinstance(payload, dict) or not isinstance(payload.get("gaps", []), list):
            raise ContentGapError("Content gap response has an unexpected shape")

        gaps = []
        for item in payload.get("gaps", []):
            try:
                gaps.append(ContentGap.model_validate(item))
            except ValidationError as e:
                logger.warning(f"Dropping malformed content gap: {e.errors()[0]['msg']}")

        summary = payload.get("summary")
        return ContentGapReport(
            gaps=gaps,
            summary=summary if isinstance(summary, str) and summary.strip() else None,
        )
