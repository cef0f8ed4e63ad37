"""
Mock collaborators — canned classifier, generator and matcher for local runs.

Activated with MOCK_PIPELINE=1 env var. Every OpenAI call is replaced with
keyword rules over the submission, so a lead flows end to end through
research, classification, reply and decision without network access. Also
used by the test suite.
"""
import logging
import random
import time
from typing import List

from triage.models.classification import Classification
from triage.models.lead import Lead, MatchedReference
from triage.pipeline.base import (
    Classifier, ContentGenerator, ResearchReport, ClassifierVerdict, GeneratedContent,
)
from triage.pipeline.matching import CatalogReferenceMatcher

logger = logging.getLogger('pipeline.mock')


# ── Fake reference data ──────────────────────────────────────────────────────

MOCK_CUSTOMER_DOMAINS = {'acme.com', 'globex.com', 'initech.com'}

MOCK_REFERENCES = [
    {'id': 'ref-001', 'company': 'Northwind Bank', 'industry': 'Finance & Insurance',
     'url': 'https://example.com/customers/northwind'},
    {'id': 'ref-002', 'company': 'Contoso Health', 'industry': 'Healthcare',
     'url': 'https://example.com/customers/contoso'},
    {'id': 'ref-003', 'company': 'Tailspin Software', 'industry': 'Software',
     'url': 'https://example.com/customers/tailspin'},
    {'id': 'ref-004', 'company': 'Fabrikam Retail', 'industry': 'Retail',
     'url': 'https://example.com/customers/fabrikam'},
]

_INDUSTRY_KEYWORDS = [
    ('bank', 'Finance & Insurance'),
    ('insurance', 'Finance & Insurance'),
    ('health', 'Healthcare'),
    ('clinic', 'Healthcare'),
    ('shop', 'Retail'),
    ('store', 'Retail'),
    (' ai', 'AI'),
    ('energy', 'Energy & Utilities'),
    ('media', 'Media'),
    ('software', 'Software'),
]

_SUPPORT_KEYWORDS = ('error', 'broken', 'bug', 'help with', 'not working', 'password', 'refund')
_HIGH_VALUE_KEYWORDS = ('enterprise', 'demo', 'pricing', 'migrate', 'team of', 'evaluate', 'budget')


def _simulate_delay(delay: float):
    """Small delay to simulate API latency."""
    if delay:
        time.sleep(random.uniform(delay / 2, delay))


def _text(lead: Lead) -> str:
    s = lead.submission
    return f" {s.company} {s.message} ".lower()


class MockClassifier(Classifier):

    def __init__(self, delay: float = 0.0):
        self.delay = delay

    def research(self, lead: Lead) -> ResearchReport:
        _simulate_delay(self.delay)
        text = _text(lead)
        industry = next((name for keyword, name in _INDUSTRY_KEYWORDS if keyword in text), 'Software')
        report = (f"[MOCK] {lead.submission.company} appears to be a {industry} company. "
                  f"{lead.submission.name} wrote in about: {lead.submission.message[:120]}")
        return ResearchReport(report=report, industry=industry)

    def classify(self, lead: Lead, report: str) -> ClassifierVerdict:
        _simulate_delay(self.delay)
        text = _text(lead)
        if lead.submission.email_domain in MOCK_CUSTOMER_DOMAINS:
            return ClassifierVerdict(Classification.EXISTING, 0.97,
                                     '[MOCK] Email domain belongs to a current customer', existing_customer=True)
        if any(k in text for k in _SUPPORT_KEYWORDS):
            return ClassifierVerdict(Classification.SUPPORT, 0.93, '[MOCK] Message describes a product problem')
        if any(k in text for k in _HIGH_VALUE_KEYWORDS):
            return ClassifierVerdict(Classification.HIGH_QUALITY, 0.99, '[MOCK] Buying intent and company fit')
        return ClassifierVerdict(Classification.LOW_QUALITY, 0.72, '[MOCK] No clear buying intent')


class MockContentGenerator(ContentGenerator):

    def __init__(self, delay: float = 0.0):
        self.delay = delay

    def generate(self, lead: Lead, report: str, classification: Classification,
                 references: List[MatchedReference]) -> GeneratedContent:
        _simulate_delay(self.delay)
        first_name = lead.submission.name.split()[0]
        body = (f"Hi {first_name},\n\nThanks for reaching out about {lead.submission.company}. "
                "I'd love to set up a short call to walk through how we can help.")
        mentioned = []
        if references:
            body += f"\n\nTeams like {references[0].company} use us for exactly this."
            mentioned.append(references[0].company)
        return GeneratedContent(body=body + "\n\nBest,\nThe Team", references=tuple(mentioned))


def mock_reference_matcher() -> CatalogReferenceMatcher:
    return CatalogReferenceMatcher(MOCK_REFERENCES)
