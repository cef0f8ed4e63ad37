"""
OpenAI-backed collaborators — research, classification, reply generation.

Timeouts, connection errors, rate limits and 5xx responses surface as
TransientCollaboratorError so the pipeline manager can retry the stage. A
classification outside the closed set surfaces as InvalidClassificationError
(from ClassifierVerdict) and is never retried.
"""
import json
import logging
from typing import Any, Dict, List

import openai

from triage import extensions
from triage.config import OPENAI_MODEL, OPENAI_TIMEOUT_SECONDS, INDUSTRIES
from triage.errors import TransientCollaboratorError
from triage.models.classification import Classification
from triage.models.lead import Lead, MatchedReference
from triage.pipeline.base import (
    Classifier, ContentGenerator, ResearchReport, ClassifierVerdict, GeneratedContent,
)

logger = logging.getLogger('services.openai')

_TRANSIENT_ERRORS = (
    openai.APITimeoutError,
    openai.APIConnectionError,
    openai.RateLimitError,
    openai.InternalServerError,
)


def _chat_json(prompt: str, collaborator: str, temperature: float = 0.2) -> Dict[str, Any]:
    """One JSON-mode chat completion; returns the parsed object."""
    client = extensions.openai_client
    if client is None:
        raise RuntimeError("OPENAI_API_KEY not set — cannot call OpenAI")
    try:
        response = client.chat.completions.create(
            model=OPENAI_MODEL,
            messages=[{"role": "user", "content": prompt}],
            response_format={"type": "json_object"},
            temperature=temperature,
            timeout=OPENAI_TIMEOUT_SECONDS,
        )
    except _TRANSIENT_ERRORS as e:
        raise TransientCollaboratorError(collaborator, str(e)) from e

    try:
        data = json.loads(response.choices[0].message.content)
    except (TypeError, ValueError, IndexError) as e:
        raise TransientCollaboratorError(collaborator, f"unparseable response: {e}") from e
    if not isinstance(data, dict):
        raise TransientCollaboratorError(collaborator, "response is not a JSON object")
    return data


def _describe(lead: Lead) -> str:
    s = lead.submission
    return f"Name: {s.name}\nEmail: {s.email}\nCompany: {s.company}\nMessage: {s.message}"


RESEARCH_PROMPT = """You are researching an inbound sales lead who filled in our contact form.

{lead}

Write a short research report covering who the person is, what the company
does, its approximate size, and what they are asking for. Say whether they
look like an existing customer asking for help.

Pick the company's industry from exactly this list, or null if none fits:
{industries}

Respond in JSON:
{{
  "report": "4-8 sentence research report",
  "industry": "one of the listed industries or null"
}}"""

CLASSIFY_PROMPT = """Classify this inbound lead.

{lead}

Research report:
{report}

Classifications:
- high-quality: a company with real buying intent worth a meeting offer
- low-quality: no clear intent, too small, students, vendors, spam
- support: a product question or problem from a user
- existing: someone from a company that is already a customer

Respond in JSON:
{{
  "classification": "high-quality | low-quality | support | existing",
  "confidence": 0.0-1.0,
  "reasoning": "1-3 sentences",
  "existing_customer": true/false
}}"""

REPLY_PROMPT = """Write a reply email to this inbound lead, classified as {classification}.

{lead}

Research report:
{report}
{references}
Keep it under 150 words, friendly and specific to what they asked. Offer a
short call. Do not invent facts about our product.

Respond in JSON:
{{
  "body": "the email body, plain text",
  "references": ["names of reference customers you mentioned, if any"]
}}"""


class OpenAIClassifier(Classifier):

    def research(self, lead: Lead) -> ResearchReport:
        data = _chat_json(RESEARCH_PROMPT.format(lead=_describe(lead), industries=', '.join(INDUSTRIES)),
                          'classifier')
        return ResearchReport(report=str(data.get('report') or ''), industry=data.get('industry'))

    def classify(self, lead: Lead, report: str) -> ClassifierVerdict:
        data = _chat_json(CLASSIFY_PROMPT.format(lead=_describe(lead), report=report or '(none)'),
                          'classifier', temperature=0.0)
        logger.debug("Lead %s raw classification: %s", lead.id, data)
        return ClassifierVerdict(
            classification=data.get('classification'),
            confidence=data.get('confidence'),
            reasoning=str(data.get('reasoning') or ''),
            existing_customer=bool(data.get('existing_customer', False)),
        )


class OpenAIContentGenerator(ContentGenerator):

    def generate(self, lead: Lead, report: str, classification: Classification,
                 references: List[MatchedReference]) -> GeneratedContent:
        refs = ''
        if references:
            refs = "\nReference customers you may mention:\n" + '\n'.join(
                f"- {r.company} ({r.industry})" for r in references) + '\n'
        data = _chat_json(REPLY_PROMPT.format(classification=classification.value, lead=_describe(lead),
                                              report=report or '(none)', references=refs),
                          'content generator', temperature=0.7)
        mentioned = data.get('references') or []
        return GeneratedContent(body=str(data.get('body') or ''),
                                references=tuple(str(m) for m in mentioned if m))
