"""
Notifications — Slack webhook integration for pipeline and lead events.

Notification failure never blocks the pipeline or a lead action.
"""
import logging
import requests

from triage.config import SLACK_WEBHOOK_URL

logger = logging.getLogger('services.notifications')


def _post(blocks):
    requests.post(SLACK_WEBHOOK_URL, json={"blocks": blocks}, timeout=10)


def notify_pipeline_failed(lead_id: str, stage: str, error: Exception):
    """Post a pipeline failure alert to Slack."""
    if not SLACK_WEBHOOK_URL:
        return

    try:
        blocks = [
            {
                "type": "header",
                "text": {"type": "plain_text", "text": "Lead Pipeline FAILED"},
            },
            {
                "type": "section",
                "fields": [
                    {"type": "mrkdwn", "text": f"*Lead:* `{lead_id}`"},
                    {"type": "mrkdwn", "text": f"*Stage:* {stage}"},
                ]
            },
            {
                "type": "section",
                "text": {"type": "mrkdwn", "text": f"*Error:* ```{str(error)[:500]}```"}
            },
        ]
        _post(blocks)
        logger.info("Failure notification sent for lead %s", lead_id)

    except Exception:
        logger.error("Failed to send failure notification for lead %s", lead_id, exc_info=True)


def notify_lead_rerouted(lead):
    """Tell the team a finished lead came back, and why."""
    if not SLACK_WEBHOOK_URL or lead.reroute is None:
        return

    try:
        reroute = lead.reroute
        original = reroute.original_classification.value if reroute.original_classification else 'none'
        blocks = [
            {
                "type": "header",
                "text": {"type": "plain_text",
                         "text": f"Lead Rerouted by {reroute.source.capitalize()} — {lead.submission.company}"},
            },
            {
                "type": "section",
                "fields": [
                    {"type": "mrkdwn", "text": f"*Was:* {original} ({reroute.previous_outcome or 'n/a'})"},
                    {"type": "mrkdwn", "text": f"*Now:* {lead.status}"},
                ]
            },
            {
                "type": "section",
                "text": {"type": "mrkdwn", "text": f"_{reroute.reason[:500]}_"}
            },
        ]
        _post(blocks)
        logger.info("Reroute notification sent for lead %s", lead.id)

    except Exception:
        logger.error("Failed to send reroute notification for lead %s", lead.id, exc_info=True)
