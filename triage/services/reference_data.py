"""
Reference data — reference customers for reply matching and the CRM
customer directory used to spot existing customers at submission.

Both lists live in reference_data.yaml (path overridable with
REFERENCE_DATA_PATH). A missing or unreadable file leaves both empty: no
references are matched and no submission is treated as a customer.
"""
import copy
import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

import yaml

from triage.config import REFERENCE_DATA_PATH
from triage.models.lead import Submission

logger = logging.getLogger('services.reference_data')

_reference_data = None


def load_reference_data() -> Dict[str, List[Dict[str, Any]]]:
    """Load reference customers and CRM customers from YAML, with in-memory cache."""
    global _reference_data
    if _reference_data is None:
        try:
            with open(REFERENCE_DATA_PATH, 'r') as f:
                data = yaml.safe_load(f) or {}
            _reference_data = {
                'references': list(data.get('references') or []),
                'customers': list(data.get('customers') or []),
            }
            logger.info("Reference data loaded: %d references, %d customers",
                        len(_reference_data['references']), len(_reference_data['customers']))
        except (OSError, yaml.YAMLError) as e:
            logger.warning("Reference data YAML unavailable (%s), matching and customer lookup disabled", e)
            _reference_data = {'references': [], 'customers': []}
    return copy.deepcopy(_reference_data)


def reference_catalog() -> List[Dict[str, Any]]:
    return load_reference_data()['references']


@dataclass(frozen=True)
class CustomerMatch:
    customer_id: str
    company: str
    reason: str
    account_team: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            'customer_id': self.customer_id,
            'company': self.company,
            'reason': self.reason,
            'account_team': self.account_team,
        }


def _normalize(value: str) -> str:
    return (value or '').strip().lower()


class CustomerDirectory:
    """
    Deterministic existing-customer lookup over CRM records.

    A submission matches on its exact contact email first, then on the
    company name, then on its email domain.
    """

    def __init__(self, customers: Optional[List[Dict[str, Any]]] = None):
        self.customers = customers if customers is not None else load_reference_data()['customers']

    def _match(self, record: Dict[str, Any], reason: str) -> CustomerMatch:
        return CustomerMatch(customer_id=record['id'], company=record['company'], reason=reason,
                             account_team=record.get('account_team'))

    def find(self, submission: Submission) -> Optional[CustomerMatch]:
        email = _normalize(submission.email)
        company = _normalize(submission.company)
        domain = submission.email_domain

        for record in self.customers:
            if email in {_normalize(c) for c in record.get('contacts') or []}:
                return self._match(record, 'Exact email match')
        for record in self.customers:
            if company and company == _normalize(record.get('company')):
                return self._match(record, 'Company name match')
        for record in self.customers:
            if domain in {_normalize(d) for d in record.get('domains') or []}:
                return self._match(record, 'Email domain matches existing customer')
        return None
