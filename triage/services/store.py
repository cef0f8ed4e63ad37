"""
LeadStore — persistence gateway for lead documents.

Reads return immutable Lead values stamped with the stored version. Writes
are compare-and-swap: ``compare_and_swap`` only succeeds when the row still
carries the version the caller read, and bumps it by one. A stale write
raises ConcurrencyConflict and changes nothing.
"""
import logging
from typing import Callable, List, Optional

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError

from triage.errors import ConcurrencyConflict, LeadNotFound
from triage.models.db_lead import DbLead
from triage.models.lead import Lead
from triage.timestamps import utcnow

logger = logging.getLogger('services.store')


class LeadStore:

    def __init__(self, session_factory=None):
        self._session_factory = session_factory

    def _session(self):
        if self._session_factory is not None:
            return self._session_factory()
        from triage import database
        return database.get_session()

    def create(self, lead: Lead) -> Lead:
        """Insert a new lead at version 1."""
        session = self._session()
        try:
            session.add(DbLead(
                id=lead.id,
                version=1,
                status=lead.status,
                document=lead.to_dict(),
                created_at=lead.received_at or utcnow(),
                updated_at=utcnow(),
            ))
            session.commit()
        except IntegrityError:
            session.rollback()
            raise ConcurrencyConflict(lead.id, 0) from None
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()
        logger.info("Lead %s created", lead.id, extra={'lead_id': lead.id})
        return lead.evolve(version=1)

    def get(self, lead_id: str) -> Lead:
        session = self._session()
        try:
            row = session.get(DbLead, lead_id)
            if row is None:
                raise LeadNotFound(lead_id)
            # Pick up writes committed by other sessions since the last read
            session.refresh(row)
            return Lead.from_dict(row.document, version=row.version)
        finally:
            session.close()

    def compare_and_swap(self, lead_id: str, expected_version: int, lead: Lead) -> int:
        """
        Replace the stored document if its version is still ``expected_version``.

        Returns the new version. Raises ConcurrencyConflict when another
        writer got there first, LeadNotFound when the lead does not exist.
        """
        if lead.id != lead_id:
            raise ValueError(f"Lead id mismatch: {lead.id} != {lead_id}")

        session = self._session()
        try:
            result = session.execute(
                update(DbLead)
                .where(DbLead.id == lead_id, DbLead.version == expected_version)
                .values(
                    version=expected_version + 1,
                    status=lead.status,
                    document=lead.to_dict(),
                    updated_at=utcnow(),
                )
                .execution_options(synchronize_session=False)
            )
            if result.rowcount != 1:
                session.rollback()
                exists = session.execute(select(DbLead.id).where(DbLead.id == lead_id)).first()
                if exists is None:
                    raise LeadNotFound(lead_id)
                raise ConcurrencyConflict(lead_id, expected_version)
            session.commit()
        except (ConcurrencyConflict, LeadNotFound):
            raise
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

        logger.debug("Lead %s written at version %d", lead_id, expected_version + 1,
                     extra={'lead_id': lead_id})
        return expected_version + 1

    def mutate(self, lead_id: str, transition: Callable[[Lead], Lead], max_conflicts: int) -> Lead:
        """
        Read, apply ``transition``, compare-and-swap; on conflict, read again.

        The transition is re-applied to fresh state every time, so it must be
        a pure function of the lead it is given.
        """
        conflicts = 0
        while True:
            lead = self.get(lead_id)
            updated = transition(lead)
            try:
                version = self.compare_and_swap(lead_id, lead.version, updated)
                return updated.evolve(version=version)
            except ConcurrencyConflict:
                conflicts += 1
                if conflicts >= max_conflicts:
                    logger.warning("Lead %s: giving up after %d write conflicts", lead_id, conflicts,
                                   extra={'lead_id': lead_id})
                    raise
                logger.info("Lead %s: write conflict at version %d, retrying", lead_id, lead.version,
                            extra={'lead_id': lead_id})

    def list_leads(self, status: Optional[str] = None, limit: Optional[int] = None) -> List[Lead]:
        session = self._session()
        try:
            query = session.query(DbLead)
            if status:
                query = query.filter(DbLead.status == status)
            query = query.order_by(DbLead.created_at.desc())
            if limit:
                query = query.limit(limit)
            return [Lead.from_dict(row.document, version=row.version) for row in query.all()]
        finally:
            session.close()
