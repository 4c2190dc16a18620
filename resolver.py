import logging
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional, Tuple, Union

from config import Settings, get_settings
from contact_store import ContactStore
from db_models import Contact, LinkPrecedence
from db_setup import transaction
from errors import ConflictRetry, StorageError, ValidationError

logger = logging.getLogger(__name__)


@dataclass
class ConsolidatedIdentity:
    primary_contact_id: int
    emails: List[str] = field(default_factory=list)
    phone_numbers: List[str] = field(default_factory=list)
    secondary_contact_ids: List[int] = field(default_factory=list)


def normalize(
    email: Optional[str] = None,
    phone_number: Optional[Union[str, int]] = None,
) -> Tuple[Optional[str], Optional[str]]:
    """Trim both identifiers, lower-case the email, and drop empty values.

    Raises ValidationError when neither identifier survives.
    """
    if email is not None:
        email = email.strip().lower() or None
    if phone_number is not None:
        phone_number = str(phone_number).strip() or None

    if email is None and phone_number is None:
        raise ValidationError()
    return email, phone_number


def _dedupe(values: Iterable[Optional[str]]) -> List[str]:
    seen = []
    for value in values:
        if value and value not in seen:
            seen.append(value)
    return seen


class Resolver:
    """Matches an email/phone fragment to a person and merges clusters that collide."""

    def __init__(self, settings: Optional[Settings] = None):
        self.settings = settings or get_settings()

    def resolve(
        self,
        email: Optional[str] = None,
        phone_number: Optional[Union[str, int]] = None,
    ) -> ConsolidatedIdentity:
        email, phone_number = normalize(email, phone_number)

        attempts = self.settings.max_resolve_attempts
        for attempt in range(1, attempts + 1):
            try:
                with transaction(self.settings.database_path, self.settings.busy_timeout_seconds) as conn:
                    return self._resolve(ContactStore(conn), email, phone_number)
            except ConflictRetry as e:
                logger.warning("Resolution conflict (attempt %d/%d): %s", attempt, attempts, e)
                last_error = e

        raise StorageError(f"gave up after {attempts} conflicting attempts") from last_error

    def _resolve(self, store: ContactStore, email: Optional[str], phone_number: Optional[str]) -> ConsolidatedIdentity:
        matched = store.find_many(email=email, phone_number=phone_number)

        primary_ids = {self._top_primary_id(store, contact) for contact in matched}
        related = self._cluster(store, primary_ids)

        primaries = [c for c in related if c.is_primary]
        winner = min(primaries, key=Contact.sort_key) if primaries else None

        if winner is None:
            # every matched contact resolved to a primary above, so nothing matched
            winner = store.create(email, phone_number, LinkPrecedence.PRIMARY)
            logger.info("New primary contact %d", winner.id)

        demoted = [c.id for c in primaries if c.id != winner.id]
        for contact_id in demoted:
            store.update(contact_id, linkPrecedence=LinkPrecedence.SECONDARY, linkedId=winner.id)
        if demoted:
            logger.info("Merged primaries %s into %d", demoted, winner.id)

        if self.settings.flatten_on_merge:
            for contact in related:
                if not contact.is_primary and contact.linkedId != winner.id:
                    store.update(contact.id, linkedId=winner.id)

        final = self._cluster(store, {winner.id})

        if not any(self._matches(c, email, phone_number) for c in final):
            alias = store.create(email, phone_number, LinkPrecedence.SECONDARY, winner.id)
            logger.info("New secondary contact %d under %d", alias.id, winner.id)
            final.append(alias)

        return self._consolidate(winner, final)

    @staticmethod
    def _top_primary_id(store: ContactStore, contact: Contact) -> int:
        # follows links past primaries demoted by earlier merges
        visited = set()
        while not contact.is_primary:
            visited.add(contact.id)
            parent = store.get(contact.linkedId) if contact.linkedId is not None else None
            if parent is None or parent.id in visited:
                raise StorageError(f"contact {contact.id} has a broken link chain")
            contact = parent
        return contact.id

    @staticmethod
    def _cluster(store: ContactStore, primary_ids) -> List[Contact]:
        """The given primaries plus every contact linked to them, directly or through a chain."""
        members: Dict[int, Contact] = {}
        expanded = set()
        frontier = set(primary_ids)
        while frontier:
            for contact in store.find_many(ids=frontier, linked_ids=frontier):
                members.setdefault(contact.id, contact)
            expanded |= frontier
            frontier = {c.id for c in members.values() if c.linkedId in frontier} - expanded
        return sorted(members.values(), key=Contact.sort_key)

    @staticmethod
    def _matches(contact: Contact, email: Optional[str], phone_number: Optional[str]) -> bool:
        if email is not None and contact.email != email:
            return False
        if phone_number is not None and contact.phoneNumber != phone_number:
            return False
        return True

    @staticmethod
    def _consolidate(primary: Contact, contacts: List[Contact]) -> ConsolidatedIdentity:
        ordered = sorted(contacts, key=Contact.sort_key)
        return ConsolidatedIdentity(
            primary_contact_id=primary.id,
            emails=_dedupe([primary.email] + [c.email for c in ordered]),
            phone_numbers=_dedupe([primary.phoneNumber] + [c.phoneNumber for c in ordered]),
            secondary_contact_ids=[c.id for c in ordered if not c.is_primary],
        )
