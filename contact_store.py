from datetime import datetime, timezone
from typing import Iterable, List, Optional

from db_models import Contact, LinkPrecedence
from errors import StorageError

# Demotion is the only mutation a stored contact ever sees.
_UPDATABLE_FIELDS = ("linkPrecedence", "linkedId")


def _now() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="microseconds")


def _placeholders(values) -> str:
    return ", ".join("?" for _ in values)


class ContactStore:
    """Contact table access bound to a single open transaction."""

    def __init__(self, conn):
        self.conn = conn

    def find_many(
        self,
        email: Optional[str] = None,
        phone_number: Optional[str] = None,
        ids: Optional[Iterable[int]] = None,
        linked_ids: Optional[Iterable[int]] = None,
    ) -> List[Contact]:
        """Contacts matching ANY of the given clauses, oldest first.

        A clause whose value is None (or an empty id list) is left out; with no
        clauses at all nothing matches.
        """
        clauses = []
        params = []

        if email is not None:
            clauses.append("email = ?")
            params.append(email)
        if phone_number is not None:
            clauses.append("phoneNumber = ?")
            params.append(phone_number)
        ids = sorted(set(ids or ()))
        if ids:
            clauses.append(f"id IN ({_placeholders(ids)})")
            params.extend(ids)
        linked_ids = sorted(set(linked_ids or ()))
        if linked_ids:
            clauses.append(f"linkedId IN ({_placeholders(linked_ids)})")
            params.extend(linked_ids)

        if not clauses:
            return []

        query = f"""
            SELECT * FROM Contact
            WHERE deletedAt IS NULL
            AND ({" OR ".join(clauses)})
            ORDER BY id ASC
        """
        cursor = self.conn.execute(query, params)
        # stored timestamps may mix formats, so seniority is ordered after parsing
        contacts = [Contact(**dict(row)) for row in cursor.fetchall()]
        return sorted(contacts, key=Contact.sort_key)

    def find_first(self, **filters) -> Optional[Contact]:
        contacts = self.find_many(**filters)
        return contacts[0] if contacts else None

    def get(self, contact_id: int) -> Optional[Contact]:
        return self.find_first(ids=[contact_id])

    def create(
        self,
        email: Optional[str] = None,
        phone_number: Optional[str] = None,
        link_precedence: LinkPrecedence = LinkPrecedence.PRIMARY,
        linked_id: Optional[int] = None,
    ) -> Contact:
        if email is None and phone_number is None:
            raise StorageError("refusing to store a contact with no email or phone")
        if (link_precedence == LinkPrecedence.PRIMARY) != (linked_id is None):
            raise StorageError("primary contacts carry no link; secondaries must")

        now = _now()
        cursor = self.conn.execute("""
            INSERT INTO Contact (phoneNumber, email, linkedId, linkPrecedence, createdAt, updatedAt)
            VALUES (?, ?, ?, ?, ?, ?)
        """, (phone_number, email, linked_id, link_precedence.value, now, now))
        return self.get(cursor.lastrowid)

    def update(self, contact_id: int, **fields) -> Contact:
        unknown = set(fields) - set(_UPDATABLE_FIELDS)
        if unknown:
            raise StorageError(f"fields are immutable: {', '.join(sorted(unknown))}")
        if not fields:
            raise StorageError("nothing to update")

        values = {
            key: value.value if isinstance(value, LinkPrecedence) else value
            for key, value in fields.items()
        }
        assignments = ", ".join(f"{key} = ?" for key in values)
        cursor = self.conn.execute(
            f"UPDATE Contact SET {assignments}, updatedAt = ? WHERE id = ? AND deletedAt IS NULL",
            (*values.values(), _now(), contact_id),
        )
        if cursor.rowcount == 0:
            raise StorageError(f"contact {contact_id} does not exist")
        return self.get(contact_id)
