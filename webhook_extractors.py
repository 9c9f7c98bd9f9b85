"""Contact extraction from marketing-platform webhook payloads.

The platform sends several payload shapes depending on the event. Each
extractor below handles one shape and returns ``(email, name)`` or ``None``;
:func:`extract_contact` tries them in order and returns the first hit.
Emails are lower-cased and trimmed. When no name is present the local part
of the email is used.
"""

from typing import Any, Callable, Mapping, Optional, Sequence, Tuple

Contact = Tuple[str, str]
Extractor = Callable[[Any], Optional[Contact]]


def _clean_email(value: Any) -> Optional[str]:
    if not isinstance(value, str):
        return None
    email = value.strip().lower()
    return email if '@' in email else None


def _person_name(record: Mapping[str, Any], email: str) -> str:
    name = record.get('name') or record.get('full_name')
    if not name:
        parts = [record.get('first_name'), record.get('last_name')]
        name = ' '.join(p.strip() for p in parts if isinstance(p, str) and p.strip())
    if isinstance(name, str) and name.strip():
        return name.strip()
    return email.split('@', 1)[0]


def _from_record(record: Any) -> Optional[Contact]:
    if not isinstance(record, Mapping):
        return None
    email = _clean_email(record.get('email'))
    if email is None:
        return None
    return email, _person_name(record, email)


def _nested(*path: str) -> Extractor:
    def extractor(payload: Any) -> Optional[Contact]:
        node = payload
        for key in path:
            if not isinstance(node, Mapping):
                return None
            node = node.get(key)
        return _from_record(node)

    extractor.__name__ = 'from_' + '_'.join(path)
    return extractor


from_customer = _nested('customer')
from_contact = _nested('contact')
from_member = _nested('member')
from_data_customer = _nested('data', 'customer')
from_data_attributes = _nested('data', 'attributes')
from_payload = _nested('payload')
from_top_level = _from_record

EXTRACTORS: Sequence[Extractor] = (
    from_customer,
    from_contact,
    from_member,
    from_data_customer,
    from_data_attributes,
    from_payload,
    from_top_level,
)


def extract_contact(payload: Any, extractors: Sequence[Extractor] = EXTRACTORS) -> Optional[Contact]:
    for extractor in extractors:
        contact = extractor(payload)
        if contact is not None:
            return contact
    return None
