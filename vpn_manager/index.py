"""
Parser for the CA tool's certificate index (pki/index.txt).

Each line is one issued certificate, tab separated:

    status  expiry  revocation[,reason]  serial  filename  subject-DN

``status`` is ``V`` (valid), ``R`` (revoked) or ``E`` (expired). Dates use
the OpenSSL ``YYMMDDHHMMSSZ`` form and the subject is a slash-separated DN
such as ``/CN=alice``.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Dict, List, Optional

STATUS_VALID = 'V'
STATUS_REVOKED = 'R'
STATUS_EXPIRED = 'E'

STATUS_NAMES = {
    STATUS_VALID: 'valid',
    STATUS_REVOKED: 'revoked',
    STATUS_EXPIRED: 'expired'
}


@dataclass
class IndexRecord:
    """One certificate entry from index.txt"""
    status: str
    expiry: str
    revocation: str
    serial: str
    filename: str
    subject: str

    @property
    def common_name(self) -> Optional[str]:
        return parse_subject(self.subject).get('CN')

    @property
    def revoked(self) -> bool:
        return self.status == STATUS_REVOKED

    @property
    def status_name(self) -> str:
        return STATUS_NAMES.get(self.status, 'unknown')

    @property
    def expires_at(self) -> Optional[datetime]:
        return parse_timestamp(self.expiry)


def parse_subject(subject: str) -> Dict[str, str]:
    """Split '/C=US/O=Org/CN=alice' into {'C': 'US', 'O': 'Org', 'CN': 'alice'}"""
    fields = {}
    for part in subject.split('/'):
        if '=' not in part:
            continue
        key, value = part.split('=', 1)
        fields[key.strip()] = value.strip()
    return fields


def parse_timestamp(value: str) -> Optional[datetime]:
    """Parse an OpenSSL index timestamp (UTCTime or GeneralizedTime)"""
    value = value.split(',', 1)[0].strip()
    for fmt in ('%y%m%d%H%M%SZ', '%Y%m%d%H%M%SZ'):
        try:
            return datetime.strptime(value, fmt)
        except ValueError:
            continue
    return None


def _parse_line(line: str) -> Optional[IndexRecord]:
    fields = line.split('\t')
    if len(fields) >= 6:
        status, expiry, revocation, serial, filename = fields[:5]
        subject = '\t'.join(fields[5:])
    else:
        # Tabs lost (e.g. hand-edited file): an empty revocation column collapses
        fields = line.split()
        if not fields:
            return None
        if fields[0] == STATUS_REVOKED and len(fields) >= 6:
            status, expiry, revocation, serial, filename = fields[:5]
            subject = ' '.join(fields[5:])
        elif len(fields) >= 5:
            status, expiry, serial, filename = fields[:4]
            revocation = ''
            subject = ' '.join(fields[4:])
        else:
            return None

    if status not in STATUS_NAMES:
        return None

    return IndexRecord(status, expiry.strip(), revocation.strip(),
                       serial.strip(), filename.strip(), subject.strip())


def parse_index(text: str) -> List[IndexRecord]:
    """Parse index.txt contents; malformed lines are skipped"""
    records = []
    for line in text.splitlines():
        if not line.strip():
            continue
        record = _parse_line(line)
        if record is not None:
            records.append(record)
    return records


def latest_records(records: List[IndexRecord]) -> Dict[str, IndexRecord]:
    """
    Map each common name to its most recent record.

    A name can appear several times when it was revoked and issued again;
    the last line wins. Keys keep first-seen order.
    """
    latest = {}
    for record in records:
        name = record.common_name
        if name is None:
            continue
        latest[name] = record
    return latest


def is_revoked(records: List[IndexRecord], name: str) -> bool:
    record = latest_records(records).get(name)
    return record is not None and record.revoked
