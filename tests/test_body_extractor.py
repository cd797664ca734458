from datetime import UTC, datetime

import pytest

from body_extractor import extract_records, extract_thread_records, is_paper_link, truncate_at_footer
from models import Message, RecordType, Thread

SENT = datetime(2025, 6, 8, 9, 30, tzinfo=UTC)

# Trimmed from a real "new citations" alert.
ALERT_BODY = (
    '<div><h3><a href="https://scholar.google.com/scholar_url?url=https://search.ebscohost.com/login.aspx'
    '%3Fdirect%3Dtrue%26profile%3Dehost%26AN%3D185173680%26crl%3Dc&amp;hl=en&amp;sa=X&amp;oi=scholaralrt'
    '&amp;pos=1&amp;folt=cit" class="gse_alrt_title" style="font-size:17px" target="_blank"'
    ' data-saferedirecturl="https://www.google.com/url?q=https://scholar.google.com/scholar_url?url%3D">'
    "From Code Analysis to Fault Localization: A Survey of Graph Neural Network Applications in"
    " Software Engineering.</a></h3>"
    "<div>J Doe, R Roe - SAGE Open, 2025</div>"
    "<a href='https://scholar.google.com/scholar_url?url=https%3A%2F%2Farxiv.org%2Fabs%2F2501.00001&amp;hl=en'>"
    "  Attention   Is &amp; Was All You Need </a>"
    '<a href="https://scholar.google.com/scholar_settings?hl=en">Settings</a>'
    '<a href="https://example.org/not-scholar">Unrelated</a>'
    "</div>"
    "<p>This message was sent by Google Scholar because you're following new citations.</p>"
    '<a href="https://scholar.google.com/scholar_url?url=https%3A%2F%2Fexample.com%2Ffooter">Footer paper</a>'
)


def _extract(body: str = ALERT_BODY):
    return extract_records(body, author="Jane Roe", record_type=RecordType.CITATION, date=SENT)


def test_extracts_paper_links_before_footer() -> None:
    records = _extract()

    assert [r.title for r in records] == [
        "From Code Analysis to Fault Localization: A Survey of Graph Neural Network "
        "Applications in Software Engineering.",
        "Attention Is & Was All You Need",
    ]
    assert records[0].link == (
        "https://search.ebscohost.com/login.aspx?direct=true&profile=ehost&AN=185173680&crl=c"
    )
    assert records[1].link == "https://arxiv.org/abs/2501.00001"


def test_records_carry_thread_metadata() -> None:
    for record in _extract():
        assert record.author == "Jane Roe"
        assert record.type is RecordType.CITATION
        assert record.date == SENT


def test_without_footer_whole_body_is_scanned() -> None:
    body = ALERT_BODY.replace("This message was sent by Google Scholar", "Sent to you")
    titles = [r.title for r in _extract(body)]
    assert "Footer paper" in titles


def test_anchor_with_nested_markup_is_not_matched() -> None:
    body = (
        '<a href="https://scholar.google.com/scholar_url?url=https%3A%2F%2Fx.org">'
        '<span class="il">Nested</span> title</a>'
    )
    assert _extract(body) == []


def test_truncate_at_footer() -> None:
    assert truncate_at_footer("abc This message was sent by Google Scholar xyz") == "abc "
    assert truncate_at_footer("no footer") == "no footer"


@pytest.mark.parametrize(("url", "expected"), [
    ("https://scholar.google.com/scholar_url?url=https%3A%2F%2Fx.org", True),
    ("https://scholar.google.com/scholar_settings?hl=en", False),
    ("https://scholar.google.com/scholar_alerts?view_op=list_alerts", False),
    ("https://support.google.com/scholar/?p=scholar_alerts&scholar.google.com", False),
    ("https://accounts.google.com/ServiceLogin?continue=scholar.google.com", False),
    ("https://arxiv.org/abs/2501.00001", False),
])
def test_is_paper_link(url: str, expected: bool) -> None:
    assert is_paper_link(url) is expected


def test_denylist_applies_to_wrapper_not_destination() -> None:
    url = "https://scholar.google.com/scholar_url?url=https%3A%2F%2Fsupport.google.com%2Fpaper"
    assert is_paper_link(url) is False
    url = "https://scholar.google.com/scholar_url?url=https%3A%2F%2Fmail.example.com%2Fpaper"
    assert is_paper_link(url) is True


def test_extract_thread_records_uses_subject_and_latest_message() -> None:
    older = Message(body="<p>old</p>", sent_date=datetime(2025, 6, 1, tzinfo=UTC))
    latest = Message(body=ALERT_BODY, sent_date=SENT)
    thread = Thread(subject="John Doe - new related research", messages=[older, latest])

    records = extract_thread_records([thread])

    assert len(records) == 2
    assert {r.author for r in records} == {"John Doe"}
    assert {r.type for r in records} == {RecordType.RELATED_RESEARCH}
    assert {r.date for r in records} == {SENT}


def test_extract_thread_records_skips_broken_thread(caplog: pytest.LogCaptureFixture) -> None:
    broken = Thread(subject="X - new articles", messages=[])
    good = Thread(subject="X - new articles", messages=[Message(body=ALERT_BODY, sent_date=SENT)])

    records = extract_thread_records([broken, good])

    assert len(records) == 2
    assert "Error processing thread 1" in caplog.text
