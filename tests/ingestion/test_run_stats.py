from src.ingestion.run_stats import IngestStatistics


def stats(**kwargs):
    return IngestStatistics(**kwargs)


def test_merge_sums_fields():
    a = stats(total=5, deleted=1, reshares=2, malformed=1, decoded=3)
    b = stats(total=2, deleted=0, reshares=1, malformed=0, decoded=2)

    merged = a.merge(b)

    assert merged.counts() == {
        "total": 7,
        "deleted": 1,
        "reshares": 3,
        "malformed": 1,
        "decoded": 5,
    }
    assert a.total == 5  # operands untouched


def test_merge_is_associative_and_commutative():
    a = stats(total=3, decoded=3)
    b = stats(total=4, deleted=2, decoded=2)
    c = stats(total=1, malformed=1)

    assert a.merge(b).merge(c).counts() == a.merge(b.merge(c)).counts()
    assert a.merge(b).counts() == b.merge(a).counts()


def test_identity_element():
    a = stats(total=2, reshares=1, decoded=2)
    assert a.merge(IngestStatistics()).counts() == a.counts()
    assert IngestStatistics.combine([]).counts() == IngestStatistics().counts()


def test_failed_files_are_concatenated():
    a, b = IngestStatistics(), IngestStatistics()
    a.record_failed_file("/data/a.json", "denied")
    b.record_failed_file("/data/b.json", "missing")

    merged = IngestStatistics.combine([a, b])

    assert [f.path for f in merged.failed_files] == ["/data/a.json", "/data/b.json"]


def test_balance():
    assert stats(total=5, deleted=1, malformed=1, decoded=3).is_balanced
    assert not stats(total=5, decoded=3).is_balanced


def test_reshare_percentage():
    assert stats(total=8, reshares=2, decoded=8).reshare_percentage == 25.0
    assert IngestStatistics().reshare_percentage == 0.0


def test_summary_lines():
    lines = stats(total=4, deleted=1, reshares=1, malformed=0, decoded=3).summary_lines()
    assert lines == [
        "Number of posts: 4",
        "Number of deleted posts: 1",
        "Number of malformed posts: 0",
        "Percentage of re-shares: 25.00%",
    ]


def test_emit_summary_returns_payload():
    s = stats(total=3, reshares=1, decoded=3)
    s.record_failed_file("/data/x.json", "boom")

    summary = s.emit_summary()

    assert summary["reshare_percentage"] == 33.33
    assert summary["failed_files"] == [{"path": "/data/x.json", "error": "boom"}]
