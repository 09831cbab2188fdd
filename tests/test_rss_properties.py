"""Property-based tests for feed parsing order."""

from datetime import UTC, datetime
from email.utils import format_datetime

from hypothesis import given, settings
from hypothesis import strategies as st

from feed_relay.rss import FeedParser

dates = st.one_of(
    st.none(),
    st.datetimes(
        min_value=datetime(1990, 1, 1),
        max_value=datetime(2090, 1, 1),
        timezones=st.just(UTC),
    ).map(lambda dt: dt.replace(microsecond=0)),
)


def build_feed(entries):
    items = []
    for index, (title, published) in enumerate(entries):
        title_xml = f"<title>{title}</title>" if title else ""
        date_xml = (
            f"<pubDate>{format_datetime(published)}</pubDate>" if published else ""
        )
        items.append(
            f"<item>{title_xml}<link>https://example.com/{index}</link>"
            f"<guid>guid-{index}</guid>{date_xml}</item>"
        )
    return (
        '<?xml version="1.0" encoding="UTF-8"?><rss version="2.0"><channel>'
        "<title>Generated</title>" + "".join(items) + "</channel></rss>"
    )


class TestFeedParserProperties:
    """Property-based tests for FeedParser ordering and filtering."""

    @settings(max_examples=50, deadline=None)
    @given(st.lists(st.tuples(st.sampled_from(["Story", "News", ""]), dates), max_size=12))
    def test_items_are_newest_first_with_undated_last(self, entries):
        """Dated items come out in non-increasing order, undated ones after them."""
        items = FeedParser().parse(build_feed(entries))

        published = [item.published for item in items]
        dated = [value for value in published if value is not None]
        assert dated == sorted(dated, reverse=True)
        assert published[: len(dated)] == dated

    @settings(max_examples=50, deadline=None)
    @given(st.lists(st.tuples(st.sampled_from(["Story", ""]), dates), max_size=12))
    def test_untitled_items_are_excluded(self, entries):
        """Only titled entries survive parsing."""
        items = FeedParser().parse(build_feed(entries))

        expected = sorted(
            f"guid-{index}" for index, (title, _) in enumerate(entries) if title
        )
        assert sorted(item.guid for item in items) == expected
        assert all(item.title for item in items)
