import textwrap
from datetime import datetime, timezone

import pytest

from cplanet.config import PlanetConfig
from cplanet.models import FeedConfig, FeedResult, OutputConfig, Post

RSS_DOCUMENT = textwrap.dedent(
    """\
    <?xml version="1.0" encoding="UTF-8"?>
    <rss version="2.0"
         xmlns:dc="http://purl.org/dc/elements/1.1/"
         xmlns:content="http://purl.org/rss/1.0/modules/content/">
      <channel>
        <title>Alice's Blog</title>
        <link>https://alice.example/</link>
        <description>Notes</description>
        <item>
          <title>Second post</title>
          <link>https://alice.example/2</link>
          <guid>https://alice.example/2</guid>
          <dc:creator>Alice</dc:creator>
          <pubDate>Tue, 02 Jan 2024 10:00:00 +0000</pubDate>
          <category>python</category>
          <category>feeds</category>
          <description>Short summary</description>
          <content:encoded><![CDATA[<p>Full <b>content</b></p>]]></content:encoded>
        </item>
        <item>
          <title>First post</title>
          <link>https://alice.example/1</link>
          <pubDate>Mon, 01 Jan 2024 10:00:00 +0000</pubDate>
          <description>Only a description</description>
        </item>
        <item>
          <title>Undated</title>
          <link>https://alice.example/undated</link>
        </item>
      </channel>
    </rss>
    """
).encode("utf-8")

ATOM_DOCUMENT = textwrap.dedent(
    """\
    <?xml version="1.0" encoding="UTF-8"?>
    <feed xmlns="http://www.w3.org/2005/Atom">
      <title>Bob Writes</title>
      <link rel="alternate" href="https://bob.example/" />
      <id>https://bob.example/</id>
      <updated>2024-01-03T12:00:00Z</updated>
      <entry>
        <title>Atom entry</title>
        <link rel="alternate" href="https://bob.example/entry" />
        <id>https://bob.example/?p=42</id>
        <author><name>Bob</name></author>
        <published>2024-01-03T12:00:00Z</published>
        <updated>2024-01-03T13:00:00Z</updated>
        <category term="atom" />
        <content type="html">&lt;p&gt;Atom body&lt;/p&gt;</content>
      </entry>
    </feed>
    """
).encode("utf-8")


def make_post(link, published, **kwargs):
    values = {
        "title": "Title",
        "feed_name": "Feed",
        "name": "Feed",
    }
    values.update(kwargs)
    return Post(link=link, published=published, **values)


@pytest.fixture
def planet_config(tmp_path):
    return PlanetConfig(
        name="Planet Test",
        description="All the posts",
        url="https://planet.example",
        feeds=[
            FeedConfig(name="Alice", url="https://alice.example/feed.xml"),
            FeedConfig(
                name="Bob", url="https://bob.example/atom.xml", home="https://bob.example/"
            ),
        ],
        outputs=[
            OutputConfig(path=str(tmp_path / "out" / "index.html"), type="HTML"),
            OutputConfig(path=str(tmp_path / "out" / "index.rss"), type="RSS"),
            OutputConfig(path=str(tmp_path / "out" / "index.atom"), type="ATOM"),
            OutputConfig(path=str(tmp_path / "out" / "cplanet.opml"), type="OPML"),
        ],
    )


@pytest.fixture
def sample_posts():
    return [
        make_post(
            "https://alice.example/2",
            datetime(2024, 1, 2, 10, 0, tzinfo=timezone.utc),
            title="Second post",
            feed_name="Alice's Blog",
            name="Alice",
            author="Alice",
            description="<p>Full <b>content</b></p>",
            permalink="https://alice.example/p/2",
            tags=["python", "feeds"],
        ),
        make_post(
            "https://bob.example/entry",
            datetime(2024, 1, 1, 8, 30, tzinfo=timezone.utc),
            title="Atom entry",
            feed_name="Bob Writes",
            name="Bob",
        ),
    ]


@pytest.fixture
def sample_feeds(planet_config):
    return [
        FeedResult(
            feed=planet_config.feeds[0],
            title="Alice's Blog",
            home="https://alice.example/",
        ),
        FeedResult(
            feed=planet_config.feeds[1],
            title="Bob Writes",
            home="https://bob.example/",
        ),
    ]
