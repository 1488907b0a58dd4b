"""
Tests for RSS feeds, the sitemap, robots.txt and SEO metadata.
"""
import xml.etree.ElementTree as ET
from datetime import datetime, timezone

from narravo.services import post_service
from narravo.services.config_service import get_config_service
from narravo.services.feed_service import build_post_seo, build_robots, build_rss

NS = {
    'atom': 'http://www.w3.org/2005/Atom',
    'content': 'http://purl.org/rss/1.0/modules/content/',
    'sm': 'http://www.sitemaps.org/schemas/sitemap/0.9',
}


class TestRss:
    def test_latest_feed(self, client, published_post):
        response = client.get('/feed.xml')
        assert response.status_code == 200
        assert response.mimetype == 'application/rss+xml'

        channel = ET.fromstring(response.data).find('channel')
        assert channel.find('title').text == 'Narravo Test'
        assert channel.find('atom:link', NS).get('href') == 'https://blog.example.com/feed.xml'

        item = channel.find('item')
        assert item.find('title').text == 'Hello World'
        assert item.find('link').text == 'https://blog.example.com/hello-world'
        assert '<h1>Hello</h1>' in item.find('content:encoded', NS).text
        assert sorted(c.text for c in item.findall('category')) == ['Flask', 'Python']

    def test_site_name_from_configuration(self, client, published_post):
        get_config_service().set_global('SYSTEM.SITE.NAME', 'Configured Blog', type='string')
        channel = ET.fromstring(client.get('/feed.xml').data).find('channel')
        assert channel.find('title').text == 'Configured Blog'

    def test_feed_excludes_drafts(self, client, draft_post):
        channel = ET.fromstring(client.get('/feed.xml').data).find('channel')
        assert channel.findall('item') == []

    def test_special_characters_are_escaped(self, app, admin_user):
        post = post_service.create_post(
            title='Fish & <Chips>',
            published_at=datetime(2024, 5, 1, tzinfo=timezone.utc),
            author_id=admin_user,
        )
        post.body_html = '<p>Contains ]]> inside</p>'
        xml = build_rss([post], 'https://blog.example.com', 'Blog', 'Desc', 'https://blog.example.com/feed.xml')
        item = ET.fromstring(xml).find('channel/item')
        assert item.find('title').text == 'Fish & <Chips>'
        assert ']]>' in item.find('content:encoded', NS).text

    def test_monthly_feed(self, client, admin_user):
        post_service.create_post(title='March Post', published_at=datetime(2024, 3, 5, tzinfo=timezone.utc),
                                 author_id=admin_user)
        post_service.create_post(title='April Post', published_at=datetime(2024, 4, 5, tzinfo=timezone.utc),
                                 author_id=admin_user)

        response = client.get('/rss-feed/2024/03')
        channel = ET.fromstring(response.data).find('channel')
        assert channel.find('title').text == 'Narravo Test: March 2024'
        assert [i.find('title').text for i in channel.findall('item')] == ['March Post']

    def test_monthly_feed_invalid_month(self, client):
        assert client.get('/rss-feed/2024/13').status_code == 400


class TestSitemapAndRobots:
    def test_sitemap(self, client, published_post):
        response = client.get('/sitemap.xml')
        urls = {
            url.find('sm:loc', NS).text: url.find('sm:priority', NS).text
            for url in ET.fromstring(response.data).findall('sm:url', NS)
        }
        assert urls['https://blog.example.com/'] == '1.0'
        assert urls['https://blog.example.com/hello-world'] == '0.7'
        assert any(loc.startswith('https://blog.example.com/archives/') and priority == '0.5'
                   for loc, priority in urls.items())

    def test_robots(self, client):
        response = client.get('/robots.txt')
        text = response.data.decode()
        assert 'Disallow: /api/' in text
        assert 'Sitemap: https://blog.example.com/sitemap.xml' in text

    def test_build_robots_strips_trailing_slash(self):
        assert 'Sitemap: https://x.test/sitemap.xml' in build_robots('https://x.test/')


class TestSeo:
    def test_post_seo(self, app, published_post):
        post = post_service.get_post_by_id(published_post)
        seo = build_post_seo(post, 'https://blog.example.com', 'Narravo Test')

        assert seo['title'] == 'Hello World | Narravo Test'
        assert seo['description'].startswith('This is the first post')
        assert seo['open_graph']['og:url'] == 'https://blog.example.com/hello-world'
        assert seo['twitter_card'] == 'summary'
        assert seo['json_ld']['@type'] == 'BlogPosting'

    def test_featured_image_uses_large_card(self, app, admin_user):
        post = post_service.create_post(title='Pictured', featured_image_url='https://cdn.test/a.jpg',
                                        author_id=admin_user)
        seo = build_post_seo(post, 'https://blog.example.com')
        assert seo['twitter_card'] == 'summary_large_image'
