"""
Tests for tags, categories, search and date archives.
"""
import json
from datetime import datetime, timezone

import pytest

from narravo.services import archive_service, post_service, taxonomy_service
from narravo.services.archive_service import ArchiveError
from narravo.services.search_service import SearchError, search_posts


def _post(title, published_at, author_id, **kwargs):
    return post_service.create_post(title=title, published_at=published_at, author_id=author_id, **kwargs)


@pytest.fixture
def dated_posts(app, admin_user):
    utc = timezone.utc
    return [
        _post('Winter Notes', datetime(2024, 1, 10, 9, 0, tzinfo=utc), admin_user,
              body_md='Snow and python scripts', tags=['Python'], category_name='Journal').id,
        _post('Python Packaging', datetime(2024, 3, 2, 12, 0, tzinfo=utc), admin_user,
              body_md='Wheels and sdists', tags=['Python', 'Tooling'], category_name='Engineering').id,
        _post('Spring Walk', datetime(2024, 3, 20, 8, 0, tzinfo=utc), admin_user,
              body_md='Flowers everywhere', category_name='Journal').id,
        _post('Old Post', datetime(2023, 12, 31, 23, 0, tzinfo=utc), admin_user,
              body_md='The year ends').id,
    ]


class TestTaxonomy:
    def test_upsert_tag_is_case_insensitive(self, app):
        first = taxonomy_service.upsert_tag('Python')
        second = taxonomy_service.upsert_tag('python')
        assert first.id == second.id
        assert first.slug == 'python'

    def test_list_tags_counts_published(self, app, dated_posts, draft_post):
        post_service.update_post(draft_post, tags=['Python'])
        tags = {tag['slug']: tag['post_count'] for tag in taxonomy_service.list_tags()}
        assert tags == {'python': 2, 'tooling': 1}

    def test_tag_posts_page(self, app, dated_posts):
        page = taxonomy_service.get_tag_posts('python', limit=1)
        assert [item['title'] for item in page['items']] == ['Python Packaging']
        assert page['next_cursor']
        page = taxonomy_service.get_tag_posts('python', limit=1, cursor=page['next_cursor'])
        assert [item['title'] for item in page['items']] == ['Winter Notes']

    def test_unknown_tag(self, app):
        assert taxonomy_service.get_tag_posts('nope') is None

    def test_category_posts(self, app, dated_posts):
        page = taxonomy_service.get_category_posts('journal')
        assert [item['title'] for item in page['items']] == ['Spring Walk', 'Winter Notes']
        assert page['category']['name'] == 'Journal'

    def test_routes(self, client, dated_posts):
        data = json.loads(client.get('/api/tags').data)
        assert data['data']['items'][0]['slug'] == 'python'

        response = client.get('/api/categories/engineering')
        assert json.loads(response.data)['data']['items'][0]['title'] == 'Python Packaging'

        assert client.get('/api/tags/missing').status_code == 404
        assert client.get('/api/categories/missing').status_code == 404

    def test_delete_tag(self, client, admin_headers, dated_posts):
        tag = taxonomy_service.upsert_tag('Tooling')
        response = client.delete(f'/api/admin/tags/{tag.id}', headers=admin_headers)
        assert response.status_code == 200
        assert taxonomy_service.get_tag_posts('tooling') is None


class TestSearch:
    def test_title_match_ranks_first(self, app, dated_posts):
        result = search_posts('python')
        titles = [item['title'] for item in result['items']]
        assert titles == ['Python Packaging', 'Winter Notes']
        assert result['items'][0]['score'] >= 2
        assert result['total'] == 2
        assert result['has_more'] is False

    def test_wildcards_are_literal(self, app, dated_posts):
        assert search_posts('%_')['total'] == 0

    @pytest.mark.parametrize('q', ['', 'a', 'x' * 101])
    def test_query_length_bounds(self, app, q):
        with pytest.raises(SearchError):
            search_posts(q)

    def test_pagination(self, app, dated_posts):
        result = search_posts('in', page=1, page_size=2)
        assert len(result['items']) == 2
        assert result['has_more'] is True

    def test_route(self, client, dated_posts):
        response = client.get('/api/search?q=spring')
        data = json.loads(response.data)
        assert data['data']['items'][0]['title'] == 'Spring Walk'

        assert client.get('/api/search?q=a').status_code == 400


class TestArchives:
    def test_validate_params(self, app):
        assert archive_service.validate_archive_params('2024', '03') == (2024, 3)
        for year, month in [('1999', None), ('abc', None), ('2024', '13'), ('2024', '0')]:
            with pytest.raises(ArchiveError):
                archive_service.validate_archive_params(year, month)

    def test_archive_months(self, app, dated_posts):
        months = archive_service.get_archive_months()
        assert [(m['year'], m['month'], m['count']) for m in months] == [
            (2024, 3, 2), (2024, 1, 1), (2023, 12, 1),
        ]
        assert months[0]['label'] == 'March 2024'
        assert months[0]['slug'] == '2024/03'

    def test_posts_by_month(self, app, dated_posts):
        result = archive_service.get_posts_by_month(2024, 3)
        assert [item['title'] for item in result['items']] == ['Spring Walk', 'Python Packaging']
        assert result['label'] == 'March 2024'

    def test_posts_by_year_paginates(self, app, dated_posts):
        result = archive_service.get_posts_by_year(2024, page=2, page_size=2)
        assert [item['title'] for item in result['items']] == ['Winter Notes']
        assert result['total'] == 3
        assert result['total_pages'] == 2

    def test_routes(self, client, dated_posts):
        data = json.loads(client.get('/api/archives').data)
        assert len(data['data']['items']) == 3

        data = json.loads(client.get('/api/archives/2023/12').data)
        assert data['data']['items'][0]['title'] == 'Old Post'

        assert client.get('/api/archives/2024/13').status_code == 400
