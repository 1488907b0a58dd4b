"""
Tests for posts: listing, cursors, admin CRUD and state changes.
"""
import json
from datetime import timedelta

import pytest

from narravo.services import post_service
from narravo.services.post_service import PostError, decode_cursor, encode_cursor
from narravo.utils.datetime_utils import utc_now


def _publish_many(count, author_id):
    base = utc_now() - timedelta(days=count + 1)
    ids = []
    for i in range(count):
        post = post_service.create_post(
            title=f'Post {i}',
            body_md=f'Body of post {i}',
            published_at=base + timedelta(days=i),
            author_id=author_id,
        )
        ids.append(post.id)
    return ids


class TestCursor:
    def test_cursor_round_trip(self):
        published_at = utc_now().replace(microsecond=0)
        assert decode_cursor(encode_cursor(published_at, 7)) == (published_at, 7)

    def test_draft_cursor_round_trip(self):
        assert decode_cursor(encode_cursor(None, 9)) == (None, 9)

    @pytest.mark.parametrize('cursor', ['not-base64!!', 'e30', 'eyJpZCI6ICJ4In0'])
    def test_invalid_cursor(self, cursor):
        with pytest.raises(PostError, match='Invalid cursor'):
            decode_cursor(cursor)


class TestPostService:
    def test_slug_generated_and_deduplicated(self, app, admin_user):
        first = post_service.create_post(title='Same Title', author_id=admin_user)
        second = post_service.create_post(title='Same Title', author_id=admin_user)
        assert first.slug == 'same-title'
        assert second.slug == 'same-title-2'

    def test_explicit_duplicate_slug_rejected(self, app, admin_user):
        post_service.create_post(title='One', slug='taken', author_id=admin_user)
        with pytest.raises(PostError, match='Slug already in use'):
            post_service.create_post(title='Two', slug='taken', author_id=admin_user)

    def test_body_rendered_and_excerpt_generated(self, app, published_post):
        post = post_service.get_post_by_id(published_post)
        assert '<h1>Hello</h1>' in post.body_html
        assert 'This is the first post' in post.excerpt

    def test_tags_and_category(self, app, published_post):
        post = post_service.get_post_by_id(published_post)
        assert sorted(tag.slug for tag in post.tags) == ['flask', 'python']
        assert post.category.name == 'Engineering'

    def test_list_posts_newest_first_with_cursor(self, app, admin_user):
        ids = _publish_many(5, admin_user)

        page = post_service.list_posts(limit=2)
        assert [item['id'] for item in page['items']] == [ids[4], ids[3]]
        assert page['next_cursor']

        page = post_service.list_posts(limit=2, cursor=page['next_cursor'])
        assert [item['id'] for item in page['items']] == [ids[2], ids[1]]

        page = post_service.list_posts(limit=2, cursor=page['next_cursor'])
        assert [item['id'] for item in page['items']] == [ids[0]]
        assert page['next_cursor'] is None

    def test_drafts_reachable_through_cursor(self, app, admin_user):
        published = post_service.create_post(title='Pub', published_at=utc_now() - timedelta(hours=1),
                                             author_id=admin_user).id
        first_draft = post_service.create_post(title='Draft one', author_id=admin_user).id
        second_draft = post_service.create_post(title='Draft two', author_id=admin_user).id

        seen, cursor = [], None
        while True:
            page = post_service.list_posts(limit=1, cursor=cursor, include_drafts=True)
            seen.extend(item['id'] for item in page['items'])
            cursor = page['next_cursor']
            if cursor is None:
                break

        assert seen == [published, second_draft, first_draft]

    def test_drafts_and_future_posts_hidden(self, app, admin_user, draft_post):
        post_service.create_post(title='Scheduled', published_at=utc_now() + timedelta(days=1),
                                 author_id=admin_user)
        assert post_service.list_posts()['items'] == []

    def test_soft_delete_and_restore(self, app, published_post):
        post = post_service.delete_post(published_post)
        assert post.status == 'deleted'
        assert post_service.get_post_by_slug('hello-world') is None

        post_service.restore_post(published_post)
        assert post_service.get_post_by_slug('hello-world') is not None

    def test_publish_and_unpublish(self, app, draft_post):
        post = post_service.publish_post(draft_post)
        assert post.status == 'published'
        post = post_service.unpublish_post(draft_post)
        assert post.status == 'draft'

    def test_cannot_publish_deleted(self, app, draft_post):
        post_service.delete_post(draft_post)
        with pytest.raises(PostError, match='deleted'):
            post_service.publish_post(draft_post)

    def test_previous_next(self, app, admin_user):
        ids = _publish_many(3, admin_user)
        middle = post_service.get_post_by_id(ids[1])
        neighbours = post_service.get_previous_next(middle)
        assert neighbours['previous']['id'] == ids[0]
        assert neighbours['next']['id'] == ids[2]

    def test_admin_list_filters(self, app, published_post, draft_post):
        assert post_service.admin_list_posts(status='draft')['pagination']['total'] == 1
        assert post_service.admin_list_posts(tag='python')['items'][0]['id'] == published_post
        with pytest.raises(PostError):
            post_service.admin_list_posts(status='archived')


class TestPostRoutes:
    def test_list_posts(self, client, published_post):
        response = client.get('/api/posts')
        assert response.status_code == 200
        data = json.loads(response.data)
        assert data['success'] is True
        assert data['data']['items'][0]['slug'] == 'hello-world'
        assert 'body_html' not in data['data']['items'][0]

    def test_list_posts_bad_cursor(self, client):
        response = client.get('/api/posts?cursor=garbage')
        assert response.status_code == 400

    def test_list_posts_limit_validated(self, client):
        response = client.get('/api/posts?limit=500')
        assert response.status_code == 400

    def test_get_post(self, client, published_post):
        response = client.get('/api/posts/hello-world')
        assert response.status_code == 200
        data = json.loads(response.data)['data']
        assert data['comment_count'] == 0
        assert data['reactions']['heart'] == 0
        assert data['neighbours'] == {'previous': None, 'next': None}
        assert 'my_reactions' not in data

    def test_get_post_with_user_reactions(self, client, auth_headers, published_post):
        response = client.get('/api/posts/hello-world', headers=auth_headers)
        data = json.loads(response.data)['data']
        assert data['my_reactions']['like'] is False

    def test_draft_is_404(self, client, draft_post):
        response = client.get('/api/posts/unfinished-thoughts')
        assert response.status_code == 404

    def test_seo(self, client, published_post):
        response = client.get('/api/posts/hello-world/seo')
        data = json.loads(response.data)['data']
        assert data['title'] == 'Hello World | Narravo Test'
        assert data['canonical'] == 'https://blog.example.com/hello-world'

    def test_admin_create_post(self, client, admin_headers):
        response = client.post(
            '/api/admin/posts',
            data=json.dumps({'title': 'From the API', 'body_md': 'Text', 'tags': ['News', ' ']}),
            content_type='application/json',
            headers=admin_headers,
        )
        assert response.status_code == 201
        data = json.loads(response.data)['data']
        assert data['slug'] == 'from-the-api'
        assert data['status'] == 'draft'
        assert [tag['name'] for tag in data['tags']] == ['News']

    def test_create_requires_admin(self, client, auth_headers):
        response = client.post(
            '/api/admin/posts',
            data=json.dumps({'title': 'Nope'}),
            content_type='application/json',
            headers=auth_headers,
        )
        assert response.status_code == 403

    def test_create_validation(self, client, admin_headers):
        response = client.post(
            '/api/admin/posts',
            data=json.dumps({'title': '   '}),
            content_type='application/json',
            headers=admin_headers,
        )
        assert response.status_code == 400
        assert json.loads(response.data)['error'] == 'Validation failed'

    def test_duplicate_slug_is_409(self, client, admin_headers, published_post):
        response = client.post(
            '/api/admin/posts',
            data=json.dumps({'title': 'Again', 'slug': 'hello-world'}),
            content_type='application/json',
            headers=admin_headers,
        )
        assert response.status_code == 409

    def test_update_post_partial(self, client, admin_headers, published_post):
        response = client.put(
            f'/api/admin/posts/{published_post}',
            data=json.dumps({'title': 'Renamed'}),
            content_type='application/json',
            headers=admin_headers,
        )
        assert response.status_code == 200
        data = json.loads(response.data)['data']
        assert data['title'] == 'Renamed'
        assert data['slug'] == 'hello-world'
        assert len(data['tags']) == 2

    def test_update_missing_post(self, client, admin_headers):
        response = client.put(
            '/api/admin/posts/999',
            data=json.dumps({'title': 'Ghost'}),
            content_type='application/json',
            headers=admin_headers,
        )
        assert response.status_code == 404

    def test_delete_and_restore(self, client, admin_headers, published_post):
        response = client.delete(f'/api/admin/posts/{published_post}', headers=admin_headers)
        assert response.status_code == 200
        assert client.get('/api/posts/hello-world').status_code == 404

        response = client.post(f'/api/admin/posts/{published_post}/restore', headers=admin_headers)
        assert response.status_code == 200
        assert client.get('/api/posts/hello-world').status_code == 200

    def test_publish_route(self, client, admin_headers, draft_post):
        response = client.post(f'/api/admin/posts/{draft_post}/publish', headers=admin_headers)
        assert json.loads(response.data)['data']['status'] == 'published'

    def test_unknown_action(self, client, admin_headers, draft_post):
        response = client.post(f'/api/admin/posts/{draft_post}/explode', headers=admin_headers)
        assert response.status_code == 404

    def test_admin_list(self, client, admin_headers, published_post, draft_post):
        response = client.get('/api/admin/posts?status=published', headers=admin_headers)
        data = json.loads(response.data)['data']
        assert [item['id'] for item in data['items']] == [published_post]
