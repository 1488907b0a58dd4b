"""
Tests for threaded comments and the moderation queue.
"""
import json
import time

import pytest

from narravo import db
from narravo.models.comment import Comment
from narravo.services import comment_service, moderation_service, post_service
from narravo.services.comment_service import CommentError, build_path, parent_path_of
from narravo.utils.datetime_utils import utc_now


def _approved(post_id, user_id, body, parent_id=None):
    return comment_service.create_comment(post_id, user_id, body, parent_id=parent_id, is_admin=True)


class TestPaths:
    def test_build_path(self):
        assert build_path(None, 1) == '0001'
        assert build_path('0001', 12) == '0001.0012'

    def test_parent_path_of(self):
        assert parent_path_of('0001') is None
        assert parent_path_of('0001.0002.0003') == '0001.0002'


class TestCreateComment:
    def test_top_level_and_reply_paths(self, app, published_post, sample_user, admin_user):
        first = _approved(published_post, admin_user, 'First')
        second = _approved(published_post, admin_user, 'Second')
        reply = _approved(published_post, sample_user, 'Reply', parent_id=first.id)

        assert first.path == '0001'
        assert second.path == '0002'
        assert reply.path == '0001.0001'
        assert reply.depth == 1

    def test_non_admin_comment_is_pending(self, app, published_post, sample_user):
        comment = comment_service.create_comment(published_post, sample_user, 'Hello')
        assert comment.status == 'pending'

    def test_body_is_rendered_and_sanitized(self, app, published_post, sample_user):
        comment = comment_service.create_comment(
            published_post, sample_user, '**bold** <script>alert(1)</script>'
        )
        assert '<strong>bold</strong>' in comment.body_html
        assert '<script>' not in comment.body_html

    def test_empty_body_rejected(self, app, published_post, sample_user):
        with pytest.raises(CommentError, match='required'):
            comment_service.create_comment(published_post, sample_user, '   ')

    def test_unknown_post(self, app, sample_user):
        with pytest.raises(CommentError, match='Post not found'):
            comment_service.create_comment(9999, sample_user, 'Hello')

    def test_locked_post(self, app, published_post, sample_user):
        post_service.lock_post(published_post)
        with pytest.raises(CommentError, match='locked'):
            comment_service.create_comment(published_post, sample_user, 'Hello')

    def test_parent_on_other_post(self, app, published_post, draft_post, admin_user):
        parent = _approved(draft_post, admin_user, 'Elsewhere')
        with pytest.raises(CommentError, match='Parent comment not found'):
            comment_service.create_comment(published_post, admin_user, 'Reply', parent_id=parent.id)

    def test_max_depth(self, app, published_post, admin_user):
        parent = _approved(published_post, admin_user, 'Level 0')
        for level in range(1, 5):
            parent = _approved(published_post, admin_user, f'Level {level}', parent_id=parent.id)
        assert parent.depth == 4

        with pytest.raises(CommentError, match='Max depth exceeded'):
            _approved(published_post, admin_user, 'Too deep', parent_id=parent.id)

    def test_attachments_saved(self, app, published_post, sample_user):
        comment = comment_service.create_comment(
            published_post, sample_user, 'With a picture',
            attachments=[{'kind': 'image', 'url': '/uploads/images/a.png', 'mime': 'image/png'}],
        )
        assert [a.kind for a in comment.attachments] == ['image']

    def test_bad_attachment_kind(self, app, published_post, sample_user):
        with pytest.raises(CommentError, match='Unsupported attachment'):
            comment_service.create_comment(
                published_post, sample_user, 'x', attachments=[{'kind': 'audio', 'url': '/a.mp3'}]
            )


class TestCommentTree:
    def test_tree_nests_replies_and_hides_pending(self, app, published_post, admin_user, sample_user):
        top = _approved(published_post, admin_user, 'Top')
        child = _approved(published_post, admin_user, 'Child', parent_id=top.id)
        _approved(published_post, admin_user, 'Grandchild', parent_id=child.id)
        comment_service.create_comment(published_post, sample_user, 'Pending', parent_id=top.id)

        tree = comment_service.get_comment_tree(published_post)

        assert len(tree['items']) == 1
        node = tree['items'][0]
        assert node['children_count'] == 1
        assert node['replies'][0]['id'] == child.id
        assert node['replies'][0]['replies'][0]['body_html'].strip() == '<p>Grandchild</p>'
        assert tree['next_cursor'] is None

    def test_top_level_pagination(self, app, published_post, admin_user):
        for i in range(5):
            _approved(published_post, admin_user, f'Comment {i}')

        first = comment_service.get_comment_tree(published_post, limit_top=2)
        assert [n['path'] for n in first['items']] == ['0001', '0002']
        assert first['next_cursor'] == '0002'

        second = comment_service.get_comment_tree(published_post, cursor=first['next_cursor'], limit_top=2)
        assert [n['path'] for n in second['items']] == ['0003', '0004']

    def test_replies_are_capped_per_parent(self, app, published_post, admin_user):
        top = _approved(published_post, admin_user, 'Top')
        for i in range(5):
            _approved(published_post, admin_user, f'Reply {i}', parent_id=top.id)

        tree = comment_service.get_comment_tree(published_post, limit_replies=3)
        node = tree['items'][0]
        assert len(node['replies']) == 3
        assert node['children_count'] == 5

        page = comment_service.get_replies(top.id, cursor=node['replies'][-1]['path'], limit=3)
        assert len(page['items']) == 2
        assert page['next_cursor'] is None


class TestCommentRoutes:
    def test_get_comments(self, client, published_post, admin_user):
        _approved(published_post, admin_user, 'Visible')
        response = client.get(f'/api/posts/{published_post}/comments')
        assert response.status_code == 200
        data = json.loads(response.data)
        assert data['data']['total'] == 1
        assert data['data']['items'][0]['reactions']['like'] == 0

    def test_comments_of_draft_are_hidden(self, client, draft_post):
        response = client.get(f'/api/posts/{draft_post}/comments')
        assert response.status_code == 404

    @pytest.mark.parametrize('limit', [-5, 0])
    def test_non_positive_limit_still_returns_a_page(self, client, published_post, admin_user, limit):
        for i in range(3):
            _approved(published_post, admin_user, f'Comment {i}')
        data = json.loads(client.get(f'/api/posts/{published_post}/comments?limit={limit}').data)['data']
        assert len(data['items']) == 1
        assert data['next_cursor'] == '0001'

    def test_huge_limit_is_capped(self, app, published_post, admin_user):
        top = _approved(published_post, admin_user, 'Top')
        for i in range(55):
            _approved(published_post, admin_user, f'Reply {i}', parent_id=top.id)

        page = comment_service.get_replies(top.id, limit=10_000)
        assert len(page['items']) == 50
        assert page['next_cursor'] is not None

    def test_recent_comments_only_from_visible_posts(self, client, published_post, draft_post, admin_user):
        _approved(published_post, admin_user, 'On the public post')
        _approved(draft_post, admin_user, 'On the draft')
        deleted = post_service.create_post(title='Gone', body_md='Soon removed', author_id=admin_user,
                                           published_at=utc_now())
        _approved(deleted.id, admin_user, 'On a deleted post')
        post_service.delete_post(deleted.id)

        items = json.loads(client.get('/api/comments/recent').data)['data']['items']

        assert len(items) == 1
        assert items[0]['post_slug'] == 'hello-world'
        assert items[0]['post_title'] == 'Hello World'
        for key in ('body_md', 'status', 'deleted_at'):
            assert key not in items[0]

    def test_create_requires_auth(self, client, published_post):
        response = client.post(
            '/api/comments',
            data=json.dumps({'post_id': published_post, 'body_md': 'Hi'}),
            content_type='application/json',
        )
        assert response.status_code == 401

    def test_create_comment(self, client, auth_headers, published_post):
        response = client.post(
            '/api/comments',
            data=json.dumps({'post_id': published_post, 'body_md': 'Nice post',
                             'submit_start_time': time.time() - 10}),
            content_type='application/json',
            headers=auth_headers,
        )
        assert response.status_code == 201
        data = json.loads(response.data)
        assert data['data']['status'] == 'pending'
        assert data['data']['path'] == '0001'

    def test_honeypot_rejected(self, client, auth_headers, published_post):
        response = client.post(
            '/api/comments',
            data=json.dumps({'post_id': published_post, 'body_md': 'Buy now', 'honeypot': 'http://spam'}),
            content_type='application/json',
            headers=auth_headers,
        )
        assert response.status_code == 400
        assert json.loads(response.data)['error'] == 'Invalid form submission'

    def test_too_fast_rejected(self, client, auth_headers, published_post):
        response = client.post(
            '/api/comments',
            data=json.dumps({'post_id': published_post, 'body_md': 'Quick',
                             'submit_start_time': time.time() * 1000}),
            content_type='application/json',
            headers=auth_headers,
        )
        assert response.status_code == 400
        assert 'too fast' in json.loads(response.data)['error']

    def test_rate_limited_with_retry_after(self, client, auth_headers, published_post):
        statuses = []
        for i in range(6):
            response = client.post(
                '/api/comments',
                data=json.dumps({'post_id': published_post, 'body_md': f'Comment {i}'}),
                content_type='application/json',
                headers=auth_headers,
            )
            statuses.append(response.status_code)
        assert statuses[:5] == [201] * 5
        assert statuses[5] == 429
        assert int(response.headers['Retry-After']) >= 1

    def test_locked_post_is_403(self, client, auth_headers, published_post):
        post_service.lock_post(published_post)
        response = client.post(
            '/api/comments',
            data=json.dumps({'post_id': published_post, 'body_md': 'Hi'}),
            content_type='application/json',
            headers=auth_headers,
        )
        assert response.status_code == 403

    def test_missing_parent_is_404(self, client, auth_headers, published_post):
        response = client.post(
            '/api/comments',
            data=json.dumps({'post_id': published_post, 'body_md': 'Hi', 'parent_id': 999}),
            content_type='application/json',
            headers=auth_headers,
        )
        assert response.status_code == 404


class TestModeration:
    def test_approve_moves_comment_into_tree(self, app, published_post, sample_user):
        comment = comment_service.create_comment(published_post, sample_user, 'Waiting')
        results = moderation_service.moderate_comments('approve', [comment.id, 999])

        assert results == [{'id': comment.id, 'ok': True},
                           {'id': 999, 'ok': False, 'error': 'Comment not found'}]
        assert comment_service.count_approved(published_post) == 1

    def test_edit_requires_single_id(self, app):
        with pytest.raises(moderation_service.ModerationError):
            moderation_service.moderate_comments('edit', [1, 2], 'text')

    def test_edit_rerenders(self, app, published_post, admin_user):
        comment = _approved(published_post, admin_user, 'Old')
        moderation_service.moderate_comments('edit', [comment.id], '*New*')
        assert '<em>New</em>' in db.session.get(Comment, comment.id).body_html

    def test_hard_delete_removes_subtree(self, app, published_post, admin_user):
        top = _approved(published_post, admin_user, 'Top')
        _approved(published_post, admin_user, 'Child', parent_id=top.id)
        other = _approved(published_post, admin_user, 'Other')

        moderation_service.moderate_comments('hard_delete', [top.id])

        remaining = [c.id for c in Comment.query.all()]
        assert remaining == [other.id]

    def test_paths_not_reused_after_hard_delete(self, app, published_post, admin_user):
        first_id = _approved(published_post, admin_user, 'A').id
        second = _approved(published_post, admin_user, 'B')
        second_id = second.id

        moderation_service.moderate_comments('hard_delete', [first_id])
        third = _approved(published_post, admin_user, 'C')

        assert db.session.get(Comment, second_id).path == '0002'
        assert third.path == '0003'
        tree = comment_service.get_comment_tree(published_post)
        assert [n['id'] for n in tree['items']] == [second_id, third.id]

    def test_reply_ordinals_skip_deleted_siblings(self, app, published_post, admin_user):
        top = _approved(published_post, admin_user, 'Top')
        first_reply = _approved(published_post, admin_user, 'R1', parent_id=top.id).id
        _approved(published_post, admin_user, 'R2', parent_id=top.id)

        moderation_service.moderate_comments('hard_delete', [first_reply])
        reply = _approved(published_post, admin_user, 'R3', parent_id=top.id)
        assert reply.path == '0001.0003'

    def test_queue_route(self, client, admin_headers, published_post, sample_user):
        comment_service.create_comment(published_post, sample_user, 'Needs review')
        response = client.get('/api/admin/comments', headers=admin_headers)
        data = json.loads(response.data)
        assert data['data']['total'] == 1
        assert data['data']['items'][0]['author']['email'] == 'reader@example.com'

    def test_queue_search(self, client, admin_headers, published_post, sample_user):
        comment_service.create_comment(published_post, sample_user, 'Needs review')
        comment_service.create_comment(published_post, sample_user, 'Something else')
        response = client.get('/api/admin/comments?q=review', headers=admin_headers)
        assert json.loads(response.data)['data']['total'] == 1

    def test_moderate_route(self, client, admin_headers, published_post, sample_user):
        comment = comment_service.create_comment(published_post, sample_user, 'Spam?')
        response = client.post(
            '/api/admin/comments/moderate',
            data=json.dumps({'action': 'spam', 'ids': [comment.id]}),
            content_type='application/json',
            headers=admin_headers,
        )
        assert response.status_code == 200
        assert comment_service.count_spam() == 1

    def test_moderation_requires_admin(self, client, auth_headers):
        response = client.get('/api/admin/comments', headers=auth_headers)
        assert response.status_code == 403
