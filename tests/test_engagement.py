"""
Tests for reactions and view analytics.
"""
import json

import pytest

from narravo import db
from narravo.models.analytics import PostDailyView
from narravo.services import analytics_service, comment_service, reaction_service
from narravo.services.reaction_service import ReactionError
from narravo.utils.datetime_utils import utc_now

BROWSER_UA = 'Mozilla/5.0 (X11; Linux x86_64) Firefox/128.0'


class TestReactionService:
    def test_toggle_adds_then_removes(self, app, published_post, sample_user):
        assert reaction_service.toggle_reaction('post', published_post, sample_user, 'like') == 'added'
        counts = reaction_service.get_reaction_counts('post', [published_post])[published_post]
        assert counts['like'] == 1
        assert counts['heart'] == 0

        assert reaction_service.toggle_reaction('post', published_post, sample_user, 'like') == 'removed'
        assert reaction_service.get_reaction_counts('post', [published_post])[published_post]['like'] == 0

    def test_kinds_are_independent(self, app, published_post, sample_user, other_user):
        reaction_service.toggle_reaction('post', published_post, sample_user, 'like')
        reaction_service.toggle_reaction('post', published_post, sample_user, 'heart')
        reaction_service.toggle_reaction('post', published_post, other_user, 'heart')

        counts = reaction_service.get_reaction_counts('post', [published_post])[published_post]
        assert (counts['like'], counts['heart']) == (1, 2)
        mine = reaction_service.get_user_reactions('post', [published_post], other_user)[published_post]
        assert mine['heart'] is True
        assert mine['like'] is False

    def test_comment_must_be_approved(self, app, published_post, sample_user):
        pending = comment_service.create_comment(published_post, sample_user, 'Pending')
        with pytest.raises(ReactionError, match='Target not found'):
            reaction_service.toggle_reaction('comment', pending.id, sample_user, 'like')

    @pytest.mark.parametrize('target_type,kind', [('page', 'like'), ('post', 'angry')])
    def test_invalid_input(self, app, published_post, sample_user, target_type, kind):
        with pytest.raises(ReactionError, match='Invalid'):
            reaction_service.toggle_reaction(target_type, published_post, sample_user, kind)


class TestReactionRoutes:
    def test_toggle(self, client, auth_headers, published_post):
        response = client.post(
            '/api/reactions',
            data=json.dumps({'target_type': 'post', 'target_id': published_post, 'kind': 'laugh'}),
            content_type='application/json',
            headers=auth_headers,
        )
        assert response.status_code == 200
        data = json.loads(response.data)['data']
        assert data['result'] == 'added'
        assert data['counts']['laugh'] == 1

    def test_missing_target_is_404(self, client, auth_headers):
        response = client.post(
            '/api/reactions',
            data=json.dumps({'target_type': 'post', 'target_id': 999, 'kind': 'like'}),
            content_type='application/json',
            headers=auth_headers,
        )
        assert response.status_code == 404

    def test_counts(self, client, auth_headers, published_post, sample_user):
        reaction_service.toggle_reaction('post', published_post, sample_user, 'thumbsup')
        response = client.get(f'/api/reactions?target_type=post&ids={published_post}', headers=auth_headers)
        data = json.loads(response.data)['data']
        assert data['counts'][str(published_post)]['thumbsup'] == 1
        assert data['mine'][str(published_post)]['thumbsup'] is True

    def test_counts_bad_ids(self, client):
        assert client.get('/api/reactions?ids=1,x').status_code == 400


class TestAnalyticsHelpers:
    @pytest.mark.parametrize('ua,referer,expected', [
        ('Googlebot/2.1', None, True),
        ('HeadlessChrome', None, True),
        (BROWSER_UA, None, False),
        (None, None, True),
        (None, 'https://news.example.com/', False),
    ])
    def test_is_bot(self, ua, referer, expected):
        assert analytics_service.is_bot(ua, referer) is expected

    def test_hash_ip_is_salted(self, app):
        hashed = analytics_service.hash_ip('203.0.113.9')
        assert hashed and '203.0.113.9' not in hashed
        assert hashed == analytics_service.hash_ip('203.0.113.9')

    def test_hash_ip_without_salt(self, app):
        app.config['ANALYTICS_IP_SALT'] = ''
        assert analytics_service.hash_ip('203.0.113.9') is None

    def test_parse_referer_and_language(self):
        assert analytics_service.parse_referer('https://news.example.com/a/b?c=1') == ('news.example.com', '/a/b')
        assert analytics_service.parse_referer('not a url') == (None, None)
        assert analytics_service.parse_language('en-US,en;q=0.9') == 'en-US'
        assert analytics_service.parse_language('*') is None


class TestRecordView:
    def test_view_counted_once_per_session(self, app, published_post):
        assert analytics_service.record_view(published_post, session_id='s1', user_agent=BROWSER_UA) is True
        assert analytics_service.record_view(published_post, session_id='s1', user_agent=BROWSER_UA) is False
        assert analytics_service.record_view(published_post, session_id='s2', user_agent=BROWSER_UA) is True

        counts = analytics_service.get_post_view_counts([published_post])[published_post]
        assert counts == {'total_views': 2, 'views_last_n_days': 2}

    def test_daily_row_incremented_in_place(self, app, published_post):
        analytics_service.record_view(published_post, session_id='s1', user_agent=BROWSER_UA)
        analytics_service.record_view(published_post, session_id='s2', user_agent=BROWSER_UA)

        rows = PostDailyView.query.filter_by(post_id=published_post).all()
        assert [(r.day, r.views) for r in rows] == [(utc_now().date(), 2)]

    def test_existing_daily_row_not_duplicated(self, app, published_post):
        db.session.add(PostDailyView(day=utc_now().date(), post_id=published_post, views=5))
        db.session.commit()

        assert analytics_service.record_view(published_post, session_id='s1', user_agent=BROWSER_UA)

        db.session.expire_all()
        rows = PostDailyView.query.filter_by(post_id=published_post).all()
        assert len(rows) == 1
        assert rows[0].views == 6

    def test_ip_deduplication_without_session(self, app, published_post):
        assert analytics_service.record_view(published_post, ip='198.51.100.1', user_agent=BROWSER_UA)
        assert not analytics_service.record_view(published_post, ip='198.51.100.1', user_agent=BROWSER_UA)

    def test_bots_ignored(self, app, published_post):
        assert analytics_service.record_view(published_post, session_id='s1', user_agent='Bingbot') is False

    def test_missing_post(self, app):
        assert analytics_service.record_view(4242, session_id='s1', user_agent=BROWSER_UA) is False

    def test_trending_and_sparkline(self, app, published_post, draft_post):
        for i in range(3):
            analytics_service.record_view(published_post, session_id=f's{i}', user_agent=BROWSER_UA)

        trending = analytics_service.get_trending_posts(days=7)
        assert [(p['id'], p['views_last_n_days']) for p in trending] == [(published_post, 3)]

        series = analytics_service.get_post_sparkline(published_post, days=7)
        assert len(series) == 7
        assert series[-1]['views'] == 3
        assert sum(point['views'] for point in series[:-1]) == 0

    def test_site_analytics(self, app, published_post):
        analytics_service.record_view(published_post, session_id='a', user_agent=BROWSER_UA,
                                      referer='https://news.example.com/x')
        analytics_service.record_view(published_post, session_id='b', user_agent=BROWSER_UA)

        report = analytics_service.get_site_analytics(days=7)
        assert report['total_views'] == 2
        assert report['unique_sessions'] == 2
        assert report['top_referrers'] == [{'host': 'news.example.com', 'views': 1}]


class TestMetricsRoutes:
    def test_track_view(self, client, published_post):
        response = client.post(
            '/api/metrics/view',
            data=json.dumps({'post_id': published_post, 'session_id': 'abc'}),
            content_type='application/json',
            headers={'User-Agent': BROWSER_UA},
        )
        assert json.loads(response.data)['data'] == {'counted': True}

    def test_view_counts(self, client, published_post):
        analytics_service.record_view(published_post, session_id='abc', user_agent=BROWSER_UA)
        response = client.get(f'/api/metrics/views?ids={published_post}')
        data = json.loads(response.data)['data']
        assert data['counts'][str(published_post)]['total_views'] == 1

    def test_trending(self, client, published_post):
        analytics_service.record_view(published_post, session_id='abc', user_agent=BROWSER_UA)
        data = json.loads(client.get('/api/metrics/trending').data)['data']
        assert data['items'][0]['slug'] == 'hello-world'

    def test_dashboard_requires_admin(self, client, auth_headers, admin_headers, published_post, draft_post):
        assert client.get('/api/admin/dashboard', headers=auth_headers).status_code == 403

        data = json.loads(client.get('/api/admin/dashboard', headers=admin_headers).data)['data']
        assert data['posts'] == {'total': 2, 'published': 1, 'drafts': 1, 'deleted': 0}
        assert data['users']['total'] == 2

    def test_sparkline_route(self, client, admin_headers, published_post):
        response = client.get(f'/api/admin/analytics/posts/{published_post}/sparkline?days=5',
                              headers=admin_headers)
        data = json.loads(response.data)['data']
        assert data['post_id'] == published_post
        assert len(data['series']) == 5
