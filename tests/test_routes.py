"""
Integration tests for the HTTP surface.

The test app runs render jobs inline, so a job has finished by the time the
trigger request returns.
"""

import pytest

from collage_render.models import JobStatus


class TestHealth:

    def test_health(self, client):
        response = client.get('/health')
        assert response.status_code == 200
        assert response.get_json() == {'status': 'ok'}


class TestEnsureRender:

    def test_ensure_queues_render(self, client, saved_order, repository):
        response = client.post('/render/ensure/order-1')

        assert response.status_code == 202
        assert response.get_json() == {'status': 'queued', 'queued': True}
        assert repository.get_render_status('order-1').status == JobStatus.COMPLETED

    def test_repeat_ensure_is_a_no_op(self, client, saved_order):
        client.post('/render/ensure/order-1')
        response = client.post('/render/ensure/order-1')

        assert response.status_code == 202
        assert response.get_json() == {'status': 'completed', 'queued': False}

    @pytest.mark.parametrize('kwargs', [
        {'query_string': {'force': '1'}},
        {'json': {'force': True}},
    ])
    def test_force_rerenders(self, client, saved_order, kwargs):
        client.post('/render/ensure/order-1')
        response = client.post('/render/ensure/order-1', **kwargs)

        assert response.get_json()['queued'] is True

    def test_unknown_order(self, client):
        response = client.post('/render/ensure/missing')

        assert response.status_code == 404
        body = response.get_json()
        assert body['error_type'] == 'OrderNotFoundError'
        assert body['details']['order_id'] == 'missing'

    def test_order_without_grid_kind(self, client, repository, order_factory):
        repository.save_order(order_factory.order(order_id='nogrid', grid=None))

        response = client.post('/render/ensure/nogrid')

        assert response.status_code == 400
        assert response.get_json()['error_type'] == 'MissingGridKindError'
        assert response.get_json()['suggestions']


class TestStatusAndVariants:

    def test_status_not_started(self, client, saved_order):
        response = client.get('/render/status/order-1')

        assert response.status_code == 200
        assert response.get_json()['status'] == 'not_started'

    def test_status_after_render(self, client, saved_order):
        client.post('/render/ensure/order-1')
        body = client.get('/render/status/order-1').get_json()

        assert body['status'] == 'completed'
        assert body['completedCount'] == 5
        assert body['totalCount'] == 5
        assert len(body['perVariant']) == 5
        assert body['error'] is None

    def test_variants(self, client, saved_order):
        client.post('/render/ensure/order-1')
        body = client.get('/render/variants/order-1').get_json()

        assert len(body['squareVariants']) == 5
        assert body['hexVariants'] == []
        assert set(body['renderedImageUrlsByVariantId']) == {v['variantId'] for v in body['squareVariants']}

    def test_variants_unknown_order(self, client):
        assert client.get('/render/variants/missing').status_code == 404

    def test_render_order(self, client, saved_order):
        body = client.get('/render/order/order-1').get_json()

        assert body['orderId'] == 'order-1'
        assert len(body['members']) == 5
