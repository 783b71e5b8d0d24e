"""
Integration tests for the purchases and products JSON API.
"""

import pytest
from sqlalchemy.exc import OperationalError
from gestion.models import Purchase, PurchaseStatus, Product


def _create(client, supplier_id, product_ids, **extra):
    payload = {
        'supplierId': supplier_id,
        'type': 'LOCAL',
        'orderDate': '2024-03-01',
        'freightCost': '500',
        'customsCost': '375',
        'items': [
            {'productId': product_ids[0], 'quantity': 5, 'unitPricePesos': 1000},
            {'productId': product_ids[1], 'quantity': 3, 'unitPricePesos': 2000},
        ],
    }
    payload.update(extra)
    return client.post('/purchases/', json=payload)


class TestPurchasesApi:
    """Tests for /purchases routes."""

    def test_create_and_view(self, client, supplier, product_a, product_b):
        response = _create(client, supplier.id, [product_a.id, product_b.id])

        assert response.status_code == 201
        purchase = response.get_json()['purchase']
        assert purchase['purchase_number'] == 'PC-000001'
        assert purchase['status'] == 'PENDING'
        assert purchase['total'] == '11875.00'
        assert [i['distributed_cost'] for i in purchase['items']] == ['397.73', '477.27']

        response = client.get(f"/purchases/{purchase['id']}")
        assert response.status_code == 200
        assert response.get_json()['items'][1]['final_unit_cost'] == '2159.09'

    def test_create_validation_error(self, client, supplier):
        response = client.post('/purchases/', json={'supplier_id': supplier.id, 'order_date': '2024-03-01'})

        assert response.status_code == 400
        data = response.get_json()
        assert data['status'] == 'error'
        assert data['error_type'] == 'ValidationError'
        assert data['field'] == 'items'

    def test_create_requires_json_object(self, client):
        response = client.post('/purchases/', data='not json', content_type='text/plain')
        assert response.status_code == 400

    def test_create_missing_product(self, client, supplier, product_a):
        response = _create(client, supplier.id, [product_a.id, 9999])

        assert response.status_code == 422
        assert response.get_json()['entity_id'] == 9999

    def test_view_missing(self, client):
        response = client.get('/purchases/9999')

        assert response.status_code == 404
        assert response.get_json()['error_type'] == 'NotFoundError'

    def test_list(self, client, supplier, product_a, product_b):
        _create(client, supplier.id, [product_a.id, product_b.id])
        _create(client, supplier.id, [product_a.id, product_b.id], notes='Segunda compra')

        response = client.get('/purchases/?limit=1&q=segunda')

        data = response.get_json()
        assert response.status_code == 200
        assert data['pagination']['total'] == 1
        assert data['purchases'][0]['purchase_number'] == 'PC-000002'
        assert data['purchases'][0]['items_count'] == 2

    def test_list_invalid_page(self, client):
        assert client.get('/purchases/?page=abc').status_code == 400

    def test_complete_then_delete(self, client, session, supplier, product_a, product_b):
        purchase_id = _create(client, supplier.id, [product_a.id, product_b.id]).get_json()['purchase']['id']
        product_id = product_a.id

        response = client.post(f'/purchases/{purchase_id}/complete')
        assert response.status_code == 200
        assert response.get_json()['purchase']['status'] == 'COMPLETED'

        product = client.get(f'/products/{product_id}').get_json()
        assert product['stock'] == 5
        assert product['cost'] == '1079.55'
        assert product['movements'][0]['reason'] == 'Purchase completed'

        response = client.post(f'/purchases/{purchase_id}/complete')
        assert response.status_code == 409
        assert response.get_json()['current_status'] == 'COMPLETED'

        response = client.delete(f'/purchases/{purchase_id}')
        assert response.status_code == 200
        assert response.get_json()['reversed'] is True

        product = client.get(f'/products/{product_id}').get_json()
        assert product['stock'] == 0
        assert product['cost'] == '0.00'
        assert product['movements'][0]['reference'] == 'Purchase PC-000001 (reversed)'
        assert session.get(Purchase, purchase_id) is None

    def test_edit(self, client, supplier, product_a, product_b):
        purchase = _create(client, supplier.id, [product_a.id, product_b.id]).get_json()['purchase']
        first, second = purchase['items']

        response = client.put(f"/purchases/{purchase['id']}/edit", json={
            'items': [{'id': first['id'], 'quantity': 6}, {'id': second['id']}],
        })

        assert response.status_code == 200
        assert response.get_json()['purchase']['subtotal_local'] == '12000.00'

    def test_edit_received_is_conflict(self, client, session, supplier, product_a, product_b):
        purchase = _create(client, supplier.id, [product_a.id, product_b.id]).get_json()['purchase']
        client.patch(f"/purchases/{purchase['id']}", json={'status': 'RECEIVED'})

        response = client.put(f"/purchases/{purchase['id']}/edit", json={'notes': 'x'})

        assert response.status_code == 409
        data = response.get_json()
        assert data['current_status'] == 'RECEIVED'
        assert 'PENDING' in data['allowed_statuses']
        assert session.get(Purchase, purchase['id']).notes is None

    def test_patch_status(self, client, session, supplier, product_a, product_b):
        purchase_id = _create(client, supplier.id, [product_a.id, product_b.id]).get_json()['purchase']['id']

        response = client.patch(f'/purchases/{purchase_id}', json={'status': 'COMPLETED', 'notes': 'Recibido ok'})

        assert response.status_code == 200
        assert response.get_json()['purchase']['notes'] == 'Recibido ok'
        assert session.get(Purchase, purchase_id).status == PurchaseStatus.COMPLETED

    def test_patch_requires_fields(self, client, supplier, product_a, product_b):
        purchase_id = _create(client, supplier.id, [product_a.id, product_b.id]).get_json()['purchase']['id']
        assert client.patch(f'/purchases/{purchase_id}', json={}).status_code == 400

    def test_reconcile_costs(self, client, supplier, product_a, product_b):
        purchase_id = _create(client, supplier.id, [product_a.id, product_b.id]).get_json()['purchase']['id']
        client.post(f'/purchases/{purchase_id}/complete')

        response = client.post(f'/purchases/{purchase_id}/reconcile-costs')

        data = response.get_json()
        assert response.status_code == 200
        assert data['policy'] == 'LAST'
        assert len(data['products']) == 2

    def test_conflict_is_retried_then_503(self, client, supplier, product_a, product_b, monkeypatch):
        purchase_id = _create(client, supplier.id, [product_a.id, product_b.id]).get_json()['purchase']['id']
        calls = []

        def locked(session, product_id, delta):
            calls.append(product_id)
            raise OperationalError('UPDATE product', {}, Exception('lock timeout'))

        monkeypatch.setattr('gestion.services.purchase_completion_service.adjust_stock', locked)

        response = client.post(f'/purchases/{purchase_id}/complete')

        assert response.status_code == 503
        assert response.get_json()['error_type'] == 'ConcurrencyError'
        assert len(calls) == 3
        assert client.get(f'/purchases/{purchase_id}').get_json()['status'] == 'PENDING'


class TestProductsApi:
    """Tests for /products routes."""

    def test_missing_product(self, client):
        assert client.get('/products/9999').status_code == 404

    @pytest.mark.parametrize('movements', ['0', '-5', 'abc'])
    def test_invalid_movements_limit(self, client, product_a, movements):
        response = client.get(f'/products/{product_a.id}?movements={movements}')

        assert response.status_code == 400
        assert response.get_json()['field'] == 'movements'

    def test_unknown_route_is_json(self, client):
        response = client.get('/nowhere')
        assert response.status_code == 404
        assert response.get_json()['status'] == 'error'


class TestMetricsApi:
    """Tests for the Prometheus endpoint."""

    def test_metrics_exposes_purchase_counters(self, client):
        response = client.get('/metrics')

        assert response.status_code == 200
        body = response.get_data(as_text=True)
        assert 'purchases_completed_total' in body
        assert 'http_requests_total' in body
