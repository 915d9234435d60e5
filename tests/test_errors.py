from app.version import API_PREFIX


def test_404_json_envelope(client):
    resp = client.get('/no/such/route')
    assert resp.status_code == 404
    data = resp.get_json()
    assert data['status'] == 'error'
    assert data['code'] == 404
    assert isinstance(data.get('message'), str)


def test_unexpected_500_json_envelope(client):
    resp = client.get('/__boom')
    assert resp.status_code == 500
    data = resp.get_json()
    assert data['status'] == 'error'
    assert data['code'] == 500
    assert 'RuntimeError' not in data['message']


def test_ok_helper_endpoint(client):
    resp = client.get('/__ok')
    assert resp.status_code == 200
    data = resp.get_json()
    assert data == {
        'status': 'success',
        'message': 'success',
        'data': {'ping': 'pong'}
    }


def test_domain_error_carries_payload(client, make_store, make_product, address):
    pid = make_product(make_store(), inventory=1)
    resp = client.post(f"{API_PREFIX}/guest/orders", json={
        'email': 'short@example.com',
        'cart_items': [{'product_id': pid, 'quantity': 2}],
        'shipping_address': address,
    })
    assert resp.status_code == 422
    data = resp.get_json()
    assert data['status'] == 'error'
    assert data['code'] == 422
    assert data['insufficient_items'][0]['available'] == 1
    assert data["error"] == data["message"]


def test_schema_errors_are_listed(client):
    resp = client.post(f"{API_PREFIX}/cart/items", json={'product_id': 'abc'})
    assert resp.status_code == 422
    assert resp.get_json()['errors'][0]['loc'] == ['product_id']
