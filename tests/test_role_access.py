import pytest

from app.version import API_PREFIX


@pytest.fixture
def tokens(make_user, auth_headers):
    return {
        role: auth_headers(make_user(f"{role}@roles.test", role=role))
        for role in ("consumer", "seller", "admin")
    }


def test_blueprint_access(client, tokens):
    # cart and order history are open to every signed-in role
    for hdr in tokens.values():
        assert client.get(f"{API_PREFIX}/cart", headers=hdr).status_code == 200
        assert client.get(f"{API_PREFIX}/orders", headers=hdr).status_code == 200

    # seller actions
    assert client.patch(f"{API_PREFIX}/orders/1/fulfill", headers=tokens["consumer"]).status_code == 403
    assert client.patch(f"{API_PREFIX}/orders/1/fulfill", headers=tokens["seller"]).status_code == 404

    # admin routes
    assert client.post(f"{API_PREFIX}/admin/orders/1/refund", json={}, headers=tokens["admin"]).status_code == 404
    assert client.post(f"{API_PREFIX}/admin/orders/1/refund", json={}, headers=tokens["seller"]).status_code == 403
