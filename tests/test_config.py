"""Tests for configuration selection via APP_ENV."""
import pytest

from app.config import (
    DevelopmentConfig,
    ProductionConfig,
    TestingConfig,
    get_config_class,
)


def test_testing_config_uses_memory_db(monkeypatch, app):
    monkeypatch.setenv('APP_ENV', 'testing')
    assert get_config_class() is TestingConfig
    assert app.config['TESTING'] is True
    assert app.config['SQLALCHEMY_DATABASE_URI'].startswith('sqlite://')
    assert app.config['PAYMENT_GATEWAY'] == 'fake'


def test_development_defaults(monkeypatch):
    monkeypatch.setenv('APP_ENV', 'development')
    assert get_config_class() is DevelopmentConfig
    assert DevelopmentConfig.DEBUG is True
    assert DevelopmentConfig.CART_TTL_DAYS == 30


def test_production_requires_stripe_keys(monkeypatch):
    monkeypatch.setenv('APP_ENV', 'production')
    monkeypatch.setenv('SECRET_KEY', 'k')
    monkeypatch.setenv('DATABASE_URL', 'postgresql://db/app')
    monkeypatch.delenv('STRIPE_SECRET_KEY', raising=False)
    monkeypatch.delenv('PAYMENT_GATEWAY', raising=False)
    with pytest.raises(RuntimeError) as exc:
        get_config_class()
    assert 'STRIPE_SECRET_KEY' in str(exc.value)

    monkeypatch.setenv('STRIPE_SECRET_KEY', 'sk_live')
    monkeypatch.setenv('STRIPE_WEBHOOK_SECRET', 'whsec_live')
    assert get_config_class() is ProductionConfig


def test_production_with_fake_gateway_skips_stripe(monkeypatch):
    monkeypatch.setenv('APP_ENV', 'production')
    monkeypatch.setenv('SECRET_KEY', 'k')
    monkeypatch.setenv('DATABASE_URL', 'postgresql://db/app')
    monkeypatch.setenv('PAYMENT_GATEWAY', 'fake')
    monkeypatch.delenv('STRIPE_SECRET_KEY', raising=False)
    assert get_config_class() is ProductionConfig
