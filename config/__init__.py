"""Configuration package"""
from .settings import Config, DevelopmentConfig, ProductionConfig, config
from .testing import TestingConfig

config['testing'] = TestingConfig

__all__ = [
    'Config',
    'DevelopmentConfig',
    'ProductionConfig',
    'TestingConfig',
    'config',
]
