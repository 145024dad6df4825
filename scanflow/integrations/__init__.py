"""Integrations package - External service clients"""
from scanflow.integrations.classifier_client import ClassifierClient

__all__ = ["ClassifierClient"]
