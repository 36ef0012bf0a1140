"""Core domain: models, collectors, alerting, scoring and reporting."""
