"""Ingestion helpers.

Everything that turns raw device/bridge values into typed, validated
values lives here, so the state and tracking layers never see placeholders.
"""
