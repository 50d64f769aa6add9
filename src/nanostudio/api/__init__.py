"""Nano Studio — FastAPI REST API layer.

This package contains the FastAPI application, the Pydantic request models
and the caller-identity dependency.

Modules
-------
main
    FastAPI application factory with all route handlers, the error mapping
    and the ``main()`` CLI entry point.
models
    Pydantic models for API request validation.
auth
    Trusted-header identity resolution for every ``/api`` route.
"""
