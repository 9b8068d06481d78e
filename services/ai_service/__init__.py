"""
AI service - provider adapters, response normalization and request cancellation.

Submodules are imported directly (e.g. ``services.ai_service.provider_adapters``);
the resilience layer imports the cancellation token from here, so this package
does not import its submodules eagerly.
"""
