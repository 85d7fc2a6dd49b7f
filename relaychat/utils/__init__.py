"""
UTILITIES PACKAGE
=================

Helpers used by the services (no HTTP calls, no conversation logic):

  retry     - RetryPolicy, retry predicates and the backoff delay sequence.
  media     - data URLs, the inline SVG placeholder image and markdown image references.
"""
