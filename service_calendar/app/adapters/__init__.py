"""
Adapters for services the Calendar Service depends on.

Currently provides the roster API client. Calls never raise; every outcome
is normalized to an ``ApiResponse``.
"""
