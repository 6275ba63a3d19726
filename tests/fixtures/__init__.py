"""Shared test fixtures for the gitstate test suite.

Available Fixtures
==================

Git repositories (from tests/fixtures/repos.py)
-----------------------------------------------
- upstream: bare repository seeded with manifests on ``main``
- empty_upstream: bare repository with no commits
- checkout_config: CheckoutConfig matching ``upstream``
- settings: GitStateSettings with a per-test cache root
- push_from_elsewhere: helper that pushes an unrelated commit to ``upstream``
- gpg_key: throwaway GPG key store and fingerprint (skips without gpg)

Runners (from tests/fixtures/runners.py)
----------------------------------------
- fake_runner: scripted CommandRunner stand-in recording every git call
- make_result: CommandResult factory
"""
