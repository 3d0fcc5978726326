"""End-to-end tests that run complete campaigns against a fake cross toolchain."""
