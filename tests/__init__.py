"""
Unveal Engine Test Suite

This package contains tests for the spatial resolution engine (bearing
projection, candidate lookup, identification and orchestration).

Structure:
- unit/: Unit tests for individual components
- integration/: End-to-end tests through the CLI and bundled database
"""
