"""twinsync - Twin property synchronization for Azure Digital Twins.

Packages:
    api   - HTTP client, OAuth2 credential, resilience and error taxonomy
    sync  - Domain, use cases and adapters for reading, resolving and patching twins
"""

__version__ = "0.1.0"
