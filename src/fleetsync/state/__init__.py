"""Client-side state: local store, merge policy, fingerprints and events."""
